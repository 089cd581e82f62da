"""
Settings loader (``ledger_config.loader``).

Responsibility
--------------
Reads a YAML settings file, overlays the selected environment, applies
environment-variable overrides and parses the result into the frozen
dataclasses of ``ledger_config.schema``.  Callers use
``ledger_config.get_active_settings()``, not this module.

Invariants enforced
-------------------
* Every parse error raises ``ValueError`` naming the offending key; there
  are no silent defaults for malformed values.
* ``compute_checksum`` is deterministic for identical resolved data.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Unknown environment, missing ``database.url``, wrong value types
  -> ``ValueError``.
"""

from __future__ import annotations

import copy
import hashlib
import json
import logging
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Mapping

import yaml

from ledger_config.schema import (
    ConcurrencySettings,
    DatabaseSettings,
    LedgerSettings,
    LoggingSettings,
    PolicySettings,
)

DATABASE_URL_ENV = "STOCK_LEDGER_DATABASE_URL"
ENVIRONMENT_ENV = "STOCK_LEDGER_ENV"

_SECTIONS = ("database", "policy", "concurrency", "logging")
_BASES = ("on_hand", "available")


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
        ValueError: if the document is not a mapping.
    """
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: top level must be a mapping")
    return data


def overlay_environment(data: dict[str, Any], environment: str | None) -> dict[str, Any]:
    """Merge ``environments.<environment>`` over the base sections."""
    environments = data.get("environments") or {}
    resolved = {k: copy.deepcopy(v) for k, v in data.items() if k != "environments"}
    if environment is None:
        return resolved
    if environment not in environments:
        raise ValueError(
            f"environments.{environment}: unknown environment "
            f"(known: {', '.join(sorted(environments)) or 'none'})"
        )
    for section, values in (environments[environment] or {}).items():
        if section not in _SECTIONS:
            raise ValueError(f"environments.{environment}.{section}: unknown section")
        merged = dict(resolved.get(section) or {})
        merged.update(values or {})
        resolved[section] = merged
    return resolved


def apply_env_overrides(data: dict[str, Any], env: Mapping[str, str]) -> dict[str, Any]:
    url = env.get(DATABASE_URL_ENV)
    if url:
        database = dict(data.get("database") or {})
        database["url"] = url
        data = {**data, "database": database}
    return data


# ---------------------------------------------------------------------------
# Typed value readers
# ---------------------------------------------------------------------------


def _section(data: dict[str, Any], name: str) -> dict[str, Any]:
    value = data.get(name) or {}
    if not isinstance(value, dict):
        raise ValueError(f"{name}: must be a mapping")
    return value


def _bool(section: dict[str, Any], key: str, path: str, default: bool) -> bool:
    value = section.get(key, default)
    if not isinstance(value, bool):
        raise ValueError(f"{path}.{key}: expected true/false, got {value!r}")
    return value


def _number(section: dict[str, Any], key: str, path: str, default: float) -> float:
    value = section.get(key, default)
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value < 0:
        raise ValueError(f"{path}.{key}: expected a non-negative number, got {value!r}")
    return value


def _int(section: dict[str, Any], key: str, path: str, default: int) -> int:
    value = section.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ValueError(f"{path}.{key}: expected a non-negative integer, got {value!r}")
    return value


def _decimal(section: dict[str, Any], key: str, path: str, default: str) -> Decimal:
    raw = section.get(key, default)
    try:
        value = Decimal(str(raw))
    except InvalidOperation:
        raise ValueError(f"{path}.{key}: expected a decimal, got {raw!r}") from None
    return value


# ---------------------------------------------------------------------------
# Section parsers
# ---------------------------------------------------------------------------


def parse_database(data: dict[str, Any]) -> DatabaseSettings:
    section = _section(data, "database")
    url = section.get("url")
    if not url or not isinstance(url, str):
        raise ValueError("database.url: is required")
    return DatabaseSettings(
        url=url,
        echo=_bool(section, "echo", "database", False),
        pool_size=_int(section, "pool_size", "database", 10),
        max_overflow=_int(section, "max_overflow", "database", 10),
        pool_timeout_seconds=_int(section, "pool_timeout_seconds", "database", 30),
        busy_timeout_seconds=_number(section, "busy_timeout_seconds", "database", 30.0),
        create_tables=_bool(section, "create_tables", "database", True),
    )


def parse_policy(data: dict[str, Any]) -> PolicySettings:
    section = _section(data, "policy")
    ratio = _decimal(section, "critical_ratio", "policy", "0.5")
    if not Decimal("0") <= ratio <= Decimal("1"):
        raise ValueError(f"policy.critical_ratio: must be between 0 and 1, got {ratio}")
    basis = section.get("default_basis", "on_hand")
    if basis not in _BASES:
        raise ValueError(f"policy.default_basis: expected one of {_BASES}, got {basis!r}")
    return PolicySettings(critical_ratio=ratio, default_basis=basis)


def parse_concurrency(data: dict[str, Any]) -> ConcurrencySettings:
    section = _section(data, "concurrency")
    timeout = _number(section, "lock_timeout_seconds", "concurrency", 10.0)
    if timeout <= 0:
        raise ValueError("concurrency.lock_timeout_seconds: must be positive")
    return ConcurrencySettings(
        lock_timeout_seconds=float(timeout),
        verify_writes=_bool(section, "verify_writes", "concurrency", True),
    )


def parse_logging(data: dict[str, Any]) -> LoggingSettings:
    section = _section(data, "logging")
    level = str(section.get("level", "INFO")).upper()
    if not isinstance(logging.getLevelName(level), int):
        raise ValueError(f"logging.level: unknown level {level!r}")
    return LoggingSettings(level=level)


def parse_settings(data: dict[str, Any], environment: str | None = None) -> LedgerSettings:
    """Parse resolved data (environment already overlaid) into LedgerSettings."""
    version = data.get("version", 1)
    if isinstance(version, bool) or not isinstance(version, int):
        raise ValueError(f"version: expected an integer, got {version!r}")
    return LedgerSettings(
        config_id=str(data.get("config_id", "stock_ledger")),
        version=version,
        database=parse_database(data),
        policy=parse_policy(data),
        concurrency=parse_concurrency(data),
        logging=parse_logging(data),
        environment=environment,
        checksum=compute_checksum(data),
    )


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON serialization."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
