"""
ledger_config -- single public entrypoint for stock ledger settings.

Responsibility:
    Provides the one way to obtain settings at runtime through
    ``get_active_settings()``.  Other components do not read settings
    files or environment variables themselves.

Architecture position:
    Configuration -- sits above ``stock_ledger``.  The ledger package never
    imports ``ledger_config``; ``ledger_config.bridges`` turns settings into
    ledger constructor arguments.

Failure modes:
    - ``FileNotFoundError`` -- the settings file does not exist.
    - ``ValueError`` -- unknown environment or a malformed value; the
      message names the offending key.

Audit relevance:
    Every successful ``get_active_settings()`` call logs
    ``STOCK_LEDGER_CONFIG_TRACE`` with the config id, version, environment
    and checksum (never the database URL, which may carry credentials).
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Mapping

from ledger_config.loader import (
    ENVIRONMENT_ENV,
    apply_env_overrides,
    load_yaml_file,
    overlay_environment,
    parse_settings,
)
from ledger_config.schema import (
    ConcurrencySettings,
    DatabaseSettings,
    LedgerSettings,
    LoggingSettings,
    PolicySettings,
)

_logger = logging.getLogger("stock_ledger.config")

DEFAULT_SETTINGS_PATH = Path(__file__).parent / "sets" / "default.yaml"


def get_active_settings(
    config_path: Path | str | None = None,
    environment: str | None = None,
    env: Mapping[str, str] | None = None,
) -> LedgerSettings:
    """
    The public settings entrypoint.

    Args:
        config_path: YAML settings file.  Defaults to the bundled
            ledger_config/sets/default.yaml.
        environment: Entry under ``environments`` to overlay.  Defaults to
            $STOCK_LEDGER_ENV, or none.
        env: Environment variables to read overrides from (os.environ when
            omitted).

    Raises:
        FileNotFoundError: If the settings file does not exist.
        ValueError: If the environment is unknown or a value is malformed.
    """
    env = os.environ if env is None else env
    path = Path(config_path) if config_path is not None else DEFAULT_SETTINGS_PATH
    environment = environment or env.get(ENVIRONMENT_ENV) or None

    data = overlay_environment(load_yaml_file(path), environment)
    data = apply_env_overrides(data, env)
    settings = parse_settings(data, environment)

    _logger.info(
        "STOCK_LEDGER_CONFIG_TRACE",
        extra={
            "trace_type": "STOCK_LEDGER_CONFIG_TRACE",
            "config_id": settings.config_id,
            "config_version": settings.version,
            "environment": environment,
            "checksum": settings.checksum,
        },
    )
    return settings


__all__ = [
    "ConcurrencySettings",
    "DEFAULT_SETTINGS_PATH",
    "DatabaseSettings",
    "LedgerSettings",
    "LoggingSettings",
    "PolicySettings",
    "get_active_settings",
]
