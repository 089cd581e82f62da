"""
LedgerSettings schema.

Typed, frozen view of a settings file.  The loader parses YAML into these
types; bridges.py turns them into ledger constructor arguments.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal

# ---------------------------------------------------------------------------
# Sections
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DatabaseSettings:
    """Connection settings passed to init_engine_from_url."""

    url: str
    echo: bool = False
    pool_size: int = 10
    max_overflow: int = 10
    pool_timeout_seconds: int = 30
    busy_timeout_seconds: float = 30.0  # SQLite only
    create_tables: bool = True


@dataclass(frozen=True)
class PolicySettings:
    """Low-stock classification settings."""

    critical_ratio: Decimal = Decimal("0.5")
    default_basis: str = "on_hand"  # "on_hand" or "available"


@dataclass(frozen=True)
class ConcurrencySettings:
    lock_timeout_seconds: float = 10.0
    verify_writes: bool = True


@dataclass(frozen=True)
class LoggingSettings:
    level: str = "INFO"


# ---------------------------------------------------------------------------
# Root
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LedgerSettings:
    """Fully resolved settings for one environment."""

    config_id: str
    version: int
    database: DatabaseSettings
    policy: PolicySettings = field(default_factory=PolicySettings)
    concurrency: ConcurrencySettings = field(default_factory=ConcurrencySettings)
    logging: LoggingSettings = field(default_factory=LoggingSettings)
    environment: str | None = None
    checksum: str = ""
