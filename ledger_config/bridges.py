"""
Settings -> ledger bridges.

Functions that turn LedgerSettings into stock_ledger objects.  They live
here (the producer) because stock_ledger never imports ledger_config.

Usage:
    from ledger_config import get_active_settings
    from ledger_config.bridges import build_stock_ledger

    ledger = build_stock_ledger(get_active_settings(environment="test"))
"""

from __future__ import annotations

import logging
from typing import Iterable

from ledger_config.schema import LedgerSettings
from stock_ledger.db.engine import create_tables, get_session_factory, init_engine_from_url
from stock_ledger.domain.clock import Clock
from stock_ledger.domain.dtos import StockBasis
from stock_ledger.logging_config import configure_logging
from stock_ledger.services.adjustment_engine import StatusListener
from stock_ledger.services.stock_ledger import StockLedger


def init_database(settings: LedgerSettings) -> None:
    """Initialize the module-level engine from DatabaseSettings."""
    db = settings.database
    init_engine_from_url(
        db.url,
        echo=db.echo,
        pool_size=db.pool_size,
        max_overflow=db.max_overflow,
        pool_timeout=db.pool_timeout_seconds,
        busy_timeout=db.busy_timeout_seconds,
    )
    if db.create_tables:
        create_tables()


def build_stock_ledger(
    settings: LedgerSettings,
    clock: Clock | None = None,
    listeners: Iterable[StatusListener] = (),
    configure_logs: bool = True,
) -> StockLedger:
    """
    Initialize logging and the database from ``settings`` and return a
    StockLedger wired with its policy and concurrency settings.
    """
    if configure_logs:
        configure_logging(level=logging.getLevelName(settings.logging.level))
    init_database(settings)
    return StockLedger(
        get_session_factory(),
        clock=clock,
        critical_ratio=settings.policy.critical_ratio,
        lock_timeout_seconds=settings.concurrency.lock_timeout_seconds,
        listeners=listeners,
        verify_writes=settings.concurrency.verify_writes,
        default_basis=StockBasis(settings.policy.default_basis),
    )
