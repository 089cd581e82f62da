"""Database layer: declarative base, engine/session management, immutability listeners."""

from stock_ledger.db.base import Base, TrackedBase, UUIDString
from stock_ledger.db.engine import (
    create_tables,
    drop_tables,
    get_engine,
    get_session,
    get_session_factory,
    init_engine_from_url,
    is_postgres,
    reset_engine,
    session_scope,
)
from stock_ledger.db.immutability import (
    register_immutability_listeners,
    stock_write_scope,
    unregister_immutability_listeners,
)

__all__ = [
    "Base",
    "TrackedBase",
    "UUIDString",
    "create_tables",
    "drop_tables",
    "get_engine",
    "get_session",
    "get_session_factory",
    "init_engine_from_url",
    "is_postgres",
    "register_immutability_listeners",
    "reset_engine",
    "session_scope",
    "stock_write_scope",
    "unregister_immutability_listeners",
]
