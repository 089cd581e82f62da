"""
Engine and session management for the ledger database.

One process-wide engine is created by ``init_engine_from_url()``; services
receive the session factory and open one session per operation.

Locking behaviour by backend:
    - SQLite: pysqlite's implicit transaction handling is switched off.
      Units of work inside stock_write_scope() start with ``BEGIN
      IMMEDIATE`` and queue on the database lock (up to ``busy_timeout``
      seconds); every other transaction starts deferred.  File databases
      run in WAL mode, so open readers never block a writer.
    - PostgreSQL: sessions run at READ COMMITTED; the adjustment path locks
      the product row with ``SELECT ... FOR UPDATE``.

Creating an engine also registers the ORM immutability listeners.
Accessors raise RuntimeError until an engine exists.
"""

import atexit
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from stock_ledger.db.immutability import BEGIN_MODE_OPTION, register_immutability_listeners
from stock_ledger.logging_config import get_logger

logger = get_logger("db.engine")

_engine: Engine | None = None
_session_factory: sessionmaker[Session] | None = None

_NOT_INITIALIZED = "Ledger database not initialized; call init_engine_from_url() first"


def _is_memory_sqlite(url: str) -> bool:
    return ":memory:" in url or url.rstrip("/") == "sqlite:"


def _install_sqlite_locking(engine: Engine, wal: bool) -> None:
    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        if wal:
            cursor.execute("PRAGMA journal_mode=WAL")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        mode = conn.get_execution_options().get(BEGIN_MODE_OPTION, "DEFERRED")
        conn.exec_driver_sql(f"BEGIN {mode}")


def _build_engine(
    url: str,
    echo: bool,
    pool_size: int,
    max_overflow: int,
    pool_pre_ping: bool,
    pool_timeout: int,
    busy_timeout: float,
) -> Engine:
    if url.startswith("sqlite"):
        options: dict = {
            "connect_args": {"check_same_thread": False, "timeout": busy_timeout},
        }
        if _is_memory_sqlite(url):
            # One shared connection, otherwise each checkout sees an empty database.
            options["poolclass"] = StaticPool
        engine = create_engine(url, echo=echo, **options)
        _install_sqlite_locking(engine, wal=not _is_memory_sqlite(url))
        return engine

    return create_engine(
        url,
        echo=echo,
        pool_size=pool_size,
        max_overflow=max_overflow,
        pool_pre_ping=pool_pre_ping,
        pool_timeout=pool_timeout,
        isolation_level="READ COMMITTED",
    )


def init_engine_from_url(
    database_url: str,
    echo: bool = False,
    pool_size: int = 10,
    max_overflow: int = 10,
    pool_pre_ping: bool = True,
    pool_timeout: int = 30,
    busy_timeout: float = 30.0,
) -> Engine:
    """
    Create the process-wide engine and session factory.

    A second call disposes the previous engine and replaces it.

    Args:
        database_url: ``sqlite:///stock.db``, ``sqlite:///:memory:`` or a
            ``postgresql://`` URL.
        echo: Log every SQL statement.
        pool_size, max_overflow, pool_pre_ping, pool_timeout: Connection
            pool settings (PostgreSQL).
        busy_timeout: Seconds a SQLite transaction waits for the write lock.
    """
    global _engine, _session_factory

    if _engine is not None:
        _engine.dispose()

    _engine = _build_engine(
        database_url, echo, pool_size, max_overflow, pool_pre_ping, pool_timeout, busy_timeout
    )
    _session_factory = sessionmaker(bind=_engine, expire_on_commit=False)
    register_immutability_listeners()

    logger.info(
        "engine_initialized",
        extra={"dialect": _engine.dialect.name, "echo": echo},
    )
    return _engine


def get_engine() -> Engine:
    if _engine is None:
        raise RuntimeError(_NOT_INITIALIZED)
    return _engine


def get_session_factory() -> sessionmaker[Session]:
    """
    The factory handed to StockLedger and the services that own their
    transactions (adjustment engine, reservations, reconciliation).
    """
    if _session_factory is None:
        raise RuntimeError(_NOT_INITIALIZED)
    return _session_factory


def get_session() -> Session:
    return get_session_factory()()


@contextmanager
def session_scope(
    session_factory: sessionmaker[Session] | None = None,
    immediate: bool = False,
) -> Iterator[Session]:
    """
    Commit on normal exit, roll back and re-raise on error, always close.

    ``immediate`` opens a write transaction up front (``BEGIN IMMEDIATE``
    on SQLite) for units of work that read a row and then update it.

    Usage:
        with session_scope(factory) as session:
            ProductService(session).set_status(...)
    """
    session = (session_factory or get_session_factory())()
    try:
        if immediate:
            session.connection(execution_options={BEGIN_MODE_OPTION: "IMMEDIATE"})
        yield session
        session.commit()
    except Exception:
        session.rollback()
        logger.warning("transaction_rolled_back", exc_info=True)
        raise
    finally:
        session.close()


def create_tables() -> None:
    """Create the ledger tables that do not exist yet."""
    from stock_ledger.db.base import Base
    import stock_ledger.models  # noqa: F401  (registers the tables on Base.metadata)

    Base.metadata.create_all(get_engine())


def drop_tables() -> None:
    """Drop every ledger table.  Tests and local resets only."""
    from stock_ledger.db.base import Base
    import stock_ledger.models  # noqa: F401

    Base.metadata.drop_all(get_engine())


def reset_engine() -> None:
    """Dispose the engine and forget the session factory."""
    global _engine, _session_factory

    if _engine is not None:
        _engine.dispose()
    _engine = None
    _session_factory = None


def is_postgres() -> bool:
    return _engine is not None and _engine.dialect.name == "postgresql"


@atexit.register
def _dispose_on_exit() -> None:
    if _engine is not None:
        _engine.dispose()
