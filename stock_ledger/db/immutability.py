"""
ORM-Level Immutability Enforcement for the stock ledger.

===============================================================================
WHY THIS EXISTS
===============================================================================

The movement log is the audit trail of every stock change.  It is only
trustworthy if nothing can rewrite it, and if the stored product quantity
can only move together with a new movement.  SQLAlchemy fires events before
UPDATE/DELETE statements reach the database; the listeners below intercept
them and raise ImmutabilityViolationError before any SQL is sent.

    session.flush()
         |
         v
    [before_flush]   --> referenced product deletion? ---> ProductInUseError
         |
    [before_update]  --> _check_*_immutability() -------> ImmutabilityViolationError
         |
    [before_delete]  --> _check_*_delete() -------------> ImmutabilityViolationError
         |
         v
    SQL sent to database (only if checks pass)

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity                  | Rule
------------------------|----------------------------------------------------
StockMovement           | ALWAYS immutable, never deleted
Product.sku             | Never changes after creation
Product.current_stock   | Changes only inside stock_write_scope()
Product.reserved_stock  | Changes only inside stock_write_scope()
Product.movement_seq    | Changes only inside stock_write_scope()
Product.baseline_stock  | Changes only inside stock_write_scope()
Product (delete)        | Blocked while any movement references it
StockDivergenceReport   | Findings frozen; only resolution fields may change

The adjustment engine, the reservation service and the reconciliation
service open a stock_write_scope() around their unit of work.  A product
form edit that touches current_stock outside that scope is rejected; the
edit path must route the change through an adjustment instead.

===============================================================================
USAGE
===============================================================================

Registered automatically by stock_ledger.db.engine.init_engine_from_url().
To temporarily disable (TESTS ONLY):

    unregister_immutability_listeners()
    # ... do forbidden operation ...
    register_immutability_listeners()
"""

from contextlib import contextmanager
from typing import Generator

from sqlalchemy import event, func, inspect, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, object_session

from stock_ledger.exceptions import (
    ImmutabilityViolationError,
    PersistenceError,
    ProductInUseError,
)
from stock_ledger.logging_config import get_logger

logger = get_logger("db.immutability")

_WRITE_SCOPE_KEY = "stock_ledger.write_scope"

# Connection execution option read by the SQLite "begin" hook in db/engine.py
BEGIN_MODE_OPTION = "stock_ledger_begin_mode"

# Product columns owned by the ledger write path
LEDGER_OWNED_PRODUCT_FIELDS = (
    "current_stock",
    "reserved_stock",
    "movement_seq",
    "baseline_stock",
)

# Divergence report columns a reviewer may fill in
_DIVERGENCE_RESOLUTION_FIELDS = (
    "resolved_at",
    "resolved_by_id",
    "resolution",
    "resolution_note",
)


@contextmanager
def stock_write_scope(session: Session) -> Generator[Session, None, None]:
    """
    Mark ``session`` as running a ledger unit of work (re-entrant).

    Entered before the session has begun, the outermost scope asks for a
    write transaction up front (``BEGIN IMMEDIATE`` on SQLite), so writers
    queue on the database lock instead of failing at commit.  Plain
    sessions start deferred transactions and never take the write lock
    for reads.
    """
    depth = session.info.get(_WRITE_SCOPE_KEY, 0)
    if not depth and not session.in_transaction():
        try:
            session.connection(execution_options={BEGIN_MODE_OPTION: "IMMEDIATE"})
        except SQLAlchemyError as exc:
            raise PersistenceError("begin", str(exc)) from exc
    session.info[_WRITE_SCOPE_KEY] = depth + 1
    try:
        yield session
    finally:
        if depth:
            session.info[_WRITE_SCOPE_KEY] = depth
        else:
            session.info.pop(_WRITE_SCOPE_KEY, None)


def in_stock_write_scope(session: Session | None) -> bool:
    """True when ``session`` is inside stock_write_scope()."""
    return session is not None and session.info.get(_WRITE_SCOPE_KEY, 0) > 0


def _blocked(entity_type: str, entity_id: str, operation: str, reason: str, **extra):
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": entity_id,
            "operation": operation,
            **extra,
        },
    )
    raise ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=entity_id,
        reason=reason,
    )


def _check_movement_immutability(mapper, connection, target):
    """Stock movements are append-only: no field may ever change."""
    from stock_ledger.models.stock_movement import StockMovement

    if not isinstance(target, StockMovement):
        return

    for attr in inspect(target).attrs:
        if attr.history.has_changes():
            _blocked(
                "StockMovement",
                str(target.id),
                "UPDATE",
                f"Cannot modify field '{attr.key}' on a stock movement; "
                "record an offsetting movement instead",
                field=attr.key,
            )


def _check_movement_delete(mapper, connection, target):
    """Stock movements are never deleted."""
    from stock_ledger.models.stock_movement import StockMovement

    if not isinstance(target, StockMovement):
        return

    _blocked(
        "StockMovement",
        str(target.id),
        "DELETE",
        "Stock movements cannot be deleted",
    )


def _check_product_immutability(mapper, connection, target):
    """
    Guard ledger-owned product fields.

    SKU never changes.  Quantity fields only change inside a ledger write
    scope, so a stored quantity can never move without a movement.
    """
    from stock_ledger.models.product import Product

    if not isinstance(target, Product):
        return

    state = inspect(target)

    if state.attrs.sku.history.deleted and state.attrs.sku.history.added:
        _blocked(
            "Product",
            str(target.id),
            "UPDATE",
            "SKU is immutable after creation",
            field="sku",
        )

    if in_stock_write_scope(object_session(target)):
        return

    for field in LEDGER_OWNED_PRODUCT_FIELDS:
        if getattr(state.attrs, field).history.has_changes():
            _blocked(
                "Product",
                str(target.id),
                "UPDATE",
                f"'{field}' may only change through a stock adjustment",
                field=field,
            )


def _check_product_deletion_before_flush(session, flush_context, instances):
    """
    Block physical deletion of products referenced by movements.

    Runs in before_flush because mapper-level delete events fire after the
    flush plan is finalized.
    """
    from stock_ledger.models.product import Product
    from stock_ledger.models.stock_movement import StockMovement

    for obj in list(session.deleted):
        if not isinstance(obj, Product):
            continue

        with session.no_autoflush:
            movement_count = session.execute(
                select(func.count(StockMovement.id)).where(
                    StockMovement.product_id == obj.id
                )
            ).scalar_one()

        if movement_count:
            logger.error(
                "immutability_violation_blocked",
                extra={
                    "entity_type": "Product",
                    "entity_id": str(obj.id),
                    "operation": "DELETE",
                    "movement_count": movement_count,
                },
            )
            raise ProductInUseError(str(obj.id), movement_count)


def _check_divergence_report_immutability(mapper, connection, target):
    """Divergence findings are frozen; only resolution fields may be filled in."""
    from stock_ledger.models.divergence import StockDivergenceReport

    if not isinstance(target, StockDivergenceReport):
        return

    for attr in inspect(target).attrs:
        if attr.key in _DIVERGENCE_RESOLUTION_FIELDS:
            continue
        if attr.history.has_changes():
            _blocked(
                "StockDivergenceReport",
                str(target.id),
                "UPDATE",
                f"Cannot modify finding field '{attr.key}'",
                field=attr.key,
            )


def _check_divergence_report_delete(mapper, connection, target):
    """Divergence reports are audit artifacts and are never deleted."""
    from stock_ledger.models.divergence import StockDivergenceReport

    if not isinstance(target, StockDivergenceReport):
        return

    _blocked(
        "StockDivergenceReport",
        str(target.id),
        "DELETE",
        "Divergence reports cannot be deleted",
    )


def _listeners():
    from stock_ledger.models.divergence import StockDivergenceReport
    from stock_ledger.models.product import Product
    from stock_ledger.models.stock_movement import StockMovement

    return (
        (Session, "before_flush", _check_product_deletion_before_flush),
        (StockMovement, "before_update", _check_movement_immutability),
        (StockMovement, "before_delete", _check_movement_delete),
        (Product, "before_update", _check_product_immutability),
        (StockDivergenceReport, "before_update", _check_divergence_report_immutability),
        (StockDivergenceReport, "before_delete", _check_divergence_report_delete),
    )


def register_immutability_listeners():
    """
    Register all immutability enforcement event listeners (idempotent).

    Call after models are importable and before any database writes.
    """
    for target, event_name, fn in _listeners():
        if not event.contains(target, event_name, fn):
            event.listen(target, event_name, fn)


def unregister_immutability_listeners():
    """
    Remove immutability enforcement event listeners.

    WARNING: Only use this in tests that intentionally corrupt data to
    verify detection.
    """
    for target, event_name, fn in _listeners():
        if event.contains(target, event_name, fn):
            event.remove(target, event_name, fn)
