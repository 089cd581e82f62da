"""
AdjustmentEngine -- the single write path for stock quantities.

Responsibility:
    Validates and applies one stock change as one atomic unit: append the
    movement and update the product quantity in the same transaction,
    holding the per-product lock.  Owns commit/rollback, verifies its own
    write after commit, and notifies status listeners when the product's
    low-stock classification changes.

Architecture position:
    Ledger > Services -- imperative shell, owns transaction boundaries.
    Delegates validation to domain/movement_rules.py, classification to
    domain/policy.py, and writes to the flush-only MovementLog and
    ProductService.

Adjustment flow:
    apply(request)
      1. Validate the request shape (type, nonzero change, reason, actor)
      2. Acquire the product lock (ProductLockRegistry, bounded wait)
      3. Open a session in stock_write_scope(); load product FOR UPDATE
      4. quantity_after = quantity_before + quantity_change; reject < 0
      5. Consume the matching reservation when requested
      6. Reject if reserved_stock would exceed quantity_after
      7. MovementLog.append(); set current_stock, updated_at, updated_by_id
      8. Commit (movement + product together)
      9. Re-read product and the newest movement; mismatch -> divergence report
     10. Release the lock, then notify status listeners

Invariants enforced:
    - current_stock == baseline + sum of movement changes, per product.
    - current_stock never goes below zero (InsufficientStockError).
    - Movement type is the caller's explicit tag, never inferred from sign.
    - At most one in-flight write per product (lock + FOR UPDATE + version).
    - The engine never retries on its own.

Failure modes (every error leaves full pre-state or full post-state,
except the flagged in-between state):
    - ValidationError, InsufficientStockError, ProductDiscontinuedError,
      PolicyViolationError: rejected before any write.
    - LockTimeoutError, OptimisticLockError, PersistenceError: retryable,
      nothing written.
    - LedgerDivergenceError: movement committed but the product quantity
      does not match it.  Persisted as a StockDivergenceReport.

Audit relevance:
    Every call logs adjustment_started and exactly one of
    adjustment_committed / adjustment_rejected / adjustment_failed with
    duration_ms, inside a LogContext carrying correlation_id, product_id,
    actor_id and reference_id.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, replace
from datetime import date
from decimal import Decimal
from typing import Callable, Iterable, Mapping
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from stock_ledger.db.immutability import stock_write_scope
from stock_ledger.domain.clock import Clock, SystemClock
from stock_ledger.domain.dtos import (
    AdjustmentRequest,
    MovementDraft,
    MovementRecord,
    MovementType,
    ProductLevels,
    ProductRecord,
    StockStatusChange,
)
from stock_ledger.domain.movement_rules import (
    coerce_movement_type,
    validate_direction,
    validate_quantity_change,
    validate_reason,
)
from stock_ledger.domain.policy import ALERT_STATUSES, DEFAULT_CRITICAL_RATIO, classify
from stock_ledger.exceptions import (
    InsufficientStockError,
    LedgerDivergenceError,
    OptimisticLockError,
    PersistenceError,
    PolicyViolationError,
    ProductDiscontinuedError,
    ProductError,
    StockLedgerError,
    ValidationError,
)
from stock_ledger.logging_config import LogContext, get_logger
from stock_ledger.models.divergence import DivergenceSource
from stock_ledger.models.product import Product
from stock_ledger.models.reservation import ReservationStatus, StockReservation
from stock_ledger.models.stock_movement import StockMovement
from stock_ledger.selectors.inventory_selector import InventorySelector
from stock_ledger.selectors.movement_selector import MovementSelector
from stock_ledger.selectors.product_selector import ProductSelector
from stock_ledger.services.locking import ProductLockRegistry
from stock_ledger.services.movement_log import MovementLog
from stock_ledger.services.product_service import ProductService
from stock_ledger.services.reconciliation_service import DivergenceReporter

logger = get_logger("services.adjustment_engine")

StatusListener = Callable[[StockStatusChange], None]

INITIAL_STOCK_REASON = "Initial stock"
PRODUCT_EDIT_REASON = "Stock updated via product edit"
STOCK_COUNT_REASON = "Physical stock count"

# Failures rejected by business rules, as opposed to infrastructure failures
_REJECTIONS = (
    ValidationError,
    InsufficientStockError,
    PolicyViolationError,
    ProductError,
)


@dataclass
class _WriteOutcome:
    """What a unit of work wrote, filled in as the write is verified."""

    product_id: UUID
    levels_before: ProductLevels | None = None
    movement_id: UUID | None = None
    movement: MovementRecord | None = None
    product: ProductRecord | None = None
    divergent: bool = False


class AdjustmentEngine:
    """
    Applies stock changes atomically, one product at a time.

    Contract:
        Stateless between calls: all state lives in the products and
        stock_movements tables.  Each operation opens its own session from
        ``session_factory`` and commits or rolls it back before returning.

    Non-goals:
        - Does NOT retry; the caller owns the retry policy.
        - Does NOT own order lifecycle; see OrderStockHandler.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        locks: ProductLockRegistry | None = None,
        clock: Clock | None = None,
        critical_ratio: Decimal = DEFAULT_CRITICAL_RATIO,
        listeners: Iterable[StatusListener] = (),
        verify_writes: bool = True,
    ):
        self._session_factory = session_factory
        self._locks = locks or ProductLockRegistry()
        self._clock = clock or SystemClock()
        self._critical_ratio = critical_ratio
        self._listeners: list[StatusListener] = list(listeners)
        self._verify_writes = verify_writes

    @property
    def locks(self) -> ProductLockRegistry:
        return self._locks

    @property
    def clock(self) -> Clock:
        return self._clock

    def add_listener(self, listener: StatusListener) -> None:
        """Register a callable notified when a product's stock status changes."""
        self._listeners.append(listener)

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    def apply_adjustment(
        self,
        product_id: UUID,
        quantity_change: int,
        movement_type: MovementType | str,
        reason: str,
        actor_id: UUID,
        *,
        unit_cost: Decimal | None = None,
        reference_id: str | None = None,
        reference_type: str | None = None,
        actor_name: str | None = None,
        location: str | None = None,
        batch_number: str | None = None,
        expiry_date: date | None = None,
        notes: str | None = None,
        consume_reservation: bool = False,
    ) -> MovementRecord:
        """
        Apply one stock change and return the committed movement.

        Raises:
            ValidationError, InsufficientStockError, ProductNotFoundError,
            ProductDiscontinuedError, PolicyViolationError: nothing written.
            LockTimeoutError, OptimisticLockError, PersistenceError:
                retryable, nothing written.
            LedgerDivergenceError: movement committed, product quantity
                does not match; a divergence report was recorded.
        """
        request = AdjustmentRequest(
            product_id=product_id,
            quantity_change=quantity_change,
            movement_type=movement_type,
            reason=reason,
            actor_id=actor_id,
            unit_cost=unit_cost,
            reference_id=reference_id,
            reference_type=reference_type,
            actor_name=actor_name,
            location=location,
            batch_number=batch_number,
            expiry_date=expiry_date,
            notes=notes,
            consume_reservation=consume_reservation,
        )
        return self.apply(request)

    def apply(self, request: AdjustmentRequest) -> MovementRecord:
        """Apply a prepared AdjustmentRequest.  See apply_adjustment()."""

        def work(session: Session, outcome: _WriteOutcome) -> None:
            product = ProductService(session).get(request.product_id, for_update=True)
            self._apply_locked(session, product, request, outcome)

        outcome = self._run(
            "apply_adjustment",
            request.product_id,
            request.actor_id,
            work,
            reference_id=request.reference_id,
            extra={
                "movement_type": getattr(
                    request.movement_type, "value", request.movement_type
                ),
                "quantity_change": request.quantity_change,
            },
            precheck=lambda: self._validate_request(request),
        )
        return outcome.movement

    def settle_reference(
        self,
        product_id: UUID,
        reference_type: str,
        reference_id: str,
        target_net: int,
        reason: str,
        actor_id: UUID,
        *,
        outbound_type: MovementType = MovementType.SALE,
        inbound_type: MovementType = MovementType.RETURN,
        consume_reservation: bool = False,
        unit_cost: Decimal | None = None,
        actor_name: str | None = None,
    ) -> MovementRecord | None:
        """
        Bring the net ledger effect of a reference on a product to
        ``target_net``.

        The net already recorded for (reference_type, reference_id) is read
        under the product lock, so repeated calls are idempotent: a second
        call with the same target writes nothing and returns None.  The
        movement type comes from the caller for each direction.
        """
        validate_reason(reason)

        def work(session: Session, outcome: _WriteOutcome) -> None:
            product = ProductService(session).get(product_id, for_update=True)
            net = MovementSelector(session).net_change_for_reference(
                product_id, reference_type, reference_id
            )
            delta = target_net - net
            if delta == 0:
                outcome.levels_before = ProductLevels.from_model(product)
                return
            request = AdjustmentRequest(
                product_id=product_id,
                quantity_change=delta,
                movement_type=outbound_type if delta < 0 else inbound_type,
                reason=reason,
                actor_id=actor_id,
                unit_cost=unit_cost,
                reference_id=reference_id,
                reference_type=reference_type,
                actor_name=actor_name,
                consume_reservation=consume_reservation and delta < 0,
            )
            self._validate_request(request)
            self._apply_locked(session, product, request, outcome)

        outcome = self._run(
            "settle_reference",
            product_id,
            actor_id,
            work,
            reference_id=reference_id,
            extra={"reference_type": reference_type, "target_net": target_net},
        )
        return outcome.movement

    def set_counted_stock(
        self,
        product_id: UUID,
        counted: int,
        actor_id: UUID,
        reason: str = STOCK_COUNT_REASON,
        actor_name: str | None = None,
    ) -> MovementRecord | None:
        """Record the adjustment that brings stock to a physical count."""
        if counted < 0:
            raise ValidationError("counted", "cannot be negative")
        validate_reason(reason)

        def work(session: Session, outcome: _WriteOutcome) -> None:
            product = ProductService(session).get(product_id, for_update=True)
            delta = counted - product.current_stock
            if delta == 0:
                outcome.levels_before = ProductLevels.from_model(product)
                return
            request = AdjustmentRequest(
                product_id=product_id,
                quantity_change=delta,
                movement_type=MovementType.ADJUSTMENT,
                reason=reason,
                actor_id=actor_id,
                actor_name=actor_name,
            )
            self._apply_locked(session, product, request, outcome)

        outcome = self._run(
            "set_counted_stock",
            product_id,
            actor_id,
            work,
            extra={"counted": counted},
        )
        return outcome.movement

    def create_product(
        self,
        sku: str,
        name: str,
        actor_id: UUID,
        *,
        initial_stock: int = 0,
        unit_cost: Decimal | None = None,
        actor_name: str | None = None,
        **details,
    ) -> ProductRecord:
        """
        Create a product and record its initial stock as a ``stock_in``
        movement in the same transaction.

        ``details`` are passed to ProductService.create (category, price,
        cost, min_stock, max_stock, description, supplier, status).
        """
        if initial_stock < 0:
            raise ValidationError("initial_stock", "cannot be negative")
        product_id = uuid4()

        def work(session: Session, outcome: _WriteOutcome) -> None:
            product = ProductService(session).create(
                sku,
                name,
                actor_id,
                self._clock.now(),
                product_id=product_id,
                **details,
            )
            outcome.levels_before = ProductLevels.from_model(product)
            if initial_stock > 0:
                request = AdjustmentRequest(
                    product_id=product_id,
                    quantity_change=initial_stock,
                    movement_type=MovementType.STOCK_IN,
                    reason=INITIAL_STOCK_REASON,
                    actor_id=actor_id,
                    unit_cost=unit_cost if unit_cost is not None else product.cost,
                    actor_name=actor_name,
                )
                self._apply_locked(session, product, request, outcome)
            outcome.product = ProductRecord.from_model(product)

        outcome = self._run(
            "create_product",
            product_id,
            actor_id,
            work,
            extra={"sku": sku, "initial_stock": initial_stock},
        )
        return outcome.product

    def edit_product(
        self,
        product_id: UUID,
        actor_id: UUID,
        changes: Mapping[str, object],
        reason: str = PRODUCT_EDIT_REASON,
        actor_name: str | None = None,
    ) -> ProductRecord:
        """
        Apply a product form edit.

        Descriptive fields and thresholds are written directly.  A changed
        ``current_stock`` is never written as a field: it becomes an
        ``adjustment`` movement in the same transaction.
        """
        changes = dict(changes)
        target_stock = changes.pop("current_stock", None)
        if target_stock is not None and target_stock < 0:
            raise ValidationError("current_stock", "cannot be negative")

        def work(session: Session, outcome: _WriteOutcome) -> None:
            service = ProductService(session)
            product = service.get(product_id, for_update=True)
            outcome.levels_before = ProductLevels.from_model(product)
            service.update_details(product, actor_id, self._clock.now(), **changes)
            if target_stock is not None and target_stock != product.current_stock:
                request = AdjustmentRequest(
                    product_id=product_id,
                    quantity_change=target_stock - product.current_stock,
                    movement_type=MovementType.ADJUSTMENT,
                    reason=reason,
                    actor_id=actor_id,
                    actor_name=actor_name,
                )
                self._validate_request(request)
                self._apply_locked(session, product, request, outcome)
            outcome.product = ProductRecord.from_model(product)

        outcome = self._run(
            "edit_product",
            product_id,
            actor_id,
            work,
            extra={"fields": sorted(changes), "target_stock": target_stock},
        )
        return outcome.product

    # ------------------------------------------------------------------
    # Core write
    # ------------------------------------------------------------------

    def _validate_request(self, request: AdjustmentRequest) -> None:
        movement_type = coerce_movement_type(request.movement_type)
        validate_quantity_change(request.quantity_change)
        validate_direction(movement_type, request.quantity_change)
        validate_reason(request.reason)
        if request.actor_id is None:
            raise ValidationError("actor_id", "is required")
        if request.unit_cost is not None and request.unit_cost < 0:
            raise ValidationError("unit_cost", "must be zero or positive")

    def _apply_locked(
        self,
        session: Session,
        product: Product,
        request: AdjustmentRequest,
        outcome: _WriteOutcome,
    ) -> None:
        """
        Steps 4-7 of the adjustment flow.

        Preconditions: the caller holds the product lock, ``product`` was
            loaded FOR UPDATE in ``session``, and the session is inside
            stock_write_scope().
        """
        if outcome.levels_before is None:
            outcome.levels_before = ProductLevels.from_model(product)

        before = product.current_stock
        after = before + request.quantity_change

        if request.quantity_change < 0 and product.is_discontinued and before == 0:
            raise ProductDiscontinuedError(str(product.id))
        if after < 0:
            raise InsufficientStockError(str(product.id), before, request.quantity_change)

        reserved_after = product.reserved_stock
        if request.consume_reservation and request.quantity_change < 0:
            reserved_after -= self._consume_reservation(session, product, request)
        if reserved_after > after:
            raise PolicyViolationError(
                product_id=str(product.id),
                reason=(
                    f"change of {request.quantity_change} would leave "
                    f"{after} on hand against {reserved_after} reserved"
                ),
                current_stock=before,
                reserved_stock=reserved_after,
                requested=-request.quantity_change,
            )

        now = self._clock.now()
        draft = MovementDraft(
            product_id=product.id,
            movement_type=coerce_movement_type(request.movement_type),
            quantity_change=request.quantity_change,
            quantity_before=before,
            quantity_after=after,
            reason=request.reason,
            actor_id=request.actor_id,
            created_at=now,
            unit_cost=request.unit_cost if request.unit_cost is not None else Decimal("0"),
            reference_id=request.reference_id,
            reference_type=request.reference_type,
            actor_name=request.actor_name,
            location=request.location,
            batch_number=request.batch_number,
            expiry_date=request.expiry_date,
            notes=request.notes,
        )
        movement_id = MovementLog(session).append(draft)

        product.current_stock = after
        product.reserved_stock = reserved_after
        product.updated_at = now
        product.updated_by_id = request.actor_id
        session.flush()

        outcome.movement_id = movement_id

    def _consume_reservation(
        self,
        session: Session,
        product: Product,
        request: AdjustmentRequest,
    ) -> int:
        """Release up to the outbound quantity from the matching active hold."""
        if request.reference_type is None or request.reference_id is None:
            return 0
        reservation = session.execute(
            select(StockReservation)
            .where(
                StockReservation.product_id == product.id,
                StockReservation.reference_type == request.reference_type,
                StockReservation.reference_id == request.reference_id,
                StockReservation.status == ReservationStatus.ACTIVE.value,
            )
            .with_for_update()
        ).scalar_one_or_none()
        if reservation is None:
            return 0

        consumed = min(reservation.quantity, -request.quantity_change)
        if consumed == reservation.quantity:
            reservation.status = ReservationStatus.CONSUMED.value
            reservation.closed_at = self._clock.now()
        else:
            reservation.quantity -= consumed
        logger.info(
            "reservation_consumed",
            extra={"reservation_id": str(reservation.id), "quantity": consumed},
        )
        return consumed

    # ------------------------------------------------------------------
    # Transaction, verification and logging
    # ------------------------------------------------------------------

    def _run(
        self,
        operation: str,
        product_id: UUID,
        actor_id: UUID | None,
        work: Callable[[Session, _WriteOutcome], None],
        reference_id: str | None = None,
        extra: dict | None = None,
        precheck: Callable[[], None] | None = None,
    ) -> _WriteOutcome:
        extra = extra or {}
        with LogContext.bind(
            correlation_id=str(uuid4()),
            product_id=product_id,
            actor_id=actor_id,
            reference_id=reference_id,
            operation=operation,
        ):
            logger.info("adjustment_started", extra=extra)
            t0 = time.monotonic()
            try:
                if precheck is not None:
                    precheck()
                with self._locks.hold(product_id):
                    outcome = self._execute(product_id, work)
            except _REJECTIONS as exc:
                logger.warning(
                    "adjustment_rejected",
                    extra={
                        "error_code": exc.code,
                        "error": str(exc),
                        "duration_ms": round((time.monotonic() - t0) * 1000, 2),
                    },
                )
                raise
            except StockLedgerError as exc:
                logger.error(
                    "adjustment_failed",
                    extra={
                        "error_code": exc.code,
                        "retryable": exc.retryable,
                        "duration_ms": round((time.monotonic() - t0) * 1000, 2),
                    },
                    exc_info=True,
                )
                raise

            logger.info(
                "adjustment_committed",
                extra={
                    "movement_id": str(outcome.movement_id) if outcome.movement_id else None,
                    "quantity_before": outcome.movement.quantity_before if outcome.movement else None,
                    "quantity_after": outcome.movement.quantity_after if outcome.movement else None,
                    "duration_ms": round((time.monotonic() - t0) * 1000, 2),
                },
            )
            self._evaluate_status(outcome)
        return outcome

    def _execute(
        self,
        product_id: UUID,
        work: Callable[[Session, _WriteOutcome], None],
    ) -> _WriteOutcome:
        outcome = _WriteOutcome(product_id=product_id)
        session = self._session_factory()
        try:
            with stock_write_scope(session):
                try:
                    work(session, outcome)
                except StaleDataError as exc:
                    session.rollback()
                    raise OptimisticLockError("Product", str(product_id)) from exc
                except StockLedgerError:
                    session.rollback()
                    raise
                except SQLAlchemyError as exc:
                    session.rollback()
                    raise PersistenceError("write", str(exc)) from exc

                try:
                    self._commit(session)
                except SQLAlchemyError as exc:
                    self._rollback_quietly(session)
                    logger.warning(
                        "adjustment_commit_ambiguous",
                        extra={"error": str(exc)},
                    )
                    if outcome.movement_id is None:
                        raise PersistenceError("commit", str(exc)) from exc
                    return self._verify_write(outcome, commit_error=exc)
        finally:
            session.close()

        if outcome.movement_id is None:
            return outcome
        if not self._verify_writes:
            return self._load_committed(outcome)
        return self._verify_write(outcome)

    def _commit(self, session: Session) -> None:
        """Commit the unit of work (the point where steps 7 and 8 become durable)."""
        session.commit()

    @staticmethod
    def _rollback_quietly(session: Session) -> None:
        try:
            session.rollback()
        except SQLAlchemyError:
            logger.warning("adjustment_rollback_failed", exc_info=True)

    def _load_committed(self, outcome: _WriteOutcome) -> _WriteOutcome:
        session = self._session_factory()
        try:
            movement = session.get(StockMovement, outcome.movement_id)
            product = session.get(Product, outcome.product_id)
            return replace(
                outcome,
                movement=MovementRecord.from_model(movement),
                product=outcome.product or ProductRecord.from_model(product),
            )
        finally:
            session.close()

    def _verify_write(
        self,
        outcome: _WriteOutcome,
        commit_error: Exception | None = None,
    ) -> _WriteOutcome:
        """
        Re-read the movement and product after commit.

        After an ambiguous commit failure this doubles as the commit check:
        movement absent -> nothing was written (PersistenceError);
        movement present and product consistent -> the commit succeeded.

        The product lock is process-local, so another process may already
        have committed a later movement.  The product is therefore compared
        with the newest movement in its log, not with this one.  Any
        mismatch is a divergence, recorded after the verify session closes.
        """
        session = self._session_factory()
        try:
            try:
                row = session.get(StockMovement, outcome.movement_id)
                movement = MovementRecord.from_model(row) if row is not None else None
                product = ProductSelector(session).get(outcome.product_id)
                latest = MovementSelector(session).latest(outcome.product_id)
                divergent = InventorySelector(session).has_open_divergence(outcome.product_id)
            except SQLAlchemyError as exc:
                raise PersistenceError("verify", str(exc)) from exc
        finally:
            session.close()

        if movement is None:
            detail = str(commit_error) if commit_error else "movement missing after commit"
            raise PersistenceError("commit", detail) from commit_error

        head = latest or movement
        actual = product.current_stock if product is not None else None
        if (
            product is None
            or actual != head.quantity_after
            or product.movement_seq != head.sequence
        ):
            report_id = self._report_divergence(
                product_id=outcome.product_id,
                expected=head.quantity_after,
                actual=actual,
                movement_id=head.id,
                detail=(
                    f"movement #{head.sequence} committed with quantity_after="
                    f"{head.quantity_after}, product stores {actual}"
                ),
            )
            raise LedgerDivergenceError(
                product_id=str(outcome.product_id),
                expected=head.quantity_after,
                actual=actual,
                movement_id=str(head.id),
                report_id=str(report_id) if report_id else None,
            )

        if head.sequence != movement.sequence:
            logger.info(
                "adjustment_superseded",
                extra={"sequence": movement.sequence, "latest_sequence": head.sequence},
            )
        if commit_error is not None:
            logger.warning(
                "adjustment_commit_confirmed",
                extra={"movement_id": str(movement.id)},
            )
        return replace(
            outcome,
            movement=movement,
            product=product,
            divergent=divergent,
        )

    def _report_divergence(
        self,
        product_id: UUID,
        expected: int,
        actual: int | None,
        movement_id: UUID | None,
        detail: str,
    ) -> UUID | None:
        logger.error(
            "ledger_divergence_detected",
            extra={
                "expected": expected,
                "actual": actual,
                "movement_id": str(movement_id) if movement_id else None,
                "source": DivergenceSource.WRITE_PATH.value,
            },
        )
        session = self._session_factory()
        try:
            report = DivergenceReporter(session).record(
                product_id=product_id,
                expected=expected,
                actual=actual,
                source=DivergenceSource.WRITE_PATH,
                detected_at=self._clock.now(),
                movement_id=movement_id,
                detail=detail,
            )
            session.commit()
            return report.id
        except SQLAlchemyError:
            session.rollback()
            logger.exception("divergence_report_failed")
            return None
        finally:
            session.close()

    def _evaluate_status(self, outcome: _WriteOutcome) -> None:
        """Re-classify on-hand stock and notify listeners on a change."""
        if outcome.levels_before is None or outcome.product is None:
            return
        if outcome.divergent:
            logger.warning("status_evaluation_skipped_divergent")
            return

        previous = classify(outcome.levels_before, critical_ratio=self._critical_ratio)
        current = classify(outcome.product.levels, critical_ratio=self._critical_ratio)
        if previous == current:
            return

        logger.info(
            "stock_status_changed",
            extra={"previous_status": previous.value, "new_status": current.value},
        )
        if current in ALERT_STATUSES:
            logger.warning(
                "low_stock_alert",
                extra={
                    "sku": outcome.product.sku,
                    "stock_status": current.value,
                    "current_stock": outcome.product.current_stock,
                    "min_stock": outcome.product.min_stock,
                },
            )

        change = StockStatusChange(
            product_id=outcome.product_id,
            sku=outcome.product.sku,
            previous=previous,
            current=current,
            current_stock=outcome.product.current_stock,
            movement_id=outcome.movement.id if outcome.movement else None,
        )
        for listener in list(self._listeners):
            try:
                listener(change)
            except Exception:
                logger.exception(
                    "status_listener_failed",
                    extra={"listener": getattr(listener, "__name__", repr(listener))},
                )
