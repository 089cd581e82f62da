"""
ReservationService -- soft holds against available stock.

Responsibility:
    Reserves stock for a reference (normally an order), releases it on
    cancellation, and expires holds whose deadline passed.  Consumption at
    fulfillment happens inside the adjustment engine's transaction, next to
    the sale movement.

Architecture position:
    Ledger > Services -- owns its transactions, holds the product lock for
    every write so reserved_stock never races an adjustment.

Invariants enforced:
    - 0 <= reserved_stock <= current_stock; violations raise
      PolicyViolationError before reserved_stock changes.
    - One ACTIVE reservation per (product, reference); reserving again for
      the same reference grows it.
    - Sum of ACTIVE reservation quantities == Product.reserved_stock.
"""

from contextlib import contextmanager
from datetime import datetime
from typing import Iterator
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from stock_ledger.db.immutability import stock_write_scope
from stock_ledger.domain.clock import Clock, SystemClock
from stock_ledger.domain.dtos import ProductLevels, ReservationRecord
from stock_ledger.domain.policy import can_reserve
from stock_ledger.exceptions import (
    OptimisticLockError,
    PersistenceError,
    PolicyViolationError,
    ReservationNotFoundError,
    StockLedgerError,
    ValidationError,
)
from stock_ledger.logging_config import LogContext, get_logger
from stock_ledger.models.product import Product
from stock_ledger.models.reservation import ReservationStatus, StockReservation
from stock_ledger.services.locking import ProductLockRegistry
from stock_ledger.services.product_service import ProductService

logger = get_logger("services.reservation")


class ReservationService:
    """Reserve, release and expire stock holds."""

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        locks: ProductLockRegistry | None = None,
        clock: Clock | None = None,
    ):
        self._session_factory = session_factory
        self._locks = locks or ProductLockRegistry()
        self._clock = clock or SystemClock()

    @contextmanager
    def _locked_transaction(self, product_id: UUID) -> Iterator[Session]:
        with self._locks.hold(product_id):
            session = self._session_factory()
            try:
                with stock_write_scope(session):
                    try:
                        yield session
                        session.commit()
                    except StaleDataError as exc:
                        session.rollback()
                        raise OptimisticLockError("Product", str(product_id)) from exc
                    except StockLedgerError:
                        session.rollback()
                        raise
                    except SQLAlchemyError as exc:
                        session.rollback()
                        raise PersistenceError("reservation", str(exc)) from exc
            finally:
                session.close()

    @staticmethod
    def _active_for_reference(
        session: Session,
        product_id: UUID,
        reference_type: str,
        reference_id: str,
    ) -> StockReservation | None:
        return session.execute(
            select(StockReservation)
            .where(
                StockReservation.product_id == product_id,
                StockReservation.reference_type == reference_type,
                StockReservation.reference_id == reference_id,
                StockReservation.status == ReservationStatus.ACTIVE.value,
            )
            .with_for_update()
        ).scalar_one_or_none()

    def reserve(
        self,
        product_id: UUID,
        quantity: int,
        reference_type: str,
        reference_id: str,
        actor_id: UUID,
        expires_at: datetime | None = None,
    ) -> ReservationRecord:
        """
        Hold ``quantity`` units of available stock for a reference.

        Raises:
            ValidationError: quantity not positive, reference or actor missing.
            PolicyViolationError: not enough available stock, or the product
                is not active.
        """
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
            raise ValidationError("quantity", "must be a positive integer")
        if not reference_type or not reference_id:
            raise ValidationError("reference", "reference_type and reference_id are required")
        if actor_id is None:
            raise ValidationError("actor_id", "is required")

        with LogContext.bind(
            product_id=product_id,
            actor_id=actor_id,
            reference_id=reference_id,
            operation="reserve",
        ):
            with self._locked_transaction(product_id) as session:
                product = ProductService(session).get(product_id, for_update=True)
                if not product.is_active:
                    raise PolicyViolationError(
                        product_id=str(product_id),
                        reason=f"product is {product.status}",
                        current_stock=product.current_stock,
                        reserved_stock=product.reserved_stock,
                        requested=quantity,
                    )
                if not can_reserve(ProductLevels.from_model(product), quantity):
                    logger.warning(
                        "reservation_rejected",
                        extra={
                            "requested": quantity,
                            "available": product.available_stock,
                        },
                    )
                    raise PolicyViolationError(
                        product_id=str(product_id),
                        reason=(
                            f"requested {quantity} but only "
                            f"{product.available_stock} available"
                        ),
                        current_stock=product.current_stock,
                        reserved_stock=product.reserved_stock,
                        requested=quantity,
                    )

                now = self._clock.now()
                reservation = self._active_for_reference(
                    session, product_id, reference_type, reference_id
                )
                if reservation is None:
                    reservation = StockReservation(
                        product_id=product_id,
                        reference_type=reference_type,
                        reference_id=reference_id,
                        quantity=quantity,
                        status=ReservationStatus.ACTIVE.value,
                        expires_at=expires_at,
                        actor_id=actor_id,
                        created_at=now,
                    )
                    session.add(reservation)
                else:
                    reservation.quantity += quantity
                    if expires_at is not None:
                        reservation.expires_at = expires_at

                product.reserved_stock += quantity
                product.updated_at = now
                product.updated_by_id = actor_id
                session.flush()
                record = ReservationRecord.from_model(reservation)

            logger.info(
                "stock_reserved",
                extra={
                    "reservation_id": str(record.id),
                    "quantity": quantity,
                    "reserved_total": record.quantity,
                },
            )
        return record

    def release(self, reservation_id: UUID, actor_id: UUID) -> ReservationRecord:
        """
        Release an active reservation in full.

        Raises:
            ReservationNotFoundError: unknown id or not ACTIVE.
        """
        session = self._session_factory()
        try:
            reservation = session.get(StockReservation, reservation_id)
            if reservation is None or not reservation.is_active:
                raise ReservationNotFoundError(str(reservation_id))
            product_id = reservation.product_id
        finally:
            session.close()

        with LogContext.bind(product_id=product_id, actor_id=actor_id, operation="release"):
            with self._locked_transaction(product_id) as session:
                reservation = session.execute(
                    select(StockReservation)
                    .where(StockReservation.id == reservation_id)
                    .with_for_update()
                ).scalar_one_or_none()
                if reservation is None or not reservation.is_active:
                    raise ReservationNotFoundError(str(reservation_id), str(product_id))
                product = ProductService(session).get(product_id, for_update=True)
                self._close(product, reservation, ReservationStatus.RELEASED, actor_id)
                session.flush()
                record = ReservationRecord.from_model(reservation)
            logger.info(
                "reservation_released",
                extra={"reservation_id": str(reservation_id), "quantity": record.quantity},
            )
        return record

    def release_for_reference(
        self,
        product_id: UUID,
        reference_type: str,
        reference_id: str,
        actor_id: UUID,
    ) -> int:
        """Release the active hold of a reference on a product.  Returns the quantity released."""
        with LogContext.bind(
            product_id=product_id,
            actor_id=actor_id,
            reference_id=reference_id,
            operation="release_for_reference",
        ):
            with self._locked_transaction(product_id) as session:
                reservation = self._active_for_reference(
                    session, product_id, reference_type, reference_id
                )
                if reservation is None:
                    return 0
                product = ProductService(session).get(product_id, for_update=True)
                released = reservation.quantity
                self._close(product, reservation, ReservationStatus.RELEASED, actor_id)
                session.flush()
            logger.info("reservation_released", extra={"quantity": released})
        return released

    def expire_due(self, actor_id: UUID) -> list[UUID]:
        """Expire every active reservation whose expires_at has passed."""
        now = self._clock.now()
        session = self._session_factory()
        try:
            due = session.execute(
                select(StockReservation.id, StockReservation.product_id).where(
                    StockReservation.status == ReservationStatus.ACTIVE.value,
                    StockReservation.expires_at.is_not(None),
                    StockReservation.expires_at <= now,
                )
            ).all()
        finally:
            session.close()

        expired = []
        for reservation_id, product_id in due:
            with self._locked_transaction(product_id) as session:
                reservation = session.execute(
                    select(StockReservation)
                    .where(StockReservation.id == reservation_id)
                    .with_for_update()
                ).scalar_one_or_none()
                if reservation is None or not reservation.is_active:
                    continue
                product = ProductService(session).get(product_id, for_update=True)
                self._close(product, reservation, ReservationStatus.EXPIRED, actor_id)
                session.flush()
            expired.append(reservation_id)

        if expired:
            logger.info("reservations_expired", extra={"count": len(expired)})
        return expired

    def _close(
        self,
        product: Product,
        reservation: StockReservation,
        status: ReservationStatus,
        actor_id: UUID,
    ) -> None:
        if product.reserved_stock < reservation.quantity:
            raise PolicyViolationError(
                product_id=str(product.id),
                reason=(
                    f"releasing {reservation.quantity} would drive reserved stock "
                    f"({product.reserved_stock}) negative"
                ),
                current_stock=product.current_stock,
                reserved_stock=product.reserved_stock,
                requested=reservation.quantity,
            )
        now = self._clock.now()
        product.reserved_stock -= reservation.quantity
        product.updated_at = now
        product.updated_by_id = actor_id
        reservation.status = status.value
        reservation.closed_at = now
