"""
StockLedger -- the outward API of the ledger.

Responsibility:
    Wires the engine, reservation, reconciliation and order services around
    one session factory, one lock registry and one clock, and exposes the
    operations callers use: adjustments, projection, reconciliation,
    classification, reservation checks, movement history, the product
    catalog, order transitions and inventory reports.

Architecture position:
    Ledger > Services -- composition root for callers that do not build the
    services themselves (see ledger_config.bridges for config-driven wiring).
"""

from __future__ import annotations

from contextlib import contextmanager
from datetime import date, datetime
from decimal import Decimal
from typing import Iterable, Iterator, Mapping
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from stock_ledger.db.engine import session_scope
from stock_ledger.domain import policy, projector
from stock_ledger.domain.clock import Clock, SystemClock
from stock_ledger.domain.dtos import (
    DivergenceReportRecord,
    InventorySummary,
    MovementRecord,
    MovementTotals,
    MovementType,
    OrderSnapshot,
    ProductRecord,
    ProductSales,
    ProductStatus,
    ReconciliationResult,
    ReservationRecord,
    StockBasis,
    StockStatus,
)
from stock_ledger.exceptions import (
    LedgerDivergenceError,
    PersistenceError,
    ProductNotFoundError,
)
from stock_ledger.models.divergence import ResolutionAction
from stock_ledger.selectors.inventory_selector import InventorySelector
from stock_ledger.selectors.movement_selector import MovementSelector
from stock_ledger.selectors.product_selector import ProductSelector
from stock_ledger.services.adjustment_engine import AdjustmentEngine, StatusListener
from stock_ledger.services.locking import DEFAULT_LOCK_TIMEOUT_SECONDS, ProductLockRegistry
from stock_ledger.services.order_fulfillment import OrderStockHandler
from stock_ledger.services.product_service import ProductService
from stock_ledger.services.reconciliation_service import ReconciliationService
from stock_ledger.services.reservation_service import ReservationService


class StockLedger:
    """
    Facade over the stock ledger services.

    Usage:
        ledger = StockLedger(get_session_factory())
        product = ledger.create_product("WHD-001", "Widget", actor_id,
                                        initial_stock=20, min_stock=20,
                                        max_stock=100)
        ledger.apply_adjustment(product.id, -3, MovementType.SALE,
                                "Counter sale", actor_id)
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        clock: Clock | None = None,
        locks: ProductLockRegistry | None = None,
        critical_ratio: Decimal = policy.DEFAULT_CRITICAL_RATIO,
        lock_timeout_seconds: float = DEFAULT_LOCK_TIMEOUT_SECONDS,
        listeners: Iterable[StatusListener] = (),
        verify_writes: bool = True,
        default_basis: StockBasis = StockBasis.ON_HAND,
    ):
        self._session_factory = session_factory
        self._default_basis = StockBasis(default_basis)
        self._clock = clock or SystemClock()
        self._locks = locks or ProductLockRegistry(lock_timeout_seconds)
        self._critical_ratio = critical_ratio

        self.engine = AdjustmentEngine(
            session_factory,
            locks=self._locks,
            clock=self._clock,
            critical_ratio=critical_ratio,
            listeners=listeners,
            verify_writes=verify_writes,
        )
        self.reservations = ReservationService(session_factory, self._locks, self._clock)
        self.reconciliation = ReconciliationService(session_factory, self._locks, self._clock)
        self.orders = OrderStockHandler(self.engine, self.reservations)

    @property
    def default_basis(self) -> StockBasis:
        return self._default_basis

    @property
    def critical_ratio(self) -> Decimal:
        return self._critical_ratio

    @contextmanager
    def _read(self) -> Iterator[Session]:
        session = self._session_factory()
        try:
            yield session
        except SQLAlchemyError as exc:
            raise PersistenceError("read", str(exc)) from exc
        finally:
            session.close()

    def _product(self, session: Session, product_id: UUID) -> ProductRecord:
        record = ProductSelector(session).get(product_id)
        if record is None:
            raise ProductNotFoundError(str(product_id))
        return record

    # ------------------------------------------------------------------
    # Core ledger API
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
    ) -> MovementRecord:
        return self.engine.apply_adjustment(
            product_id,
            quantity_change,
            movement_type,
            reason,
            actor_id,
            unit_cost=unit_cost,
            reference_id=reference_id,
            reference_type=reference_type,
            actor_name=actor_name,
            location=location,
            batch_number=batch_number,
            expiry_date=expiry_date,
            notes=notes,
        )

    def project(
        self,
        product_id: UUID,
        baseline: int | None = None,
        movements: Iterable[MovementRecord] | None = None,
    ) -> int:
        """
        Projected stock of a product.

        With ``movements`` given this is the pure fold; otherwise the
        product's baseline and full log are read (a possibly stale snapshot,
        never a write baseline).
        """
        if movements is not None:
            return projector.project(product_id, baseline or 0, movements)
        with self._read() as session:
            product = self._product(session, product_id)
            start = product.baseline_stock if baseline is None else baseline
            return projector.project(
                product_id, start, MovementSelector(session).iter_by_product(product_id)
            )

    def reconcile(self, product_id: UUID) -> ReconciliationResult:
        return self.reconciliation.check_product(product_id)

    def classify(
        self,
        product_id: UUID,
        basis: StockBasis | None = None,
    ) -> StockStatus:
        """
        Classify a product's stock.

        Raises:
            LedgerDivergenceError: the product has an open divergence report
                and is excluded from classification until it is resolved.
        """
        with self._read() as session:
            product = self._product(session, product_id)
            reports = InventorySelector(session).open_divergence_reports(product_id)
        if reports:
            raise LedgerDivergenceError(
                product_id=str(product_id),
                expected=reports[0].expected,
                actual=reports[0].actual,
                report_id=str(reports[0].id),
            )
        return policy.classify(product.levels, basis or self._default_basis, self._critical_ratio)

    def can_reserve(self, product_id: UUID, requested: int) -> bool:
        with self._read() as session:
            product = self._product(session, product_id)
        return policy.can_reserve(product.levels, requested)

    def list_by_product(
        self,
        product_id: UUID,
        after_sequence: int | None = None,
        limit: int | None = None,
    ) -> list[MovementRecord]:
        with self._read() as session:
            return MovementSelector(session).list_by_product(
                product_id, after_sequence=after_sequence, limit=limit
            )

    # ------------------------------------------------------------------
    # Catalog
    # ------------------------------------------------------------------

    def create_product(self, sku: str, name: str, actor_id: UUID, **kwargs) -> ProductRecord:
        return self.engine.create_product(sku, name, actor_id, **kwargs)

    def edit_product(
        self,
        product_id: UUID,
        actor_id: UUID,
        changes: Mapping[str, object],
        actor_name: str | None = None,
    ) -> ProductRecord:
        return self.engine.edit_product(product_id, actor_id, changes, actor_name=actor_name)

    def get_product(self, product_id: UUID) -> ProductRecord:
        with self._read() as session:
            return self._product(session, product_id)

    def get_product_by_sku(self, sku: str) -> ProductRecord:
        with self._read() as session:
            record = ProductSelector(session).get_by_sku(sku)
        if record is None:
            raise ProductNotFoundError(sku)
        return record

    def list_products(
        self,
        category: str | None = None,
        status: ProductStatus | None = None,
    ) -> list[ProductRecord]:
        with self._read() as session:
            return ProductSelector(session).list_products(category=category, status=status)

    def categories(self) -> list[str]:
        with self._read() as session:
            return ProductSelector(session).categories()

    def set_product_status(
        self,
        product_id: UUID,
        status: ProductStatus,
        actor_id: UUID,
    ) -> ProductRecord:
        """Soft lifecycle change; products with history are never deleted."""
        with session_scope(self._session_factory, immediate=True) as session:
            service = ProductService(session)
            product = service.get(product_id)
            service.set_status(product, status, actor_id, self._clock.now())
            return ProductRecord.from_model(product)

    def deactivate_product(self, product_id: UUID, actor_id: UUID) -> ProductRecord:
        return self.set_product_status(product_id, ProductStatus.INACTIVE, actor_id)

    def discontinue_product(self, product_id: UUID, actor_id: UUID) -> ProductRecord:
        return self.set_product_status(product_id, ProductStatus.DISCONTINUED, actor_id)

    def delete_product(self, product_id: UUID) -> None:
        """Delete a product that was never stocked (ProductInUseError otherwise)."""
        with self._locks.hold(product_id):
            with session_scope(self._session_factory, immediate=True) as session:
                ProductService(session).delete(product_id)

    def set_counted_stock(
        self,
        product_id: UUID,
        counted: int,
        actor_id: UUID,
        reason: str | None = None,
    ) -> MovementRecord | None:
        if reason is None:
            return self.engine.set_counted_stock(product_id, counted, actor_id)
        return self.engine.set_counted_stock(product_id, counted, actor_id, reason=reason)

    def stock_level_percent(self, product_id: UUID) -> int:
        return policy.stock_level_percent(self.get_product(product_id).levels)

    # ------------------------------------------------------------------
    # Reservations and orders
    # ------------------------------------------------------------------

    def reserve(
        self,
        product_id: UUID,
        quantity: int,
        reference_type: str,
        reference_id: str,
        actor_id: UUID,
        expires_at: datetime | None = None,
    ) -> ReservationRecord:
        return self.reservations.reserve(
            product_id, quantity, reference_type, reference_id, actor_id, expires_at
        )

    def release(self, reservation_id: UUID, actor_id: UUID) -> ReservationRecord:
        return self.reservations.release(reservation_id, actor_id)

    def expire_reservations(self, actor_id: UUID) -> list[UUID]:
        return self.reservations.expire_due(actor_id)

    def handle_order_transition(
        self,
        order: OrderSnapshot,
        previous_status: str | None,
        new_status: str,
        actor_id: UUID,
        actor_name: str | None = None,
    ) -> list[MovementRecord]:
        return self.orders.handle_transition(
            order, previous_status, new_status, actor_id, actor_name
        )

    # ------------------------------------------------------------------
    # Reports
    # ------------------------------------------------------------------

    def low_stock_report(self) -> list[ProductRecord]:
        with self._read() as session:
            return InventorySelector(session).low_stock_report(self._critical_ratio)

    def inventory_summary(self) -> InventorySummary:
        with self._read() as session:
            return InventorySelector(session).summary(self._critical_ratio)

    def recent_movements(self, limit: int = 10) -> list[MovementRecord]:
        with self._read() as session:
            return MovementSelector(session).recent(limit)

    def movements_for_reference(
        self,
        reference_type: str,
        reference_id: str,
    ) -> list[MovementRecord]:
        with self._read() as session:
            return MovementSelector(session).list_by_reference(reference_type, reference_id)

    def movement_totals(
        self,
        product_id: UUID | None = None,
        since: datetime | None = None,
    ) -> list[MovementTotals]:
        with self._read() as session:
            return MovementSelector(session).totals_by_type(product_id, since)

    def bestsellers(
        self,
        limit: int = 10,
        since: datetime | None = None,
    ) -> list[ProductSales]:
        """Products ranked by net units sold (sales less returns)."""
        with self._read() as session:
            return MovementSelector(session).bestsellers(limit, since)

    # ------------------------------------------------------------------
    # Divergence
    # ------------------------------------------------------------------

    def scan_divergences(self) -> list[ReconciliationResult]:
        return self.reconciliation.scan()

    def open_divergence_reports(
        self,
        product_id: UUID | None = None,
    ) -> list[DivergenceReportRecord]:
        with self._read() as session:
            return InventorySelector(session).open_divergence_reports(product_id)

    def resolve_divergence(
        self,
        report_id: UUID,
        action: ResolutionAction,
        actor_id: UUID,
        note: str | None = None,
    ) -> ReconciliationResult:
        return self.reconciliation.resolve(report_id, action, actor_id, note)
