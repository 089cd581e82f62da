"""
Reconciliation -- detect, record and resolve ledger divergence.

Responsibility:
    DivergenceReporter persists StockDivergenceReport rows (flush-only).
    ReconciliationService compares stored stock with the movement log
    projection for one product or all products, records what it finds, and
    applies the human decision that closes a report.

Architecture position:
    Ledger > Services.  ReconciliationService owns its transactions and
    takes the product lock for resolution writes; checks are read-only.

Invariants enforced:
    - Detection never corrects anything.  A mismatch becomes an open report
      and the product drops out of automatic status classification.
    - Resolution is explicit and attributed:
        RESYNC_PRODUCT  sets current_stock to the projection.
        ACCEPT_STORED   keeps current_stock and appends an offsetting
                        ``adjustment`` movement so the log projects it.
    - Identical open findings are recorded once.

Failure modes:
    - LedgerDivergenceError from assert_consistent().
    - DivergenceReportNotFoundError when resolving a missing or closed report.
    - ValidationError when a resync target is negative.
    - PolicyViolationError when a resync would drop stock below reserved.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from stock_ledger.db.immutability import stock_write_scope
from stock_ledger.domain.clock import Clock, SystemClock
from stock_ledger.domain.dtos import (
    DivergenceReportRecord,
    MovementDraft,
    MovementType,
    ReconciliationResult,
)
from stock_ledger.domain.projector import reconcile
from stock_ledger.exceptions import (
    DivergenceReportNotFoundError,
    LedgerDivergenceError,
    PersistenceError,
    PolicyViolationError,
    ProductNotFoundError,
    StockLedgerError,
    ValidationError,
)
from stock_ledger.logging_config import LogContext, get_logger
from stock_ledger.models.divergence import (
    DivergenceSource,
    ResolutionAction,
    StockDivergenceReport,
)
from stock_ledger.models.product import Product
from stock_ledger.selectors.movement_selector import MovementSelector
from stock_ledger.services.base import BaseService
from stock_ledger.services.locking import ProductLockRegistry
from stock_ledger.services.movement_log import MovementLog

logger = get_logger("services.reconciliation")

ACCEPT_STORED_REASON = "Divergence resolution: accept stored stock"


class DivergenceReporter(BaseService[StockDivergenceReport]):
    """Flush-only writer for divergence reports."""

    def record(
        self,
        product_id: UUID,
        expected: int,
        actual: int | None,
        source: DivergenceSource,
        detected_at: datetime,
        movement_id: UUID | None = None,
        detail: str | None = None,
    ) -> StockDivergenceReport:
        """Persist a finding, or return the identical open report."""
        if actual is None:
            same_actual = StockDivergenceReport.actual.is_(None)
        else:
            same_actual = StockDivergenceReport.actual == actual
        existing = self.session.execute(
            select(StockDivergenceReport).where(
                StockDivergenceReport.product_id == product_id,
                StockDivergenceReport.expected == expected,
                same_actual,
                StockDivergenceReport.resolved_at.is_(None),
            )
        ).scalars().first()
        if existing is not None:
            return existing

        report = StockDivergenceReport(
            product_id=product_id,
            expected=expected,
            actual=actual,
            movement_id=movement_id,
            source=DivergenceSource(source).value,
            detail=detail,
            detected_at=detected_at,
        )
        self.session.add(report)
        self.session.flush()

        logger.error(
            "ledger_divergence_recorded",
            extra={
                "report_id": str(report.id),
                "product_id": str(product_id),
                "expected": expected,
                "actual": actual,
                "source": report.source,
            },
        )
        return report


class ReconciliationService:
    """Checks stored stock against the movement log and resolves findings."""

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        locks: ProductLockRegistry | None = None,
        clock: Clock | None = None,
    ):
        self._session_factory = session_factory
        self._locks = locks or ProductLockRegistry()
        self._clock = clock or SystemClock()

    # ------------------------------------------------------------------
    # Detection
    # ------------------------------------------------------------------

    @staticmethod
    def _check(session: Session, product: Product) -> ReconciliationResult:
        movements = MovementSelector(session).iter_by_product(product.id)
        return reconcile(product, movements)

    def check_product(self, product_id: UUID) -> ReconciliationResult:
        """Compare one product with its log.  Read-only; takes no lock."""
        session = self._session_factory()
        try:
            product = session.get(Product, product_id)
            if product is None:
                raise ProductNotFoundError(str(product_id))
            return self._check(session, product)
        except SQLAlchemyError as exc:
            raise PersistenceError("reconcile", str(exc)) from exc
        finally:
            session.close()

    def assert_consistent(self, product_id: UUID) -> ReconciliationResult:
        """
        Check one product and record a report on mismatch.

        Raises:
            LedgerDivergenceError: carrying the persisted report id.
        """
        result = self.check_product(product_id)
        if result.consistent:
            return result
        report = self._record(result)
        raise LedgerDivergenceError(
            product_id=str(product_id),
            expected=result.expected,
            actual=result.actual,
            report_id=str(report.id),
        )

    def scan(self, record: bool = True) -> list[ReconciliationResult]:
        """
        Check every product; return the inconsistent results.

        Each product is read in its own session so one large log does not
        hold a long transaction over the whole catalog.
        """
        session = self._session_factory()
        try:
            product_ids = session.execute(select(Product.id).order_by(Product.sku)).scalars().all()
        finally:
            session.close()

        logger.info("reconciliation_scan_started", extra={"product_count": len(product_ids)})
        findings = []
        for product_id in product_ids:
            try:
                result = self.check_product(product_id)
            except ProductNotFoundError:
                continue
            if result.consistent:
                continue
            findings.append(result)
            if record:
                self._record(result)

        logger.info(
            "reconciliation_scan_completed",
            extra={"product_count": len(product_ids), "divergent_count": len(findings)},
        )
        return findings

    def _record(self, result: ReconciliationResult) -> DivergenceReportRecord:
        detail = f"{result.movement_count} movement(s)"
        if result.chain_breaks:
            detail += ", chain breaks at " + ", ".join(
                f"#{b.sequence} (expected before {b.expected_before}, recorded {b.recorded_before})"
                for b in result.chain_breaks
            )
        session = self._session_factory()
        try:
            report = DivergenceReporter(session).record(
                product_id=result.product_id,
                expected=result.expected,
                actual=result.actual,
                source=DivergenceSource.RECONCILIATION,
                detected_at=self._clock.now(),
                detail=detail,
            )
            session.commit()
            return DivergenceReportRecord.from_model(report)
        except SQLAlchemyError as exc:
            session.rollback()
            raise PersistenceError("record_divergence", str(exc)) from exc
        finally:
            session.close()

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    def resolve(
        self,
        report_id: UUID,
        action: ResolutionAction,
        actor_id: UUID,
        note: str | None = None,
    ) -> ReconciliationResult:
        """
        Close an open report (and any other open report of the same product)
        with a human decision.  Returns the post-resolution check.
        """
        action = ResolutionAction(action)
        if actor_id is None:
            raise ValidationError("actor_id", "is required")

        session = self._session_factory()
        try:
            report = session.get(StockDivergenceReport, report_id)
            if report is None or not report.is_open:
                raise DivergenceReportNotFoundError(str(report_id))
            product_id = report.product_id
        finally:
            session.close()

        with LogContext.bind(
            product_id=product_id,
            actor_id=actor_id,
            operation="resolve_divergence",
        ):
            with self._locks.hold(product_id):
                self._resolve_locked(report_id, product_id, action, actor_id, note)
            logger.info(
                "divergence_resolved",
                extra={"report_id": str(report_id), "resolution": action.value},
            )
        return self.check_product(product_id)

    def _resolve_locked(
        self,
        report_id: UUID,
        product_id: UUID,
        action: ResolutionAction,
        actor_id: UUID,
        note: str | None,
    ) -> None:
        session = self._session_factory()
        try:
            with stock_write_scope(session):
                try:
                    report = session.get(StockDivergenceReport, report_id)
                    if report is None or not report.is_open:
                        raise DivergenceReportNotFoundError(str(report_id))

                    product = session.execute(
                        select(Product)
                        .where(Product.id == product_id)
                        .with_for_update()
                        .execution_options(populate_existing=True)
                    ).scalar_one()
                    result = self._check(session, product)
                    now = self._clock.now()
                    self._realign_sequence(session, product)

                    if action == ResolutionAction.RESYNC_PRODUCT:
                        self._resync(product, result, actor_id, now)
                    else:
                        self._accept_stored(session, product, result, actor_id, now)
                    session.flush()

                    open_reports = session.execute(
                        select(StockDivergenceReport).where(
                            StockDivergenceReport.product_id == product_id,
                            StockDivergenceReport.resolved_at.is_(None),
                        )
                    ).scalars().all()
                    for open_report in open_reports:
                        open_report.resolved_at = now
                        open_report.resolved_by_id = actor_id
                        open_report.resolution = action.value
                        open_report.resolution_note = note
                    session.commit()
                except StockLedgerError:
                    session.rollback()
                    raise
                except SQLAlchemyError as exc:
                    session.rollback()
                    raise PersistenceError("resolve_divergence", str(exc)) from exc
        finally:
            session.close()

    @staticmethod
    def _realign_sequence(session: Session, product: Product) -> None:
        """Point movement_seq back at the last sequence in the log."""
        last = MovementSelector(session).max_sequence(product.id)
        if product.movement_seq == last:
            return
        logger.warning(
            "movement_seq_realigned",
            extra={"previous_seq": product.movement_seq, "log_seq": last},
        )
        product.movement_seq = last

    @staticmethod
    def _resync(
        product: Product,
        result: ReconciliationResult,
        actor_id: UUID,
        now: datetime,
    ) -> None:
        if result.expected < 0:
            raise ValidationError(
                "expected", f"movement log projects negative stock ({result.expected})"
            )
        if product.reserved_stock > result.expected:
            raise PolicyViolationError(
                product_id=str(product.id),
                reason=(
                    f"resync to {result.expected} would leave "
                    f"{product.reserved_stock} reserved"
                ),
                current_stock=product.current_stock,
                reserved_stock=product.reserved_stock,
            )
        logger.warning(
            "product_stock_resynced",
            extra={"previous_stock": product.current_stock, "new_stock": result.expected},
        )
        product.current_stock = result.expected
        product.updated_at = now
        product.updated_by_id = actor_id

    @staticmethod
    def _accept_stored(
        session: Session,
        product: Product,
        result: ReconciliationResult,
        actor_id: UUID,
        now: datetime,
    ) -> None:
        delta = product.current_stock - result.expected
        if delta == 0:
            return
        if result.expected < 0:
            raise ValidationError(
                "expected", f"movement log projects negative stock ({result.expected})"
            )
        MovementLog(session).append(
            MovementDraft(
                product_id=product.id,
                movement_type=MovementType.ADJUSTMENT,
                quantity_change=delta,
                quantity_before=result.expected,
                quantity_after=product.current_stock,
                reason=ACCEPT_STORED_REASON,
                actor_id=actor_id,
                created_at=now,
            )
        )
        product.updated_at = now
        product.updated_by_id = actor_id
