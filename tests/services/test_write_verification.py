"""
Post-commit verification and divergence tests.

The engine's commit step is overridden to simulate a store whose commit
outcome is unknown, or whose product row changes underneath the ledger.

Tests cover:
- Commit failed before anything was written -> PersistenceError, retryable
- Commit reported failure but was durable -> the re-read confirms success
- Another ledger instance commits right after -> no false divergence
- Product quantity disagrees with the committed movement ->
  LedgerDivergenceError, persisted report, product excluded from
  classification and the low-stock report
"""

from uuid import UUID

import pytest
from sqlalchemy import text
from sqlalchemy.exc import OperationalError

from stock_ledger.db.engine import get_engine
from stock_ledger.domain.dtos import MovementType, StockBasis
from stock_ledger.exceptions import LedgerDivergenceError, PersistenceError
from stock_ledger.models.divergence import DivergenceSource
from stock_ledger.services.adjustment_engine import AdjustmentEngine
from stock_ledger.services.locking import ProductLockRegistry
from stock_ledger.services.stock_ledger import StockLedger


def _disk_error() -> OperationalError:
    return OperationalError("COMMIT", {}, Exception("disk I/O error"))


class _LostCommitEngine(AdjustmentEngine):
    """Fails before the commit reaches the store."""

    def _commit(self, session):
        raise _disk_error()


class _LateErrorEngine(AdjustmentEngine):
    """Commits, then reports a failure anyway."""

    def _commit(self, session):
        session.commit()
        raise _disk_error()


class _DriftingEngine(AdjustmentEngine):
    """Commits, then another writer bumps current_stock behind the ledger's back."""

    def __init__(self, *args, drift_product_id: UUID, **kwargs):
        super().__init__(*args, **kwargs)
        self._drift_product_id = drift_product_id

    def _commit(self, session):
        session.commit()
        with get_engine().begin() as conn:
            conn.execute(
                text("UPDATE products SET current_stock = current_stock + 1 WHERE id = :id"),
                {"id": str(self._drift_product_id)},
            )


class _InterleavedEngine(AdjustmentEngine):
    """Commits, then a second ledger instance commits its own restock."""

    def __init__(self, *args, other: StockLedger, product_id: UUID, actor_id: UUID, **kwargs):
        super().__init__(*args, **kwargs)
        self._other = other
        self._product_id = product_id
        self._actor_id = actor_id

    def _commit(self, session):
        session.commit()
        self._other.apply_adjustment(
            self._product_id, 5, MovementType.STOCK_IN, "restock", self._actor_id
        )


def _engine(cls, session_factory, ledger, **kwargs):
    return cls(
        session_factory,
        locks=ledger.engine.locks,
        clock=ledger.engine.clock,
        **kwargs,
    )


class TestAmbiguousCommit:
    def test_lost_commit_is_retryable_and_writes_nothing(
        self, session_factory, ledger, make_product, test_actor_id
    ):
        product = make_product(initial_stock=20)
        engine = _engine(_LostCommitEngine, session_factory, ledger)

        with pytest.raises(PersistenceError) as exc_info:
            engine.apply_adjustment(product.id, -3, MovementType.SALE, "sale", test_actor_id)

        assert exc_info.value.retryable
        assert ledger.get_product(product.id).current_stock == 20
        assert len(ledger.list_by_product(product.id)) == 1

    def test_durable_commit_confirmed_by_reread(
        self, session_factory, ledger, make_product, test_actor_id, captured_logs
    ):
        product = make_product(initial_stock=20)
        engine = _engine(_LateErrorEngine, session_factory, ledger)

        movement = engine.apply_adjustment(product.id, -3, MovementType.SALE, "sale", test_actor_id)

        assert movement.quantity_after == 17
        assert ledger.get_product(product.id).current_stock == 17
        messages = [r["message"] for r in captured_logs()]
        assert "adjustment_commit_ambiguous" in messages
        assert "adjustment_commit_confirmed" in messages


class TestDivergence:
    @pytest.fixture
    def diverged(self, session_factory, ledger, make_product, test_actor_id):
        product = make_product(initial_stock=20, min_stock=20, max_stock=100)
        engine = _engine(
            _DriftingEngine, session_factory, ledger, drift_product_id=product.id
        )
        with pytest.raises(LedgerDivergenceError) as exc_info:
            engine.apply_adjustment(product.id, -3, MovementType.SALE, "sale", test_actor_id)
        return product, exc_info.value

    def test_error_carries_expected_actual_and_report(self, diverged):
        product, error = diverged
        assert error.expected == 17
        assert error.actual == 18
        assert error.movement_id is not None
        assert error.report_id is not None
        assert error.code == "LEDGER_DIVERGENCE"

    def test_movement_stays_committed(self, ledger, diverged):
        product, _ = diverged
        assert ledger.list_by_product(product.id)[-1].quantity_after == 17
        assert ledger.get_product(product.id).current_stock == 18

    def test_report_persisted(self, ledger, diverged):
        product, error = diverged
        reports = ledger.open_divergence_reports(product.id)
        assert len(reports) == 1
        assert str(reports[0].id) == error.report_id
        assert reports[0].source == DivergenceSource.WRITE_PATH.value
        assert reports[0].expected == 17
        assert reports[0].actual == 18
        assert reports[0].is_open

    def test_classification_refused_while_divergent(self, ledger, diverged):
        product, _ = diverged
        with pytest.raises(LedgerDivergenceError):
            ledger.classify(product.id)
        with pytest.raises(LedgerDivergenceError):
            ledger.classify(product.id, StockBasis.AVAILABLE)

    def test_excluded_from_low_stock_report(self, ledger, diverged):
        product, _ = diverged
        assert product.id not in {p.id for p in ledger.low_stock_report()}
        summary = ledger.inventory_summary()
        assert summary.divergent_count == 1

    def test_reconcile_reports_mismatch(self, ledger, diverged):
        product, _ = diverged
        result = ledger.reconcile(product.id)
        assert not result.consistent
        assert result.expected == 17
        assert result.actual == 18

    def test_divergence_logged_at_error(self, ledger, make_product, session_factory, test_actor_id, captured_logs):
        product = make_product(initial_stock=20)
        engine = _engine(_DriftingEngine, session_factory, ledger, drift_product_id=product.id)
        with pytest.raises(LedgerDivergenceError):
            engine.apply_adjustment(product.id, -1, MovementType.SALE, "sale", test_actor_id)

        errors = [r for r in captured_logs() if r["level"] == "ERROR"]
        messages = {r["message"] for r in errors}
        assert "ledger_divergence_detected" in messages
        assert "ledger_divergence_recorded" in messages
        assert "adjustment_failed" in messages
        assert "divergence_report_failed" not in messages


class TestInterleavedWriter:
    @pytest.fixture
    def interleaved(self, session_factory, ledger, make_product, deterministic_clock, test_actor_id):
        product = make_product(initial_stock=10)
        other = StockLedger(
            session_factory,
            clock=deterministic_clock,
            locks=ProductLockRegistry(timeout_seconds=5.0),
        )
        engine = _engine(
            _InterleavedEngine,
            session_factory,
            ledger,
            other=other,
            product_id=product.id,
            actor_id=test_actor_id,
        )
        return product, engine

    def test_later_commit_is_not_a_divergence(self, ledger, interleaved, test_actor_id, captured_logs):
        product, engine = interleaved

        movement = engine.apply_adjustment(product.id, -3, MovementType.SALE, "sale", test_actor_id)

        assert movement.quantity_after == 7
        assert ledger.get_product(product.id).current_stock == 12
        assert ledger.open_divergence_reports(product.id) == []
        assert ledger.reconcile(product.id).consistent
        messages = [r["message"] for r in captured_logs()]
        assert "adjustment_superseded" in messages
        assert "ledger_divergence_detected" not in messages

    def test_chain_covers_both_writers(self, ledger, interleaved, test_actor_id):
        product, engine = interleaved

        engine.apply_adjustment(product.id, -3, MovementType.SALE, "sale", test_actor_id)

        movements = ledger.list_by_product(product.id)
        assert [(m.sequence, m.quantity_after) for m in movements] == [(1, 10), (2, 7), (3, 12)]
