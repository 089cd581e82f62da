"""
ORM immutability guard tests.

Verifies:
- Movements cannot be updated or deleted
- SKU never changes
- Ledger-owned product quantities change only inside stock_write_scope()
- Products with movements cannot be deleted through the ORM
- Divergence reports only accept resolution fields

Each test finishes its ledger writes before opening the raw session, since
an open SQLite write transaction would block the ledger.
"""

import pytest
from sqlalchemy import select

from stock_ledger.db.immutability import in_stock_write_scope, stock_write_scope
from stock_ledger.exceptions import ImmutabilityViolationError, ProductInUseError
from stock_ledger.models.divergence import DivergenceSource, StockDivergenceReport
from stock_ledger.models.product import Product
from stock_ledger.models.stock_movement import StockMovement


@pytest.fixture
def stocked_product(make_product):
    return make_product(initial_stock=20)


def _first_movement(session, product_id):
    return session.execute(
        select(StockMovement).where(StockMovement.product_id == product_id)
    ).scalars().first()


class TestMovementGuards:
    def test_update_blocked(self, session, stocked_product):
        movement = _first_movement(session, stocked_product.id)
        movement.quantity_change = 99
        with pytest.raises(ImmutabilityViolationError):
            session.flush()

    def test_reason_update_blocked(self, session, stocked_product):
        movement = _first_movement(session, stocked_product.id)
        movement.reason = "rewritten history"
        with pytest.raises(ImmutabilityViolationError):
            session.flush()

    def test_delete_blocked(self, session, stocked_product):
        movement = _first_movement(session, stocked_product.id)
        session.delete(movement)
        with pytest.raises(ImmutabilityViolationError):
            session.flush()


class TestProductGuards:
    def test_current_stock_blocked_outside_scope(self, session, stocked_product):
        product = session.get(Product, stocked_product.id)
        product.current_stock = 500
        with pytest.raises(ImmutabilityViolationError):
            session.flush()

    def test_reserved_stock_blocked_outside_scope(self, session, stocked_product):
        product = session.get(Product, stocked_product.id)
        product.reserved_stock = 1
        with pytest.raises(ImmutabilityViolationError):
            session.flush()

    def test_current_stock_allowed_inside_scope(self, session, stocked_product):
        product = session.get(Product, stocked_product.id)
        with stock_write_scope(session):
            assert in_stock_write_scope(session)
            product.current_stock = 21
            session.flush()
        assert not in_stock_write_scope(session)

    def test_scope_is_reentrant(self, session):
        with stock_write_scope(session):
            with stock_write_scope(session):
                assert in_stock_write_scope(session)
            assert in_stock_write_scope(session)
        assert not in_stock_write_scope(session)

    def test_sku_blocked_even_inside_scope(self, session, stocked_product):
        product = session.get(Product, stocked_product.id)
        with stock_write_scope(session):
            product.sku = "RENAMED"
            with pytest.raises(ImmutabilityViolationError):
                session.flush()

    def test_descriptive_fields_editable(self, session, stocked_product):
        product = session.get(Product, stocked_product.id)
        product.name = "Renamed widget"
        session.flush()

    def test_delete_with_movements_blocked(self, session, stocked_product):
        product = session.get(Product, stocked_product.id)
        session.delete(product)
        with pytest.raises(ProductInUseError):
            session.flush()


class TestDivergenceReportGuards:
    @pytest.fixture
    def report(self, session, stocked_product, deterministic_clock):
        report = StockDivergenceReport(
            product_id=stocked_product.id,
            expected=20,
            actual=21,
            source=DivergenceSource.RECONCILIATION.value,
            detected_at=deterministic_clock.now(),
        )
        session.add(report)
        session.flush()
        return report

    def test_finding_fields_immutable(self, session, report):
        report.expected = 21
        with pytest.raises(ImmutabilityViolationError):
            session.flush()

    def test_resolution_fields_writable(self, session, report, deterministic_clock, test_actor_id):
        report.resolved_at = deterministic_clock.now()
        report.resolved_by_id = test_actor_id
        report.resolution = "RESYNC_PRODUCT"
        session.flush()
        assert not report.is_open

    def test_delete_blocked(self, session, report):
        session.delete(report)
        with pytest.raises(ImmutabilityViolationError):
            session.flush()
