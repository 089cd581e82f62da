"""
AdjustmentEngine tests.

Tests cover:
- Happy path: movement appended and stock updated together, chained
- Rejections: insufficient stock, zero delta, sign/type mismatch,
  discontinued product, reservation overdraw -- nothing written
- Projection equals stored stock after a mixed sequence
- Stock counts, product edits and reference settlement
- Structured logging of every call
- Status listeners
"""

from decimal import Decimal
from uuid import uuid4

import pytest

from stock_ledger.domain.dtos import MovementType, StockStatus
from stock_ledger.exceptions import (
    InsufficientStockError,
    PolicyViolationError,
    ProductDiscontinuedError,
    ProductNotFoundError,
    ValidationError,
)


class TestApplyAdjustment:
    def test_sale_appends_movement_and_updates_stock(self, ledger, make_product, test_actor_id):
        product = make_product(sku="WHD-001")

        movement = ledger.apply_adjustment(
            product.id, -3, MovementType.SALE, "Counter sale", test_actor_id
        )

        assert movement.movement_type == MovementType.SALE
        assert movement.quantity_change == -3
        assert movement.quantity_before == 20
        assert movement.quantity_after == 17
        assert movement.sequence == 2
        assert movement.product_sku == "WHD-001"
        assert ledger.get_product(product.id).current_stock == 17

    def test_initial_stock_is_first_movement(self, ledger, make_product):
        product = make_product(initial_stock=20, cost=Decimal("4.00"))

        movements = ledger.list_by_product(product.id)
        assert len(movements) == 1
        assert movements[0].movement_type == MovementType.STOCK_IN
        assert movements[0].quantity_before == 0
        assert movements[0].quantity_after == 20
        assert movements[0].unit_cost == Decimal("4.00")
        assert movements[0].total_value == Decimal("80.00")
        assert product.baseline_stock == 0

    def test_string_movement_type_accepted(self, ledger, make_product, test_actor_id):
        product = make_product()
        movement = ledger.apply_adjustment(product.id, 5, "stock_in", "Delivery", test_actor_id)
        assert movement.movement_type == MovementType.STOCK_IN

    def test_optional_details_recorded(self, ledger, make_product, test_actor_id):
        product = make_product()
        movement = ledger.apply_adjustment(
            product.id,
            10,
            MovementType.STOCK_IN,
            "Supplier delivery",
            test_actor_id,
            unit_cost=Decimal("3.25"),
            reference_id="PO-77",
            reference_type="purchase_order",
            actor_name="Dana",
            location="Aisle 4",
            batch_number="B-1",
            notes="pallet 2 of 3",
        )
        stored = ledger.list_by_product(product.id)[-1]
        assert stored == movement
        assert stored.reference_id == "PO-77"
        assert stored.location == "Aisle 4"
        assert stored.total_value == Decimal("32.50")

    def test_chain_links_before_to_previous_after(self, ledger, make_product, test_actor_id):
        product = make_product()
        for change, kind in [(-3, MovementType.SALE), (5, MovementType.RETURN), (-1, MovementType.DAMAGE)]:
            ledger.apply_adjustment(product.id, change, kind, "mixed", test_actor_id)

        movements = ledger.list_by_product(product.id)
        assert [m.sequence for m in movements] == [1, 2, 3, 4]
        for prev, nxt in zip(movements, movements[1:]):
            assert nxt.quantity_before == prev.quantity_after

    def test_projection_equals_stored_stock(self, ledger, make_product, test_actor_id):
        product = make_product(initial_stock=40)
        for change, kind in [
            (-7, MovementType.SALE),
            (12, MovementType.STOCK_IN),
            (-4, MovementType.ADJUSTMENT),
            (3, MovementType.TRANSFER),
            (-2, MovementType.STOCK_OUT),
        ]:
            ledger.apply_adjustment(product.id, change, kind, "sequence", test_actor_id)

        assert ledger.project(product.id) == ledger.get_product(product.id).current_stock == 42
        assert ledger.reconcile(product.id).consistent


class TestRejections:
    def test_overdraw_rejected_and_nothing_written(self, ledger, make_product, test_actor_id):
        product = make_product(initial_stock=20)

        with pytest.raises(InsufficientStockError) as exc_info:
            ledger.apply_adjustment(product.id, -21, MovementType.SALE, "too much", test_actor_id)

        assert exc_info.value.current_stock == 20
        assert exc_info.value.quantity_change == -21
        assert not exc_info.value.retryable
        assert ledger.get_product(product.id).current_stock == 20
        assert len(ledger.list_by_product(product.id)) == 1

    def test_draining_to_zero_allowed(self, ledger, make_product, test_actor_id):
        product = make_product(initial_stock=20)
        ledger.apply_adjustment(product.id, -20, MovementType.SALE, "sell out", test_actor_id)
        assert ledger.get_product(product.id).current_stock == 0

    def test_zero_delta_rejected(self, ledger, make_product, test_actor_id):
        product = make_product()
        with pytest.raises(ValidationError):
            ledger.apply_adjustment(product.id, 0, MovementType.ADJUSTMENT, "noop", test_actor_id)
        assert len(ledger.list_by_product(product.id)) == 1

    def test_sign_contradicting_type_rejected(self, ledger, make_product, test_actor_id):
        product = make_product()
        with pytest.raises(ValidationError):
            ledger.apply_adjustment(product.id, 5, MovementType.SALE, "odd sale", test_actor_id)
        with pytest.raises(ValidationError):
            ledger.apply_adjustment(product.id, -5, MovementType.STOCK_IN, "odd in", test_actor_id)

    def test_missing_reason_or_actor_rejected(self, ledger, make_product, test_actor_id):
        product = make_product()
        with pytest.raises(ValidationError):
            ledger.apply_adjustment(product.id, 1, MovementType.STOCK_IN, " ", test_actor_id)
        with pytest.raises(ValidationError):
            ledger.apply_adjustment(product.id, 1, MovementType.STOCK_IN, "in", None)

    def test_unknown_product(self, ledger, test_actor_id):
        with pytest.raises(ProductNotFoundError):
            ledger.apply_adjustment(uuid4(), 1, MovementType.STOCK_IN, "in", test_actor_id)

    def test_discontinued_empty_product_blocks_outbound(self, ledger, make_product, test_actor_id):
        product = make_product(initial_stock=0)
        ledger.discontinue_product(product.id, test_actor_id)

        with pytest.raises(ProductDiscontinuedError):
            ledger.apply_adjustment(product.id, -1, MovementType.ADJUSTMENT, "fix", test_actor_id)

        movement = ledger.apply_adjustment(product.id, 4, MovementType.RETURN, "late return", test_actor_id)
        assert movement.quantity_after == 4

    def test_outbound_cannot_strand_reservations(self, ledger, make_product, test_actor_id):
        product = make_product(initial_stock=10)
        ledger.reserve(product.id, 8, "order", "ORD-1", test_actor_id)

        with pytest.raises(PolicyViolationError):
            ledger.apply_adjustment(product.id, -3, MovementType.DAMAGE, "broken", test_actor_id)

        after = ledger.get_product(product.id)
        assert after.current_stock == 10
        assert after.reserved_stock == 8


class TestStockCountAndEdits:
    def test_counted_stock_writes_adjustment(self, ledger, make_product, test_actor_id):
        product = make_product(initial_stock=20)

        movement = ledger.set_counted_stock(product.id, 12, test_actor_id)

        assert movement.movement_type == MovementType.ADJUSTMENT
        assert movement.quantity_change == -8
        assert ledger.get_product(product.id).current_stock == 12

    def test_matching_count_writes_nothing(self, ledger, make_product, test_actor_id):
        product = make_product(initial_stock=20)
        assert ledger.set_counted_stock(product.id, 20, test_actor_id) is None
        assert len(ledger.list_by_product(product.id)) == 1

    def test_negative_count_rejected(self, ledger, make_product, test_actor_id):
        product = make_product()
        with pytest.raises(ValidationError):
            ledger.set_counted_stock(product.id, -1, test_actor_id)

    def test_form_edit_routes_stock_through_adjustment(self, ledger, make_product, test_actor_id):
        product = make_product(initial_stock=20)

        edited = ledger.edit_product(
            product.id,
            test_actor_id,
            {"name": "Widget Deluxe", "current_stock": 35, "sku": product.sku},
        )

        assert edited.name == "Widget Deluxe"
        assert edited.current_stock == 35
        last = ledger.list_by_product(product.id)[-1]
        assert last.movement_type == MovementType.ADJUSTMENT
        assert last.quantity_change == 15
        assert ledger.reconcile(product.id).consistent

    def test_edit_without_stock_change_writes_no_movement(self, ledger, make_product, test_actor_id):
        product = make_product(initial_stock=20)
        ledger.edit_product(product.id, test_actor_id, {"min_stock": 5, "current_stock": 20})
        assert len(ledger.list_by_product(product.id)) == 1
        assert ledger.get_product(product.id).min_stock == 5

    def test_edit_cannot_change_sku(self, ledger, make_product, test_actor_id):
        product = make_product()
        with pytest.raises(ValidationError):
            ledger.edit_product(product.id, test_actor_id, {"sku": "OTHER-1"})

    def test_edit_cannot_write_reserved_stock(self, ledger, make_product, test_actor_id):
        product = make_product()
        with pytest.raises(ValidationError):
            ledger.edit_product(product.id, test_actor_id, {"reserved_stock": 3})


class TestSettleReference:
    def test_settlement_is_idempotent(self, adjustment_engine, ledger, make_product, test_actor_id):
        product = make_product(initial_stock=20)

        first = adjustment_engine.settle_reference(
            product.id, "order", "ORD-9", target_net=-4, reason="Order ORD-9", actor_id=test_actor_id
        )
        second = adjustment_engine.settle_reference(
            product.id, "order", "ORD-9", target_net=-4, reason="Order ORD-9", actor_id=test_actor_id
        )

        assert first.quantity_change == -4
        assert first.movement_type == MovementType.SALE
        assert second is None
        assert ledger.get_product(product.id).current_stock == 16

    def test_settling_back_to_zero_uses_inbound_type(self, adjustment_engine, make_product, test_actor_id):
        product = make_product(initial_stock=20)
        adjustment_engine.settle_reference(
            product.id, "order", "ORD-9", target_net=-4, reason="ship", actor_id=test_actor_id
        )
        back = adjustment_engine.settle_reference(
            product.id, "order", "ORD-9", target_net=0, reason="cancel", actor_id=test_actor_id
        )
        assert back.movement_type == MovementType.RETURN
        assert back.quantity_change == 4


class TestLogging:
    def test_committed_adjustment_logs_start_and_commit(
        self, ledger, make_product, test_actor_id, captured_logs
    ):
        product = make_product()
        ledger.apply_adjustment(
            product.id, -3, MovementType.SALE, "sale", test_actor_id, reference_id="ORD-5"
        )

        logs = [r for r in captured_logs() if r.get("operation") == "apply_adjustment"]
        messages = [r["message"] for r in logs]
        assert messages[0] == "adjustment_started"
        assert "adjustment_committed" in messages
        committed = next(r for r in logs if r["message"] == "adjustment_committed")
        assert committed["product_id"] == str(product.id)
        assert committed["actor_id"] == str(test_actor_id)
        assert committed["reference_id"] == "ORD-5"
        assert committed["quantity_after"] == 17
        assert "duration_ms" in committed
        assert "correlation_id" in committed

    def test_rejection_logged_with_error_code(
        self, ledger, make_product, test_actor_id, captured_logs
    ):
        product = make_product(initial_stock=2)
        with pytest.raises(InsufficientStockError):
            ledger.apply_adjustment(product.id, -5, MovementType.SALE, "sale", test_actor_id)

        rejected = [r for r in captured_logs() if r["message"] == "adjustment_rejected"]
        assert len(rejected) == 1
        assert rejected[0]["error_code"] == "INSUFFICIENT_STOCK"
        assert rejected[0]["level"] == "WARNING"

    def test_validation_failure_logged_as_rejection(
        self, ledger, make_product, test_actor_id, captured_logs
    ):
        product = make_product()
        with pytest.raises(ValidationError):
            ledger.apply_adjustment(product.id, 0, MovementType.SALE, "sale", test_actor_id)
        assert any(r["message"] == "adjustment_rejected" for r in captured_logs())


class TestStatusListeners:
    def test_listener_notified_on_status_change(self, adjustment_engine, make_product, test_actor_id):
        changes = []
        adjustment_engine.add_listener(changes.append)
        product = make_product(initial_stock=50, min_stock=20, max_stock=100)

        adjustment_engine.apply_adjustment(product.id, -35, MovementType.SALE, "big sale", test_actor_id)

        assert len(changes) == 2
        created, sale = changes
        assert created.current == StockStatus.OPTIMAL
        assert sale.previous == StockStatus.OPTIMAL
        assert sale.current == StockStatus.LOW
        assert sale.current_stock == 15
        assert sale.movement_id is not None

    def test_no_notification_without_status_change(self, adjustment_engine, make_product, test_actor_id):
        product = make_product(initial_stock=50, min_stock=20, max_stock=100)
        changes = []
        adjustment_engine.add_listener(changes.append)

        adjustment_engine.apply_adjustment(product.id, -1, MovementType.SALE, "sale", test_actor_id)

        assert changes == []

    def test_failing_listener_does_not_undo_write(
        self, adjustment_engine, ledger, make_product, test_actor_id, captured_logs
    ):
        product = make_product(initial_stock=50, min_stock=20, max_stock=100)

        def boom(change):
            raise RuntimeError("listener down")

        adjustment_engine.add_listener(boom)
        movement = adjustment_engine.apply_adjustment(
            product.id, -40, MovementType.SALE, "sale", test_actor_id
        )

        assert movement.quantity_after == 10
        assert ledger.get_product(product.id).current_stock == 10
        assert any(r["message"] == "status_listener_failed" for r in captured_logs())

    def test_low_stock_alert_logged(self, ledger, make_product, test_actor_id, captured_logs):
        product = make_product(initial_stock=30, min_stock=20, max_stock=100)
        ledger.apply_adjustment(product.id, -25, MovementType.SALE, "sale", test_actor_id)

        alerts = [r for r in captured_logs() if r["message"] == "low_stock_alert"]
        assert alerts and alerts[-1]["stock_status"] == "critical"
