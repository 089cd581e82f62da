"""
Reporting through the StockLedger facade.

Covers the dashboard reads: recent movements, movements of an order,
per-type totals and the category list.
"""

from decimal import Decimal

from stock_ledger.domain.dtos import MovementType, OrderLine, OrderSnapshot


def test_recent_movements_across_products(ledger, make_product, test_actor_id, deterministic_clock):
    first = make_product(initial_stock=10)
    deterministic_clock.advance(60)
    second = make_product(initial_stock=10)
    deterministic_clock.advance(60)
    ledger.apply_adjustment(first.id, -2, MovementType.DAMAGE, "dropped", test_actor_id)

    recent = ledger.recent_movements(limit=2)

    assert [(m.product_id, m.movement_type) for m in recent] == [
        (first.id, MovementType.DAMAGE),
        (second.id, MovementType.STOCK_IN),
    ]


def test_movements_for_order(ledger, make_product, test_actor_id):
    widget = make_product(initial_stock=10)
    gadget = make_product(initial_stock=10)
    order = OrderSnapshot(
        order_id="ORD-7",
        status="processing",
        items=(
            OrderLine(product_id=widget.id, sku=widget.sku, quantity=2),
            OrderLine(product_id=gadget.id, sku=gadget.sku, quantity=1),
        ),
    )
    ledger.handle_order_transition(order, "pending", "processing", test_actor_id)

    movements = ledger.movements_for_reference("order", "ORD-7")

    assert sorted(m.quantity_change for m in movements) == [-2, -1]
    assert {m.movement_type for m in movements} == {MovementType.SALE}


def test_movement_totals_value(ledger, make_product, test_actor_id):
    product = make_product(initial_stock=0)
    ledger.apply_adjustment(
        product.id, 4, MovementType.STOCK_IN, "delivery", test_actor_id, unit_cost=Decimal("1.50")
    )
    ledger.apply_adjustment(
        product.id, -1, MovementType.SALE, "sale", test_actor_id, unit_cost=Decimal("1.50")
    )

    totals = {t.movement_type: t for t in ledger.movement_totals(product.id)}

    assert totals[MovementType.STOCK_IN].quantity == 4
    assert totals[MovementType.STOCK_IN].total_value == Decimal("6")
    assert totals[MovementType.SALE].quantity == -1
    assert totals[MovementType.SALE].total_value == Decimal("1.5")


def test_categories(ledger, make_product):
    make_product(category="tools")
    make_product(category="garden")
    make_product(category="tools")
    make_product()

    assert ledger.categories() == ["garden", "tools"]
