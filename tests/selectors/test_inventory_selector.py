"""
Inventory report tests (low-stock report and dashboard summary).
"""

from decimal import Decimal

from stock_ledger.domain.dtos import StockStatus


class TestLowStockReport:
    def test_lists_low_and_critical_active_products(self, ledger, make_product, test_actor_id):
        low = make_product(sku="LOW-1", initial_stock=20, min_stock=20, max_stock=100)
        critical = make_product(sku="CRT-1", initial_stock=5, min_stock=10, max_stock=100)
        make_product(sku="OK-1", initial_stock=50, min_stock=20, max_stock=100)
        inactive = make_product(sku="OFF-1", initial_stock=1, min_stock=10, max_stock=100)
        ledger.deactivate_product(inactive.id, test_actor_id)

        report = ledger.low_stock_report()

        assert [p.id for p in report] == [critical.id, low.id]

    def test_classification_of_widget(self, ledger, make_product):
        widget = make_product(sku="WHD-001", initial_stock=20, min_stock=20, max_stock=100)
        assert ledger.classify(widget.id) == StockStatus.LOW


class TestSummary:
    def test_summary_figures(self, ledger, make_product):
        make_product(initial_stock=20, min_stock=20, max_stock=100, cost=Decimal("2.50"))
        make_product(initial_stock=50, min_stock=20, max_stock=100, cost=Decimal("1.00"))
        make_product(initial_stock=0, min_stock=0, max_stock=10, cost=Decimal("9.00"))

        summary = ledger.inventory_summary()

        assert summary.product_count == 3
        assert summary.total_stock_value == Decimal("100")
        assert summary.status_counts[StockStatus.LOW.value] == 1
        assert summary.status_counts[StockStatus.OPTIMAL.value] == 1
        assert summary.status_counts[StockStatus.CRITICAL.value] == 1
        assert summary.low_stock_count == 2
        assert summary.divergent_count == 0

    def test_empty_catalog(self, ledger):
        summary = ledger.inventory_summary()
        assert summary.product_count == 0
        assert summary.total_stock_value == 0
        assert dict(summary.status_counts) == {}
