"""
Module: stock_ledger.selectors.inventory_selector
Responsibility: Inventory-wide reads: low-stock report, dashboard summary
    and divergence report lookups.
Architecture position: Ledger > Selectors.

Products with an open divergence report are excluded from automatic status
classification: they never appear on the low-stock report and are counted
separately in the summary.
"""

from collections import Counter
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select

from stock_ledger.domain.dtos import (
    DivergenceReportRecord,
    InventorySummary,
    ProductRecord,
    ProductStatus,
    StockBasis,
)
from stock_ledger.domain.policy import ALERT_STATUSES, DEFAULT_CRITICAL_RATIO, classify
from stock_ledger.models.divergence import StockDivergenceReport
from stock_ledger.models.product import Product
from stock_ledger.selectors.base import BaseSelector


class InventorySelector(BaseSelector):
    """Reports over products and divergence reports."""

    def divergent_product_ids(self) -> set[UUID]:
        rows = self.session.execute(
            select(StockDivergenceReport.product_id)
            .where(StockDivergenceReport.resolved_at.is_(None))
            .distinct()
        ).scalars().all()
        return set(rows)

    def has_open_divergence(self, product_id: UUID) -> bool:
        count = self.session.execute(
            select(func.count(StockDivergenceReport.id)).where(
                StockDivergenceReport.product_id == product_id,
                StockDivergenceReport.resolved_at.is_(None),
            )
        ).scalar_one()
        return count > 0

    def open_divergence_reports(
        self,
        product_id: UUID | None = None,
    ) -> list[DivergenceReportRecord]:
        query = (
            select(StockDivergenceReport)
            .where(StockDivergenceReport.resolved_at.is_(None))
            .order_by(StockDivergenceReport.detected_at)
        )
        if product_id is not None:
            query = query.where(StockDivergenceReport.product_id == product_id)
        rows = self.session.execute(query).scalars().all()
        return [DivergenceReportRecord.from_model(row) for row in rows]

    def get_divergence_report(self, report_id: UUID) -> DivergenceReportRecord | None:
        row = self.session.get(StockDivergenceReport, report_id)
        return DivergenceReportRecord.from_model(row) if row is not None else None

    def low_stock_report(
        self,
        critical_ratio: Decimal = DEFAULT_CRITICAL_RATIO,
    ) -> list[ProductRecord]:
        """
        Active, non-divergent products whose on-hand stock is low or
        critical, most depleted first.
        """
        divergent = self.divergent_product_ids()
        rows = self.session.execute(
            select(Product)
            .where(Product.status == ProductStatus.ACTIVE.value)
            .order_by(Product.current_stock, Product.sku)
        ).scalars().all()

        report = []
        for row in rows:
            if row.id in divergent:
                continue
            record = ProductRecord.from_model(row)
            if classify(record.levels, StockBasis.ON_HAND, critical_ratio) in ALERT_STATUSES:
                report.append(record)
        return report

    def summary(self, critical_ratio: Decimal = DEFAULT_CRITICAL_RATIO) -> InventorySummary:
        """Product count, stock value and per-status counts for the dashboard."""
        divergent = self.divergent_product_ids()
        rows = self.session.execute(select(Product)).scalars().all()

        total_value = Decimal("0")
        status_counts: Counter[str] = Counter()
        low_stock_count = 0
        for row in rows:
            total_value += row.current_stock * row.cost
            if row.id in divergent:
                continue
            status = classify(
                ProductRecord.from_model(row).levels, StockBasis.ON_HAND, critical_ratio
            )
            status_counts[status.value] += 1
            if row.status == ProductStatus.ACTIVE.value and status in ALERT_STATUSES:
                low_stock_count += 1

        return InventorySummary(
            product_count=len(rows),
            total_stock_value=total_value,
            status_counts=dict(status_counts),
            divergent_count=len(divergent),
            low_stock_count=low_stock_count,
        )
