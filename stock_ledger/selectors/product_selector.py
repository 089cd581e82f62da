"""
Module: stock_ledger.selectors.product_selector
Responsibility: Read access to the product catalog.
Architecture position: Ledger > Selectors.
"""

from uuid import UUID

from sqlalchemy import select

from stock_ledger.domain.dtos import ProductRecord, ProductStatus
from stock_ledger.models.product import Product
from stock_ledger.selectors.base import BaseSelector


class ProductSelector(BaseSelector):
    """Queries over products."""

    def get(self, product_id: UUID) -> ProductRecord | None:
        row = self.session.get(Product, product_id)
        return ProductRecord.from_model(row) if row is not None else None

    def get_by_sku(self, sku: str) -> ProductRecord | None:
        row = self.session.execute(
            select(Product).where(Product.sku == sku)
        ).scalar_one_or_none()
        return ProductRecord.from_model(row) if row is not None else None

    def list_products(
        self,
        category: str | None = None,
        status: ProductStatus | None = None,
    ) -> list[ProductRecord]:
        """Products ordered by SKU, optionally filtered."""
        query = select(Product).order_by(Product.sku)
        if category is not None:
            query = query.where(Product.category == category)
        if status is not None:
            query = query.where(Product.status == ProductStatus(status).value)
        rows = self.session.execute(query).scalars().all()
        return [ProductRecord.from_model(row) for row in rows]

    def categories(self) -> list[str]:
        rows = self.session.execute(
            select(Product.category)
            .where(Product.category.is_not(None))
            .distinct()
            .order_by(Product.category)
        ).scalars().all()
        return list(rows)
