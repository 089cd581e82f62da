"""
Module: stock_ledger.selectors.movement_selector
Responsibility: Read access to the movement log: per-product history in
    sequence order, reference lookups and movement reporting.
Architecture position: Ledger > Selectors.

All per-product queries use the (product_id, sequence) index, so reading a
product's log costs O(movements for that product).
"""

from datetime import datetime
from decimal import Decimal
from typing import Iterator
from uuid import UUID

from sqlalchemy import case, func, select

from stock_ledger.domain.dtos import MovementRecord, MovementTotals, MovementType, ProductSales
from stock_ledger.models.stock_movement import StockMovement
from stock_ledger.selectors.base import BaseSelector

DEFAULT_PAGE_SIZE = 500


class MovementSelector(BaseSelector):
    """Queries over stock_movements."""

    def list_by_product(
        self,
        product_id: UUID,
        after_sequence: int | None = None,
        limit: int | None = None,
    ) -> list[MovementRecord]:
        """
        Movements of one product, oldest first.

        Restartable: pass the last seen ``sequence`` as ``after_sequence`` to
        continue where a previous read stopped.
        """
        query = (
            select(StockMovement)
            .where(StockMovement.product_id == product_id)
            .order_by(StockMovement.sequence)
        )
        if after_sequence is not None:
            query = query.where(StockMovement.sequence > after_sequence)
        if limit is not None:
            query = query.limit(limit)
        rows = self.session.execute(query).scalars().all()
        return [MovementRecord.from_model(row) for row in rows]

    def iter_by_product(
        self,
        product_id: UUID,
        page_size: int = DEFAULT_PAGE_SIZE,
    ) -> Iterator[MovementRecord]:
        """Stream a product's full log in pages, oldest first."""
        cursor: int | None = None
        while True:
            page = self.list_by_product(product_id, after_sequence=cursor, limit=page_size)
            yield from page
            if len(page) < page_size:
                return
            cursor = page[-1].sequence

    def get(self, movement_id: UUID) -> MovementRecord | None:
        row = self.session.get(StockMovement, movement_id)
        return MovementRecord.from_model(row) if row is not None else None

    def latest(self, product_id: UUID) -> MovementRecord | None:
        """The movement with the highest sequence for a product."""
        row = self.session.execute(
            select(StockMovement)
            .where(StockMovement.product_id == product_id)
            .order_by(StockMovement.sequence.desc())
            .limit(1)
        ).scalar_one_or_none()
        return MovementRecord.from_model(row) if row is not None else None

    def max_sequence(self, product_id: UUID) -> int:
        return self.session.execute(
            select(func.coalesce(func.max(StockMovement.sequence), 0)).where(
                StockMovement.product_id == product_id
            )
        ).scalar_one()

    def count_by_product(self, product_id: UUID) -> int:
        return self.session.execute(
            select(func.count(StockMovement.id)).where(
                StockMovement.product_id == product_id
            )
        ).scalar_one()

    def list_by_reference(
        self,
        reference_type: str,
        reference_id: str,
        product_id: UUID | None = None,
    ) -> list[MovementRecord]:
        """Movements linked to a reference (e.g. an order), oldest first."""
        query = (
            select(StockMovement)
            .where(
                StockMovement.reference_type == reference_type,
                StockMovement.reference_id == reference_id,
            )
            .order_by(StockMovement.created_at, StockMovement.sequence)
        )
        if product_id is not None:
            query = query.where(StockMovement.product_id == product_id)
        rows = self.session.execute(query).scalars().all()
        return [MovementRecord.from_model(row) for row in rows]

    def net_change_for_reference(
        self,
        product_id: UUID,
        reference_type: str,
        reference_id: str,
    ) -> int:
        """Signed sum of all movements of a product linked to a reference."""
        total = self.session.execute(
            select(func.coalesce(func.sum(StockMovement.quantity_change), 0)).where(
                StockMovement.product_id == product_id,
                StockMovement.reference_type == reference_type,
                StockMovement.reference_id == reference_id,
            )
        ).scalar_one()
        return int(total)

    def recent(self, limit: int = 10) -> list[MovementRecord]:
        """Most recent movements across all products, newest first."""
        rows = self.session.execute(
            select(StockMovement)
            .order_by(StockMovement.created_at.desc(), StockMovement.sequence.desc())
            .limit(limit)
        ).scalars().all()
        return [MovementRecord.from_model(row) for row in rows]

    def totals_by_type(
        self,
        product_id: UUID | None = None,
        since: datetime | None = None,
    ) -> list[MovementTotals]:
        """Movement count, signed quantity and value per movement type."""
        query = select(
            StockMovement.movement_type,
            func.count(StockMovement.id),
            func.coalesce(func.sum(StockMovement.quantity_change), 0),
            func.coalesce(func.sum(StockMovement.total_value), 0),
        ).group_by(StockMovement.movement_type)
        if product_id is not None:
            query = query.where(StockMovement.product_id == product_id)
        if since is not None:
            query = query.where(StockMovement.created_at >= since)

        totals = [
            MovementTotals(
                movement_type=MovementType(movement_type),
                movement_count=count,
                quantity=int(quantity),
                total_value=Decimal(str(value)),
            )
            for movement_type, count, quantity, value in self.session.execute(query)
        ]
        return sorted(totals, key=lambda t: t.movement_type.value)

    def bestsellers(
        self,
        limit: int = 10,
        since: datetime | None = None,
    ) -> list[ProductSales]:
        """
        Products ranked by net units sold, highest first.

        Returns are netted against sales; products with nothing sold net
        are left out.
        """
        signed_value = case(
            (StockMovement.movement_type == MovementType.SALE.value, StockMovement.total_value),
            else_=-StockMovement.total_value,
        )
        units_sold = func.sum(-StockMovement.quantity_change)
        query = (
            select(
                StockMovement.product_id,
                StockMovement.product_sku,
                StockMovement.product_name,
                units_sold,
                func.coalesce(func.sum(signed_value), 0),
            )
            .where(
                StockMovement.movement_type.in_(
                    (MovementType.SALE.value, MovementType.RETURN.value)
                )
            )
            .group_by(
                StockMovement.product_id,
                StockMovement.product_sku,
                StockMovement.product_name,
            )
            .having(units_sold > 0)
            .order_by(units_sold.desc(), StockMovement.product_sku)
            .limit(limit)
        )
        if since is not None:
            query = query.where(StockMovement.created_at >= since)

        return [
            ProductSales(
                product_id=UUID(str(product_id)),
                sku=sku,
                name=name,
                units_sold=int(units),
                sold_value=Decimal(str(value)),
            )
            for product_id, sku, name, units, value in self.session.execute(query)
        ]
