"""
Module: stock_ledger.models.stock_movement
Responsibility: ORM persistence for the append-only movement log.
Architecture position: Ledger > Models.  May import from db/base.py and
    domain enums only.

Invariants enforced:
    - Append-only: UPDATE and DELETE are blocked by ORM listeners
      (db/immutability.py).  Corrections are new offsetting movements.
    - quantity_change != 0 and quantity_after == quantity_before +
      quantity_change, both enforced by CheckConstraints and by
      domain/movement_rules.py before insert.
    - (product_id, sequence) is unique; sequence is assigned from the
      locked product row, so the log has a total order per product.

Failure modes:
    - IntegrityError on a duplicate (product_id, sequence), which means two
      writers bypassed the product lock.
    - ImmutabilityViolationError on any attempted update or delete.

Audit relevance:
    Movements are the source of truth for stock history.  Product and order
    context (sku, name, actor name) is denormalized at write time so the
    record stays readable after catalog edits.
"""

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from stock_ledger.db.base import Base, UUIDString
from stock_ledger.domain.dtos import MovementType


class StockMovement(Base):
    """
    One immutable stock change.

    Contract:
        Created only by MovementLog.append() inside the adjustment engine's
        transaction, together with the matching product quantity update.
    """

    __tablename__ = "stock_movements"

    __table_args__ = (
        UniqueConstraint("product_id", "sequence", name="uq_movement_product_seq"),
        Index("idx_movement_product_seq", "product_id", "sequence"),
        Index("idx_movement_reference", "reference_type", "reference_id"),
        Index("idx_movement_created", "created_at"),
        CheckConstraint("quantity_change != 0", name="ck_movement_nonzero"),
        CheckConstraint(
            "quantity_before >= 0 AND quantity_after >= 0",
            name="ck_movement_nonneg",
        ),
        CheckConstraint(
            "quantity_after = quantity_before + quantity_change",
            name="ck_movement_chain",
        ),
    )

    product_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("products.id"),
        nullable=False,
    )

    # Position in the product's log, starting at 1
    sequence: Mapped[int] = mapped_column(nullable=False)

    movement_type: Mapped[str] = mapped_column(String(20), nullable=False)

    quantity_change: Mapped[int] = mapped_column(nullable=False)

    quantity_before: Mapped[int] = mapped_column(nullable=False)

    quantity_after: Mapped[int] = mapped_column(nullable=False)

    # 0 means "value unknown", not "free"
    unit_cost: Mapped[Decimal] = mapped_column(default=Decimal("0"), nullable=False)

    total_value: Mapped[Decimal] = mapped_column(default=Decimal("0"), nullable=False)

    reason: Mapped[str] = mapped_column(String(500), nullable=False)

    reference_id: Mapped[str | None] = mapped_column(String(100), nullable=True)

    reference_type: Mapped[str | None] = mapped_column(String(50), nullable=True)

    actor_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    actor_name: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # Denormalized product context at write time
    product_sku: Mapped[str] = mapped_column(String(64), nullable=False)

    product_name: Mapped[str] = mapped_column(String(255), nullable=False)

    location: Mapped[str | None] = mapped_column(String(100), nullable=True)

    batch_number: Mapped[str | None] = mapped_column(String(100), nullable=True)

    expiry_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    def __repr__(self) -> str:
        return (
            f"<StockMovement {self.product_sku}#{self.sequence} "
            f"{self.movement_type} {self.quantity_change:+d}>"
        )

    @property
    def kind(self) -> MovementType:
        return MovementType(self.movement_type)
