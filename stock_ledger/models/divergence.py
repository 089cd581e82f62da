"""
Module: stock_ledger.models.divergence
Responsibility: ORM persistence for detected ledger divergences (stored
    current_stock disagrees with the movement log projection).
Architecture position: Ledger > Models.  May import from db/base.py only.

Invariants enforced:
    - Findings (product_id, expected, actual, movement_id, source,
      detected_at) are frozen once written; only the resolution fields may
      be filled in later (db/immutability.py).
    - Reports are never deleted.
    - A product with an open report is excluded from automatic status
      classification (InventorySelector) until a human resolves it.

Audit relevance:
    The divergence report is the human-reviewable record of an in-between
    state.  It is never auto-corrected; resolution is an explicit, attributed
    action.
"""

from datetime import datetime
from enum import Enum
from uuid import UUID

from sqlalchemy import DateTime, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from stock_ledger.db.base import Base, UUIDString


class DivergenceSource(str, Enum):
    """Where the divergence was detected."""

    WRITE_PATH = "write_path"
    RECONCILIATION = "reconciliation"


class ResolutionAction(str, Enum):
    """Human decision that closes a divergence report."""

    # Set stored current_stock to the movement log projection
    RESYNC_PRODUCT = "RESYNC_PRODUCT"
    # Keep stored current_stock and append an offsetting adjustment
    ACCEPT_STORED = "ACCEPT_STORED"


class StockDivergenceReport(Base):
    """A flagged mismatch between projected and stored stock."""

    __tablename__ = "stock_divergence_reports"

    __table_args__ = (
        Index("idx_divergence_product_open", "product_id", "resolved_at"),
    )

    product_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("products.id"),
        nullable=False,
    )

    # Movement log projection
    expected: Mapped[int] = mapped_column(nullable=False)

    # Stored current_stock (null when the product row could not be read)
    actual: Mapped[int | None] = mapped_column(nullable=True)

    # Movement whose write exposed the divergence, if any
    movement_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    source: Mapped[str] = mapped_column(String(20), nullable=False)

    detail: Mapped[str | None] = mapped_column(Text, nullable=True)

    detected_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )

    resolved_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    resolved_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    resolution: Mapped[str | None] = mapped_column(String(20), nullable=True)

    resolution_note: Mapped[str | None] = mapped_column(Text, nullable=True)

    def __repr__(self) -> str:
        state = self.resolution or "open"
        return (
            f"<StockDivergenceReport {self.product_id} "
            f"expected={self.expected} actual={self.actual} {state}>"
        )

    @property
    def is_open(self) -> bool:
        return self.resolved_at is None
