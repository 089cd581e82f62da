"""
Module: stock_ledger.models.reservation
Responsibility: ORM persistence for soft stock holds taken on behalf of a
    reference (typically an order).
Architecture position: Ledger > Models.  May import from db/base.py only.

Invariants enforced:
    - quantity > 0.
    - At most one ACTIVE reservation per (product, reference); a second
      reserve for the same reference grows the existing hold (enforced by
      ReservationService).
    - Sum of ACTIVE quantities for a product equals Product.reserved_stock
      (maintained by ReservationService and the adjustment engine under the
      product lock).
"""

from datetime import datetime
from enum import Enum
from uuid import UUID

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from stock_ledger.db.base import Base, UUIDString


class ReservationStatus(str, Enum):
    """Lifecycle of a reservation."""

    ACTIVE = "active"
    RELEASED = "released"
    CONSUMED = "consumed"
    EXPIRED = "expired"


class StockReservation(Base):
    """A hold against available stock for an unfulfilled reference."""

    __tablename__ = "stock_reservations"

    __table_args__ = (
        Index("idx_reservation_product_status", "product_id", "status"),
        Index("idx_reservation_reference", "reference_type", "reference_id"),
        CheckConstraint("quantity > 0", name="ck_reservation_positive"),
    )

    product_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("products.id"),
        nullable=False,
    )

    reference_type: Mapped[str] = mapped_column(String(50), nullable=False)

    reference_id: Mapped[str] = mapped_column(String(100), nullable=False)

    quantity: Mapped[int] = mapped_column(nullable=False)

    status: Mapped[str] = mapped_column(
        String(20),
        default=ReservationStatus.ACTIVE.value,
        nullable=False,
    )

    expires_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    actor_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    # Set when the hold leaves ACTIVE (released, consumed or expired)
    closed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    def __repr__(self) -> str:
        return (
            f"<StockReservation {self.reference_type}:{self.reference_id} "
            f"x{self.quantity} {self.status}>"
        )

    @property
    def is_active(self) -> bool:
        return self.status == ReservationStatus.ACTIVE.value
