"""
Module: stock_ledger.models.product
Responsibility: ORM persistence for catalog products and their stored stock
    quantities.
Architecture position: Ledger > Models.  May import from db/base.py and
    domain enums only.

Invariants enforced:
    - sku is unique (uq_product_sku) and immutable after creation
      (db/immutability.py).
    - current_stock == baseline_stock + sum(quantity_change) of all committed
      movements, in sequence order.  Maintained by the adjustment engine.
    - 0 <= reserved_stock <= current_stock (CheckConstraint plus
      reservation service guards).
    - version is an optimistic concurrency token; every UPDATE compares and
      increments it.

Failure modes:
    - IntegrityError on duplicate sku (mapped to DuplicateSkuError by
      ProductService).
    - StaleDataError when version no longer matches (mapped to
      OptimisticLockError by the adjustment engine).
    - ImmutabilityViolationError when ledger-owned fields change outside a
      stock write scope.
"""

from decimal import Decimal

from sqlalchemy import BigInteger, CheckConstraint, Index, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from stock_ledger.db.base import TrackedBase
from stock_ledger.domain.dtos import ProductStatus


class Product(TrackedBase):
    """
    A stocked catalog item.

    Contract:
        Quantity fields (current_stock, reserved_stock, movement_seq,
        baseline_stock) are written only by ledger services inside
        stock_write_scope().  Everything else is plain catalog data.

    Non-goals:
        - Prices are informational; this model does no pricing logic.
    """

    __tablename__ = "products"

    __table_args__ = (
        UniqueConstraint("sku", name="uq_product_sku"),
        Index("idx_product_category", "category"),
        Index("idx_product_status", "status"),
        CheckConstraint("current_stock >= 0", name="ck_product_stock_nonneg"),
        CheckConstraint(
            "reserved_stock >= 0 AND reserved_stock <= current_stock",
            name="ck_product_reserved_bounds",
        ),
        CheckConstraint(
            "min_stock >= 0 AND max_stock >= min_stock",
            name="ck_product_thresholds",
        ),
    )

    sku: Mapped[str] = mapped_column(String(64), nullable=False)

    name: Mapped[str] = mapped_column(String(255), nullable=False)

    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    category: Mapped[str | None] = mapped_column(String(100), nullable=True)

    price: Mapped[Decimal] = mapped_column(default=Decimal("0"), nullable=False)

    cost: Mapped[Decimal] = mapped_column(default=Decimal("0"), nullable=False)

    # Stored quantity on hand
    current_stock: Mapped[int] = mapped_column(default=0, nullable=False)

    min_stock: Mapped[int] = mapped_column(default=0, nullable=False)

    max_stock: Mapped[int] = mapped_column(default=0, nullable=False)

    # Soft holds for unfulfilled orders
    reserved_stock: Mapped[int] = mapped_column(default=0, nullable=False)

    # Quantity assumed before the first movement (0 for products created here)
    baseline_stock: Mapped[int] = mapped_column(default=0, nullable=False)

    # Last assigned movement sequence number
    movement_seq: Mapped[int] = mapped_column(default=0, nullable=False)

    version: Mapped[int] = mapped_column(BigInteger, nullable=False, default=1)

    status: Mapped[str] = mapped_column(
        String(20),
        default=ProductStatus.ACTIVE.value,
        nullable=False,
    )

    supplier: Mapped[str | None] = mapped_column(String(255), nullable=True)

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return f"<Product {self.sku}: {self.current_stock}>"

    @property
    def available_stock(self) -> int:
        return self.current_stock - self.reserved_stock

    @property
    def is_active(self) -> bool:
        return self.status == ProductStatus.ACTIVE.value

    @property
    def is_discontinued(self) -> bool:
        return self.status == ProductStatus.DISCONTINUED.value
