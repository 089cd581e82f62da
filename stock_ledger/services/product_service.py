"""
ProductService -- catalog writes that do not move stock.

Responsibility:
    Creates product rows, edits descriptive fields and thresholds, changes
    catalog status and deletes products that were never stocked.  Stock
    quantities are never written here; products start at
    current_stock = baseline_stock = 0 and any initial stock is recorded by
    the adjustment engine as a movement.

Architecture position:
    Ledger > Services -- flush-only.

Failure modes:
    - DuplicateSkuError on an existing SKU (checked, then backed by the
      unique constraint).
    - ValidationError on bad thresholds or on attempts to edit sku,
      current_stock or reserved_stock through this path.
    - ProductNotFoundError, ProductInUseError.
"""

from datetime import datetime
from decimal import Decimal, InvalidOperation
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from stock_ledger.domain.dtos import ProductStatus
from stock_ledger.exceptions import (
    DuplicateSkuError,
    ProductInUseError,
    ProductNotFoundError,
    ValidationError,
)
from stock_ledger.logging_config import get_logger
from stock_ledger.models.product import Product
from stock_ledger.selectors.movement_selector import MovementSelector
from stock_ledger.services.base import BaseService

logger = get_logger("services.product")

EDITABLE_FIELDS = frozenset(
    {
        "name",
        "description",
        "category",
        "price",
        "cost",
        "min_stock",
        "max_stock",
        "supplier",
    }
)
LEDGER_FIELDS = frozenset({"current_stock", "reserved_stock", "baseline_stock", "movement_seq"})


def _money(field: str, value) -> Decimal:
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationError(field, f"not a decimal amount: {value!r}") from None
    if amount < 0:
        raise ValidationError(field, "cannot be negative")
    return amount


def _validate_thresholds(min_stock: int, max_stock: int) -> None:
    if min_stock < 0:
        raise ValidationError("min_stock", "cannot be negative")
    if max_stock < 0:
        raise ValidationError("max_stock", "cannot be negative")
    if max_stock < min_stock:
        raise ValidationError("max_stock", f"{max_stock} is below min_stock {min_stock}")


class ProductService(BaseService[Product]):
    """Flush-only catalog writes."""

    def get(self, product_id: UUID, for_update: bool = False) -> Product:
        """
        Load a product row.

        With ``for_update`` the row is locked (SELECT ... FOR UPDATE) and
        refreshed from the database, so the caller sees the latest committed
        quantities.
        """
        if for_update:
            product = self.session.execute(
                select(Product)
                .where(Product.id == product_id)
                .with_for_update()
                .execution_options(populate_existing=True)
            ).scalar_one_or_none()
        else:
            product = self.session.get(Product, product_id)
        if product is None:
            raise ProductNotFoundError(str(product_id))
        return product

    def get_by_sku(self, sku: str) -> Product | None:
        return self.session.execute(
            select(Product).where(Product.sku == sku)
        ).scalar_one_or_none()

    def create(
        self,
        sku: str,
        name: str,
        actor_id: UUID,
        now: datetime,
        *,
        product_id: UUID | None = None,
        category: str | None = None,
        description: str | None = None,
        price: Decimal | str | int = Decimal("0"),
        cost: Decimal | str | int = Decimal("0"),
        min_stock: int = 0,
        max_stock: int = 0,
        supplier: str | None = None,
        status: ProductStatus = ProductStatus.ACTIVE,
    ) -> Product:
        """Insert a product with zero stock."""
        sku = (sku or "").strip()
        if not sku:
            raise ValidationError("sku", "is required")
        if not name or not name.strip():
            raise ValidationError("name", "is required")
        if actor_id is None:
            raise ValidationError("actor_id", "is required")
        _validate_thresholds(min_stock, max_stock)

        if self.get_by_sku(sku) is not None:
            raise DuplicateSkuError(sku)

        product = Product(
            id=product_id or uuid4(),
            sku=sku,
            name=name.strip(),
            description=description,
            category=category,
            price=_money("price", price),
            cost=_money("cost", cost),
            current_stock=0,
            reserved_stock=0,
            baseline_stock=0,
            movement_seq=0,
            min_stock=min_stock,
            max_stock=max_stock,
            supplier=supplier,
            status=ProductStatus(status).value,
            created_at=now,
            updated_at=now,
            created_by_id=actor_id,
        )
        self.session.add(product)
        try:
            self.session.flush()
        except IntegrityError:
            raise DuplicateSkuError(sku) from None

        logger.info(
            "product_created",
            extra={"product_id": str(product.id), "sku": sku},
        )
        return product

    def update_details(
        self,
        product: Product,
        actor_id: UUID,
        now: datetime,
        **changes,
    ) -> list[str]:
        """
        Apply descriptive and threshold edits.  Returns the changed fields.

        ``sku`` may be passed only with its current value (form round-trips).
        """
        if "sku" in changes:
            if changes.pop("sku") != product.sku:
                raise ValidationError("sku", "is immutable after creation")
        forbidden = LEDGER_FIELDS & changes.keys()
        if forbidden:
            raise ValidationError(
                sorted(forbidden)[0], "changes only through a stock adjustment"
            )
        unknown = changes.keys() - EDITABLE_FIELDS
        if unknown:
            raise ValidationError(sorted(unknown)[0], "is not an editable product field")

        for field in ("price", "cost"):
            if field in changes:
                changes[field] = _money(field, changes[field])
        if "name" in changes and (not changes["name"] or not changes["name"].strip()):
            raise ValidationError("name", "is required")

        _validate_thresholds(
            changes.get("min_stock", product.min_stock),
            changes.get("max_stock", product.max_stock),
        )

        changed = [field for field, value in changes.items() if getattr(product, field) != value]
        if not changed:
            return []
        for field in changed:
            setattr(product, field, changes[field])
        product.updated_at = now
        product.updated_by_id = actor_id
        self.session.flush()

        logger.info(
            "product_updated",
            extra={"product_id": str(product.id), "fields": changed},
        )
        return changed

    def set_status(
        self,
        product: Product,
        status: ProductStatus,
        actor_id: UUID,
        now: datetime,
    ) -> bool:
        """Soft lifecycle change (deactivate, discontinue, reactivate)."""
        status = ProductStatus(status)
        if product.status == status.value:
            return False
        previous = product.status
        product.status = status.value
        product.updated_at = now
        product.updated_by_id = actor_id
        self.session.flush()

        logger.info(
            "product_status_changed",
            extra={
                "product_id": str(product.id),
                "previous_status": previous,
                "new_status": status.value,
            },
        )
        return True

    def delete(self, product_id: UUID) -> None:
        """
        Physically delete a product that has no movements.

        Products with history must be deactivated instead.
        """
        product = self.get(product_id)
        movement_count = MovementSelector(self.session).count_by_product(product_id)
        if movement_count:
            raise ProductInUseError(str(product_id), movement_count)
        self.session.delete(product)
        self.session.flush()
        logger.info("product_deleted", extra={"product_id": str(product_id)})
