"""
DTOs -- Pure domain data transfer objects.

Responsibility:
    Defines the immutable data structures that flow through the ledger:
    MovementDraft (engine -> movement log), MovementRecord (persistence
    boundary), ProductLevels and ProductRecord (product snapshots),
    AdjustmentRequest (caller -> engine), StockStatusChange (engine ->
    listeners), ReconciliationResult, reporting DTOs and the order
    snapshot handed in by the order-processing caller.

Architecture position:
    Ledger > Domain -- pure functional core, zero I/O.
    from_model() class methods exist as boundary converters but are only
    invoked from the service and selector layers.

Invariants enforced:
    - Domain logic accepts and returns DTOs, never ORM entities.
    - Monetary values are Decimal, never float.
    - Movement type is always explicit; nothing here derives it from a sign.

Data flow:
    AdjustmentRequest -> MovementDraft -> StockMovement (ORM) -> MovementRecord
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from types import MappingProxyType
from typing import TYPE_CHECKING, Mapping
from uuid import UUID

if TYPE_CHECKING:
    from stock_ledger.models.divergence import (
        StockDivergenceReport as DivergenceReportModel,
    )
    from stock_ledger.models.product import Product as ProductModel
    from stock_ledger.models.reservation import StockReservation as ReservationModel
    from stock_ledger.models.stock_movement import StockMovement as MovementModel


class MovementType(str, Enum):
    """
    Caller intent of a stock change.

    Contract:
        Always supplied by the caller.  ``adjustment``, ``damage`` and
        ``stock_out`` are all negative in practice but stay distinct for
        reporting.
    """

    STOCK_IN = "stock_in"
    STOCK_OUT = "stock_out"
    ADJUSTMENT = "adjustment"
    TRANSFER = "transfer"
    SALE = "sale"
    RETURN = "return"
    DAMAGE = "damage"


class ProductStatus(str, Enum):
    """Catalog lifecycle of a product."""

    ACTIVE = "Active"
    INACTIVE = "Inactive"
    DISCONTINUED = "Discontinued"


class StockStatus(str, Enum):
    """Derived stock level classification, most severe first."""

    CRITICAL = "critical"
    LOW = "low"
    OPTIMAL = "optimal"
    OVERSTOCK = "overstock"


class StockBasis(str, Enum):
    """
    Which quantity a classification is evaluated on.

    ON_HAND uses current_stock (shelf and reorder checks).  AVAILABLE uses
    current_stock - reserved_stock (sellability checks).
    """

    ON_HAND = "on_hand"
    AVAILABLE = "available"


@dataclass(frozen=True)
class MovementDraft:
    """
    A movement about to be appended.

    Contract:
        Built by the adjustment engine from the locked product row.  Checked
        by movement_rules.validate_draft() before MovementLog writes it.
    """

    product_id: UUID
    movement_type: MovementType
    quantity_change: int
    quantity_before: int
    quantity_after: int
    reason: str
    actor_id: UUID | None
    created_at: datetime
    unit_cost: Decimal = Decimal("0")
    reference_id: str | None = None
    reference_type: str | None = None
    actor_name: str | None = None
    location: str | None = None
    batch_number: str | None = None
    expiry_date: date | None = None
    notes: str | None = None

    @property
    def total_value(self) -> Decimal:
        return abs(self.quantity_change) * self.unit_cost


@dataclass(frozen=True)
class MovementRecord:
    """Read-only view of a committed movement."""

    id: UUID
    product_id: UUID
    sequence: int
    movement_type: MovementType
    quantity_change: int
    quantity_before: int
    quantity_after: int
    unit_cost: Decimal
    total_value: Decimal
    reason: str
    actor_id: UUID
    created_at: datetime
    product_sku: str
    product_name: str
    reference_id: str | None = None
    reference_type: str | None = None
    actor_name: str | None = None
    location: str | None = None
    batch_number: str | None = None
    expiry_date: date | None = None
    notes: str | None = None

    @classmethod
    def from_model(cls, model: MovementModel) -> MovementRecord:
        return cls(
            id=model.id,
            product_id=model.product_id,
            sequence=model.sequence,
            movement_type=MovementType(model.movement_type),
            quantity_change=model.quantity_change,
            quantity_before=model.quantity_before,
            quantity_after=model.quantity_after,
            unit_cost=model.unit_cost,
            total_value=model.total_value,
            reason=model.reason,
            actor_id=model.actor_id,
            created_at=model.created_at,
            product_sku=model.product_sku,
            product_name=model.product_name,
            reference_id=model.reference_id,
            reference_type=model.reference_type,
            actor_name=model.actor_name,
            location=model.location,
            batch_number=model.batch_number,
            expiry_date=model.expiry_date,
            notes=model.notes,
        )


@dataclass(frozen=True)
class ProductLevels:
    """The quantities and thresholds the policy functions look at."""

    current_stock: int
    min_stock: int
    max_stock: int
    reserved_stock: int = 0

    @property
    def available_stock(self) -> int:
        return self.current_stock - self.reserved_stock

    @classmethod
    def from_model(cls, model: ProductModel) -> ProductLevels:
        return cls(
            current_stock=model.current_stock,
            min_stock=model.min_stock,
            max_stock=model.max_stock,
            reserved_stock=model.reserved_stock,
        )


@dataclass(frozen=True)
class ProductRecord:
    """Read-only snapshot of a product row."""

    id: UUID
    sku: str
    name: str
    category: str | None
    price: Decimal
    cost: Decimal
    current_stock: int
    min_stock: int
    max_stock: int
    reserved_stock: int
    baseline_stock: int
    status: ProductStatus
    version: int
    movement_seq: int = 0
    description: str | None = None
    supplier: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def levels(self) -> ProductLevels:
        return ProductLevels(
            current_stock=self.current_stock,
            min_stock=self.min_stock,
            max_stock=self.max_stock,
            reserved_stock=self.reserved_stock,
        )

    @property
    def available_stock(self) -> int:
        return self.current_stock - self.reserved_stock

    @classmethod
    def from_model(cls, model: ProductModel) -> ProductRecord:
        return cls(
            id=model.id,
            sku=model.sku,
            name=model.name,
            category=model.category,
            price=model.price,
            cost=model.cost,
            current_stock=model.current_stock,
            min_stock=model.min_stock,
            max_stock=model.max_stock,
            reserved_stock=model.reserved_stock,
            baseline_stock=model.baseline_stock,
            status=ProductStatus(model.status),
            version=model.version,
            movement_seq=model.movement_seq,
            description=model.description,
            supplier=model.supplier,
            created_at=model.created_at,
            updated_at=model.updated_at,
        )


@dataclass(frozen=True)
class ReservationRecord:
    """Read-only view of a stock reservation."""

    id: UUID
    product_id: UUID
    reference_type: str
    reference_id: str
    quantity: int
    status: str
    created_at: datetime
    expires_at: datetime | None = None
    closed_at: datetime | None = None

    @classmethod
    def from_model(cls, model: ReservationModel) -> ReservationRecord:
        return cls(
            id=model.id,
            product_id=model.product_id,
            reference_type=model.reference_type,
            reference_id=model.reference_id,
            quantity=model.quantity,
            status=model.status,
            created_at=model.created_at,
            expires_at=model.expires_at,
            closed_at=model.closed_at,
        )


@dataclass(frozen=True)
class AdjustmentRequest:
    """
    One stock change requested by a caller.

    ``consume_reservation`` releases the active reservation held for the
    same (reference_type, reference_id) on this product, up to the outbound
    quantity, in the same transaction as the movement.
    """

    product_id: UUID
    quantity_change: int
    movement_type: MovementType
    reason: str
    actor_id: UUID | None
    unit_cost: Decimal | None = None
    reference_id: str | None = None
    reference_type: str | None = None
    actor_name: str | None = None
    location: str | None = None
    batch_number: str | None = None
    expiry_date: date | None = None
    notes: str | None = None
    consume_reservation: bool = False


@dataclass(frozen=True)
class StockStatusChange:
    """Notification handed to status listeners after a committed adjustment."""

    product_id: UUID
    sku: str
    previous: StockStatus
    current: StockStatus
    current_stock: int
    movement_id: UUID | None = None


@dataclass(frozen=True)
class ChainBreak:
    """A movement whose quantity_before does not follow its predecessor."""

    sequence: int
    expected_before: int
    recorded_before: int


@dataclass(frozen=True)
class ReconciliationResult:
    """
    Outcome of comparing stored stock with the movement log projection.

    ``consistent`` compares the projection with the stored value.  Chain
    breaks are reported alongside; they explain a mismatch but a historical
    break whose fold still matches is not a divergence.
    """

    product_id: UUID
    consistent: bool
    expected: int
    actual: int
    movement_count: int = 0
    chain_breaks: tuple[ChainBreak, ...] = ()


@dataclass(frozen=True)
class MovementTotals:
    """Aggregated movement figures for one movement type."""

    movement_type: MovementType
    movement_count: int
    quantity: int
    total_value: Decimal


@dataclass(frozen=True)
class ProductSales:
    """Net units sold of one product, with the cost value of those units."""

    product_id: UUID
    sku: str
    name: str
    units_sold: int
    sold_value: Decimal


@dataclass(frozen=True)
class InventorySummary:
    """Inventory-wide figures for the dashboard."""

    product_count: int
    total_stock_value: Decimal
    status_counts: Mapping[str, int] = field(
        default_factory=lambda: MappingProxyType({})
    )
    divergent_count: int = 0
    low_stock_count: int = 0

    def __post_init__(self) -> None:
        if not isinstance(self.status_counts, MappingProxyType):
            object.__setattr__(
                self, "status_counts", MappingProxyType(dict(self.status_counts))
            )


@dataclass(frozen=True)
class OrderLine:
    """One order item as supplied by the order-processing caller."""

    product_id: UUID
    quantity: int
    sku: str | None = None


@dataclass(frozen=True)
class OrderSnapshot:
    """The order fields the ledger reacts to.  The ledger does not own orders."""

    order_id: str
    items: tuple[OrderLine, ...]
    status: str

    def __post_init__(self) -> None:
        if not isinstance(self.items, tuple):
            object.__setattr__(self, "items", tuple(self.items))


@dataclass(frozen=True)
class DivergenceReportRecord:
    """Read-only view of a divergence report."""

    id: UUID
    product_id: UUID
    expected: int
    actual: int | None
    source: str
    detected_at: datetime
    movement_id: UUID | None = None
    detail: str | None = None
    resolved_at: datetime | None = None
    resolved_by_id: UUID | None = None
    resolution: str | None = None
    resolution_note: str | None = None

    @property
    def is_open(self) -> bool:
        return self.resolved_at is None

    @classmethod
    def from_model(cls, model: DivergenceReportModel) -> DivergenceReportRecord:
        return cls(
            id=model.id,
            product_id=model.product_id,
            expected=model.expected,
            actual=model.actual,
            source=model.source,
            detected_at=model.detected_at,
            movement_id=model.movement_id,
            detail=model.detail,
            resolved_at=model.resolved_at,
            resolved_by_id=model.resolved_by_id,
            resolution=model.resolution,
            resolution_note=model.resolution_note,
        )
