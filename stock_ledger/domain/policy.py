"""
Low-stock and reservation policy.

Responsibility:
    Classifies a product's stock level and answers whether a quantity can
    be reserved.  Pure functions over ProductLevels.

Architecture position:
    Ledger > Domain -- pure functional core, zero I/O.

Classification, in priority order:
    stock == 0                      -> critical
    stock <= min_stock * ratio      -> critical   (ratio defaults to 0.5)
    stock <= min_stock              -> low
    stock >= max_stock              -> overstock
    otherwise                       -> optimal

``stock`` is current_stock for shelf/reorder checks (StockBasis.ON_HAND)
and current_stock - reserved_stock for sellability checks
(StockBasis.AVAILABLE).  Callers pick the basis explicitly.
"""

from decimal import Decimal

from stock_ledger.domain.dtos import ProductLevels, StockBasis, StockStatus
from stock_ledger.exceptions import ValidationError

DEFAULT_CRITICAL_RATIO = Decimal("0.5")

# Statuses that appear on the low-stock report
ALERT_STATUSES = frozenset({StockStatus.CRITICAL, StockStatus.LOW})


def basis_quantity(levels: ProductLevels, basis: StockBasis = StockBasis.ON_HAND) -> int:
    if basis == StockBasis.AVAILABLE:
        return levels.available_stock
    return levels.current_stock


def classify(
    levels: ProductLevels,
    basis: StockBasis = StockBasis.ON_HAND,
    critical_ratio: Decimal = DEFAULT_CRITICAL_RATIO,
) -> StockStatus:
    """Classify stock against the product's min/max thresholds."""
    stock = basis_quantity(levels, basis)
    if stock <= 0:
        return StockStatus.CRITICAL
    if stock <= levels.min_stock * critical_ratio:
        return StockStatus.CRITICAL
    if stock <= levels.min_stock:
        return StockStatus.LOW
    if stock >= levels.max_stock:
        return StockStatus.OVERSTOCK
    return StockStatus.OPTIMAL


def can_reserve(levels: ProductLevels, requested: int) -> bool:
    """True iff current_stock - reserved_stock >= requested."""
    if requested < 0:
        raise ValidationError("requested", "cannot be negative")
    return levels.available_stock >= requested


def stock_level_percent(levels: ProductLevels) -> int:
    """current_stock as a percentage of max_stock, capped at 100."""
    if levels.max_stock <= 0:
        return 100 if levels.current_stock > 0 else 0
    return min(levels.current_stock * 100 // levels.max_stock, 100)


def needs_reorder(
    levels: ProductLevels,
    critical_ratio: Decimal = DEFAULT_CRITICAL_RATIO,
) -> bool:
    """On-hand stock is low or critical."""
    return classify(levels, StockBasis.ON_HAND, critical_ratio) in ALERT_STATUSES
