"""
ORM models for the stock ledger.

Importing this package registers every table on Base.metadata.
"""

from stock_ledger.domain.dtos import MovementType, ProductStatus
from stock_ledger.models.divergence import (
    DivergenceSource,
    ResolutionAction,
    StockDivergenceReport,
)
from stock_ledger.models.product import Product
from stock_ledger.models.reservation import ReservationStatus, StockReservation
from stock_ledger.models.stock_movement import StockMovement

__all__ = [
    "DivergenceSource",
    "MovementType",
    "Product",
    "ProductStatus",
    "ReservationStatus",
    "ResolutionAction",
    "StockDivergenceReport",
    "StockMovement",
    "StockReservation",
]
