"""
Pure domain core of the stock ledger: DTOs, movement rules, projector,
policy and clock.  Nothing in this package performs I/O.
"""

from stock_ledger.domain.clock import Clock, DeterministicClock, SystemClock
from stock_ledger.domain.dtos import (
    AdjustmentRequest,
    ChainBreak,
    DivergenceReportRecord,
    InventorySummary,
    MovementDraft,
    MovementRecord,
    MovementTotals,
    MovementType,
    OrderLine,
    OrderSnapshot,
    ProductLevels,
    ProductRecord,
    ProductSales,
    ProductStatus,
    ReconciliationResult,
    ReservationRecord,
    StockBasis,
    StockStatus,
    StockStatusChange,
)
from stock_ledger.domain.policy import can_reserve, classify, stock_level_percent
from stock_ledger.domain.projector import project, reconcile

__all__ = [
    "AdjustmentRequest",
    "ChainBreak",
    "Clock",
    "DivergenceReportRecord",
    "DeterministicClock",
    "InventorySummary",
    "MovementDraft",
    "MovementRecord",
    "MovementTotals",
    "MovementType",
    "OrderLine",
    "OrderSnapshot",
    "ProductLevels",
    "ProductRecord",
    "ProductSales",
    "ProductStatus",
    "ReconciliationResult",
    "ReservationRecord",
    "StockBasis",
    "StockStatus",
    "StockStatusChange",
    "SystemClock",
    "can_reserve",
    "classify",
    "project",
    "reconcile",
    "stock_level_percent",
]
