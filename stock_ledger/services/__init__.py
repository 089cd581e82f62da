"""Ledger services: the adjustment engine and the services around it."""

from stock_ledger.services.adjustment_engine import AdjustmentEngine
from stock_ledger.services.locking import ProductLockRegistry
from stock_ledger.services.movement_log import MovementLog
from stock_ledger.services.order_fulfillment import OrderStockHandler
from stock_ledger.services.product_service import ProductService
from stock_ledger.services.reconciliation_service import (
    DivergenceReporter,
    ReconciliationService,
)
from stock_ledger.services.reservation_service import ReservationService
from stock_ledger.services.stock_ledger import StockLedger

__all__ = [
    "AdjustmentEngine",
    "DivergenceReporter",
    "MovementLog",
    "OrderStockHandler",
    "ProductLockRegistry",
    "ProductService",
    "ReconciliationService",
    "ReservationService",
    "StockLedger",
]
