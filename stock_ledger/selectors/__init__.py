"""Read-only query selectors."""

from stock_ledger.selectors.inventory_selector import InventorySelector
from stock_ledger.selectors.movement_selector import MovementSelector
from stock_ledger.selectors.product_selector import ProductSelector

__all__ = ["InventorySelector", "MovementSelector", "ProductSelector"]
