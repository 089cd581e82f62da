"""
Stock Ledger - inventory quantity tracking with an append-only movement log.

Provides:
- Append-only stock movements as the source of truth for history
- Projection and reconciliation of product quantities from the log
- Atomic, per-product serialized stock adjustments
- Low-stock classification and reservation policy
"""

__version__ = "0.1.0"
