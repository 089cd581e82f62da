"""
Stock projector -- derive stock from the movement log.

Responsibility:
    ``project`` folds movement quantity changes onto a baseline.
    ``reconcile`` compares that fold with a product's stored current_stock
    and reports before/after chain gaps.  Neither function corrects
    anything; acting on a mismatch is the reconciliation service's job.

Architecture position:
    Ledger > Domain -- pure functional core, zero I/O.  Works on any objects
    exposing product_id, sequence, quantity_change, quantity_before and
    quantity_after (MovementRecord or the ORM row).
"""

from typing import Iterable, Protocol
from uuid import UUID

from stock_ledger.domain.dtos import ChainBreak, ReconciliationResult
from stock_ledger.exceptions import ValidationError


class MovementLike(Protocol):
    product_id: UUID
    sequence: int
    quantity_change: int
    quantity_before: int
    quantity_after: int


class ProductLike(Protocol):
    id: UUID
    current_stock: int
    baseline_stock: int


def project(product_id: UUID, baseline: int, movements: Iterable[MovementLike]) -> int:
    """
    Fold quantity changes onto ``baseline`` in the order given.

    Raises:
        ValidationError: if a movement belongs to another product.
    """
    quantity = baseline
    for movement in movements:
        if movement.product_id != product_id:
            raise ValidationError(
                "movements",
                f"movement of product {movement.product_id} in log of {product_id}",
            )
        quantity += movement.quantity_change
    return quantity


def find_chain_breaks(baseline: int, movements: Iterable[MovementLike]) -> list[ChainBreak]:
    """Movements whose quantity_before is not the running projection."""
    breaks = []
    running = baseline
    for movement in movements:
        if movement.quantity_before != running:
            breaks.append(
                ChainBreak(
                    sequence=movement.sequence,
                    expected_before=running,
                    recorded_before=movement.quantity_before,
                )
            )
        running += movement.quantity_change
    return breaks


def reconcile(product: ProductLike, movements: Iterable[MovementLike]) -> ReconciliationResult:
    """
    Compare ``product.current_stock`` with the projection of ``movements``.

    ``movements`` must be the product's full log in sequence order.
    """
    movements = list(movements)
    expected = project(product.id, product.baseline_stock, movements)
    chain_breaks = tuple(find_chain_breaks(product.baseline_stock, movements))
    return ReconciliationResult(
        product_id=product.id,
        consistent=expected == product.current_stock,
        expected=expected,
        actual=product.current_stock,
        movement_count=len(movements),
        chain_breaks=chain_breaks,
    )
