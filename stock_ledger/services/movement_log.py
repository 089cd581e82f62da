"""
MovementLog -- the append-only stock movement log.

Responsibility:
    Appends validated movements and lists a product's history.  There is
    deliberately no update or delete operation here; the ORM listeners in
    db/immutability.py block both at flush time.

Architecture position:
    Ledger > Services -- flush-only, runs inside the adjustment engine's
    transaction and stock_write_scope().

Invariants enforced:
    - quantity_change != 0, quantity_after >= 0,
      quantity_after == quantity_before + quantity_change, reason and actor
      present (movement_rules.validate_draft).
    - Sequence numbers are assigned from the product row loaded by the
      caller, which holds the product lock; (product_id, sequence) is unique.
    - total_value == |quantity_change| * unit_cost.

Failure modes:
    - ValidationError before any write.
    - ProductNotFoundError if the product row does not exist.
"""

from uuid import UUID

from stock_ledger.domain.dtos import MovementDraft, MovementRecord
from stock_ledger.domain.movement_rules import coerce_movement_type, validate_draft
from stock_ledger.exceptions import ProductNotFoundError
from stock_ledger.logging_config import get_logger
from stock_ledger.models.product import Product
from stock_ledger.models.stock_movement import StockMovement
from stock_ledger.selectors.movement_selector import MovementSelector
from stock_ledger.services.base import BaseService

logger = get_logger("services.movement_log")


class MovementLog(BaseService[StockMovement]):
    """Append and list stock movements."""

    def append(self, draft: MovementDraft) -> UUID:
        """
        Append one movement and return its id.

        Preconditions: the caller holds the product lock and has loaded the
            product row in this session (normally FOR UPDATE).
        Postconditions: the movement is flushed; product.movement_seq is
            advanced to the new sequence.
        """
        validate_draft(draft)

        product = self.session.get(Product, draft.product_id)
        if product is None:
            raise ProductNotFoundError(str(draft.product_id))

        sequence = product.movement_seq + 1
        movement = StockMovement(
            product_id=draft.product_id,
            sequence=sequence,
            movement_type=coerce_movement_type(draft.movement_type).value,
            quantity_change=draft.quantity_change,
            quantity_before=draft.quantity_before,
            quantity_after=draft.quantity_after,
            unit_cost=draft.unit_cost,
            total_value=draft.total_value,
            reason=draft.reason.strip(),
            reference_id=draft.reference_id,
            reference_type=draft.reference_type,
            actor_id=draft.actor_id,
            actor_name=draft.actor_name,
            product_sku=product.sku,
            product_name=product.name,
            location=draft.location,
            batch_number=draft.batch_number,
            expiry_date=draft.expiry_date,
            notes=draft.notes,
            created_at=draft.created_at,
        )
        product.movement_seq = sequence
        self.session.add(movement)
        self.session.flush()

        logger.debug(
            "movement_appended",
            extra={
                "movement_id": str(movement.id),
                "sequence": sequence,
                "movement_type": movement.movement_type,
                "quantity_change": draft.quantity_change,
            },
        )
        return movement.id

    def list_by_product(
        self,
        product_id: UUID,
        after_sequence: int | None = None,
        limit: int | None = None,
    ) -> list[MovementRecord]:
        return MovementSelector(self.session).list_by_product(
            product_id, after_sequence=after_sequence, limit=limit
        )
