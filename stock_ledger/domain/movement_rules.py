"""
Movement rules -- pure validation of a movement before it is written.

Responsibility:
    Rejects malformed movements before any write: zero delta, negative
    resulting stock, broken before/after arithmetic, missing reason or
    actor, negative unit cost, and a sign that contradicts the declared
    movement type.

Architecture position:
    Ledger > Domain -- pure functional core, zero I/O.

Failure modes:
    - ValidationError with the offending field name.
"""

from decimal import Decimal

from stock_ledger.domain.dtos import MovementDraft, MovementType
from stock_ledger.exceptions import ValidationError

INBOUND_TYPES = frozenset({MovementType.STOCK_IN, MovementType.RETURN})
OUTBOUND_TYPES = frozenset(
    {MovementType.STOCK_OUT, MovementType.SALE, MovementType.DAMAGE}
)
# Either sign is allowed
BIDIRECTIONAL_TYPES = frozenset({MovementType.ADJUSTMENT, MovementType.TRANSFER})

MAX_REASON_LENGTH = 500


def coerce_movement_type(value: MovementType | str) -> MovementType:
    """Accept an enum member or its string value."""
    if isinstance(value, MovementType):
        return value
    try:
        return MovementType(value)
    except ValueError:
        raise ValidationError("movement_type", f"unknown movement type {value!r}") from None


def validate_quantity_change(quantity_change: int) -> None:
    if isinstance(quantity_change, bool) or not isinstance(quantity_change, int):
        raise ValidationError("quantity_change", "must be an integer")
    if quantity_change == 0:
        raise ValidationError("quantity_change", "must be nonzero")


def validate_direction(movement_type: MovementType, quantity_change: int) -> None:
    """The sign of the change must agree with the declared type."""
    if movement_type in INBOUND_TYPES and quantity_change < 0:
        raise ValidationError(
            "quantity_change",
            f"{movement_type.value} movements must increase stock",
        )
    if movement_type in OUTBOUND_TYPES and quantity_change > 0:
        raise ValidationError(
            "quantity_change",
            f"{movement_type.value} movements must decrease stock",
        )


def validate_reason(reason: str | None) -> None:
    if reason is None or not reason.strip():
        raise ValidationError("reason", "is required")
    if len(reason) > MAX_REASON_LENGTH:
        raise ValidationError("reason", f"exceeds {MAX_REASON_LENGTH} characters")


def validate_draft(draft: MovementDraft) -> None:
    """
    Validate a movement draft.

    Preconditions: draft is built from the current (locked) product row.
    Raises:
        ValidationError: on the first rule the draft breaks.
    """
    if draft.product_id is None:
        raise ValidationError("product_id", "is required")
    movement_type = coerce_movement_type(draft.movement_type)
    validate_quantity_change(draft.quantity_change)
    validate_direction(movement_type, draft.quantity_change)
    validate_reason(draft.reason)
    if draft.actor_id is None:
        raise ValidationError("actor_id", "is required")
    if draft.unit_cost is None or draft.unit_cost < Decimal("0"):
        raise ValidationError("unit_cost", "must be zero or positive")
    if draft.quantity_before < 0:
        raise ValidationError("quantity_before", "cannot be negative")
    if draft.quantity_after < 0:
        raise ValidationError("quantity_after", "cannot be negative")
    if draft.quantity_after != draft.quantity_before + draft.quantity_change:
        raise ValidationError(
            "quantity_after",
            f"{draft.quantity_after} != {draft.quantity_before} + {draft.quantity_change}",
        )
