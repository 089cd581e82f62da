"""
Movement rule tests.

Verifies:
- Zero, non-integer and bool quantity changes are rejected
- Declared type and sign must agree; adjustment/transfer take either sign
- Reason and actor are required; unit cost cannot be negative
- before/after arithmetic must chain
"""

from dataclasses import replace
from datetime import datetime, timezone
from decimal import Decimal
from uuid import uuid4

import pytest

from stock_ledger.domain.dtos import MovementDraft, MovementType
from stock_ledger.domain.movement_rules import (
    MAX_REASON_LENGTH,
    coerce_movement_type,
    validate_direction,
    validate_draft,
    validate_quantity_change,
    validate_reason,
)
from stock_ledger.exceptions import ValidationError

NOW = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def draft():
    return MovementDraft(
        product_id=uuid4(),
        movement_type=MovementType.SALE,
        quantity_change=-3,
        quantity_before=20,
        quantity_after=17,
        reason="Counter sale",
        actor_id=uuid4(),
        created_at=NOW,
        unit_cost=Decimal("2.50"),
    )


class TestQuantityChange:
    def test_zero_rejected(self):
        with pytest.raises(ValidationError) as exc_info:
            validate_quantity_change(0)
        assert exc_info.value.field == "quantity_change"

    @pytest.mark.parametrize("value", [1.5, "3", True, None])
    def test_non_integer_rejected(self, value):
        with pytest.raises(ValidationError):
            validate_quantity_change(value)

    @pytest.mark.parametrize("value", [1, -1, 1000, -1000])
    def test_nonzero_integer_accepted(self, value):
        validate_quantity_change(value)


class TestDirection:
    @pytest.mark.parametrize("movement_type", [MovementType.STOCK_IN, MovementType.RETURN])
    def test_inbound_types_must_increase(self, movement_type):
        validate_direction(movement_type, 5)
        with pytest.raises(ValidationError):
            validate_direction(movement_type, -5)

    @pytest.mark.parametrize(
        "movement_type",
        [MovementType.STOCK_OUT, MovementType.SALE, MovementType.DAMAGE],
    )
    def test_outbound_types_must_decrease(self, movement_type):
        validate_direction(movement_type, -5)
        with pytest.raises(ValidationError):
            validate_direction(movement_type, 5)

    @pytest.mark.parametrize("movement_type", [MovementType.ADJUSTMENT, MovementType.TRANSFER])
    @pytest.mark.parametrize("change", [5, -5])
    def test_bidirectional_types_take_either_sign(self, movement_type, change):
        validate_direction(movement_type, change)


class TestCoercion:
    def test_string_value_accepted(self):
        assert coerce_movement_type("sale") is MovementType.SALE

    def test_unknown_type_rejected(self):
        with pytest.raises(ValidationError) as exc_info:
            coerce_movement_type("shrinkage")
        assert exc_info.value.field == "movement_type"


class TestReason:
    @pytest.mark.parametrize("reason", [None, "", "   "])
    def test_blank_reason_rejected(self, reason):
        with pytest.raises(ValidationError):
            validate_reason(reason)

    def test_overlong_reason_rejected(self):
        with pytest.raises(ValidationError):
            validate_reason("x" * (MAX_REASON_LENGTH + 1))

    def test_reason_at_limit_accepted(self):
        validate_reason("x" * MAX_REASON_LENGTH)


class TestDraft:
    def test_valid_draft_passes(self, draft):
        validate_draft(draft)

    def test_missing_actor_rejected(self, draft):
        with pytest.raises(ValidationError) as exc_info:
            validate_draft(replace(draft, actor_id=None))
        assert exc_info.value.field == "actor_id"

    def test_negative_unit_cost_rejected(self, draft):
        with pytest.raises(ValidationError) as exc_info:
            validate_draft(replace(draft, unit_cost=Decimal("-0.01")))
        assert exc_info.value.field == "unit_cost"

    def test_negative_after_rejected(self, draft):
        with pytest.raises(ValidationError) as exc_info:
            validate_draft(replace(draft, quantity_before=2, quantity_after=-1))
        assert exc_info.value.field == "quantity_after"

    def test_broken_chain_rejected(self, draft):
        with pytest.raises(ValidationError) as exc_info:
            validate_draft(replace(draft, quantity_after=18))
        assert exc_info.value.field == "quantity_after"

    def test_total_value_is_magnitude_times_cost(self, draft):
        assert draft.total_value == Decimal("7.50")
