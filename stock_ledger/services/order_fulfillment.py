"""
OrderStockHandler -- react to order status transitions.

Responsibility:
    Turns order status changes handed in by the order-processing caller into
    ledger movements.  The ledger does not own the order lifecycle; it only
    settles the net stock effect each order should have.

    status in STOCK_AFFECTING_STATUSES  -> net effect per product is -quantity
                                           (``sale`` movements, consuming the
                                           order's reservation)
    status == cancelled                  -> net effect returns to 0
                                           (compensating ``return`` movements,
                                           then the order's holds are released)
    anything else                        -> no stock effect

Invariants enforced:
    - Every movement carries reference_type='order' and reference_id=order id.
    - Original movements are never modified; cancellation appends offsetting
      movements.
    - Idempotent: the delta is computed from the net already recorded for
      the order, so re-delivered transitions write nothing.
    - A failure on line N compensates lines 1..N-1 before re-raising.
"""

from uuid import UUID

from stock_ledger.domain.dtos import MovementRecord, MovementType, OrderSnapshot
from stock_ledger.exceptions import StockLedgerError, ValidationError
from stock_ledger.logging_config import LogContext, get_logger
from stock_ledger.services.adjustment_engine import AdjustmentEngine
from stock_ledger.services.reservation_service import ReservationService

logger = get_logger("services.order_fulfillment")

ORDER_REFERENCE_TYPE = "order"
STOCK_AFFECTING_STATUSES = frozenset({"processing", "shipped", "delivered"})
CANCELLED_STATUS = "cancelled"


def aggregate_lines(order: OrderSnapshot) -> dict[UUID, int]:
    """Total quantity per product, in first-seen order."""
    totals: dict[UUID, int] = {}
    for line in order.items:
        if isinstance(line.quantity, bool) or not isinstance(line.quantity, int):
            raise ValidationError("quantity", f"order line quantity must be an integer: {line!r}")
        if line.quantity <= 0:
            raise ValidationError("quantity", f"order line quantity must be positive: {line!r}")
        totals[line.product_id] = totals.get(line.product_id, 0) + line.quantity
    return totals


class OrderStockHandler:
    """Settles the stock effect of order transitions through the engine."""

    def __init__(
        self,
        engine: AdjustmentEngine,
        reservations: ReservationService,
        reference_type: str = ORDER_REFERENCE_TYPE,
    ):
        self._engine = engine
        self._reservations = reservations
        self._reference_type = reference_type

    def handle_transition(
        self,
        order: OrderSnapshot,
        previous_status: str | None,
        new_status: str,
        actor_id: UUID,
        actor_name: str | None = None,
    ) -> list[MovementRecord]:
        """
        Apply the stock effect of ``previous_status`` -> ``new_status``.

        Returns the movements written (empty when nothing changed).
        """
        new_status = (new_status or "").lower()
        with LogContext.bind(
            reference_id=order.order_id,
            actor_id=actor_id,
            operation="order_transition",
        ):
            logger.info(
                "order_transition_received",
                extra={"previous_status": previous_status, "new_status": new_status},
            )
            if new_status in STOCK_AFFECTING_STATUSES:
                return self._fulfil(order, new_status, actor_id, actor_name)
            if new_status == CANCELLED_STATUS:
                return self._cancel(order, actor_id, actor_name)
            return []

    def _fulfil(
        self,
        order: OrderSnapshot,
        status: str,
        actor_id: UUID,
        actor_name: str | None,
    ) -> list[MovementRecord]:
        lines = aggregate_lines(order)
        written: list[MovementRecord] = []
        # (product_id, net before this call) for lines this call moved
        settled: list[tuple[UUID, int]] = []
        for product_id, quantity in lines.items():
            try:
                movement = self._engine.settle_reference(
                    product_id,
                    self._reference_type,
                    order.order_id,
                    target_net=-quantity,
                    reason=f"Order {order.order_id} {status}",
                    actor_id=actor_id,
                    outbound_type=MovementType.SALE,
                    inbound_type=MovementType.RETURN,
                    consume_reservation=True,
                    actor_name=actor_name,
                )
            except StockLedgerError:
                logger.error(
                    "order_fulfillment_failed",
                    extra={
                        "failed_product_id": str(product_id),
                        "settled_lines": len(settled),
                    },
                )
                self._compensate(order, settled, actor_id, actor_name)
                raise
            if movement is not None:
                settled.append((product_id, -quantity - movement.quantity_change))
                written.append(movement)
        return written

    def _compensate(
        self,
        order: OrderSnapshot,
        settled: list[tuple[UUID, int]],
        actor_id: UUID,
        actor_name: str | None,
    ) -> None:
        for product_id, prior_net in reversed(settled):
            try:
                self._engine.settle_reference(
                    product_id,
                    self._reference_type,
                    order.order_id,
                    target_net=prior_net,
                    reason=f"Compensation for failed fulfillment of order {order.order_id}",
                    actor_id=actor_id,
                    outbound_type=MovementType.SALE,
                    inbound_type=MovementType.RETURN,
                    actor_name=actor_name,
                )
            except StockLedgerError:
                logger.exception(
                    "order_compensation_failed",
                    extra={"failed_product_id": str(product_id)},
                )

    def _cancel(
        self,
        order: OrderSnapshot,
        actor_id: UUID,
        actor_name: str | None,
    ) -> list[MovementRecord]:
        written: list[MovementRecord] = []
        for product_id in aggregate_lines(order):
            movement = self._engine.settle_reference(
                product_id,
                self._reference_type,
                order.order_id,
                target_net=0,
                reason=f"Order {order.order_id} cancelled",
                actor_id=actor_id,
                outbound_type=MovementType.SALE,
                inbound_type=MovementType.RETURN,
                actor_name=actor_name,
            )
            if movement is not None:
                written.append(movement)
            self._reservations.release_for_reference(
                product_id, self._reference_type, order.order_id, actor_id
            )
        return written
