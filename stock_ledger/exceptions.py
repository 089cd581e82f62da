"""
Typed Exception Hierarchy for the Stock Ledger.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers of the ledger (order processing, manual restock, scheduled scans)
must react differently to each failure: a rejected adjustment can be shown
to the user, a persistence failure can be retried, a ledger divergence must
be escalated to a human.  Parsing message strings for that is fragile, so
every failure has:
  1. A TYPED exception class (catch by type, not message)
  2. A CODE attribute (machine-readable, API-safe)
  3. A RETRYABLE flag (caller decides the retry policy, never the ledger)
  4. Structured DATA attributes (not just a message string)

Example:
    try:
        engine.apply_adjustment(...)
    except InsufficientStockError as e:
        notify_user(f"Only {e.current_stock} left of {e.product_id}")
    except StockLedgerError as e:
        if e.retryable:
            schedule_retry()
        else:
            raise

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    StockLedgerError (base)
    |
    +-- ValidationError                 rejected before any write
    |
    +-- ProductError
    |   +-- ProductNotFoundError
    |   +-- DuplicateSkuError
    |   +-- ProductDiscontinuedError
    |   +-- ProductInUseError
    |
    +-- InsufficientStockError          rejected before any write
    |
    +-- PolicyViolationError            rejected before reserved_stock changes
    |   +-- ReservationNotFoundError
    |
    +-- PersistenceError                retryable, nothing written
    |
    +-- ConcurrencyError                retryable, nothing written
    |   +-- OptimisticLockError
    |   +-- LockTimeoutError
    |
    +-- LedgerDivergenceError           flagged in-between state
    +-- DivergenceReportNotFoundError
    |
    +-- ImmutabilityViolationError

===============================================================================
OUTCOME GUARANTEE
===============================================================================

Every error raised by the adjustment path leaves the system either in the
full pre-state (nothing written) or the full post-state (movement and
product quantity both committed).  The only in-between state is reported as
LedgerDivergenceError, which callers can distinguish by type and which is
also persisted as a human-reviewable divergence report.
"""


class StockLedgerError(Exception):
    """
    Base exception for all stock ledger errors.

    All subclasses carry a ``code`` class attribute for machine-readable
    identification and a ``retryable`` flag.
    """

    code: str = "STOCK_LEDGER_ERROR"
    retryable: bool = False


class ValidationError(StockLedgerError):
    """A movement or request is malformed (zero delta, missing actor/reason...)."""

    code: str = "VALIDATION_ERROR"

    def __init__(self, field: str, reason: str):
        self.field = field
        self.reason = reason
        super().__init__(f"Invalid {field}: {reason}")


# Product-related exceptions


class ProductError(StockLedgerError):
    """Base exception for product-related errors."""

    code: str = "PRODUCT_ERROR"


class ProductNotFoundError(ProductError):
    """Product with the given ID or SKU does not exist."""

    code: str = "PRODUCT_NOT_FOUND"

    def __init__(self, product_id: str):
        self.product_id = product_id
        super().__init__(f"Product not found: {product_id}")


class DuplicateSkuError(ProductError):
    """A product with this SKU already exists."""

    code: str = "DUPLICATE_SKU"

    def __init__(self, sku: str):
        self.sku = sku
        super().__init__(f"SKU already in use: {sku}")


class ProductDiscontinuedError(ProductError):
    """Outbound change requested on a discontinued product with no stock."""

    code: str = "PRODUCT_DISCONTINUED"

    def __init__(self, product_id: str):
        self.product_id = product_id
        super().__init__(
            f"Product {product_id} is discontinued with zero stock; "
            "outbound movements are not allowed"
        )


class ProductInUseError(ProductError):
    """Product is referenced by movements and cannot be physically deleted."""

    code: str = "PRODUCT_IN_USE"

    def __init__(self, product_id: str, movement_count: int):
        self.product_id = product_id
        self.movement_count = movement_count
        super().__init__(
            f"Product {product_id} has {movement_count} movement(s); "
            "deactivate it instead of deleting"
        )


# Stock-level exceptions


class InsufficientStockError(StockLedgerError):
    """The requested outbound change would drive stock below zero."""

    code: str = "INSUFFICIENT_STOCK"

    def __init__(self, product_id: str, current_stock: int, quantity_change: int):
        self.product_id = product_id
        self.current_stock = current_stock
        self.quantity_change = quantity_change
        super().__init__(
            f"Insufficient stock for {product_id}: "
            f"{current_stock} on hand, change of {quantity_change} requested"
        )


class PolicyViolationError(StockLedgerError):
    """The reservation invariant 0 <= reserved_stock <= current_stock would break."""

    code: str = "POLICY_VIOLATION"

    def __init__(
        self,
        product_id: str,
        reason: str,
        current_stock: int | None = None,
        reserved_stock: int | None = None,
        requested: int | None = None,
    ):
        self.product_id = product_id
        self.reason = reason
        self.current_stock = current_stock
        self.reserved_stock = reserved_stock
        self.requested = requested
        super().__init__(f"Reservation policy violation on {product_id}: {reason}")


class ReservationNotFoundError(PolicyViolationError):
    """Reservation with the given ID does not exist or is not active."""

    code: str = "RESERVATION_NOT_FOUND"

    def __init__(self, reservation_id: str, product_id: str = ""):
        self.reservation_id = reservation_id
        super().__init__(
            product_id=product_id,
            reason=f"Active reservation not found: {reservation_id}",
        )


# Infrastructure exceptions


class PersistenceError(StockLedgerError):
    """
    The underlying store call failed.

    Nothing was written.  The ledger never retries on its own to avoid
    duplicate movement writes; the caller owns the retry policy.
    """

    code: str = "PERSISTENCE_ERROR"
    retryable: bool = True

    def __init__(self, operation: str, detail: str):
        self.operation = operation
        self.detail = detail
        super().__init__(f"Persistence failure during {operation}: {detail}")


class ConcurrencyError(StockLedgerError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"
    retryable: bool = True


class OptimisticLockError(ConcurrencyError):
    """The row changed between read and commit (version token mismatch)."""

    code: str = "OPTIMISTIC_LOCK_CONFLICT"

    def __init__(self, entity_type: str, entity_id: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(
            f"Optimistic lock conflict on {entity_type} {entity_id}: "
            "entity was modified by another transaction"
        )


class LockTimeoutError(ConcurrencyError):
    """The per-product adjustment lock could not be acquired in time."""

    code: str = "LOCK_TIMEOUT"

    def __init__(self, product_id: str, timeout_seconds: float):
        self.product_id = product_id
        self.timeout_seconds = timeout_seconds
        super().__init__(
            f"Could not acquire stock lock for {product_id} "
            f"within {timeout_seconds}s"
        )


# Ledger integrity exceptions


class LedgerDivergenceError(StockLedgerError):
    """
    Stored current_stock disagrees with the movement log projection.

    Never auto-corrected.  The condition is persisted as a divergence report
    and the product is excluded from automatic status classification until a
    human resolves it.
    """

    code: str = "LEDGER_DIVERGENCE"

    def __init__(
        self,
        product_id: str,
        expected: int,
        actual: int | None,
        movement_id: str | None = None,
        report_id: str | None = None,
    ):
        self.product_id = product_id
        self.expected = expected
        self.actual = actual
        self.movement_id = movement_id
        self.report_id = report_id
        super().__init__(
            f"Ledger divergence on {product_id}: "
            f"movement log projects {expected}, product stores {actual}"
        )


class DivergenceReportNotFoundError(StockLedgerError):
    """Divergence report does not exist or is already resolved."""

    code: str = "DIVERGENCE_REPORT_NOT_FOUND"

    def __init__(self, report_id: str):
        self.report_id = report_id
        super().__init__(f"Open divergence report not found: {report_id}")


class ImmutabilityViolationError(StockLedgerError):
    """
    Attempted to modify or delete an immutable record or field.

    Movements are append-only; SKU never changes; current_stock and
    reserved_stock change only inside a ledger write scope.
    """

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )
