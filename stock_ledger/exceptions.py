"""
Typed Exception Hierarchy for the Stock Ledger.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Every rejected adjustment must tell the caller exactly what to fix, for
example the step size the quantity must respect or the stock actually
available.  Parsing message strings for that is fragile, so:

  1. Every error has a TYPED exception class (catch by type, not message)
  2. Every exception has a CODE attribute (machine-readable, API-safe)
  3. Exceptions carry structured DATA (not just a message string)

Example:
    try:
        service.apply_adjustment(...)
    except InsufficientStockError as e:
        api_response(code=e.code, available=e.available, requested=e.requested)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

All exceptions inherit from StockLedgerError:

    StockLedgerError (base)
    |
    +-- ProductError
    |   +-- ProductNotFoundError
    |   +-- ProductAlreadyExistsError
    |
    +-- AdjustmentError               (caller-correctable validation)
    |   +-- InvalidQuantityError
    |   +-- NonPositiveQuantityError
    |   +-- InvalidStepError
    |   +-- MissingReasonError
    |   +-- MissingReferenceError
    |   +-- InsufficientStockError
    |   +-- UnknownAdjustmentCauseError
    |
    +-- BatchError
    |   +-- BatchValidationFailedError
    |   +-- InvalidBatchItemError
    |   +-- EmptyBatchError
    |
    +-- QueryError
    |   +-- InvalidQueryError
    |
    +-- ThresholdError
    |   +-- InvalidThresholdError
    |
    +-- ConcurrencyError
    |   +-- ConcurrencyConflictError
    |
    +-- StorageError
    |   +-- StorageFailureError
    |
    +-- ImmutabilityError
    |   +-- ImmutabilityViolationError
    |   +-- UnauthorizedStockWriteError
    |
    +-- ConfigurationError
        +-- InvalidSettingsError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                        | When Raised
----------------|-----------------------------|-----------------------------------------
Product         | PRODUCT_NOT_FOUND           | Product ID doesn't exist
                | PRODUCT_ALREADY_EXISTS      | Duplicate SKU on registration
----------------|-----------------------------|-----------------------------------------
Adjustment      | INVALID_QUANTITY            | Not a number, or finer than the stored scale
                | NON_POSITIVE_QUANTITY       | Quantity <= 0
                | INVALID_STEP                | Quantity not a multiple of min_quantity
                | MISSING_REASON              | Blank reason
                | MISSING_REFERENCE           | Cause requires a reference, none given
                | INSUFFICIENT_STOCK          | Removal exceeds current stock
                | UNKNOWN_ADJUSTMENT_CAUSE    | Cause code not in the taxonomy
----------------|-----------------------------|-----------------------------------------
Batch           | BATCH_VALIDATION_FAILED     | One or more batch items invalid
                | EMPTY_BATCH                 | Batch contains no items
                | INVALID_BATCH_ITEM          | Item missing product_id or quantity, bad UUID
----------------|-----------------------------|-----------------------------------------
Query           | INVALID_QUERY               | Bad page, page size, sort or range
----------------|-----------------------------|-----------------------------------------
Threshold       | INVALID_THRESHOLD           | Negative or inverted thresholds
----------------|-----------------------------|-----------------------------------------
Concurrency     | CONCURRENCY_CONFLICT        | Lock/transaction contention, retries spent
----------------|-----------------------------|-----------------------------------------
Storage         | STORAGE_FAILURE             | Persistence layer error (rolled back)
----------------|-----------------------------|-----------------------------------------
Immutability    | IMMUTABILITY_VIOLATION      | Modifying/deleting a ledger entry
                | UNAUTHORIZED_STOCK_WRITE    | Stock changed outside a ledger write
----------------|-----------------------------|-----------------------------------------
Configuration   | INVALID_SETTINGS            | Settings value out of range

===============================================================================
HANDLING PATTERNS
===============================================================================

1. AdjustmentError and BatchError are user-facing: show the structured
   fields, let the user correct the request.
2. ConcurrencyError is retried inside StockLedgerService; callers only see
   it once the retries are exhausted.
3. StorageError is fatal for the current call.  State was rolled back.
4. ImmutabilityError indicates a programming error or tampering attempt.

===============================================================================
"""

from decimal import Decimal


class StockLedgerError(Exception):
    """
    Base exception for all stock ledger errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "STOCK_LEDGER_ERROR"


# Product-related exceptions


class ProductError(StockLedgerError):
    """Base exception for product-related errors."""

    code: str = "PRODUCT_ERROR"


class ProductNotFoundError(ProductError):
    """Product with given ID was not found."""

    code: str = "PRODUCT_NOT_FOUND"

    def __init__(self, product_id: str):
        self.product_id = product_id
        super().__init__(f"Product not found: {product_id}")


class ProductAlreadyExistsError(ProductError):
    """A product with the same SKU is already registered."""

    code: str = "PRODUCT_ALREADY_EXISTS"

    def __init__(self, sku: str):
        self.sku = sku
        super().__init__(f"Product with SKU '{sku}' already exists")


# Adjustment validation exceptions


class AdjustmentError(StockLedgerError):
    """Base exception for caller-correctable adjustment errors."""

    code: str = "ADJUSTMENT_ERROR"


class InvalidQuantityError(AdjustmentError):
    """Quantity is not a decimal number, or cannot be stored exactly."""

    code: str = "INVALID_QUANTITY"

    def __init__(self, value: str, reason: str | None = None):
        self.value = value
        self.reason = reason or "not a valid number"
        super().__init__(f"Quantity {value!r} is {self.reason}")


class NonPositiveQuantityError(AdjustmentError):
    """Requested quantity is zero or negative."""

    code: str = "NON_POSITIVE_QUANTITY"

    def __init__(self, quantity: Decimal):
        self.quantity = str(quantity)
        super().__init__(
            f"Quantity must be greater than zero, got {quantity}"
        )


class InvalidStepError(AdjustmentError):
    """
    Requested quantity is not a multiple of the product's step size.

    Carries the step and the nearest valid quantities on either side so the
    caller can correct the request without guessing.
    """

    code: str = "INVALID_STEP"

    def __init__(
        self,
        quantity: Decimal,
        step: Decimal,
        lower_valid: Decimal,
        upper_valid: Decimal,
    ):
        self.quantity = str(quantity)
        self.step = str(step)
        self.lower_valid = str(lower_valid)
        self.upper_valid = str(upper_valid)
        super().__init__(
            f"Quantity {quantity} is not a multiple of the minimum step {step} "
            f"(nearest valid quantities: {lower_valid}, {upper_valid})"
        )


class MissingReasonError(AdjustmentError):
    """Adjustment submitted without a reason."""

    code: str = "MISSING_REASON"

    def __init__(self, cause: str):
        self.cause = cause
        super().__init__(f"A reason is required for '{cause}' adjustments")


class MissingReferenceError(AdjustmentError):
    """Adjustment cause requires an external reference that was not given."""

    code: str = "MISSING_REFERENCE"

    def __init__(self, cause: str, reference_label: str):
        self.cause = cause
        self.reference_label = reference_label
        super().__init__(
            f"'{cause}' adjustments require a reference ({reference_label})"
        )


class InsufficientStockError(AdjustmentError):
    """Removal would drive stock below zero."""

    code: str = "INSUFFICIENT_STOCK"

    def __init__(
        self,
        product_id: str,
        available: Decimal,
        requested: Decimal,
        unit: str,
    ):
        self.product_id = product_id
        self.available = str(available)
        self.requested = str(requested)
        self.unit = unit
        super().__init__(
            f"Insufficient stock for product {product_id}: "
            f"requested {requested} {unit}, available {available} {unit}"
        )


class UnknownAdjustmentCauseError(AdjustmentError):
    """Cause code is not part of the adjustment taxonomy."""

    code: str = "UNKNOWN_ADJUSTMENT_CAUSE"

    def __init__(self, cause: str):
        self.cause = cause
        super().__init__(f"Unknown adjustment cause: {cause!r}")


# Batch exceptions


class BatchError(StockLedgerError):
    """Base exception for batch adjustment errors."""

    code: str = "BATCH_ERROR"


class BatchValidationFailedError(BatchError):
    """
    One or more items of a batch failed validation.  Nothing was applied.

    ``failures`` lists every failing item as ``BatchItemFailure``
    (index, product_id, error); ``index`` is the first failing position.
    """

    code: str = "BATCH_VALIDATION_FAILED"

    def __init__(self, failures: list, item_count: int):
        if not failures:
            raise ValueError("BatchValidationFailedError requires at least one failure")
        self.failures = tuple(failures)
        self.item_count = item_count
        self.index = self.failures[0].index
        self.indices = [f.index for f in self.failures]
        first = self.failures[0]
        super().__init__(
            f"Batch rejected: {len(self.failures)} of {item_count} item(s) failed "
            f"validation; first failure at index {first.index}: "
            f"[{first.error.code}] {first.error}"
        )


class InvalidBatchItemError(BatchError):
    """A batch item given as a mapping is missing a field or has a malformed one."""

    code: str = "INVALID_BATCH_ITEM"

    def __init__(self, field: str, reason: str):
        self.field = field
        self.reason = reason
        super().__init__(f"Batch item field '{field}' {reason}")


class EmptyBatchError(BatchError):
    """Batch contains no items."""

    code: str = "EMPTY_BATCH"

    def __init__(self):
        super().__init__("No adjustments provided")


# Query exceptions


class QueryError(StockLedgerError):
    """Base exception for history query errors."""

    code: str = "QUERY_ERROR"


class InvalidQueryError(QueryError):
    """History query arguments are invalid."""

    code: str = "INVALID_QUERY"

    def __init__(self, field: str, reason: str):
        self.field = field
        self.reason = reason
        super().__init__(f"Invalid history query ({field}): {reason}")


# Threshold exceptions


class ThresholdError(StockLedgerError):
    """Base exception for alert threshold errors."""

    code: str = "THRESHOLD_ERROR"


class InvalidThresholdError(ThresholdError):
    """Thresholds are negative, finer than the stored scale, or critical exceeds low."""

    code: str = "INVALID_THRESHOLD"

    def __init__(self, low: Decimal, critical: Decimal, reason: str):
        self.low = str(low)
        self.critical = str(critical)
        self.reason = reason
        super().__init__(
            f"Invalid thresholds (low={low}, critical={critical}): {reason}"
        )


# Concurrency exceptions


class ConcurrencyError(StockLedgerError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"


class ConcurrencyConflictError(ConcurrencyError):
    """Lock or transaction contention prevented the operation."""

    code: str = "CONCURRENCY_CONFLICT"

    def __init__(self, product_ids: list[str], reason: str, attempts: int = 1):
        self.product_ids = list(product_ids)
        self.reason = reason
        self.attempts = attempts
        super().__init__(
            f"Concurrency conflict on product(s) {', '.join(self.product_ids)} "
            f"after {attempts} attempt(s): {reason}"
        )


# Storage exceptions


class StorageError(StockLedgerError):
    """Base exception for persistence errors."""

    code: str = "STORAGE_ERROR"


class StorageFailureError(StorageError):
    """
    The persistence layer failed.  The transaction was rolled back and no
    partial state was written.
    """

    code: str = "STORAGE_FAILURE"

    def __init__(self, operation: str, detail: str):
        self.operation = operation
        self.detail = detail
        super().__init__(f"Storage failure during {operation}: {detail}")


# Immutability exceptions


class ImmutabilityError(StockLedgerError):
    """Base exception for immutability-related errors."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """Attempted to modify or delete an append-only record."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )


class UnauthorizedStockWriteError(ImmutabilityError):
    """Product stock was changed outside of a ledger write."""

    code: str = "UNAUTHORIZED_STOCK_WRITE"

    def __init__(self, product_id: str):
        self.product_id = product_id
        super().__init__(
            f"Stock of product {product_id} may only change through a ledger entry"
        )


# Configuration exceptions


class ConfigurationError(StockLedgerError):
    """Base exception for configuration errors."""

    code: str = "CONFIGURATION_ERROR"


class InvalidSettingsError(ConfigurationError):
    """A settings value is missing, unknown or out of range."""

    code: str = "INVALID_SETTINGS"

    def __init__(self, setting: str, reason: str):
        self.setting = setting
        self.reason = reason
        super().__init__(f"Invalid setting '{setting}': {reason}")
