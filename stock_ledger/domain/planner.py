"""
Adjustment Planner -- pure validation and arithmetic for stock changes.

Responsibility:
    Turn an AdjustmentRequest plus the current product snapshot into a
    PlannedMovement, or raise the typed error that explains why it cannot
    be applied.  ``plan_batch`` runs the same checks for every item of a
    batch against running per-product balances.

Architecture position:
    Ledger > Domain -- pure, no I/O.  Services load and lock the product
    snapshots, call the planner, then persist its output.

Invariants enforced:
    - new_stock = previous_stock + delta; new_stock >= 0 (never clamped).
    - abs(delta) is a positive multiple of min_quantity.
    - Batch atomicity: one failing item rejects the whole batch, and every
      failure is reported.

Check order for a single request:
    cause -> quantity policy -> reference -> reason -> sufficiency.
"""

from collections.abc import Mapping, Sequence
from decimal import Decimal
from uuid import UUID

from stock_ledger.db.types import normalize_quantity
from stock_ledger.domain.causes import AdjustmentCause, Polarity
from stock_ledger.domain.dtos import (
    AdjustmentRequest,
    BatchItemFailure,
    PlannedMovement,
    ProductStock,
)
from stock_ledger.domain.quantity_policy import QuantityPolicy, validate_quantity
from stock_ledger.exceptions import (
    AdjustmentError,
    BatchValidationFailedError,
    EmptyBatchError,
    InsufficientStockError,
    MissingReasonError,
    MissingReferenceError,
    ProductNotFoundError,
)


def _clean(text: str | None) -> str | None:
    if text is None:
        return None
    stripped = str(text).strip()
    return stripped or None


def plan_adjustment(
    product: ProductStock,
    request: AdjustmentRequest,
    available: Decimal | None = None,
) -> PlannedMovement:
    """
    Validate one request against a product snapshot.

    Args:
        product: Current product state.
        request: The requested change.
        available: Stock to validate against; defaults to ``product.stock``.
            Batches pass their running balance here.

    Raises:
        UnknownAdjustmentCauseError, InvalidQuantityError,
        NonPositiveQuantityError, InvalidStepError, MissingReferenceError,
        MissingReasonError, InsufficientStockError.
    """
    cause = AdjustmentCause.parse(request.cause)
    policy = QuantityPolicy(unit=product.unit, min_quantity=product.min_quantity)
    quantity = validate_quantity(policy, request.quantity)

    reference = _clean(request.reference)
    if cause.requires_reference and reference is None:
        raise MissingReferenceError(cause.value, cause.reference_label)

    reason = _clean(request.reason)
    if reason is None:
        raise MissingReasonError(cause.value)

    previous = product.stock if available is None else available
    delta = quantity if cause.polarity is Polarity.ADDITION else -quantity

    if cause.polarity is Polarity.REMOVAL and quantity > previous:
        raise InsufficientStockError(
            product_id=str(product.id),
            available=normalize_quantity(previous),
            requested=quantity,
            unit=product.unit.value,
        )

    new_stock = previous + delta

    return PlannedMovement(
        product_id=product.id,
        cause=cause,
        quantity=quantity,
        delta=delta,
        previous_stock=previous,
        new_stock=new_stock,
        min_quantity=product.min_quantity,
        unit=product.unit,
        reason=reason,
        reference=reference,
        description=cause.describe(quantity, product.unit.value, reason),
    )


def plan_batch(
    products: Mapping[UUID, ProductStock],
    requests: Sequence[AdjustmentRequest],
) -> list[PlannedMovement]:
    """
    Validate every request of a batch before anything is applied.

    Items touching the same product see the cumulative effect of earlier
    valid items.  Failed items do not move the running balance.

    Raises:
        EmptyBatchError: No requests.
        BatchValidationFailedError: At least one item failed; carries all
            failures in index order.
    """
    if not requests:
        raise EmptyBatchError()

    running: dict[UUID, Decimal] = {pid: p.stock for pid, p in products.items()}
    planned: list[PlannedMovement] = []
    failures: list[BatchItemFailure] = []

    for index, request in enumerate(requests):
        product = products.get(request.product_id)
        try:
            if product is None:
                raise ProductNotFoundError(str(request.product_id))
            movement = plan_adjustment(product, request, available=running[product.id])
        except (AdjustmentError, ProductNotFoundError) as exc:
            failures.append(
                BatchItemFailure(index=index, product_id=request.product_id, error=exc)
            )
            continue
        running[product.id] = movement.new_stock
        planned.append(movement)

    if failures:
        raise BatchValidationFailedError(failures, item_count=len(requests))

    return planned
