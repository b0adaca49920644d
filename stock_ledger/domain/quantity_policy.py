"""
Unit & Quantity Policy -- decides whether a requested quantity is legal.

Responsibility:
    Validate that a requested adjustment quantity is strictly positive and
    a whole multiple of the product's step size (``min_quantity``), and
    return it snapped to that exact multiple.

Architecture position:
    Ledger > Domain -- pure, no I/O.  Used identically by the single and
    batch adjustment paths.

Invariants enforced:
    - Step-multiple: abs(delta) = n * min_quantity, n >= 1.

Failure modes:
    - InvalidQuantityError: input is not a number.
    - NonPositiveQuantityError: input <= 0.
    - InvalidStepError: input not within STEP_TOLERANCE of a multiple.
"""

from dataclasses import dataclass
from decimal import ROUND_CEILING, ROUND_FLOOR, ROUND_HALF_EVEN, Decimal

from stock_ledger.db.types import normalize_quantity, to_quantity
from stock_ledger.domain.units import Unit
from stock_ledger.exceptions import (
    InvalidQuantityError,
    InvalidStepError,
    NonPositiveQuantityError,
)

# Absolute slack allowed between a requested quantity and the nearest
# multiple of the step.  Absorbs residue from binary-float callers.
STEP_TOLERANCE = Decimal("0.00001")


@dataclass(frozen=True)
class QuantityPolicy:
    """Unit and step size governing one product's quantities."""

    unit: Unit
    min_quantity: Decimal

    def __post_init__(self) -> None:
        if self.min_quantity <= 0:
            raise ValueError(f"min_quantity must be positive, got {self.min_quantity}")

    @classmethod
    def for_unit(cls, unit: Unit | str, min_quantity=None) -> "QuantityPolicy":
        """Build a policy, falling back to the unit's default step."""
        parsed = Unit.parse(unit)
        step = parsed.default_min_quantity if min_quantity is None else to_quantity(min_quantity)
        return cls(unit=parsed, min_quantity=step)


def coerce_quantity(value) -> Decimal:
    """Convert caller input to Decimal, raising InvalidQuantityError."""
    try:
        return to_quantity(value)
    except ValueError:
        raise InvalidQuantityError(repr(value)) from None


def validate_quantity(policy: QuantityPolicy, requested_quantity) -> Decimal:
    """
    Validate a requested quantity against a policy.

    Returns:
        The quantity snapped to ``n * policy.min_quantity``.

    Raises:
        InvalidQuantityError: Not a number.
        NonPositiveQuantityError: Zero or negative.
        InvalidStepError: Not a multiple of the step, within STEP_TOLERANCE.
    """
    quantity = coerce_quantity(requested_quantity)
    if quantity <= 0:
        raise NonPositiveQuantityError(quantity)

    step = policy.min_quantity
    steps = (quantity / step).to_integral_value(rounding=ROUND_HALF_EVEN)
    snapped = steps * step

    if steps < 1 or abs(quantity - snapped) > STEP_TOLERANCE:
        lower = (quantity / step).to_integral_value(rounding=ROUND_FLOOR)
        upper = (quantity / step).to_integral_value(rounding=ROUND_CEILING)
        if upper == lower:
            upper = lower + 1
        raise InvalidStepError(
            quantity=quantity,
            step=step,
            lower_valid=normalize_quantity(max(lower, Decimal(1)) * step),
            upper_valid=normalize_quantity(max(upper, Decimal(1)) * step),
        )

    return normalize_quantity(snapped)
