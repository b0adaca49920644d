"""
Threshold Evaluator -- classify a stock level against alert thresholds.

Pure.  ``classify`` is total over non-negative stock:

    stock == 0                   -> OUT_OF_STOCK
    0 < stock <= critical        -> CRITICAL
    critical < stock <= low      -> LOW
    stock > low                  -> HEALTHY
"""

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum

from stock_ledger.db.types import QUANTITY_DECIMAL_PLACES, exceeds_scale, to_quantity
from stock_ledger.exceptions import InvalidThresholdError

DEFAULT_LOW_THRESHOLD = Decimal("10")
DEFAULT_CRITICAL_THRESHOLD = Decimal("5")


class StockStatus(str, Enum):
    HEALTHY = "healthy"
    LOW = "low"
    CRITICAL = "critical"
    OUT_OF_STOCK = "out_of_stock"

    @property
    def severity(self) -> str | None:
        """Alert severity, or None for a healthy level."""
        return _SEVERITY[self]

    @property
    def rank(self) -> int:
        """Higher is more urgent."""
        return _RANK[self]


_SEVERITY = {
    StockStatus.HEALTHY: None,
    StockStatus.LOW: "warning",
    StockStatus.CRITICAL: "critical",
    StockStatus.OUT_OF_STOCK: "critical",
}

_RANK = {
    StockStatus.HEALTHY: 0,
    StockStatus.LOW: 1,
    StockStatus.CRITICAL: 2,
    StockStatus.OUT_OF_STOCK: 3,
}


@dataclass(frozen=True)
class Thresholds:
    """
    Low and critical stock thresholds.

    Raises:
        InvalidThresholdError: If either value is negative or not numeric,
            finer than the stored scale, or critical exceeds low.
    """

    low: Decimal
    critical: Decimal

    def __post_init__(self) -> None:
        try:
            low = to_quantity(self.low)
            critical = to_quantity(self.critical)
        except ValueError:
            raise InvalidThresholdError(self.low, self.critical, "thresholds must be numbers") from None
        if low < 0 or critical < 0:
            raise InvalidThresholdError(low, critical, "thresholds must not be negative")
        if exceeds_scale(low) or exceeds_scale(critical):
            raise InvalidThresholdError(
                low, critical, f"thresholds must have at most {QUANTITY_DECIMAL_PLACES} decimal places"
            )
        if critical > low:
            raise InvalidThresholdError(low, critical, "critical threshold must not exceed low threshold")
        object.__setattr__(self, "low", low)
        object.__setattr__(self, "critical", critical)

    @classmethod
    def defaults(cls) -> "Thresholds":
        return cls(low=DEFAULT_LOW_THRESHOLD, critical=DEFAULT_CRITICAL_THRESHOLD)


def classify(stock: Decimal, low_threshold: Decimal, critical_threshold: Decimal) -> StockStatus:
    """Classify a stock level.  Thresholds are validated first."""
    thresholds = Thresholds(low=low_threshold, critical=critical_threshold)
    return classify_with(stock, thresholds)


def classify_with(stock: Decimal, thresholds: Thresholds) -> StockStatus:
    if stock <= 0:
        return StockStatus.OUT_OF_STOCK
    if stock <= thresholds.critical:
        return StockStatus.CRITICAL
    if stock <= thresholds.low:
        return StockStatus.LOW
    return StockStatus.HEALTHY


def effective_thresholds(
    low_override: Decimal | None,
    critical_override: Decimal | None,
    global_thresholds: Thresholds | None,
) -> Thresholds:
    """Product override, else global settings, else the built-in defaults."""
    if low_override is not None and critical_override is not None:
        return Thresholds(low=low_override, critical=critical_override)
    if global_thresholds is not None:
        return global_thresholds
    return Thresholds.defaults()
