"""
Units of measure and their default step sizes.

Countable units (piece, packet, box, dozen) move in whole steps by default;
measured units (kg, gram, liter, ml) default to hundredths.  A product may
override its step with any positive value.
"""

from decimal import Decimal
from enum import Enum

INTEGER_DEFAULT_STEP = Decimal("1")
FRACTIONAL_DEFAULT_STEP = Decimal("0.01")


class Unit(str, Enum):
    """Unit of measure for a product's stock."""

    PIECE = "piece"
    KG = "kg"
    GRAM = "gram"
    LITER = "liter"
    ML = "ml"
    PACKET = "packet"
    BOX = "box"
    DOZEN = "dozen"

    @property
    def is_countable(self) -> bool:
        return self in _COUNTABLE_UNITS

    @property
    def default_min_quantity(self) -> Decimal:
        """Step size used when a product does not specify one."""
        return INTEGER_DEFAULT_STEP if self.is_countable else FRACTIONAL_DEFAULT_STEP

    @classmethod
    def parse(cls, value: "Unit | str") -> "Unit":
        """Accept a Unit or its (case-insensitive) string value."""
        if isinstance(value, Unit):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            valid = ", ".join(u.value for u in cls)
            raise ValueError(f"Unknown unit {value!r}; expected one of: {valid}") from None


_COUNTABLE_UNITS = frozenset({Unit.PIECE, Unit.PACKET, Unit.BOX, Unit.DOZEN})
