"""
Module: stock_ledger.db.types
Responsibility: Quantity precision and the conversions every layer uses to
    turn caller input into quantity Decimals and to tidy values read back
    from Numeric columns.
Architecture position: Ledger > DB.  May be imported by models/, domain/,
    services/, and selectors/.  MUST NOT import from any of those layers.

Invariants enforced:
    - No floats are stored.  to_quantity() is the ONLY sanctioned entry point
      for converting caller input into a quantity Decimal.
"""

from decimal import Decimal, InvalidOperation

# Stored scale of every quantity column: Numeric(38, 9)
QUANTITY_DECIMAL_PLACES = 9


def to_quantity(value) -> Decimal:
    """
    Convert caller input into a quantity Decimal.

    Floats go through ``str()`` first so that ``2.5`` becomes
    ``Decimal("2.5")`` rather than its binary expansion.  Booleans are
    rejected even though they are ints.

    Raises:
        ValueError: If value is not numeric or not finite.
    """
    if isinstance(value, bool):
        raise ValueError(f"Boolean is not a quantity: {value!r}")
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, (int, float)):
        result = Decimal(str(value))
    elif isinstance(value, str):
        try:
            result = Decimal(value.strip())
        except InvalidOperation as exc:
            raise ValueError(f"Not a number: {value!r}") from exc
    else:
        raise ValueError(f"Unsupported quantity type: {type(value).__name__}")

    if not result.is_finite():
        raise ValueError(f"Quantity must be finite: {value!r}")
    return result


def normalize_quantity(value: Decimal) -> Decimal:
    """
    Strip trailing zeros introduced by Numeric(38, 9) round-trips.

    ``Decimal("7.500000000")`` becomes ``Decimal("7.5")``; integral values
    keep no exponent (``Decimal("20")``, never ``Decimal("2E+1")``).
    """
    normalized = value.normalize()
    if normalized == normalized.to_integral_value():
        return normalized.quantize(Decimal(1))
    return normalized


def exceeds_scale(value: Decimal) -> bool:
    """True when ``value`` has more decimal places than the quantity columns store."""
    return value.normalize().as_tuple().exponent < -QUANTITY_DECIMAL_PLACES
