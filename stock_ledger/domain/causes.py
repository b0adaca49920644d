"""
Adjustment Taxonomy -- the closed catalog of reasons stock may change.

Responsibility:
    Every ledger entry carries exactly one AdjustmentCause.  The cause fixes
    the polarity (addition or removal), whether an external reference is
    mandatory, and the history category the entry is grouped under.

Architecture position:
    Ledger > Domain -- pure, no I/O.

Invariants enforced:
    - The catalog is closed: unknown codes raise UnknownAdjustmentCauseError.
    - Polarity is copied onto each entry at write time, so later edits to
      this table never change the meaning of recorded history.
"""

from dataclasses import dataclass
from enum import Enum

from stock_ledger.exceptions import UnknownAdjustmentCauseError


class Polarity(str, Enum):
    """Direction of a stock change."""

    ADDITION = "addition"
    REMOVAL = "removal"

    @property
    def sign(self) -> int:
        return 1 if self is Polarity.ADDITION else -1


class HistoryCategory(str, Enum):
    """Coarse grouping used by movement summaries and filters."""

    INITIAL = "initial"
    ADDITION = "addition"
    REMOVAL = "removal"
    SALE = "sale"
    RETURN = "return"
    ADJUSTMENT = "adjustment"


@dataclass(frozen=True)
class CauseDefinition:
    """Static attributes of one adjustment cause."""

    polarity: Polarity
    requires_reference: bool
    label: str
    category: HistoryCategory
    description_template: str
    reference_label: str | None = None
    quick_reasons: tuple[str, ...] = ()


class AdjustmentCause(str, Enum):
    """Closed set of adjustment causes."""

    # Additions
    PURCHASE = "purchase"
    RETURN_FROM_CUSTOMER = "return_from_customer"
    PRODUCTION = "production"
    FOUND = "found"
    ADJUSTMENT_POSITIVE = "adjustment_positive"
    INITIAL = "initial"

    # Removals
    DAMAGED = "damaged"
    EXPIRED = "expired"
    LOST = "lost"
    THEFT = "theft"
    RETURN_TO_SUPPLIER = "return_to_supplier"
    QUALITY_ISSUE = "quality_issue"
    ADJUSTMENT_NEGATIVE = "adjustment_negative"
    SALE = "sale"

    @property
    def definition(self) -> CauseDefinition:
        return CAUSE_CATALOG[self]

    @property
    def polarity(self) -> Polarity:
        return CAUSE_CATALOG[self].polarity

    @property
    def requires_reference(self) -> bool:
        return CAUSE_CATALOG[self].requires_reference

    @property
    def label(self) -> str:
        return CAUSE_CATALOG[self].label

    @property
    def category(self) -> HistoryCategory:
        return CAUSE_CATALOG[self].category

    @property
    def reference_label(self) -> str:
        return CAUSE_CATALOG[self].reference_label or "Reference #"

    def describe(self, quantity, unit: str, reason: str) -> str:
        """Human-readable description stored on the ledger entry."""
        return CAUSE_CATALOG[self].description_template.format(
            quantity=quantity, unit=unit, reason=reason
        )

    @classmethod
    def parse(cls, value: "AdjustmentCause | str") -> "AdjustmentCause":
        """Resolve a cause or cause code.

        Raises:
            UnknownAdjustmentCauseError: If the code is not in the catalog.
        """
        if isinstance(value, AdjustmentCause):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise UnknownAdjustmentCauseError(str(value)) from None

    @classmethod
    def additions(cls) -> list["AdjustmentCause"]:
        return [c for c in cls if c.polarity is Polarity.ADDITION]

    @classmethod
    def removals(cls) -> list["AdjustmentCause"]:
        return [c for c in cls if c.polarity is Polarity.REMOVAL]


CAUSE_CATALOG: dict[AdjustmentCause, CauseDefinition] = {
    AdjustmentCause.PURCHASE: CauseDefinition(
        polarity=Polarity.ADDITION,
        requires_reference=True,
        label="New Purchase",
        category=HistoryCategory.ADDITION,
        reference_label="Purchase Order #",
        description_template="Purchased {quantity} {unit} - {reason}",
        quick_reasons=(
            "Regular stock replenishment",
            "Seasonal stock purchase",
            "New product line addition",
        ),
    ),
    AdjustmentCause.RETURN_FROM_CUSTOMER: CauseDefinition(
        polarity=Polarity.ADDITION,
        requires_reference=True,
        label="Customer Return",
        category=HistoryCategory.RETURN,
        reference_label="Return Reference #",
        description_template="Customer returned {quantity} {unit} - {reason}",
    ),
    AdjustmentCause.PRODUCTION: CauseDefinition(
        polarity=Polarity.ADDITION,
        requires_reference=False,
        label="Production Output",
        category=HistoryCategory.ADDITION,
        description_template="Produced {quantity} {unit} - {reason}",
    ),
    AdjustmentCause.FOUND: CauseDefinition(
        polarity=Polarity.ADDITION,
        requires_reference=False,
        label="Found/Recovered",
        category=HistoryCategory.ADDITION,
        description_template="Found {quantity} {unit} - {reason}",
    ),
    AdjustmentCause.ADJUSTMENT_POSITIVE: CauseDefinition(
        polarity=Polarity.ADDITION,
        requires_reference=False,
        label="Positive Adjustment",
        category=HistoryCategory.ADJUSTMENT,
        description_template="Adjusted +{quantity} {unit} - {reason}",
    ),
    AdjustmentCause.INITIAL: CauseDefinition(
        polarity=Polarity.ADDITION,
        requires_reference=False,
        label="Opening Stock",
        category=HistoryCategory.INITIAL,
        description_template="Opening stock of {quantity} {unit} - {reason}",
    ),
    AdjustmentCause.DAMAGED: CauseDefinition(
        polarity=Polarity.REMOVAL,
        requires_reference=False,
        label="Damaged Goods",
        category=HistoryCategory.REMOVAL,
        description_template="Removed {quantity} {unit} (damaged) - {reason}",
        quick_reasons=(
            "Water damage",
            "Physical damage during handling",
            "Manufacturing defect discovered",
            "Packaging damaged",
        ),
    ),
    AdjustmentCause.EXPIRED: CauseDefinition(
        polarity=Polarity.REMOVAL,
        requires_reference=False,
        label="Expired Products",
        category=HistoryCategory.REMOVAL,
        description_template="Removed {quantity} {unit} (expired) - {reason}",
        quick_reasons=(
            "Past expiry date",
            "Short dated - removed from sale",
            "Quality deteriorated",
        ),
    ),
    AdjustmentCause.LOST: CauseDefinition(
        polarity=Polarity.REMOVAL,
        requires_reference=False,
        label="Lost/Missing",
        category=HistoryCategory.REMOVAL,
        description_template="Lost {quantity} {unit} - {reason}",
        quick_reasons=(
            "Cannot locate in warehouse",
            "Missing from last inventory count",
            "Misplaced during reorganization",
        ),
    ),
    AdjustmentCause.THEFT: CauseDefinition(
        polarity=Polarity.REMOVAL,
        requires_reference=True,
        label="Theft",
        category=HistoryCategory.REMOVAL,
        reference_label="Report #",
        description_template="Theft reported: {quantity} {unit} - {reason}",
    ),
    AdjustmentCause.RETURN_TO_SUPPLIER: CauseDefinition(
        polarity=Polarity.REMOVAL,
        requires_reference=True,
        label="Return to Supplier",
        category=HistoryCategory.REMOVAL,
        reference_label="Return Order #",
        description_template="Returned {quantity} {unit} to supplier - {reason}",
    ),
    AdjustmentCause.QUALITY_ISSUE: CauseDefinition(
        polarity=Polarity.REMOVAL,
        requires_reference=False,
        label="Quality Issues",
        category=HistoryCategory.REMOVAL,
        description_template="Removed {quantity} {unit} (quality issue) - {reason}",
    ),
    AdjustmentCause.ADJUSTMENT_NEGATIVE: CauseDefinition(
        polarity=Polarity.REMOVAL,
        requires_reference=False,
        label="Negative Adjustment",
        category=HistoryCategory.ADJUSTMENT,
        description_template="Adjusted -{quantity} {unit} - {reason}",
    ),
    AdjustmentCause.SALE: CauseDefinition(
        polarity=Polarity.REMOVAL,
        requires_reference=True,
        label="Sale",
        category=HistoryCategory.SALE,
        reference_label="Invoice #",
        description_template="Sold {quantity} {unit} - {reason}",
    ),
}
