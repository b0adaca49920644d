"""
DTOs -- immutable data structures crossing the service boundary.

Responsibility:
    Requests flowing into the adjustment processor (AdjustmentRequest,
    BatchItem), the pure planner's output (PlannedMovement), and every
    read model returned to callers (ProductStock, LedgerEntryRecord,
    HistoryPage, StockStatusReport, StockAlert, MovementSummary,
    AlertSettings).

Architecture position:
    Ledger > Domain -- no I/O.  ``from_model()`` class methods are boundary
    converters called only from services and selectors; ORM types are
    imported for type checking only.

Data flow:
    AdjustmentRequest -> PlannedMovement -> LedgerEntryModel -> LedgerEntryRecord
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import TYPE_CHECKING
from uuid import UUID

from stock_ledger.db.types import normalize_quantity
from stock_ledger.domain.causes import AdjustmentCause, HistoryCategory, Polarity
from stock_ledger.domain.thresholds import StockStatus, Thresholds
from stock_ledger.domain.units import Unit
from stock_ledger.exceptions import InvalidBatchItemError, StockLedgerError

if TYPE_CHECKING:
    from stock_ledger.models.alert_settings import AlertSettingsModel
    from stock_ledger.models.ledger_entry import LedgerEntryModel
    from stock_ledger.models.product import ProductStockRecord


def as_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes (SQLite drops the offset)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AdjustmentRequest:
    """One requested stock change, before validation."""

    product_id: UUID
    cause: AdjustmentCause | str
    quantity: object
    reason: str | None
    reference: str | None = None


@dataclass(frozen=True)
class BatchItem:
    """
    One line of a batch.  ``cause``, ``reason`` and ``reference`` fall back
    to the batch-level shared values when left as None.
    """

    product_id: UUID
    quantity: object
    cause: AdjustmentCause | str | None = None
    reason: str | None = None
    reference: str | None = None

    @classmethod
    def from_dict(cls, data: dict) -> BatchItem:
        """
        Build an item from a mapping.

        Raises:
            InvalidBatchItemError: Not a mapping, ``product_id`` or
                ``quantity`` missing, or ``product_id`` not a UUID.
        """
        if not isinstance(data, Mapping):
            raise InvalidBatchItemError("item", f"must be a mapping, got {type(data).__name__}")
        for name in ("product_id", "quantity"):
            if data.get(name) is None:
                raise InvalidBatchItemError(name, "is required")
        product_id = data["product_id"]
        if not isinstance(product_id, UUID):
            try:
                product_id = UUID(str(product_id))
            except ValueError:
                raise InvalidBatchItemError("product_id", f"is not a UUID: {product_id!r}") from None
        return cls(
            product_id=product_id,
            quantity=data["quantity"],
            cause=data.get("cause"),
            reason=data.get("reason"),
            reference=data.get("reference"),
        )

    def resolve(
        self,
        shared_cause: AdjustmentCause | str | None,
        shared_reason: str | None,
        shared_reference: str | None,
    ) -> AdjustmentRequest:
        """Merge per-item values over the shared batch context."""
        return AdjustmentRequest(
            product_id=self.product_id,
            cause=self.cause if self.cause is not None else shared_cause,
            quantity=self.quantity,
            reason=self.reason if self.reason is not None else shared_reason,
            reference=self.reference if self.reference is not None else shared_reference,
        )


@dataclass(frozen=True)
class BatchItemFailure:
    """A batch item that failed validation, by position."""

    index: int
    product_id: UUID | None
    error: StockLedgerError


# ---------------------------------------------------------------------------
# Product
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ProductStock:
    """Read model of a Product Stock Record."""

    id: UUID
    sku: str
    name: str
    unit: Unit
    min_quantity: Decimal
    stock: Decimal
    low_threshold_override: Decimal | None = None
    critical_threshold_override: Decimal | None = None
    version: int = 1

    @classmethod
    def from_model(cls, model: ProductStockRecord) -> ProductStock:
        return cls(
            id=model.id,
            sku=model.sku,
            name=model.name,
            unit=Unit.parse(model.unit),
            min_quantity=normalize_quantity(model.min_quantity),
            stock=normalize_quantity(model.stock),
            low_threshold_override=(
                normalize_quantity(model.low_threshold_override)
                if model.low_threshold_override is not None else None
            ),
            critical_threshold_override=(
                normalize_quantity(model.critical_threshold_override)
                if model.critical_threshold_override is not None else None
            ),
            version=model.version,
        )


# ---------------------------------------------------------------------------
# Planner output
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PlannedMovement:
    """
    A fully validated stock change, ready to be written.

    Guarantees:
        - new_stock == previous_stock + delta
        - new_stock >= 0
        - abs(delta) is a positive multiple of min_quantity
    """

    product_id: UUID
    cause: AdjustmentCause
    quantity: Decimal
    delta: Decimal
    previous_stock: Decimal
    new_stock: Decimal
    min_quantity: Decimal
    unit: Unit
    reason: str
    reference: str | None
    description: str

    def __post_init__(self) -> None:
        if self.new_stock != self.previous_stock + self.delta:
            raise ValueError(
                f"Arithmetic mismatch: {self.previous_stock} + {self.delta} != {self.new_stock}"
            )
        if self.new_stock < 0:
            raise ValueError(f"new_stock must not be negative, got {self.new_stock}")

    @property
    def polarity(self) -> Polarity:
        return self.cause.polarity

    @property
    def category(self) -> HistoryCategory:
        return self.cause.category


# ---------------------------------------------------------------------------
# Ledger entry
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LedgerEntryRecord:
    """Read model of one immutable ledger entry."""

    id: UUID
    seq: int
    product_id: UUID
    occurred_at: datetime
    cause: AdjustmentCause
    polarity: Polarity
    category: HistoryCategory
    delta: Decimal
    previous_stock: Decimal
    new_stock: Decimal
    min_quantity: Decimal
    unit: Unit
    reason: str
    reference: str | None
    description: str
    actor_id: UUID
    batch_id: UUID | None = None

    @property
    def quantity(self) -> Decimal:
        """Unsigned magnitude of the change."""
        return abs(self.delta)

    @classmethod
    def from_model(cls, model: LedgerEntryModel) -> LedgerEntryRecord:
        return cls(
            id=model.id,
            seq=model.seq,
            product_id=model.product_id,
            occurred_at=as_utc(model.occurred_at),
            cause=AdjustmentCause(model.cause),
            polarity=Polarity(model.polarity),
            category=HistoryCategory(model.category),
            delta=normalize_quantity(model.delta),
            previous_stock=normalize_quantity(model.previous_stock),
            new_stock=normalize_quantity(model.new_stock),
            min_quantity=normalize_quantity(model.min_quantity),
            unit=Unit.parse(model.unit),
            reason=model.reason,
            reference=model.reference,
            description=model.description,
            actor_id=model.actor_id,
            batch_id=model.batch_id,
        )


@dataclass(frozen=True)
class HistoryPage:
    """One page of history query results."""

    entries: tuple[LedgerEntryRecord, ...]
    total_count: int
    total_pages: int
    page: int
    page_size: int

    @property
    def has_next(self) -> bool:
        return self.page < self.total_pages


# ---------------------------------------------------------------------------
# Thresholds and alerts
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AlertSettings:
    """Global alert thresholds and notification preferences."""

    low_threshold: Decimal
    critical_threshold: Decimal
    email_notifications: bool = False
    sms_notifications: bool = False

    @property
    def thresholds(self) -> Thresholds:
        return Thresholds(low=self.low_threshold, critical=self.critical_threshold)

    @classmethod
    def from_model(cls, model: AlertSettingsModel) -> AlertSettings:
        return cls(
            low_threshold=normalize_quantity(model.low_threshold),
            critical_threshold=normalize_quantity(model.critical_threshold),
            email_notifications=model.email_notifications,
            sms_notifications=model.sms_notifications,
        )


@dataclass(frozen=True)
class StockStatusReport:
    """Classification of one product's current stock."""

    product_id: UUID
    sku: str
    name: str
    stock: Decimal
    unit: Unit
    status: StockStatus
    thresholds: Thresholds
    threshold_source: str


@dataclass(frozen=True)
class StockAlert:
    """Non-healthy stock level delivered to alert listeners."""

    product_id: UUID
    sku: str
    status: StockStatus
    stock: Decimal
    thresholds: Thresholds
    severity: str

    @classmethod
    def from_report(cls, report: StockStatusReport) -> StockAlert:
        severity = report.status.severity
        if severity is None:
            raise ValueError("Healthy stock does not produce an alert")
        return cls(
            product_id=report.product_id,
            sku=report.sku,
            status=report.status,
            stock=report.stock,
            thresholds=report.thresholds,
            severity=severity,
        )


# ---------------------------------------------------------------------------
# Movement summary
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CategoryTotal:
    category: HistoryCategory
    count: int
    quantity: Decimal


@dataclass(frozen=True)
class MovementSummary:
    """Aggregate view of one product's movements."""

    product_id: UUID
    current_stock: Decimal
    total_added: Decimal
    total_removed: Decimal
    by_category: tuple[CategoryTotal, ...] = field(default_factory=tuple)
    recent: tuple[LedgerEntryRecord, ...] = field(default_factory=tuple)
