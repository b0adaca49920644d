"""Pure domain layer: causes, units, quantity policy, thresholds, planner."""

from stock_ledger.domain.causes import AdjustmentCause, HistoryCategory, Polarity
from stock_ledger.domain.clock import Clock, DeterministicClock, SystemClock
from stock_ledger.domain.dtos import (
    AdjustmentRequest,
    AlertSettings,
    BatchItem,
    BatchItemFailure,
    HistoryPage,
    LedgerEntryRecord,
    MovementSummary,
    PlannedMovement,
    ProductStock,
    StockAlert,
    StockStatusReport,
)
from stock_ledger.domain.planner import plan_adjustment, plan_batch
from stock_ledger.domain.quantity_policy import STEP_TOLERANCE, QuantityPolicy, validate_quantity
from stock_ledger.domain.thresholds import StockStatus, Thresholds, classify
from stock_ledger.domain.units import Unit

__all__ = [
    "AdjustmentCause",
    "AdjustmentRequest",
    "AlertSettings",
    "BatchItem",
    "BatchItemFailure",
    "Clock",
    "DeterministicClock",
    "HistoryCategory",
    "HistoryPage",
    "LedgerEntryRecord",
    "MovementSummary",
    "PlannedMovement",
    "Polarity",
    "ProductStock",
    "QuantityPolicy",
    "STEP_TOLERANCE",
    "StockAlert",
    "StockStatus",
    "StockStatusReport",
    "SystemClock",
    "Thresholds",
    "Unit",
    "classify",
    "plan_adjustment",
    "plan_batch",
    "validate_quantity",
]
