"""ORM models for the stock ledger."""

from stock_ledger.models.alert_settings import GLOBAL_SCOPE, AlertSettingsModel
from stock_ledger.models.ledger_entry import LedgerEntryModel
from stock_ledger.models.product import ProductStockRecord
from stock_ledger.services.sequence_service import SequenceCounter

__all__ = [
    "GLOBAL_SCOPE",
    "AlertSettingsModel",
    "LedgerEntryModel",
    "ProductStockRecord",
    "SequenceCounter",
]
