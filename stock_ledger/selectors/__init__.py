"""Read-only query selectors."""

from stock_ledger.selectors.history_selector import HistoryQuery, HistorySelector
from stock_ledger.selectors.stock_selector import StockSelector

__all__ = ["HistoryQuery", "HistorySelector", "StockSelector"]
