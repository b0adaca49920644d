"""
Module: stock_ledger.selectors.history_selector
Responsibility: History Query Engine -- filtered, sorted, paginated reads
    of ledger entries, plus per-product movement summaries.
Architecture position: Ledger > Selectors.  Read-only.

Query semantics:
    - Filters are conjunctive; ``start``/``end`` are inclusive bounds on
      occurred_at.  Naive datetimes are taken as UTC.
    - Sort fields: timestamp, seq, delta, quantity (abs(delta)),
      previous_stock, new_stock, cause.  Ties break on seq in the same
      direction, so equal timestamps keep write order.
    - Offset pagination.  total_pages = ceil(total_count / page_size), 0
      when nothing matches.

Failure modes:
    - InvalidQueryError for page < 1, page_size outside 1..max_page_size,
      start > end, unknown sort field/order, unknown cause or polarity.
"""

import math
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import and_, case, func, select, true
from sqlalchemy.orm import Session

from stock_ledger.db.types import normalize_quantity, to_quantity
from stock_ledger.domain.causes import AdjustmentCause, HistoryCategory, Polarity
from stock_ledger.domain.dtos import (
    CategoryTotal,
    HistoryPage,
    LedgerEntryRecord,
    MovementSummary,
    as_utc,
)
from stock_ledger.exceptions import (
    InvalidQueryError,
    ProductNotFoundError,
    UnknownAdjustmentCauseError,
)
from stock_ledger.models.ledger_entry import LedgerEntryModel
from stock_ledger.models.product import ProductStockRecord
from stock_ledger.selectors.base import BaseSelector

DEFAULT_PAGE_SIZE = 10
DEFAULT_MAX_PAGE_SIZE = 100
RECENT_MOVEMENT_COUNT = 5

SORT_FIELDS = ("timestamp", "seq", "delta", "quantity", "previous_stock", "new_stock", "cause")
SORT_ORDERS = ("asc", "desc")


def _sort_column(sort_field: str):
    return {
        "timestamp": LedgerEntryModel.occurred_at,
        "seq": LedgerEntryModel.seq,
        "delta": LedgerEntryModel.delta,
        "quantity": case(
            (LedgerEntryModel.delta < 0, -LedgerEntryModel.delta),
            else_=LedgerEntryModel.delta,
        ),
        "previous_stock": LedgerEntryModel.previous_stock,
        "new_stock": LedgerEntryModel.new_stock,
        "cause": LedgerEntryModel.cause,
    }[sort_field]


@dataclass(frozen=True)
class HistoryQuery:
    """Filter, sort and page parameters for a history read."""

    product_id: UUID | None = None
    start: datetime | None = None
    end: datetime | None = None
    causes: frozenset[str] | None = None
    polarity: Polarity | str | None = None
    actor_id: UUID | None = None
    batch_id: UUID | None = None
    sort_field: str = "timestamp"
    sort_order: str = "desc"
    page: int = 1
    page_size: int = DEFAULT_PAGE_SIZE

    def validate(self, max_page_size: int = DEFAULT_MAX_PAGE_SIZE) -> None:
        """Raise InvalidQueryError for the first invalid argument."""
        if isinstance(self.page, bool) or not isinstance(self.page, int) or self.page < 1:
            raise InvalidQueryError("page", f"must be an integer >= 1, got {self.page!r}")
        if (
            isinstance(self.page_size, bool)
            or not isinstance(self.page_size, int)
            or not 1 <= self.page_size <= max_page_size
        ):
            raise InvalidQueryError(
                "page_size", f"must be between 1 and {max_page_size}, got {self.page_size!r}"
            )
        if self.sort_field not in SORT_FIELDS:
            raise InvalidQueryError(
                "sort_field", f"{self.sort_field!r} is not one of {', '.join(SORT_FIELDS)}"
            )
        if self.sort_order not in SORT_ORDERS:
            raise InvalidQueryError("sort_order", f"{self.sort_order!r} is not 'asc' or 'desc'")
        if self.start is not None and self.end is not None and as_utc(self.start) > as_utc(self.end):
            raise InvalidQueryError("start", "start must not be after end")
        self.cause_codes()
        self.polarity_code()

    def cause_codes(self) -> list[str] | None:
        if self.causes is None:
            return None
        try:
            return sorted(AdjustmentCause.parse(c).value for c in self.causes)
        except UnknownAdjustmentCauseError as exc:
            raise InvalidQueryError("causes", str(exc)) from None

    def polarity_code(self) -> str | None:
        if self.polarity is None:
            return None
        try:
            return Polarity(self.polarity).value
        except ValueError:
            raise InvalidQueryError("polarity", f"unknown polarity {self.polarity!r}") from None


class HistorySelector(BaseSelector):
    """Read-only access to ledger history."""

    def __init__(self, session: Session, max_page_size: int = DEFAULT_MAX_PAGE_SIZE):
        super().__init__(session)
        self._max_page_size = max_page_size

    def _conditions(self, query: HistoryQuery) -> list:
        conditions = []
        if query.product_id is not None:
            conditions.append(LedgerEntryModel.product_id == query.product_id)
        if query.start is not None:
            conditions.append(LedgerEntryModel.occurred_at >= as_utc(query.start))
        if query.end is not None:
            conditions.append(LedgerEntryModel.occurred_at <= as_utc(query.end))
        causes = query.cause_codes()
        if causes is not None:
            conditions.append(LedgerEntryModel.cause.in_(causes))
        polarity = query.polarity_code()
        if polarity is not None:
            conditions.append(LedgerEntryModel.polarity == polarity)
        if query.actor_id is not None:
            conditions.append(LedgerEntryModel.actor_id == query.actor_id)
        if query.batch_id is not None:
            conditions.append(LedgerEntryModel.batch_id == query.batch_id)
        return conditions

    def query(self, query: HistoryQuery) -> HistoryPage:
        """
        Run a history query.

        Raises:
            InvalidQueryError: Invalid paging, sorting, range or filter.
        """
        query.validate(self._max_page_size)
        where = and_(true(), *self._conditions(query))

        total_count = self.session.execute(
            select(func.count(LedgerEntryModel.id)).where(where)
        ).scalar_one()

        column = _sort_column(query.sort_field)
        if query.sort_order == "asc":
            order_by = (column.asc(), LedgerEntryModel.seq.asc())
        else:
            order_by = (column.desc(), LedgerEntryModel.seq.desc())

        rows = self.session.execute(
            select(LedgerEntryModel)
            .where(where)
            .order_by(*order_by)
            .offset((query.page - 1) * query.page_size)
            .limit(query.page_size)
        ).scalars().all()

        return HistoryPage(
            entries=tuple(LedgerEntryRecord.from_model(r) for r in rows),
            total_count=total_count,
            total_pages=math.ceil(total_count / query.page_size) if total_count else 0,
            page=query.page,
            page_size=query.page_size,
        )

    def get_entry(self, entry_id: UUID) -> LedgerEntryRecord | None:
        row = self.session.get(LedgerEntryModel, entry_id)
        return LedgerEntryRecord.from_model(row) if row is not None else None

    def latest_entry(self, product_id: UUID) -> LedgerEntryRecord | None:
        """Most recently written entry of a product, by seq."""
        row = self.session.execute(
            select(LedgerEntryModel)
            .where(LedgerEntryModel.product_id == product_id)
            .order_by(LedgerEntryModel.seq.desc())
            .limit(1)
        ).scalar_one_or_none()
        return LedgerEntryRecord.from_model(row) if row is not None else None

    def movement_summary(self, product_id: UUID) -> MovementSummary:
        """
        Totals and recent movements for one product.

        Added and removed totals are by polarity; ``by_category`` groups
        the same entries by history category.

        Raises:
            ProductNotFoundError: Unknown product.
        """
        product = self.session.get(ProductStockRecord, product_id)
        if product is None:
            raise ProductNotFoundError(str(product_id))

        grouped = self.session.execute(
            select(
                LedgerEntryModel.category,
                LedgerEntryModel.polarity,
                func.count(LedgerEntryModel.id),
                func.sum(LedgerEntryModel.delta),
            )
            .where(LedgerEntryModel.product_id == product_id)
            .group_by(LedgerEntryModel.category, LedgerEntryModel.polarity)
        ).all()

        added = Decimal("0")
        removed = Decimal("0")
        per_category: dict[HistoryCategory, list] = {}
        for category, polarity, count, total in grouped:
            magnitude = abs(normalize_quantity(to_quantity(total or 0)))
            if polarity == Polarity.ADDITION.value:
                added += magnitude
            else:
                removed += magnitude
            bucket = per_category.setdefault(HistoryCategory(category), [0, Decimal("0")])
            bucket[0] += count
            bucket[1] += magnitude

        by_category = tuple(
            CategoryTotal(category=cat, count=count, quantity=normalize_quantity(qty))
            for cat, (count, qty) in sorted(per_category.items(), key=lambda kv: kv[0].value)
        )

        recent_rows = self.session.execute(
            select(LedgerEntryModel)
            .where(LedgerEntryModel.product_id == product_id)
            .order_by(LedgerEntryModel.occurred_at.desc(), LedgerEntryModel.seq.desc())
            .limit(RECENT_MOVEMENT_COUNT)
        ).scalars().all()
        recent = tuple(LedgerEntryRecord.from_model(r) for r in recent_rows)

        return MovementSummary(
            product_id=product_id,
            current_stock=normalize_quantity(product.stock),
            total_added=normalize_quantity(added),
            total_removed=normalize_quantity(removed),
            by_category=by_category,
            recent=recent,
        )
