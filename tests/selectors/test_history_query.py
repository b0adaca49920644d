"""
History query engine tests.

Verifies:
- Conjunctive filters (product, date range, causes, polarity, actor, batch)
- Sorting with seq as the tiebreak
- Page arithmetic
- Validation of every query argument
- Movement summaries
"""

from datetime import timedelta
from decimal import Decimal
from uuid import uuid4

import pytest

from stock_ledger.domain.causes import AdjustmentCause, HistoryCategory, Polarity
from stock_ledger.domain.clock import DeterministicClock
from stock_ledger.exceptions import InvalidQueryError, ProductNotFoundError
from stock_ledger.selectors.history_selector import HistoryQuery
from stock_ledger.services.stock_ledger_service import StockLedgerService


@pytest.fixture
def stocked(ledger, make_product, test_actor_id):
    """
    Two products with a mixed history.

    apple (piece): initial 20, purchase 5, damaged 3, sale 2
    flour (kg):    initial 10, lost 1.5, found 0.5
    """
    apple = make_product(sku="APPLE", initial_stock=20)
    flour = make_product(sku="FLOUR", unit="kg", initial_stock=10)
    ledger.apply_adjustment(apple.id, "purchase", 5, "Restock", test_actor_id, reference="PO-1")
    ledger.apply_adjustment(flour.id, "lost", "1.5", "Spill", test_actor_id)
    ledger.apply_adjustment(apple.id, "damaged", 3, "Bruised", test_actor_id)
    ledger.apply_adjustment(flour.id, "found", "0.5", "Recount", test_actor_id)
    ledger.apply_adjustment(apple.id, "sale", 2, "Counter", test_actor_id, reference="INV-1")
    return apple, flour


class TestFilters:
    def test_all_entries_newest_first(self, ledger, stocked):
        page = ledger.query_history()
        assert page.total_count == 7
        times = [e.occurred_at for e in page.entries]
        assert times == sorted(times, reverse=True)

    def test_product_filter(self, ledger, stocked):
        apple, _ = stocked
        page = ledger.query_history(product_id=apple.id)
        assert page.total_count == 4
        assert {e.product_id for e in page.entries} == {apple.id}

    def test_cause_filter(self, ledger, stocked):
        page = ledger.query_history(causes=frozenset({"damaged", "lost"}))
        assert {e.cause for e in page.entries} == {AdjustmentCause.DAMAGED, AdjustmentCause.LOST}

    def test_polarity_filter(self, ledger, stocked):
        page = ledger.query_history(polarity=Polarity.REMOVAL)
        assert page.total_count == 3
        assert all(e.delta < 0 for e in page.entries)

    def test_filters_are_conjunctive(self, ledger, stocked):
        _, flour = stocked
        page = ledger.query_history(product_id=flour.id, polarity="addition")
        assert [e.cause for e in page.entries] == [AdjustmentCause.FOUND, AdjustmentCause.INITIAL]

    def test_actor_filter(self, ledger, stocked, test_actor_id):
        assert ledger.query_history(actor_id=test_actor_id).total_count == 7
        assert ledger.query_history(actor_id=uuid4()).total_count == 0

    def test_date_range_is_inclusive(self, ledger, stocked):
        ordered = ledger.query_history(sort_order="asc", page_size=100).entries
        start, end = ordered[2].occurred_at, ordered[4].occurred_at

        page = ledger.query_history(start=start, end=end, sort_order="asc")
        assert [e.id for e in page.entries] == [e.id for e in ordered[2:5]]

    def test_naive_bounds_are_utc(self, ledger, stocked):
        ordered = ledger.query_history(sort_order="asc").entries
        naive_start = ordered[-1].occurred_at.replace(tzinfo=None)
        page = ledger.query_history(start=naive_start, sort_order="asc")
        assert [e.id for e in page.entries] == [ordered[-1].id]

    def test_batch_filter(self, ledger, stocked, test_actor_id):
        apple, flour = stocked
        entries = ledger.apply_batch(
            [{"product_id": apple.id, "quantity": 1}, {"product_id": flour.id, "quantity": "1"}],
            test_actor_id,
            shared_reason="Audit",
            shared_cause="adjustment_negative",
        )
        page = ledger.query_history(batch_id=entries[0].batch_id)
        assert page.total_count == 2

    def test_no_matches(self, ledger, stocked):
        page = ledger.query_history(product_id=uuid4())
        assert page.entries == ()
        assert page.total_count == 0
        assert page.total_pages == 0
        assert page.has_next is False


class TestSorting:
    def test_sort_by_quantity_uses_magnitude(self, ledger, stocked):
        apple, _ = stocked
        page = ledger.query_history(product_id=apple.id, sort_field="quantity", sort_order="asc")
        assert [e.quantity for e in page.entries] == [
            Decimal("2"),
            Decimal("3"),
            Decimal("5"),
            Decimal("20"),
        ]

    def test_sort_by_delta(self, ledger, stocked):
        apple, _ = stocked
        page = ledger.query_history(product_id=apple.id, sort_field="delta", sort_order="desc")
        assert [e.delta for e in page.entries] == [
            Decimal("20"),
            Decimal("5"),
            Decimal("-2"),
            Decimal("-3"),
        ]

    def test_sort_by_cause(self, ledger, stocked):
        apple, _ = stocked
        page = ledger.query_history(product_id=apple.id, sort_field="cause", sort_order="asc")
        assert [e.cause.value for e in page.entries] == ["damaged", "initial", "purchase", "sale"]

    def test_equal_timestamps_keep_write_order(self, engine, ledger_settings, make_product, test_actor_id):
        frozen = StockLedgerService(clock=DeterministicClock(), settings=ledger_settings)
        product = make_product()
        written = [
            frozen.apply_adjustment(product.id, "found", 1, f"Shelf {i}", test_actor_id)
            for i in range(4)
        ]
        assert len({e.occurred_at for e in written}) == 1

        newest_first = frozen.query_history(product_id=product.id)
        assert [e.seq for e in newest_first.entries] == sorted((e.seq for e in written), reverse=True)

        oldest_first = frozen.query_history(product_id=product.id, sort_order="asc")
        assert [e.reason for e in oldest_first.entries] == ["Shelf 0", "Shelf 1", "Shelf 2", "Shelf 3"]


class TestPagination:
    @pytest.fixture
    def twelve_entries(self, ledger, make_product, test_actor_id):
        product = make_product()
        for _ in range(12):
            ledger.apply_adjustment(product.id, "found", 1, "Count", test_actor_id)
        return product

    def test_page_arithmetic(self, ledger, twelve_entries):
        first = ledger.query_history(product_id=twelve_entries.id, page_size=5)
        assert first.total_count == 12
        assert first.total_pages == 3
        assert len(first.entries) == 5
        assert first.has_next

        last = ledger.query_history(product_id=twelve_entries.id, page_size=5, page=3)
        assert len(last.entries) == 2
        assert not last.has_next

    def test_pages_do_not_overlap(self, ledger, twelve_entries):
        seen = []
        for number in (1, 2, 3):
            page = ledger.query_history(product_id=twelve_entries.id, page_size=5, page=number)
            seen += [e.id for e in page.entries]
        assert len(seen) == len(set(seen)) == 12

    def test_page_past_the_end_is_empty(self, ledger, twelve_entries):
        page = ledger.query_history(product_id=twelve_entries.id, page_size=5, page=4)
        assert page.entries == ()
        assert page.total_count == 12

    def test_default_page_size(self, ledger, twelve_entries):
        page = ledger.query_history(product_id=twelve_entries.id)
        assert page.page_size == 10
        assert len(page.entries) == 10


class TestQueryValidation:
    @pytest.mark.parametrize(
        "kwargs,field",
        [
            ({"page": 0}, "page"),
            ({"page": "2"}, "page"),
            ({"page_size": 0}, "page_size"),
            ({"page_size": 101}, "page_size"),
            ({"sort_field": "price"}, "sort_field"),
            ({"sort_order": "up"}, "sort_order"),
            ({"causes": frozenset({"gift"})}, "causes"),
            ({"polarity": "sideways"}, "polarity"),
        ],
    )
    def test_invalid_arguments(self, ledger, kwargs, field):
        with pytest.raises(InvalidQueryError) as exc_info:
            ledger.query_history(**kwargs)
        assert exc_info.value.field == field
        assert exc_info.value.code == "INVALID_QUERY"

    def test_start_after_end(self, ledger, deterministic_clock):
        now = deterministic_clock.now()
        with pytest.raises(InvalidQueryError) as exc_info:
            ledger.query_history(start=now, end=now - timedelta(seconds=1))
        assert exc_info.value.field == "start"

    def test_query_object_and_keywords_are_exclusive(self, ledger):
        with pytest.raises(TypeError):
            ledger.query_history(HistoryQuery(), page=2)

    def test_query_object(self, ledger, stocked):
        apple, _ = stocked
        page = ledger.query_history(HistoryQuery(product_id=apple.id, page_size=2))
        assert page.total_pages == 2


class TestMovementSummary:
    def test_totals_by_polarity_and_category(self, ledger, stocked):
        apple, _ = stocked
        summary = ledger.movement_summary(apple.id)

        assert summary.current_stock == Decimal("20")
        assert summary.total_added == Decimal("25")
        assert summary.total_removed == Decimal("5")
        totals = {t.category: (t.count, t.quantity) for t in summary.by_category}
        assert totals == {
            HistoryCategory.INITIAL: (1, Decimal("20")),
            HistoryCategory.ADDITION: (1, Decimal("5")),
            HistoryCategory.REMOVAL: (1, Decimal("3")),
            HistoryCategory.SALE: (1, Decimal("2")),
        }

    def test_fractional_totals(self, ledger, stocked):
        _, flour = stocked
        summary = ledger.movement_summary(flour.id)
        assert summary.total_added == Decimal("10.5")
        assert summary.total_removed == Decimal("1.5")
        assert summary.current_stock == Decimal("9")

    def test_recent_movements_newest_first_and_capped(self, ledger, make_product, test_actor_id):
        product = make_product(initial_stock=1)
        for i in range(6):
            ledger.apply_adjustment(product.id, "found", 1, f"Count {i}", test_actor_id)

        summary = ledger.movement_summary(product.id)
        assert [e.reason for e in summary.recent] == [
            "Count 5",
            "Count 4",
            "Count 3",
            "Count 2",
            "Count 1",
        ]

    def test_product_without_history(self, ledger, make_product):
        product = make_product()
        summary = ledger.movement_summary(product.id)
        assert summary.total_added == 0
        assert summary.total_removed == 0
        assert summary.by_category == ()
        assert summary.recent == ()

    def test_unknown_product(self, ledger):
        with pytest.raises(ProductNotFoundError):
            ledger.movement_summary(uuid4())
