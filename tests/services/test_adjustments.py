"""
Single adjustment tests through StockLedgerService.

Verifies:
- Additions and removals move stock and write exactly one ledger entry
- Every rejection leaves stock and history untouched
- Entries carry the clock time, actor, step and description of the write
"""

from datetime import timezone
from decimal import Decimal
from uuid import uuid4

import pytest

from stock_ledger.domain.causes import AdjustmentCause, HistoryCategory, Polarity
from stock_ledger.domain.units import Unit
from stock_ledger.exceptions import (
    InsufficientStockError,
    InvalidStepError,
    MissingReasonError,
    MissingReferenceError,
    NonPositiveQuantityError,
    ProductNotFoundError,
    UnknownAdjustmentCauseError,
)


def _entry_count(ledger, product_id) -> int:
    return ledger.query_history(product_id=product_id).total_count


class TestKilogramScenario:
    """Purchase and damage of a product measured in kg with a 0.01 step."""

    def test_purchase_then_off_step_damage(self, ledger, make_product, test_actor_id):
        flour = make_product(unit="kg", initial_stock="5.00")
        assert flour.stock == Decimal("5")

        entry = ledger.apply_adjustment(
            flour.id, "purchase", "2.50", "Weekly restock", test_actor_id, reference="PO-1001"
        )
        assert entry.previous_stock == Decimal("5")
        assert entry.delta == Decimal("2.5")
        assert entry.new_stock == Decimal("7.5")
        assert ledger.get_product(flour.id).stock == Decimal("7.5")

        with pytest.raises(InvalidStepError) as exc_info:
            ledger.apply_adjustment(flour.id, "damaged", "0.015", "Torn bag", test_actor_id)
        assert exc_info.value.lower_valid == "0.01"
        assert exc_info.value.upper_valid == "0.02"
        assert ledger.get_product(flour.id).stock == Decimal("7.5")

        history = ledger.query_history(product_id=flour.id)
        assert history.total_count == 2
        assert history.entries[0].cause is AdjustmentCause.PURCHASE
        assert history.entries[1].cause is AdjustmentCause.INITIAL


class TestApplyAdjustment:
    def test_addition_entry_fields(self, ledger, make_product, test_actor_id, deterministic_clock):
        product = make_product(initial_stock=10)
        entry = ledger.apply_adjustment(
            product.id, "production", 4, "Morning shift", test_actor_id
        )

        assert entry.product_id == product.id
        assert entry.cause is AdjustmentCause.PRODUCTION
        assert entry.polarity is Polarity.ADDITION
        assert entry.category is HistoryCategory.ADDITION
        assert entry.quantity == Decimal("4")
        assert entry.delta == Decimal("4")
        assert entry.new_stock == Decimal("14")
        assert entry.min_quantity == Decimal("1")
        assert entry.unit is Unit.PIECE
        assert entry.reason == "Morning shift"
        assert entry.reference is None
        assert entry.actor_id == test_actor_id
        assert entry.batch_id is None
        assert entry.description == "Produced 4 piece - Morning shift"
        assert entry.occurred_at.tzinfo is not None
        assert entry.occurred_at <= deterministic_clock.now()

    def test_removal_entry_fields(self, ledger, make_product, test_actor_id):
        product = make_product(initial_stock=10)
        entry = ledger.apply_adjustment(product.id, "expired", 3, "Past date", test_actor_id)

        assert entry.polarity is Polarity.REMOVAL
        assert entry.category is HistoryCategory.REMOVAL
        assert entry.delta == Decimal("-3")
        assert entry.quantity == Decimal("3")
        assert entry.previous_stock == Decimal("10")
        assert entry.new_stock == Decimal("7")

    def test_sale_with_invoice(self, ledger, make_product, test_actor_id):
        product = make_product(initial_stock=5)
        entry = ledger.apply_adjustment(
            product.id, AdjustmentCause.SALE, 5, "Counter sale", test_actor_id, reference="INV-9"
        )
        assert entry.category is HistoryCategory.SALE
        assert entry.new_stock == 0
        assert ledger.get_product(product.id).stock == 0

    def test_seq_increases_per_entry(self, ledger, make_product, test_actor_id):
        product = make_product(initial_stock=1)
        first = ledger.apply_adjustment(product.id, "found", 1, "Back room", test_actor_id)
        second = ledger.apply_adjustment(product.id, "found", 1, "Back room", test_actor_id)
        assert second.seq > first.seq

    def test_timestamps_come_from_clock(self, ledger, make_product, test_actor_id):
        product = make_product()
        first = ledger.apply_adjustment(product.id, "found", 1, "Shelf", test_actor_id)
        second = ledger.apply_adjustment(product.id, "found", 1, "Shelf", test_actor_id)
        assert first.occurred_at.tzinfo == timezone.utc
        assert second.occurred_at > first.occurred_at

    def test_float_quantity_for_kg(self, ledger, make_product, test_actor_id):
        product = make_product(unit="kg")
        entry = ledger.apply_adjustment(product.id, "found", 0.1 + 0.2, "Scale check", test_actor_id)
        assert entry.delta == Decimal("0.3")


class TestRejectedAdjustments:
    """A rejected adjustment writes nothing."""

    @pytest.mark.parametrize(
        "cause,quantity,reason,reference,error",
        [
            ("damaged", 11, "Dropped", None, InsufficientStockError),
            ("damaged", 0, "Dropped", None, NonPositiveQuantityError),
            ("damaged", "1.5", "Dropped", None, InvalidStepError),
            ("damaged", 1, "  ", None, MissingReasonError),
            ("sale", 1, "Counter sale", None, MissingReferenceError),
            ("theft", 1, "Break-in", "", MissingReferenceError),
            ("gift", 1, "Promo", None, UnknownAdjustmentCauseError),
        ],
    )
    def test_rejection_leaves_state_unchanged(
        self, ledger, make_product, test_actor_id, cause, quantity, reason, reference, error
    ):
        product = make_product(initial_stock=10)

        with pytest.raises(error):
            ledger.apply_adjustment(
                product.id, cause, quantity, reason, test_actor_id, reference=reference
            )

        assert ledger.get_product(product.id).stock == Decimal("10")
        assert _entry_count(ledger, product.id) == 1

    def test_unknown_product(self, ledger, test_actor_id):
        with pytest.raises(ProductNotFoundError):
            ledger.apply_adjustment(uuid4(), "found", 1, "Shelf", test_actor_id)

    def test_insufficient_stock_reports_available(self, ledger, make_product, test_actor_id):
        product = make_product(unit="kg", initial_stock="1.25")
        with pytest.raises(InsufficientStockError) as exc_info:
            ledger.apply_adjustment(product.id, "lost", "2", "Missing", test_actor_id)

        err = exc_info.value
        assert err.available == "1.25"
        assert err.requested == "2"
        assert err.unit == "kg"


class TestAdjustmentLogging:
    def test_applied_log(self, ledger, make_product, test_actor_id, captured_logs):
        product = make_product(initial_stock=3)
        ledger.apply_adjustment(product.id, "found", 2, "Shelf", test_actor_id)

        applied = [r for r in captured_logs() if r["message"] == "adjustment_applied"]
        assert len(applied) == 1
        record = applied[0]
        assert record["product_id"] == str(product.id)
        assert record["actor_id"] == str(test_actor_id)
        assert record["cause"] == "found"
        assert record["new_stock"] == "5"
        assert "correlation_id" in record

    def test_rejected_log_carries_error_code(self, ledger, make_product, test_actor_id, captured_logs):
        product = make_product()
        with pytest.raises(InsufficientStockError):
            ledger.apply_adjustment(product.id, "lost", 1, "Missing", test_actor_id)

        rejected = [r for r in captured_logs() if r["message"] == "adjustment_rejected"]
        assert rejected[0]["error_code"] == "INSUFFICIENT_STOCK"
        assert rejected[0]["cause"] == "lost"
