"""Tests for the pure adjustment planner."""

from decimal import Decimal
from uuid import uuid4

import pytest

from stock_ledger.domain.causes import AdjustmentCause, Polarity
from stock_ledger.domain.dtos import AdjustmentRequest, ProductStock
from stock_ledger.domain.planner import plan_adjustment, plan_batch
from stock_ledger.domain.units import Unit
from stock_ledger.exceptions import (
    BatchValidationFailedError,
    EmptyBatchError,
    InsufficientStockError,
    InvalidStepError,
    MissingReasonError,
    MissingReferenceError,
    NonPositiveQuantityError,
    ProductNotFoundError,
    UnknownAdjustmentCauseError,
)


def _product(stock="5", unit=Unit.KG, min_quantity="0.01", sku="FLOUR-1") -> ProductStock:
    return ProductStock(
        id=uuid4(),
        sku=sku,
        name="Flour",
        unit=unit,
        min_quantity=Decimal(min_quantity),
        stock=Decimal(stock),
    )


def _request(product, cause, quantity, reason="restock", reference=None):
    return AdjustmentRequest(
        product_id=product.id,
        cause=cause,
        quantity=quantity,
        reason=reason,
        reference=reference,
    )


class TestPlanAdjustment:
    def test_purchase_adds_stock(self):
        product = _product(stock="5")
        movement = plan_adjustment(
            product, _request(product, "purchase", "2.50", reference="PO-1")
        )

        assert movement.cause is AdjustmentCause.PURCHASE
        assert movement.polarity is Polarity.ADDITION
        assert movement.delta == Decimal("2.5")
        assert movement.previous_stock == Decimal("5")
        assert movement.new_stock == Decimal("7.5")
        assert movement.reference == "PO-1"
        assert movement.description == "Purchased 2.5 kg - restock"

    def test_removal_has_negative_delta(self):
        product = _product(stock="5")
        movement = plan_adjustment(product, _request(product, "damaged", "1.25"))

        assert movement.delta == Decimal("-1.25")
        assert movement.new_stock == Decimal("3.75")

    def test_removing_everything_reaches_zero(self):
        product = _product(stock="3", unit=Unit.PIECE, min_quantity="1")
        movement = plan_adjustment(product, _request(product, "lost", 3))
        assert movement.new_stock == 0

    def test_insufficient_stock(self):
        product = _product(stock="2", unit=Unit.PIECE, min_quantity="1")
        with pytest.raises(InsufficientStockError) as exc_info:
            plan_adjustment(product, _request(product, "expired", 3))

        err = exc_info.value
        assert err.available == "2"
        assert err.requested == "3"
        assert err.unit == "piece"

    def test_reason_is_trimmed_and_required(self):
        product = _product()
        with pytest.raises(MissingReasonError):
            plan_adjustment(product, _request(product, "found", "1", reason="   "))

        movement = plan_adjustment(product, _request(product, "found", "1", reason="  shelf  "))
        assert movement.reason == "shelf"

    def test_reference_required_for_sale(self):
        product = _product()
        with pytest.raises(MissingReferenceError) as exc_info:
            plan_adjustment(product, _request(product, "sale", "1"))
        assert exc_info.value.reference_label == "Invoice #"

    def test_reference_optional_for_damage(self):
        product = _product()
        movement = plan_adjustment(product, _request(product, "damaged", "1"))
        assert movement.reference is None

    def test_unknown_cause(self):
        product = _product()
        with pytest.raises(UnknownAdjustmentCauseError):
            plan_adjustment(product, _request(product, "gift", "1"))

    def test_step_checked_before_reference(self):
        """An off-step quantity is reported even if the reference is also missing."""
        product = _product()
        with pytest.raises(InvalidStepError):
            plan_adjustment(product, _request(product, "purchase", "0.015"))

    def test_quantity_checked_before_sufficiency(self):
        product = _product(stock="0")
        with pytest.raises(NonPositiveQuantityError):
            plan_adjustment(product, _request(product, "damaged", "0"))

    def test_available_overrides_snapshot_stock(self):
        product = _product(stock="10", unit=Unit.PIECE, min_quantity="1")
        movement = plan_adjustment(product, _request(product, "lost", 4), available=Decimal("6"))
        assert movement.previous_stock == Decimal("6")
        assert movement.new_stock == Decimal("2")

    def test_step_captured_from_product(self):
        product = _product(unit=Unit.BOX, min_quantity="6", stock="12")
        movement = plan_adjustment(product, _request(product, "damaged", 6))
        assert movement.min_quantity == Decimal("6")
        assert movement.unit is Unit.BOX


class TestPlanBatch:
    def test_empty_batch(self):
        with pytest.raises(EmptyBatchError):
            plan_batch({}, [])

    def test_running_balance_for_repeated_product(self):
        product = _product(stock="10", unit=Unit.PIECE, min_quantity="1")
        products = {product.id: product}
        planned = plan_batch(
            products,
            [
                _request(product, "lost", 4),
                _request(product, "lost", 4),
                _request(product, "found", 1),
            ],
        )

        assert [m.previous_stock for m in planned] == [Decimal("10"), Decimal("6"), Decimal("2")]
        assert planned[-1].new_stock == Decimal("3")

    def test_running_balance_can_exhaust_stock(self):
        product = _product(stock="5", unit=Unit.PIECE, min_quantity="1")
        with pytest.raises(BatchValidationFailedError) as exc_info:
            plan_batch(
                {product.id: product},
                [_request(product, "lost", 3), _request(product, "lost", 3)],
            )

        err = exc_info.value
        assert err.indices == [1]
        assert isinstance(err.failures[0].error, InsufficientStockError)

    def test_all_failures_collected(self):
        good = _product(stock="10", unit=Unit.PIECE, min_quantity="1", sku="A")
        kg = _product(stock="1", sku="B")
        missing_id = uuid4()
        requests = [
            _request(good, "lost", 1),
            _request(kg, "damaged", "0.015"),
            AdjustmentRequest(product_id=missing_id, cause="lost", quantity=1, reason="x"),
            _request(good, "lost", 1, reason=""),
            _request(good, "lost", 1),
        ]

        with pytest.raises(BatchValidationFailedError) as exc_info:
            plan_batch({good.id: good, kg.id: kg}, requests)

        err = exc_info.value
        assert err.item_count == 5
        assert err.index == 1
        assert err.indices == [1, 2, 3]
        assert isinstance(err.failures[0].error, InvalidStepError)
        assert isinstance(err.failures[1].error, ProductNotFoundError)
        assert err.failures[1].product_id == missing_id
        assert isinstance(err.failures[2].error, MissingReasonError)

    def test_failed_items_do_not_move_balance(self):
        product = _product(stock="5", unit=Unit.PIECE, min_quantity="1")
        with pytest.raises(BatchValidationFailedError) as exc_info:
            plan_batch(
                {product.id: product},
                [
                    _request(product, "lost", 9),
                    _request(product, "lost", 5),
                    _request(product, "lost", 1),
                ],
            )
        assert exc_info.value.indices == [0, 2]
