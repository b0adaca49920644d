"""
Batch adjustment tests.

Verifies:
- A batch writes one entry per item or none at all
- Every failing item is reported, with its index and typed error
- Mapping items missing a field or holding a malformed UUID fail by index
- Items for the same product see the running balance of earlier items
- Shared cause, reason and reference fill in per-item gaps
"""

from decimal import Decimal
from uuid import uuid4

import pytest

from stock_ledger.domain.causes import AdjustmentCause
from stock_ledger.domain.dtos import BatchItem
from stock_ledger.exceptions import (
    BatchValidationFailedError,
    EmptyBatchError,
    InvalidBatchItemError,
    InsufficientStockError,
    InvalidStepError,
    MissingReferenceError,
    ProductNotFoundError,
)


def _stocks(ledger, products) -> list[Decimal]:
    return [ledger.get_product(p.id).stock for p in products]


class TestBatchAtomicity:
    def test_one_invalid_item_rejects_the_batch(self, ledger, make_product, test_actor_id):
        products = [make_product(initial_stock=20) for _ in range(5)]
        items = [BatchItem(product_id=p.id, quantity=2) for p in products]
        items[2] = BatchItem(product_id=products[2].id, quantity=25)

        with pytest.raises(BatchValidationFailedError) as exc_info:
            ledger.apply_batch(
                items, test_actor_id, shared_reason="Stocktake", shared_cause="adjustment_negative"
            )

        err = exc_info.value
        assert err.code == "BATCH_VALIDATION_FAILED"
        assert err.item_count == 5
        assert err.index == 2
        assert err.indices == [2]
        assert isinstance(err.failures[0].error, InsufficientStockError)

        assert _stocks(ledger, products) == [Decimal("20")] * 5
        assert ledger.query_history(causes=frozenset({"adjustment_negative"})).total_count == 0

    def test_all_failures_reported(self, ledger, make_product, test_actor_id):
        pieces = make_product(initial_stock=5)
        flour = make_product(unit="kg", initial_stock="3")
        missing = uuid4()

        with pytest.raises(BatchValidationFailedError) as exc_info:
            ledger.apply_batch(
                [
                    {"product_id": str(pieces.id), "quantity": 1, "cause": "damaged"},
                    {"product_id": str(flour.id), "quantity": "0.015", "cause": "damaged"},
                    {"product_id": str(missing), "quantity": 1, "cause": "damaged"},
                    {"product_id": str(pieces.id), "quantity": 1, "cause": "sale"},
                ],
                test_actor_id,
                shared_reason="Shelf check",
            )

        failures = exc_info.value.failures
        assert [f.index for f in failures] == [1, 2, 3]
        assert isinstance(failures[0].error, InvalidStepError)
        assert isinstance(failures[1].error, ProductNotFoundError)
        assert failures[1].product_id == missing
        assert isinstance(failures[2].error, MissingReferenceError)
        assert _stocks(ledger, [pieces, flour]) == [Decimal("5"), Decimal("3")]

    def test_malformed_mapping_items_reported_by_index(self, ledger, make_product, test_actor_id):
        product = make_product(initial_stock=5)

        with pytest.raises(BatchValidationFailedError) as exc_info:
            ledger.apply_batch(
                [
                    {"product_id": str(product.id), "quantity": 1},
                    {"quantity": 1},
                    {"product_id": str(product.id)},
                    {"product_id": "not-a-uuid", "quantity": 1},
                ],
                test_actor_id,
                shared_reason="Shelf check",
                shared_cause="damaged",
            )

        err = exc_info.value
        assert err.item_count == 4
        assert err.indices == [1, 2, 3]
        assert all(isinstance(f.error, InvalidBatchItemError) for f in err.failures)
        assert [f.error.field for f in err.failures] == ["product_id", "quantity", "product_id"]
        assert [f.product_id for f in err.failures] == [None, None, None]
        assert err.failures[0].error.code == "INVALID_BATCH_ITEM"
        assert _stocks(ledger, [product]) == [Decimal("5")]
        assert ledger.query_history(product_id=product.id).total_count == 1

    def test_empty_batch(self, ledger, test_actor_id):
        with pytest.raises(EmptyBatchError):
            ledger.apply_batch([], test_actor_id, shared_reason="Nothing")


class TestBatchApplied:
    def test_entries_share_batch_id(self, ledger, make_product, test_actor_id):
        a = make_product(initial_stock=10)
        b = make_product(unit="kg", initial_stock="4")

        entries = ledger.apply_batch(
            [
                BatchItem(product_id=a.id, quantity=3),
                BatchItem(product_id=b.id, quantity="1.5"),
            ],
            test_actor_id,
            shared_reason="Monthly stocktake",
            shared_cause=AdjustmentCause.LOST,
        )

        assert len(entries) == 2
        assert entries[0].batch_id is not None
        assert entries[0].batch_id == entries[1].batch_id
        assert [e.product_id for e in entries] == [a.id, b.id]
        assert _stocks(ledger, [a, b]) == [Decimal("7"), Decimal("2.5")]

        by_batch = ledger.query_history(batch_id=entries[0].batch_id)
        assert by_batch.total_count == 2

    def test_running_balance_for_repeated_product(self, ledger, make_product, test_actor_id):
        product = make_product(initial_stock=10)

        entries = ledger.apply_batch(
            [
                BatchItem(product_id=product.id, quantity=4, cause="damaged"),
                BatchItem(product_id=product.id, quantity=4, cause="expired"),
                BatchItem(product_id=product.id, quantity=6, cause="production"),
            ],
            test_actor_id,
            shared_reason="End of day",
        )

        assert [(e.previous_stock, e.new_stock) for e in entries] == [
            (Decimal("10"), Decimal("6")),
            (Decimal("6"), Decimal("2")),
            (Decimal("2"), Decimal("8")),
        ]
        assert ledger.get_product(product.id).stock == Decimal("8")
        assert entries[0].seq < entries[1].seq < entries[2].seq

    def test_running_balance_rejects_overdraw(self, ledger, make_product, test_actor_id):
        product = make_product(initial_stock=5)

        with pytest.raises(BatchValidationFailedError) as exc_info:
            ledger.apply_batch(
                [
                    BatchItem(product_id=product.id, quantity=3),
                    BatchItem(product_id=product.id, quantity=3),
                ],
                test_actor_id,
                shared_reason="Dropped pallet",
                shared_cause="damaged",
            )

        assert exc_info.value.indices == [1]
        assert ledger.get_product(product.id).stock == Decimal("5")

    def test_item_values_override_shared_values(self, ledger, make_product, test_actor_id):
        product = make_product(initial_stock=10)

        entries = ledger.apply_batch(
            [
                BatchItem(product_id=product.id, quantity=1),
                BatchItem(
                    product_id=product.id,
                    quantity=2,
                    cause="return_to_supplier",
                    reason="Wrong size",
                    reference="RMA-7",
                ),
            ],
            test_actor_id,
            shared_reason="Stocktake",
            shared_cause="lost",
        )

        assert entries[0].cause is AdjustmentCause.LOST
        assert entries[0].reason == "Stocktake"
        assert entries[1].cause is AdjustmentCause.RETURN_TO_SUPPLIER
        assert entries[1].reason == "Wrong size"
        assert entries[1].reference == "RMA-7"

    def test_shared_reference_satisfies_reference_requirement(
        self, ledger, make_product, test_actor_id
    ):
        a = make_product()
        b = make_product()

        entries = ledger.apply_batch(
            [BatchItem(product_id=a.id, quantity=12), BatchItem(product_id=b.id, quantity=6)],
            test_actor_id,
            shared_reason="Supplier delivery",
            shared_cause="purchase",
            shared_reference="PO-2024-88",
        )

        assert {e.reference for e in entries} == {"PO-2024-88"}
        assert _stocks(ledger, [a, b]) == [Decimal("12"), Decimal("6")]


class TestBatchLogging:
    def test_rejection_logs_failed_indices(self, ledger, make_product, test_actor_id, captured_logs):
        product = make_product(initial_stock=1)

        with pytest.raises(BatchValidationFailedError):
            ledger.apply_batch(
                [BatchItem(product_id=product.id, quantity=1), BatchItem(product_id=product.id, quantity=1)],
                test_actor_id,
                shared_reason="Count",
                shared_cause="lost",
            )

        logs = captured_logs()
        started = [r for r in logs if r["message"] == "batch_started"]
        rejected = [r for r in logs if r["message"] == "batch_rejected"]
        assert started[0]["item_count"] == 2
        assert rejected[0]["failed_indices"] == [1]
        assert rejected[0]["failure_codes"] == ["INSUFFICIENT_STOCK"]
        assert rejected[0]["batch_id"] == started[0]["batch_id"]

    def test_applied_log(self, ledger, make_product, test_actor_id, captured_logs):
        product = make_product(initial_stock=2)
        ledger.apply_batch(
            [BatchItem(product_id=product.id, quantity=1)],
            test_actor_id,
            shared_reason="Count",
            shared_cause="lost",
        )
        applied = [r for r in captured_logs() if r["message"] == "batch_applied"]
        assert applied[0]["entry_count"] == 1
        assert applied[0]["product_count"] == 1
