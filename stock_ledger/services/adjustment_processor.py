"""
AdjustmentProcessor -- the single and batch adjustment paths.

Responsibility:
    Load and row-lock the affected Product Stock Records, run the pure
    planner against them, and hand every planned movement to LedgerWriter.

Architecture position:
    Ledger > Services.  Flush-only; StockLedgerService owns the transaction,
    the in-process locks and the retries.

Invariants enforced:
    BATCH_ATOMICITY -- plan_batch validates every item before LedgerWriter
        is called for any of them; the caller commits or rolls back the
        whole set.
    PER_PRODUCT_SERIALIZATION -- products are read with SELECT ... FOR UPDATE
        in id order.

Failure modes:
    - ProductNotFoundError, AdjustmentError subclasses (single path).
    - EmptyBatchError, BatchValidationFailedError (batch path).
"""

from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.orm import Session

from stock_ledger.domain.causes import AdjustmentCause
from stock_ledger.domain.clock import Clock, SystemClock
from stock_ledger.domain.dtos import (
    AdjustmentRequest,
    BatchItem,
    LedgerEntryRecord,
    ProductStock,
)
from stock_ledger.domain.planner import plan_adjustment, plan_batch
from stock_ledger.exceptions import EmptyBatchError, ProductNotFoundError
from stock_ledger.logging_config import get_logger
from stock_ledger.models.product import ProductStockRecord
from stock_ledger.services.base import BaseService
from stock_ledger.services.ledger_writer import LedgerWriter

logger = get_logger("services.adjustment_processor")


class AdjustmentProcessor(BaseService):
    """Validates and applies adjustments within the caller's transaction."""

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        writer: LedgerWriter | None = None,
    ):
        super().__init__(session)
        self._clock = clock or SystemClock()
        self._writer = writer or LedgerWriter(session, self._clock)

    def load_locked(self, product_ids) -> dict[UUID, ProductStockRecord]:
        """Read the given products with row locks, in id order."""
        ids = sorted(set(product_ids), key=str)
        if not ids:
            return {}
        rows = self.session.execute(
            select(ProductStockRecord)
            .where(ProductStockRecord.id.in_(ids))
            .order_by(ProductStockRecord.id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalars().all()
        return {row.id: row for row in rows}

    def apply(self, request: AdjustmentRequest, actor_id: UUID) -> LedgerEntryRecord:
        """
        Apply one adjustment.

        Raises:
            ProductNotFoundError: Unknown product.
            AdjustmentError: Any validation failure; nothing is written.
        """
        records = self.load_locked([request.product_id])
        record = records.get(request.product_id)
        if record is None:
            raise ProductNotFoundError(str(request.product_id))

        movement = plan_adjustment(ProductStock.from_model(record), request)
        entry = self._writer.write(record, movement, actor_id)
        return LedgerEntryRecord.from_model(entry)

    def apply_batch(
        self,
        items: list[BatchItem],
        actor_id: UUID,
        shared_reason: str | None = None,
        shared_cause: AdjustmentCause | str | None = None,
        shared_reference: str | None = None,
        batch_id: UUID | None = None,
    ) -> list[LedgerEntryRecord]:
        """
        Apply every item of a batch, or none of them.

        Raises:
            EmptyBatchError: ``items`` is empty.
            BatchValidationFailedError: One or more items failed; lists all.
        """
        if not items:
            raise EmptyBatchError()

        requests = [
            item.resolve(shared_cause, shared_reason, shared_reference) for item in items
        ]
        records = self.load_locked(r.product_id for r in requests)
        snapshots = {pid: ProductStock.from_model(rec) for pid, rec in records.items()}

        movements = plan_batch(snapshots, requests)

        batch_id = batch_id or uuid4()
        entries = [
            self._writer.write(records[m.product_id], m, actor_id, batch_id=batch_id)
            for m in movements
        ]
        logger.debug(
            "batch_written",
            extra={"batch_id": str(batch_id), "entry_count": len(entries)},
        )
        return [LedgerEntryRecord.from_model(e) for e in entries]
