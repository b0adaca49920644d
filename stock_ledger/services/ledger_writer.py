"""
LedgerWriter -- persists planned movements as ledger entries.

Responsibility:
    For each PlannedMovement: re-assert the entry invariants against the
    locked product row, allocate the next ``seq``, insert the immutable
    LedgerEntryModel, and move ``ProductStockRecord.stock`` to the new
    value.  This is the only code path authorized to change stock.

Architecture position:
    Ledger > Services.  Called by AdjustmentProcessor inside the facade's
    transaction.  Flush-only.

Invariants enforced:
    ENTRY_ARITHMETIC     -- new_stock = previous_stock + delta.
    NON_NEGATIVE_STOCK   -- new_stock >= 0.
    STEP_MULTIPLE        -- abs(delta) is a positive multiple of min_quantity.
    STOCK_MATCHES_LEDGER -- the product's stock equals previous_stock before
                            the write and new_stock after it.
    SEQUENCE_MONOTONICITY via SequenceService.

Failure modes:
    - ConcurrencyConflictError: the locked row no longer holds the stock the
      movement was planned against.
    - StaleDataError (from the version counter) propagates to the facade.
"""

from decimal import Decimal
from uuid import UUID

from sqlalchemy.orm import Session

from stock_ledger.db.immutability import authorized_stock_write
from stock_ledger.db.types import normalize_quantity
from stock_ledger.domain.clock import Clock, SystemClock
from stock_ledger.domain.dtos import PlannedMovement
from stock_ledger.exceptions import ConcurrencyConflictError
from stock_ledger.invariants import LedgerInvariant
from stock_ledger.logging_config import get_logger
from stock_ledger.models.ledger_entry import LedgerEntryModel
from stock_ledger.models.product import ProductStockRecord
from stock_ledger.services.base import BaseService
from stock_ledger.services.sequence_service import SequenceService

logger = get_logger("services.ledger_writer")


class LedgerWriter(BaseService):
    """Writes ledger entries and the matching stock update."""

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        sequence_service: SequenceService | None = None,
    ):
        super().__init__(session)
        self._clock = clock or SystemClock()
        self._sequences = sequence_service or SequenceService(session)

    def write(
        self,
        product: ProductStockRecord,
        movement: PlannedMovement,
        actor_id: UUID,
        batch_id: UUID | None = None,
    ) -> LedgerEntryModel:
        """
        Persist one movement against a locked product row.

        Preconditions:
            ``product`` was loaded with FOR UPDATE in the current transaction.
        """
        current = normalize_quantity(product.stock)
        if current != movement.previous_stock:
            raise ConcurrencyConflictError(
                [str(product.id)],
                reason=(
                    f"stock changed since validation "
                    f"(planned from {movement.previous_stock}, found {current})"
                ),
            )

        # INVARIANT: ENTRY_ARITHMETIC, NON_NEGATIVE_STOCK
        assert movement.new_stock == movement.previous_stock + movement.delta, (
            f"{LedgerInvariant.ENTRY_ARITHMETIC.value} violated"
        )
        assert movement.new_stock >= 0, f"{LedgerInvariant.NON_NEGATIVE_STOCK.value} violated"
        # INVARIANT: STEP_MULTIPLE
        assert movement.delta != 0 and abs(movement.delta) % movement.min_quantity == Decimal(0), (
            f"{LedgerInvariant.STEP_MULTIPLE.value} violated"
        )

        seq = self._sequences.next_value(SequenceService.LEDGER_ENTRY)
        assert seq > 0, f"{LedgerInvariant.SEQUENCE_MONOTONICITY.value} violated"

        entry = LedgerEntryModel(
            seq=seq,
            product_id=product.id,
            occurred_at=self._clock.now(),
            cause=movement.cause.value,
            polarity=movement.polarity.value,
            category=movement.category.value,
            delta=movement.delta,
            previous_stock=movement.previous_stock,
            new_stock=movement.new_stock,
            min_quantity=movement.min_quantity,
            unit=movement.unit.value,
            reason=movement.reason,
            reference=movement.reference,
            description=movement.description,
            actor_id=actor_id,
            batch_id=batch_id,
        )

        with authorized_stock_write(self.session):
            product.stock = movement.new_stock
            product.touch(actor_id)
            self.session.add(entry)
            self.session.flush()

        logger.debug(
            "ledger_entry_written",
            extra={
                "entry_id": str(entry.id),
                "seq": seq,
                "product_id": str(product.id),
                "cause": movement.cause.value,
                "delta": movement.delta,
                "new_stock": movement.new_stock,
                "batch_id": str(batch_id) if batch_id else None,
            },
        )
        return entry
