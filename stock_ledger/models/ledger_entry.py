"""
Module: stock_ledger.models.ledger_entry
Responsibility: ORM persistence for Ledger Entries -- the immutable audit
    record of every stock mutation.
Architecture position: Ledger > Models.  May import from db/base.py only.

Invariants enforced:
    - Append-only: no UPDATE or DELETE (ORM listeners in db/immutability.py).
    - new_stock = previous_stock + delta, new_stock >= 0, delta != 0
      (DB check constraints; the arithmetic check allows 1e-6 slack because
      SQLite evaluates NUMERIC columns as floating point).
    - polarity is frozen at write time and agrees with the sign of delta.
    - seq is unique and strictly monotonic (SequenceService).

Audit relevance:
    Ledger entries ARE the stock history.  Replaying a product's entries in
    seq order must reproduce its current stock (LedgerAuditor).
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import BigInteger, CheckConstraint, ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from stock_ledger.db.base import Base, UUIDString


class LedgerEntryModel(Base):
    """
    One immutable stock movement.

    Guarantees:
        - occurred_at is set by the writer from the injected clock; callers
          never supply it.
        - min_quantity and unit are snapshots of the product at write time,
          so later product edits never reinterpret history.
        - batch_id is shared by every entry written by one batch call and is
          null for single adjustments.
    """

    __tablename__ = "stock_ledger_entries"

    __table_args__ = (
        CheckConstraint("new_stock >= 0", name="ck_entry_new_stock_non_negative"),
        CheckConstraint("delta <> 0", name="ck_entry_delta_non_zero"),
        CheckConstraint(
            "abs(new_stock - (previous_stock + delta)) < 0.000001",
            name="ck_entry_arithmetic",
        ),
        CheckConstraint(
            "(polarity = 'addition' AND delta > 0) OR (polarity = 'removal' AND delta < 0)",
            name="ck_entry_polarity_sign",
        ),
        Index("idx_entry_product_time", "product_id", "occurred_at"),
        Index("idx_entry_cause_time", "cause", "occurred_at"),
        Index("idx_entry_actor_time", "actor_id", "occurred_at"),
        Index("idx_entry_batch", "batch_id"),
    )

    seq: Mapped[int] = mapped_column(BigInteger, nullable=False, unique=True)

    product_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("product_stock.id"),
        nullable=False,
    )

    occurred_at: Mapped[datetime] = mapped_column(nullable=False)

    cause: Mapped[str] = mapped_column(String(50), nullable=False)
    polarity: Mapped[str] = mapped_column(String(20), nullable=False)
    category: Mapped[str] = mapped_column(String(20), nullable=False)

    delta: Mapped[Decimal] = mapped_column(nullable=False)
    previous_stock: Mapped[Decimal] = mapped_column(nullable=False)
    new_stock: Mapped[Decimal] = mapped_column(nullable=False)

    min_quantity: Mapped[Decimal] = mapped_column(nullable=False)
    unit: Mapped[str] = mapped_column(String(20), nullable=False)

    reason: Mapped[str] = mapped_column(String(1000), nullable=False)
    reference: Mapped[str | None] = mapped_column(String(255), nullable=True)
    description: Mapped[str] = mapped_column(String(2000), nullable=False)

    actor_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    batch_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    def __repr__(self) -> str:
        return (
            f"<LedgerEntryModel seq={self.seq} product={self.product_id} "
            f"{self.cause} {self.previous_stock} -> {self.new_stock}>"
        )
