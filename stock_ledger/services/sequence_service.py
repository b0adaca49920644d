"""
SequenceService -- ledger sequence numbers from locked counter rows.

Every ledger entry gets a ``seq`` from the ``ledger_entry`` counter.  The
counter row is read with ``SELECT ... FOR UPDATE`` and advanced inside the
caller's transaction: concurrent writers queue on the row, and a rolled
back transaction gives its numbers back.

Invariants enforced:
    SEQUENCE_MONOTONICITY -- values only come from the counter row, never
    from ``max(seq) + 1`` over the entries table.
"""

from sqlalchemy import BigInteger, String, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Mapped, Session, mapped_column

from stock_ledger.db.base import Base
from stock_ledger.logging_config import get_logger

logger = get_logger("services.sequence")


class SequenceCounter(Base):
    """Last value handed out for one named sequence."""

    __tablename__ = "sequence_counters"

    name: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    current_value: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)


class SequenceService:
    """
    Usage:
        seq = SequenceService(session).next_value(SequenceService.LEDGER_ENTRY)
    """

    LEDGER_ENTRY = "ledger_entry"
    KNOWN_SEQUENCES = (LEDGER_ENTRY,)

    def __init__(self, session: Session):
        self._session = session

    def _lock(self, name: str) -> SequenceCounter:
        counter = self._session.execute(
            select(SequenceCounter)
            .where(SequenceCounter.name == name)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if counter is not None:
            return counter

        # First use: create at zero.  A concurrent creator wins the unique
        # constraint and we lock its row instead.
        savepoint = self._session.begin_nested()
        try:
            counter = SequenceCounter(name=name, current_value=0)
            self._session.add(counter)
            self._session.flush()
            savepoint.commit()
            logger.info("sequence_counter_created", extra={"sequence_name": name})
            return counter
        except IntegrityError:
            savepoint.rollback()
            logger.debug("sequence_counter_create_race", extra={"sequence_name": name})
            return self._session.execute(
                select(SequenceCounter)
                .where(SequenceCounter.name == name)
                .with_for_update()
                .execution_options(populate_existing=True)
            ).scalar_one()

    def reserve(self, name: str, count: int = 1) -> range:
        """Advance ``name`` by ``count`` and return the reserved values."""
        if count < 1:
            raise ValueError(f"count must be positive, got {count}")
        counter = self._lock(name)
        first = counter.current_value + 1
        counter.current_value += count
        self._session.flush()
        logger.debug(
            "sequence_reserved",
            extra={"sequence_name": name, "first": first, "last": counter.current_value},
        )
        return range(first, counter.current_value + 1)

    def next_value(self, name: str) -> int:
        return self.reserve(name).start

    def current_value(self, name: str) -> int | None:
        """Last value handed out, or None if the counter does not exist."""
        return self._session.execute(
            select(SequenceCounter.current_value).where(SequenceCounter.name == name)
        ).scalar_one_or_none()

    def initialize_sequences(self) -> None:
        """Create any missing well-known counter at zero."""
        for name in self.KNOWN_SEQUENCES:
            if self.current_value(name) is None:
                self._session.add(SequenceCounter(name=name, current_value=0))
        self._session.flush()
