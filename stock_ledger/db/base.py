"""
Module: stock_ledger.db.base
Responsibility: Declarative base for the stock ledger tables.  Fixes the
    primary key convention (UUID stored as text), the column type used for
    each Python annotation, and the actor/timestamp columns carried by the
    mutable records (products, alert settings).
Architecture position: Ledger > DB.  Imported by every model.  MUST NOT
    import from models/, services/, selectors/ or domain/.

Invariants enforced:
    - Quantities map to Numeric(38, 9), never to a float column.
    - Timestamps map to timezone-aware DateTime.
    - Ledger entries do not inherit TrackedBase: an entry's actor and time
      are part of the entry itself and never change.
"""

from datetime import datetime
from decimal import Decimal
from typing import ClassVar
from uuid import UUID, uuid4

from sqlalchemy import BigInteger, DateTime, MetaData, Numeric, String, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator

from stock_ledger.db.types import QUANTITY_DECIMAL_PLACES

# Deterministic names for indexes and keys; check constraints are named
# explicitly on each model.
NAMING_CONVENTION = {
    "ix": "ix_%(table_name)s_%(column_0_N_name)s",
    "uq": "uq_%(table_name)s_%(column_0_N_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}


class UUIDString(TypeDecorator):
    """UUID stored as its 36-character string form.

    Accepts ``UUID`` objects or UUID strings on the way in (a malformed
    string raises ``ValueError`` before any SQL runs) and always returns
    ``UUID`` objects.
    """

    impl = String(36)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if not isinstance(value, UUID):
            value = UUID(str(value))
        return str(value)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return UUID(value)


class Base(DeclarativeBase):
    """Declarative base: uuid4 primary key plus the annotation type map."""

    metadata = MetaData(naming_convention=NAMING_CONVENTION)

    type_annotation_map: ClassVar[dict] = {
        Decimal: Numeric(38, QUANTITY_DECIMAL_PLACES),
        datetime: DateTime(timezone=True),
        UUID: UUIDString(),
        int: BigInteger,
    }

    id: Mapped[UUID] = mapped_column(UUIDString(), primary_key=True, default=uuid4)


class TrackedBase(Base):
    """
    Mutable record with creator/updater columns.

    created_at and updated_at are set by the database; the actor columns
    are set by the service making the change through ``touch``.
    """

    __abstract__ = True

    created_at: Mapped[datetime] = mapped_column(server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        server_default=func.now(), onupdate=func.now(), nullable=False
    )
    created_by_id: Mapped[UUID] = mapped_column(nullable=False)
    updated_by_id: Mapped[UUID | None] = mapped_column(nullable=True)

    def touch(self, actor_id: UUID) -> None:
        """Record ``actor_id`` as the last actor to change this row."""
        self.updated_by_id = actor_id
