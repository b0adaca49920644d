"""Database layer: declarative base, engine/session management, immutability."""

from stock_ledger.db.base import Base, TrackedBase, UUIDString
from stock_ledger.db.engine import (
    create_tables,
    drop_tables,
    get_engine,
    get_session_factory,
    get_write_session_factory,
    init_engine_from_url,
    reset_engine,
    session_scope,
)

__all__ = [
    "Base",
    "TrackedBase",
    "UUIDString",
    "create_tables",
    "drop_tables",
    "get_engine",
    "get_session_factory",
    "get_write_session_factory",
    "init_engine_from_url",
    "reset_engine",
    "session_scope",
]
