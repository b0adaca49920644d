"""
ORM-Level Immutability Enforcement.

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity              | Rule                                 | Error
--------------------|--------------------------------------|------------------------------
LedgerEntryModel    | Never updated, never deleted         | ImmutabilityViolationError
ProductStockRecord  | Never deleted                        | ImmutabilityViolationError
ProductStockRecord  | ``stock`` changes only while the     | UnauthorizedStockWriteError
                    | session is inside a ledger write     |

===============================================================================
HOW IT WORKS
===============================================================================

SQLAlchemy fires mapper events before UPDATE/DELETE statements are sent:

    session.flush()
         |
         v
    [before_update / before_delete] --> _check_*() --> raises, flush aborted
         |
         v
    SQL sent to database (only if checks pass)

LedgerWriter wraps its flush in ``authorized_stock_write(session)``, which
sets a flag in ``session.info``.  Any other code path that changes
``ProductStockRecord.stock`` is rejected at flush time.

Bulk ``UPDATE``/``DELETE`` statements and raw SQL bypass mapper events;
the database CHECK constraints on both tables still apply.

===============================================================================
USAGE
===============================================================================

    from stock_ledger.db.immutability import register_immutability_listeners
    register_immutability_listeners()  # once at startup

To temporarily disable (TESTS ONLY):

    unregister_immutability_listeners()
"""

from contextlib import contextmanager
from typing import Generator

from sqlalchemy import event
from sqlalchemy.orm import Session, object_session
from sqlalchemy.orm.attributes import get_history

from stock_ledger.exceptions import ImmutabilityViolationError, UnauthorizedStockWriteError
from stock_ledger.logging_config import get_logger

logger = get_logger("db.immutability")

# session.info key set while LedgerWriter flushes stock changes.
AUTHORIZED_STOCK_WRITE = "stock_ledger_authorized_stock_write"


@contextmanager
def authorized_stock_write(session: Session) -> Generator[Session, None, None]:
    """Mark ``session`` as performing a ledger write for the enclosed block."""
    previous = session.info.get(AUTHORIZED_STOCK_WRITE, False)
    session.info[AUTHORIZED_STOCK_WRITE] = True
    try:
        yield session
    finally:
        session.info[AUTHORIZED_STOCK_WRITE] = previous


def _blocked(entity_type: str, entity_id: str, operation: str, reason: str) -> None:
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": entity_id,
            "operation": operation,
            "reason": reason,
        },
    )


def _check_ledger_entry_update(mapper, connection, target):
    """Ledger entries are append-only."""
    _blocked("LedgerEntry", str(target.id), "UPDATE", "ledger_entry_append_only")
    raise ImmutabilityViolationError(
        entity_type="LedgerEntry",
        entity_id=str(target.id),
        reason="Ledger entries are append-only; record an offsetting adjustment instead",
    )


def _check_ledger_entry_delete(mapper, connection, target):
    _blocked("LedgerEntry", str(target.id), "DELETE", "ledger_entry_append_only")
    raise ImmutabilityViolationError(
        entity_type="LedgerEntry",
        entity_id=str(target.id),
        reason="Ledger entries cannot be deleted",
    )


def _check_product_delete(mapper, connection, target):
    _blocked("ProductStockRecord", str(target.id), "DELETE", "product_never_deleted")
    raise ImmutabilityViolationError(
        entity_type="ProductStockRecord",
        entity_id=str(target.id),
        reason="Products with stock history are never deleted",
    )


def _check_product_stock_write(mapper, connection, target):
    """Reject stock changes made outside LedgerWriter."""
    history = get_history(target, "stock")
    if not history.added or not history.deleted:
        return
    if history.added[0] == history.deleted[0]:
        return

    session = object_session(target)
    if session is not None and session.info.get(AUTHORIZED_STOCK_WRITE):
        return

    _blocked("ProductStockRecord", str(target.id), "UPDATE", "stock_written_outside_ledger")
    raise UnauthorizedStockWriteError(product_id=str(target.id))


_LISTENERS = (
    ("LedgerEntryModel", "before_update", _check_ledger_entry_update),
    ("LedgerEntryModel", "before_delete", _check_ledger_entry_delete),
    ("ProductStockRecord", "before_delete", _check_product_delete),
    ("ProductStockRecord", "before_update", _check_product_stock_write),
)


def _models():
    # Inline import: models import from db.
    from stock_ledger.models.ledger_entry import LedgerEntryModel
    from stock_ledger.models.product import ProductStockRecord

    return {
        "LedgerEntryModel": LedgerEntryModel,
        "ProductStockRecord": ProductStockRecord,
    }


def register_immutability_listeners():
    """
    Register all immutability enforcement event listeners.

    Safe to call more than once.
    """
    models = _models()
    for model_name, event_name, listener_fn in _LISTENERS:
        target = models[model_name]
        if not event.contains(target, event_name, listener_fn):
            event.listen(target, event_name, listener_fn)


def _safe_remove_listener(target, event_name, listener_fn):
    """Remove an event listener, ignoring it if not registered."""
    if event.contains(target, event_name, listener_fn):
        event.remove(target, event_name, listener_fn)


def unregister_immutability_listeners():
    """
    Remove immutability enforcement event listeners.

    WARNING: only for tests that need to set up corrupted state.
    """
    models = _models()
    for model_name, event_name, listener_fn in _LISTENERS:
        _safe_remove_listener(models[model_name], event_name, listener_fn)


def immutability_listeners_registered() -> bool:
    models = _models()
    return all(
        event.contains(models[model_name], event_name, listener_fn)
        for model_name, event_name, listener_fn in _LISTENERS
    )
