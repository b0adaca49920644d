"""
Ledger Invariants Contract.

These invariants are structural law. No settings value or caller option may
override them.

This module exists solely to declare these invariants explicitly. The
enforcement is distributed across the planner, LedgerWriter, the
immutability listeners, database check constraints, SequenceService and
StockLedgerService.
"""

from enum import Enum, unique


@unique
class LedgerInvariant(str, Enum):
    """Non-configurable invariants enforced by the ledger.

    Each value names one structural guarantee that the ledger provides
    unconditionally.
    """

    ENTRY_ARITHMETIC = "entry_arithmetic"
    """new_stock == previous_stock + delta for every entry. Enforced by the
    planner, re-checked by LedgerWriter, and backed by a DB check constraint."""

    NON_NEGATIVE_STOCK = "non_negative_stock"
    """Stock never drops below zero. Removals larger than current stock are
    rejected, never clamped."""

    STEP_MULTIPLE = "step_multiple"
    """abs(delta) is a positive multiple of the product's min_quantity in
    effect at write time. Enforced by quantity_policy.validate_quantity."""

    APPEND_ONLY = "append_only"
    """Ledger entries are never updated or deleted. Enforced by ORM
    listeners (stock_ledger.db.immutability)."""

    STOCK_MATCHES_LEDGER = "stock_matches_ledger"
    """A product's stock equals the new_stock of its most recent entry (0 if
    none). Stock is only written together with an entry."""

    BATCH_ATOMICITY = "batch_atomicity"
    """A batch produces N entries or none. Enforced by validate-all-before-
    apply-any and a single transaction."""

    PER_PRODUCT_SERIALIZATION = "per_product_serialization"
    """Read-modify-write of one product's stock is serialized. Enforced by
    ProductLockManager, SELECT ... FOR UPDATE and the version counter."""

    SEQUENCE_MONOTONICITY = "sequence_monotonicity"
    """Entry sequence numbers are strictly monotonic. Enforced by
    SequenceService with locked counter rows."""


# All invariants as a frozenset for programmatic checks.
ALL_LEDGER_INVARIANTS: frozenset[LedgerInvariant] = frozenset(LedgerInvariant)
