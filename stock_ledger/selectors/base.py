"""
Module: stock_ledger.selectors.base
Responsibility: Abstract base class for read-only query selectors.
Architecture position: Ledger > Selectors.  May import from db/, models/
    and domain/.  MUST NOT import from services/.

Invariants enforced:
    - Read-only access: selectors never add, delete, flush or commit.
    - DTO return convention: selectors return frozen dataclasses, not ORM
      instances.
    - Session ownership: the caller owns the session and its transaction.
"""

from abc import ABC

from sqlalchemy.orm import Session


class BaseSelector(ABC):
    """
    Abstract base class for all selectors.

    Contract:
        Accept a Session from the caller, perform read-only queries, return
        DTOs.
    """

    def __init__(self, session: Session):
        self.session = session
