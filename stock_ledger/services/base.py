"""
BaseService -- abstract base for session-bound write services.

Services receive a SQLAlchemy ``Session`` and persist with
``session.flush()``, never ``session.commit()``.  StockLedgerService, the
facade, owns every transaction boundary.
"""

from abc import ABC

from sqlalchemy.orm import Session


class BaseService(ABC):
    """
    Abstract base class for write services.

    Contract:
        Flush within the caller's transaction.  Never commit or roll back.
    """

    def __init__(self, session: Session):
        self.session = session
