"""
Module: stock_ledger.models.product
Responsibility: ORM persistence for the Product Stock Record -- the single
    scalar quantity-on-hand per product plus the unit and step size that
    govern how it may change.
Architecture position: Ledger > Models.  May import from db/base.py only.

Invariants enforced:
    - stock >= 0 (DB check constraint).
    - min_quantity > 0 (DB check constraint).
    - stock changes only inside a ledger write (ORM listener in
      db/immutability.py raises UnauthorizedStockWriteError otherwise).
    - version is bumped on every UPDATE; a concurrent writer holding a stale
      version gets StaleDataError (optimistic lost-update detection).
    - Product records are never deleted, only driven to zero.
"""

from decimal import Decimal

from sqlalchemy import CheckConstraint, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from stock_ledger.db.base import TrackedBase


class ProductStockRecord(TrackedBase):
    """
    Product Stock Record.

    Contract:
        Created with stock = 0.  An opening quantity is written as an
        ``initial`` ledger entry, never by setting stock directly.

    Guarantees:
        - sku is unique.
        - unit is one of stock_ledger.domain.units.Unit (stored as its value).
        - low/critical threshold overrides are both set or both null.
    """

    __tablename__ = "product_stock"

    __table_args__ = (
        CheckConstraint("stock >= 0", name="ck_product_stock_non_negative"),
        CheckConstraint("min_quantity > 0", name="ck_product_min_quantity_positive"),
        CheckConstraint(
            "(low_threshold_override IS NULL) = (critical_threshold_override IS NULL)",
            name="ck_product_threshold_override_pair",
        ),
        Index("idx_product_stock_sku", "sku", unique=True),
    )

    sku: Mapped[str] = mapped_column(String(100), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    unit: Mapped[str] = mapped_column(String(20), nullable=False)
    min_quantity: Mapped[Decimal] = mapped_column(nullable=False)
    stock: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))

    low_threshold_override: Mapped[Decimal | None] = mapped_column(nullable=True)
    critical_threshold_override: Mapped[Decimal | None] = mapped_column(nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return (
            f"<ProductStockRecord {self.sku} stock={self.stock} {self.unit} "
            f"step={self.min_quantity} v{self.version}>"
        )
