"""
ProductRegistry -- minimal product stock record management.

Creates Product Stock Records (always with stock = 0) and edits the
attributes that do not touch stock: step size and threshold overrides.
Changing ``min_quantity`` is not retroactive; ledger entries keep the step
they were written with.
"""

from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from stock_ledger.db.types import QUANTITY_DECIMAL_PLACES, exceeds_scale, normalize_quantity
from stock_ledger.domain.quantity_policy import QuantityPolicy, coerce_quantity
from stock_ledger.domain.thresholds import Thresholds
from stock_ledger.domain.units import Unit
from stock_ledger.exceptions import (
    InvalidQuantityError,
    NonPositiveQuantityError,
    ProductAlreadyExistsError,
    ProductNotFoundError,
)
from stock_ledger.logging_config import get_logger
from stock_ledger.models.product import ProductStockRecord
from stock_ledger.services.base import BaseService

logger = get_logger("services.product_registry")


class ProductRegistry(BaseService):
    """Flush-only writes to Product Stock Records, excluding stock."""

    def get(self, product_id: UUID, for_update: bool = False) -> ProductStockRecord:
        stmt = select(ProductStockRecord).where(ProductStockRecord.id == product_id)
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        record = self.session.execute(stmt).scalar_one_or_none()
        if record is None:
            raise ProductNotFoundError(str(product_id))
        return record

    def register(
        self,
        sku: str,
        name: str,
        unit: Unit | str,
        actor_id: UUID,
        min_quantity=None,
    ) -> ProductStockRecord:
        """
        Create a product with zero stock.

        Raises:
            ProductAlreadyExistsError: SKU already registered.
            InvalidQuantityError / NonPositiveQuantityError: Bad step size.
            ValueError: Blank SKU or name, or unknown unit.
        """
        sku = (sku or "").strip()
        name = (name or "").strip()
        if not sku:
            raise ValueError("SKU is required")
        if not name:
            raise ValueError("Product name is required")

        parsed_unit = Unit.parse(unit)
        step = self._validated_step(min_quantity, parsed_unit)
        policy = QuantityPolicy(unit=parsed_unit, min_quantity=step)

        existing = self.session.execute(
            select(ProductStockRecord.id).where(ProductStockRecord.sku == sku)
        ).scalar_one_or_none()
        if existing is not None:
            raise ProductAlreadyExistsError(sku)

        record = ProductStockRecord(
            sku=sku,
            name=name,
            unit=policy.unit.value,
            min_quantity=policy.min_quantity,
            stock=Decimal("0"),
            created_by_id=actor_id,
        )
        savepoint = self.session.begin_nested()
        try:
            self.session.add(record)
            self.session.flush()
            savepoint.commit()
        except IntegrityError:
            savepoint.rollback()
            raise ProductAlreadyExistsError(sku) from None

        logger.info(
            "product_registered",
            extra={
                "product_id": str(record.id),
                "sku": sku,
                "unit": policy.unit.value,
                "min_quantity": policy.min_quantity,
            },
        )
        return record

    def set_min_quantity(self, product_id: UUID, min_quantity, actor_id: UUID) -> ProductStockRecord:
        """Change the step size for future adjustments only."""
        record = self.get(product_id, for_update=True)
        step = self._validated_step(min_quantity, Unit.parse(record.unit))
        previous = normalize_quantity(record.min_quantity)
        record.min_quantity = step
        record.touch(actor_id)
        self.session.flush()
        logger.info(
            "min_quantity_changed",
            extra={
                "product_id": str(product_id),
                "previous_min_quantity": previous,
                "min_quantity": step,
            },
        )
        return record

    def set_threshold_override(
        self,
        product_id: UUID,
        low,
        critical,
        actor_id: UUID,
    ) -> ProductStockRecord:
        """
        Set or clear (both None) the product's alert threshold override.

        Raises:
            InvalidThresholdError: Negative values, critical above low, or
                only one of the two given.
        """
        record = self.get(product_id, for_update=True)
        if low is None and critical is None:
            record.low_threshold_override = None
            record.critical_threshold_override = None
        else:
            thresholds = Thresholds(low=low, critical=critical)
            record.low_threshold_override = thresholds.low
            record.critical_threshold_override = thresholds.critical
        record.touch(actor_id)
        self.session.flush()
        logger.info(
            "threshold_override_changed",
            extra={
                "product_id": str(product_id),
                "low_threshold": record.low_threshold_override,
                "critical_threshold": record.critical_threshold_override,
            },
        )
        return record

    @staticmethod
    def _validated_step(min_quantity, unit: Unit) -> Decimal:
        if min_quantity is None:
            return unit.default_min_quantity
        step = coerce_quantity(min_quantity)
        if step <= 0:
            raise NonPositiveQuantityError(step)
        if exceeds_scale(step):
            raise InvalidQuantityError(
                str(step),
                reason=f"finer than the stored scale of {QUANTITY_DECIMAL_PLACES} decimal places",
            )
        return normalize_quantity(step)
