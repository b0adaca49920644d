"""
Module: stock_ledger.selectors.stock_selector
Responsibility: Read access to Product Stock Records and their threshold
    classification.  Effective thresholds resolve as product override, then
    the global alert settings row, then the configured defaults.
Architecture position: Ledger > Selectors.  Read-only.
"""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from stock_ledger.domain.dtos import AlertSettings, ProductStock, StockAlert, StockStatusReport
from stock_ledger.domain.thresholds import StockStatus, Thresholds, classify_with
from stock_ledger.exceptions import ProductNotFoundError
from stock_ledger.models.alert_settings import GLOBAL_SCOPE, AlertSettingsModel
from stock_ledger.models.product import ProductStockRecord
from stock_ledger.selectors.base import BaseSelector

THRESHOLD_SOURCE_PRODUCT = "product"
THRESHOLD_SOURCE_GLOBAL = "global"
THRESHOLD_SOURCE_DEFAULT = "default"


class StockSelector(BaseSelector):
    def __init__(self, session: Session, default_thresholds: Thresholds | None = None):
        super().__init__(session)
        self._defaults = default_thresholds or Thresholds.defaults()

    def get_product(self, product_id: UUID) -> ProductStock:
        record = self.session.get(ProductStockRecord, product_id)
        if record is None:
            raise ProductNotFoundError(str(product_id))
        return ProductStock.from_model(record)

    def get_by_sku(self, sku: str) -> ProductStock:
        record = self.session.execute(
            select(ProductStockRecord).where(ProductStockRecord.sku == sku)
        ).scalar_one_or_none()
        if record is None:
            raise ProductNotFoundError(sku)
        return ProductStock.from_model(record)

    def list_products(self) -> list[ProductStock]:
        rows = self.session.execute(
            select(ProductStockRecord).order_by(ProductStockRecord.sku)
        ).scalars()
        return [ProductStock.from_model(r) for r in rows]

    def global_thresholds(self) -> tuple[Thresholds, str]:
        row = self.session.execute(
            select(AlertSettingsModel).where(AlertSettingsModel.scope == GLOBAL_SCOPE)
        ).scalar_one_or_none()
        if row is None:
            return self._defaults, THRESHOLD_SOURCE_DEFAULT
        return AlertSettings.from_model(row).thresholds, THRESHOLD_SOURCE_GLOBAL

    def _report(
        self,
        product: ProductStock,
        global_thresholds: Thresholds,
        global_source: str,
    ) -> StockStatusReport:
        if product.low_threshold_override is not None and product.critical_threshold_override is not None:
            thresholds = Thresholds(
                low=product.low_threshold_override,
                critical=product.critical_threshold_override,
            )
            source = THRESHOLD_SOURCE_PRODUCT
        else:
            thresholds, source = global_thresholds, global_source

        return StockStatusReport(
            product_id=product.id,
            sku=product.sku,
            name=product.name,
            stock=product.stock,
            unit=product.unit,
            status=classify_with(product.stock, thresholds),
            thresholds=thresholds,
            threshold_source=source,
        )

    def status_report(self, product_id: UUID) -> StockStatusReport:
        product = self.get_product(product_id)
        return self._report(product, *self.global_thresholds())

    def status_reports(self, product_ids=None) -> list[StockStatusReport]:
        """Reports for the given products (all products when None)."""
        global_thresholds, source = self.global_thresholds()
        if product_ids is None:
            products = self.list_products()
        else:
            products = [self.get_product(pid) for pid in sorted(set(product_ids), key=str)]
        return [self._report(p, global_thresholds, source) for p in products]

    def alerts(self) -> list[StockAlert]:
        """All non-healthy products, most severe first, then by SKU."""
        reports = [r for r in self.status_reports() if r.status is not StockStatus.HEALTHY]
        reports.sort(key=lambda r: (-r.status.rank, r.sku))
        return [StockAlert.from_report(r) for r in reports]
