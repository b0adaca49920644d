"""
LedgerAuditor -- replay verification of the stock ledger.

Responsibility:
    Replays every product's ledger entries in ``seq`` order and reports any
    entry or product that breaks a ledger invariant.  Read-only: it never
    repairs anything, it only reports.

Checks per product:
    - ENTRY_ARITHMETIC: new_stock == previous_stock + delta.
    - NON_NEGATIVE_STOCK: new_stock >= 0.
    - STEP_MULTIPLE: abs(delta) is a positive multiple of the captured
      min_quantity.
    - Chain continuity: the first entry starts from 0 and each
      previous_stock equals the prior entry's new_stock (reported under
      STOCK_MATCHES_LEDGER).
    - STOCK_MATCHES_LEDGER: the product's stock equals the last entry's
      new_stock (0 with no entries).
"""

from dataclasses import dataclass, field
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from stock_ledger.db.types import normalize_quantity
from stock_ledger.domain.causes import Polarity
from stock_ledger.exceptions import ProductNotFoundError
from stock_ledger.invariants import LedgerInvariant
from stock_ledger.logging_config import get_logger
from stock_ledger.models.ledger_entry import LedgerEntryModel
from stock_ledger.models.product import ProductStockRecord

logger = get_logger("services.ledger_auditor")


@dataclass(frozen=True)
class LedgerViolation:
    product_id: UUID
    invariant: LedgerInvariant
    detail: str
    seq: int | None = None


@dataclass
class LedgerVerificationReport:
    product_count: int = 0
    entry_count: int = 0
    violations: list[LedgerViolation] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.violations


class LedgerAuditor:
    """Replays ledger entries against stored stock."""

    def __init__(self, session: Session):
        self._session = session

    def verify_product(self, product_id: UUID) -> LedgerVerificationReport:
        product = self._session.get(ProductStockRecord, product_id)
        if product is None:
            raise ProductNotFoundError(str(product_id))
        report = LedgerVerificationReport()
        self._verify(product, report)
        self._log(report)
        return report

    def verify_all(self) -> LedgerVerificationReport:
        report = LedgerVerificationReport()
        products = self._session.execute(
            select(ProductStockRecord).order_by(ProductStockRecord.sku)
        ).scalars()
        for product in products:
            self._verify(product, report)
        self._log(report)
        return report

    def _verify(self, product: ProductStockRecord, report: LedgerVerificationReport) -> None:
        entries = self._session.execute(
            select(LedgerEntryModel)
            .where(LedgerEntryModel.product_id == product.id)
            .order_by(LedgerEntryModel.seq)
        ).scalars().all()

        report.product_count += 1
        report.entry_count += len(entries)

        def flag(invariant: LedgerInvariant, detail: str, seq: int | None = None) -> None:
            report.violations.append(
                LedgerViolation(product_id=product.id, invariant=invariant, detail=detail, seq=seq)
            )

        running = Decimal("0")
        for entry in entries:
            previous = normalize_quantity(entry.previous_stock)
            delta = normalize_quantity(entry.delta)
            new = normalize_quantity(entry.new_stock)
            step = normalize_quantity(entry.min_quantity)

            if previous != running:
                flag(
                    LedgerInvariant.STOCK_MATCHES_LEDGER,
                    f"previous_stock {previous} does not continue from {running}",
                    entry.seq,
                )
            if new != previous + delta:
                flag(
                    LedgerInvariant.ENTRY_ARITHMETIC,
                    f"{previous} + {delta} != {new}",
                    entry.seq,
                )
            if new < 0:
                flag(LedgerInvariant.NON_NEGATIVE_STOCK, f"new_stock {new} is negative", entry.seq)
            if delta == 0 or step <= 0 or abs(delta) % step != 0:
                flag(
                    LedgerInvariant.STEP_MULTIPLE,
                    f"delta {delta} is not a positive multiple of {step}",
                    entry.seq,
                )
            expected_sign = Polarity(entry.polarity).sign
            if delta * expected_sign <= 0:
                flag(
                    LedgerInvariant.ENTRY_ARITHMETIC,
                    f"delta {delta} disagrees with polarity {entry.polarity}",
                    entry.seq,
                )
            running = new

        stock = normalize_quantity(product.stock)
        if stock != running:
            flag(
                LedgerInvariant.STOCK_MATCHES_LEDGER,
                f"stock {stock} does not match ledger total {running}",
            )

    @staticmethod
    def _log(report: LedgerVerificationReport) -> None:
        if report.is_valid:
            logger.info(
                "ledger_verified",
                extra={
                    "product_count": report.product_count,
                    "entry_count": report.entry_count,
                },
            )
        else:
            logger.error(
                "ledger_verification_failed",
                extra={
                    "product_count": report.product_count,
                    "entry_count": report.entry_count,
                    "violation_count": len(report.violations),
                    "invariants": sorted({v.invariant.value for v in report.violations}),
                },
            )
