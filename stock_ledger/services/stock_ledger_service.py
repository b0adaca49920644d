"""
StockLedgerService -- the public facade of the stock ledger.

Responsibility:
    Owns every transaction boundary.  For each write it acquires the
    in-process product locks, opens a write session, runs the flush-only
    services, commits, and then re-evaluates stock thresholds for the
    touched products.  Reads use separate read sessions and never see
    uncommitted state.

Architecture position:
    Ledger > Services -- outermost service.  Called by the CLI and by
    embedding applications.

Invariants enforced:
    PER_PRODUCT_SERIALIZATION -- ProductLockManager (sorted, with timeout)
        around a write session whose reads lock rows (FOR UPDATE on
        PostgreSQL, BEGIN IMMEDIATE on SQLite); the record's version
        counter catches anything that slips through.
    BATCH_ATOMICITY -- a batch is one transaction.

Failure modes:
    - Validation errors (AdjustmentError, BatchError, ProductError,
      QueryError, ThresholdError) surface unchanged; nothing was written.
    - ConcurrencyConflictError is retried up to ``max_conflict_retries``
      times with linear backoff, then surfaces with the attempt count.
    - Any other SQLAlchemy error is rolled back and wrapped in
      StorageFailureError.  Never retried.

Usage:
    service = StockLedgerService.from_settings(load_settings("ledger.yaml"))
    entry = service.apply_adjustment(
        product_id, "purchase", "2.50", "Weekly restock", actor_id,
        reference="PO-1001",
    )
"""

import time
from collections.abc import Callable, Iterable, Mapping
from typing import TypeVar
from uuid import UUID, uuid4

from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from stock_ledger.config import LedgerSettings
from stock_ledger.db.engine import (
    get_session_factory,
    get_write_session_factory,
    init_engine_from_url,
)
from stock_ledger.db.immutability import register_immutability_listeners
from stock_ledger.domain.causes import AdjustmentCause
from stock_ledger.domain.clock import Clock, SystemClock
from stock_ledger.domain.dtos import (
    AdjustmentRequest,
    AlertSettings,
    BatchItem,
    BatchItemFailure,
    HistoryPage,
    LedgerEntryRecord,
    MovementSummary,
    ProductStock,
    StockAlert,
    StockStatusReport,
)
from stock_ledger.domain.quantity_policy import coerce_quantity
from stock_ledger.domain.thresholds import StockStatus
from stock_ledger.exceptions import (
    BatchValidationFailedError,
    ConcurrencyConflictError,
    InvalidBatchItemError,
    StockLedgerError,
    StorageFailureError,
)
from stock_ledger.logging_config import LogContext, get_logger
from stock_ledger.selectors.history_selector import HistoryQuery, HistorySelector
from stock_ledger.selectors.stock_selector import StockSelector
from stock_ledger.services.adjustment_processor import AdjustmentProcessor
from stock_ledger.services.alert_settings_service import AlertSettingsService
from stock_ledger.services.ledger_auditor import LedgerAuditor, LedgerVerificationReport
from stock_ledger.services.lock_manager import ProductLockManager
from stock_ledger.services.product_registry import ProductRegistry

logger = get_logger("services.stock_ledger")

T = TypeVar("T")

AlertListener = Callable[[StockAlert], None]

INITIAL_STOCK_REASON = "Opening stock"

_CONFLICT_MARKERS = ("locked", "deadlock", "serializ", "could not obtain lock")


def _is_conflict(exc: OperationalError) -> bool:
    message = str(exc.orig if exc.orig is not None else exc).lower()
    return any(marker in message for marker in _CONFLICT_MARKERS)


class StockLedgerService:
    """Transactional facade over adjustments, history and thresholds."""

    def __init__(
        self,
        session_factory: sessionmaker[Session] | None = None,
        write_session_factory: sessionmaker[Session] | None = None,
        clock: Clock | None = None,
        settings: LedgerSettings | None = None,
        lock_manager: ProductLockManager | None = None,
    ):
        self._settings = settings or LedgerSettings.with_defaults()
        self._session_factory = session_factory or get_session_factory()
        self._write_session_factory = (
            write_session_factory
            or (get_write_session_factory() if session_factory is None else session_factory)
        )
        self._clock = clock or SystemClock()
        self._locks = lock_manager or ProductLockManager(self._settings.lock_timeout_seconds)
        self._alert_listeners: list[AlertListener] = []

    @classmethod
    def from_settings(cls, settings: LedgerSettings, clock: Clock | None = None) -> "StockLedgerService":
        """Initialize the engine and listeners from settings and build a service."""
        init_engine_from_url(
            settings.database_url,
            echo=settings.echo_sql,
            pool_size=settings.pool_size,
        )
        register_immutability_listeners()
        return cls(clock=clock, settings=settings)

    @property
    def settings(self) -> LedgerSettings:
        return self._settings

    # ------------------------------------------------------------------
    # Transaction plumbing
    # ------------------------------------------------------------------

    def _attempt_write(self, operation: str, product_ids: list[UUID], work: Callable[[Session], T]) -> T:
        session = self._write_session_factory()
        try:
            result = work(session)
            session.commit()
            return result
        except StaleDataError as exc:
            session.rollback()
            raise ConcurrencyConflictError(
                [str(p) for p in product_ids], reason=f"stale product version: {exc}"
            ) from exc
        except OperationalError as exc:
            session.rollback()
            if _is_conflict(exc):
                raise ConcurrencyConflictError(
                    [str(p) for p in product_ids], reason=str(exc.orig or exc)
                ) from exc
            raise StorageFailureError(operation, str(exc.orig or exc)) from exc
        except SQLAlchemyError as exc:
            session.rollback()
            raise StorageFailureError(operation, str(getattr(exc, "orig", None) or exc)) from exc
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def _write(self, operation: str, product_ids: Iterable[UUID], work: Callable[[Session], T]) -> T:
        """Run ``work`` in one write transaction under product locks, retrying conflicts."""
        ids = sorted(set(product_ids), key=str)
        attempt = 0
        while True:
            attempt += 1
            try:
                with self._locks.hold(ids):
                    return self._attempt_write(operation, ids, work)
            except ConcurrencyConflictError as exc:
                if attempt > self._settings.max_conflict_retries:
                    logger.error(
                        "concurrency_conflict_exhausted",
                        extra={"operation": operation, "attempts": attempt},
                    )
                    raise ConcurrencyConflictError(exc.product_ids, exc.reason, attempts=attempt) from exc
                backoff = self._settings.retry_backoff_seconds * attempt
                logger.warning(
                    "concurrency_conflict_retry",
                    extra={
                        "operation": operation,
                        "attempt": attempt,
                        "backoff_seconds": backoff,
                        "reason": exc.reason,
                    },
                )
                time.sleep(backoff)

    def _read(self, operation: str, work: Callable[[Session], T]) -> T:
        session = self._session_factory()
        try:
            return work(session)
        except SQLAlchemyError as exc:
            raise StorageFailureError(operation, str(getattr(exc, "orig", None) or exc)) from exc
        finally:
            session.rollback()
            session.close()

    # ------------------------------------------------------------------
    # Adjustments
    # ------------------------------------------------------------------

    def apply_adjustment(
        self,
        product_id: UUID,
        cause: AdjustmentCause | str,
        quantity,
        reason: str,
        actor_id: UUID,
        reference: str | None = None,
    ) -> LedgerEntryRecord:
        """
        Apply one stock adjustment atomically.

        Returns:
            The created ledger entry.

        Raises:
            ProductNotFoundError, AdjustmentError subclasses,
            ConcurrencyConflictError, StorageFailureError.
        """
        request = AdjustmentRequest(
            product_id=product_id,
            cause=cause,
            quantity=quantity,
            reason=reason,
            reference=reference,
        )
        with LogContext.bind(
            correlation_id=str(uuid4()),
            actor_id=str(actor_id),
            product_id=str(product_id),
        ):
            t0 = time.monotonic()
            try:
                entry = self._write(
                    "apply_adjustment",
                    [product_id],
                    lambda session: self._processor(session).apply(request, actor_id),
                )
            except StockLedgerError as exc:
                logger.warning(
                    "adjustment_rejected",
                    extra={
                        "error_code": exc.code,
                        "cause": str(getattr(cause, "value", cause)),
                        "duration_ms": round((time.monotonic() - t0) * 1000, 2),
                    },
                )
                raise

            logger.info(
                "adjustment_applied",
                extra={
                    "entry_id": str(entry.id),
                    "seq": entry.seq,
                    "cause": entry.cause.value,
                    "delta": entry.delta,
                    "previous_stock": entry.previous_stock,
                    "new_stock": entry.new_stock,
                    "duration_ms": round((time.monotonic() - t0) * 1000, 2),
                },
            )
        self._alerts_after_commit([product_id])
        return entry

    def apply_batch(
        self,
        items: list[BatchItem | dict],
        actor_id: UUID,
        shared_reason: str | None = None,
        shared_cause: AdjustmentCause | str | None = None,
        shared_reference: str | None = None,
    ) -> list[LedgerEntryRecord]:
        """
        Apply a batch of adjustments: all of them, or none.

        Raises:
            EmptyBatchError: No items.
            BatchValidationFailedError: Lists every failing item, including
                mapping items missing a field or carrying a malformed UUID.
            ConcurrencyConflictError, StorageFailureError.
        """
        batch_id = uuid4()

        with LogContext.bind(
            correlation_id=str(uuid4()),
            actor_id=str(actor_id),
            batch_id=str(batch_id),
        ):
            t0 = time.monotonic()
            logger.info("batch_started", extra={"item_count": len(items)})
            try:
                batch_items = self._batch_items(items)
                product_ids = {i.product_id for i in batch_items}
                entries = self._write(
                    "apply_batch",
                    product_ids,
                    lambda session: self._processor(session).apply_batch(
                        batch_items,
                        actor_id,
                        shared_reason=shared_reason,
                        shared_cause=shared_cause,
                        shared_reference=shared_reference,
                        batch_id=batch_id,
                    ),
                )
            except BatchValidationFailedError as exc:
                logger.warning(
                    "batch_rejected",
                    extra={
                        "item_count": exc.item_count,
                        "failed_indices": exc.indices,
                        "failure_codes": [f.error.code for f in exc.failures],
                    },
                )
                raise
            except StockLedgerError as exc:
                logger.warning("batch_rejected", extra={"error_code": exc.code})
                raise

            logger.info(
                "batch_applied",
                extra={
                    "entry_count": len(entries),
                    "product_count": len(product_ids),
                    "duration_ms": round((time.monotonic() - t0) * 1000, 2),
                },
            )
        self._alerts_after_commit(product_ids)
        return entries

    @staticmethod
    def _batch_items(items: list[BatchItem | dict]) -> list[BatchItem]:
        """Convert mapping items, failing with every malformed position at once."""
        batch_items: list[BatchItem] = []
        failures: list[BatchItemFailure] = []
        for index, item in enumerate(items):
            if isinstance(item, BatchItem):
                batch_items.append(item)
                continue
            try:
                batch_items.append(BatchItem.from_dict(item))
            except InvalidBatchItemError as exc:
                product_id = item.get("product_id") if isinstance(item, Mapping) else None
                failures.append(
                    BatchItemFailure(
                        index=index,
                        product_id=product_id if isinstance(product_id, UUID) else None,
                        error=exc,
                    )
                )
        if failures:
            raise BatchValidationFailedError(failures, item_count=len(items))
        return batch_items

    def _processor(self, session: Session) -> AdjustmentProcessor:
        return AdjustmentProcessor(session, self._clock)

    # ------------------------------------------------------------------
    # Products
    # ------------------------------------------------------------------

    def register_product(
        self,
        sku: str,
        name: str,
        unit,
        actor_id: UUID,
        min_quantity=None,
        initial_stock=0,
    ) -> ProductStock:
        """
        Create a product.  A non-zero ``initial_stock`` is written as an
        ``initial`` ledger entry in the same transaction.
        """

        opening = None if initial_stock is None else coerce_quantity(initial_stock)

        def work(session: Session) -> ProductStock:
            record = ProductRegistry(session).register(
                sku, name, unit, actor_id, min_quantity=min_quantity
            )
            if opening is not None and opening != 0:
                self._processor(session).apply(
                    AdjustmentRequest(
                        product_id=record.id,
                        cause=AdjustmentCause.INITIAL,
                        quantity=opening,
                        reason=INITIAL_STOCK_REASON,
                    ),
                    actor_id,
                )
            return ProductStock.from_model(record)

        with LogContext.bind(actor_id=str(actor_id)):
            product = self._write("register_product", [], work)
        if product.stock > 0:
            self._alerts_after_commit([product.id])
        return product

    def get_product(self, product_id: UUID) -> ProductStock:
        return self._read("get_product", lambda s: StockSelector(s).get_product(product_id))

    def get_product_by_sku(self, sku: str) -> ProductStock:
        return self._read("get_product_by_sku", lambda s: StockSelector(s).get_by_sku(sku))

    def list_products(self) -> list[ProductStock]:
        return self._read("list_products", lambda s: StockSelector(s).list_products())

    def set_min_quantity(self, product_id: UUID, min_quantity, actor_id: UUID) -> ProductStock:
        """Change a product's step size.  Existing entries are not revalidated."""
        with LogContext.bind(actor_id=str(actor_id), product_id=str(product_id)):
            return self._write(
                "set_min_quantity",
                [product_id],
                lambda s: ProductStock.from_model(
                    ProductRegistry(s).set_min_quantity(product_id, min_quantity, actor_id)
                ),
            )

    def set_threshold_override(self, product_id: UUID, low, critical, actor_id: UUID) -> ProductStock:
        """Set (or clear with None, None) a product's own alert thresholds."""
        with LogContext.bind(actor_id=str(actor_id), product_id=str(product_id)):
            return self._write(
                "set_threshold_override",
                [product_id],
                lambda s: ProductStock.from_model(
                    ProductRegistry(s).set_threshold_override(product_id, low, critical, actor_id)
                ),
            )

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------

    def query_history(self, query: HistoryQuery | None = None, **filters) -> HistoryPage:
        """Query ledger history with a HistoryQuery or its fields as keywords."""
        if query is None:
            query = HistoryQuery(**filters)
        elif filters:
            raise TypeError("Pass either a HistoryQuery or keyword filters, not both")
        return self._read(
            "query_history",
            lambda s: HistorySelector(s, self._settings.max_page_size).query(query),
        )

    def movement_summary(self, product_id: UUID) -> MovementSummary:
        return self._read(
            "movement_summary",
            lambda s: HistorySelector(s, self._settings.max_page_size).movement_summary(product_id),
        )

    def verify_ledger(self, product_id: UUID | None = None) -> LedgerVerificationReport:
        def work(session: Session) -> LedgerVerificationReport:
            auditor = LedgerAuditor(session)
            if product_id is None:
                return auditor.verify_all()
            return auditor.verify_product(product_id)

        return self._read("verify_ledger", work)

    # ------------------------------------------------------------------
    # Thresholds and alerts
    # ------------------------------------------------------------------

    def classify_stock(self, product_id: UUID) -> StockStatusReport:
        return self._read(
            "classify_stock",
            lambda s: StockSelector(s, self._settings.default_thresholds).status_report(product_id),
        )

    def list_alerts(self) -> list[StockAlert]:
        return self._read(
            "list_alerts",
            lambda s: StockSelector(s, self._settings.default_thresholds).alerts(),
        )

    def get_alert_settings(self) -> AlertSettings:
        return self._read(
            "get_alert_settings",
            lambda s: AlertSettingsService(s, self._settings.default_thresholds).get(),
        )

    def update_alert_settings(
        self,
        actor_id: UUID,
        low_threshold=None,
        critical_threshold=None,
        email_notifications: bool | None = None,
        sms_notifications: bool | None = None,
    ) -> AlertSettings:
        with LogContext.bind(actor_id=str(actor_id)):
            return self._write(
                "update_alert_settings",
                [],
                lambda s: AlertSettingsService(s, self._settings.default_thresholds).update(
                    actor_id,
                    low_threshold=low_threshold,
                    critical_threshold=critical_threshold,
                    email_notifications=email_notifications,
                    sms_notifications=sms_notifications,
                ),
            )

    def add_alert_listener(self, listener: AlertListener) -> None:
        """Register a callable that receives a StockAlert after each write."""
        self._alert_listeners.append(listener)

    def remove_alert_listener(self, listener: AlertListener) -> None:
        self._alert_listeners.remove(listener)

    def _alerts_after_commit(self, product_ids: Iterable[UUID]) -> list[StockAlert]:
        """Evaluate alerts for a committed write.  Never raises: the write stands."""
        product_ids = list(product_ids)
        try:
            return self._evaluate_alerts(product_ids)
        except StockLedgerError as exc:
            logger.error(
                "alert_evaluation_failed",
                exc_info=True,
                extra={
                    "error_code": exc.code,
                    "product_ids": [str(p) for p in product_ids],
                },
            )
            return []

    def _evaluate_alerts(self, product_ids: Iterable[UUID]) -> list[StockAlert]:
        """Classify touched products after commit and notify listeners."""
        reports = self._read(
            "evaluate_alerts",
            lambda s: StockSelector(s, self._settings.default_thresholds).status_reports(product_ids),
        )
        alerts = [StockAlert.from_report(r) for r in reports if r.status is not StockStatus.HEALTHY]
        for alert in alerts:
            logger.warning(
                "stock_alert_raised",
                extra={
                    "product_id": str(alert.product_id),
                    "sku": alert.sku,
                    "status": alert.status.value,
                    "severity": alert.severity,
                    "stock": alert.stock,
                    "low_threshold": alert.thresholds.low,
                    "critical_threshold": alert.thresholds.critical,
                },
            )
            for listener in list(self._alert_listeners):
                try:
                    listener(alert)
                except Exception:
                    logger.exception(
                        "alert_listener_failed",
                        extra={"product_id": str(alert.product_id)},
                    )
        return alerts
