"""
AlertSettingsService -- the Alert Settings Store.

Holds the global low/critical thresholds and notification flags in a
single ``alert_settings`` row.  When no row exists yet, the configured
defaults are returned and nothing is written.
"""

from uuid import UUID

from sqlalchemy import select

from stock_ledger.domain.dtos import AlertSettings
from stock_ledger.domain.thresholds import Thresholds
from stock_ledger.logging_config import get_logger
from stock_ledger.models.alert_settings import GLOBAL_SCOPE, AlertSettingsModel
from stock_ledger.services.base import BaseService

logger = get_logger("services.alert_settings")


class AlertSettingsService(BaseService):
    def __init__(self, session, defaults: Thresholds | None = None):
        super().__init__(session)
        self._defaults = defaults or Thresholds.defaults()

    def _row(self, for_update: bool = False) -> AlertSettingsModel | None:
        stmt = select(AlertSettingsModel).where(AlertSettingsModel.scope == GLOBAL_SCOPE)
        if for_update:
            stmt = stmt.with_for_update()
        return self.session.execute(stmt).scalar_one_or_none()

    def get(self) -> AlertSettings:
        row = self._row()
        if row is None:
            return AlertSettings(
                low_threshold=self._defaults.low,
                critical_threshold=self._defaults.critical,
            )
        return AlertSettings.from_model(row)

    def update(
        self,
        actor_id: UUID,
        low_threshold=None,
        critical_threshold=None,
        email_notifications: bool | None = None,
        sms_notifications: bool | None = None,
    ) -> AlertSettings:
        """
        Update any subset of the settings.  Omitted values keep their
        current (or default) value.

        Raises:
            InvalidThresholdError: Resulting thresholds are invalid.
        """
        current = self.get()
        thresholds = Thresholds(
            low=current.low_threshold if low_threshold is None else low_threshold,
            critical=current.critical_threshold if critical_threshold is None else critical_threshold,
        )

        row = self._row(for_update=True)
        if row is None:
            row = AlertSettingsModel(
                scope=GLOBAL_SCOPE,
                low_threshold=thresholds.low,
                critical_threshold=thresholds.critical,
                email_notifications=bool(email_notifications),
                sms_notifications=bool(sms_notifications),
                created_by_id=actor_id,
            )
            self.session.add(row)
        else:
            row.low_threshold = thresholds.low
            row.critical_threshold = thresholds.critical
            if email_notifications is not None:
                row.email_notifications = email_notifications
            if sms_notifications is not None:
                row.sms_notifications = sms_notifications
            row.touch(actor_id)
        self.session.flush()

        settings = AlertSettings.from_model(row)
        logger.info(
            "alert_settings_updated",
            extra={
                "low_threshold": settings.low_threshold,
                "critical_threshold": settings.critical_threshold,
                "email_notifications": settings.email_notifications,
                "sms_notifications": settings.sms_notifications,
            },
        )
        return settings
