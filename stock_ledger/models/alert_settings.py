"""
Module: stock_ledger.models.alert_settings
Responsibility: ORM persistence for the Alert Settings Store -- global
    low/critical stock thresholds and notification preferences.
Architecture position: Ledger > Models.  May import from db/base.py only.

Invariants enforced:
    - 0 <= critical_threshold <= low_threshold (DB check constraints, and
      validated by domain.thresholds.Thresholds before write).
    - One row per scope (unique).
"""

from decimal import Decimal

from sqlalchemy import Boolean, CheckConstraint, String
from sqlalchemy.orm import Mapped, mapped_column

from stock_ledger.db.base import TrackedBase

GLOBAL_SCOPE = "global"


class AlertSettingsModel(TrackedBase):
    """Alert thresholds and notification flags for one scope."""

    __tablename__ = "alert_settings"

    __table_args__ = (
        CheckConstraint("critical_threshold >= 0", name="ck_alert_critical_non_negative"),
        CheckConstraint(
            "critical_threshold <= low_threshold",
            name="ck_alert_critical_not_above_low",
        ),
    )

    scope: Mapped[str] = mapped_column(
        String(50), nullable=False, unique=True, default=GLOBAL_SCOPE
    )
    low_threshold: Mapped[Decimal] = mapped_column(nullable=False)
    critical_threshold: Mapped[Decimal] = mapped_column(nullable=False)
    email_notifications: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )
    sms_notifications: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )

    def __repr__(self) -> str:
        return (
            f"<AlertSettingsModel {self.scope} low={self.low_threshold} "
            f"critical={self.critical_threshold}>"
        )
