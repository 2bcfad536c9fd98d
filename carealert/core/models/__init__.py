"""SQLAlchemy models for the CareAlert platform.

Re-exports the alert models and enums so callers can use
``from carealert.core.models import X``.
"""

from carealert.core.models.alert import (
    DEDUP_OPEN_STATES,
    STATUS_FOR_STATE,
    Alert,
    AlertHistory,
    AlertSeverity,
    AlertState,
    AlertStatus,
    HistoryAction,
    SeveritySource,
)

__all__ = [
    "DEDUP_OPEN_STATES",
    "STATUS_FOR_STATE",
    "Alert",
    "AlertHistory",
    "AlertSeverity",
    "AlertState",
    "AlertStatus",
    "HistoryAction",
    "SeveritySource",
]
