"""Deduplication filter for ingested alerts.

A new ``(device_id, type, occurred_at)`` is suppressed while an alert
for the same device and type is still open (``new`` or ``escalated``)
and occurred within the dedup window of the new event.

The check and the insert are a single ``INSERT ... SELECT ... WHERE NOT
EXISTS`` statement. On PostgreSQL it is preceded by a transaction-scoped
advisory lock on the ``(device_id, type)`` key so two concurrent
ingestions of the same event cannot both pass the check.
"""

from __future__ import annotations

import hashlib
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import cast, func, insert, literal, select
from sqlalchemy.ext.asyncio import AsyncSession

from carealert.core.errors import InternalError
from carealert.core.models import DEDUP_OPEN_STATES, Alert

logger = logging.getLogger(__name__)

DEFAULT_WINDOW_SECONDS = 60
MAX_INSERT_ATTEMPTS = 3


@dataclass
class DedupResult:
    """Outcome of a conditional insert.

    Attributes:
        alert: The newly inserted alert, or None when suppressed.
        duplicate_of: Id of the open alert that suppressed the event.
    """

    alert: Alert | None = None
    duplicate_of: uuid.UUID | None = None

    @property
    def deduplicated(self) -> bool:
        return self.alert is None


def generate_dedup_key(device_id: str, alert_type: str) -> str:
    """Generate the deduplication key for a device/type pair."""
    parts = f"{device_id}:{alert_type}"
    return hashlib.md5(parts.encode(), usedforsecurity=False).hexdigest()[:16]


def advisory_lock_id(device_id: str, alert_type: str) -> int:
    """Map a dedup key onto a signed 64-bit advisory lock id."""
    return int.from_bytes(bytes.fromhex(generate_dedup_key(device_id, alert_type)), "big", signed=True)


def _open_duplicates(device_id: str, alert_type: str, occurred_at: datetime, window: timedelta) -> Any:
    return (
        select(Alert.id)
        .where(
            Alert.device_id == device_id,
            Alert.type == alert_type,
            Alert.state.in_(DEDUP_OPEN_STATES),
            Alert.occurred_at >= occurred_at - window,
            Alert.occurred_at <= occurred_at + window,
        )
        .correlate(None)
    )


async def find_duplicate(
    session: AsyncSession,
    device_id: str,
    alert_type: str,
    occurred_at: datetime,
    window_seconds: int = DEFAULT_WINDOW_SECONDS,
) -> uuid.UUID | None:
    """Return the id of the earliest open alert that would suppress this event."""
    window = timedelta(seconds=window_seconds)
    result = await session.execute(
        _open_duplicates(device_id, alert_type, occurred_at, window).order_by(Alert.occurred_at.asc()).limit(1)
    )
    return result.scalar_one_or_none()


async def insert_unless_duplicate(
    session: AsyncSession,
    values: dict[str, Any],
    window_seconds: int = DEFAULT_WINDOW_SECONDS,
) -> DedupResult:
    """Insert an alert unless an open duplicate exists, atomically.

    Args:
        session: Session whose transaction the insert joins.
        values: Column values for the new alert; must include ``device_id``,
            ``type`` and ``occurred_at``. An ``id`` is generated if absent.
        window_seconds: Dedup window around ``occurred_at``.

    Returns:
        DedupResult with either the inserted alert or the duplicate's id.
    """
    values = dict(values)
    values.setdefault("id", uuid.uuid4())
    device_id: str = values["device_id"]
    alert_type: str = values["type"]
    occurred_at: datetime = values["occurred_at"]
    window = timedelta(seconds=window_seconds)

    is_postgres = session.get_bind().dialect.name == "postgresql"
    if is_postgres:
        await session.execute(select(func.pg_advisory_xact_lock(advisory_lock_id(device_id, alert_type))))

    columns = Alert.__table__.c
    names = list(values.keys())
    params = [literal(values[name], type_=columns[name].type) for name in names]
    if is_postgres:
        params = [cast(p, p.type) for p in params]
    source = select(*params).where(
        ~_open_duplicates(device_id, alert_type, occurred_at, window).exists()
    )

    for attempt in range(1, MAX_INSERT_ATTEMPTS + 1):
        await session.execute(insert(Alert).from_select(names, source))
        alert = await session.get(Alert, values["id"])
        if alert is not None:
            return DedupResult(alert=alert)

        duplicate_of = await find_duplicate(session, device_id, alert_type, occurred_at, window_seconds)
        if duplicate_of is not None:
            logger.info(
                "Suppressed duplicate %s from device %s (open alert %s)",
                alert_type,
                device_id,
                duplicate_of,
            )
            return DedupResult(duplicate_of=duplicate_of)

        # The blocking alert left the open states between the two statements.
        logger.debug("Dedup insert race on %s/%s, retrying (attempt %d)", device_id, alert_type, attempt)

    raise InternalError(f"Could not settle dedup insert for device {device_id} type {alert_type}")
