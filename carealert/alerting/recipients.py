"""Recipient resolution for alert notifications.

The dispatcher asks a ``RecipientResolver`` who should hear about an
alert. The default resolver reads the recipients configured in settings:
house owners are bound to their ``house_ids`` and recipients without any
(caregivers) receive every alert.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Protocol

from carealert.core.config import RecipientConfig
from carealert.core.models import Alert

logger = logging.getLogger(__name__)

CONTACT_FIELDS: dict[str, str] = {
    "email": "email",
    "sms": "phone",
    "push": "device_token",
    "webhook": "webhook_url",
}


@dataclass(frozen=True)
class Recipient:
    """A person (or endpoint) that notifications are delivered to."""

    user_id: str
    name: str = ""
    email: str | None = None
    phone: str | None = None
    device_token: str | None = None
    webhook_url: str | None = None
    notification_preferences: tuple[str, ...] | None = None
    house_ids: tuple[str, ...] = field(default_factory=tuple)

    @property
    def display_name(self) -> str:
        return self.name or self.email or self.user_id

    def contact_for(self, channel: str) -> str | None:
        """Return the contact field a channel delivers to, if present."""
        attr = CONTACT_FIELDS.get(channel)
        if attr is None:
            return None
        return getattr(self, attr) or None

    @classmethod
    def from_config(cls, config: RecipientConfig) -> Recipient:
        prefs = config.notification_preferences
        return cls(
            user_id=config.user_id,
            name=config.name,
            email=config.email,
            phone=config.phone,
            device_token=config.device_token,
            webhook_url=config.webhook_url,
            notification_preferences=tuple(prefs) if prefs is not None else None,
            house_ids=tuple(config.house_ids),
        )


class RecipientResolver(Protocol):
    """Looks up who should be notified about an alert."""

    async def resolve(self, alert: Alert) -> list[Recipient]: ...


class SettingsRecipientResolver:
    """Resolves recipients from the configured recipient list."""

    def __init__(self, recipients: Sequence[RecipientConfig | Recipient]) -> None:
        self._recipients = [r if isinstance(r, Recipient) else Recipient.from_config(r) for r in recipients]

    async def resolve(self, alert: Alert) -> list[Recipient]:
        matched = [r for r in self._recipients if not r.house_ids or alert.house_id in r.house_ids]
        logger.debug("Resolved %d recipient(s) for house %s", len(matched), alert.house_id)
        return matched
