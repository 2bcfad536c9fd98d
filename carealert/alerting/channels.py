"""Notification channel senders.

Each sender delivers one alert to one recipient over one channel and
either returns a successful ``DeliveryResult`` or raises. In simulation
mode (the default outside production) senders only log the delivery.
"""

from __future__ import annotations

import asyncio
import logging
import smtplib
import ssl
from dataclasses import dataclass
from email.mime.text import MIMEText
from typing import Any

import httpx

from carealert.alerting.events import ALERT_CREATED, envelope
from carealert.alerting.recipients import Recipient
from carealert.core.config import Settings
from carealert.core.models import Alert

logger = logging.getLogger(__name__)


class DeliveryError(Exception):
    """A channel could not deliver a notification."""


@dataclass
class DeliveryResult:
    """Outcome of one notification attempt.

    Attributes:
        channel: Channel name (email, sms, push, webhook).
        recipient_id: User id of the recipient.
        success: Whether delivery (or simulated delivery) succeeded.
        simulated: Whether the sender only logged the delivery.
        error: Failure reason when ``success`` is False.
    """

    channel: str
    recipient_id: str
    success: bool
    simulated: bool = False
    error: str | None = None

    def to_meta(self) -> dict[str, Any]:
        return {
            "channel": self.channel,
            "recipient_id": self.recipient_id,
            "success": self.success,
            "simulated": self.simulated,
            "error": self.error,
        }


def alert_subject(alert: Alert) -> str:
    return f"[{str(alert.severity).upper()}] {alert.type.replace('_', ' ')} at house {alert.house_id}"


def alert_body(alert: Alert) -> str:
    lines = [
        f"Alert: {alert.type}",
        f"Severity: {alert.severity}",
        f"House: {alert.house_id}",
        f"Device: {alert.device_id}",
        f"Occurred at: {alert.occurred_at.isoformat()}",
    ]
    if alert.message:
        lines.append("")
        lines.append(alert.message)
    return "\n".join(lines)


class ChannelSender:
    """Base class for channel senders."""

    channel: str = ""

    def __init__(self, simulate: bool = True) -> None:
        self.simulate = simulate

    async def send(self, recipient: Recipient, alert: Alert) -> DeliveryResult:
        """Deliver ``alert`` to ``recipient``.

        Raises:
            DeliveryError: If the channel rejects or cannot reach the target.
        """
        contact = recipient.contact_for(self.channel)
        if self.simulate:
            logger.info("[simulated] %s notification for alert %s to %s", self.channel, alert.id, contact)
            return DeliveryResult(self.channel, recipient.user_id, success=True, simulated=True)

        await self._deliver(contact or "", recipient, alert)
        logger.info("%s notification for alert %s sent to %s", self.channel, alert.id, recipient.display_name)
        return DeliveryResult(self.channel, recipient.user_id, success=True)

    async def _deliver(self, contact: str, recipient: Recipient, alert: Alert) -> None:
        raise NotImplementedError


class EmailSender(ChannelSender):
    """Send alert emails via SMTP."""

    channel = "email"

    def __init__(
        self,
        smtp_host: str,
        smtp_port: int = 587,
        smtp_user: str = "",
        smtp_password: str = "",
        from_address: str = "",
        use_tls: bool = True,
        simulate: bool = True,
    ) -> None:
        super().__init__(simulate)
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port
        self.smtp_user = smtp_user
        self.smtp_password = smtp_password
        self.from_address = from_address or f"alerts@{smtp_host}"
        self.use_tls = use_tls

    def _send_sync(self, to_address: str, subject: str, body: str) -> None:
        msg = MIMEText(body, "plain")
        msg["Subject"] = subject
        msg["From"] = self.from_address
        msg["To"] = to_address

        try:
            if self.smtp_port == 465:
                context = ssl.create_default_context()
                with smtplib.SMTP_SSL(self.smtp_host, self.smtp_port, context=context) as server:
                    if self.smtp_user and self.smtp_password:
                        server.login(self.smtp_user, self.smtp_password)
                    server.sendmail(self.from_address, [to_address], msg.as_string())
            else:
                with smtplib.SMTP(self.smtp_host, self.smtp_port) as server:
                    if self.use_tls:
                        server.starttls()
                    if self.smtp_user and self.smtp_password:
                        server.login(self.smtp_user, self.smtp_password)
                    server.sendmail(self.from_address, [to_address], msg.as_string())
        except (smtplib.SMTPException, OSError) as e:
            raise DeliveryError(f"SMTP delivery failed: {e}") from e

    async def _deliver(self, contact: str, recipient: Recipient, alert: Alert) -> None:
        await asyncio.to_thread(self._send_sync, contact, alert_subject(alert), alert_body(alert))


class HttpGatewaySender(ChannelSender):
    """POST notifications to an HTTP gateway (SMS provider, push service, webhook)."""

    def __init__(
        self,
        gateway_url: str = "",
        timeout: float = 10.0,
        simulate: bool = True,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        super().__init__(simulate)
        self.gateway_url = gateway_url
        self.timeout = timeout
        self._transport = transport

    def _target(self, contact: str) -> str:
        return self.gateway_url

    def _payload(self, contact: str, recipient: Recipient, alert: Alert) -> dict[str, Any]:
        raise NotImplementedError

    async def _deliver(self, contact: str, recipient: Recipient, alert: Alert) -> None:
        url = self._target(contact)
        if not url:
            raise DeliveryError(f"{self.channel} gateway not configured")
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(url, json=self._payload(contact, recipient, alert))
                response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise DeliveryError(f"{self.channel} gateway returned {e.response.status_code}") from e
        except httpx.RequestError as e:
            raise DeliveryError(f"{self.channel} gateway unreachable: {e}") from e


class SmsSender(HttpGatewaySender):
    channel = "sms"

    def _payload(self, contact: str, recipient: Recipient, alert: Alert) -> dict[str, Any]:
        return {"to": contact, "message": alert_subject(alert)}


class PushSender(HttpGatewaySender):
    channel = "push"

    def _payload(self, contact: str, recipient: Recipient, alert: Alert) -> dict[str, Any]:
        return {
            "device_token": contact,
            "title": alert_subject(alert),
            "body": alert.message or alert_subject(alert),
            "data": {"alert_id": str(alert.id), "severity": str(alert.severity)},
        }


class WebhookSender(HttpGatewaySender):
    """Posts the ``alert.created`` envelope to the recipient's own URL."""

    channel = "webhook"

    def _target(self, contact: str) -> str:
        return contact

    def _payload(self, contact: str, recipient: Recipient, alert: Alert) -> dict[str, Any]:
        return envelope(ALERT_CREATED, alert.to_dict())


def build_senders(settings: Settings) -> dict[str, ChannelSender]:
    """Create one sender per supported channel from settings."""
    simulate = settings.simulate_notifications
    timeout = settings.notification_send_timeout_seconds
    return {
        "email": EmailSender(
            smtp_host=settings.smtp_host,
            smtp_port=settings.smtp_port,
            smtp_user=settings.smtp_user,
            smtp_password=settings.smtp_password.get_secret_value(),
            from_address=settings.smtp_from,
            use_tls=settings.smtp_use_tls,
            simulate=simulate,
        ),
        "sms": SmsSender(settings.sms_gateway_url, timeout=timeout, simulate=simulate),
        "push": PushSender(settings.push_gateway_url, timeout=timeout, simulate=simulate),
        "webhook": WebhookSender(timeout=timeout, simulate=simulate),
    }
