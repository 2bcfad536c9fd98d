"""Event envelopes published on the realtime broadcast bus.

Every event is a ``{"type": ..., "payload": ...}`` mapping; alert events
carry the serialized alert as payload.
"""

from __future__ import annotations

from typing import Any

ALERT_NEW = "alert.new"
ALERT_ACKED = "alert.acked"
ALERT_ESCALATED = "alert.escalated"
ALERT_RESOLVED = "alert.resolved"

# Payload type posted to webhook recipients.
ALERT_CREATED = "alert.created"

HELLO = "hello"
HEARTBEAT = "heartbeat"


def envelope(event_type: str, payload: Any) -> dict[str, Any]:
    """Wrap a payload in the broadcast envelope."""
    return {"type": event_type, "payload": payload}


def hello_event() -> dict[str, Any]:
    """Greeting sent to an observer right after it connects."""
    return envelope(HELLO, "connected")


def heartbeat_event() -> dict[str, Any]:
    """Keep-alive sent after a period of client silence."""
    return {"type": HEARTBEAT}
