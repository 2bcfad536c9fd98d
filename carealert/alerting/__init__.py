"""Alert processing engine.

Re-exports the classifier, state machine, ledger, broadcast bus,
dispatcher and the ``AlertService`` facade.
"""

from carealert.alerting.broadcast import BroadcastRegistry, ConnectionRegistry
from carealert.alerting.classifier import RULES, classify, is_quiet_hours, matching_rule, resolve_severity
from carealert.alerting.dedup import DedupResult, insert_unless_duplicate
from carealert.alerting.dispatcher import NotificationDispatcher, NotificationQueue, channels_for
from carealert.alerting.history import HistoryLedger, ReplayedAlert, replay
from carealert.alerting.recipients import Recipient, RecipientResolver, SettingsRecipientResolver
from carealert.alerting.service import AlertService
from carealert.alerting.state_machine import TRANSITIONS, Transition, available_actions, validate_transition
from carealert.alerting.stats import AlertStats

__all__ = [
    # Classification
    "RULES",
    "classify",
    "is_quiet_hours",
    "matching_rule",
    "resolve_severity",
    # Lifecycle
    "AlertService",
    "DedupResult",
    "HistoryLedger",
    "ReplayedAlert",
    "TRANSITIONS",
    "Transition",
    "available_actions",
    "insert_unless_duplicate",
    "replay",
    "validate_transition",
    # Fan-out
    "BroadcastRegistry",
    "ConnectionRegistry",
    "NotificationDispatcher",
    "NotificationQueue",
    "Recipient",
    "RecipientResolver",
    "SettingsRecipientResolver",
    "channels_for",
    # Statistics
    "AlertStats",
]
