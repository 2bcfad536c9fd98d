"""Severity classification for ingested alerts.

The classifier is an ordered table of ``(name, predicate, severity)``
rules evaluated top to bottom; the first matching rule wins, so the
order of ``RULES`` is part of the contract. A manually supplied
severity always overrides the table.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from carealert.core.errors import ValidationError
from carealert.core.models import AlertSeverity, SeveritySource

logger = logging.getLogger(__name__)

QUIET_HOURS_START = 22
QUIET_HOURS_END = 6

# no_motion thresholds in seconds
LONG_INACTIVITY_SECONDS = 1800
INACTIVITY_SECONDS = 900


@dataclass(frozen=True)
class ClassificationInput:
    """Features the rule predicates look at."""

    type: str
    score: float = 0.0
    duration: float = 0.0
    in_quiet_hours: bool = False


@dataclass(frozen=True)
class SeverityRule:
    """One row of the classification cascade.

    ``result`` is either a fixed severity or a callable deriving one from
    the input (used where the outcome depends on quiet hours).
    """

    name: str
    predicate: Callable[[ClassificationInput], bool]
    result: AlertSeverity | Callable[[ClassificationInput], AlertSeverity]

    def evaluate(self, features: ClassificationInput) -> AlertSeverity:
        if callable(self.result):
            return self.result(features)
        return self.result


RULES: tuple[SeverityRule, ...] = (
    SeverityRule("smoke_alarm", lambda f: f.type == "smoke_alarm", AlertSeverity.CRITICAL),
    SeverityRule(
        "glass_break_confident",
        lambda f: f.type == "glass_break" and f.score >= 0.85,
        AlertSeverity.CRITICAL,
    ),
    SeverityRule("fall_confident", lambda f: f.type == "fall" and f.score >= 0.8, AlertSeverity.CRITICAL),
    SeverityRule("fall", lambda f: f.type == "fall", AlertSeverity.HIGH),
    SeverityRule("glass_break", lambda f: f.type == "glass_break", AlertSeverity.HIGH),
    SeverityRule(
        "no_motion_long",
        lambda f: f.type == "no_motion" and f.duration >= LONG_INACTIVITY_SECONDS,
        lambda f: AlertSeverity.HIGH if f.in_quiet_hours else AlertSeverity.MEDIUM,
    ),
    SeverityRule(
        "unusual_noise_loud",
        lambda f: f.type == "unusual_noise" and f.score >= 0.85,
        AlertSeverity.HIGH,
    ),
    SeverityRule(
        "unusual_noise",
        lambda f: f.type == "unusual_noise" and f.score >= 0.7,
        AlertSeverity.MEDIUM,
    ),
    SeverityRule(
        "no_motion",
        lambda f: f.type == "no_motion" and f.duration >= INACTIVITY_SECONDS,
        AlertSeverity.MEDIUM,
    ),
    SeverityRule(
        "door_open_quiet_hours",
        lambda f: f.type == "door_open" and f.in_quiet_hours,
        AlertSeverity.MEDIUM,
    ),
    SeverityRule("benign", lambda f: f.type in ("dog_bark", "door_open"), AlertSeverity.LOW),
)


def _score_fallback(score: float) -> AlertSeverity:
    if score >= 0.85:
        return AlertSeverity.HIGH
    if score >= 0.7:
        return AlertSeverity.MEDIUM
    return AlertSeverity.LOW


def matching_rule(
    type: str,
    score: float | None = None,
    duration: float | None = None,
    in_quiet_hours: bool = False,
) -> tuple[str, AlertSeverity]:
    """Return the name of the first rule that fires and its severity.

    Falls through to ``score_fallback`` when no typed rule matches.
    """
    features = ClassificationInput(
        type=type,
        score=score or 0.0,
        duration=duration or 0.0,
        in_quiet_hours=in_quiet_hours,
    )
    for rule in RULES:
        if rule.predicate(features):
            return rule.name, rule.evaluate(features)
    return "score_fallback", _score_fallback(features.score)


def classify(
    type: str,
    score: float | None = None,
    duration: float | None = None,
    in_quiet_hours: bool = False,
) -> AlertSeverity:
    """Classify an event's severity.

    Args:
        type: Event category (e.g. ``smoke_alarm``, ``fall``).
        score: Upstream inference confidence in [0, 1]; missing counts as 0.
        duration: Event duration in seconds (used by ``no_motion``).
        in_quiet_hours: Whether the event happened in local quiet hours.

    Returns:
        The classified severity.
    """
    return matching_rule(type, score, duration, in_quiet_hours)[1]


def resolve_severity(
    manual: str | None,
    type: str,
    score: float | None = None,
    duration: float | None = None,
    in_quiet_hours: bool = False,
) -> tuple[AlertSeverity, SeveritySource, str | None]:
    """Pick the final severity, honouring a manual override.

    Returns:
        Tuple of (severity, source, rule_name). ``rule_name`` is None for
        manual severities.

    Raises:
        ValidationError: If ``manual`` is set but not a valid severity.
    """
    if manual:
        try:
            return AlertSeverity(manual.lower()), SeveritySource.MANUAL, None
        except ValueError as exc:
            valid = ", ".join(s.value for s in AlertSeverity)
            raise ValidationError(f"severity must be one of: {valid}") from exc

    rule, severity = matching_rule(type, score, duration, in_quiet_hours)
    return severity, SeveritySource.CLASSIFIED, rule


def resolve_timezone(name: str | None, default: str = "UTC") -> ZoneInfo:
    """Look up an IANA timezone, raising ValidationError for unknown names."""
    try:
        return ZoneInfo(name or default)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ValidationError(f"unknown timezone: {name}") from exc


def is_quiet_hours(
    ts: datetime,
    tz: ZoneInfo,
    start: int = QUIET_HOURS_START,
    end: int = QUIET_HOURS_END,
) -> bool:
    """Whether ``ts`` falls in local quiet hours ``[start:00, end:00)``.

    The window wraps midnight when ``start > end``.
    """
    hour = ts.astimezone(tz).hour
    if start == end:
        return False
    if start > end:
        return hour >= start or hour < end
    return start <= hour < end
