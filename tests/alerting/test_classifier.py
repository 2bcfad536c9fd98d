"""Tests for severity classification and quiet-hours detection."""

from __future__ import annotations

from datetime import UTC, datetime
from zoneinfo import ZoneInfo

import pytest

from carealert.alerting.classifier import (
    RULES,
    classify,
    is_quiet_hours,
    matching_rule,
    resolve_severity,
    resolve_timezone,
)
from carealert.core.errors import ValidationError
from carealert.core.models import AlertSeverity, SeveritySource


class TestRuleTable:
    """The first matching rule wins, in table order."""

    def test_rule_names_are_unique_and_ordered(self) -> None:
        names = [rule.name for rule in RULES]
        assert len(names) == len(set(names))
        assert names[0] == "smoke_alarm"
        assert names[-1] == "benign"

    def test_smoke_alarm_is_always_critical(self) -> None:
        assert classify("smoke_alarm", score=0.0) == AlertSeverity.CRITICAL

    @pytest.mark.parametrize(
        ("score", "expected"),
        [(0.95, AlertSeverity.CRITICAL), (0.85, AlertSeverity.CRITICAL), (0.84, AlertSeverity.HIGH), (None, AlertSeverity.HIGH)],
    )
    def test_glass_break(self, score: float | None, expected: AlertSeverity) -> None:
        assert classify("glass_break", score=score) == expected

    @pytest.mark.parametrize(
        ("score", "expected"),
        [(0.8, AlertSeverity.CRITICAL), (0.79, AlertSeverity.HIGH), (0.0, AlertSeverity.HIGH)],
    )
    def test_fall(self, score: float, expected: AlertSeverity) -> None:
        assert classify("fall", score=score) == expected

    def test_long_inactivity_depends_on_quiet_hours(self) -> None:
        assert classify("no_motion", duration=1800, in_quiet_hours=True) == AlertSeverity.HIGH
        assert classify("no_motion", duration=1800, in_quiet_hours=False) == AlertSeverity.MEDIUM
        assert matching_rule("no_motion", duration=2000)[0] == "no_motion_long"

    def test_short_inactivity(self) -> None:
        assert classify("no_motion", duration=900) == AlertSeverity.MEDIUM
        assert matching_rule("no_motion", duration=900)[0] == "no_motion"
        # Under both thresholds, falls through to the score fallback.
        assert matching_rule("no_motion", duration=600) == ("score_fallback", AlertSeverity.LOW)

    @pytest.mark.parametrize(
        ("score", "expected"),
        [(0.9, AlertSeverity.HIGH), (0.85, AlertSeverity.HIGH), (0.7, AlertSeverity.MEDIUM), (0.5, AlertSeverity.LOW)],
    )
    def test_unusual_noise(self, score: float, expected: AlertSeverity) -> None:
        assert classify("unusual_noise", score=score) == expected

    def test_door_open_in_quiet_hours_is_medium(self) -> None:
        assert classify("door_open", in_quiet_hours=True) == AlertSeverity.MEDIUM
        assert classify("door_open", in_quiet_hours=False) == AlertSeverity.LOW

    def test_dog_bark_is_low_even_with_high_score(self) -> None:
        assert classify("dog_bark", score=0.99) == AlertSeverity.LOW

    @pytest.mark.parametrize(
        ("score", "expected"),
        [(0.9, AlertSeverity.HIGH), (0.75, AlertSeverity.MEDIUM), (0.6, AlertSeverity.LOW), (None, AlertSeverity.LOW)],
    )
    def test_unknown_type_uses_score_fallback(self, score: float | None, expected: AlertSeverity) -> None:
        assert classify("water_leak", score=score) == expected


class TestResolveSeverity:
    def test_manual_severity_overrides_classifier(self) -> None:
        severity, source, rule = resolve_severity("critical", "dog_bark", score=0.1)
        assert severity == AlertSeverity.CRITICAL
        assert source == SeveritySource.MANUAL
        assert rule is None

    def test_manual_severity_is_case_insensitive(self) -> None:
        assert resolve_severity("HIGH", "door_open")[0] == AlertSeverity.HIGH

    def test_classified_severity_names_the_rule(self) -> None:
        severity, source, rule = resolve_severity(None, "fall", score=0.9)
        assert severity == AlertSeverity.CRITICAL
        assert source == SeveritySource.CLASSIFIED
        assert rule == "fall_confident"

    def test_invalid_manual_severity_is_rejected(self) -> None:
        with pytest.raises(ValidationError, match="severity must be one of"):
            resolve_severity("urgent", "fall")


class TestQuietHours:
    @pytest.mark.parametrize(
        ("hour", "expected"),
        [(21, False), (22, True), (23, True), (0, True), (5, True), (6, False), (12, False)],
    )
    def test_window_wraps_midnight(self, hour: int, expected: bool) -> None:
        ts = datetime(2026, 3, 10, hour, 30, tzinfo=UTC)
        assert is_quiet_hours(ts, ZoneInfo("UTC")) is expected

    def test_uses_house_local_time(self) -> None:
        # 03:00 UTC is 22:00 the previous evening in New York (EST).
        ts = datetime(2026, 1, 15, 3, 0, tzinfo=UTC)
        assert is_quiet_hours(ts, ZoneInfo("America/New_York")) is True
        # 20:00 UTC is 15:00 in New York.
        assert is_quiet_hours(datetime(2026, 1, 15, 20, 0, tzinfo=UTC), ZoneInfo("America/New_York")) is False

    def test_non_wrapping_window(self) -> None:
        ts = datetime(2026, 3, 10, 13, 0, tzinfo=UTC)
        assert is_quiet_hours(ts, ZoneInfo("UTC"), start=12, end=14) is True
        assert is_quiet_hours(ts, ZoneInfo("UTC"), start=14, end=16) is False

    def test_unknown_timezone_is_a_validation_error(self) -> None:
        with pytest.raises(ValidationError):
            resolve_timezone("Mars/Olympus_Mons")

    def test_missing_timezone_uses_default(self) -> None:
        assert resolve_timezone(None, "Europe/Paris") == ZoneInfo("Europe/Paris")
