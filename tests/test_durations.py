"""Tests for duration and size grammars."""
from datetime import datetime, timedelta

import pytest

from hearth.core.durations import (
    DurationError,
    Span,
    format_age,
    format_size,
    parse_go_duration,
    parse_prometheus_duration,
    parse_size,
    parse_span,
)


class TestGoDurations:
    """Durations as written in cloudflared and compose healthchecks."""

    def test_simple_units(self):
        assert parse_go_duration("30s") == timedelta(seconds=30)
        assert parse_go_duration("5m") == timedelta(minutes=5)
        assert parse_go_duration("2h") == timedelta(hours=2)
        assert parse_go_duration("250ms") == timedelta(milliseconds=250)

    def test_compound_and_fractional(self):
        assert parse_go_duration("1m30s") == timedelta(seconds=90)
        assert parse_go_duration("1.5h") == timedelta(minutes=90)

    def test_bare_zero(self):
        assert parse_go_duration("0") == timedelta(0)

    @pytest.mark.parametrize("value", ["", "30", "10d", "s30", "1m 30s", "abc"])
    def test_rejects_invalid(self, value):
        with pytest.raises(DurationError):
            parse_go_duration(value)


class TestPrometheusDurations:
    """Durations as accepted by --storage.tsdb.retention.time."""

    def test_days_and_weeks(self):
        assert parse_prometheus_duration("15d") == timedelta(days=15)
        assert parse_prometheus_duration("2w") == timedelta(weeks=2)
        assert parse_prometheus_duration("1y") == timedelta(days=365)

    def test_compound(self):
        assert parse_prometheus_duration("1d12h") == timedelta(hours=36)

    def test_fractions_not_allowed(self):
        """Prometheus durations are integer-only."""
        with pytest.raises(DurationError):
            parse_prometheus_duration("1.5d")


class TestSpans:
    """Duplicati retention spans."""

    def test_unlimited(self):
        assert parse_span("U") is None

    def test_case_distinguishes_minutes_and_months(self):
        assert parse_span("5m") == Span(5, "m")
        assert parse_span("5M") == Span(5, "M")
        assert parse_span("5m").approx() == timedelta(minutes=5)

    def test_calendar_months(self):
        """Months step by calendar, clamping to month end."""
        start = datetime(2024, 3, 31, 12, 0)
        assert Span(1, "M").before(start) == datetime(2024, 2, 29, 12, 0)
        assert Span(1, "Y").after(datetime(2024, 2, 29)) == datetime(2025, 2, 28)

    @pytest.mark.parametrize("value", ["", "7", "0D", "1X", "D1"])
    def test_rejects_invalid(self, value):
        with pytest.raises(DurationError):
            parse_span(value)

    def test_str(self):
        assert str(Span(12, "M")) == "12M"


class TestSizes:
    """Binary size parsing and du-style rendering."""

    def test_units_are_binary(self):
        assert parse_size("1K") == 1024
        assert parse_size("50GB") == 50 * 1024 ** 3
        assert parse_size("1.5MiB") == int(1.5 * 1024 ** 2)
        assert parse_size("512") == 512
        assert parse_size(2048) == 2048

    def test_rejects_unknown_unit(self):
        with pytest.raises(DurationError):
            parse_size("10 parsecs")

    def test_format_size(self):
        assert format_size(512) == "512B"
        assert format_size(1536) == "1.5K"
        assert format_size(50 * 1024 ** 3) == "50G"

    def test_format_age(self):
        assert format_age(timedelta(seconds=42)) == "42s"
        assert format_age(timedelta(minutes=5)) == "5m"
        assert format_age(timedelta(hours=5, minutes=12)) == "5h 12m"
        assert format_age(timedelta(days=3, hours=4)) == "3d 4h"
        assert format_age(timedelta(seconds=-5)) == "0s"
