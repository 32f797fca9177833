"""Tests for retention policy evaluation."""
from datetime import datetime, timedelta, timezone

import pytest

from hearth.core.durations import Span
from hearth.core.retention import (
    BackupVersion,
    RetentionPolicy,
    RetentionPolicyError,
    Timeframe,
    Verdict,
    age_bucket,
    bucket_counts,
    evaluate,
    parse_timeframes,
)

NOW = datetime(2024, 6, 15, 12, 0, tzinfo=timezone.utc)


def daily_versions(count, size=100, hour_offset=1):
    """One version per day, newest first."""
    return [
        BackupVersion(
            name=f"v{day}",
            timestamp=NOW - timedelta(days=day, hours=hour_offset),
            size=size,
        )
        for day in range(count)
    ]


def kept_names(report):
    return [d.version.name for d in report.kept]


class TestParseTimeframes:
    """Duplicati retention strings."""

    def test_sorted_shortest_first(self):
        frames = parse_timeframes("U:1M,1W:1D,4W:1W")
        assert [str(tf) for tf in frames] == ["1W:1D", "4W:1W", "U:1M"]

    def test_interval_unlimited_keeps_all(self):
        frames = parse_timeframes("7D:U")
        assert frames == [Timeframe(frame=Span(7, "D"), interval=None)]

    def test_empty(self):
        assert parse_timeframes("") == []
        assert parse_timeframes(None) == []

    @pytest.mark.parametrize("text", ["1W", "1W:1D,", "1D:1W", "1W:1W", "1W:1D,1W:1h", "1X:1D"])
    def test_invalid(self, text):
        with pytest.raises(RetentionPolicyError):
            parse_timeframes(text)


class TestRetentionPolicy:
    """Policy construction and description."""

    def test_negative_counts_rejected(self):
        with pytest.raises(RetentionPolicyError):
            RetentionPolicy(keep_daily=-1)

    def test_non_positive_limit_rejected(self):
        with pytest.raises(RetentionPolicyError):
            RetentionPolicy(storage_limit=0)

    def test_describe(self):
        policy = RetentionPolicy(keep_daily=7, max_age=timedelta(days=30), min_versions=3)
        assert policy.describe() == "keep 7 daily, max age 30d, min 3 versions"

    def test_describe_empty(self):
        assert RetentionPolicy(min_versions=0).describe() == "keep everything"


class TestEvaluate:
    """Keep/expire decisions."""

    def test_no_rules_keeps_everything(self):
        report = evaluate(daily_versions(5), RetentionPolicy(), NOW)
        assert len(report.kept) == 5
        assert report.compliant

    def test_keep_last(self):
        report = evaluate(daily_versions(10), RetentionPolicy(keep_last=3), NOW)
        assert kept_names(report) == ["v0", "v1", "v2"]
        assert len(report.expired) == 7
        assert not report.compliant

    def test_input_order_does_not_matter(self):
        versions = list(reversed(daily_versions(4)))
        report = evaluate(versions, RetentionPolicy(keep_last=1), NOW)
        assert kept_names(report) == ["v0"]
        assert report.decisions[0].version.name == "v0"

    def test_keep_daily_takes_newest_per_day(self):
        versions = [
            BackupVersion("morning", NOW - timedelta(hours=10)),
            BackupVersion("late", NOW - timedelta(hours=1)),
            BackupVersion("yesterday", NOW - timedelta(days=1)),
        ]
        report = evaluate(versions, RetentionPolicy(keep_daily=2), NOW)
        assert kept_names(report) == ["late", "yesterday"]

    def test_timeframe_unlimited_interval(self):
        report = evaluate(daily_versions(10), RetentionPolicy(timeframes=parse_timeframes("1W:U")), NOW)
        assert kept_names(report) == ["v0", "v1", "v2", "v3", "v4", "v5", "v6"]

    def test_timeframe_interval_thins_versions(self):
        versions = [
            BackupVersion(f"v{k}", NOW - timedelta(hours=12 * k + 1)) for k in range(6)
        ]
        report = evaluate(versions, RetentionPolicy(timeframes=parse_timeframes("1W:1D")), NOW)
        assert kept_names(report) == ["v0", "v1", "v3", "v5"]
        assert report.kept[0].reasons == ["most recent version"]

    def test_version_counts_only_in_smallest_frame(self):
        policy = RetentionPolicy(timeframes=parse_timeframes("1W:1D,4W:1W,U:1M"))
        report = evaluate(daily_versions(40), policy, NOW)

        assert kept_names(report) == [
            "v0", "v1", "v2", "v3", "v4", "v5", "v6", "v13", "v20", "v27", "v39",
        ]
        reasons = {d.version.name: d.reasons for d in report.kept}
        assert reasons["v3"] == ["timeframe 1W:1D"]
        assert reasons["v20"] == ["timeframe 4W:1W"]
        assert reasons["v39"] == ["timeframe U:1M"]

    def test_version_outside_every_frame_expires(self):
        versions = daily_versions(3) + [BackupVersion("ancient", NOW - timedelta(days=60))]
        policy = RetentionPolicy(timeframes=parse_timeframes("1W:1D,4W:1W"))

        report = evaluate(versions, policy, NOW)

        assert kept_names(report) == ["v0", "v1", "v2"]
        assert report.expired[0].version.name == "ancient"
        assert report.expired[0].reasons == ["outside retention"]

    def test_keep_monthly_and_yearly(self):
        versions = [
            BackupVersion(name, datetime(*date, 3, 0, tzinfo=timezone.utc))
            for name, date in [
                ("jun-10", (2024, 6, 10)),
                ("jun-01", (2024, 6, 1)),
                ("may-20", (2024, 5, 20)),
                ("may-02", (2024, 5, 2)),
                ("apr-15", (2024, 4, 15)),
                ("dec-31", (2023, 12, 31)),
                ("jun-2023", (2023, 6, 1)),
                ("mar-2022", (2022, 3, 1)),
            ]
        ]
        policy = RetentionPolicy(keep_monthly=3, keep_yearly=2)

        report = evaluate(versions, policy, NOW)

        assert kept_names(report) == ["jun-10", "may-20", "apr-15", "dec-31"]
        assert report.kept[0].reasons == ["monthly #3", "yearly #2"]
        assert report.kept[3].reasons == ["yearly #2"]

    def test_weekly_buckets_use_iso_year(self):
        now = datetime(2025, 1, 3, 12, 0, tzinfo=timezone.utc)
        versions = [
            BackupVersion("thu", datetime(2025, 1, 2, 3, 0, tzinfo=timezone.utc)),
            # Monday 2024-12-30 is in ISO week 2025-W01
            BackupVersion("mon", datetime(2024, 12, 30, 3, 0, tzinfo=timezone.utc)),
            BackupVersion("sun", datetime(2024, 12, 29, 3, 0, tzinfo=timezone.utc)),
        ]

        report = evaluate(versions, RetentionPolicy(keep_weekly=2), now)

        assert kept_names(report) == ["thu", "sun"]
        assert [d.version.name for d in report.expired] == ["mon"]

    def test_max_age(self):
        report = evaluate(daily_versions(10), RetentionPolicy(max_age=timedelta(days=5)), NOW)
        assert kept_names(report) == ["v0", "v1", "v2", "v3", "v4"]

    def test_rules_combine_as_union(self):
        policy = RetentionPolicy(keep_last=1, keep_weekly=2)
        versions = daily_versions(14)
        report = evaluate(versions, policy, NOW)
        names = kept_names(report)
        assert "v0" in names
        assert len(names) == 2
        assert "last 1" in report.kept[0].reasons
        assert "weekly #2" in report.kept[0].reasons

    def test_min_versions_floor(self):
        versions = [BackupVersion(f"v{d}", NOW - timedelta(days=d)) for d in (3, 4, 5)]
        policy = RetentionPolicy(max_age=timedelta(days=1), min_versions=2)
        report = evaluate(versions, policy, NOW)
        assert kept_names(report) == ["v3", "v4"]
        assert report.kept[0].reasons == ["minimum version floor"]

    def test_future_timestamp_is_kept_with_warning(self):
        versions = [
            BackupVersion("future", NOW + timedelta(days=2)),
            BackupVersion("old", NOW - timedelta(days=30)),
        ]
        report = evaluate(versions, RetentionPolicy(max_age=timedelta(days=7), min_versions=0), NOW)
        assert kept_names(report) == ["future"]
        assert "future" in report.warnings[0]

    def test_empty_input(self):
        report = evaluate([], RetentionPolicy(keep_last=3), NOW)
        assert report.decisions == []
        assert report.compliant


class TestStorageBudget:
    """Storage limits mark the oldest kept versions as over budget."""

    def test_within_budget(self):
        report = evaluate(daily_versions(5), RetentionPolicy(storage_limit=1000), NOW)
        assert not report.over_budget
        assert report.kept_bytes == 500

    def test_oldest_marked_first(self):
        policy = RetentionPolicy(storage_limit=500, min_versions=2)
        report = evaluate(daily_versions(10), policy, NOW)
        assert report.over_budget
        assert report.budget_satisfiable
        assert [d.version.name for d in report.over_budget_versions] == ["v5", "v6", "v7", "v8", "v9"]
        assert all(d.verdict == Verdict.OVER_BUDGET for d in report.over_budget_versions)
        assert not report.compliant

    def test_unsatisfiable_budget_protects_floor(self):
        policy = RetentionPolicy(storage_limit=150, min_versions=9)
        report = evaluate(daily_versions(10), policy, NOW)
        assert not report.budget_satisfiable
        assert len(report.over_budget_versions) == 1
        assert len(report.kept) == 9
        assert "cannot be met" in report.warnings[0]

    def test_total_bytes_override(self):
        """Shared block files count against the limit even with tiny versions."""
        report = evaluate(daily_versions(3, size=1), RetentionPolicy(storage_limit=100), NOW,
                          total_bytes=5000)
        assert report.total_bytes == 5000
        assert report.over_budget


class TestAgeBuckets:
    """Backup age histogram."""

    def test_age_bucket(self):
        assert age_bucket(timedelta(hours=3)) == "<24h"
        assert age_bucket(timedelta(days=3)) == "1-7d"
        assert age_bucket(timedelta(days=10)) == "7-30d"
        assert age_bucket(timedelta(days=60)) == "30-90d"
        assert age_bucket(timedelta(days=400)) == ">90d"

    def test_bucket_counts_keeps_order(self):
        counts = bucket_counts([NOW - timedelta(hours=1), NOW - timedelta(days=100)], NOW)
        assert list(counts) == ["<24h", "1-7d", "7-30d", "30-90d", ">90d"]
        assert counts["<24h"] == 1
        assert counts[">90d"] == 1
