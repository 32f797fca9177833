"""Retention policy evaluation over backup version metadata.

The evaluator is a pure function: it never touches the filesystem. Callers
scan backup directories into BackupVersion records, describe the rules in a
RetentionPolicy, and get back a RetentionReport saying which versions are
kept, which have expired and which push the set over its storage budget.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable, Dict, Hashable, Iterable, List, Optional, Sequence, Tuple

from hearth.core.durations import DurationError, Span, format_size, parse_span


class RetentionPolicyError(ValueError):
    """Raised for malformed retention rules."""
    pass


@dataclass(frozen=True)
class Timeframe:
    """Keep one version per ``interval`` for versions younger than ``frame``.

    ``frame=None`` means unlimited; ``interval=None`` keeps every version.
    """

    frame: Optional[Span]
    interval: Optional[Span]

    @property
    def sort_key(self) -> timedelta:
        return self.frame.approx() if self.frame else timedelta.max

    def __str__(self) -> str:
        return f"{self.frame or 'U'}:{self.interval or 'U'}"


def parse_timeframes(text: str) -> List[Timeframe]:
    """Parse a Duplicati retention string such as ``1W:1D,4W:1W,12M:1M``.

    Returns:
        Timeframes sorted from the shortest frame to unlimited

    Raises:
        RetentionPolicyError: on malformed items, intervals not shorter than
            their frame, or repeated frames
    """
    if text is None or not text.strip():
        return []

    timeframes: List[Timeframe] = []
    seen = set()
    for raw in text.split(","):
        item = raw.strip()
        if not item or ":" not in item:
            raise RetentionPolicyError(f"Invalid retention item {raw!r}: expected <frame>:<interval>")

        frame_text, interval_text = item.split(":", 1)
        try:
            frame = parse_span(frame_text)
            interval = parse_span(interval_text)
        except DurationError as e:
            raise RetentionPolicyError(str(e)) from e

        if frame is not None and interval is not None and interval.approx() >= frame.approx():
            raise RetentionPolicyError(
                f"Interval {interval} must be shorter than its timeframe {frame} in {item!r}"
            )

        key = str(frame) if frame else "U"
        if key in seen:
            raise RetentionPolicyError(f"Timeframe {key} appears more than once")
        seen.add(key)
        timeframes.append(Timeframe(frame=frame, interval=interval))

    return sorted(timeframes, key=lambda tf: tf.sort_key)


@dataclass
class RetentionPolicy:
    """Declarative retention rules for one backup set."""

    keep_last: int = 0
    keep_daily: int = 0
    keep_weekly: int = 0
    keep_monthly: int = 0
    keep_yearly: int = 0
    timeframes: List[Timeframe] = field(default_factory=list)
    max_age: Optional[timedelta] = None
    min_versions: int = 1
    storage_limit: Optional[int] = None

    def __post_init__(self):
        for name in ("keep_last", "keep_daily", "keep_weekly", "keep_monthly",
                     "keep_yearly", "min_versions"):
            if getattr(self, name) < 0:
                raise RetentionPolicyError(f"{name} must not be negative")
        if self.max_age is not None and self.max_age <= timedelta(0):
            raise RetentionPolicyError("max_age must be positive")
        if self.storage_limit is not None and self.storage_limit <= 0:
            raise RetentionPolicyError("storage_limit must be positive")

    @property
    def has_selection_rules(self) -> bool:
        return bool(
            self.keep_last or self.keep_daily or self.keep_weekly
            or self.keep_monthly or self.keep_yearly
            or self.timeframes or self.max_age is not None
        )

    def describe(self) -> str:
        """One-line human summary of the policy."""
        parts = []
        for label, value in (("last", self.keep_last), ("daily", self.keep_daily),
                             ("weekly", self.keep_weekly), ("monthly", self.keep_monthly),
                             ("yearly", self.keep_yearly)):
            if value:
                parts.append(f"keep {value} {label}")
        if self.timeframes:
            parts.append("timeframes " + ",".join(str(tf) for tf in self.timeframes))
        if self.max_age is not None:
            parts.append(f"max age {self.max_age.days}d")
        if self.min_versions:
            parts.append(f"min {self.min_versions} versions")
        if self.storage_limit:
            parts.append(f"limit {format_size(self.storage_limit)}")
        return ", ".join(parts) if parts else "keep everything"


@dataclass(frozen=True)
class BackupVersion:
    """One restorable version of a backup set."""

    name: str
    timestamp: datetime
    size: int = 0
    paths: Tuple[str, ...] = ()


class Verdict(str, Enum):
    KEEP = "keep"
    EXPIRE = "expire"
    OVER_BUDGET = "over_budget"


@dataclass
class VersionDecision:
    version: BackupVersion
    verdict: Verdict
    reasons: List[str] = field(default_factory=list)


@dataclass
class RetentionReport:
    """Outcome of evaluating a policy against a set of versions."""

    decisions: List[VersionDecision] = field(default_factory=list)
    kept_bytes: int = 0
    total_bytes: int = 0
    storage_limit: Optional[int] = None
    over_budget: bool = False
    budget_satisfiable: bool = True
    warnings: List[str] = field(default_factory=list)

    def _with(self, verdict: Verdict) -> List[VersionDecision]:
        return [d for d in self.decisions if d.verdict == verdict]

    @property
    def kept(self) -> List[VersionDecision]:
        return self._with(Verdict.KEEP)

    @property
    def expired(self) -> List[VersionDecision]:
        return self._with(Verdict.EXPIRE)

    @property
    def over_budget_versions(self) -> List[VersionDecision]:
        return self._with(Verdict.OVER_BUDGET)

    @property
    def compliant(self) -> bool:
        return not self.expired and not self.over_budget


def _bucket_keys() -> Dict[str, Callable[[datetime], Hashable]]:
    return {
        "daily": lambda dt: dt.date(),
        "weekly": lambda dt: dt.isocalendar()[:2],
        "monthly": lambda dt: (dt.year, dt.month),
        "yearly": lambda dt: dt.year,
    }


def _keep_buckets(versions: Sequence[BackupVersion], count: int,
                  key: Callable[[datetime], Hashable]) -> List[int]:
    """Indexes of the newest version in each of the newest ``count`` buckets."""
    kept = []
    last_key = None
    for index, version in enumerate(versions):
        if len(kept) >= count:
            break
        bucket = key(version.timestamp)
        if bucket != last_key:
            kept.append(index)
            last_key = bucket
    return kept


def _keep_timeframes(versions: Sequence[BackupVersion], timeframes: Sequence[Timeframe],
                     now: datetime) -> Dict[int, str]:
    """Apply Duplicati-style timeframes; versions are sorted newest first."""
    kept: Dict[int, str] = {}
    if not versions:
        return kept

    kept[0] = "most recent version"

    boundaries = [(tf, tf.frame.before(now) if tf.frame else None) for tf in timeframes]
    grouped: Dict[Timeframe, List[int]] = {}
    for index, version in enumerate(versions):
        for tf, boundary in boundaries:
            if boundary is None or version.timestamp >= boundary:
                grouped.setdefault(tf, []).append(index)
                break

    for tf, indexes in grouped.items():
        last_kept: Optional[datetime] = None
        # Walk oldest to newest within the frame
        for index in reversed(indexes):
            timestamp = versions[index].timestamp
            if tf.interval is None:
                kept.setdefault(index, f"timeframe {tf}")
                continue
            if last_kept is None or timestamp >= tf.interval.after(last_kept):
                kept.setdefault(index, f"timeframe {tf}")
                last_kept = timestamp

    return kept


def evaluate(
    versions: Iterable[BackupVersion],
    policy: RetentionPolicy,
    now: datetime,
    total_bytes: Optional[int] = None,
) -> RetentionReport:
    """Decide which versions a policy keeps, expires or flags as over budget.

    Args:
        versions: Versions to evaluate, in any order
        policy: Retention rules
        now: Reference time (must match the timestamps' tz-awareness)
        total_bytes: Actual on-disk size of the set when it is larger than the
            sum of version sizes (e.g. shared Duplicati block files)

    Returns:
        RetentionReport with one decision per version, newest first
    """
    ordered = sorted(versions, key=lambda v: v.timestamp, reverse=True)
    report = RetentionReport(storage_limit=policy.storage_limit)

    # Clamp future timestamps to "now" so clock skew never expires a fresh backup
    effective: List[BackupVersion] = []
    for version in ordered:
        if version.timestamp > now:
            report.warnings.append(
                f"{version.name} is timestamped in the future ({version.timestamp.isoformat()})"
            )
            version = BackupVersion(version.name, now, version.size, version.paths)
        effective.append(version)

    reasons: Dict[int, List[str]] = {}

    def keep(index: int, reason: str) -> None:
        reasons.setdefault(index, [])
        if reason not in reasons[index]:
            reasons[index].append(reason)

    if not policy.has_selection_rules:
        for index in range(len(effective)):
            keep(index, "no retention rules")
    else:
        for index in range(min(policy.keep_last, len(effective))):
            keep(index, f"last {policy.keep_last}")

        for label, key in _bucket_keys().items():
            count = getattr(policy, f"keep_{label}")
            if count:
                for index in _keep_buckets(effective, count, key):
                    keep(index, f"{label} #{count}")

        if policy.timeframes:
            for index, reason in _keep_timeframes(effective, policy.timeframes, now).items():
                keep(index, reason)

        if policy.max_age is not None:
            cutoff = now - policy.max_age
            for index, version in enumerate(effective):
                if version.timestamp >= cutoff:
                    keep(index, f"within {policy.max_age.days}d")

    for index in range(len(effective)):
        if len(reasons) >= policy.min_versions:
            break
        if index not in reasons:
            keep(index, "minimum version floor")

    for index, version in enumerate(ordered):
        if index in reasons:
            report.decisions.append(VersionDecision(version, Verdict.KEEP, reasons[index]))
        else:
            report.decisions.append(VersionDecision(version, Verdict.EXPIRE, ["outside retention"]))

    report.kept_bytes = sum(d.version.size for d in report.kept)
    report.total_bytes = total_bytes if total_bytes is not None else report.kept_bytes

    if policy.storage_limit is not None and report.total_bytes > policy.storage_limit:
        report.over_budget = True
        _mark_over_budget(report, policy)

    return report


def _mark_over_budget(report: RetentionReport, policy: RetentionPolicy) -> None:
    overflow = report.total_bytes - policy.storage_limit
    kept = report.kept
    # Newest min_versions are protected; walk the rest oldest first
    candidates = list(reversed(kept[policy.min_versions:]))

    freed = 0
    for decision in candidates:
        if freed >= overflow:
            break
        decision.verdict = Verdict.OVER_BUDGET
        decision.reasons.append(
            f"over storage limit {format_size(policy.storage_limit)}"
        )
        freed += decision.version.size

    report.budget_satisfiable = freed >= overflow
    if not report.budget_satisfiable:
        report.warnings.append(
            f"Storage limit {format_size(policy.storage_limit)} cannot be met without "
            f"dropping below {policy.min_versions} versions "
            f"(over by {format_size(overflow - freed)})"
        )


AGE_BUCKETS: List[Tuple[str, Optional[timedelta]]] = [
    ("<24h", timedelta(hours=24)),
    ("1-7d", timedelta(days=7)),
    ("7-30d", timedelta(days=30)),
    ("30-90d", timedelta(days=90)),
    (">90d", None),
]


def age_bucket(age: timedelta) -> str:
    """Return the label of the age bucket ``age`` falls into."""
    for label, upper in AGE_BUCKETS:
        if upper is None or age < upper:
            return label
    return AGE_BUCKETS[-1][0]


def bucket_counts(timestamps: Iterable[datetime], now: datetime) -> Dict[str, int]:
    """Count timestamps per age bucket, preserving bucket order."""
    counts = {label: 0 for label, _ in AGE_BUCKETS}
    for timestamp in timestamps:
        counts[age_bucket(max(now - timestamp, timedelta(0)))] += 1
    return counts
