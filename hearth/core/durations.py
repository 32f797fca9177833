"""Duration and size grammars used across the stack's configuration.

Three duration dialects show up in the stack:

- Go durations (``30s``, ``1m30s``) in cloudflared and compose healthchecks
- Prometheus durations (``15d``, ``2w``) for TSDB retention
- Duplicati retention spans (``1W``, ``12M``, ``U``) where ``m`` is minutes
  and ``M`` is months
"""
import calendar
import re
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional


class DurationError(ValueError):
    """Raised when a duration or size string cannot be parsed."""
    pass


_GO_UNITS = {
    "ns": timedelta(microseconds=0.001),
    "us": timedelta(microseconds=1),
    "µs": timedelta(microseconds=1),
    "ms": timedelta(milliseconds=1),
    "s": timedelta(seconds=1),
    "m": timedelta(minutes=1),
    "h": timedelta(hours=1),
}
_GO_TOKEN = re.compile(r"(\d+(?:\.\d+)?)(ns|us|µs|ms|s|m|h)")

_PROM_UNITS = {
    "ms": timedelta(milliseconds=1),
    "s": timedelta(seconds=1),
    "m": timedelta(minutes=1),
    "h": timedelta(hours=1),
    "d": timedelta(days=1),
    "w": timedelta(weeks=1),
    "y": timedelta(days=365),
}
_PROM_TOKEN = re.compile(r"(\d+)(ms|s|m|h|d|w|y)")


def _parse_tokens(text: str, pattern: re.Pattern, units: dict, dialect: str) -> timedelta:
    if text is None:
        raise DurationError(f"Empty {dialect} duration")
    value = str(text).strip()
    if value == "0":
        return timedelta(0)
    if not value:
        raise DurationError(f"Empty {dialect} duration")

    total = timedelta(0)
    pos = 0
    for match in pattern.finditer(value):
        if match.start() != pos:
            break
        total += float(match.group(1)) * units[match.group(2)]
        pos = match.end()

    if pos != len(value) or pos == 0:
        raise DurationError(f"Invalid {dialect} duration: {text!r}")
    return total


def parse_go_duration(text: str) -> timedelta:
    """Parse a Go-style duration such as ``30s``, ``1m30s`` or ``1.5h``."""
    return _parse_tokens(text, _GO_TOKEN, _GO_UNITS, "Go")


def parse_prometheus_duration(text: str) -> timedelta:
    """Parse a Prometheus duration such as ``15d``, ``2w`` or ``1d12h``."""
    return _parse_tokens(text, _PROM_TOKEN, _PROM_UNITS, "Prometheus")


_SPAN_SECONDS = {
    "s": 1,
    "m": 60,
    "h": 3600,
    "D": 86400,
    "W": 7 * 86400,
    "M": 30 * 86400,
    "Y": 365 * 86400,
}
_SPAN_PATTERN = re.compile(r"^(\d+)([smhDWMY])$")


def _shift_months(dt: datetime, months: int) -> datetime:
    month_index = dt.month - 1 + months
    year = dt.year + month_index // 12
    month = month_index % 12 + 1
    day = min(dt.day, calendar.monthrange(year, month)[1])
    return dt.replace(year=year, month=month, day=day)


@dataclass(frozen=True)
class Span:
    """A Duplicati retention span, e.g. ``7D`` or ``12M``."""

    count: int
    unit: str

    def approx(self) -> timedelta:
        """Approximate length, used for ordering and comparisons."""
        return timedelta(seconds=self.count * _SPAN_SECONDS[self.unit])

    def before(self, dt: datetime) -> datetime:
        """Return ``dt`` moved back by this span using calendar months/years."""
        if self.unit == "M":
            return _shift_months(dt, -self.count)
        if self.unit == "Y":
            return _shift_months(dt, -12 * self.count)
        return dt - self.approx()

    def after(self, dt: datetime) -> datetime:
        """Return ``dt`` moved forward by this span."""
        if self.unit == "M":
            return _shift_months(dt, self.count)
        if self.unit == "Y":
            return _shift_months(dt, 12 * self.count)
        return dt + self.approx()

    def __str__(self) -> str:
        return f"{self.count}{self.unit}"


def parse_span(text: str) -> Optional[Span]:
    """Parse a Duplicati span; ``U`` (unlimited) returns None."""
    value = (text or "").strip()
    if value == "U":
        return None
    match = _SPAN_PATTERN.match(value)
    if not match:
        raise DurationError(
            f"Invalid retention span {text!r}: expected <number><s|m|h|D|W|M|Y> or U"
        )
    count = int(match.group(1))
    if count <= 0:
        raise DurationError(f"Retention span must be positive: {text!r}")
    return Span(count=count, unit=match.group(2))


_SIZE_UNITS = {
    "": 1,
    "b": 1,
    "k": 1024,
    "kb": 1024,
    "kib": 1024,
    "m": 1024 ** 2,
    "mb": 1024 ** 2,
    "mib": 1024 ** 2,
    "g": 1024 ** 3,
    "gb": 1024 ** 3,
    "gib": 1024 ** 3,
    "t": 1024 ** 4,
    "tb": 1024 ** 4,
    "tib": 1024 ** 4,
}
_SIZE_PATTERN = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*([a-zA-Z]*)\s*$")


def parse_size(text) -> int:
    """Parse a storage size such as ``50GB`` or ``512M`` into bytes (binary units)."""
    if isinstance(text, int):
        return text
    match = _SIZE_PATTERN.match(str(text or ""))
    if not match:
        raise DurationError(f"Invalid size: {text!r}")
    unit = match.group(2).lower()
    if unit not in _SIZE_UNITS:
        raise DurationError(f"Unknown size unit in {text!r}")
    return int(float(match.group(1)) * _SIZE_UNITS[unit])


def format_size(size: int) -> str:
    """Render a byte count the way ``du -sh`` does (``1.2G``, ``512B``)."""
    value = float(size)
    for suffix in ("B", "K", "M", "G", "T"):
        if value < 1024 or suffix == "T":
            if suffix == "B":
                return f"{int(value)}B"
            return f"{value:.1f}{suffix}" if value < 10 else f"{value:.0f}{suffix}"
        value /= 1024
    return f"{value:.1f}T"


def format_age(delta: timedelta) -> str:
    """Render an age compactly: ``3d 4h``, ``5h 12m``, ``42s``."""
    seconds = int(max(delta.total_seconds(), 0))
    days, seconds = divmod(seconds, 86400)
    hours, seconds = divmod(seconds, 3600)
    minutes, seconds = divmod(seconds, 60)
    if days:
        return f"{days}d {hours}h"
    if hours:
        return f"{hours}h {minutes}m"
    if minutes:
        return f"{minutes}m"
    return f"{seconds}s"
