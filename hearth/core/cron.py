"""Cron schedule parsing for backup job descriptors."""
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import FrozenSet, List, Optional

from croniter import CroniterError, croniter


class CronError(ValueError):
    """Raised for malformed cron expressions."""
    pass


MACROS = {
    "@yearly": "0 0 1 1 *",
    "@annually": "0 0 1 1 *",
    "@monthly": "0 0 1 * *",
    "@weekly": "0 0 * * 0",
    "@daily": "0 0 * * *",
    "@midnight": "0 0 * * *",
    "@hourly": "0 * * * *",
}

# (low, high) per field, for expanding "*"
FIELD_RANGES = [(0, 59), (0, 23), (1, 31), (1, 12), (0, 6)]

# Longest gap croniter may search between two runs; covers Feb 29 schedules
MAX_YEARS_BETWEEN_RUNS = 5


def _expand(values: list, low: int, high: int) -> FrozenSet[int]:
    if "*" in values:
        return frozenset(range(low, high + 1))
    return frozenset(int(value) for value in values)


@dataclass(frozen=True)
class CronSchedule:
    """A five-field cron expression, evaluated with croniter.

    Day-of-month and day-of-week combine with OR when both are restricted.
    """

    expression: str
    minutes: FrozenSet[int]
    hours: FrozenSet[int]
    days: FrozenSet[int]
    months: FrozenSet[int]
    weekdays: FrozenSet[int]
    day_restricted: bool
    weekday_restricted: bool

    @classmethod
    def parse(cls, expression: str) -> "CronSchedule":
        """Parse ``expression`` or raise CronError."""
        if not expression or not expression.strip():
            raise CronError("Empty cron expression")

        text = expression.strip()
        text = MACROS.get(text.lower(), text)
        parts = text.split()
        # croniter also takes seconds and year fields; job schedules do not
        if len(parts) != 5:
            raise CronError(
                f"Cron expression must have 5 fields (minute hour day month weekday), got {len(parts)}: {expression!r}"
            )

        try:
            expanded = croniter(text).expanded
            fields = [_expand(values, low, high) for values, (low, high) in zip(expanded, FIELD_RANGES)]
        except (CroniterError, ValueError) as e:
            raise CronError(f"Invalid cron expression {expression!r}: {e}") from e

        return cls(
            expression=text,
            minutes=fields[0],
            hours=fields[1],
            days=fields[2],
            months=fields[3],
            weekdays=frozenset(0 if day == 7 else day for day in fields[4]),
            day_restricted=parts[2] != "*",
            weekday_restricted=parts[4] != "*",
        )

    def _iterator(self, start: datetime) -> croniter:
        return croniter(
            self.expression, start, max_years_between_matches=MAX_YEARS_BETWEEN_RUNS
        )

    def next_after(self, dt: datetime) -> datetime:
        """Return the first matching minute strictly after ``dt``."""
        try:
            return self._iterator(dt).get_next(datetime)
        except CroniterError as e:
            raise CronError(f"Cron expression never fires: {self.expression!r}") from e

    def upcoming(self, start: datetime, count: int = 8) -> List[datetime]:
        """Return the next ``count`` run times after ``start``."""
        iterator = self._iterator(start)
        try:
            return [iterator.get_next(datetime) for _ in range(count)]
        except CroniterError as e:
            raise CronError(f"Cron expression never fires: {self.expression!r}") from e

    def expected_interval(self, start: Optional[datetime] = None) -> timedelta:
        """Largest gap between consecutive runs over the next few runs."""
        runs = self.upcoming(start or datetime.now(), count=8)
        return max(later - earlier for earlier, later in zip(runs, runs[1:]))


def is_valid_cron(expression: str) -> bool:
    """Return True if ``expression`` parses as a five-field cron schedule."""
    try:
        CronSchedule.parse(expression)
    except CronError:
        return False
    return True
