"""
Day calendar: pure UTC date utilities for per-day sync tracking.

A day-key is the canonical "YYYY-MM-DD" string for a calendar day in UTC.
Naive datetimes are taken to already be in UTC; aware datetimes are
converted before the day is read off.

No I/O here. The planner and synchronizer build on these helpers.
"""
import re
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Iterable, List, Optional, Tuple, Union

from devmetrics.errors import ValidationError

DAY_KEY_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")

DateLike = Union[date, datetime]


def _utc_date(value: DateLike) -> date:
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc)
        return value.date()
    return value


def day_key(value: DateLike) -> str:
    """Format a date or datetime as its UTC day-key."""
    return _utc_date(value).isoformat()


def parse_day_key(key: str) -> date:
    """
    Parse a "YYYY-MM-DD" day-key.

    Raises:
        ValidationError: if the string is not a real calendar date in that
            exact format (e.g. "2025-02-30", "2025-1-05", "20250105").
    """
    if not isinstance(key, str) or not DAY_KEY_RE.match(key):
        raise ValidationError("day_key", "expected YYYY-MM-DD", key)
    try:
        return date.fromisoformat(key)
    except ValueError as exc:
        raise ValidationError("day_key", f"invalid date ({exc})", key) from exc


def start_of_day(value: DateLike) -> datetime:
    return datetime.combine(_utc_date(value), time.min, tzinfo=timezone.utc)


def end_of_day(value: DateLike) -> datetime:
    return datetime.combine(_utc_date(value), time.max, tzinfo=timezone.utc)


@dataclass(frozen=True)
class DateWindow:
    """Inclusive [start, end] range of calendar days."""

    start: date
    end: date

    def __post_init__(self):
        if self.start > self.end:
            raise ValidationError(
                "date_window",
                f"start {day_key(self.start)} is after end {day_key(self.end)}",
            )

    @classmethod
    def of(cls, start: DateLike, end: DateLike) -> "DateWindow":
        return cls(_utc_date(start), _utc_date(end))

    @property
    def start_key(self) -> str:
        return day_key(self.start)

    @property
    def end_key(self) -> str:
        return day_key(self.end)

    @property
    def since(self) -> datetime:
        return start_of_day(self.start)

    @property
    def until(self) -> datetime:
        return end_of_day(self.end)

    def days(self) -> List[str]:
        return days_in_window(self.start, self.end)

    def contains(self, value: Optional[DateLike]) -> bool:
        """True if the timestamp's UTC day falls inside the window."""
        if value is None:
            return False
        return self.start <= _utc_date(value) <= self.end


@dataclass(frozen=True)
class DayBatch:
    """A maximal run of contiguous day-keys, queried upstream as one range."""

    start: date
    end: date

    @property
    def since(self) -> datetime:
        return start_of_day(self.start)

    @property
    def until(self) -> datetime:
        return end_of_day(self.end)

    def days(self) -> List[str]:
        return days_in_window(self.start, self.end)

    def __str__(self) -> str:
        return format_range(self.start, self.end)


def days_in_window(start: DateLike, end: DateLike) -> List[str]:
    """All day-keys from start to end, inclusive, ascending."""
    first, last = _utc_date(start), _utc_date(end)
    if first > last:
        raise ValidationError(
            "date_window", f"start {day_key(first)} is after end {day_key(last)}"
        )
    count = (last - first).days + 1
    return [day_key(first + timedelta(days=i)) for i in range(count)]


def batch_contiguous(day_keys: Iterable[str]) -> List[DayBatch]:
    """
    Collapse day-keys into contiguous batches.

    Input order does not matter and duplicates are ignored.

    >>> [str(b) for b in batch_contiguous(
    ...     ["2025-01-01", "2025-01-02", "2025-01-03", "2025-01-05", "2025-01-06"])]
    ['2025-01-01 to 2025-01-03', '2025-01-05 to 2025-01-06']
    """
    days = sorted({parse_day_key(k) for k in day_keys})
    if not days:
        return []

    batches: List[DayBatch] = []
    run_start = prev = days[0]
    for current in days[1:]:
        if (current - prev).days != 1:
            batches.append(DayBatch(run_start, prev))
            run_start = current
        prev = current
    batches.append(DayBatch(run_start, prev))
    return batches


def missing_days(window: DateWindow, known_complete: Iterable[str]) -> List[str]:
    """Days of the window not in known_complete, ascending."""
    complete = set(known_complete)
    return [d for d in window.days() if d not in complete]


def gaps_between(batches: List[DayBatch]) -> List[str]:
    """Day-keys lying strictly between consecutive batches."""
    gaps: List[str] = []
    for prev, curr in zip(batches, batches[1:]):
        gap_start = prev.end + timedelta(days=1)
        gap_end = curr.start - timedelta(days=1)
        if gap_start <= gap_end:
            gaps.extend(days_in_window(gap_start, gap_end))
    return gaps


def format_range(start: DateLike, end: DateLike) -> str:
    start_key, end_key = day_key(start), day_key(end)
    return start_key if start_key == end_key else f"{start_key} to {end_key}"


def format_days_with_gaps(day_keys: Iterable[str]) -> Tuple[str, List[str]]:
    """
    Human-readable coverage summary.

    Returns ("2025-01-01 to 2025-01-03, 2025-01-05", ["2025-01-04"]), or
    ("none", []) when there are no days.
    """
    batches = batch_contiguous(day_keys)
    if not batches:
        return "none", []
    return ", ".join(str(b) for b in batches), gaps_between(batches)
