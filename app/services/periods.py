"""
Period bucketizer — the single source of truth for period boundaries.

Every week/month/quarter/year boundary used anywhere in the engine (pulse
buckets, compliance due dates, overview week counts) is computed here.

Conventions
-----------
- All instants are timezone-aware UTC. Naive datetimes are taken as UTC.
- Weeks start on Sunday 00:00.
- Month / quarter / year buckets align to calendar boundaries.
- `buckets()` returns windows that are half-open `[start, end)`, except the
  last one, which is closed `[start, end]`, so the union of the windows is
  exactly the inclusive range `[range.start, range.end]`.

Public API
----------
buckets(period, date_range)        -> list[Window]
locate(windows, instant)           -> Window | None
floor(period, instant)             -> datetime   (aligned bucket start)
advance(period, aligned_start)     -> datetime   (next aligned bucket start)
week_start(day)                    -> date       (Sunday on or before day)
count_weeks(date_range)            -> int
"""
from __future__ import annotations

import bisect
import enum
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Optional, Sequence

from app.core.errors import InvalidDateRangeError


class Period(str, enum.Enum):
    day = "day"
    week = "week"
    month = "month"
    quarter = "quarter"
    year = "year"


# date.weekday() value of the first day of the week
WEEK_START_WEEKDAY = 6  # Sunday


# ---------------------------------------------------------------------------
# Instant helpers
# ---------------------------------------------------------------------------

def as_utc(instant: datetime) -> datetime:
    """Normalize to aware UTC. SQLite hands back naive datetimes."""
    if instant.tzinfo is None:
        return instant.replace(tzinfo=timezone.utc)
    return instant.astimezone(timezone.utc)


def utc_now() -> datetime:
    return datetime.now(tz=timezone.utc)


def start_of_day(day: date) -> datetime:
    return datetime.combine(day, time.min, tzinfo=timezone.utc)


def end_of_day(day: date) -> datetime:
    return datetime.combine(day, time.max, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Types
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class DateRange:
    """Inclusive range of instants."""
    start: datetime
    end: datetime

    def __post_init__(self) -> None:
        object.__setattr__(self, "start", as_utc(self.start))
        object.__setattr__(self, "end", as_utc(self.end))
        if self.start > self.end:
            raise InvalidDateRangeError(
                "'from' must not be after 'to'.",
                **{"from": self.start.isoformat(), "to": self.end.isoformat()},
            )

    @classmethod
    def trailing(cls, days: int, now: Optional[datetime] = None) -> "DateRange":
        end = as_utc(now) if now else utc_now()
        return cls(start=end - timedelta(days=days), end=end)

    @property
    def length(self) -> timedelta:
        return self.end - self.start

    def preceding(self) -> "DateRange":
        """The equal-length range ending just before this one starts."""
        end = self.start - timedelta(microseconds=1)
        return DateRange(start=end - self.length, end=end)


@dataclass(frozen=True)
class Window:
    start: datetime
    end: datetime
    closed: bool = False

    def contains(self, instant: datetime) -> bool:
        if instant < self.start:
            return False
        return instant <= self.end if self.closed else instant < self.end

    @property
    def is_degenerate(self) -> bool:
        return self.start == self.end

    def label(self) -> str:
        bracket = "]" if self.closed else ")"
        return f"[{self.start.isoformat()}, {self.end.isoformat()}{bracket}"


# ---------------------------------------------------------------------------
# Alignment
# ---------------------------------------------------------------------------

def week_start(day: date) -> date:
    """Sunday on or before `day`."""
    return day - timedelta(days=(day.weekday() - WEEK_START_WEEKDAY) % 7)


def floor(period: Period, instant: datetime) -> datetime:
    instant = as_utc(instant)
    day = instant.date()
    if period == Period.day:
        aligned = day
    elif period == Period.week:
        aligned = week_start(day)
    elif period == Period.month:
        aligned = day.replace(day=1)
    elif period == Period.quarter:
        aligned = date(day.year, 3 * ((day.month - 1) // 3) + 1, 1)
    elif period == Period.year:
        aligned = date(day.year, 1, 1)
    else:
        raise ValueError(f"Unknown period: {period!r}")
    return start_of_day(aligned)


def _add_months(day: date, months: int) -> date:
    index = day.year * 12 + (day.month - 1) + months
    return date(index // 12, index % 12 + 1, 1)


def advance(period: Period, aligned_start: datetime) -> datetime:
    day = aligned_start.date()
    if period == Period.day:
        nxt = day + timedelta(days=1)
    elif period == Period.week:
        nxt = day + timedelta(days=7)
    elif period == Period.month:
        nxt = _add_months(day, 1)
    elif period == Period.quarter:
        nxt = _add_months(day, 3)
    elif period == Period.year:
        nxt = date(day.year + 1, 1, 1)
    else:
        raise ValueError(f"Unknown period: {period!r}")
    return start_of_day(nxt)


# ---------------------------------------------------------------------------
# Bucketing
# ---------------------------------------------------------------------------

def buckets(period: Period, date_range: DateRange) -> list[Window]:
    """
    Ordered, non-overlapping windows covering exactly `date_range`.
    Only the first and last window can be narrower than a full period.
    """
    start, end = date_range.start, date_range.end
    if start == end:
        return [Window(start=start, end=end, closed=True)]

    windows: list[Window] = []
    cursor = start
    while True:
        boundary = advance(period, floor(period, cursor))
        if boundary >= end:
            windows.append(Window(start=cursor, end=end, closed=True))
            return windows
        windows.append(Window(start=cursor, end=boundary))
        cursor = boundary


def locate(windows: Sequence[Window], instant: datetime) -> Optional[Window]:
    """Find the window holding `instant` in an ordered `buckets()` result."""
    if not windows:
        return None
    instant = as_utc(instant)
    starts = [w.start for w in windows]
    idx = bisect.bisect_right(starts, instant) - 1
    if idx < 0:
        return None
    window = windows[idx]
    return window if window.contains(instant) else None


def count_weeks(date_range: DateRange) -> int:
    """Number of (possibly partial) Sunday-aligned weeks touched by the range."""
    return len(buckets(Period.week, date_range))
