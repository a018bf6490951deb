"""
Compliance calculator — expected vs. actual submission timing.

Definition
----------
For each event, `expected_at` comes from the organization's cadence rule and
the event's nominal week, never from when the event happened:

    expected_at = Sunday of week_of
                + days until the due weekday
                + offset_days (reviews only)
                at due_time in the organization timezone, as UTC

    delta_days  = (occurred_at - expected_at) / 1 day, truncated toward zero
    on time     = delta_days <= grace_days

A week the actor spent on vacation is not a due week (see `summarize`).

Public API
----------
CadenceRule.from_organization(org, grace_days, review=False) -> CadenceRule
evaluate(event, rule)                                         -> ComplianceRecord
summarize(records, expected_count=None)                       -> ComplianceResult
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional, Sequence, Union
from zoneinfo import ZoneInfo

from app.models.organization import Organization
from app.services.event_store import CheckinEvent, ReviewEvent
from app.services.metrics import ComplianceResult
from app.services.periods import WEEK_START_WEEKDAY, as_utc, week_start

TimedEvent = Union[CheckinEvent, ReviewEvent]

ONE_DAY = timedelta(days=1)


# ---------------------------------------------------------------------------
# Types
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class CadenceRule:
    due_weekday: int = 4          # date.weekday(): Monday=0, default Friday
    due_time: time = time(17, 0)
    timezone: str = "UTC"
    grace_days: int = 0
    offset_days: int = 0

    def __post_init__(self) -> None:
        # ZoneInfoNotFoundError for an unknown zone, before any event is evaluated
        ZoneInfo(self.timezone)

    @classmethod
    def from_organization(
        cls,
        org: Organization,
        grace_days: int = 0,
        review: bool = False,
    ) -> "CadenceRule":
        hours, minutes = (int(part) for part in org.checkin_due_time.split(":"))
        return cls(
            due_weekday=org.checkin_due_weekday,
            due_time=time(hours, minutes),
            timezone=org.timezone or "UTC",
            grace_days=grace_days,
            offset_days=org.review_due_offset_days if review else 0,
        )

    def expected_at(self, week_of: date) -> datetime:
        first_day = week_start(week_of)
        due_day = first_day + timedelta(
            days=(self.due_weekday - WEEK_START_WEEKDAY) % 7 + self.offset_days
        )
        local = datetime.combine(due_day, self.due_time, tzinfo=ZoneInfo(self.timezone))
        return local.astimezone(timezone.utc)


@dataclass(frozen=True)
class ComplianceRecord:
    event: TimedEvent
    expected_at: datetime
    occurred_at: datetime
    delta_days: int
    on_time: bool
    on_vacation: bool = False


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _round2(value: Decimal) -> float:
    return float(value.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def _mean(values: Sequence[int]) -> Optional[float]:
    if not values:
        return None
    return _round2(Decimal(sum(values)) / Decimal(len(values)))


# ---------------------------------------------------------------------------
# Public
# ---------------------------------------------------------------------------

def evaluate(event: TimedEvent, rule: CadenceRule) -> ComplianceRecord:
    if event.occurred_at is None:
        raise ValueError("Cannot evaluate compliance for an event without an occurrence time")
    expected = rule.expected_at(event.week_of)
    occurred = as_utc(event.occurred_at)
    delta_days = int((occurred - expected) / ONE_DAY)
    return ComplianceRecord(
        event=event,
        expected_at=expected,
        occurred_at=occurred,
        delta_days=delta_days,
        on_time=delta_days <= rule.grace_days,
        on_vacation=event.on_vacation,
    )


def summarize(
    records: Sequence[ComplianceRecord],
    expected_count: Optional[int] = None,
) -> ComplianceResult:
    """
    Roll records up into one ComplianceResult.

    Records from vacation weeks are not due: they are left out of
    `total_count` and `on_time_count` and reported in `vacation_count`, but
    their timing still feeds the averages. `expected_count`, when larger than
    the number of due records, adds the shortfall as missed (not on time)
    submissions. Zero-delta records are on time but feed neither average.
    """
    due = [r for r in records if not r.on_vacation]
    total = len(due)
    if expected_count is not None and expected_count > total:
        total = expected_count

    on_time = sum(1 for r in due if r.on_time)
    percentage = (
        _round2(Decimal(on_time) * 100 / Decimal(total)) if total else 0.0
    )

    return ComplianceResult(
        total_count=total,
        on_time_count=on_time,
        on_time_percentage=percentage,
        average_days_early=_mean([r.delta_days for r in records if r.delta_days < 0]),
        average_days_late=_mean([r.delta_days for r in records if r.delta_days > 0]),
        vacation_count=len(records) - len(due),
    )
