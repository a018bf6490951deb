"""
Event store accessor — read-only views over check-ins, reviews, shoutouts
and wins for one organization.

Rows are mapped to frozen event dataclasses so nothing downstream can touch
ORM state. All queries are ordered so repeated calls over an unchanged table
return events in the same order.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Iterable, Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from app.models.checkin import Checkin
from app.models.shoutout import Shoutout
from app.models.vacation import Vacation
from app.models.win import Win
from app.services.periods import as_utc, week_start


# ---------------------------------------------------------------------------
# Event types
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class CheckinEvent:
    organization_id: str
    user_id: str
    week_of: date
    occurred_at: Optional[datetime]   # submission instant
    mood: int
    on_vacation: bool = False


@dataclass(frozen=True)
class ReviewEvent:
    organization_id: str
    user_id: str                      # the reviewer
    subject_user_id: str              # whose check-in was reviewed
    week_of: date
    occurred_at: datetime             # review instant
    on_vacation: bool = False         # the reviewer was away that week


@dataclass(frozen=True)
class ShoutoutEvent:
    organization_id: str
    from_user_id: str
    to_user_id: str
    occurred_at: datetime
    is_public: bool

    @property
    def user_id(self) -> str:
        return self.from_user_id


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------

def _ids(user_ids: Iterable[str]) -> list[str]:
    return sorted(set(user_ids))


def vacation_weeks(
    db: Session,
    organization_id: str,
    user_ids: Iterable[str],
    week_from: date,
    week_to: date,
) -> set[tuple[str, date]]:
    """(user_id, week start) pairs marked as vacation around [week_from, week_to]."""
    ids = _ids(user_ids)
    if not ids:
        return set()
    rows = (
        db.query(Vacation.user_id, Vacation.week_of)
        .filter(
            Vacation.organization_id == organization_id,
            Vacation.user_id.in_(ids),
            # week_of may be any day of its week
            Vacation.week_of >= week_start(week_from),
            Vacation.week_of <= week_start(week_to) + timedelta(days=6),
        )
        .all()
    )
    return {(user_id, week_start(week_of)) for user_id, week_of in rows}


def completed_checkins(
    db: Session,
    organization_id: str,
    user_ids: Iterable[str],
    week_from: date,
    week_to: date,
) -> list[CheckinEvent]:
    """Completed check-ins by scope users whose week_of lies in [week_from, week_to]."""
    ids = _ids(user_ids)
    if not ids:
        return []
    rows = (
        db.query(Checkin)
        .filter(
            Checkin.organization_id == organization_id,
            Checkin.is_complete.is_(True),
            Checkin.user_id.in_(ids),
            Checkin.week_of >= week_from,
            Checkin.week_of <= week_to,
        )
        .order_by(Checkin.week_of, Checkin.user_id, Checkin.id)
        .all()
    )
    away = vacation_weeks(db, organization_id, ids, week_from, week_to)
    return [
        CheckinEvent(
            organization_id=r.organization_id,
            user_id=r.user_id,
            week_of=r.week_of,
            occurred_at=as_utc(r.submitted_at) if r.submitted_at else None,
            mood=r.overall_mood,
            on_vacation=(r.user_id, week_start(r.week_of)) in away,
        )
        for r in rows
    ]


def reviews(
    db: Session,
    organization_id: str,
    reviewer_ids: Iterable[str],
    week_from: date,
    week_to: date,
) -> list[ReviewEvent]:
    """Reviewed check-ins whose reviewer is in scope, by the check-in's week_of."""
    ids = _ids(reviewer_ids)
    if not ids:
        return []
    rows = (
        db.query(Checkin)
        .filter(
            Checkin.organization_id == organization_id,
            Checkin.is_complete.is_(True),
            Checkin.reviewed_at.is_not(None),
            Checkin.reviewed_by.in_(ids),
            Checkin.week_of >= week_from,
            Checkin.week_of <= week_to,
        )
        .order_by(Checkin.week_of, Checkin.reviewed_by, Checkin.id)
        .all()
    )
    away = vacation_weeks(db, organization_id, ids, week_from, week_to)
    return [
        ReviewEvent(
            organization_id=r.organization_id,
            user_id=r.reviewed_by,
            subject_user_id=r.user_id,
            week_of=r.week_of,
            occurred_at=as_utc(r.reviewed_at),
            on_vacation=(r.reviewed_by, week_start(r.week_of)) in away,
        )
        for r in rows
    ]


def shoutouts(
    db: Session,
    organization_id: str,
    user_ids: Iterable[str],
    start: datetime,
    end: datetime,
) -> list[ShoutoutEvent]:
    """Shoutouts sent or received by scope users with created_at in [start, end]."""
    ids = _ids(user_ids)
    if not ids:
        return []
    rows = (
        db.query(Shoutout)
        .filter(
            Shoutout.organization_id == organization_id,
            or_(Shoutout.from_user_id.in_(ids), Shoutout.to_user_id.in_(ids)),
            Shoutout.created_at >= start,
            Shoutout.created_at <= end,
        )
        .order_by(Shoutout.created_at, Shoutout.id)
        .all()
    )
    return [
        ShoutoutEvent(
            organization_id=r.organization_id,
            from_user_id=r.from_user_id,
            to_user_id=r.to_user_id,
            occurred_at=as_utc(r.created_at),
            is_public=r.is_public,
        )
        for r in rows
    ]


def count_wins(
    db: Session,
    organization_id: str,
    user_ids: Iterable[str],
    start: datetime,
    end: datetime,
) -> int:
    ids = _ids(user_ids)
    if not ids:
        return 0
    return (
        db.query(Win.id)
        .filter(
            Win.organization_id == organization_id,
            Win.user_id.in_(ids),
            Win.created_at >= start,
            Win.created_at <= end,
        )
        .count()
    )
