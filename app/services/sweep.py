"""
Incremental sweep — keep stored aggregates current as events arrive.

Each organization has a watermark. A sweep collects the check-ins, reviews,
shoutouts and vacations recorded at or after it, turns them into
(user, instant) activity, and rewrites every full-width bucket that activity
touches: organization scope, the user's team and the user, for every period
and every bucketed metric. Buckets are written with backfill's `write_bucket`,
so one failing bucket is rolled back and logged without stopping the rest.

The watermark moves to the newest event timestamp the sweep saw, never past
the sweep's own clock, and only when every bucket was written. Events sitting
exactly on the watermark are picked up again by the next sweep; rewriting a
bucket is idempotent.

Public API
----------
recompute_activity(db, organization_id, user_id, instant)  -> tuple[int, int]
sweep_organization(db, organization_id, clock=utc_now)      -> SweepResult
run_sweep(session_factory=None, clock=utc_now)              -> list[SweepResult]
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Iterable, Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.logging import get_logger
from app.models.aggregation_watermark import AggregationWatermark
from app.models.checkin import Checkin
from app.models.organization import Organization
from app.models.shoutout import Shoutout
from app.models.user import User
from app.models.vacation import Vacation
from app.services.aggregator import MetricAggregator, MetricQuery, load_organization
from app.services.backfill import write_bucket
from app.services.metrics import AGGREGATABLE_METRICS
from app.services.periods import (
    DateRange,
    Period,
    Window,
    advance,
    as_utc,
    floor,
    start_of_day,
    utc_now,
    week_start,
)
from app.services.scope import Scope

logger = get_logger(__name__)

# (user_id, instant the event is bucketed at)
Activity = tuple[str, datetime]


@dataclass(frozen=True)
class SweepResult:
    organization_id: str
    since: datetime
    watermark: datetime
    buckets_written: int = 0
    buckets_failed: int = 0


# ---------------------------------------------------------------------------
# Bucket rewriting
# ---------------------------------------------------------------------------

def _scopes_for(db: Session, organization_id: str, user_id: str) -> list[Scope]:
    scopes = [Scope.organization()]
    user = db.get(User, user_id)
    if user is None or user.organization_id != organization_id:
        return scopes
    if user.team_id:
        scopes.append(Scope.team(user.team_id))
    if user.is_active:
        scopes.append(Scope.user(user.id))
    return scopes


def _affected(
    db: Session,
    organization_id: str,
    activity: Iterable[Activity],
) -> dict[Scope, set[tuple[Period, Window]]]:
    """Full-width windows holding each activity instant, grouped by scope."""
    affected: dict[Scope, set[tuple[Period, Window]]] = {}
    for user_id, instant in activity:
        for scope in _scopes_for(db, organization_id, user_id):
            windows = affected.setdefault(scope, set())
            for period in Period:
                start = floor(period, instant)
                windows.add((period, Window(start=start, end=advance(period, start))))
    return affected


def _rewrite(
    db: Session,
    aggregator: MetricAggregator,
    organization_id: str,
    activity: Iterable[Activity],
    clock: Callable[[], datetime],
    **context: Any,
) -> tuple[int, int]:
    written = failed = 0
    affected = _affected(db, organization_id, activity)
    for scope in sorted(affected, key=lambda s: (s.kind.value, s.entity_id)):
        windows = sorted(affected[scope], key=lambda pw: (pw[0].value, pw[1].start))
        try:
            user_ids = aggregator.resolve_users(
                MetricQuery(
                    organization_id,
                    AGGREGATABLE_METRICS[0],
                    DateRange(windows[0][1].start, windows[0][1].end),
                    scope=scope,
                )
            )
        except Exception as exc:  # noqa: BLE001
            db.rollback()
            logger.warning(
                "sweep_scope_failed",
                organization_id=organization_id,
                scope=scope.kind.value,
                entity_id=scope.entity_id,
                error=str(exc),
                **context,
            )
            failed += 1
            continue

        for period, window in windows:
            for metric_type in AGGREGATABLE_METRICS:
                query = MetricQuery(
                    organization_id=organization_id,
                    metric_type=metric_type,
                    date_range=DateRange(window.start, window.end),
                    scope=scope,
                    period=period,
                )
                if write_bucket(db, aggregator, query, window, user_ids, clock(), **context):
                    written += 1
                else:
                    failed += 1
    return written, failed


def recompute_activity(
    db: Session,
    organization_id: str,
    user_id: str,
    instant: datetime,
    aggregator: Optional[MetricAggregator] = None,
    clock: Callable[[], datetime] = utc_now,
) -> tuple[int, int]:
    """
    Rewrite every stored bucket one user's activity at `instant` can change.
    Returns (written, failed).
    """
    load_organization(db, organization_id)
    aggregator = aggregator or MetricAggregator(db)
    written, failed = _rewrite(
        db, aggregator, organization_id, [(user_id, as_utc(instant))], clock,
        source="recompute",
    )
    logger.info(
        "activity_recomputed",
        organization_id=organization_id,
        user_id=user_id,
        instant=as_utc(instant).isoformat(),
        buckets_written=written,
        buckets_failed=failed,
    )
    return written, failed


# ---------------------------------------------------------------------------
# Change detection
# ---------------------------------------------------------------------------

def _changed_activity(
    db: Session,
    organization_id: str,
    since: datetime,
) -> tuple[set[Activity], Optional[datetime]]:
    """Activity recorded at or after `since`, and the newest timestamp seen."""
    activity: set[Activity] = set()
    stamps: list[datetime] = []

    def seen(*instants: Optional[datetime]) -> None:
        for instant in instants:
            if instant is not None and as_utc(instant) >= since:
                stamps.append(as_utc(instant))

    checkins = (
        db.query(Checkin)
        .filter(
            Checkin.organization_id == organization_id,
            or_(
                Checkin.created_at >= since,
                Checkin.submitted_at >= since,
                Checkin.reviewed_at >= since,
            ),
        )
        .order_by(Checkin.id)
        .all()
    )
    for row in checkins:
        instant = start_of_day(row.week_of)
        activity.add((row.user_id, instant))
        if row.reviewed_by:
            activity.add((row.reviewed_by, instant))
        seen(row.created_at, row.submitted_at, row.reviewed_at)

    shoutouts = (
        db.query(Shoutout)
        .filter(Shoutout.organization_id == organization_id, Shoutout.created_at >= since)
        .order_by(Shoutout.id)
        .all()
    )
    for row in shoutouts:
        sent_at = as_utc(row.created_at)
        activity.add((row.from_user_id, sent_at))
        activity.add((row.to_user_id, sent_at))
        seen(row.created_at)

    vacations = (
        db.query(Vacation)
        .filter(Vacation.organization_id == organization_id, Vacation.created_at >= since)
        .order_by(Vacation.id)
        .all()
    )
    for vacation in vacations:
        first = week_start(vacation.week_of)
        # submissions and reviews from that week change compliance
        affected = (
            db.query(Checkin.week_of)
            .filter(
                Checkin.organization_id == organization_id,
                or_(Checkin.user_id == vacation.user_id, Checkin.reviewed_by == vacation.user_id),
                Checkin.week_of >= first,
                Checkin.week_of <= first + timedelta(days=6),
            )
            .all()
        )
        for (week_of,) in affected:
            activity.add((vacation.user_id, start_of_day(week_of)))
        seen(vacation.created_at)

    return activity, max(stamps) if stamps else None


# ---------------------------------------------------------------------------
# Sweeps
# ---------------------------------------------------------------------------

def _watermark(db: Session, organization_id: str, now: datetime) -> AggregationWatermark:
    mark = db.get(AggregationWatermark, organization_id)
    if mark is None:
        mark = AggregationWatermark(
            organization_id=organization_id,
            last_processed_at=now - timedelta(days=settings.SWEEP_INITIAL_LOOKBACK_DAYS),
        )
        db.add(mark)
        db.commit()
        db.refresh(mark)
    return mark


def sweep_organization(
    db: Session,
    organization_id: str,
    clock: Callable[[], datetime] = utc_now,
    aggregator: Optional[MetricAggregator] = None,
) -> SweepResult:
    load_organization(db, organization_id)
    now = clock()
    since = as_utc(_watermark(db, organization_id, now).last_processed_at)

    activity, latest = _changed_activity(db, organization_id, since)
    written, failed = _rewrite(
        db, aggregator or MetricAggregator(db), organization_id, activity, clock,
        source="sweep",
    )

    watermark = since
    if failed == 0 and latest is not None:
        watermark = max(since, min(latest, now))
        mark = db.get(AggregationWatermark, organization_id)
        mark.last_processed_at = watermark
        db.commit()
    elif failed:
        logger.warning(
            "sweep_watermark_held",
            organization_id=organization_id,
            watermark=since.isoformat(),
            buckets_failed=failed,
        )

    logger.info(
        "sweep_organization_finished",
        organization_id=organization_id,
        since=since.isoformat(),
        watermark=watermark.isoformat(),
        activity=len(activity),
        buckets_written=written,
        buckets_failed=failed,
    )
    return SweepResult(
        organization_id=organization_id,
        since=since,
        watermark=watermark,
        buckets_written=written,
        buckets_failed=failed,
    )


def run_sweep(
    session_factory: Optional[Callable[[], Session]] = None,
    clock: Callable[[], datetime] = utc_now,
) -> list[SweepResult]:
    """Sweep every active organization. One organization failing does not stop the others."""
    if session_factory is None:
        from app.db.base import SessionLocal
        session_factory = SessionLocal

    db = session_factory()
    try:
        organization_ids = [
            row.id for row in
            db.query(Organization.id)
            .filter(Organization.is_active.is_(True))
            .order_by(Organization.id)
            .all()
        ]
        results: list[SweepResult] = []
        for organization_id in organization_ids:
            try:
                results.append(sweep_organization(db, organization_id, clock=clock))
            except Exception:  # noqa: BLE001
                db.rollback()
                logger.exception("sweep_organization_failed", organization_id=organization_id)
        logger.info(
            "sweep_finished",
            organizations=len(organization_ids),
            failed=len(organization_ids) - len(results),
        )
        return results
    finally:
        db.close()
