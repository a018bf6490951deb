"""
Backfill orchestrator — recompute and store aggregates for a historical range.

start_backfill validates the range, records a backfill_runs row and returns at
once; the router schedules run_backfill as a background task. The job opens
its own session, walks organization scope, every team and every active user
across every bucketed metric and period, and upserts one bucket at a time.
Each bucket commits on its own; a bucket that fails for any reason is rolled
back, logged and counted, and the job moves on.

Public API
----------
validate_range(start, end, max_days=None)               -> DateRange
start_backfill(db, organization_id, start, end)          -> BackfillAck
run_backfill(run_id, session_factory=None, clock=utc_now) -> None
write_bucket(db, aggregator, query, window, user_ids, computed_at) -> bool
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Optional

from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.errors import InvalidDateRangeError, RangeTooLargeError
from app.core.logging import get_logger
from app.models.backfill_run import BackfillRun, BackfillStatus
from app.models.team import Team
from app.models.user import User
from app.services import aggregate_store
from app.services.aggregate_store import AggregateKey
from app.services.aggregator import MetricAggregator, MetricQuery, load_organization
from app.services.metrics import AGGREGATABLE_METRICS
from app.services.periods import DateRange, Period, Window, as_utc, utc_now
from app.services.scope import Scope

logger = get_logger(__name__)


@dataclass(frozen=True)
class BackfillAck:
    organization_id: str
    start: datetime
    end: datetime
    run_id: int
    status: str = BackfillStatus.initiated.value

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "from": self.start.isoformat(),
            "to": self.end.isoformat(),
            "organization_id": self.organization_id,
            "run_id": self.run_id,
        }


# ---------------------------------------------------------------------------
# Request side
# ---------------------------------------------------------------------------

def validate_range(start: datetime, end: datetime, max_days: Optional[int] = None) -> DateRange:
    max_days = settings.BACKFILL_MAX_DAYS if max_days is None else max_days
    start, end = as_utc(start), as_utc(end)
    if start >= end:
        raise InvalidDateRangeError(
            "'from' must be before 'to'.",
            **{"from": start.isoformat(), "to": end.isoformat()},
        )
    days = (end - start).days
    if days > max_days:
        raise RangeTooLargeError(max_days=max_days, received_days=days)
    return DateRange(start=start, end=end)


def start_backfill(
    db: Session,
    organization_id: str,
    start: datetime,
    end: datetime,
) -> BackfillAck:
    """Validate, record the run and return immediately. Does not compute."""
    load_organization(db, organization_id)
    date_range = validate_range(start, end)

    run = BackfillRun(
        organization_id=organization_id,
        range_start=date_range.start,
        range_end=date_range.end,
        status=BackfillStatus.initiated.value,
    )
    db.add(run)
    db.commit()
    db.refresh(run)

    logger.info(
        "backfill_initiated",
        organization_id=organization_id,
        run_id=run.id,
        range_start=date_range.start.isoformat(),
        range_end=date_range.end.isoformat(),
    )
    return BackfillAck(
        organization_id=organization_id,
        start=date_range.start,
        end=date_range.end,
        run_id=run.id,
    )


# ---------------------------------------------------------------------------
# Job side
# ---------------------------------------------------------------------------

def _targets(db: Session, organization_id: str) -> list[Scope]:
    """Organization scope, then every team, then every active user."""
    team_ids = [
        row.id for row in
        db.query(Team.id).filter(Team.organization_id == organization_id).order_by(Team.id).all()
    ]
    user_ids = [
        row.id for row in
        db.query(User.id)
        .filter(User.organization_id == organization_id, User.is_active.is_(True))
        .order_by(User.id)
        .all()
    ]
    return (
        [Scope.organization()]
        + [Scope.team(team_id) for team_id in team_ids]
        + [Scope.user(user_id) for user_id in user_ids]
    )


def write_bucket(
    db: Session,
    aggregator: MetricAggregator,
    query: MetricQuery,
    window: Window,
    user_ids: frozenset[str],
    computed_at: datetime,
    **context: Any,
) -> bool:
    """
    Compute one bucket live and upsert it. Returns False when anything about
    that bucket failed; the session is rolled back and the failure logged, so
    the caller can carry on with the next bucket.
    """
    try:
        result = aggregator.compute_window(query, window, user_ids)
        aggregate_store.upsert(
            db,
            AggregateKey.for_window(query, window),
            window,
            result.to_storage(),
            computed_at,
        )
        return True
    except Exception as exc:  # noqa: BLE001
        db.rollback()
        logger.warning(
            "aggregate_bucket_failed",
            organization_id=query.organization_id,
            scope=query.scope.kind.value,
            entity_id=query.scope.entity_id,
            metric_type=query.metric_type.value,
            period=query.period.value,
            window=window.label(),
            error=f"{type(exc).__name__}: {exc}",
            **context,
        )
        return False


def _backfill_scope(
    db: Session,
    aggregator: MetricAggregator,
    run: BackfillRun,
    date_range: DateRange,
    scope: Scope,
    clock: Callable[[], datetime],
) -> tuple[int, int]:
    written = failed = 0
    try:
        user_ids = aggregator.resolve_users(
            MetricQuery(run.organization_id, AGGREGATABLE_METRICS[0], date_range, scope=scope)
        )
    except Exception as exc:  # noqa: BLE001
        db.rollback()
        logger.warning(
            "backfill_scope_failed",
            run_id=run.id,
            organization_id=run.organization_id,
            scope=scope.kind.value,
            entity_id=scope.entity_id,
            error=str(exc),
        )
        return 0, 1

    for metric_type in AGGREGATABLE_METRICS:
        for period in Period:
            query = MetricQuery(
                organization_id=run.organization_id,
                metric_type=metric_type,
                date_range=date_range,
                scope=scope,
                period=period,
            )
            for window in query.windows():
                if write_bucket(db, aggregator, query, window, user_ids, clock(), run_id=run.id):
                    written += 1
                else:
                    failed += 1
    return written, failed


def run_backfill(
    run_id: int,
    session_factory: Optional[Callable[[], Session]] = None,
    clock: Callable[[], datetime] = utc_now,
) -> None:
    if session_factory is None:
        from app.db.base import SessionLocal
        session_factory = SessionLocal

    db = session_factory()
    try:
        run = db.get(BackfillRun, run_id)
        if run is None:
            logger.error("backfill_run_missing", run_id=run_id)
            return

        run.status = BackfillStatus.running.value
        run.started_at = clock()
        db.commit()

        date_range = DateRange(start=run.range_start, end=run.range_end)
        aggregator = MetricAggregator(db)
        written = failed = 0
        try:
            for scope in _targets(db, run.organization_id):
                w, f = _backfill_scope(db, aggregator, run, date_range, scope, clock)
                written += w
                failed += f
        except Exception:
            db.rollback()
            run.status = BackfillStatus.failed.value
            run.buckets_written = written
            run.buckets_failed = failed
            run.finished_at = clock()
            db.commit()
            logger.exception("backfill_failed", run_id=run_id, organization_id=run.organization_id)
            raise

        run.status = (
            BackfillStatus.completed.value if failed == 0
            else BackfillStatus.completed_with_errors.value
        )
        run.buckets_written = written
        run.buckets_failed = failed
        run.finished_at = clock()
        db.commit()
        logger.info(
            "backfill_finished",
            run_id=run_id,
            organization_id=run.organization_id,
            status=run.status,
            buckets_written=written,
            buckets_failed=failed,
        )
    finally:
        db.close()
