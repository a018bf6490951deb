"""
Analytics router — per-organization dashboards and the backfill trigger.

GET  /organizations/{organization_id}/analytics/pulse
GET  /organizations/{organization_id}/analytics/shoutouts
GET  /organizations/{organization_id}/analytics/leaderboard
GET  /organizations/{organization_id}/analytics/compliance/checkins
GET  /organizations/{organization_id}/analytics/compliance/reviews
GET  /organizations/{organization_id}/analytics/overview
POST /organizations/{organization_id}/analytics/backfill
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Any, Callable, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query, status
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.errors import InvalidDateRangeError
from app.db.base import get_db, get_session_factory
from app.schemas.analytics import (
    BackfillRequest,
    BackfillResponse,
    ComplianceResponse,
    LeaderboardResponse,
    OverviewResponse,
    PulseResponse,
    ShoutoutResponse,
)
from app.schemas.common import ErrorResponse
from app.services.aggregator import MetricQuery
from app.services.analytics_engine import AnalyticsEngine, ReadResult
from app.services.backfill import run_backfill, start_backfill
from app.services.metrics import (
    LeaderboardMetric,
    MetricType,
    ShoutoutDirection,
    ShoutoutVisibility,
)
from app.services.periods import DateRange, Period, as_utc, end_of_day, start_of_day, utc_now
from app.services.scope import Scope, ScopeType

router = APIRouter(prefix="/organizations/{organization_id}/analytics", tags=["analytics"])

_ERRORS = {
    400: {"model": ErrorResponse, "description": "INVALID_SCOPE or INVALID_DATE_RANGE."},
    404: {"model": ErrorResponse, "description": "ORGANIZATION_NOT_FOUND."},
    500: {"model": ErrorResponse, "description": "COMPUTATION_FAILURE."},
}


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------

def get_engine(db: Session = Depends(get_db)) -> AnalyticsEngine:
    return AnalyticsEngine(db)


def parse_instant(value: str, field: str, end: bool = False) -> datetime:
    """ISO date (whole day) or ISO datetime. Naive datetimes are UTC."""
    raw = value.strip()
    try:
        if len(raw) == 10:
            day = date.fromisoformat(raw)
            return end_of_day(day) if end else start_of_day(day)
        return as_utc(datetime.fromisoformat(raw.replace("Z", "+00:00")))
    except ValueError:
        raise InvalidDateRangeError(
            f"'{field}' is not a valid ISO-8601 date or datetime.", **{field: value}
        ) from None


@dataclass(frozen=True)
class CommonParams:
    scope: Scope
    date_range: DateRange
    period: Period
    include_inactive: bool


def common_params(
    scope: str = Query(
        default=ScopeType.organization.value,
        description='"organization", "team" or "user".',
    ),
    id: Optional[str] = Query(
        default=None, description="Team or user id. Required unless scope is organization."
    ),
    period: Period = Query(default=Period.week),
    from_: Optional[str] = Query(
        default=None, alias="from",
        description="ISO-8601 date or datetime. Defaults to `to` minus 30 days.",
        examples=["2024-01-01"],
    ),
    to: Optional[str] = Query(
        default=None, description="ISO-8601 date or datetime. Defaults to now (UTC).",
    ),
    include_inactive: bool = Query(
        default=False, description="Include deactivated users in organization scope."
    ),
) -> CommonParams:
    parsed_scope = Scope.parse(scope, id)
    end = parse_instant(to, "to", end=True) if to else utc_now()
    start = (
        parse_instant(from_, "from")
        if from_ else end - timedelta(days=settings.DEFAULT_RANGE_DAYS)
    )
    return CommonParams(
        scope=parsed_scope,
        date_range=DateRange(start=start, end=end),
        period=period,
        include_inactive=include_inactive,
    )


# ---------------------------------------------------------------------------
# Serialization helpers
# ---------------------------------------------------------------------------

def _query(
    organization_id: str,
    metric_type: MetricType,
    params: CommonParams,
    **options: Any,
) -> MetricQuery:
    return MetricQuery(
        organization_id=organization_id,
        metric_type=metric_type,
        date_range=params.date_range,
        scope=params.scope,
        period=params.period,
        include_inactive=params.include_inactive,
        **options,
    )


def _envelope(organization_id: str, params: CommonParams) -> dict[str, Any]:
    return {
        "organization_id": organization_id,
        "scope": params.scope.kind.value,
        "entity_id": params.scope.entity_id or None,
        "from": params.date_range.start,
        "to": params.date_range.end,
    }


def _bucketed(organization_id: str, params: CommonParams, result: ReadResult) -> dict[str, Any]:
    payload = _envelope(organization_id, params)
    payload["period"] = params.period.value
    payload["windows"] = [
        {"window_start": wm.window.start, "window_end": wm.window.end, **wm.metrics.to_dict()}
        for wm in result.windows
    ]
    return payload


# ---------------------------------------------------------------------------
# GET pulse / shoutouts
# ---------------------------------------------------------------------------

@router.get(
    "/pulse",
    response_model=PulseResponse,
    summary="Average mood per period window",
    responses=_ERRORS,
)
def pulse(
    organization_id: str,
    params: CommonParams = Depends(common_params),
    engine: AnalyticsEngine = Depends(get_engine),
):
    """Mean mood of completed check-ins, bucketed by the check-in's week."""
    result = engine.read(_query(organization_id, MetricType.pulse, params))
    return _bucketed(organization_id, params, result)


@router.get(
    "/shoutouts",
    response_model=ShoutoutResponse,
    summary="Shoutout counts per period window",
    responses=_ERRORS,
)
def shoutouts(
    organization_id: str,
    direction: ShoutoutDirection = Query(default=ShoutoutDirection.all),
    visibility: ShoutoutVisibility = Query(default=ShoutoutVisibility.all),
    params: CommonParams = Depends(common_params),
    engine: AnalyticsEngine = Depends(get_engine),
):
    """
    `given` counts shoutouts sent by users in scope, `received` those sent to
    them, `all` either (each shoutout once).
    """
    query = _query(
        organization_id, MetricType.shoutouts, params,
        direction=direction, visibility=visibility,
    )
    return _bucketed(organization_id, params, engine.read(query))


# ---------------------------------------------------------------------------
# GET leaderboard
# ---------------------------------------------------------------------------

@router.get(
    "/leaderboard",
    response_model=LeaderboardResponse,
    summary="Users in scope ranked over the whole range",
    responses=_ERRORS,
)
def leaderboard(
    organization_id: str,
    metric: LeaderboardMetric = Query(default=LeaderboardMetric.shoutouts_received),
    limit: Optional[int] = Query(
        default=None, ge=1, le=500,
        description="Defaults to LEADERBOARD_DEFAULT_LIMIT (10).",
    ),
    params: CommonParams = Depends(common_params),
    engine: AnalyticsEngine = Depends(get_engine),
):
    """Sorted by value descending, ties by user id ascending. Users without events score 0."""
    query = _query(
        organization_id, MetricType.leaderboard, params,
        leaderboard_metric=metric,
        limit=limit or settings.LEADERBOARD_DEFAULT_LIMIT,
    )
    result = engine.read(query)
    payload = _envelope(organization_id, params)
    payload.update(result.windows[0].metrics.to_dict())
    return payload


# ---------------------------------------------------------------------------
# GET compliance
# ---------------------------------------------------------------------------

def _compliance(
    organization_id: str,
    metric_type: MetricType,
    params: CommonParams,
    expected_count: Optional[int],
    engine: AnalyticsEngine,
) -> dict[str, Any]:
    query = _query(organization_id, metric_type, params, expected_count=expected_count)
    return _bucketed(organization_id, params, engine.read(query))


@router.get(
    "/compliance/checkins",
    response_model=ComplianceResponse,
    summary="Check-in submission timeliness per period window",
    responses=_ERRORS,
)
def checkin_compliance(
    organization_id: str,
    expected_count: Optional[int] = Query(
        default=None, ge=0,
        description="Expected submissions per window. The shortfall counts as not on time.",
    ),
    params: CommonParams = Depends(common_params),
    engine: AnalyticsEngine = Depends(get_engine),
):
    return _compliance(
        organization_id, MetricType.compliance_checkin, params, expected_count, engine
    )


@router.get(
    "/compliance/reviews",
    response_model=ComplianceResponse,
    summary="Review timeliness per period window",
    responses=_ERRORS,
)
def review_compliance(
    organization_id: str,
    expected_count: Optional[int] = Query(
        default=None, ge=0,
        description="Expected submissions per window. The shortfall counts as not on time.",
    ),
    params: CommonParams = Depends(common_params),
    engine: AnalyticsEngine = Depends(get_engine),
):
    """Scope selects reviewers. Reviews are due `review_due_offset_days` after the check-in."""
    return _compliance(
        organization_id, MetricType.compliance_review, params, expected_count, engine
    )


# ---------------------------------------------------------------------------
# GET overview
# ---------------------------------------------------------------------------

@router.get(
    "/overview",
    response_model=OverviewResponse,
    summary="Headline numbers vs the preceding range",
    responses=_ERRORS,
)
def overview(
    organization_id: str,
    params: CommonParams = Depends(common_params),
    engine: AnalyticsEngine = Depends(get_engine),
):
    result = engine.read(_query(organization_id, MetricType.overview, params))
    payload = _envelope(organization_id, params)
    payload.update(result.windows[0].metrics.to_dict())
    return payload


# ---------------------------------------------------------------------------
# POST backfill
# ---------------------------------------------------------------------------

@router.post(
    "/backfill",
    response_model=BackfillResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Recompute stored aggregates for a historical range",
    responses={
        202: {"description": "Backfill scheduled; runs in the background."},
        400: {"model": ErrorResponse, "description": "INVALID_DATE_RANGE."},
        404: {"model": ErrorResponse, "description": "ORGANIZATION_NOT_FOUND."},
        422: {"model": ErrorResponse, "description": "RANGE_TOO_LARGE (over 90 days)."},
    },
)
def backfill(
    organization_id: str,
    body: BackfillRequest,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    session_factory: Callable[[], Session] = Depends(get_session_factory),
):
    """Returns immediately; progress is recorded on the backfill run."""
    ack = start_backfill(
        db,
        organization_id,
        parse_instant(body.from_, "from"),
        parse_instant(body.to, "to", end=True),
    )
    background_tasks.add_task(run_backfill, ack.run_id, session_factory)
    return ack.to_dict()
