"""
Metric aggregator — live computation of every metric family from raw events.

Bucketed metrics (pulse, shoutouts, compliance_checkin, compliance_review)
load the events for the whole range once and partition them into the period
windows produced by the bucketizer. `compute_window` computes a single window
with the same reducers; backfill and the sweep use it so one failing bucket
does not take the rest of the range with it.

Domain errors (unknown organization, bad scope) propagate as they are; any
other failure, storage or a broken cadence setting alike, surfaces as
ComputationFailureError.

Leaderboard and overview are computed over the whole range as one window.

Check-ins and reviews are bucketed by their nominal `week_of`; shoutouts by
when they were sent.

Public API
----------
load_organization(db, organization_id)          -> Organization
MetricAggregator(db).compute(query)             -> list[WindowMetrics]
MetricAggregator(db).compute_window(query, window, user_ids=None) -> MetricResult
"""
from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Optional, Sequence, Union

from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.errors import (
    AnalyticsException,
    ComputationFailureError,
    OrganizationNotFoundError,
)
from app.core.logging import get_logger
from app.models.organization import Organization
from app.models.user import User
from app.services import event_store, scope as scope_resolver
from app.services.compliance import CadenceRule, evaluate, summarize
from app.services.event_store import CheckinEvent, ReviewEvent, ShoutoutEvent
from app.services.metrics import (
    ComplianceResult,
    LeaderboardEntry,
    LeaderboardMetric,
    LeaderboardResult,
    MetricResult,
    MetricType,
    OverviewResult,
    OverviewSnapshot,
    PulseResult,
    ShoutoutDirection,
    ShoutoutResult,
    ShoutoutVisibility,
    WindowMetrics,
)
from app.services.periods import (
    DateRange,
    Period,
    Window,
    buckets,
    count_weeks,
    locate,
    start_of_day,
)
from app.services.scope import Scope

logger = get_logger(__name__)

Event = Union[CheckinEvent, ReviewEvent, ShoutoutEvent]


# ---------------------------------------------------------------------------
# Query
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class MetricQuery:
    organization_id: str
    metric_type: MetricType
    date_range: DateRange
    scope: Scope = field(default_factory=Scope.organization)
    period: Period = Period.week
    include_inactive: bool = False
    # shoutouts
    direction: ShoutoutDirection = ShoutoutDirection.all
    visibility: ShoutoutVisibility = ShoutoutVisibility.all
    # leaderboard
    leaderboard_metric: LeaderboardMetric = LeaderboardMetric.shoutouts_received
    limit: Optional[int] = None
    # compliance, applied per window
    expected_count: Optional[int] = None

    def windows(self) -> list[Window]:
        if self.metric_type in (MetricType.leaderboard, MetricType.overview):
            return [self.whole_range()]
        return buckets(self.period, self.date_range)

    def whole_range(self) -> Window:
        return Window(start=self.date_range.start, end=self.date_range.end, closed=True)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _round2(value: Decimal) -> float:
    return float(value.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def _mean(values: Sequence[int]) -> float:
    if not values:
        return 0.0
    return _round2(Decimal(sum(values)) / Decimal(len(values)))


def _bucket_instant(event: Event) -> datetime:
    if isinstance(event, ShoutoutEvent):
        return event.occurred_at
    return start_of_day(event.week_of)


def load_organization(db: Session, organization_id: str) -> Organization:
    org = db.get(Organization, organization_id)
    if org is None:
        raise OrganizationNotFoundError(organization_id)
    return org


# ---------------------------------------------------------------------------
# Reducers: events in, result out
# ---------------------------------------------------------------------------

def reduce_pulse(events: Iterable[CheckinEvent]) -> PulseResult:
    moods = [e.mood for e in events]
    return PulseResult(average=_mean(moods), count=len(moods))


def reduce_shoutouts(
    events: Iterable[ShoutoutEvent],
    user_ids: frozenset[str],
    direction: ShoutoutDirection = ShoutoutDirection.all,
    visibility: ShoutoutVisibility = ShoutoutVisibility.all,
) -> ShoutoutResult:
    counts: dict[str, int] = defaultdict(int)
    for event in events:
        sent = event.from_user_id in user_ids
        received = event.to_user_id in user_ids
        if not (sent or received):
            continue
        suffix = "public" if event.is_public else "private"
        if sent:
            counts[f"given_{suffix}"] += 1
        if received:
            counts[f"received_{suffix}"] += 1
        counts[f"all_{suffix}"] += 1
    return ShoutoutResult(**counts, direction=direction, visibility=visibility)


def reduce_compliance(
    events: Iterable[Union[CheckinEvent, ReviewEvent]],
    rule: CadenceRule,
    expected_count: Optional[int] = None,
) -> ComplianceResult:
    records = [evaluate(e, rule) for e in events if e.occurred_at is not None]
    return summarize(records, expected_count=expected_count)


def rank(values: dict[str, float], limit: Optional[int] = None) -> tuple[LeaderboardEntry, ...]:
    """Value descending, then user id ascending; ranks are ordinal."""
    ordered = sorted(values.items(), key=lambda item: (-item[1], item[0]))
    if limit is not None:
        ordered = ordered[:limit]
    return tuple(
        LeaderboardEntry(user_id=user_id, rank=position, value=value)
        for position, (user_id, value) in enumerate(ordered, start=1)
    )


# ---------------------------------------------------------------------------
# Aggregator
# ---------------------------------------------------------------------------

class MetricAggregator:
    def __init__(self, db: Session, grace_days: Optional[int] = None):
        self.db = db
        self.grace_days = settings.COMPLIANCE_GRACE_DAYS if grace_days is None else grace_days

    # -- public -------------------------------------------------------------

    def compute(self, query: MetricQuery) -> list[WindowMetrics]:
        """Compute every window of `query` from raw events, oldest first."""
        try:
            org = load_organization(self.db, query.organization_id)
            user_ids = self.resolve_users(query)

            if query.metric_type == MetricType.leaderboard:
                return [WindowMetrics(query.whole_range(), self._leaderboard(query, user_ids))]
            if query.metric_type == MetricType.overview:
                return [WindowMetrics(query.whole_range(), self._overview(query, user_ids))]

            windows = query.windows()
            grouped: dict[Window, list[Event]] = {w: [] for w in windows}
            events = self._load(query, user_ids, query.date_range.start, query.date_range.end)
            for event in events:
                window = locate(windows, _bucket_instant(event))
                if window is not None:
                    grouped[window].append(event)

            return [
                WindowMetrics(w, self._reduce(query, org, user_ids, grouped[w]))
                for w in windows
            ]
        except AnalyticsException:
            raise
        except Exception as exc:
            logger.error(
                "live_computation_failed",
                organization_id=query.organization_id,
                metric_type=query.metric_type.value,
                error=str(exc),
            )
            raise ComputationFailureError(
                organization_id=query.organization_id,
                metric_type=query.metric_type.value,
                reason=type(exc).__name__,
            ) from exc

    def compute_window(
        self,
        query: MetricQuery,
        window: Window,
        user_ids: Optional[frozenset[str]] = None,
    ) -> MetricResult:
        """Compute one bucketed window, loading only that window's events."""
        try:
            org = load_organization(self.db, query.organization_id)
            if user_ids is None:
                user_ids = self.resolve_users(query)
            events = [
                e for e in self._load(query, user_ids, window.start, window.end)
                if window.contains(_bucket_instant(e))
            ]
            return self._reduce(query, org, user_ids, events)
        except AnalyticsException:
            raise
        except Exception as exc:
            raise ComputationFailureError(
                organization_id=query.organization_id,
                metric_type=query.metric_type.value,
                window=window.label(),
                reason=type(exc).__name__,
            ) from exc

    def resolve_users(self, query: MetricQuery) -> frozenset[str]:
        return scope_resolver.resolve(
            self.db,
            query.organization_id,
            query.scope,
            include_inactive=query.include_inactive,
        )

    # -- bucketed -----------------------------------------------------------

    def _load(
        self,
        query: MetricQuery,
        user_ids: frozenset[str],
        start: datetime,
        end: datetime,
    ) -> list[Event]:
        org_id = query.organization_id
        if query.metric_type in (MetricType.pulse, MetricType.compliance_checkin):
            return event_store.completed_checkins(self.db, org_id, user_ids, start.date(), end.date())
        if query.metric_type == MetricType.compliance_review:
            return event_store.reviews(self.db, org_id, user_ids, start.date(), end.date())
        if query.metric_type == MetricType.shoutouts:
            return event_store.shoutouts(self.db, org_id, user_ids, start, end)
        raise ValueError(f"{query.metric_type.value} is not a bucketed metric")

    def _reduce(
        self,
        query: MetricQuery,
        org: Organization,
        user_ids: frozenset[str],
        events: list[Event],
    ) -> MetricResult:
        if query.metric_type == MetricType.pulse:
            return reduce_pulse(events)
        if query.metric_type == MetricType.shoutouts:
            return reduce_shoutouts(events, user_ids, query.direction, query.visibility)
        if query.metric_type in (MetricType.compliance_checkin, MetricType.compliance_review):
            rule = CadenceRule.from_organization(
                org,
                grace_days=self.grace_days,
                review=query.metric_type == MetricType.compliance_review,
            )
            return reduce_compliance(events, rule, query.expected_count)
        raise ValueError(f"{query.metric_type.value} is not a bucketed metric")

    # -- whole range --------------------------------------------------------

    def _leaderboard(self, query: MetricQuery, user_ids: frozenset[str]) -> LeaderboardResult:
        start, end = query.date_range.start, query.date_range.end
        metric = query.leaderboard_metric
        zero = 0.0 if metric == LeaderboardMetric.pulse_avg else 0
        values: dict[str, float] = {user_id: zero for user_id in user_ids}

        if metric == LeaderboardMetric.pulse_avg:
            moods: dict[str, list[int]] = defaultdict(list)
            window = query.whole_range()
            for event in event_store.completed_checkins(
                self.db, query.organization_id, user_ids, start.date(), end.date()
            ):
                if window.contains(_bucket_instant(event)):
                    moods[event.user_id].append(event.mood)
            for user_id, user_moods in moods.items():
                values[user_id] = _mean(user_moods)
        else:
            for event in event_store.shoutouts(self.db, query.organization_id, user_ids, start, end):
                user_id = (
                    event.to_user_id
                    if metric == LeaderboardMetric.shoutouts_received
                    else event.from_user_id
                )
                if user_id in values:
                    values[user_id] += 1

        return LeaderboardResult(metric=metric, entries=rank(values, query.limit))

    def _overview(self, query: MetricQuery, user_ids: frozenset[str]) -> OverviewResult:
        active_ids = self._active(user_ids)
        return OverviewResult(
            current=self._snapshot(query.organization_id, user_ids, active_ids, query.date_range),
            previous=self._snapshot(
                query.organization_id, user_ids, active_ids, query.date_range.preceding()
            ),
        )

    def _active(self, user_ids: frozenset[str]) -> frozenset[str]:
        if not user_ids:
            return frozenset()
        rows = (
            self.db.query(User.id)
            .filter(User.id.in_(sorted(user_ids)), User.is_active.is_(True))
            .all()
        )
        return frozenset(row.id for row in rows)

    def _snapshot(
        self,
        organization_id: str,
        user_ids: frozenset[str],
        active_ids: frozenset[str],
        date_range: DateRange,
    ) -> OverviewSnapshot:
        window = Window(start=date_range.start, end=date_range.end, closed=True)
        checkins = [
            e for e in event_store.completed_checkins(
                self.db, organization_id, user_ids,
                date_range.start.date(), date_range.end.date(),
            )
            if window.contains(_bucket_instant(e))
        ]
        shoutout_events = event_store.shoutouts(
            self.db, organization_id, user_ids, date_range.start, date_range.end
        )
        # Approximation: one check-in per active user per (partial) week.
        expected = len(active_ids) * count_weeks(date_range)
        completion_rate = (
            _round2(Decimal(len(checkins)) * 100 / Decimal(expected)) if expected else 0.0
        )
        return OverviewSnapshot(
            completed_checkins=len(checkins),
            active_users=len(active_ids),
            expected_checkins=expected,
            completion_rate=completion_rate,
            wins=event_store.count_wins(
                self.db, organization_id, user_ids, date_range.start, date_range.end
            ),
            shoutouts=len(shoutout_events),
            pulse_average=_mean([e.mood for e in checkins]),
        )
