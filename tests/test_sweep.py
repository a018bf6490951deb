"""
Tests for incremental aggregate maintenance: watermark sweeps, targeted
recomputation and the in-process scheduler.
"""
from datetime import date, datetime, timedelta, timezone

import pytest

from app.core.errors import OrganizationNotFoundError
from app.core.scheduler import MaintenanceScheduler
from app.models.aggregate_bucket import AggregateBucket
from app.models.aggregation_watermark import AggregationWatermark
from app.services import aggregate_store, sweep
from app.services.aggregate_store import AggregateKey
from app.services.aggregator import MetricQuery
from app.services.metrics import AGGREGATABLE_METRICS, ComplianceResult, MetricType, PulseResult
from app.services.periods import DateRange, Period, Window, as_utc, utc_now
from app.services.scope import Scope
from app.services.sweep import SweepResult, recompute_activity, run_sweep, sweep_organization


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


WEEK = Window(utc(2024, 1, 7), utc(2024, 1, 14))
BUCKETS_PER_SCOPE = len(Period) * len(AGGREGATABLE_METRICS)


def stored(db, seed, metric_type, scope, window=WEEK, period=Period.week):
    query = MetricQuery(
        seed.org_id, metric_type, DateRange(window.start, window.end), scope=scope, period=period,
    )
    return aggregate_store.get(db, AggregateKey.for_window(query, window), window)


@pytest.fixture()
def team(seed):
    seed.team("eng")
    seed.user("alice", team="eng")
    seed.user("bob", team="eng", active=False)
    return seed


class TestSweepOrganization:
    def test_new_checkin_is_aggregated(self, db, team):
        team.checkin("alice", date(2024, 1, 7), mood=4, submitted_at=utc(2024, 1, 12))

        result = sweep_organization(db, team.org_id)

        assert result.buckets_failed == 0
        # organization, team and alice
        assert result.buckets_written == 3 * BUCKETS_PER_SCOPE
        for scope in (Scope.organization(), Scope.team(f"{team.org_id}:eng"),
                      Scope.user(f"{team.org_id}:alice")):
            hit = stored(db, team, MetricType.pulse, scope)
            assert PulseResult.from_storage(hit.value) == PulseResult(average=4.0, count=1)
            assert hit.closed is False

    def test_watermark_created_then_advanced(self, db, team):
        team.checkin("alice", date(2024, 1, 7), submitted_at=utc(2024, 1, 12))
        result = sweep_organization(db, team.org_id)

        assert result.watermark > result.since
        db.expire_all()
        mark = db.get(AggregationWatermark, team.org_id)
        assert as_utc(mark.last_processed_at) == result.watermark

        again = sweep_organization(db, team.org_id)
        assert again.since == result.watermark

    def test_stale_bucket_is_rewritten(self, db, team):
        query = MetricQuery(team.org_id, MetricType.pulse, DateRange(WEEK.start, WEEK.end))
        aggregate_store.upsert(
            db, AggregateKey.for_window(query, WEEK), WEEK,
            {"average": 1.0, "count": 9}, utc(2024, 2, 1),
        )
        team.checkin("alice", date(2024, 1, 8), mood=5, submitted_at=utc(2024, 1, 12))

        sweep_organization(db, team.org_id)

        hit = stored(db, team, MetricType.pulse, Scope.organization())
        assert PulseResult.from_storage(hit.value) == PulseResult(average=5.0, count=1)

    def test_shoutout_marks_sender_and_recipient(self, db, seed):
        seed.user("dave")
        seed.user("alice")
        seed.shoutout("dave", "alice", utc(2024, 1, 15, 10))

        result = sweep_organization(db, seed.org_id, clock=lambda: utc(2024, 1, 20))

        assert result.since == utc(2024, 1, 13)
        assert result.watermark == utc(2024, 1, 15, 10)
        rows = (
            db.query(AggregateBucket)
            .filter_by(organization_id=seed.org_id, scope="user", metric_type="shoutouts", period="week")
            .all()
        )
        assert {r.entity_id for r in rows} == {f"{seed.org_id}:dave", f"{seed.org_id}:alice"}
        assert {as_utc(r.window_start) for r in rows} == {utc(2024, 1, 14)}

    def test_activity_before_watermark_is_ignored(self, db, seed):
        seed.user("dave")
        seed.user("alice")
        seed.shoutout("dave", "alice", utc(2024, 1, 2))

        result = sweep_organization(db, seed.org_id, clock=lambda: utc(2024, 1, 20))

        assert result.buckets_written == 0
        assert result.watermark == result.since
        assert db.query(AggregateBucket).filter_by(organization_id=seed.org_id).count() == 0

    def test_vacation_refreshes_reviewer_compliance(self, db, make_seed):
        org = make_seed(review_due_offset_days=2)
        org.user("lead")
        org.user("alice")
        org.checkin(
            "alice", date(2024, 1, 7), submitted_at=utc(2024, 1, 12),
            reviewed_by="lead", reviewed_at=utc(2024, 1, 16, 18),
        )
        lead = Scope.user(f"{org.org_id}:lead")

        sweep_organization(db, org.org_id)
        before = ComplianceResult.from_storage(
            stored(db, org, MetricType.compliance_review, lead).value
        )
        assert (before.total_count, before.vacation_count) == (1, 0)

        later = utc_now() + timedelta(minutes=1)
        org.vacation("lead", date(2024, 1, 9), created_at=later)
        sweep_organization(db, org.org_id, clock=lambda: later + timedelta(minutes=1))
        after = ComplianceResult.from_storage(
            stored(db, org, MetricType.compliance_review, lead).value
        )
        assert (after.total_count, after.vacation_count) == (0, 1)

    def test_failed_buckets_hold_the_watermark(self, db, make_seed):
        org = make_seed(timezone="Mars/Olympus")
        org.user("alice")
        org.checkin("alice", date(2024, 1, 7), mood=2, submitted_at=utc(2024, 1, 12))

        result = sweep_organization(db, org.org_id)

        assert result.buckets_failed > 0
        assert result.watermark == result.since
        db.expire_all()
        assert as_utc(db.get(AggregationWatermark, org.org_id).last_processed_at) == result.since
        # the rest still lands
        hit = stored(db, org, MetricType.pulse, Scope.organization())
        assert PulseResult.from_storage(hit.value) == PulseResult(average=2.0, count=1)

    def test_unknown_organization(self, db):
        with pytest.raises(OrganizationNotFoundError):
            sweep_organization(db, "missing")


class TestRecomputeActivity:
    def test_rewrites_every_bucket_holding_the_instant(self, db, team):
        team.checkin("alice", date(2024, 1, 7), mood=3, submitted_at=utc(2024, 1, 12))

        written, failed = recompute_activity(db, team.org_id, f"{team.org_id}:alice", utc(2024, 1, 7))

        assert (written, failed) == (3 * BUCKETS_PER_SCOPE, 0)
        month = Window(utc(2024, 1, 1), utc(2024, 2, 1))
        hit = stored(db, team, MetricType.pulse, Scope.organization(), month, Period.month)
        assert PulseResult.from_storage(hit.value) == PulseResult(average=3.0, count=1)

    def test_inactive_user_gets_no_user_scope(self, db, team):
        written, failed = recompute_activity(db, team.org_id, f"{team.org_id}:bob", utc(2024, 1, 7))
        assert (written, failed) == (2 * BUCKETS_PER_SCOPE, 0)
        scopes = {
            r.scope for r in db.query(AggregateBucket).filter_by(organization_id=team.org_id).all()
        }
        assert scopes == {"organization", "team"}


class TestRunSweep:
    def test_one_failing_organization_does_not_stop_the_rest(
        self, make_seed, session_factory, monkeypatch
    ):
        broken = make_seed()
        healthy = make_seed()
        calls = []

        def fake(db, organization_id, clock=None):
            calls.append(organization_id)
            if organization_id == broken.org_id:
                raise RuntimeError("boom")
            return SweepResult(organization_id, utc(2024, 1, 1), utc(2024, 1, 1))

        monkeypatch.setattr(sweep, "sweep_organization", fake)
        results = run_sweep(session_factory)

        assert {broken.org_id, healthy.org_id} <= set(calls)
        ids = {r.organization_id for r in results}
        assert healthy.org_id in ids
        assert broken.org_id not in ids


class TestScheduler:
    def test_sweep_job_registered(self):
        scheduler = MaintenanceScheduler()
        scheduler.schedule_every("aggregate-sweep", run_sweep, minutes=15)
        assert scheduler.job_ids() == ["aggregate-sweep"]
        assert scheduler.running is False
        # not started, nothing to stop
        scheduler.shutdown()

    def test_disabled_by_default(self, client):
        assert client.app.state.scheduler is None
