"""
Tests for the read engine: strategies, aggregate fallback, write-through
and shadow comparison.
"""
from datetime import date, datetime, timezone

import pytest
from pydantic import ValidationError

from app.core.config import Settings
from app.core.errors import InvalidScopeError
from app.models.aggregate_bucket import AggregateBucket
from app.services import aggregate_store
from app.services.aggregate_store import AggregateKey
from app.services.aggregator import MetricQuery
from app.services.analytics_engine import AnalyticsEngine, ReadStrategy
from app.services.metrics import MetricType, PulseResult, WindowMetrics
from app.services.periods import DateRange, Window
from app.services.scope import Scope
from app.services.shadow_reads import compare, values_match


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


TWO_WEEKS = DateRange(utc(2024, 1, 7), utc(2024, 1, 20, 23, 59, 59))
NOW = utc(2024, 3, 1)


@pytest.fixture()
def org(seed):
    seed.user("alice")
    seed.user("bob")
    seed.user("dave")
    for name, mood in (("alice", 4), ("bob", 5), ("dave", 3)):
        seed.checkin(name, date(2024, 1, 7), mood=mood, submitted_at=utc(2024, 1, 12))
    return seed


def pulse(seed, **kwargs) -> MetricQuery:
    kwargs.setdefault("date_range", TWO_WEEKS)
    return MetricQuery(organization_id=seed.org_id, metric_type=MetricType.pulse, **kwargs)


def engine(db, strategy, write_through=False) -> AnalyticsEngine:
    return AnalyticsEngine(db, strategy=strategy, write_through=write_through, clock=lambda: NOW)


def store(db, query, window, average, count):
    aggregate_store.upsert(
        db, AggregateKey.for_window(query, window), window,
        {"average": average, "count": count}, utc(2024, 2, 1),
    )


class TestReadStrategy:
    @pytest.mark.parametrize("use_aggregates,shadow,expected", [
        (False, False, ReadStrategy.live_only),
        (True, False, ReadStrategy.aggregate_with_fallback),
        (False, True, ReadStrategy.shadow_compare),
        (True, True, ReadStrategy.aggregate_shadow_compare),
    ])
    def test_from_flags(self, use_aggregates, shadow, expected):
        assert ReadStrategy.from_flags(use_aggregates, shadow) == expected

    def test_explicit_setting_wins(self):
        config = Settings(USE_AGGREGATES=True, READ_STRATEGY="live_only")
        assert ReadStrategy.from_settings(config) == ReadStrategy.live_only

    def test_flags_when_unset(self):
        config = Settings(USE_AGGREGATES=True, ENABLE_SHADOW_READS=False, READ_STRATEGY=None)
        assert ReadStrategy.from_settings(config) == ReadStrategy.aggregate_with_fallback

    def test_setting_is_normalized(self):
        config = Settings(READ_STRATEGY=" Shadow_Compare ")
        assert ReadStrategy.from_settings(config) == ReadStrategy.shadow_compare

    def test_blank_setting_falls_back_to_flags(self):
        assert ReadStrategy.from_settings(Settings(READ_STRATEGY="")) == ReadStrategy.live_only

    def test_unknown_setting_rejected_at_load(self):
        with pytest.raises(ValidationError):
            Settings(READ_STRATEGY="fastest")

    def test_every_setting_value_is_a_strategy(self):
        for name in ("live_only", "aggregate_with_fallback", "shadow_compare", "aggregate_shadow_compare"):
            assert ReadStrategy.from_settings(Settings(READ_STRATEGY=name)).value == name


class TestAggregatePath:
    def test_live_only(self, db, org):
        result = engine(db, ReadStrategy.live_only).read(pulse(org))
        assert result.source == "live"
        assert result.shadow is None
        assert result.windows[0].metrics == PulseResult(average=4.0, count=3)

    def test_miss_falls_back_without_writing(self, db, org):
        result = engine(db, ReadStrategy.aggregate_with_fallback).read(pulse(org))
        assert result.source == "live"
        assert result.windows[0].metrics.average == 4.0
        assert db.query(AggregateBucket).filter_by(organization_id=org.org_id).count() == 0

    def test_write_through_then_hit(self, db, org):
        first = engine(db, ReadStrategy.aggregate_with_fallback, write_through=True).read(pulse(org))
        assert first.source == "live"
        assert db.query(AggregateBucket).filter_by(organization_id=org.org_id).count() == 2

        second = engine(db, ReadStrategy.aggregate_with_fallback).read(pulse(org))
        assert second.source == "aggregate"
        assert second.windows == first.windows

    def test_mixed(self, db, org):
        q = pulse(org)
        windows = q.windows()
        store(db, q, windows[1], 0.0, 0)
        result = engine(db, ReadStrategy.aggregate_with_fallback).read(q)
        assert result.source == "mixed"
        assert [wm.metrics.count for wm in result.windows] == [3, 0]

    def test_serves_stored_value(self, db, org):
        q = pulse(org)
        for window in q.windows():
            store(db, q, window, 3.5, 2)
        result = engine(db, ReadStrategy.aggregate_with_fallback).read(q)
        assert result.source == "aggregate"
        assert result.windows[0].metrics == PulseResult(average=3.5, count=2)

    def test_range_ending_on_boundary_does_not_leak_into_wider_read(self, db, seed):
        seed.user("alice")
        seed.checkin("alice", date(2024, 2, 25), mood=2, submitted_at=utc(2024, 3, 1))
        seed.checkin("alice", date(2024, 3, 3), mood=4, submitted_at=utc(2024, 3, 8))
        narrow = pulse(seed, date_range=DateRange(utc(2024, 2, 25), utc(2024, 3, 3)))
        wide = pulse(seed, date_range=DateRange(utc(2024, 2, 25), utc(2024, 3, 10)))

        # [Feb 25, Mar 3] is closed, so it counts the Mar 3 check-in
        first = engine(db, ReadStrategy.aggregate_with_fallback, write_through=True).read(narrow)
        assert first.windows[0].metrics == PulseResult(average=3.0, count=2)

        served = engine(db, ReadStrategy.aggregate_with_fallback).read(wide)
        live = engine(db, ReadStrategy.live_only).read(wide)
        assert served.windows == live.windows
        assert [wm.metrics for wm in served.windows] == [
            PulseResult(average=2.0, count=1),
            PulseResult(average=4.0, count=1),
        ]

    def test_scope_errors_surface_on_full_hit(self, db, org):
        q = pulse(org, scope=Scope.user("ghost"))
        for window in q.windows():
            store(db, q, window, 3.5, 2)
        with pytest.raises(InvalidScopeError):
            engine(db, ReadStrategy.aggregate_with_fallback).read(q)

    def test_leaderboard_always_live(self, db, org):
        q = MetricQuery(
            organization_id=org.org_id, metric_type=MetricType.leaderboard, date_range=TWO_WEEKS
        )
        result = engine(db, ReadStrategy.aggregate_shadow_compare).read(q)
        assert result.source == "live"
        assert result.shadow is None


class TestShadowReads:
    def test_live_primary_reports_stale_aggregate(self, db, org):
        q = pulse(org)
        store(db, q, q.windows()[0], 3.5, 3)

        result = engine(db, ReadStrategy.shadow_compare).read(q)

        assert result.source == "live"
        assert result.windows[0].metrics.average == 4.0
        report = result.shadow
        assert report.compared == 1
        assert report.skipped == 1
        assert len(report.divergences) == 1
        assert report.divergences[0].primary["average"] == 4.0
        assert report.divergences[0].shadow["average"] == 3.5
        assert not report.matched

    def test_aggregate_primary_compared_against_live(self, db, org):
        q = pulse(org)
        for window in q.windows():
            store(db, q, window, 3.5 if window == q.windows()[0] else 0.0, 3 if window == q.windows()[0] else 0)

        result = engine(db, ReadStrategy.aggregate_shadow_compare).read(q)

        assert result.source == "aggregate"
        assert result.windows[0].metrics.average == 3.5
        assert result.shadow.compared == 2
        assert len(result.shadow.divergences) == 1

    def test_matching_paths(self, db, org):
        q = pulse(org)
        engine(db, ReadStrategy.aggregate_with_fallback, write_through=True).read(q)
        result = engine(db, ReadStrategy.shadow_compare).read(q)
        assert result.shadow.matched
        assert result.shadow.compared == 2

    def test_shadow_failure_never_propagates(self, db, org, monkeypatch):
        def broken(*args, **kwargs):
            raise RuntimeError("store offline")

        monkeypatch.setattr(aggregate_store, "get_many", broken)
        result = engine(db, ReadStrategy.shadow_compare).read(pulse(org))
        assert result.windows[0].metrics.average == 4.0
        assert result.shadow.error == "RuntimeError: store offline"
        assert not result.shadow.matched


class TestCompare:
    def test_values_match_uses_isclose(self):
        assert values_match({"average": 0.1 + 0.2, "count": 3}, {"average": 0.3, "count": 3})
        assert not values_match({"average": 4.0}, {"average": 3.5})
        assert values_match({"average_days_early": None}, {"average_days_early": None})
        assert not values_match({"average_days_early": None}, {"average_days_early": -1.0})

    def test_compare_skips_windows_missing_from_shadow(self):
        w1 = Window(utc(2024, 1, 7), utc(2024, 1, 14))
        w2 = Window(utc(2024, 1, 14), utc(2024, 1, 21), closed=True)
        primary = [WindowMetrics(w1, PulseResult(4.0, 3)), WindowMetrics(w2, PulseResult(0.0, 0))]
        shadow = [WindowMetrics(w2, PulseResult(1.0, 1))]
        report = compare({}, primary, shadow, "live", "aggregate")
        assert (report.compared, report.skipped, len(report.divergences)) == (1, 1, 1)
        assert report.divergences[0].window == w2
