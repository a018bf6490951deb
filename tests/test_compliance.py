"""
Unit tests for the compliance calculator. Pure functions, no DB.
"""
from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfoNotFoundError

import pytest

from app.models.organization import Organization
from app.services.compliance import CadenceRule, ComplianceRecord, evaluate, summarize
from app.services.event_store import CheckinEvent, ReviewEvent


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


def checkin(week_of: date, submitted_at: datetime) -> CheckinEvent:
    return CheckinEvent(
        organization_id="org", user_id="u1", week_of=week_of, occurred_at=submitted_at, mood=3
    )


def record(delta_days: int, grace_days: int = 0, on_vacation: bool = False) -> ComplianceRecord:
    expected = utc(2024, 1, 12, 17)
    return ComplianceRecord(
        event=checkin(date(2024, 1, 7), expected + timedelta(days=delta_days)),
        expected_at=expected,
        occurred_at=expected + timedelta(days=delta_days),
        delta_days=delta_days,
        on_time=delta_days <= grace_days,
        on_vacation=on_vacation,
    )


class TestExpectedAt:
    def test_default_is_friday_1700_utc(self):
        assert CadenceRule().expected_at(date(2024, 1, 10)) == utc(2024, 1, 12, 17)

    def test_same_for_any_day_of_the_week(self):
        rule = CadenceRule()
        assert {rule.expected_at(date(2024, 1, d)) for d in range(7, 14)} == {utc(2024, 1, 12, 17)}

    def test_monday_due(self):
        assert CadenceRule(due_weekday=0).expected_at(date(2024, 1, 7)) == utc(2024, 1, 8, 17)

    def test_organization_timezone(self):
        rule = CadenceRule(timezone="America/Chicago")
        # CST is UTC-6 in January
        assert rule.expected_at(date(2024, 1, 7)) == utc(2024, 1, 12, 23)

    def test_review_offset(self):
        org = Organization(
            checkin_due_weekday=0,
            checkin_due_time="09:30",
            timezone="UTC",
            review_due_offset_days=2,
        )
        checkin_rule = CadenceRule.from_organization(org)
        review_rule = CadenceRule.from_organization(org, grace_days=1, review=True)
        assert checkin_rule.due_time == time(9, 30)
        assert checkin_rule.expected_at(date(2024, 1, 7)) == utc(2024, 1, 8, 9, 30)
        assert review_rule.expected_at(date(2024, 1, 7)) == utc(2024, 1, 10, 9, 30)
        assert review_rule.grace_days == 1


class TestEvaluate:
    def test_submitted_two_days_after_monday_due(self):
        rule = CadenceRule(due_weekday=0)
        rec = evaluate(checkin(date(2024, 1, 7), utc(2024, 1, 10, 17)), rule)
        assert rec.expected_at == utc(2024, 1, 8, 17)
        assert rec.delta_days == 2
        assert rec.on_time is False

    def test_exactly_on_due_instant_is_on_time(self):
        rec = evaluate(checkin(date(2024, 1, 7), utc(2024, 1, 12, 17)), CadenceRule())
        assert rec.delta_days == 0
        assert rec.on_time

    def test_delta_truncates_toward_zero(self):
        rule = CadenceRule()
        early = evaluate(checkin(date(2024, 1, 7), utc(2024, 1, 11, 5)), rule)   # 36h early
        late = evaluate(checkin(date(2024, 1, 7), utc(2024, 1, 13, 5)), rule)    # 12h late
        assert early.delta_days == -1
        assert late.delta_days == 0
        assert late.on_time

    def test_grace_days(self):
        rec = evaluate(checkin(date(2024, 1, 7), utc(2024, 1, 13, 18)), CadenceRule(grace_days=1))
        assert rec.delta_days == 1
        assert rec.on_time

    def test_expected_never_depends_on_occurrence(self):
        rule = CadenceRule()
        a = evaluate(checkin(date(2024, 1, 7), utc(2024, 1, 1)), rule)
        b = evaluate(checkin(date(2024, 1, 7), utc(2024, 3, 1)), rule)
        assert a.expected_at == b.expected_at

    def test_review_event(self):
        review = ReviewEvent(
            organization_id="org", user_id="lead", subject_user_id="u1",
            week_of=date(2024, 1, 7), occurred_at=utc(2024, 1, 15, 17),
        )
        rec = evaluate(review, CadenceRule(offset_days=1))
        assert rec.expected_at == utc(2024, 1, 13, 17)
        assert rec.delta_days == 2

    def test_missing_occurrence_rejected(self):
        with pytest.raises(ValueError):
            evaluate(checkin(date(2024, 1, 7), None), CadenceRule())


class TestSummarize:
    def test_empty(self):
        result = summarize([])
        assert result.total_count == 0
        assert result.on_time_percentage == 0.0
        assert result.average_days_early is None
        assert result.average_days_late is None

    def test_mixed(self):
        result = summarize([record(-2), record(0), record(1), record(3)])
        assert result.total_count == 4
        assert result.on_time_count == 2
        assert result.on_time_percentage == 50.0
        assert result.average_days_early == -2.0
        assert result.average_days_late == 2.0

    def test_zero_delta_feeds_neither_average(self):
        result = summarize([record(0), record(0)])
        assert result.on_time_percentage == 100.0
        assert result.average_days_early is None
        assert result.average_days_late is None

    def test_rounded_to_two_decimals(self):
        result = summarize([record(0), record(-1), record(4)])
        assert result.on_time_percentage == 66.67

    def test_expected_count_shortfall_counts_as_missed(self):
        result = summarize([record(0), record(0), record(0)], expected_count=6)
        assert result.total_count == 6
        assert result.on_time_count == 3
        assert result.on_time_percentage == 50.0

    def test_expected_count_below_records_is_ignored(self):
        result = summarize([record(0), record(5)], expected_count=1)
        assert result.total_count == 2

    @pytest.mark.parametrize("deltas", [[-5, 5], [0], [7, 7, 7], [-1, -1, 0, 2]])
    def test_percentage_bounds(self, deltas):
        result = summarize([record(d) for d in deltas])
        assert 0.0 <= result.on_time_percentage <= 100.0
        assert result.on_time_count <= result.total_count

    def test_vacation_weeks_are_not_due(self):
        result = summarize([record(0), record(3), record(4, on_vacation=True)])
        assert result.total_count == 2
        assert result.on_time_count == 1
        assert result.on_time_percentage == 50.0
        assert result.vacation_count == 1
        # timing still counts
        assert result.average_days_late == 3.5

    def test_on_time_vacation_submission_stays_within_bounds(self):
        result = summarize([record(0, on_vacation=True)])
        assert result.total_count == 0
        assert result.on_time_count == 0
        assert result.on_time_percentage == 0.0
        assert result.vacation_count == 1

    def test_vacation_does_not_cover_expected_shortfall(self):
        result = summarize([record(0), record(0, on_vacation=True)], expected_count=3)
        assert result.total_count == 3
        assert result.on_time_count == 1


class TestCadenceRule:
    def test_unknown_timezone_rejected_up_front(self):
        with pytest.raises(ZoneInfoNotFoundError):
            CadenceRule(timezone="Mars/Olympus")
