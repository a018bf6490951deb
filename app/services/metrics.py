"""
Metric result types — one fixed-schema variant per metric family.

    MetricResult = PulseResult | ShoutoutResult | LeaderboardResult
                 | ComplianceResult | OverviewResult

Each variant carries a `kind` class attribute and knows how to render itself
(`to_dict`). The four bucketable variants also round-trip through the
aggregate store (`to_storage` / `from_storage`).
"""
from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, ClassVar, Optional, Union

from app.services.periods import Window


class MetricType(str, enum.Enum):
    pulse = "pulse"
    shoutouts = "shoutouts"
    leaderboard = "leaderboard"
    compliance_checkin = "compliance_checkin"
    compliance_review = "compliance_review"
    overview = "overview"


# Metric types that are bucketed per period window and can be precomputed.
AGGREGATABLE_METRICS: tuple[MetricType, ...] = (
    MetricType.pulse,
    MetricType.shoutouts,
    MetricType.compliance_checkin,
    MetricType.compliance_review,
)


class ShoutoutDirection(str, enum.Enum):
    given = "given"
    received = "received"
    all = "all"


class ShoutoutVisibility(str, enum.Enum):
    public = "public"
    private = "private"
    all = "all"


class LeaderboardMetric(str, enum.Enum):
    shoutouts_received = "shoutouts_received"
    shoutouts_given = "shoutouts_given"
    pulse_avg = "pulse_avg"


# ---------------------------------------------------------------------------
# Variants
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class PulseResult:
    kind: ClassVar[MetricType] = MetricType.pulse

    average: float = 0.0   # 0.0 for an empty bucket, never None
    count: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {"average": self.average, "count": self.count}

    def to_storage(self) -> dict[str, Any]:
        return self.to_dict()

    @classmethod
    def from_storage(cls, value: dict[str, Any], **_: Any) -> "PulseResult":
        return cls(average=float(value["average"]), count=int(value["count"]))


@dataclass(frozen=True)
class ShoutoutResult:
    """
    Partition counts for one window. "all" partitions count each shoutout
    once even when both sender and recipient are in scope.
    """
    kind: ClassVar[MetricType] = MetricType.shoutouts

    given_public: int = 0
    given_private: int = 0
    received_public: int = 0
    received_private: int = 0
    all_public: int = 0
    all_private: int = 0
    direction: ShoutoutDirection = ShoutoutDirection.all
    visibility: ShoutoutVisibility = ShoutoutVisibility.all

    _PARTITIONS: ClassVar[tuple[str, ...]] = (
        "given_public", "given_private",
        "received_public", "received_private",
        "all_public", "all_private",
    )

    @property
    def count(self) -> int:
        """Count for the requested direction / visibility."""
        prefix = self.direction.value
        if self.visibility == ShoutoutVisibility.all:
            return getattr(self, f"{prefix}_public") + getattr(self, f"{prefix}_private")
        return getattr(self, f"{prefix}_{self.visibility.value}")

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "count": self.count,
            "direction": self.direction.value,
            "visibility": self.visibility.value,
        }
        payload.update(self.to_storage())
        return payload

    def to_storage(self) -> dict[str, Any]:
        return {name: getattr(self, name) for name in self._PARTITIONS}

    @classmethod
    def from_storage(
        cls,
        value: dict[str, Any],
        direction: ShoutoutDirection = ShoutoutDirection.all,
        visibility: ShoutoutVisibility = ShoutoutVisibility.all,
        **_: Any,
    ) -> "ShoutoutResult":
        return cls(
            **{name: int(value.get(name, 0)) for name in cls._PARTITIONS},
            direction=direction,
            visibility=visibility,
        )


@dataclass(frozen=True)
class ComplianceResult:
    kind: ClassVar[MetricType] = MetricType.compliance_checkin

    total_count: int = 0
    on_time_count: int = 0
    on_time_percentage: float = 0.0
    # Mean signed delta over early (< 0) and late (> 0) records; None when empty.
    average_days_early: Optional[float] = None
    average_days_late: Optional[float] = None
    # records from vacation weeks, excluded from the two counts above
    vacation_count: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_count": self.total_count,
            "on_time_count": self.on_time_count,
            "on_time_percentage": self.on_time_percentage,
            "average_days_early": self.average_days_early,
            "average_days_late": self.average_days_late,
            "vacation_count": self.vacation_count,
        }

    def to_storage(self) -> dict[str, Any]:
        return self.to_dict()

    @classmethod
    def from_storage(cls, value: dict[str, Any], **_: Any) -> "ComplianceResult":
        early = value.get("average_days_early")
        late = value.get("average_days_late")
        return cls(
            total_count=int(value["total_count"]),
            on_time_count=int(value["on_time_count"]),
            on_time_percentage=float(value["on_time_percentage"]),
            average_days_early=float(early) if early is not None else None,
            average_days_late=float(late) if late is not None else None,
            vacation_count=int(value.get("vacation_count", 0)),
        )


@dataclass(frozen=True)
class LeaderboardEntry:
    user_id: str
    rank: int
    value: float


@dataclass(frozen=True)
class LeaderboardResult:
    kind: ClassVar[MetricType] = MetricType.leaderboard

    metric: LeaderboardMetric = LeaderboardMetric.shoutouts_received
    entries: tuple[LeaderboardEntry, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "metric": self.metric.value,
            "entries": [
                {"user_id": e.user_id, "rank": e.rank, "value": e.value}
                for e in self.entries
            ],
        }


@dataclass(frozen=True)
class OverviewSnapshot:
    completed_checkins: int = 0
    active_users: int = 0
    # active_users x weeks in range: assumes one check-in per user per week
    expected_checkins: int = 0
    completion_rate: float = 0.0
    wins: int = 0
    shoutouts: int = 0
    pulse_average: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "completed_checkins": self.completed_checkins,
            "active_users": self.active_users,
            "expected_checkins": self.expected_checkins,
            "completion_rate": self.completion_rate,
            "wins": self.wins,
            "shoutouts": self.shoutouts,
            "pulse_average": self.pulse_average,
        }


@dataclass(frozen=True)
class OverviewResult:
    kind: ClassVar[MetricType] = MetricType.overview

    current: OverviewSnapshot = field(default_factory=OverviewSnapshot)
    previous: OverviewSnapshot = field(default_factory=OverviewSnapshot)

    @property
    def change(self) -> dict[str, float]:
        """Percentage change vs the previous range; 0 when the previous value is 0."""
        changes: dict[str, float] = {}
        for name, current in self.current.to_dict().items():
            previous = getattr(self.previous, name)
            changes[name] = (
                round((current - previous) / previous * 100, 2) if previous else 0.0
            )
        return changes

    def to_dict(self) -> dict[str, Any]:
        return {
            "current": self.current.to_dict(),
            "previous": self.previous.to_dict(),
            "change": self.change,
        }


MetricResult = Union[
    PulseResult, ShoutoutResult, LeaderboardResult, ComplianceResult, OverviewResult
]


@dataclass(frozen=True)
class WindowMetrics:
    window: Window
    metrics: MetricResult


_STORAGE_TYPES: dict[MetricType, Any] = {
    MetricType.pulse: PulseResult,
    MetricType.shoutouts: ShoutoutResult,
    MetricType.compliance_checkin: ComplianceResult,
    MetricType.compliance_review: ComplianceResult,
}


def from_storage(metric_type: MetricType, value: dict[str, Any], **options: Any) -> MetricResult:
    try:
        result_type = _STORAGE_TYPES[metric_type]
    except KeyError:
        raise ValueError(f"{metric_type.value} metrics are not stored as aggregates") from None
    return result_type.from_storage(value, **options)
