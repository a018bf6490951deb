"""
Analytics schemas.

GET  /organizations/{id}/analytics/pulse                → PulseResponse
GET  /organizations/{id}/analytics/shoutouts            → ShoutoutResponse
GET  /organizations/{id}/analytics/leaderboard          → LeaderboardResponse
GET  /organizations/{id}/analytics/compliance/checkins  → ComplianceResponse
GET  /organizations/{id}/analytics/compliance/reviews   → ComplianceResponse
GET  /organizations/{id}/analytics/overview             → OverviewResponse
POST /organizations/{id}/analytics/backfill             → BackfillResponse

`from` is a Python keyword, so the fields are declared as `from_` with an
alias; responses are serialized by alias.
"""
from datetime import datetime
from typing import Optional
from pydantic import BaseModel, ConfigDict, Field


# ---------------------------------------------------------------------------
# Shared
# ---------------------------------------------------------------------------

class RangeResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    organization_id: str
    scope: str = Field(description='"organization", "team" or "user".')
    entity_id: Optional[str] = Field(
        default=None, description="Team or user id; null for organization scope."
    )
    from_: datetime = Field(alias="from", description="Inclusive range start (UTC).")
    to: datetime = Field(description="Inclusive range end (UTC).")


class WindowResponse(BaseModel):
    window_start: datetime
    window_end: datetime = Field(
        description="Exclusive, except for the last window of a range where it is inclusive."
    )


# ---------------------------------------------------------------------------
# Pulse
# ---------------------------------------------------------------------------

class PulseWindow(WindowResponse):
    average: float = Field(description="Mean mood (1–5). 0.0 when count is 0.", examples=[4.0])
    count: int


class PulseResponse(RangeResponse):
    period: str
    windows: list[PulseWindow] = Field(description="Oldest first.")


# ---------------------------------------------------------------------------
# Shoutouts
# ---------------------------------------------------------------------------

class ShoutoutWindow(WindowResponse):
    count: int = Field(description="Count for the requested direction and visibility.")
    direction: str
    visibility: str
    given_public: int
    given_private: int
    received_public: int
    received_private: int
    all_public: int
    all_private: int


class ShoutoutResponse(RangeResponse):
    period: str
    windows: list[ShoutoutWindow]


# ---------------------------------------------------------------------------
# Compliance
# ---------------------------------------------------------------------------

class ComplianceWindow(WindowResponse):
    total_count: int
    on_time_count: int
    on_time_percentage: float = Field(description="0–100, two decimals.", examples=[83.33])
    average_days_early: Optional[float] = Field(
        default=None, description="Mean of negative deltas (days). Null when none."
    )
    average_days_late: Optional[float] = Field(
        default=None, description="Mean of positive deltas (days). Null when none."
    )
    vacation_count: int = Field(
        default=0, description="Submissions from vacation weeks; not counted as due."
    )


class ComplianceResponse(RangeResponse):
    period: str
    windows: list[ComplianceWindow]


# ---------------------------------------------------------------------------
# Leaderboard
# ---------------------------------------------------------------------------

class LeaderboardEntryResponse(BaseModel):
    user_id: str
    rank: int = Field(description="1-based. Ties are ordered by user id.")
    value: float


class LeaderboardResponse(RangeResponse):
    metric: str
    entries: list[LeaderboardEntryResponse]


# ---------------------------------------------------------------------------
# Overview
# ---------------------------------------------------------------------------

class OverviewSnapshotResponse(BaseModel):
    completed_checkins: int
    active_users: int
    expected_checkins: int = Field(
        description="Active users × weeks in range. An approximation, not a roster."
    )
    completion_rate: float = Field(description="Percent, two decimals. Not clamped.")
    wins: int
    shoutouts: int
    pulse_average: float


class OverviewResponse(RangeResponse):
    current: OverviewSnapshotResponse
    previous: OverviewSnapshotResponse = Field(
        description="Same metrics for the equal-length range just before `from`."
    )
    change: dict[str, float] = Field(
        description="Percent change per metric vs previous; 0 when the previous value is 0."
    )


# ---------------------------------------------------------------------------
# Backfill
# ---------------------------------------------------------------------------

class BackfillRequest(BaseModel):
    """Dates arrive as strings so unparseable values map to INVALID_DATE_RANGE."""
    model_config = ConfigDict(populate_by_name=True)

    from_: str = Field(alias="from", examples=["2024-01-01"])
    to: str = Field(examples=["2024-03-01"])


class BackfillResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    status: str = Field(examples=["initiated"])
    from_: datetime = Field(alias="from")
    to: datetime
    organization_id: str
    run_id: int
