"""
Aggregate store — persisted per-window metric values.

Identity: (organization_id, scope, entity_id, metric_type, period, window_start).
Every write is an upsert: a single INSERT ... ON CONFLICT DO UPDATE on
PostgreSQL and SQLite, query-then-update on anything else. Last write wins on
`computed_at`: a row is never replaced by a value computed earlier than the
one it holds.

A stored row is a hit only when
  - its window_end equals the requested window's end (clipped edge windows
    share a start with the full-width bucket),
  - it was computed for a window with the same closedness (a range ending on
    a period boundary yields a closed [start, B] bucket that counts events at
    B; the half-open [start, B) bucket of a wider range does not), and
  - no completed backfill run overlapping the window started after the row
    was computed (the run did not rewrite it).

Public API
----------
AggregateKey.for_window(query, window)       -> AggregateKey
get(db, key, window)                         -> StoredAggregate | None
get_many(db, query, windows)                 -> dict[Window, StoredAggregate]
upsert(db, key, window, value, computed_at)
"""
from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional, Sequence

from sqlalchemy.orm import Session

from app.core.logging import get_logger
from app.models.aggregate_bucket import AggregateBucket
from app.models.backfill_run import BackfillRun, BackfillStatus
from app.services.aggregator import MetricQuery
from app.services.metrics import MetricType
from app.services.periods import Period, Window, as_utc

logger = get_logger(__name__)

_IDENTITY = ("organization_id", "scope", "entity_id", "metric_type", "period", "window_start")

_FINISHED = (BackfillStatus.completed.value, BackfillStatus.completed_with_errors.value)


# ---------------------------------------------------------------------------
# Types
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class AggregateKey:
    organization_id: str
    scope: str
    entity_id: str
    metric_type: MetricType
    period: Period
    window_start: datetime

    @classmethod
    def for_window(cls, query: MetricQuery, window: Window) -> "AggregateKey":
        return cls(
            organization_id=query.organization_id,
            scope=query.scope.kind.value,
            entity_id=query.scope.entity_id,
            metric_type=query.metric_type,
            period=query.period,
            window_start=as_utc(window.start),
        )

    def as_row(self) -> dict[str, Any]:
        return {
            "organization_id": self.organization_id,
            "scope": self.scope,
            "entity_id": self.entity_id,
            "metric_type": self.metric_type.value,
            "period": self.period.value,
            "window_start": self.window_start,
        }


@dataclass(frozen=True)
class StoredAggregate:
    key: AggregateKey
    window_end: datetime
    closed: bool
    value: dict[str, Any]
    computed_at: datetime


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _to_stored(key: AggregateKey, row: AggregateBucket) -> StoredAggregate:
    return StoredAggregate(
        key=key,
        window_end=as_utc(row.window_end),
        closed=bool(row.window_closed),
        value=json.loads(row.value),
        computed_at=as_utc(row.computed_at),
    )


def _finished_runs(db: Session, organization_id: str) -> list[tuple[datetime, datetime, datetime]]:
    """(range_start, range_end, started_at) of every finished backfill run."""
    rows = (
        db.query(BackfillRun)
        .filter(
            BackfillRun.organization_id == organization_id,
            BackfillRun.status.in_(_FINISHED),
            BackfillRun.started_at.is_not(None),
        )
        .all()
    )
    return [(as_utc(r.range_start), as_utc(r.range_end), as_utc(r.started_at)) for r in rows]


def _is_stale(
    stored: StoredAggregate,
    runs: Sequence[tuple[datetime, datetime, datetime]],
) -> bool:
    for range_start, range_end, started_at in runs:
        overlaps = range_start <= stored.window_end and range_end >= stored.key.window_start
        if overlaps and started_at > stored.computed_at:
            return True
    return False


def _hit(
    stored: StoredAggregate,
    window: Window,
    runs: Sequence[tuple[datetime, datetime, datetime]],
) -> bool:
    if stored.window_end != as_utc(window.end) or stored.closed != window.closed:
        return False
    if _is_stale(stored, runs):
        logger.debug(
            "aggregate_superseded_by_backfill",
            organization_id=stored.key.organization_id,
            metric_type=stored.key.metric_type.value,
            window_start=stored.key.window_start.isoformat(),
        )
        return False
    return True


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------

def get(db: Session, key: AggregateKey, window: Window) -> Optional[StoredAggregate]:
    row = db.query(AggregateBucket).filter_by(**key.as_row()).first()
    if row is None:
        return None
    stored = _to_stored(key, row)
    if not _hit(stored, window, _finished_runs(db, key.organization_id)):
        return None
    return stored


def get_many(
    db: Session,
    query: MetricQuery,
    windows: Sequence[Window],
) -> dict[Window, StoredAggregate]:
    """Fresh stored rows for `windows`, keyed by window. Absent windows are misses."""
    if not windows:
        return {}
    keys = {AggregateKey.for_window(query, w): w for w in windows}
    by_start = {k.window_start: k for k in keys}
    rows = (
        db.query(AggregateBucket)
        .filter(
            AggregateBucket.organization_id == query.organization_id,
            AggregateBucket.scope == query.scope.kind.value,
            AggregateBucket.entity_id == query.scope.entity_id,
            AggregateBucket.metric_type == query.metric_type.value,
            AggregateBucket.period == query.period.value,
            AggregateBucket.window_start.in_(list(by_start)),
        )
        .all()
    )
    runs = _finished_runs(db, query.organization_id)

    hits: dict[Window, StoredAggregate] = {}
    for row in rows:
        key = by_start.get(as_utc(row.window_start))
        if key is None:
            continue
        window = keys[key]
        stored = _to_stored(key, row)
        if _hit(stored, window, runs):
            hits[window] = stored
    return hits


# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------

def upsert(
    db: Session,
    key: AggregateKey,
    window: Window,
    value: dict[str, Any],
    computed_at: datetime,
) -> None:
    """Insert or overwrite one bucket and commit."""
    row = key.as_row()
    row.update(
        window_end=as_utc(window.end),
        window_closed=window.closed,
        value=json.dumps(value, sort_keys=True),
        computed_at=as_utc(computed_at),
    )

    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
    elif dialect == "sqlite":
        from sqlalchemy.dialects.sqlite import insert
    else:
        _upsert_generic(db, key, row)
        db.commit()
        return

    stmt = insert(AggregateBucket).values(**row)
    stmt = stmt.on_conflict_do_update(
        index_elements=list(_IDENTITY),
        set_={
            "window_end": stmt.excluded.window_end,
            "window_closed": stmt.excluded.window_closed,
            "value": stmt.excluded.value,
            "computed_at": stmt.excluded.computed_at,
        },
        where=stmt.excluded.computed_at >= AggregateBucket.computed_at,
    )
    db.execute(stmt)
    db.commit()


def _upsert_generic(db: Session, key: AggregateKey, row: dict[str, Any]) -> None:
    existing = db.query(AggregateBucket).filter_by(**key.as_row()).first()
    if existing is None:
        db.add(AggregateBucket(**row))
        return
    if as_utc(existing.computed_at) > row["computed_at"]:
        return
    existing.window_end = row["window_end"]
    existing.window_closed = row["window_closed"]
    existing.value = row["value"]
    existing.computed_at = row["computed_at"]
