"""
Analytics read engine — chooses between live computation and the aggregate
store for each request.

ReadStrategy
------------
live_only                  compute from raw events
aggregate_with_fallback    serve stored buckets; compute misses live
shadow_compare             serve live; compare against stored buckets
aggregate_shadow_compare   serve stored/fallback; compare against live

Leaderboard and overview are never aggregated and always read live.
With write-through enabled, windows computed live after an aggregate miss are
upserted so the next read hits.

Public API
----------
ReadStrategy.from_flags(use_aggregates, enable_shadow_reads) -> ReadStrategy
get_read_strategy()                                          -> ReadStrategy
AnalyticsEngine(db).read(query)                              -> ReadResult
"""
from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.config import Settings, settings
from app.core.logging import get_logger
from app.services import aggregate_store
from app.services.aggregate_store import AggregateKey
from app.services.aggregator import MetricAggregator, MetricQuery, load_organization
from app.services.metrics import AGGREGATABLE_METRICS, WindowMetrics, from_storage
from app.services.periods import utc_now
from app.services.shadow_reads import ShadowReport, run_shadow

logger = get_logger(__name__)


class ReadStrategy(str, enum.Enum):
    live_only = "live_only"
    aggregate_with_fallback = "aggregate_with_fallback"
    shadow_compare = "shadow_compare"
    aggregate_shadow_compare = "aggregate_shadow_compare"

    @classmethod
    def from_flags(cls, use_aggregates: bool, enable_shadow_reads: bool) -> "ReadStrategy":
        if use_aggregates and enable_shadow_reads:
            return cls.aggregate_shadow_compare
        if use_aggregates:
            return cls.aggregate_with_fallback
        if enable_shadow_reads:
            return cls.shadow_compare
        return cls.live_only

    @classmethod
    def from_settings(cls, config: Settings) -> "ReadStrategy":
        if config.READ_STRATEGY:
            return cls(config.READ_STRATEGY)
        return cls.from_flags(config.USE_AGGREGATES, config.ENABLE_SHADOW_READS)


def get_read_strategy() -> ReadStrategy:
    return ReadStrategy.from_settings(settings)


@dataclass
class ReadResult:
    windows: list[WindowMetrics]
    source: str                       # "live", "aggregate" or "mixed"
    shadow: Optional[ShadowReport] = None


class AnalyticsEngine:
    def __init__(
        self,
        db: Session,
        strategy: Optional[ReadStrategy] = None,
        write_through: Optional[bool] = None,
        aggregator: Optional[MetricAggregator] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.db = db
        self.strategy = strategy or get_read_strategy()
        self.write_through = (
            settings.AGGREGATE_WRITE_THROUGH if write_through is None else write_through
        )
        self.aggregator = aggregator or MetricAggregator(db)
        self.clock = clock

    def read(self, query: MetricQuery) -> ReadResult:
        if (
            query.metric_type not in AGGREGATABLE_METRICS
            or self.strategy == ReadStrategy.live_only
        ):
            return ReadResult(windows=self.aggregator.compute(query), source="live")

        if self.strategy == ReadStrategy.aggregate_with_fallback:
            return self._read_aggregate(query)

        if self.strategy == ReadStrategy.shadow_compare:
            result = ReadResult(windows=self.aggregator.compute(query), source="live")
            result.shadow = run_shadow(
                _context(query), result.windows,
                lambda: self._shadow(lambda: self._stored_only(query)),
                primary_source="live", shadow_source="aggregate",
            )
            return result

        result = self._read_aggregate(query)
        result.shadow = run_shadow(
            _context(query), result.windows,
            lambda: self._shadow(lambda: self.aggregator.compute(query)),
            primary_source="aggregate", shadow_source="live",
        )
        return result

    # -- aggregate path -----------------------------------------------------

    def _validate(self, query: MetricQuery) -> None:
        """Surface not-found and scope errors even when every window is stored."""
        load_organization(self.db, query.organization_id)
        self.aggregator.resolve_users(query)

    def _stored(self, query: MetricQuery) -> dict:
        try:
            return aggregate_store.get_many(self.db, query, query.windows())
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.warning("aggregate_read_failed", error=str(exc), **_context(query))
            return {}

    def _decode(self, query: MetricQuery, stored) -> Any:
        return from_storage(
            query.metric_type, stored.value,
            direction=query.direction, visibility=query.visibility,
        )

    def _stored_only(self, query: MetricQuery) -> list[WindowMetrics]:
        hits = aggregate_store.get_many(self.db, query, query.windows())
        return [
            WindowMetrics(w, self._decode(query, hits[w]))
            for w in query.windows() if w in hits
        ]

    def _read_aggregate(self, query: MetricQuery) -> ReadResult:
        self._validate(query)
        windows = query.windows()
        hits = self._stored(query)
        missing = [w for w in windows if w not in hits]

        live: dict = {}
        if missing:
            computed_at = self.clock()
            live = {wm.window: wm.metrics for wm in self.aggregator.compute(query)}
            logger.info(
                "aggregate_miss",
                missing=len(missing), total=len(windows), **_context(query),
            )
            if self.write_through:
                self._write_through(query, missing, live, computed_at)

        out = [
            WindowMetrics(w, self._decode(query, hits[w])) if w in hits
            else WindowMetrics(w, live[w])
            for w in windows
        ]
        if not missing:
            source = "aggregate"
        elif len(missing) == len(windows):
            source = "live"
        else:
            source = "mixed"
        return ReadResult(windows=out, source=source)

    def _write_through(self, query: MetricQuery, missing, live: dict, computed_at: datetime) -> None:
        for window in missing:
            try:
                aggregate_store.upsert(
                    self.db,
                    AggregateKey.for_window(query, window),
                    window,
                    live[window].to_storage(),
                    computed_at,
                )
            except SQLAlchemyError as exc:
                self.db.rollback()
                logger.warning(
                    "aggregate_write_through_failed",
                    window=window.label(), error=str(exc), **_context(query),
                )

    def _shadow(self, read: Callable[[], list[WindowMetrics]]) -> list[WindowMetrics]:
        try:
            return read()
        except Exception:
            self.db.rollback()
            raise


def _context(query: MetricQuery) -> dict[str, Any]:
    return {
        "organization_id": query.organization_id,
        "scope": query.scope.kind.value,
        "entity_id": query.scope.entity_id,
        "metric_type": query.metric_type.value,
        "period": query.period.value,
    }
