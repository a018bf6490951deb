"""
Shadow-read comparator.

Runs the non-primary read path next to the primary one and compares the two
window by window. Every divergence is logged as a `stale_aggregate` warning;
nothing here ever changes what the caller returns, and a failing shadow read
is logged and swallowed.

Windows the shadow path has no value for (e.g. never-aggregated buckets) are
counted as skipped, not as divergences.
"""
from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Sequence

from app.core.logging import get_logger
from app.services.metrics import WindowMetrics
from app.services.periods import Window

logger = get_logger(__name__)


@dataclass(frozen=True)
class Divergence:
    window: Window
    primary: dict[str, Any]
    shadow: dict[str, Any]


@dataclass
class ShadowReport:
    primary_source: str
    shadow_source: str
    compared: int = 0
    skipped: int = 0
    divergences: list[Divergence] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def matched(self) -> bool:
        return self.error is None and not self.divergences


def values_match(a: Any, b: Any) -> bool:
    """Structural equality, floats compared with math.isclose."""
    if isinstance(a, dict) and isinstance(b, dict):
        return a.keys() == b.keys() and all(values_match(a[k], b[k]) for k in a)
    if isinstance(a, (list, tuple)) and isinstance(b, (list, tuple)):
        return len(a) == len(b) and all(values_match(x, y) for x, y in zip(a, b))
    if isinstance(a, bool) or isinstance(b, bool):
        return a == b
    if isinstance(a, (int, float)) and isinstance(b, (int, float)):
        return math.isclose(a, b, rel_tol=1e-9, abs_tol=1e-9)
    return a == b


def compare(
    context: dict[str, Any],
    primary: Sequence[WindowMetrics],
    shadow: Sequence[WindowMetrics],
    primary_source: str,
    shadow_source: str,
) -> ShadowReport:
    report = ShadowReport(primary_source=primary_source, shadow_source=shadow_source)
    shadow_by_window = {wm.window: wm for wm in shadow}

    for wm in primary:
        other = shadow_by_window.get(wm.window)
        if other is None:
            report.skipped += 1
            continue
        report.compared += 1
        primary_value = wm.metrics.to_dict()
        shadow_value = other.metrics.to_dict()
        if values_match(primary_value, shadow_value):
            continue
        report.divergences.append(Divergence(wm.window, primary_value, shadow_value))
        logger.warning(
            "stale_aggregate",
            **context,
            window_start=wm.window.start.isoformat(),
            window_end=wm.window.end.isoformat(),
            **{primary_source: primary_value, shadow_source: shadow_value},
        )
    return report


def run_shadow(
    context: dict[str, Any],
    primary: Sequence[WindowMetrics],
    shadow_read: Callable[[], Sequence[WindowMetrics]],
    primary_source: str,
    shadow_source: str,
) -> ShadowReport:
    """Execute `shadow_read` and compare; never raises."""
    try:
        shadow = shadow_read()
        return compare(context, primary, shadow, primary_source, shadow_source)
    except Exception as exc:  # noqa: BLE001
        logger.exception("shadow_read_failed", shadow_source=shadow_source, **context)
        return ShadowReport(
            primary_source=primary_source,
            shadow_source=shadow_source,
            error=f"{type(exc).__name__}: {exc}",
        )
