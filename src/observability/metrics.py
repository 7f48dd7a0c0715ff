"""Metrics for scoring observability.

Counters and histograms are registered on the default prometheus_client
registry, which the HTTP API serves under ``/metrics``.
"""

from __future__ import annotations

from typing import Final

from prometheus_client import Counter, Histogram

AWARD_REQUESTS_TOTAL: Final[Counter] = Counter(
    "bpal_award_requests_total",
    "Award-points requests by event type and outcome",
    labelnames=("event_type", "outcome"),
)

POINTS_AWARDED_TOTAL: Final[Counter] = Counter(
    "bpal_points_awarded_total",
    "Absolute points written to the ledger for primary entries",
    labelnames=("event_type", "direction"),
)

DUPLICATE_REQUESTS_TOTAL: Final[Counter] = Counter(
    "bpal_duplicate_requests_total",
    "Requests rejected by the duplicate guard",
    labelnames=("event_type",),
)

SECONDARY_EFFECT_FAILURES_TOTAL: Final[Counter] = Counter(
    "bpal_secondary_effect_failures_total",
    "Best-effort side effects that failed and were rolled back",
    labelnames=("effect",),
)

MILESTONES_REACHED_TOTAL: Final[Counter] = Counter(
    "bpal_milestones_reached_total",
    "Daily ticket milestones announced",
    labelnames=("milestone",),
)

BADGES_AWARDED_TOTAL: Final[Counter] = Counter(
    "bpal_badges_awarded_total",
    "Badges awarded",
    labelnames=("badge_id",),
)

BADGE_CYCLE_RUNS_TOTAL: Final[Counter] = Counter(
    "bpal_badge_cycle_runs_total",
    "Daily badge cycle invocations by final status",
    labelnames=("status",),
)

AWARD_REQUEST_DURATION_SECONDS: Final[Histogram] = Histogram(
    "bpal_award_request_duration_seconds",
    "Duration of award-points processing in seconds",
    labelnames=("event_type",),
)

BADGE_CYCLE_DURATION_SECONDS: Final[Histogram] = Histogram(
    "bpal_badge_cycle_duration_seconds",
    "Duration of daily badge cycle runs in seconds",
)

__all__ = [
    "AWARD_REQUESTS_TOTAL",
    "AWARD_REQUEST_DURATION_SECONDS",
    "BADGES_AWARDED_TOTAL",
    "BADGE_CYCLE_DURATION_SECONDS",
    "BADGE_CYCLE_RUNS_TOTAL",
    "DUPLICATE_REQUESTS_TOTAL",
    "MILESTONES_REACHED_TOTAL",
    "POINTS_AWARDED_TOTAL",
    "SECONDARY_EFFECT_FAILURES_TOTAL",
]
