"""Prometheus metrics for the song fame engine.

Exposes game-level counters so balance dashboards show how often songs
become fan favourites, how often slots are contended and how many post-gig
updates fail.

Metrics:
    sfe_songs_processed_total            Counter by status (updated/failed/timeout)
    sfe_song_processing_seconds          Histogram of per-song post-gig latency
    sfe_fan_favourites_granted_total     Counter by mode (free_slot/evicted)
    sfe_fan_favourite_denied_total       Successful rolls with no slot available
    sfe_slot_allocation_conflicts_total  Lost optimistic version checks
    sfe_decay_songs_total                Counter by outcome (changed/unchanged/failed)

Usage::

    from infrastructure.metrics import record_song_processed, LatencyTimer

    with LatencyTimer() as t:
        process(song)
    record_song_processed(status="updated", latency_seconds=t.elapsed)
"""

from __future__ import annotations

import logging
import time

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Histogram,
    generate_latest,
)

logger = logging.getLogger(__name__)

_REGISTRY = CollectorRegistry()

songs_processed_total = Counter(
    "sfe_songs_processed_total",
    "Post-gig song updates by status",
    ["status"],
    registry=_REGISTRY,
)

song_processing_seconds = Histogram(
    "sfe_song_processing_seconds",
    "Per-song post-gig update latency in seconds",
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
    registry=_REGISTRY,
)

fan_favourites_granted_total = Counter(
    "sfe_fan_favourites_granted_total",
    "Fan-favourite grants by mode",
    ["mode"],
    registry=_REGISTRY,
)

fan_favourite_denied_total = Counter(
    "sfe_fan_favourite_denied_total",
    "Successful fan-favourite rolls that found no replaceable slot",
    registry=_REGISTRY,
)

slot_allocation_conflicts_total = Counter(
    "sfe_slot_allocation_conflicts_total",
    "Favourite slot allocations that lost the band version check",
    registry=_REGISTRY,
)

decay_songs_total = Counter(
    "sfe_decay_songs_total",
    "Songs visited by the daily decay job by outcome",
    ["outcome"],
    registry=_REGISTRY,
)


def record_song_processed(*, status: str, latency_seconds: float | None = None) -> None:
    """Record one post-gig song update.

    Args:
        status: One of "updated", "failed", "timeout".
        latency_seconds: Wall-clock time spent on the song, if measured.
    """
    songs_processed_total.labels(status=status).inc()
    if latency_seconds is not None:
        song_processing_seconds.observe(latency_seconds)


def record_favourite_granted(*, evicted: bool) -> None:
    """Increment the grant counter, split by whether a slot was freed by eviction."""
    fan_favourites_granted_total.labels(mode="evicted" if evicted else "free_slot").inc()


def record_favourite_denied() -> None:
    fan_favourite_denied_total.inc()


def record_slot_conflict(_exc: Exception | None = None) -> None:
    """Increment the conflict counter. Signature fits ``with_retry(on_retry=...)``."""
    slot_allocation_conflicts_total.inc()


def record_decay(outcome: str) -> None:
    decay_songs_total.labels(outcome=outcome).inc()


def get_metrics_response() -> tuple[bytes, str]:
    """Generate Prometheus text exposition format.

    Returns:
        Tuple of (body_bytes, content_type_string).
    """
    return generate_latest(_REGISTRY), CONTENT_TYPE_LATEST


class LatencyTimer:
    """Context manager for measuring latency.

    Usage::

        with LatencyTimer() as t:
            result = run_pipeline()
        record_song_processed(status="updated", latency_seconds=t.elapsed)
    """

    def __init__(self) -> None:
        """Initialize timer."""
        self._start: float = 0.0
        self.elapsed: float = 0.0

    def __enter__(self) -> LatencyTimer:
        """Start timing."""
        self._start = time.perf_counter()
        return self

    def __exit__(self, *_: object) -> None:
        """Stop timing and record elapsed."""
        self.elapsed = time.perf_counter() - self._start
