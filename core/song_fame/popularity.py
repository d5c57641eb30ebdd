"""Popularity dynamics — pure, deterministic.

Popularity is a song's current buzz, kept within [0, 1000]. It rises when
the song is performed (with diminishing returns), is cut when a song is
performed too often in a short window, cools when the song is hot but
idle, and slowly recovers toward half its fame once long dormant.

All time-sensitive logic takes `now` as an explicit parameter.
No datetime.now() calls anywhere in this module.
"""

from __future__ import annotations

import math
from datetime import UTC, datetime

from core.config import PopularityConfig

DEFAULT_POPULARITY_CONFIG = PopularityConfig()

NEVER_PERFORMED_DAYS = 999
"""Days-since-gig reported for a song that was never performed live."""

_SECONDS_PER_DAY = 86400.0


def clamp_popularity(value: float, config: PopularityConfig = DEFAULT_POPULARITY_CONFIG) -> int:
    """Round half up and clamp to ``[min_popularity, max_popularity]``."""
    rounded = math.floor(value + 0.5)
    return max(config.min_popularity, min(config.max_popularity, rounded))


def performance_gain(
    gig_play_count: int,
    is_fan_favourite: bool,
    config: PopularityConfig = DEFAULT_POPULARITY_CONFIG,
) -> int:
    """Popularity gained from one live performance.

    ``round(15 / sqrt(max(1, n)) + (10 if favourite else 0))``, with halves
    rounded up. ``n`` is the play count *after* counting this performance,
    so a debut performance earns the full base gain.

    Args:
        gig_play_count: Lifetime performances including the current one.
        is_fan_favourite: Favourites get a flat bonus.
        config: Popularity tuning.

    Returns:
        Non-negative integer gain.
    """
    plays = max(1, gig_play_count)
    raw = config.base_gain / math.sqrt(plays)
    if is_fan_favourite:
        raw += config.fan_favourite_bonus
    return max(0, math.floor(raw + 0.5))


def overplay_penalty(
    recent_gig_count: int,
    config: PopularityConfig = DEFAULT_POPULARITY_CONFIG,
) -> int:
    """Popularity lost for performing a song too often in the trailing window.

    Args:
        recent_gig_count: Performances within the last
            ``config.overplay_window_days`` days, the current one included.
        config: Popularity tuning.

    Returns:
        ``(n - 2) * 20`` once ``n >= 3``, otherwise 0.
    """
    excess = max(0, recent_gig_count) - config.overplay_free_plays
    if excess <= 0:
        return 0
    return excess * config.overplay_penalty_step


def apply_performance(
    popularity: int,
    gig_play_count: int,
    is_fan_favourite: bool,
    recent_gig_count: int | None = None,
    config: PopularityConfig = DEFAULT_POPULARITY_CONFIG,
) -> int:
    """Popularity after one performance: gain, then optional penalty, then clamp.

    Args:
        popularity: Stored popularity before the performance.
        gig_play_count: Lifetime performances including this one.
        is_fan_favourite: Favourite status at the time of the performance.
        recent_gig_count: Trailing-window performance count. ``None`` skips
            the overplay penalty.
        config: Popularity tuning.
    """
    value = popularity + performance_gain(gig_play_count, is_fan_favourite, config)
    if recent_gig_count is not None:
        value -= overplay_penalty(recent_gig_count, config)
    return clamp_popularity(value, config)


def days_since(last_gigged_at: datetime | None, now: datetime) -> int:
    """Whole days elapsed since the last performance.

    Args:
        last_gigged_at: Last performance time. ``None`` means never performed.
            A naive value is read as UTC.
        now: Current datetime. Must be timezone-aware.

    Returns:
        Floor of elapsed days, 0 for timestamps in the future, and
        ``NEVER_PERFORMED_DAYS`` for ``None``.

    Raises:
        ValueError: If now has no timezone info.
    """
    if now.tzinfo is None:
        raise ValueError("now must be timezone-aware (use datetime.now(UTC))")
    if last_gigged_at is None:
        return NEVER_PERFORMED_DAYS
    if last_gigged_at.tzinfo is None:
        last_gigged_at = last_gigged_at.replace(tzinfo=UTC)
    elapsed = (now - last_gigged_at).total_seconds() / _SECONDS_PER_DAY
    return max(0, math.floor(elapsed))


def decay_one(
    popularity: int,
    fame: int,
    last_gigged_at: datetime | None,
    is_fan_favourite: bool,
    now: datetime,
    config: PopularityConfig = DEFAULT_POPULARITY_CONFIG,
) -> int:
    """Apply one decay tick (one simulated day) to a song not performed today.

    Evaluation order:

    1. Hot songs (popularity above 100) that were not performed today cool
       by 2, or by 1 for fan favourites.
    2. Songs dormant for 14+ days with fame above 200 recover by 5 toward
       ``fame // 2``, checked against the already-cooled value. Recovery
       never pushes past that ceiling and never lowers a value already at
       or above it.
    3. The result is clamped to [0, 1000].

    Args:
        popularity: Stored popularity. Out-of-range values are clamped first.
        fame: Stored fame.
        last_gigged_at: Last performance time, ``None`` if never performed.
        is_fan_favourite: Favourites cool more slowly.
        now: Current timezone-aware datetime.
        config: Popularity tuning.

    Returns:
        New popularity within [0, 1000].

    Raises:
        ValueError: If now has no timezone info.
    """
    days = days_since(last_gigged_at, now)
    value = clamp_popularity(popularity, config)

    if value > config.hot_threshold and days > 0:
        value -= (
            config.fan_favourite_decay_per_day if is_fan_favourite else config.decay_per_day
        )

    if days >= config.recovery_min_days and fame > config.recovery_min_fame:
        ceiling = fame // config.recovery_fame_divisor
        if value < ceiling:
            value = min(value + config.recovery_step, ceiling)

    return clamp_popularity(value, config)
