"""Daily popularity decay pass over a band's songs.

Meant to be triggered by the game's scheduler once per simulated day.
Songs performed on the same UTC day as ``now`` are left alone; every other
song gets one ``decay_one`` tick. Only changed popularity is written back.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime

from core.config import DEFAULT_CONFIG, PopularityConfig
from core.song_fame.popularity import decay_one
from core.song_fame.ports import SongRepository
from core.song_fame.types import DecayReport, SongFailure, SongState
from infrastructure.metrics import record_decay

logger = logging.getLogger(__name__)


def _performed_on_day(song: SongState, now: datetime) -> bool:
    if song.last_gigged_at is None:
        return False
    last = song.last_gigged_at
    if last.tzinfo is None:
        last = last.replace(tzinfo=UTC)
    return last.astimezone(UTC).date() == now.astimezone(UTC).date()


def run_daily_decay(
    songs: SongRepository,
    band_id: str,
    now: datetime,
    config: PopularityConfig = DEFAULT_CONFIG.popularity,
) -> DecayReport:
    """Apply one decay tick to every song of a band not performed today.

    Args:
        songs: Song repository.
        band_id: Roster to process.
        now: Current timezone-aware datetime.
        config: Popularity tuning.

    Returns:
        DecayReport with ``changed`` mapping song id to (old, new) popularity,
        ``skipped`` songs performed today, and per-song ``failed`` entries.

    Raises:
        ValueError: If now has no timezone info.
    """
    if now.tzinfo is None:
        raise ValueError("now must be timezone-aware (use datetime.now(UTC))")

    report = DecayReport(band_id=band_id)
    for song in songs.list_band_songs(band_id):
        if _performed_on_day(song, now):
            report.skipped.append(song.song_id)
            continue
        try:
            new_popularity = decay_one(
                song.popularity,
                song.fame,
                song.last_gigged_at,
                song.is_fan_favourite,
                now,
                config,
            )
            if new_popularity == song.popularity:
                record_decay("unchanged")
                continue
            songs.update(song.song_id, {"popularity": new_popularity})
        except Exception as exc:
            logger.exception("decay: failed to update song %s", song.song_id)
            report.failed.append(SongFailure(song_id=song.song_id, error=str(exc)))
            record_decay("failed")
        else:
            report.changed[song.song_id] = (song.popularity, new_popularity)
            record_decay("changed")

    logger.info(
        "decay: band=%s changed=%d skipped=%d failed=%d",
        band_id,
        len(report.changed),
        len(report.skipped),
        len(report.failed),
    )
    return report
