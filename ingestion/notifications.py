"""Fan-favourite event sink backed by the standard logger.

The game's notification feed subscribes to the ``song_fame.favourites``
logger; the announcement line is the same crowd copy the gig commentary
uses for a favourite.
"""

from __future__ import annotations

import logging
import random

from core.song_fame.types import SongState

logger = logging.getLogger("song_fame.favourites")

FAN_FAVOURITE_ANNOUNCEMENTS: tuple[str, ...] = (
    "FAN FAVOURITE! The crowd SCREAMS as '{song}' starts, this is THEIR song!",
    "'{song}' is now the fans' absolute FAVOURITE!",
    "The chant starts before the first note: '{song}! {song}!' The fans have spoken!",
    "Pure LOVE from the crowd for '{song}', you can feel the connection!",
)


class LoggingFavouriteNotifier:
    """Emit one INFO record per new fan favourite.

    Args:
        rng: Picks the announcement line. Seed it for reproducible logs.
    """

    def __init__(self, rng: random.Random | None = None) -> None:
        self._rng = rng or random.Random()

    def announcement(self, song: SongState) -> str:
        return self._rng.choice(FAN_FAVOURITE_ANNOUNCEMENTS).format(song=song.song_id)

    def notify(self, song: SongState, band_id: str, evicted_song_id: str | None) -> None:
        logger.info(
            "fan favourite: band=%s song=%s replaced=%s | %s",
            band_id,
            song.song_id,
            evicted_song_id or "-",
            self.announcement(song),
        )
