"""
Collaborator protocols for the song fame engine.

Defines the contracts the post-gig pipeline and the decay job consume.
This module is pure — no I/O, no network calls, no side effects.
Concrete implementations (SQLAlchemy, logging notifier) live outside core/.
"""

from collections.abc import Callable, Mapping
from datetime import datetime
from typing import Any, Protocol, runtime_checkable

from core.song_fame.types import FameSources, SlotAllocation, SongState

Clock = Callable[[], datetime]
"""Zero-argument callable returning the current timezone-aware datetime."""


@runtime_checkable
class SongRepository(Protocol):
    """Read and partially update song rows by id."""

    def get(self, song_id: str) -> SongState:
        """
        Load one song.

        Raises:
            SongNotFoundError: If no song has this id.
        """
        ...

    def update(self, song_id: str, fields: Mapping[str, Any]) -> None:
        """
        Write the given ``SongState`` field names to the song row.

        Raises:
            SongNotFoundError: If no song has this id.
        """
        ...

    def list_band_songs(self, band_id: str) -> list[SongState]:
        """All songs whose ``roster_id`` is ``band_id``, archived ones included."""
        ...


@runtime_checkable
class ConsumptionSignalReader(Protocol):
    """Gathers the consumption signals the fame aggregator needs."""

    def read_sources(self, song_id: str, gig_play_count: int) -> FameSources:
        """
        Collect stream, sales, radio, hype and country totals for a song.

        ``gig_play_count`` is passed in because the pipeline has already
        counted the current performance before the row is written.
        """
        ...


@runtime_checkable
class BandFavouritesStore(Protocol):
    """Owns a band's fan-favourite slots."""

    def list_favourites(self, band_id: str) -> list[SongState]:
        """Current favourites of a band, oldest grant first."""
        ...

    def allocate(self, song_id: str, band_id: str, now: datetime) -> SlotAllocation:
        """
        Try to give ``song_id`` a favourite slot, evicting the oldest if allowed.

        ``band_id`` is the song's own roster id; a song from another roster
        is never granted. Must be atomic per band: two concurrent calls can
        never both take the last free slot.
        """
        ...


@runtime_checkable
class GigHistoryReader(Protocol):
    """Per-performance history used for the overplay window."""

    def count_recent_gigs(self, song_id: str, since: datetime) -> int:
        """Performances of a song at or after ``since``."""
        ...

    def record_gig(self, song_id: str, band_id: str | None, performed_at: datetime) -> None:
        """Append one performance to the history."""
        ...


@runtime_checkable
class FavouriteNotifier(Protocol):
    """Fire-and-forget sink for "song became a fan favourite" events."""

    def notify(self, song: SongState, band_id: str, evicted_song_id: str | None) -> None:
        ...
