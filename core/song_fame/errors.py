"""Exceptions raised by song fame stores and the post-gig pipeline.

Pure functions in ``core/song_fame`` clamp bad in-domain values instead of
raising. These types are for data-access boundaries and invariant breaches.
"""

from __future__ import annotations


class SongFameError(Exception):
    """Base class for every error raised by the song fame engine."""


class SongNotFoundError(SongFameError, KeyError):
    """Raised when a repository has no song with the requested id."""

    def __init__(self, song_id: str) -> None:
        self.song_id = song_id
        super().__init__(f"song not found: {song_id!r}")

    def __str__(self) -> str:
        return self.args[0]


class StaleFavouriteSlotsError(SongFameError):
    """Raised when another writer changed a band's favourites mid-allocation.

    The allocation was rolled back; re-reading and deciding again is safe.
    """

    def __init__(self, band_id: str, expected_version: int) -> None:
        self.band_id = band_id
        self.expected_version = expected_version
        super().__init__(
            f"favourite slots of band {band_id!r} changed since version {expected_version}"
        )


class FavouriteSlotInvariantError(SongFameError):
    """Raised when a band holds more fan favourites than it has slots.

    This is never recovered from: it means some writer bypassed the atomic
    allocator, and truncating would hide the bug.
    """

    def __init__(self, band_id: str | None, count: int, max_slots: int) -> None:
        self.band_id = band_id
        self.count = count
        self.max_slots = max_slots
        super().__init__(
            f"band {band_id!r} has {count} fan favourites, more than the {max_slots} allowed"
        )


class SongProcessingTimeoutError(SongFameError, TimeoutError):
    """Raised when one song's post-gig update exceeds its time budget."""

    def __init__(self, song_id: str, timeout_seconds: float) -> None:
        self.song_id = song_id
        self.timeout_seconds = timeout_seconds
        super().__init__(f"processing song {song_id!r} exceeded {timeout_seconds:g}s")
