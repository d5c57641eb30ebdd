"""
Shared fixtures for the test suite.

Centralizes reusable test infrastructure so individual test files
don't need to repeat database and fake-collaborator boilerplate.
"""

from __future__ import annotations

import random
from collections.abc import Iterator, Mapping
from datetime import datetime
from typing import Any

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from core.song_fame.errors import SongNotFoundError
from core.song_fame.favourites import plan_slot_allocation
from core.song_fame.types import FameSources, SlotAllocation, SongState
from db.models import Band, Base, Song
from ingestion.song_store import SqlSongStore

# ---------------------------------------------------------------------------
# Fake collaborators
# ---------------------------------------------------------------------------


class InMemorySongStore:
    """Dict-backed stand-in for every store protocol — no database."""

    def __init__(self, songs: list[SongState] | None = None) -> None:
        self.songs: dict[str, SongState] = {s.song_id: s for s in songs or []}
        self.sources: dict[str, FameSources] = {}
        self.gigs: list[tuple[str, str | None, datetime]] = []
        self.updates: list[tuple[str, dict[str, Any]]] = []

    # SongRepository
    def get(self, song_id: str) -> SongState:
        try:
            return self.songs[song_id]
        except KeyError:
            raise SongNotFoundError(song_id) from None

    def update(self, song_id: str, fields: Mapping[str, Any]) -> None:
        self.songs[song_id] = self.get(song_id).evolve(**fields)
        self.updates.append((song_id, dict(fields)))

    def list_band_songs(self, band_id: str) -> list[SongState]:
        return [s for s in self.songs.values() if s.roster_id == band_id]

    # ConsumptionSignalReader
    def read_sources(self, song_id: str, gig_play_count: int) -> FameSources:
        base = self.sources.get(song_id, FameSources())
        return FameSources(
            streams=base.streams,
            sales=base.sales,
            radio_plays=base.radio_plays,
            hype=base.hype,
            countries=base.countries,
            gig_plays=gig_play_count,
        )

    # BandFavouritesStore
    def list_favourites(self, band_id: str) -> list[SongState]:
        return [s for s in self.list_band_songs(band_id) if s.is_fan_favourite]

    def allocate(self, song_id: str, band_id: str, now: datetime) -> SlotAllocation:
        if self.get(song_id).roster_id != band_id:
            return SlotAllocation(applied=False)
        decision = plan_slot_allocation(
            song_id, self.list_favourites(band_id), now, band_id=band_id
        )
        if not decision.applies:
            return SlotAllocation(applied=False)
        if decision.evict_song_id is not None:
            evicted = self.songs[decision.evict_song_id]
            self.songs[evicted.song_id] = evicted.evolve(
                is_fan_favourite=False, fan_favourite_at=None
            )
        self.songs[song_id] = self.get(song_id).evolve(is_fan_favourite=True, fan_favourite_at=now)
        return SlotAllocation(applied=True, evicted_song_id=decision.evict_song_id)

    # GigHistoryReader
    def count_recent_gigs(self, song_id: str, since: datetime) -> int:
        return sum(1 for sid, _, at in self.gigs if sid == song_id and at >= since)

    def record_gig(self, song_id: str, band_id: str | None, performed_at: datetime) -> None:
        self.gigs.append((song_id, band_id, performed_at))


class RecordingNotifier:
    """Collects fan-favourite events."""

    def __init__(self) -> None:
        self.events: list[tuple[str, str, str | None]] = []

    def notify(self, song: SongState, band_id: str, evicted_song_id: str | None) -> None:
        self.events.append((song.song_id, band_id, evicted_song_id))


class FixedRandom(random.Random):
    """``random()`` always returns the same draw."""

    def __init__(self, value: float) -> None:
        super().__init__(0)
        self.value = value
        self.draws = 0

    def random(self) -> float:
        self.draws += 1
        return self.value


# ---------------------------------------------------------------------------
# Database fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def session_factory() -> Iterator[sessionmaker[Session]]:
    """Fresh in-memory SQLite database with the full schema."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    yield factory
    engine.dispose()


@pytest.fixture()
def sql_store(session_factory: sessionmaker[Session]) -> SqlSongStore:
    return SqlSongStore(session_factory)


@pytest.fixture()
def add_song(session_factory: sessionmaker[Session]):
    """Factory inserting a song (and its band row when missing)."""

    def _add(song_id: str, band_id: str | None = "band-1", **fields: Any) -> None:
        with session_factory.begin() as session:
            if band_id is not None and session.get(Band, band_id) is None:
                session.add(Band(id=band_id, name=band_id))
                session.flush()
            session.add(Song(id=song_id, band_id=band_id, title=song_id, **fields))

    return _add


# ---------------------------------------------------------------------------
# Fake collaborator fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def memory_store():
    """Factory building an ``InMemorySongStore`` seeded with songs."""

    def _make(*songs: SongState) -> InMemorySongStore:
        return InMemorySongStore(list(songs))

    return _make


@pytest.fixture()
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture()
def fixed_random():
    """Factory for a ``random.Random`` whose draws are always ``value``."""
    return FixedRandom
