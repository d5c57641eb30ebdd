"""SQLAlchemy-backed store for song fame state.

One class, ``SqlSongStore``, implements every collaborator the post-gig
pipeline needs: the song repository, the consumption signal reader, the
band favourites store and the gig history. Each method runs in its own
short transaction from the injected ``sessionmaker``.

Favourite slot allocation is optimistic: the band's ``favourite_version``
is read with the favourites, the slot decision is made in Python, and the
writes commit only if a conditional ``UPDATE bands ... WHERE
favourite_version = :read_version`` matches exactly one row. A lost race
rolls back and is retried from a fresh read.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import ColumnElement, and_, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from core.config import DEFAULT_CONFIG, EngineConfig
from core.song_fame.errors import SongNotFoundError, StaleFavouriteSlotsError
from core.song_fame.favourites import plan_slot_allocation
from core.song_fame.types import SOLO_ROSTER_PREFIX, FameSources, SlotAllocation, SongState
from db.models import Band, GigSongPlay, RadioPlay, ReleaseSale, Song, SongHype, StreamingStat
from infrastructure.metrics import record_slot_conflict
from infrastructure.retry import with_retry

logger = logging.getLogger(__name__)

_UPDATABLE_FIELDS: frozenset[str] = frozenset(
    {
        "fame",
        "popularity",
        "gig_play_count",
        "last_gigged_at",
        "is_fan_favourite",
        "fan_favourite_at",
        "quality_score",
        "archived",
    }
)

_ALLOCATION_ATTEMPTS = 5


def _aware(value: datetime | None) -> datetime | None:
    """SQLite hands back naive datetimes; everything stored here is UTC."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=UTC)


def _utc(value: Any) -> Any:
    """Normalise aware datetimes to UTC before they are written or compared."""
    if isinstance(value, datetime) and value.tzinfo is not None:
        return value.astimezone(UTC)
    return value


def _row_to_state(row: Song) -> SongState:
    """Convert an ORM row to a SongState."""
    return SongState(
        song_id=row.id,
        band_id=row.band_id,
        artist_id=row.artist_id,
        fame=row.fame,
        popularity=row.popularity,
        gig_play_count=row.gig_play_count,
        last_gigged_at=_aware(row.last_gigged_at),
        is_fan_favourite=row.is_fan_favourite,
        fan_favourite_at=_aware(row.fan_favourite_at),
        quality_score=row.quality_score,
        archived=row.archived,
    )


def _roster_clause(roster_id: str) -> ColumnElement[bool]:
    """Songs of a band, or of a solo artist for ``solo:<artist_id>`` ids."""
    if roster_id.startswith(SOLO_ROSTER_PREFIX):
        return and_(
            Song.band_id.is_(None),
            Song.artist_id == roster_id.removeprefix(SOLO_ROSTER_PREFIX),
        )
    return Song.band_id == roster_id


class SqlSongStore:
    """Relational store for songs, consumption signals and favourite slots.

    Thread-safety: every call opens its own session, so one instance may be
    shared by concurrent gig pipelines.

    Args:
        session_factory: ``sessionmaker`` bound to the game database.
            Defaults to ``db.session.SessionLocal``.
        config: Engine config; the favourite slot policy is read from it.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session] | None = None,
        config: EngineConfig = DEFAULT_CONFIG,
    ) -> None:
        if session_factory is None:
            from db.session import SessionLocal

            session_factory = SessionLocal
        self._session_factory = session_factory
        self._config = config

    # ------------------------------------------------------------------ #
    # Song repository                                                      #
    # ------------------------------------------------------------------ #

    def get(self, song_id: str) -> SongState:
        """Load one song.

        Raises:
            SongNotFoundError: If no song has this id.
        """
        with self._session_factory() as session:
            row = session.get(Song, song_id)
            if row is None:
                raise SongNotFoundError(song_id)
            return _row_to_state(row)

    def update(self, song_id: str, fields: Mapping[str, Any]) -> None:
        """Write ``SongState`` fields to the song row.

        Args:
            song_id: Song to update.
            fields: Mapping of field name to new value. ``song_id`` and
                ``band_id`` are not writable here.

        Raises:
            ValueError: On unknown fields or popularity outside [0, 1000].
            SongNotFoundError: If no song has this id.
        """
        unknown = set(fields) - _UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"cannot update song fields {sorted(unknown)}")
        if not fields:
            return
        popularity = fields.get("popularity")
        if popularity is not None and not 0 <= popularity <= 1000:
            raise ValueError(f"popularity must be within [0, 1000], got {popularity}")

        with self._session_factory.begin() as session:
            values = {k: _utc(v) for k, v in fields.items()}
            result = session.execute(update(Song).where(Song.id == song_id).values(**values))
            if result.rowcount == 0:
                raise SongNotFoundError(song_id)

    def list_band_songs(self, band_id: str) -> list[SongState]:
        """All songs on a roster, archived ones included.

        ``band_id`` is a band id or a ``solo:<artist_id>`` roster id.
        """
        with self._session_factory() as session:
            rows = session.scalars(select(Song).where(_roster_clause(band_id)).order_by(Song.id))
            return [_row_to_state(r) for r in rows]

    # ------------------------------------------------------------------ #
    # Consumption signals                                                  #
    # ------------------------------------------------------------------ #

    def read_sources(self, song_id: str, gig_play_count: int) -> FameSources:
        """Gather the six fame inputs for a song.

        Countries are the distinct country codes with positive streams or
        any recorded sale.
        """
        with self._session_factory() as session:
            streams = session.scalar(
                select(func.coalesce(func.sum(StreamingStat.streams), 0)).where(
                    StreamingStat.song_id == song_id
                )
            )
            sales = session.scalar(
                select(func.coalesce(func.sum(ReleaseSale.units), 0)).where(
                    ReleaseSale.song_id == song_id
                )
            )
            radio_plays = session.scalar(
                select(func.count(RadioPlay.id)).where(RadioPlay.song_id == song_id)
            )
            hype = session.scalar(select(SongHype.hype).where(SongHype.song_id == song_id))
            stream_countries = session.scalars(
                select(StreamingStat.country_code).where(
                    StreamingStat.song_id == song_id, StreamingStat.streams > 0
                )
            ).all()
            sale_countries = session.scalars(
                select(ReleaseSale.country_code).where(
                    ReleaseSale.song_id == song_id, ReleaseSale.country_code.is_not(None)
                )
            ).all()

        countries = {c.upper() for c in [*stream_countries, *sale_countries] if c}
        return FameSources(
            streams=streams or 0,
            sales=sales or 0,
            radio_plays=radio_plays or 0,
            hype=hype or 0,
            countries=len(countries),
            gig_plays=gig_play_count,
        )

    # ------------------------------------------------------------------ #
    # Band favourites                                                      #
    # ------------------------------------------------------------------ #

    def list_favourites(self, band_id: str) -> list[SongState]:
        """Current favourites of a band, oldest grant first."""
        with self._session_factory() as session:
            return [_row_to_state(r) for r in self._favourite_rows(session, band_id)]

    def allocate(self, song_id: str, band_id: str, now: datetime) -> SlotAllocation:
        """Give ``song_id`` a favourite slot if the band's policy allows it.

        ``band_id`` is the song's own roster (``SongState.roster_id``); a
        song from any other roster is never granted a slot here. Retries
        from a fresh read when another writer changed the band's favourites
        in between.

        Raises:
            SongNotFoundError: If the candidate song does not exist.
            StaleFavouriteSlotsError: If every attempt lost the race.
            FavouriteSlotInvariantError: If the band already exceeds its cap.
        """
        return self._allocate_with_retry(song_id, band_id, now)

    @with_retry(
        max_attempts=_ALLOCATION_ATTEMPTS,
        exceptions=(StaleFavouriteSlotsError,),
        on_retry=record_slot_conflict,
    )
    def _allocate_with_retry(self, song_id: str, band_id: str, now: datetime) -> SlotAllocation:
        return self._allocate_once(song_id, band_id, now)

    def _allocate_once(self, song_id: str, band_id: str, now: datetime) -> SlotAllocation:
        with self._session_factory.begin() as session:
            candidate = session.get(Song, song_id)
            if candidate is None:
                raise SongNotFoundError(song_id)
            roster_id = _row_to_state(candidate).roster_id
            if roster_id != band_id:
                logger.warning(
                    "song %s belongs to roster %s, not %s; no slot allocated",
                    song_id,
                    roster_id,
                    band_id,
                )
                return SlotAllocation(applied=False)
            if candidate.archived or candidate.is_fan_favourite:
                return SlotAllocation(applied=False)

            version = self._band_version(session, band_id)

            favourites = [_row_to_state(r) for r in self._favourite_rows(session, band_id)]
            decision = plan_slot_allocation(
                song_id, favourites, now, self._config.favourites, band_id=band_id
            )
            logger.debug("slot decision for %s in band %s: %s", song_id, band_id, decision)
            if not decision.applies:
                return SlotAllocation(applied=False)

            if decision.evict_song_id is not None:
                session.execute(
                    update(Song)
                    .where(Song.id == decision.evict_song_id)
                    .values(is_fan_favourite=False, fan_favourite_at=None)
                )
            session.execute(
                update(Song)
                .where(Song.id == song_id)
                .values(is_fan_favourite=True, fan_favourite_at=_utc(now))
            )

            bumped = session.execute(
                update(Band)
                .where(Band.id == band_id, Band.favourite_version == version)
                .values(favourite_version=version + 1)
            )
            if bumped.rowcount != 1:
                raise StaleFavouriteSlotsError(band_id, version)

        return SlotAllocation(applied=True, evicted_song_id=decision.evict_song_id)

    def _band_version(self, session: Session, band_id: str) -> int:
        version = session.scalar(select(Band.favourite_version).where(Band.id == band_id))
        if version is not None:
            return version
        # Solo rosters may have no band row yet; a concurrent insert loses the race.
        session.add(Band(id=band_id, favourite_version=0))
        try:
            session.flush()
        except IntegrityError as exc:
            raise StaleFavouriteSlotsError(band_id, 0) from exc
        return 0

    @staticmethod
    def _favourite_rows(session: Session, band_id: str) -> list[Song]:
        rows = session.scalars(
            select(Song).where(_roster_clause(band_id), Song.is_fan_favourite.is_(True))
        ).all()
        # NULL grant times first, then oldest; matches plan_slot_allocation
        return sorted(
            rows,
            key=lambda r: (
                r.fan_favourite_at is not None,
                _aware(r.fan_favourite_at) or datetime.min.replace(tzinfo=UTC),
            ),
        )

    # ------------------------------------------------------------------ #
    # Gig history                                                          #
    # ------------------------------------------------------------------ #

    def count_recent_gigs(self, song_id: str, since: datetime) -> int:
        """Performances of a song at or after ``since``."""
        with self._session_factory() as session:
            count = session.scalar(
                select(func.count(GigSongPlay.id)).where(
                    GigSongPlay.song_id == song_id, GigSongPlay.performed_at >= _utc(since)
                )
            )
        return count or 0

    def record_gig(self, song_id: str, band_id: str | None, performed_at: datetime) -> None:
        """Append one performance to the history."""
        with self._session_factory.begin() as session:
            session.add(
                GigSongPlay(song_id=song_id, band_id=band_id, performed_at=_utc(performed_at))
            )
