"""Post-gig pipeline: fold each performed song's outcome into its state.

Called once per concluded gig by gig resolution. For every performance,
in set order:

1. Encore check (only the final slot of the set counts).
2. Load the song, count the performance, stamp ``last_gigged_at``.
3. Popularity += performance gain (minus the overplay penalty when enabled).
4. Fame = max(stored fame, fame aggregated from fresh consumption signals).
5. Roll for fan favourite; on success ask the favourites store for a slot.
6. Persist the song.

Each song runs under its own time budget and error boundary: a failure
or timeout is logged and reported, and the next song is processed anyway.
A song that times out before its first write is never persisted; one whose
writes already started is waited for and reported as updated.
"""

from __future__ import annotations

import logging
import random
import threading
from collections.abc import Mapping, Sequence
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from datetime import UTC, datetime, timedelta
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from core.config import DEFAULT_CONFIG, EngineConfig
from core.song_fame.errors import FavouriteSlotInvariantError, SongProcessingTimeoutError
from core.song_fame.fame import compute_fame_from_sources, merge_fame
from core.song_fame.favourites import roll_fan_favourite
from core.song_fame.popularity import apply_performance
from core.song_fame.ports import (
    BandFavouritesStore,
    Clock,
    ConsumptionSignalReader,
    FavouriteNotifier,
    GigHistoryReader,
    SongRepository,
)
from core.song_fame.types import (
    CROWD_RESPONSES,
    FALLBACK_CROWD_RESPONSE,
    CrowdResponse,
    GigUpdateReport,
    SlotAllocation,
    SongFailure,
    SongState,
    SongUpdate,
)
from infrastructure.metrics import (
    LatencyTimer,
    record_favourite_denied,
    record_favourite_granted,
    record_song_processed,
)

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    """Default clock."""
    return datetime.now(UTC)


class PerformanceOutcome(BaseModel):
    """One song's result within a gig, as reported by gig resolution."""

    model_config = ConfigDict(frozen=True)

    song_id: str = Field(..., min_length=1, description="Performed song.")
    crowd_response: CrowdResponse = Field(
        ..., description="Crowd reaction label for this song."
    )
    position: int = Field(..., ge=1, description="1-based slot in the set list.")

    @field_validator("crowd_response", mode="before")
    @classmethod
    def _known_crowd_response(cls, value: Any) -> Any:
        if isinstance(value, str) and value not in CROWD_RESPONSES:
            logger.warning(
                "unknown crowd response %r, reading it as %r", value, FALLBACK_CROWD_RESPONSE
            )
            return FALLBACK_CROWD_RESPONSE
        return value


class _WriteGate:
    """Decides, once per song, whether the worker or the timeout wins.

    The worker must pass ``begin_writes`` before it rolls or writes. Once the
    caller has abandoned the song that call raises, so nothing is persisted;
    once writes have begun ``abandon`` refuses and the caller waits for them.
    """

    def __init__(self, song_id: str, timeout_seconds: float) -> None:
        self._song_id = song_id
        self._timeout_seconds = timeout_seconds
        self._lock = threading.Lock()
        self._abandoned = False
        self._writing = False

    def begin_writes(self) -> None:
        with self._lock:
            if self._abandoned:
                raise SongProcessingTimeoutError(self._song_id, self._timeout_seconds)
            self._writing = True

    def abandon(self) -> bool:
        """Returns False when the worker is already writing."""
        with self._lock:
            if self._writing:
                return False
            self._abandoned = True
            return True


class GigResultProcessor:
    """Applies a gig's per-song outcomes to song fame state.

    Args:
        songs: Song repository.
        signals: Consumption signal reader for fame aggregation.
        favourites: Atomic per-band favourite slot store.
        history: Gig history. Required when the overplay penalty is enabled;
            when given, every processed performance is recorded in it.
        notifier: Receives new fan favourites. Errors it raises are logged
            and otherwise ignored.
        clock: Returns the current aware datetime. Read once per gig.
        rng: Random source for fan-favourite rolls.
        config: Engine tuning and runtime knobs.

    Raises:
        ValueError: If the overplay penalty is enabled without a history.
    """

    def __init__(
        self,
        songs: SongRepository,
        signals: ConsumptionSignalReader,
        favourites: BandFavouritesStore,
        *,
        history: GigHistoryReader | None = None,
        notifier: FavouriteNotifier | None = None,
        clock: Clock = utc_now,
        rng: random.Random | None = None,
        config: EngineConfig = DEFAULT_CONFIG,
    ) -> None:
        if config.orchestrator.apply_overplay_penalty and history is None:
            raise ValueError("apply_overplay_penalty requires a gig history store")
        self._songs = songs
        self._signals = signals
        self._favourites = favourites
        self._history = history
        self._notifier = notifier
        self._clock = clock
        self._rng = rng or random.Random()
        self._config = config

    def update_songs_after_gig(
        self,
        performances: Sequence[PerformanceOutcome | Mapping[str, Any]],
        band_id: str | None,
        total_songs_in_set: int,
    ) -> GigUpdateReport:
        """Process every performance of one gig, in order.

        Args:
            performances: Per-song outcomes in set order. Mappings are
                validated into ``PerformanceOutcome``.
            band_id: Band that played the gig, recorded in gig history. Favourite
                slots are always taken on each song's own roster.
            total_songs_in_set: Set length, used for the encore check.

        Returns:
            GigUpdateReport listing updated and failed songs.

        Raises:
            FavouriteSlotInvariantError: After the whole set was processed,
                if any song found its band over the favourite cap.
        """
        now = self._clock()
        report = GigUpdateReport(band_id=band_id)
        invariant_error: FavouriteSlotInvariantError | None = None

        for raw in performances:
            try:
                outcome = (
                    raw
                    if isinstance(raw, PerformanceOutcome)
                    else PerformanceOutcome.model_validate(raw)
                )
            except ValidationError as exc:
                song_id = str(raw.get("song_id", "?")) if isinstance(raw, Mapping) else "?"
                logger.warning("gig update: rejected performance for %s: %s", song_id, exc)
                report.failed.append(SongFailure(song_id=song_id, error=str(exc)))
                record_song_processed(status="failed")
                continue

            try:
                update = self._run_with_timeout(outcome, band_id, total_songs_in_set, now)
            except SongProcessingTimeoutError as exc:
                logger.warning("gig update: %s", exc)
                report.failed.append(SongFailure(song_id=outcome.song_id, error=str(exc)))
                record_song_processed(status="timeout")
            except FavouriteSlotInvariantError as exc:
                logger.critical("gig update: favourite slot invariant broken: %s", exc)
                report.failed.append(SongFailure(song_id=outcome.song_id, error=str(exc)))
                record_song_processed(status="failed")
                invariant_error = invariant_error or exc
            except Exception as exc:
                logger.exception("gig update: failed to update song %s", outcome.song_id)
                report.failed.append(SongFailure(song_id=outcome.song_id, error=str(exc)))
                record_song_processed(status="failed")
            else:
                report.updated.append(update)

        logger.info(
            "gig update: band=%s updated=%d failed=%d new_favourites=%s",
            band_id,
            len(report.updated),
            len(report.failed),
            report.new_favourites,
        )
        if invariant_error is not None:
            raise invariant_error
        return report

    def _run_with_timeout(
        self,
        outcome: PerformanceOutcome,
        band_id: str | None,
        total_songs_in_set: int,
        now: datetime,
    ) -> SongUpdate:
        timeout = self._config.orchestrator.song_timeout_seconds
        gate = _WriteGate(outcome.song_id, timeout)
        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="song-fame")
        try:
            with LatencyTimer() as timer:
                future = executor.submit(
                    self._process_performance, outcome, band_id, total_songs_in_set, now, gate
                )
                try:
                    update = future.result(timeout=timeout)
                except FutureTimeoutError as exc:
                    if gate.abandon():
                        future.cancel()
                        raise SongProcessingTimeoutError(outcome.song_id, timeout) from exc
                    logger.warning(
                        "song %s overran %gs while writing; waiting for it to finish",
                        outcome.song_id,
                        timeout,
                    )
                    update = future.result()
        finally:
            executor.shutdown(wait=False)
        record_song_processed(status="updated", latency_seconds=timer.elapsed)
        return update

    def _process_performance(
        self,
        outcome: PerformanceOutcome,
        band_id: str | None,
        total_songs_in_set: int,
        now: datetime,
        gate: _WriteGate,
    ) -> SongUpdate:
        cfg = self._config
        is_encore = outcome.position > total_songs_in_set - 1

        before = self._songs.get(outcome.song_id)
        play_count = before.gig_play_count + 1

        recent: int | None = None
        if cfg.orchestrator.apply_overplay_penalty and self._history is not None:
            since = now - timedelta(days=cfg.popularity.overplay_window_days)
            recent = self._history.count_recent_gigs(outcome.song_id, since) + 1

        popularity = apply_performance(
            before.popularity, play_count, before.is_fan_favourite, recent, cfg.popularity
        )
        sources = self._signals.read_sources(outcome.song_id, play_count)
        fame = merge_fame(before.fame, compute_fame_from_sources(sources, cfg.fame))

        after = before.evolve(
            gig_play_count=play_count,
            last_gigged_at=now,
            popularity=popularity,
            fame=fame,
        )
        logger.debug(
            "song %s: plays=%d popularity %d->%d fame %d->%d encore=%s",
            outcome.song_id,
            play_count,
            before.popularity,
            popularity,
            before.fame,
            fame,
            is_encore,
        )

        gate.begin_writes()
        rolled = roll_fan_favourite(
            outcome.crowd_response,
            is_encore,
            before.quality_score,
            before.archived,
            before.is_fan_favourite,
            rng=self._rng,
            config=cfg.favourites,
        )
        owner = before.roster_id
        if band_id is not None and owner is not None and owner != band_id:
            logger.debug(
                "song %s played by %s competes for slots on roster %s",
                outcome.song_id,
                band_id,
                owner,
            )

        allocation: SlotAllocation | None = None
        if rolled and owner is None:
            logger.warning("song %s rolled fan favourite but has no roster", outcome.song_id)
        elif rolled:
            allocation = self._favourites.allocate(outcome.song_id, owner, now)
            if allocation.applied:
                after = after.evolve(is_fan_favourite=True, fan_favourite_at=now)
                record_favourite_granted(evicted=allocation.evicted_song_id is not None)
                logger.info(
                    "song %s became a fan favourite of band %s (replaced %s)",
                    outcome.song_id,
                    owner,
                    allocation.evicted_song_id,
                )
                self._notify(after, owner, allocation.evicted_song_id)
            else:
                record_favourite_denied()
                logger.info("song %s rolled fan favourite but no slot was free", outcome.song_id)

        self._songs.update(
            outcome.song_id,
            {
                "gig_play_count": after.gig_play_count,
                "last_gigged_at": after.last_gigged_at,
                "popularity": after.popularity,
                "fame": after.fame,
            },
        )
        if self._history is not None:
            performer = band_id if band_id is not None else before.band_id
            self._history.record_gig(outcome.song_id, performer, now)

        return SongUpdate(
            song_id=outcome.song_id,
            before=before,
            after=after,
            is_encore=is_encore,
            rolled_favourite=rolled,
            allocation=allocation,
        )

    def _notify(self, song: SongState, band_id: str, evicted_song_id: str | None) -> None:
        if self._notifier is None:
            return
        try:
            self._notifier.notify(song, band_id, evicted_song_id)
        except Exception:
            logger.warning("fan favourite notification failed for %s", song.song_id, exc_info=True)


def update_songs_after_gig(
    performances: Sequence[PerformanceOutcome | Mapping[str, Any]],
    band_id: str | None,
    total_songs_in_set: int,
    *,
    processor: GigResultProcessor | None = None,
) -> GigUpdateReport:
    """Entry point for gig resolution.

    Without an explicit ``processor`` one is built over the default SQL
    store, the logging notifier and ``OrchestratorConfig.from_env()``.
    """
    if processor is None:
        processor = build_default_processor()
    return processor.update_songs_after_gig(performances, band_id, total_songs_in_set)


def build_default_processor() -> GigResultProcessor:
    """Wire the SQL store, logging notifier and environment config."""
    from core.config import OrchestratorConfig
    from ingestion.notifications import LoggingFavouriteNotifier
    from ingestion.song_store import SqlSongStore

    config = EngineConfig(orchestrator=OrchestratorConfig.from_env())
    store = SqlSongStore(config=config)
    return GigResultProcessor(
        store,
        store,
        store,
        history=store,
        notifier=LoggingFavouriteNotifier(),
        config=config,
    )
