"""Song fame value objects — pure, immutable.

These are the data contracts shared by the fame aggregator, the popularity
functions, the fan-favourite policy and the stores that persist them.
No I/O, no datetime.now(), no imports from db/ or ingestion/.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Literal

CrowdResponse = Literal["ecstatic", "enthusiastic", "engaged", "mixed", "disappointed"]

CROWD_RESPONSES: frozenset[str] = frozenset(
    {"ecstatic", "enthusiastic", "engaged", "mixed", "disappointed"}
)

FALLBACK_CROWD_RESPONSE: CrowdResponse = "mixed"
"""Stands in for labels gig resolution may add later."""

SlotAction = Literal["grant", "evict_and_grant", "denied"]

SOLO_ROSTER_PREFIX = "solo:"


def _non_negative(value: float | int | None) -> float | int:
    if value is None or not math.isfinite(value) or value < 0:
        return 0
    return value


@dataclass(frozen=True)
class FameSources:
    """The six consumption signals folded into a fame score.

    Missing or negative inputs are normalised to 0 on construction, so every
    instance holds non-negative counts.

    Attributes:
        streams: Total streams across platforms.
        sales: Total units sold (digital and physical).
        radio_plays: Total radio plays.
        hype: Accumulated hype points.
        countries: Distinct countries with streams or sales.
        gig_plays: Live performances of the song.
    """

    streams: float = 0
    sales: float = 0
    radio_plays: float = 0
    hype: float = 0
    countries: int = 0
    gig_plays: int = 0

    def __post_init__(self) -> None:
        for name in ("streams", "sales", "radio_plays", "hype", "countries", "gig_plays"):
            object.__setattr__(self, name, _non_negative(getattr(self, name)))


@dataclass(frozen=True)
class SongState:
    """Snapshot of the fields of a song this engine reads and writes.

    Attributes:
        song_id: Stable song identifier.
        band_id: Owning band. ``None`` for solo artists.
        artist_id: Solo artist owning the song when there is no band.
        fame: Cumulative renown. Never lowered by this engine.
        popularity: Current buzz, within [0, 1000].
        gig_play_count: Number of live performances so far.
        last_gigged_at: Time of the latest live performance, if any.
        is_fan_favourite: Whether the song holds a fan-favourite slot.
        fan_favourite_at: When the slot was granted.
        quality_score: Set by songwriting; read-only here.
        archived: Archived songs are never eligible for favourite status.
    """

    song_id: str
    band_id: str | None = None
    artist_id: str | None = None
    fame: int = 0
    popularity: int = 0
    gig_play_count: int = 0
    last_gigged_at: datetime | None = None
    is_fan_favourite: bool = False
    fan_favourite_at: datetime | None = None
    quality_score: int = 0
    archived: bool = False

    def __post_init__(self) -> None:
        if not self.song_id.strip():
            raise ValueError("song_id must not be empty")

    @property
    def can_become_favourite(self) -> bool:
        return not self.archived and not self.is_fan_favourite

    @property
    def roster_id(self) -> str | None:
        """Roster whose favourite slots this song competes for.

        The band when there is one, otherwise the solo artist under
        ``SOLO_ROSTER_PREFIX``. ``None`` only for songs with no owner at all.
        """
        if self.band_id is not None:
            return self.band_id
        if self.artist_id is not None:
            return f"{SOLO_ROSTER_PREFIX}{self.artist_id}"
        return None

    def evolve(self, **changes: object) -> SongState:
        """Return a copy with ``changes`` applied."""
        return replace(self, **changes)  # type: ignore[arg-type]


@dataclass(frozen=True)
class SlotDecision:
    """Outcome of planning a fan-favourite slot for a candidate song.

    Attributes:
        action: ``grant`` (free slot), ``evict_and_grant`` or ``denied``.
        evict_song_id: Song that loses its slot on ``evict_and_grant``.
        reason: Short human-readable explanation, used in logs.
    """

    action: SlotAction
    evict_song_id: str | None = None
    reason: str = ""

    @property
    def applies(self) -> bool:
        return self.action != "denied"


@dataclass(frozen=True)
class SlotAllocation:
    """What the favourites store actually committed.

    Attributes:
        applied: True when the candidate now holds a slot.
        evicted_song_id: Song whose status was revoked to make room, if any.
    """

    applied: bool
    evicted_song_id: str | None = None


@dataclass(frozen=True)
class SongUpdate:
    """Per-song result of folding one performance into song state."""

    song_id: str
    before: SongState
    after: SongState
    is_encore: bool
    rolled_favourite: bool = False
    allocation: SlotAllocation | None = None

    @property
    def became_favourite(self) -> bool:
        return self.allocation is not None and self.allocation.applied


@dataclass(frozen=True)
class SongFailure:
    """A song that could not be processed; the rest of the gig was unaffected."""

    song_id: str
    error: str


@dataclass
class GigUpdateReport:
    """Summary of ``update_songs_after_gig``.

    Partial success is normal: ``failed`` lists songs whose update was
    skipped, ``updated`` lists songs whose new state was persisted.
    """

    band_id: str | None
    updated: list[SongUpdate] = field(default_factory=list)
    failed: list[SongFailure] = field(default_factory=list)

    @property
    def new_favourites(self) -> list[str]:
        return [u.song_id for u in self.updated if u.became_favourite]


@dataclass
class DecayReport:
    """Summary of one daily decay pass over a band's songs."""

    band_id: str | None
    changed: dict[str, tuple[int, int]] = field(default_factory=dict)
    skipped: list[str] = field(default_factory=list)
    failed: list[SongFailure] = field(default_factory=list)
