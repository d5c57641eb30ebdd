"""Fan-favourite policy — the roll and the slot decision.

Two pure pieces:

- ``roll_fan_favourite`` is a single Bernoulli trial per song per
  performance. No retries, no memory of earlier failures.
- ``plan_slot_allocation`` decides what happens to a band's capped set of
  favourite slots when a roll succeeds. It does not write anything; the
  favourites store runs it inside its atomic read-modify-write.

``apply_fan_favourite`` is the thin entry point over that store.

Randomness comes from an injectable ``random.Random`` so tests can seed it.
"""

from __future__ import annotations

import random
from collections.abc import Sequence
from datetime import UTC, datetime, timedelta

from core.config import FavouriteConfig
from core.song_fame.errors import FavouriteSlotInvariantError
from core.song_fame.ports import BandFavouritesStore
from core.song_fame.types import SlotDecision, SongState

DEFAULT_FAVOURITE_CONFIG = FavouriteConfig()

_rng = random.Random()


def fan_favourite_chance(
    crowd_response: str,
    is_encore: bool,
    quality_score: int,
    config: FavouriteConfig = DEFAULT_FAVOURITE_CONFIG,
) -> float:
    """Probability that one performance turns a song into a fan favourite.

    3% base, +7 points for an ecstatic crowd, +5 points for the encore slot.
    A quality score under 40 halves the *total*, after the bonuses.

    Args:
        crowd_response: Crowd response label from gig resolution.
        is_encore: Whether the song closed the set.
        quality_score: Song quality.
        config: Favourite odds and slot policy.

    Returns:
        Chance in [0, 1].
    """
    chance = config.base_chance
    if crowd_response == "ecstatic":
        chance += config.ecstatic_bonus
    if is_encore:
        chance += config.encore_bonus
    if quality_score < config.low_quality_threshold:
        chance *= config.low_quality_factor
    return min(1.0, chance)


def roll_fan_favourite(
    crowd_response: str,
    is_encore: bool,
    quality_score: int,
    is_archived: bool,
    is_fan_favourite: bool,
    rng: random.Random | None = None,
    config: FavouriteConfig = DEFAULT_FAVOURITE_CONFIG,
) -> bool:
    """Roll once to see whether a performance earns fan-favourite status.

    Archived songs and songs that already are favourites never roll, and
    no random number is drawn for them.

    Args:
        crowd_response: Crowd response label from gig resolution.
        is_encore: Whether the song closed the set.
        quality_score: Song quality.
        is_archived: Archived songs are permanently ineligible.
        is_fan_favourite: Current status; a favourite cannot re-earn it.
        rng: Random source. Defaults to a module-level ``random.Random``.
        config: Favourite odds and slot policy.

    Returns:
        True iff one uniform draw in [0, 1) falls below the chance.
    """
    if is_archived or is_fan_favourite:
        return False
    chance = fan_favourite_chance(crowd_response, is_encore, quality_score, config)
    source = rng if rng is not None else _rng
    return source.random() < chance


def _grant_order(song: SongState) -> tuple[int, datetime]:
    # Songs without a grant time sort first so they are the ones inspected,
    # and they are never replaceable.
    if song.fan_favourite_at is None:
        return (0, datetime.min.replace(tzinfo=UTC))
    granted = song.fan_favourite_at
    if granted.tzinfo is None:
        granted = granted.replace(tzinfo=UTC)
    return (1, granted)


def order_favourites(favourites: Sequence[SongState]) -> list[SongState]:
    """Sort favourites oldest grant first."""
    return sorted(favourites, key=_grant_order)


def plan_slot_allocation(
    candidate_id: str,
    favourites: Sequence[SongState],
    now: datetime,
    config: FavouriteConfig = DEFAULT_FAVOURITE_CONFIG,
    band_id: str | None = None,
) -> SlotDecision:
    """Decide how a candidate gets a favourite slot, if at all.

    1. Fewer than ``max_slots`` favourites: grant.
    2. All slots taken and the oldest was granted at least
       ``replace_cooldown_days`` ago: evict it and grant.
    3. Otherwise (oldest too young, or without a grant time): deny.

    Args:
        candidate_id: Song asking for a slot.
        favourites: The band's current favourites, any order.
        now: Current datetime. Must be timezone-aware.
        config: Favourite odds and slot policy.
        band_id: Only used in error messages.

    Returns:
        SlotDecision describing the action to commit.

    Raises:
        ValueError: If now has no timezone info.
        FavouriteSlotInvariantError: If more favourites exist than slots.
    """
    if now.tzinfo is None:
        raise ValueError("now must be timezone-aware (use datetime.now(UTC))")
    if len(favourites) > config.max_slots:
        raise FavouriteSlotInvariantError(band_id, len(favourites), config.max_slots)
    if any(f.song_id == candidate_id for f in favourites):
        return SlotDecision(action="denied", reason="already a fan favourite")
    if len(favourites) < config.max_slots:
        return SlotDecision(
            action="grant",
            reason=f"{config.max_slots - len(favourites)} slot(s) free",
        )

    oldest = order_favourites(favourites)[0]
    if oldest.fan_favourite_at is None:
        return SlotDecision(action="denied", reason=f"oldest {oldest.song_id} has no grant time")

    _, granted = _grant_order(oldest)
    if now - granted >= timedelta(days=config.replace_cooldown_days):
        return SlotDecision(
            action="evict_and_grant",
            evict_song_id=oldest.song_id,
            reason=f"replacing {oldest.song_id} granted {granted.isoformat()}",
        )
    return SlotDecision(action="denied", reason=f"oldest {oldest.song_id} still in cooldown")


def apply_fan_favourite(
    store: BandFavouritesStore,
    song_id: str,
    band_id: str,
    now: datetime,
) -> bool:
    """Ask the band's favourites store for a slot; True if the song now holds one.

    The store runs ``plan_slot_allocation`` and commits the outcome as one
    atomic step per band.
    """
    return store.allocate(song_id, band_id, now).applied
