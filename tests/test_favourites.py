"""Tests for core/song_fame/favourites.py"""

import random
from datetime import UTC, datetime, timedelta

import pytest

from core.config import FavouriteConfig
from core.song_fame.errors import FavouriteSlotInvariantError
from core.song_fame.favourites import (
    apply_fan_favourite,
    fan_favourite_chance,
    order_favourites,
    plan_slot_allocation,
    roll_fan_favourite,
)
from core.song_fame.types import SongState

FROZEN_NOW = datetime(2026, 3, 14, 20, 0, 0, tzinfo=UTC)


def _favourite(song_id: str, granted_days_ago: float | None) -> SongState:
    granted = None if granted_days_ago is None else FROZEN_NOW - timedelta(days=granted_days_ago)
    return SongState(
        song_id=song_id,
        band_id="band-1",
        is_fan_favourite=True,
        fan_favourite_at=granted,
    )


class TestFanFavouriteChance:
    def test_base_chance(self) -> None:
        assert fan_favourite_chance("engaged", False, 70) == pytest.approx(0.03)

    def test_ecstatic_bonus(self) -> None:
        assert fan_favourite_chance("ecstatic", False, 70) == pytest.approx(0.10)

    def test_encore_bonus(self) -> None:
        assert fan_favourite_chance("engaged", True, 70) == pytest.approx(0.08)

    def test_ecstatic_encore(self) -> None:
        assert fan_favourite_chance("ecstatic", True, 70) == pytest.approx(0.15)

    def test_low_quality_halves_total_after_bonuses(self) -> None:
        # (3 + 7 + 5) / 2, not 3/2 + 7 + 5
        assert fan_favourite_chance("ecstatic", True, 39) == pytest.approx(0.075)

    def test_quality_40_is_not_low(self) -> None:
        assert fan_favourite_chance("engaged", False, 40) == pytest.approx(0.03)


class TestRollFanFavourite:
    @pytest.mark.parametrize(
        ("archived", "favourite"),
        [(True, False), (False, True), (True, True)],
    )
    def test_ineligible_songs_never_roll(self, fixed_random, archived: bool, favourite: bool) -> None:
        rng = fixed_random(0.0)
        assert (
            roll_fan_favourite("ecstatic", True, 100, archived, favourite, rng=rng) is False
        )
        assert rng.draws == 0

    def test_ineligible_regardless_of_other_inputs(self) -> None:
        rng = random.Random(5)
        for _ in range(200):
            crowd = rng.choice(["ecstatic", "enthusiastic", "engaged", "mixed", "disappointed"])
            assert not roll_fan_favourite(
                crowd, rng.random() < 0.5, rng.randint(0, 100), True, False, rng=rng
            )
            assert not roll_fan_favourite(
                crowd, rng.random() < 0.5, rng.randint(0, 100), False, True, rng=rng
            )

    def test_draw_below_chance_succeeds(self, fixed_random) -> None:
        assert roll_fan_favourite("ecstatic", False, 70, False, False, rng=fixed_random(0.099))

    def test_draw_above_chance_fails(self, fixed_random) -> None:
        assert not roll_fan_favourite("engaged", False, 70, False, False, rng=fixed_random(0.5))

    def test_exactly_one_draw_per_roll(self, fixed_random) -> None:
        rng = fixed_random(0.9)
        roll_fan_favourite("mixed", False, 70, False, False, rng=rng)
        assert rng.draws == 1

    def test_frequency_matches_chance(self) -> None:
        rng = random.Random(2026)
        trials = 20_000
        hits = sum(
            roll_fan_favourite("ecstatic", True, 80, False, False, rng=rng) for _ in range(trials)
        )
        assert abs(hits / trials - 0.15) < 0.01

    def test_custom_config(self, fixed_random) -> None:
        config = FavouriteConfig(base_chance=1.0)
        assert roll_fan_favourite("mixed", False, 70, False, False, rng=fixed_random(0.99), config=config)


class TestOrderFavourites:
    def test_oldest_first_with_missing_timestamps_leading(self) -> None:
        songs = [_favourite("new", 1), _favourite("none", None), _favourite("old", 50)]
        assert [s.song_id for s in order_favourites(songs)] == ["none", "old", "new"]


class TestPlanSlotAllocation:
    def test_grants_when_slots_free(self) -> None:
        decision = plan_slot_allocation("cand", [_favourite("a", 1)], FROZEN_NOW)
        assert decision.action == "grant"
        assert decision.applies

    def test_grants_for_empty_band(self) -> None:
        assert plan_slot_allocation("cand", [], FROZEN_NOW).action == "grant"

    def test_evicts_oldest_past_cooldown(self) -> None:
        favourites = [_favourite("ten", 10), _favourite("forty", 40), _favourite("twenty", 20)]
        decision = plan_slot_allocation("cand", favourites, FROZEN_NOW)
        assert decision.action == "evict_and_grant"
        assert decision.evict_song_id == "forty"

    def test_cooldown_boundary_is_inclusive(self) -> None:
        favourites = [_favourite("a", 30), _favourite("b", 5), _favourite("c", 6)]
        decision = plan_slot_allocation("cand", favourites, FROZEN_NOW)
        assert decision.evict_song_id == "a"

    def test_denied_when_oldest_in_cooldown(self) -> None:
        favourites = [_favourite("a", 29), _favourite("b", 5), _favourite("c", 6)]
        decision = plan_slot_allocation("cand", favourites, FROZEN_NOW)
        assert decision.action == "denied"
        assert decision.evict_song_id is None
        assert not decision.applies

    def test_missing_timestamp_is_not_replaceable(self) -> None:
        favourites = [_favourite("a", None), _favourite("b", 90), _favourite("c", 60)]
        assert plan_slot_allocation("cand", favourites, FROZEN_NOW).action == "denied"

    def test_existing_favourite_is_denied(self) -> None:
        decision = plan_slot_allocation("a", [_favourite("a", 40)], FROZEN_NOW)
        assert decision.action == "denied"

    def test_over_cap_raises(self) -> None:
        favourites = [_favourite(str(i), 40) for i in range(4)]
        with pytest.raises(FavouriteSlotInvariantError, match="4 fan favourites"):
            plan_slot_allocation("cand", favourites, FROZEN_NOW, band_id="band-1")

    def test_custom_slot_count(self) -> None:
        config = FavouriteConfig(max_slots=1, replace_cooldown_days=7)
        decision = plan_slot_allocation("cand", [_favourite("a", 8)], FROZEN_NOW, config)
        assert decision.evict_song_id == "a"

    def test_naive_now_raises(self) -> None:
        with pytest.raises(ValueError, match="timezone-aware"):
            plan_slot_allocation("cand", [], datetime(2026, 3, 14))


class TestApplyFanFavourite:
    def test_band_with_ten_twenty_forty_day_favourites(self, memory_store) -> None:
        store = memory_store(
            _favourite("ten", 10), _favourite("twenty", 20), _favourite("forty", 40),
            SongState(song_id="new", band_id="band-1"),
        )
        assert apply_fan_favourite(store, "new", "band-1", FROZEN_NOW) is True
        assert sorted(s.song_id for s in store.list_favourites("band-1")) == ["new", "ten", "twenty"]
        assert store.get("forty").fan_favourite_at is None

    def test_cooldown_leaves_existing_three_untouched(self, memory_store) -> None:
        existing = [_favourite("a", 29), _favourite("b", 20), _favourite("c", 1)]
        store = memory_store(*existing, SongState(song_id="new", band_id="band-1"))
        assert apply_fan_favourite(store, "new", "band-1", FROZEN_NOW) is False
        assert store.list_favourites("band-1") == existing

    def test_cap_holds_over_random_sequences(self, memory_store) -> None:
        rng = random.Random(99)
        store = memory_store(*[SongState(song_id=f"s{i}", band_id="band-1") for i in range(20)])
        now = FROZEN_NOW
        for _ in range(300):
            now += timedelta(days=rng.randint(0, 15))
            apply_fan_favourite(store, f"s{rng.randrange(20)}", "band-1", now)
            assert len(store.list_favourites("band-1")) <= 3
