"""Song fame engine — pure fame, popularity and fan-favourite rules.

Exports:
    FameSources, SongState, SlotDecision, SlotAllocation     (types)
    compute_fame_from_sources, merge_fame                    (fame)
    performance_gain, overplay_penalty, apply_performance,
    decay_one, days_since                                    (popularity)
    fan_favourite_chance, roll_fan_favourite,
    plan_slot_allocation, apply_fan_favourite                (favourites)
"""

from core.song_fame.fame import compute_fame_from_sources, merge_fame
from core.song_fame.favourites import (
    apply_fan_favourite,
    fan_favourite_chance,
    plan_slot_allocation,
    roll_fan_favourite,
)
from core.song_fame.popularity import (
    NEVER_PERFORMED_DAYS,
    apply_performance,
    days_since,
    decay_one,
    overplay_penalty,
    performance_gain,
)
from core.song_fame.types import FameSources, SlotAllocation, SlotDecision, SongState

__all__ = [
    "FameSources",
    "SongState",
    "SlotDecision",
    "SlotAllocation",
    "compute_fame_from_sources",
    "merge_fame",
    "NEVER_PERFORMED_DAYS",
    "performance_gain",
    "overplay_penalty",
    "apply_performance",
    "days_since",
    "decay_one",
    "fan_favourite_chance",
    "roll_fan_favourite",
    "plan_slot_allocation",
    "apply_fan_favourite",
]
