"""
Tuning configuration for the song fame engine.

These immutable config objects decouple balance parameters from function
signatures, so the pure functions in ``core/song_fame`` read their weights,
thresholds and caps from one place and tests can swap in variants.

All values are validated on construction. Reading the environment happens
only in ``OrchestratorConfig.from_env`` which is called from ``ingestion/``;
nothing in ``core/`` calls it at import time.
"""

import os
from dataclasses import dataclass, field


@dataclass(frozen=True)
class FameWeights:
    """
    Weights of each consumption signal in the fame sum.

    ``fame = floor(streams/1000 + sales/100 + radio_plays*2 + hype/50
    + countries*5 + gig_plays*3)`` with the defaults below. Weights are a
    balance table, not a contract; they must stay non-negative so that adding
    to any source can never lower the result.

    Attributes:
        streams: Fame per stream. Defaults to 1/1000.
        sales: Fame per unit sold. Defaults to 1/100.
        radio_plays: Fame per radio play. Defaults to 2.
        hype: Fame per hype point. Defaults to 1/50.
        countries: Fame per distinct consuming country. Defaults to 5.
        gig_plays: Fame per live performance. Defaults to 3.
    """

    streams: float = 1 / 1000
    sales: float = 1 / 100
    radio_plays: float = 2.0
    hype: float = 1 / 50
    countries: float = 5.0
    gig_plays: float = 3.0

    def __post_init__(self) -> None:
        """Validate that every weight is non-negative."""
        for name in ("streams", "sales", "radio_plays", "hype", "countries", "gig_plays"):
            value = getattr(self, name)
            if value < 0:
                raise ValueError(f"fame weight {name!r} must be non-negative, got {value}")


@dataclass(frozen=True)
class PopularityConfig:
    """
    Popularity gain, overplay and decay parameters.

    Attributes:
        min_popularity: Lower clamp bound.
        max_popularity: Upper clamp bound.
        base_gain: Gain of a first-ever performance.
        fan_favourite_bonus: Flat gain bonus for fan favourites.
        overplay_window_days: Trailing window for counting recent performances.
        overplay_free_plays: Performances inside the window that carry no penalty.
        overplay_penalty_step: Penalty per performance beyond the free plays.
        hot_threshold: Popularity above this cools down without performances.
        decay_per_day: Daily cooling for regular songs.
        fan_favourite_decay_per_day: Daily cooling for fan favourites.
        recovery_min_days: Dormancy needed before legacy recovery starts.
        recovery_min_fame: Fame needed (strictly above) for legacy recovery.
        recovery_step: Popularity regained per decay tick while recovering.
        recovery_fame_divisor: Recovery ceiling is ``fame // divisor``.
    """

    min_popularity: int = 0
    max_popularity: int = 1000
    base_gain: float = 15.0
    fan_favourite_bonus: int = 10
    overplay_window_days: int = 7
    overplay_free_plays: int = 2
    overplay_penalty_step: int = 20
    hot_threshold: int = 100
    decay_per_day: int = 2
    fan_favourite_decay_per_day: int = 1
    recovery_min_days: int = 14
    recovery_min_fame: int = 200
    recovery_step: int = 5
    recovery_fame_divisor: int = 2

    def __post_init__(self) -> None:
        """Validate configuration parameters."""
        if self.min_popularity > self.max_popularity:
            raise ValueError(
                f"min_popularity ({self.min_popularity}) must not exceed "
                f"max_popularity ({self.max_popularity})"
            )
        if self.overplay_window_days <= 0:
            raise ValueError(
                f"overplay_window_days must be positive, got {self.overplay_window_days}"
            )
        if self.recovery_fame_divisor <= 0:
            raise ValueError(
                f"recovery_fame_divisor must be positive, got {self.recovery_fame_divisor}"
            )
        if self.decay_per_day < 0 or self.fan_favourite_decay_per_day < 0:
            raise ValueError("decay rates must be non-negative")


@dataclass(frozen=True)
class FavouriteConfig:
    """
    Fan-favourite roll odds and slot policy.

    The quality halving is applied after the additive bonuses.

    Attributes:
        max_slots: Maximum concurrent fan favourites per band.
        replace_cooldown_days: Minimum age of the oldest favourite before it
            can be replaced.
        base_chance: Chance of any performance making a favourite.
        ecstatic_bonus: Added when the crowd response is ``"ecstatic"``.
        encore_bonus: Added when the song closed the set.
        low_quality_threshold: Quality scores below this halve the chance.
        low_quality_factor: Multiplier applied to the total chance.
    """

    max_slots: int = 3
    replace_cooldown_days: int = 30
    base_chance: float = 0.03
    ecstatic_bonus: float = 0.07
    encore_bonus: float = 0.05
    low_quality_threshold: int = 40
    low_quality_factor: float = 0.5

    def __post_init__(self) -> None:
        """Validate configuration parameters."""
        if self.max_slots <= 0:
            raise ValueError(f"max_slots must be positive, got {self.max_slots}")
        if self.replace_cooldown_days < 0:
            raise ValueError(
                f"replace_cooldown_days must be non-negative, got {self.replace_cooldown_days}"
            )
        for name in ("base_chance", "ecstatic_bonus", "encore_bonus", "low_quality_factor"):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise ValueError(f"{name} must be within [0, 1], got {value}")


@dataclass(frozen=True)
class OrchestratorConfig:
    """
    Runtime knobs of the post-gig pipeline.

    Attributes:
        song_timeout_seconds: Per-song processing budget. A song that exceeds
            it is reported as failed; the rest of the set continues.
        apply_overplay_penalty: Subtract the trailing-window overplay penalty
            during gig processing. Requires a gig history store.
    """

    song_timeout_seconds: float = 5.0
    apply_overplay_penalty: bool = False

    def __post_init__(self) -> None:
        """Validate configuration parameters."""
        if self.song_timeout_seconds <= 0:
            raise ValueError(
                f"song_timeout_seconds must be positive, got {self.song_timeout_seconds}"
            )

    @classmethod
    def from_env(cls) -> "OrchestratorConfig":
        """Build from ``SONG_FAME_*`` environment variables, falling back to defaults."""
        timeout = float(os.getenv("SONG_FAME_SONG_TIMEOUT_SECONDS", str(cls.song_timeout_seconds)))
        penalty = os.getenv("SONG_FAME_APPLY_OVERPLAY_PENALTY", "false").strip().lower()
        return cls(
            song_timeout_seconds=timeout,
            apply_overplay_penalty=penalty in {"1", "true", "yes", "on"},
        )


@dataclass(frozen=True)
class EngineConfig:
    """Bundle of every sub-config, passed as one object through the pipeline."""

    fame: FameWeights = field(default_factory=FameWeights)
    popularity: PopularityConfig = field(default_factory=PopularityConfig)
    favourites: FavouriteConfig = field(default_factory=FavouriteConfig)
    orchestrator: OrchestratorConfig = field(default_factory=OrchestratorConfig)


DEFAULT_CONFIG = EngineConfig()
"""Default game balance: 3 favourite slots, 30-day cooldown, 7-day overplay window."""
