"""Fame aggregation — pure, deterministic.

Folds a song's consumption signals into a single integer fame score.
No I/O, no side effects; the stores gather the signals.
"""

from __future__ import annotations

import math

from core.config import FameWeights
from core.song_fame.types import FameSources

DEFAULT_FAME_WEIGHTS = FameWeights()


def compute_fame_from_sources(
    sources: FameSources,
    weights: FameWeights = DEFAULT_FAME_WEIGHTS,
) -> int:
    """Compute a fame score from consumption signals.

    With the default weights::

        floor(streams/1000 + sales/100 + radio_plays*2 + hype/50
              + countries*5 + gig_plays*3)

    ``FameSources`` already clamps negative inputs to 0 and weights are
    non-negative, so the result is never negative and never decreases when
    any single source grows.

    Args:
        sources: Non-negative consumption signals for one song.
        weights: Per-signal weights. Defaults to the game balance table.

    Returns:
        Fame score as a non-negative integer.
    """
    total = (
        sources.streams * weights.streams
        + sources.sales * weights.sales
        + sources.radio_plays * weights.radio_plays
        + sources.hype * weights.hype
        + sources.countries * weights.countries
        + sources.gig_plays * weights.gig_plays
    )
    # fractional weights are inexact in binary; drop float noise before flooring
    return max(0, math.floor(round(total, 9)))


def merge_fame(existing: int, computed: int) -> int:
    """Return the fame to store: the aggregate never lowers stored fame."""
    return max(existing, computed)
