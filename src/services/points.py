"""Tiered rarity -> points calculation.

Tiers on completion rate (percent of players owning the item):

  * rate <= 5      mega-rare: 100 * (1/rate)^1.5 * 30, capped at 3000 when clamp eligible
                   (5% -> 268, 3% -> 577, 1% -> 3000, 0.5% -> 8485)
  * 5 < rate <= 20 linear from 200 points at 20% up to 500 points approaching 5%
  * rate > 20      100 - rate/2 (75 points at 50%, 50 at 100%)

The mega-rare formula starts below the top of the linear tier, so scores drop
from ~500 to 268 when crossing 5%. Each tier is monotone on its own.

Results are rounded half away from zero. All tiers produce positive values for
rates in (0, 100], so this is ``floor(x + 0.5)``.
"""

from __future__ import annotations

import math

CLAMP_CEILING = 3000
MEGA_RARE_MAX_RATE = 5.0
RARE_MAX_RATE = 20.0


def validate_rate(rate: float) -> float:
    """Return ``rate`` as float or raise ValueError when outside (0, 100]."""
    value = float(rate)
    if not math.isfinite(value) or value <= 0.0 or value > 100.0:
        raise ValueError(f"completion rate must be in (0, 100], got {rate!r}")
    return value


def _round_half_away(value: float) -> int:
    return int(math.copysign(math.floor(abs(value) + 0.5), value))


def raw_score(completion_rate: float, clamp_eligible: bool) -> float:
    if completion_rate <= MEGA_RARE_MAX_RATE:
        raw = 100.0 * (1.0 / completion_rate) ** 1.5 * 30.0
        return min(raw, float(CLAMP_CEILING)) if clamp_eligible else raw
    if completion_rate <= RARE_MAX_RATE:
        progress = (RARE_MAX_RATE - completion_rate) / 15.0
        return 200.0 + progress * 300.0
    return 100.0 - completion_rate * 0.5


def score(completion_rate: float, clamp_eligible: bool) -> int:
    """Points for an item; ``clamp_eligible`` only matters in the mega-rare tier.

    The caller decides eligibility (clamped category and not whitelisted) and
    is expected to have validated the rate.
    """
    return _round_half_away(raw_score(completion_rate, clamp_eligible))


__all__ = [
    "score",
    "raw_score",
    "validate_rate",
    "CLAMP_CEILING",
    "MEGA_RARE_MAX_RATE",
    "RARE_MAX_RATE",
]
