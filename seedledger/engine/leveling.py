"""
Leveling curve.

level = floor(sqrt(total / 100)) + 1, so level bands are quadratic:
0–99 → 1, 100–399 → 2, 400–899 → 3, ...
"""

import math
from dataclasses import dataclass

SEEDS_PER_LEVEL_UNIT: int = 100


@dataclass(frozen=True)
class LevelInfo:
    level: int
    seeds_to_next_level: int
    seeds_for_current_level: int


def level_for(total_seeds: int) -> LevelInfo:
    """Derive level and progress from a cumulative seeds balance."""
    if total_seeds < 0:
        return LevelInfo(level=1, seeds_to_next_level=SEEDS_PER_LEVEL_UNIT, seeds_for_current_level=0)

    level = math.isqrt(total_seeds // SEEDS_PER_LEVEL_UNIT) + 1
    seeds_for_current = (level - 1) ** 2 * SEEDS_PER_LEVEL_UNIT
    seeds_for_next = level ** 2 * SEEDS_PER_LEVEL_UNIT
    return LevelInfo(
        level=level,
        seeds_to_next_level=max(0, seeds_for_next - total_seeds),
        seeds_for_current_level=seeds_for_current,
    )
