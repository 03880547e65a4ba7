"""Level derived from lifetime XP."""

from __future__ import annotations

import math

XP_PER_LEVEL_STEP = 100


def compute_level(total_xp: int) -> int:
    """level = 1 + floor(sqrt(total_xp / 100)). Negative XP counts as zero."""
    if total_xp <= 0:
        return 1
    return 1 + math.isqrt(total_xp // XP_PER_LEVEL_STEP)


def xp_for_level(level: int) -> int:
    """Minimum lifetime XP at which ``level`` is reached."""
    if level <= 1:
        return 0
    return (level - 1) ** 2 * XP_PER_LEVEL_STEP
