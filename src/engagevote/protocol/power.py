"""
engagevote/protocol/power.py

Voting power calculation.

Voting power is based on:
- Base power of 1 for every identity
- XP tier: +1 per 100 XP, capped at +10
- Engagement streak: +1 at 7 consecutive days, +1 per further full week,
  capped at +3

The result is always in [1, 14]. The ceiling keeps any single heavily
engaged identity from dominating a tally.
"""

from .state import UserStats
from ..config import (
    BASE_VOTING_POWER,
    XP_PER_POWER_TIER,
    MAX_XP_POWER_BONUS,
    STREAK_BONUS_THRESHOLD_DAYS,
    STREAK_BONUS_STEP_DAYS,
    MAX_STREAK_BONUS,
)


def xp_bonus(xp: int) -> int:
    """Power tier earned from XP."""
    return min(xp // XP_PER_POWER_TIER, MAX_XP_POWER_BONUS)


def streak_bonus(consecutive_days: int) -> int:
    """Power bonus earned from an engagement streak."""
    if consecutive_days < STREAK_BONUS_THRESHOLD_DAYS:
        return 0
    weeks_beyond = (consecutive_days - STREAK_BONUS_THRESHOLD_DAYS) // STREAK_BONUS_STEP_DAYS
    return min(1 + weeks_beyond, MAX_STREAK_BONUS)


def voting_power(stats: UserStats) -> int:
    """
    Calculate the vote weight for an identity's current stats.

    Args:
        stats: The identity's stats at call time

    Returns:
        Integer power in [MIN_VOTING_POWER, MAX_VOTING_POWER]
    """
    return (
        BASE_VOTING_POWER
        + xp_bonus(stats.xp)
        + streak_bonus(stats.consecutive_engage_days)
    )
