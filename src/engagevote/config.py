"""
engagevote/config.py

Configuration constants and data classes for engagevote.
"""

from dataclasses import dataclass, asdict
from typing import Dict, Optional
import os


# Default listening port for the HTTP invocation layer
DEFAULT_API_HOST = "127.0.0.1"
DEFAULT_API_PORT = 24680

# Engagement accounting
XP_PER_ENGAGEMENT = 10                  # XP gained per successful engagement
ENGAGEMENT_REWARD = 1                   # Reward units credited per engagement
VOTE_REWARD = 5                         # Reward units credited per vote

# Cooldowns (seconds)
ENGAGEMENT_COOLDOWN_SECONDS = 60 * 60   # 1 hour between engagements
VOTE_COOLDOWN_SECONDS = 5 * 60          # 5 minutes between votes

# Streak windows (seconds)
STREAK_DAY_SECONDS = 24 * 60 * 60       # Next streak day opens after 1 day
STREAK_LAPSE_SECONDS = 2 * 24 * 60 * 60 # Streak resets after 2 days without engaging

# Voting power (fixed, not tunable)
BASE_VOTING_POWER = 1
XP_PER_POWER_TIER = 100                 # +1 power per 100 XP
MAX_XP_POWER_BONUS = 10                 # XP tiers cap at +10
STREAK_BONUS_THRESHOLD_DAYS = 7         # Streak bonus starts at 7 days
STREAK_BONUS_STEP_DAYS = 7              # +1 per further full week
MAX_STREAK_BONUS = 3                    # Streak bonus caps at +3
MIN_VOTING_POWER = BASE_VOTING_POWER
MAX_VOTING_POWER = BASE_VOTING_POWER + MAX_XP_POWER_BONUS + MAX_STREAK_BONUS

# Event history
MAX_RECENT_EVENTS = 100                 # Notification records kept in memory

# Environment variable prefix
ENV_PREFIX = "ENGAGEVOTE_"


def _env_int(name: str, default: int, environ: Dict[str, str]) -> int:
    """Read a non-negative integer from the environment."""
    key = ENV_PREFIX + name
    raw = environ.get(key)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"Invalid integer for {key}: {raw!r}")
    if value < 0:
        raise ValueError(f"{key} must be non-negative, got {value}")
    return value


@dataclass
class LedgerConfig:
    """Tunable bookkeeping values for an EngagementLedger."""
    xp_per_engagement: int = XP_PER_ENGAGEMENT
    engagement_reward: int = ENGAGEMENT_REWARD
    vote_reward: int = VOTE_REWARD
    engagement_cooldown: int = ENGAGEMENT_COOLDOWN_SECONDS
    vote_cooldown: int = VOTE_COOLDOWN_SECONDS
    streak_day: int = STREAK_DAY_SECONDS
    streak_lapse: int = STREAK_LAPSE_SECONDS
    max_recent_events: int = MAX_RECENT_EVENTS

    def __post_init__(self):
        # Windows must be positive and the lapse must come after the streak day
        for name, env_name in (("engagement_cooldown", "ENGAGE_COOLDOWN"),
                               ("vote_cooldown", "VOTE_COOLDOWN"),
                               ("streak_day", "STREAK_DAY")):
            if getattr(self, name) <= 0:
                raise ValueError(
                    f"{name} ({ENV_PREFIX}{env_name}) must be positive, "
                    f"got {getattr(self, name)}"
                )
        if self.streak_lapse <= self.streak_day:
            raise ValueError(
                f"streak_lapse ({ENV_PREFIX}STREAK_LAPSE) must exceed streak_day "
                f"({ENV_PREFIX}STREAK_DAY), got {self.streak_lapse} <= {self.streak_day}"
            )

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_env(cls, environ: Optional[Dict[str, str]] = None) -> "LedgerConfig":
        """
        Build a config from ENGAGEVOTE_* environment variables.

        Unset variables fall back to the module defaults.

        Raises:
            ValueError: If a variable is not a non-negative integer, a
                cooldown is zero, or the streak lapse window does not
                exceed the streak day
        """
        env = os.environ if environ is None else environ
        return cls(
            xp_per_engagement=_env_int("XP_PER_ENGAGEMENT", XP_PER_ENGAGEMENT, env),
            engagement_reward=_env_int("ENGAGE_REWARD", ENGAGEMENT_REWARD, env),
            vote_reward=_env_int("VOTE_REWARD", VOTE_REWARD, env),
            engagement_cooldown=_env_int("ENGAGE_COOLDOWN", ENGAGEMENT_COOLDOWN_SECONDS, env),
            vote_cooldown=_env_int("VOTE_COOLDOWN", VOTE_COOLDOWN_SECONDS, env),
            streak_day=_env_int("STREAK_DAY", STREAK_DAY_SECONDS, env),
            streak_lapse=_env_int("STREAK_LAPSE", STREAK_LAPSE_SECONDS, env),
            max_recent_events=_env_int("MAX_RECENT_EVENTS", MAX_RECENT_EVENTS, env),
        )
