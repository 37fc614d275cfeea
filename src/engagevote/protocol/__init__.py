"""
engagevote/protocol/

Core engagement, voting power and tally rules.
"""

from .state import StateStore, UserStats, GlobalState, VoteChoice
from .power import voting_power, xp_bonus, streak_bonus
from .events import EventType, LedgerEvent
from .errors import (
    LedgerError,
    AlreadyClaimed,
    Unauthorized,
    AlreadyActive,
    NotActive,
    ElectionNotActive,
    CooldownActive,
    NoRewards,
)
from .ledger import EngagementLedger

__all__ = [
    "StateStore",
    "UserStats",
    "GlobalState",
    "VoteChoice",
    "voting_power",
    "xp_bonus",
    "streak_bonus",
    "EventType",
    "LedgerEvent",
    "LedgerError",
    "AlreadyClaimed",
    "Unauthorized",
    "AlreadyActive",
    "NotActive",
    "ElectionNotActive",
    "CooldownActive",
    "NoRewards",
    "EngagementLedger",
]
