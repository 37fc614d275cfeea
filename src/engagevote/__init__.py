"""
engagevote - Engagement-gated weighted voting ledger

Participants earn XP through repeated engagement; XP and engagement
streaks translate into a voting power capped at 14, and votes for one of
three fixed choices are weighted by that power.

Usage:
    from engagevote import EngagementLedger

    ledger = EngagementLedger()
    ledger.claim_ownership("alice", now)
    ledger.start_election("alice", now)

    ledger.engage("bob", now)
    ledger.vote_a("bob", now)

    choice, votes = ledger.leading_choice()

REST API Usage:
    from engagevote import EngagementLedger
    from engagevote.api import LedgerAPI

    api = LedgerAPI(EngagementLedger(), host="0.0.0.0", port=24680)
    trio.run(api.start)

Metrics Usage:
    from engagevote.metrics import MetricsCollector

    metrics = MetricsCollector(ledger)
    prometheus_output = metrics.collect()
"""

from .protocol import (
    EngagementLedger,
    StateStore,
    UserStats,
    GlobalState,
    VoteChoice,
    voting_power,
    EventType,
    LedgerEvent,
    LedgerError,
    AlreadyClaimed,
    Unauthorized,
    AlreadyActive,
    NotActive,
    ElectionNotActive,
    CooldownActive,
    NoRewards,
)
from .api import LedgerAPI
from .metrics import MetricsCollector
from .config import (
    LedgerConfig,
    DEFAULT_API_PORT,
    MIN_VOTING_POWER,
    MAX_VOTING_POWER,
)

__version__ = "0.1.0"
__all__ = [
    # Core
    "EngagementLedger",
    "StateStore",
    "UserStats",
    "GlobalState",
    "VoteChoice",
    "voting_power",
    # Events
    "EventType",
    "LedgerEvent",
    # Errors
    "LedgerError",
    "AlreadyClaimed",
    "Unauthorized",
    "AlreadyActive",
    "NotActive",
    "ElectionNotActive",
    "CooldownActive",
    "NoRewards",
    # API & Metrics
    "LedgerAPI",
    "MetricsCollector",
    # Config
    "LedgerConfig",
    "DEFAULT_API_PORT",
    "MIN_VOTING_POWER",
    "MAX_VOTING_POWER",
]
