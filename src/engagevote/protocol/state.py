"""
engagevote/protocol/state.py

In-memory state store for the engagement ledger.

Holds per-identity UserStats and the single GlobalState (owner, election
flag, tallies). No validation lives here; the action handlers in
ledger.py decide what may change. All mutation goes through
StateStore.transaction(), which serializes every action as a whole.
"""

import copy
import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Dict, Iterator, Optional

logger = logging.getLogger("engagevote.protocol.state")


class VoteChoice(Enum):
    """The three fixed ballot choices, in tie-break order."""
    A = "A"
    B = "B"
    C = "C"

    @classmethod
    def from_string(cls, value: str) -> "VoteChoice":
        """Convert string to VoteChoice."""
        normalized = value.strip().upper()
        for choice in cls:
            if choice.value == normalized:
                return choice
        raise ValueError(
            f"Invalid vote choice: {value}. "
            f"Valid options: a, b, c"
        )

    def __str__(self) -> str:
        return self.value


@dataclass
class UserStats:
    """Engagement and voting record for a single identity."""
    xp: int = 0
    reward_balance: int = 0
    last_engage_at: Optional[int] = None
    last_vote_at: Optional[int] = None
    consecutive_engage_days: int = 0
    votes_cast: int = 0

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "UserStats":
        return cls(
            xp=data.get("xp", 0),
            reward_balance=data.get("reward_balance", 0),
            last_engage_at=data.get("last_engage_at"),
            last_vote_at=data.get("last_vote_at"),
            consecutive_engage_days=data.get("consecutive_engage_days", 0),
            votes_cast=data.get("votes_cast", 0),
        )


def _empty_tally() -> Dict[VoteChoice, int]:
    return {choice: 0 for choice in VoteChoice}


@dataclass
class GlobalState:
    """Ownership, election lifecycle and weighted tallies."""
    owner: Optional[str] = None
    election_active: bool = False
    tally: Dict[VoteChoice, int] = field(default_factory=_empty_tally)

    def to_dict(self) -> dict:
        return {
            "owner": self.owner,
            "election_active": self.election_active,
            "tally": {choice.value: count for choice, count in self.tally.items()},
        }

    @classmethod
    def from_dict(cls, data: dict) -> "GlobalState":
        tally = _empty_tally()
        for key, count in data.get("tally", {}).items():
            tally[VoteChoice.from_string(key)] = count
        return cls(
            owner=data.get("owner"),
            election_active=data.get("election_active", False),
            tally=tally,
        )


class StateStore:
    """
    Passive storage for UserStats-by-identity and GlobalState.

    Readers get copies; writers must hold a transaction. A single
    re-entrant lock covers both per-identity and global fields, so an
    action that reads a user's stats and writes a tally is serialized
    with respect to every other action.

    Usage:
        store = StateStore()

        with store.transaction() as txn:
            stats = txn.user("alice")
            stats.xp += 10
    """

    def __init__(self):
        self._users: Dict[str, UserStats] = {}
        self._global = GlobalState()
        self._lock = threading.RLock()

    @contextmanager
    def transaction(self) -> Iterator["StateStore"]:
        """Hold the store lock for the duration of one action."""
        with self._lock:
            yield self

    # ========================================================================
    # WRITE ACCESS (call inside a transaction)
    # ========================================================================

    def get_user(self, identity: str) -> Optional[UserStats]:
        """Get the live stats for an identity, or None if it never acted."""
        return self._users.get(identity)

    def user(self, identity: str) -> UserStats:
        """Get the live stats for an identity, creating zero stats on first use."""
        stats = self._users.get(identity)
        if stats is None:
            stats = UserStats()
            self._users[identity] = stats
            logger.debug(f"Created stats for {identity[:16]}")
        return stats

    @property
    def global_state(self) -> GlobalState:
        """Live global state."""
        return self._global

    # ========================================================================
    # READ ACCESS (copies, never creates entries)
    # ========================================================================

    def peek_user(self, identity: str) -> Optional[UserStats]:
        """Get a copy of an identity's stats, or None if it never acted."""
        with self._lock:
            stats = self._users.get(identity)
            return copy.copy(stats) if stats is not None else None

    def snapshot_global(self) -> GlobalState:
        """Get a copy of the global state."""
        with self._lock:
            return GlobalState(
                owner=self._global.owner,
                election_active=self._global.election_active,
                tally=dict(self._global.tally),
            )

    def participant_count(self) -> int:
        with self._lock:
            return len(self._users)

    def identities(self) -> list:
        with self._lock:
            return list(self._users.keys())
