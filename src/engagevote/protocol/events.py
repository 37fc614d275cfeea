"""
engagevote/protocol/events.py

Notification records emitted by successful ledger actions.

Events are returned to the caller and kept in a bounded history; the
calling layer decides whether to log, publish or discard them.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict


class EventType(Enum):
    """Kinds of notification a ledger action can emit."""
    OWNERSHIP_CLAIMED = "ownership_claimed"
    ELECTION_STARTED = "election_started"
    ELECTION_ENDED = "election_ended"
    TALLIES_RESET = "tallies_reset"
    ENGAGED = "engaged"
    VOTED = "voted"
    REWARD_CLAIMED = "reward_claimed"


@dataclass
class LedgerEvent:
    """A single notification record."""
    event_type: EventType
    identity: str
    timestamp: int
    data: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            'event_type': self.event_type.value,
            'identity': self.identity,
            'timestamp': self.timestamp,
            'data': dict(self.data),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "LedgerEvent":
        return cls(
            event_type=EventType(data['event_type']),
            identity=data['identity'],
            timestamp=data['timestamp'],
            data=dict(data.get('data', {})),
        )
