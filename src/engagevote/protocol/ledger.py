"""
engagevote/protocol/ledger.py

Engagement-gated voting ledger.

Participants earn XP through repeated engagement, XP and engagement
streaks translate into a capped voting power, and votes for one of three
fixed choices are weighted by that power.

Key Features:
- First-caller ownership claim
- Owner-gated election lifecycle and tally reset
- Cooldown-gated engagement (1 hour) and voting (5 minutes)
- Streak tracking across day windows
- Internal reward balance bookkeeping
- Notification records for every successful action

Usage:
    from engagevote.protocol.ledger import EngagementLedger

    ledger = EngagementLedger()
    ledger.claim_ownership("alice", now)
    ledger.start_election("alice", now)

    ledger.engage("bob", now)
    event = ledger.vote_a("bob", now)

    choice, count = ledger.leading_choice()

Every action takes the caller's identity and the current time. The ledger
never reads a clock itself.
"""

import logging
from typing import Callable, Dict, List, Optional, Tuple

from .errors import (
    AlreadyActive,
    AlreadyClaimed,
    CooldownActive,
    ElectionNotActive,
    NoRewards,
    NotActive,
    Unauthorized,
)
from .events import EventType, LedgerEvent
from .power import voting_power
from .state import StateStore, UserStats, VoteChoice
from ..config import LedgerConfig

logger = logging.getLogger("engagevote.protocol.ledger")

EventCallback = Callable[[LedgerEvent], None]


def _leader(tally: Dict[VoteChoice, int]) -> Tuple[VoteChoice, int]:
    leader = VoteChoice.A
    for choice in VoteChoice:
        if tally[choice] > tally[leader]:
            leader = choice
    return leader, tally[leader]


class EngagementLedger:
    """
    Single-process authoritative ledger of user stats and tallies.

    Each action validates its preconditions, then mutates state, all
    inside one store transaction. A failed precondition raises a
    LedgerError and leaves every field unchanged.
    """

    def __init__(
        self,
        config: Optional[LedgerConfig] = None,
        store: Optional[StateStore] = None,
    ):
        """
        Initialize the ledger.

        Args:
            config: Bookkeeping values (rewards, cooldowns); defaults apply if None
            store: State store to operate on; a fresh one is created if None
        """
        self.config = config or LedgerConfig()
        self._store = store or StateStore()
        self._recent_events: List[LedgerEvent] = []
        self._on_event_callbacks: List[EventCallback] = []

    # ========================================================================
    # EVENTS
    # ========================================================================

    def on_event(self, callback: EventCallback) -> None:
        """Register a callback invoked with every emitted event."""
        self._on_event_callbacks.append(callback)

    def _record(self, event: LedgerEvent) -> None:
        # Must run inside the action's transaction so history follows commit order
        self._recent_events.append(LedgerEvent.from_dict(event.to_dict()))
        limit = self.config.max_recent_events
        if len(self._recent_events) > limit:
            self._recent_events = self._recent_events[-limit:] if limit else []

    def _notify(self, event: LedgerEvent) -> LedgerEvent:
        for callback in self._on_event_callbacks:
            try:
                callback(event)
            except Exception as e:
                logger.warning(f"Event callback error: {e}")

        return event

    def recent_events(self, limit: Optional[int] = None) -> List[LedgerEvent]:
        """Most recent events, oldest first. Returned events are copies."""
        if limit is not None and limit <= 0:
            return []
        with self._store.transaction():
            events = self._recent_events if limit is None else self._recent_events[-limit:]
            return [LedgerEvent.from_dict(e.to_dict()) for e in events]

    # ========================================================================
    # OWNERSHIP & ELECTION LIFECYCLE
    # ========================================================================

    def claim_ownership(self, caller: str, now: int) -> LedgerEvent:
        """
        Claim ownership. The first claim wins; the owner never changes.

        Raises:
            AlreadyClaimed: If an owner is already set
        """
        with self._store.transaction() as txn:
            state = txn.global_state
            if state.owner is not None:
                raise AlreadyClaimed(f"Owner already set to {state.owner}")
            state.owner = caller
            event = LedgerEvent(EventType.OWNERSHIP_CLAIMED, caller, now)
            self._record(event)

        logger.info(f"Ownership claimed by {caller[:16]}")
        return self._notify(event)

    def _require_owner(self, caller: str, action: str) -> None:
        owner = self._store.global_state.owner
        if owner is None or caller != owner:
            logger.warning(f"Rejected {action} from non-owner {caller[:16]}")
            raise Unauthorized(f"{action} requires the owner")

    def start_election(self, caller: str, now: int) -> LedgerEvent:
        """
        Open voting.

        Raises:
            Unauthorized: If caller is not the owner
            AlreadyActive: If an election is already running
        """
        with self._store.transaction() as txn:
            self._require_owner(caller, "start_election")
            state = txn.global_state
            if state.election_active:
                raise AlreadyActive("Election already active")
            state.election_active = True
            event = LedgerEvent(EventType.ELECTION_STARTED, caller, now)
            self._record(event)

        logger.info("Election started")
        return self._notify(event)

    def end_election(self, caller: str, now: int) -> LedgerEvent:
        """
        Close voting. Tallies are kept until reset.

        Raises:
            Unauthorized: If caller is not the owner
            NotActive: If no election is running
        """
        with self._store.transaction() as txn:
            self._require_owner(caller, "end_election")
            state = txn.global_state
            if not state.election_active:
                raise NotActive("Election not active")
            state.election_active = False
            event = LedgerEvent(EventType.ELECTION_ENDED, caller, now)
            self._record(event)

        logger.info("Election ended")
        return self._notify(event)

    def reset_all(self, caller: str, now: int) -> LedgerEvent:
        """
        Zero all three tallies. User stats are untouched.

        Raises:
            Unauthorized: If caller is not the owner
        """
        with self._store.transaction() as txn:
            self._require_owner(caller, "reset_all")
            tally = txn.global_state.tally
            for choice in VoteChoice:
                tally[choice] = 0
            event = LedgerEvent(EventType.TALLIES_RESET, caller, now)
            self._record(event)

        logger.info("Tallies reset")
        return self._notify(event)

    # ========================================================================
    # ENGAGEMENT
    # ========================================================================

    def engage(self, caller: str, now: int) -> LedgerEvent:
        """
        Record an engagement: +XP, +reward, streak update.

        Allowed regardless of election state.

        Raises:
            CooldownActive: If the last engagement was less than the
                engagement cooldown ago
        """
        cfg = self.config
        with self._store.transaction() as txn:
            existing = txn.get_user(caller)
            last = existing.last_engage_at if existing else None
            if last is not None and now < last + cfg.engagement_cooldown:
                raise CooldownActive("engage", last + cfg.engagement_cooldown)

            stats = existing or txn.user(caller)

            # Streak uses the previous timestamp, before it is overwritten
            if last is None or now >= last + cfg.streak_day:
                if last is not None and now >= last + cfg.streak_lapse:
                    stats.consecutive_engage_days = 1
                else:
                    # A first-ever engagement also lands here, going 0 -> 1
                    stats.consecutive_engage_days += 1

            stats.xp += cfg.xp_per_engagement
            stats.reward_balance += cfg.engagement_reward
            stats.last_engage_at = now

            event = LedgerEvent(EventType.ENGAGED, caller, now, {
                "xp_gained": cfg.xp_per_engagement,
                "total_xp": stats.xp,
                "streak": stats.consecutive_engage_days,
            })
            self._record(event)

        logger.debug(
            f"Engagement from {caller[:16]}: xp={event.data['total_xp']} "
            f"streak={event.data['streak']}"
        )
        return self._notify(event)

    # ========================================================================
    # VOTING
    # ========================================================================

    def cast_vote(self, caller: str, choice: VoteChoice, now: int) -> LedgerEvent:
        """
        Add the caller's current voting power to a choice.

        Power is computed from the caller's stats at call time.

        Raises:
            ElectionNotActive: If no election is running
            CooldownActive: If the last vote was less than the vote
                cooldown ago
        """
        cfg = self.config
        with self._store.transaction() as txn:
            state = txn.global_state
            if not state.election_active:
                raise ElectionNotActive("No election is running")

            existing = txn.get_user(caller)
            last = existing.last_vote_at if existing else None
            if last is not None and now < last + cfg.vote_cooldown:
                raise CooldownActive("vote", last + cfg.vote_cooldown)

            stats = existing or txn.user(caller)
            power = voting_power(stats)
            state.tally[choice] += power

            stats.reward_balance += cfg.vote_reward
            stats.votes_cast += 1
            stats.last_vote_at = now

            event = LedgerEvent(EventType.VOTED, caller, now, {
                "choice": choice.value,
                "power": power,
                "total_votes_by_user": stats.votes_cast,
            })
            self._record(event)

        logger.debug(f"Vote from {caller[:16]}: {choice.value} power={power}")
        return self._notify(event)

    def vote_a(self, caller: str, now: int) -> LedgerEvent:
        return self.cast_vote(caller, VoteChoice.A, now)

    def vote_b(self, caller: str, now: int) -> LedgerEvent:
        return self.cast_vote(caller, VoteChoice.B, now)

    def vote_c(self, caller: str, now: int) -> LedgerEvent:
        return self.cast_vote(caller, VoteChoice.C, now)

    # ========================================================================
    # REWARDS
    # ========================================================================

    def claim_rewards(self, caller: str, now: int) -> LedgerEvent:
        """
        Zero the caller's reward balance and report the claimed amount.

        This is a ledger reset only; nothing is transferred anywhere.

        Raises:
            NoRewards: If the balance is zero
        """
        with self._store.transaction() as txn:
            stats = txn.get_user(caller)
            if stats is None or stats.reward_balance == 0:
                raise NoRewards("No rewards to claim")
            amount = stats.reward_balance
            stats.reward_balance = 0
            event = LedgerEvent(EventType.REWARD_CLAIMED, caller, now, {
                "amount": amount,
            })
            self._record(event)

        logger.debug(f"Rewards claimed by {caller[:16]}: {amount}")
        return self._notify(event)

    # ========================================================================
    # QUERIES
    # ========================================================================

    @property
    def owner(self) -> Optional[str]:
        return self._store.snapshot_global().owner

    @property
    def election_active(self) -> bool:
        return self._store.snapshot_global().election_active

    def tally(self) -> Dict[VoteChoice, int]:
        """Copy of all three tally entries."""
        return self._store.snapshot_global().tally

    @property
    def votes_a(self) -> int:
        return self.tally()[VoteChoice.A]

    @property
    def votes_b(self) -> int:
        return self.tally()[VoteChoice.B]

    @property
    def votes_c(self) -> int:
        return self.tally()[VoteChoice.C]

    def total_votes(self) -> int:
        """Sum of all weighted votes."""
        return sum(self.tally().values())

    def leading_choice(self) -> Tuple[VoteChoice, int]:
        """
        Choice with the highest tally.

        Ties go to the earliest choice: A beats B and C, B beats C.
        """
        return _leader(self.tally())

    def stats_of(self, identity: str) -> UserStats:
        """Copy of an identity's stats (zero stats if it never acted)."""
        return self._store.peek_user(identity) or UserStats()

    def xp(self, identity: str) -> int:
        return self.stats_of(identity).xp

    def reward_balance(self, identity: str) -> int:
        return self.stats_of(identity).reward_balance

    def streak_of(self, identity: str) -> int:
        return self.stats_of(identity).consecutive_engage_days

    def votes_cast_of(self, identity: str) -> int:
        return self.stats_of(identity).votes_cast

    def voting_power_of(self, identity: str) -> int:
        """Power a vote from this identity would carry right now."""
        return voting_power(self.stats_of(identity))

    def participant_count(self) -> int:
        return self._store.participant_count()

    def outstanding_rewards(self) -> int:
        """Sum of unclaimed reward balances across all identities."""
        return sum(
            self.reward_balance(identity)
            for identity in self._store.identities()
        )

    def snapshot(self) -> dict:
        """JSON-serializable view of the global state."""
        state = self._store.snapshot_global()
        leader, leader_count = _leader(state.tally)
        return {
            **state.to_dict(),
            "total_votes": sum(state.tally.values()),
            "leading_choice": {"choice": leader.value, "votes": leader_count},
            "participants": self.participant_count(),
        }
