"""
engagevote/tests/test_ledger.py

Unit tests for the engagement ledger action handlers:
- Ownership claim
- Election lifecycle and tally reset
- Engagement (cooldown, XP, streaks)
- Voting (cooldown, weighting, election gate)
- Reward claims
- Queries and event emission
"""

import threading
from unittest.mock import Mock, patch

import pytest

from engagevote.config import LedgerConfig
from engagevote.protocol.errors import (
    AlreadyActive,
    AlreadyClaimed,
    CooldownActive,
    ElectionNotActive,
    NoRewards,
    NotActive,
    Unauthorized,
)
from engagevote.protocol.events import EventType
from engagevote.protocol.ledger import EngagementLedger
from engagevote.protocol.state import StateStore, VoteChoice


T0 = 1_700_000_000
MINUTE = 60
HOUR = 60 * MINUTE
DAY = 24 * HOUR

OWNER = "EOwnerAddress0000000000000000001"
ALICE = "EAliceAddress0000000000000000002"
BOB = "EBobAddress000000000000000000003"


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def ledger():
    """Create a fresh ledger with default settings."""
    return EngagementLedger()


@pytest.fixture
def election(ledger):
    """Ledger with an owner and a running election."""
    ledger.claim_ownership(OWNER, T0)
    ledger.start_election(OWNER, T0)
    return ledger


def ledger_with_tally(a: int, b: int, c: int) -> EngagementLedger:
    """Create a ledger whose store already holds the given tallies."""
    store = StateStore()
    with store.transaction() as txn:
        txn.global_state.tally[VoteChoice.A] = a
        txn.global_state.tally[VoteChoice.B] = b
        txn.global_state.tally[VoteChoice.C] = c
    return EngagementLedger(store=store)


# ============================================================================
# Test Ownership
# ============================================================================

class TestOwnership:
    """Tests for claim_ownership."""

    def test_first_claim_wins(self, ledger):
        event = ledger.claim_ownership(ALICE, T0)

        assert ledger.owner == ALICE
        assert event.event_type == EventType.OWNERSHIP_CLAIMED
        assert event.identity == ALICE

    def test_second_claim_rejected(self, ledger):
        ledger.claim_ownership(ALICE, T0)

        with pytest.raises(AlreadyClaimed):
            ledger.claim_ownership(BOB, T0 + 1)

        assert ledger.owner == ALICE

    def test_owner_cannot_reclaim(self, ledger):
        ledger.claim_ownership(ALICE, T0)
        with pytest.raises(AlreadyClaimed):
            ledger.claim_ownership(ALICE, T0 + 1)

    def test_claim_touches_nothing_else(self, ledger):
        ledger.claim_ownership(ALICE, T0)
        assert ledger.election_active is False
        assert ledger.participant_count() == 0


# ============================================================================
# Test Election Lifecycle
# ============================================================================

class TestElectionLifecycle:
    """Tests for start_election / end_election / reset_all."""

    def test_start_without_owner(self, ledger):
        with pytest.raises(Unauthorized):
            ledger.start_election(ALICE, T0)
        assert ledger.election_active is False

    def test_start_by_non_owner(self, ledger):
        ledger.claim_ownership(OWNER, T0)
        with pytest.raises(Unauthorized):
            ledger.start_election(ALICE, T0)
        assert ledger.election_active is False

    def test_start_and_end(self, ledger):
        ledger.claim_ownership(OWNER, T0)

        started = ledger.start_election(OWNER, T0)
        assert started.event_type == EventType.ELECTION_STARTED
        assert ledger.election_active is True

        ended = ledger.end_election(OWNER, T0 + HOUR)
        assert ended.event_type == EventType.ELECTION_ENDED
        assert ledger.election_active is False

    def test_start_twice(self, election):
        with pytest.raises(AlreadyActive):
            election.start_election(OWNER, T0 + 1)
        assert election.election_active is True

    def test_end_when_inactive(self, ledger):
        ledger.claim_ownership(OWNER, T0)
        with pytest.raises(NotActive):
            ledger.end_election(OWNER, T0)

    def test_end_by_non_owner(self, election):
        with pytest.raises(Unauthorized):
            election.end_election(ALICE, T0)
        assert election.election_active is True

    def test_end_by_non_owner_checked_before_state(self, ledger):
        """Unauthorized takes precedence over NotActive."""
        ledger.claim_ownership(OWNER, T0)
        with pytest.raises(Unauthorized):
            ledger.end_election(ALICE, T0)

    def test_end_keeps_tallies(self, election):
        election.vote_b(ALICE, T0)
        election.end_election(OWNER, T0 + 1)
        assert election.votes_b == 1

    def test_restart_after_end(self, election):
        election.end_election(OWNER, T0 + 1)
        election.start_election(OWNER, T0 + 2)
        assert election.election_active is True


class TestResetAll:
    """Tests for reset_all."""

    def test_reset_zeroes_tallies_only(self, election):
        for i in range(12):
            election.engage(ALICE, T0 + i * HOUR)
        election.vote_a(ALICE, T0)
        election.vote_c(BOB, T0)

        before_alice = election.stats_of(ALICE)
        before_bob = election.stats_of(BOB)

        event = election.reset_all(OWNER, T0 + DAY)

        assert event.event_type == EventType.TALLIES_RESET
        assert (election.votes_a, election.votes_b, election.votes_c) == (0, 0, 0)
        assert election.stats_of(ALICE) == before_alice
        assert election.stats_of(BOB) == before_bob
        assert election.election_active is True

    def test_reset_by_non_owner(self, election):
        election.vote_a(ALICE, T0)
        with pytest.raises(Unauthorized):
            election.reset_all(ALICE, T0)
        assert election.votes_a == 1

    def test_reset_without_owner(self, ledger):
        with pytest.raises(Unauthorized):
            ledger.reset_all(ALICE, T0)


# ============================================================================
# Test Engagement
# ============================================================================

class TestEngagement:
    """Tests for engage."""

    def test_first_engagement(self, ledger):
        event = ledger.engage(ALICE, T0)

        stats = ledger.stats_of(ALICE)
        assert stats.xp == 10
        assert stats.reward_balance == 1
        assert stats.consecutive_engage_days == 1
        assert stats.last_engage_at == T0
        assert event.event_type == EventType.ENGAGED
        assert event.data == {"xp_gained": 10, "total_xp": 10, "streak": 1}

    def test_no_election_required(self, ledger):
        assert ledger.election_active is False
        ledger.engage(ALICE, T0)
        assert ledger.xp(ALICE) == 10

    def test_cooldown(self, ledger):
        ledger.engage(ALICE, T0)
        before = ledger.stats_of(ALICE)

        with pytest.raises(CooldownActive) as exc_info:
            ledger.engage(ALICE, T0 + 30 * MINUTE)

        assert exc_info.value.action == "engage"
        assert exc_info.value.retry_at == T0 + HOUR
        assert ledger.stats_of(ALICE) == before

    def test_cooldown_boundary(self, ledger):
        ledger.engage(ALICE, T0)
        with pytest.raises(CooldownActive):
            ledger.engage(ALICE, T0 + HOUR - 1)
        ledger.engage(ALICE, T0 + HOUR)
        assert ledger.xp(ALICE) == 20

    def test_cooldown_is_per_identity(self, ledger):
        ledger.engage(ALICE, T0)
        ledger.engage(BOB, T0 + 1)
        assert ledger.xp(BOB) == 10

    def test_same_day_keeps_streak(self, ledger):
        ledger.engage(ALICE, T0)
        ledger.engage(ALICE, T0 + HOUR)
        ledger.engage(ALICE, T0 + 5 * HOUR)

        assert ledger.streak_of(ALICE) == 1
        assert ledger.xp(ALICE) == 30
        assert ledger.reward_balance(ALICE) == 3

    def test_next_day_increments_streak(self, ledger):
        ledger.engage(ALICE, T0)
        ledger.engage(ALICE, T0 + DAY)
        assert ledger.streak_of(ALICE) == 2

    def test_window_measured_from_previous_engagement(self, ledger):
        """A same-day engagement moves the reference point for the next day."""
        ledger.engage(ALICE, T0)
        ledger.engage(ALICE, T0 + 20 * HOUR)
        # 25h after the first, but only 5h after the second
        ledger.engage(ALICE, T0 + 25 * HOUR)
        assert ledger.streak_of(ALICE) == 1

    def test_just_under_two_days_increments(self, ledger):
        ledger.engage(ALICE, T0)
        ledger.engage(ALICE, T0 + 2 * DAY - 1)
        assert ledger.streak_of(ALICE) == 2

    def test_lapse_resets_streak(self, ledger):
        for day in range(5):
            ledger.engage(ALICE, T0 + day * DAY)
        assert ledger.streak_of(ALICE) == 5

        ledger.engage(ALICE, T0 + 4 * DAY + 2 * DAY)
        assert ledger.streak_of(ALICE) == 1
        assert ledger.xp(ALICE) == 60

    def test_week_streak_adds_power(self, ledger):
        for day in range(7):
            ledger.engage(ALICE, T0 + day * DAY)

        assert ledger.streak_of(ALICE) == 7
        assert ledger.xp(ALICE) == 70
        assert ledger.voting_power_of(ALICE) == 2

    def test_xp_tier_adds_power(self, ledger):
        for i in range(10):
            ledger.engage(ALICE, T0 + i * HOUR)

        assert ledger.xp(ALICE) == 100
        assert ledger.voting_power_of(ALICE) == 2

    def test_custom_config(self):
        ledger = EngagementLedger(config=LedgerConfig(
            engagement_cooldown=60,
            xp_per_engagement=25,
        ))
        ledger.engage(ALICE, T0)
        ledger.engage(ALICE, T0 + 60)
        assert ledger.xp(ALICE) == 50


# ============================================================================
# Test Voting
# ============================================================================

class TestVoting:
    """Tests for cast_vote and vote_a/b/c."""

    def test_vote_requires_election(self, ledger):
        ledger.claim_ownership(OWNER, T0)

        with pytest.raises(ElectionNotActive):
            ledger.vote_a(ALICE, T0)

        assert ledger.total_votes() == 0
        assert ledger.participant_count() == 0

    def test_vote_after_end_rejected(self, election):
        election.end_election(OWNER, T0)
        with pytest.raises(ElectionNotActive):
            election.vote_b(ALICE, T0)

    def test_vote_with_base_power(self, election):
        event = election.vote_a(ALICE, T0)

        assert election.votes_a == 1
        assert event.event_type == EventType.VOTED
        assert event.data == {"choice": "A", "power": 1, "total_votes_by_user": 1}

        stats = election.stats_of(ALICE)
        assert stats.reward_balance == 5
        assert stats.votes_cast == 1
        assert stats.last_vote_at == T0
        assert stats.xp == 0

    @pytest.mark.parametrize("method,choice", [
        ("vote_a", VoteChoice.A),
        ("vote_b", VoteChoice.B),
        ("vote_c", VoteChoice.C),
    ])
    def test_each_choice(self, election, method, choice):
        getattr(election, method)(ALICE, T0)
        tally = election.tally()
        assert tally[choice] == 1
        assert sum(tally.values()) == 1

    def test_vote_cooldown(self, election):
        election.vote_a(ALICE, T0)
        before_stats = election.stats_of(ALICE)
        before_tally = election.tally()

        with pytest.raises(CooldownActive) as exc_info:
            election.vote_b(ALICE, T0 + 4 * MINUTE)

        assert exc_info.value.action == "vote"
        assert exc_info.value.retry_at == T0 + 5 * MINUTE
        assert election.stats_of(ALICE) == before_stats
        assert election.tally() == before_tally

    def test_vote_after_cooldown(self, election):
        election.vote_a(ALICE, T0)
        election.vote_a(ALICE, T0 + 5 * MINUTE)
        assert election.votes_a == 2
        assert election.votes_cast_of(ALICE) == 2

    def test_vote_cooldown_independent_of_engagement(self, election):
        election.engage(ALICE, T0)
        election.vote_a(ALICE, T0)
        assert election.votes_a == 1

    def test_power_computed_at_vote_time(self, election):
        election.vote_a(ALICE, T0)
        for i in range(10):
            election.engage(ALICE, T0 + i * HOUR)

        event = election.vote_a(ALICE, T0 + 10 * HOUR)

        assert event.data["power"] == 2
        assert election.votes_a == 3

    def test_weighted_tally(self, election):
        store = election._store
        with store.transaction() as txn:
            stats = txn.user(BOB)
            stats.xp = 1500
            stats.consecutive_engage_days = 30

        election.vote_c(BOB, T0)
        election.vote_c(ALICE, T0)

        assert election.votes_c == 14 + 1
        assert election.leading_choice() == (VoteChoice.C, 15)


# ============================================================================
# Test Rewards
# ============================================================================

class TestRewards:
    """Tests for claim_rewards."""

    def test_no_rewards_for_unknown(self, ledger):
        with pytest.raises(NoRewards):
            ledger.claim_rewards(ALICE, T0)
        assert ledger.participant_count() == 0

    def test_claim_zeroes_balance(self, ledger):
        ledger.engage(ALICE, T0)
        ledger.engage(ALICE, T0 + HOUR)

        event = ledger.claim_rewards(ALICE, T0 + HOUR)

        assert event.event_type == EventType.REWARD_CLAIMED
        assert event.data == {"amount": 2}
        assert ledger.reward_balance(ALICE) == 0
        assert ledger.xp(ALICE) == 20

    def test_double_claim(self, ledger):
        ledger.engage(ALICE, T0)
        ledger.claim_rewards(ALICE, T0)
        with pytest.raises(NoRewards):
            ledger.claim_rewards(ALICE, T0)


# ============================================================================
# Test Queries
# ============================================================================

class TestQueries:
    """Tests for read-only queries."""

    @pytest.mark.parametrize("tally,expected", [
        ((5, 5, 5), (VoteChoice.A, 5)),
        ((0, 5, 5), (VoteChoice.B, 5)),
        ((0, 0, 0), (VoteChoice.A, 0)),
        ((1, 2, 3), (VoteChoice.C, 3)),
        ((4, 2, 4), (VoteChoice.A, 4)),
        ((1, 7, 3), (VoteChoice.B, 7)),
    ])
    def test_leading_choice(self, tally, expected):
        ledger = ledger_with_tally(*tally)
        assert ledger.leading_choice() == expected

    def test_total_votes(self):
        ledger = ledger_with_tally(3, 4, 5)
        assert ledger.total_votes() == 12

    def test_queries_do_not_create_users(self, ledger):
        assert ledger.xp(ALICE) == 0
        assert ledger.reward_balance(ALICE) == 0
        assert ledger.voting_power_of(ALICE) == 1
        assert ledger.streak_of(ALICE) == 0
        assert ledger.votes_cast_of(ALICE) == 0
        assert ledger.participant_count() == 0

    def test_queries_idempotent(self, election):
        for i in range(3):
            election.engage(ALICE, T0 + i * HOUR)
        election.vote_b(ALICE, T0)

        first = (
            election.voting_power_of(ALICE),
            election.total_votes(),
            election.leading_choice(),
        )
        for _ in range(5):
            assert (
                election.voting_power_of(ALICE),
                election.total_votes(),
                election.leading_choice(),
            ) == first

    def test_stats_of_is_copy(self, ledger):
        ledger.engage(ALICE, T0)
        stats = ledger.stats_of(ALICE)
        stats.xp = 10_000
        assert ledger.xp(ALICE) == 10

    def test_snapshot(self, election):
        election.vote_b(ALICE, T0)
        snapshot = election.snapshot()

        assert snapshot == {
            "owner": OWNER,
            "election_active": True,
            "tally": {"A": 0, "B": 1, "C": 0},
            "total_votes": 1,
            "leading_choice": {"choice": "B", "votes": 1},
            "participants": 1,
        }

    def test_outstanding_rewards(self, election):
        election.engage(ALICE, T0)
        election.vote_a(BOB, T0)
        assert election.outstanding_rewards() == 1 + 5


# ============================================================================
# Test Events
# ============================================================================

class TestEvents:
    """Tests for event history and callbacks."""

    def test_history_records_successes_only(self, ledger):
        ledger.claim_ownership(OWNER, T0)
        with pytest.raises(AlreadyClaimed):
            ledger.claim_ownership(ALICE, T0)
        ledger.engage(ALICE, T0)

        types = [e.event_type for e in ledger.recent_events()]
        assert types == [EventType.OWNERSHIP_CLAIMED, EventType.ENGAGED]

    def test_history_is_bounded(self):
        ledger = EngagementLedger(config=LedgerConfig(max_recent_events=3))
        for i in range(5):
            ledger.engage(f"user{i}", T0)

        events = ledger.recent_events()
        assert [e.identity for e in events] == ["user2", "user3", "user4"]

    def test_history_limit(self, ledger):
        for i in range(4):
            ledger.engage(f"user{i}", T0)
        assert [e.identity for e in ledger.recent_events(2)] == ["user2", "user3"]
        assert ledger.recent_events(0) == []

    def test_history_returns_copies(self, ledger):
        """Mutating returned events leaves the stored history intact."""
        returned = ledger.engage(ALICE, T0)
        returned.data["total_xp"] = 999

        listed = ledger.recent_events()[0]
        listed.identity = "mallory"
        listed.data["streak"] = 42

        stored = ledger.recent_events()[0]
        assert stored.identity == ALICE
        assert stored.data == {"xp_gained": 10, "total_xp": 10, "streak": 1}

    def test_callback_receives_events(self, ledger):
        callback = Mock()
        ledger.on_event(callback)

        event = ledger.engage(ALICE, T0)

        callback.assert_called_once_with(event)

    def test_callback_error_does_not_propagate(self, ledger):
        ledger.on_event(Mock(side_effect=RuntimeError("boom")))
        ledger.engage(ALICE, T0)
        assert ledger.xp(ALICE) == 10


# ============================================================================
# Test Concurrency
# ============================================================================

class TestConcurrency:
    """Tests that concurrent actions serialize."""

    @pytest.mark.timeout(30)
    def test_concurrent_votes(self, election):
        identities = [f"voter{i:03d}" for i in range(40)]

        def vote(identity):
            election.vote_a(identity, T0)

        threads = [threading.Thread(target=vote, args=(i,)) for i in identities]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert election.votes_a == 40
        assert election.participant_count() == 40

    @pytest.mark.timeout(30)
    def test_concurrent_engage_same_identity(self, ledger):
        """Only one of many simultaneous engagements passes the cooldown."""
        results = []

        def engage():
            try:
                ledger.engage(ALICE, T0)
                results.append("ok")
            except CooldownActive:
                results.append("cooldown")

        threads = [threading.Thread(target=engage) for _ in range(10)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert results.count("ok") == 1
        assert ledger.xp(ALICE) == 10

    @pytest.mark.timeout(30)
    def test_history_follows_commit_order(self, ledger):
        """An action delayed after commit keeps its place in the history."""
        alice_committed = threading.Event()
        bob_done = threading.Event()

        def slow_debug(message, *args, **kwargs):
            if message.startswith(f"Engagement from {ALICE[:16]}"):
                alice_committed.set()
                bob_done.wait(10)

        alice = threading.Thread(target=ledger.engage, args=(ALICE, T0))
        with patch("engagevote.protocol.ledger.logger") as mock_logger:
            mock_logger.debug.side_effect = slow_debug
            alice.start()
            assert alice_committed.wait(10)
            ledger.engage(BOB, T0)
            bob_done.set()
            alice.join()

        assert [e.identity for e in ledger.recent_events()] == [ALICE, BOB]


# ============================================================================
# Test End-to-End
# ============================================================================

class TestEndToEnd:
    """Full election flow."""

    def test_single_voter_flow(self, ledger):
        ledger.claim_ownership(OWNER, T0)
        ledger.start_election(OWNER, T0)

        engaged = ledger.engage(ALICE, T0 + 10)
        assert engaged.data["total_xp"] == 10
        assert ledger.streak_of(ALICE) == 1

        first = ledger.vote_a(ALICE, T0 + 20)
        assert first.data["power"] == 1
        assert ledger.votes_a == 1

        second = ledger.vote_a(ALICE, T0 + 20 + 5 * MINUTE)
        assert second.data["power"] == 1
        assert ledger.votes_a == 2

        claimed = ledger.claim_rewards(ALICE, T0 + HOUR)
        assert claimed.data["amount"] == 1 + 5 + 5
        assert ledger.reward_balance(ALICE) == 0

    def test_multi_cycle(self, ledger):
        """Engagement progress carries across election cycles."""
        ledger.claim_ownership(OWNER, T0)
        for i in range(20):
            ledger.engage(ALICE, T0 + i * HOUR)

        ledger.start_election(OWNER, T0 + DAY)
        ledger.vote_b(ALICE, T0 + DAY)
        ledger.end_election(OWNER, T0 + DAY + HOUR)
        ledger.reset_all(OWNER, T0 + DAY + HOUR)

        ledger.start_election(OWNER, T0 + 2 * DAY)
        event = ledger.vote_c(ALICE, T0 + 2 * DAY)

        assert event.data["power"] == 3
        assert ledger.votes_b == 0
        assert ledger.votes_c == 3
        assert ledger.leading_choice() == (VoteChoice.C, 3)
