"""
engagevote/metrics.py

Prometheus metrics collection for engagevote.

Provides metrics for monitoring tallies, election state, action
throughput, rejections and the distribution of cast voting power.
"""

import time
import logging
import threading
from typing import TYPE_CHECKING, Dict, Any

from .config import MIN_VOTING_POWER, MAX_VOTING_POWER
from .protocol.errors import ERRORS_BY_CODE
from .protocol.events import EventType, LedgerEvent

if TYPE_CHECKING:
    from .protocol.ledger import EngagementLedger

logger = logging.getLogger("engagevote.metrics")

VERSION = "0.1.0"


class MetricsCollector:
    """
    Prometheus metrics collector for engagevote.

    Subscribes to the ledger's events to count successful actions and
    build a histogram of cast voting power. Rejections are recorded by
    the invocation layer through record_rejection().

    Usage:
        from engagevote.protocol.ledger import EngagementLedger
        from engagevote.metrics import MetricsCollector

        ledger = EngagementLedger()
        metrics = MetricsCollector(ledger)

        # Get metrics in Prometheus format
        prometheus_output = metrics.collect()
    """

    # Metric definitions
    METRICS = {
        "engagevote_votes": {
            "type": "gauge",
            "help": "Weighted votes per choice",
        },
        "engagevote_total_votes": {
            "type": "gauge",
            "help": "Sum of weighted votes across all choices",
        },
        "engagevote_participants": {
            "type": "gauge",
            "help": "Number of identities that have engaged or voted",
        },
        "engagevote_outstanding_rewards": {
            "type": "gauge",
            "help": "Unclaimed reward balance across all identities",
        },
        "engagevote_election_active": {
            "type": "gauge",
            "help": "Whether an election is running (1=yes, 0=no)",
        },
        "engagevote_owner_claimed": {
            "type": "gauge",
            "help": "Whether ownership has been claimed (1=yes, 0=no)",
        },
        "engagevote_actions_total": {
            "type": "counter",
            "help": "Total successful actions by kind",
        },
        "engagevote_rejections_total": {
            "type": "counter",
            "help": "Total rejected actions by error code",
        },
        "engagevote_vote_power": {
            "type": "histogram",
            "help": "Voting power carried by cast votes",
        },
        "engagevote_uptime_seconds": {
            "type": "counter",
            "help": "Collector uptime in seconds",
        },
        "engagevote_info": {
            "type": "gauge",
            "help": "Ledger information (version as label)",
        },
    }

    def __init__(self, ledger: "EngagementLedger"):
        """
        Initialize metrics collector.

        Args:
            ledger: Ledger to collect metrics from
        """
        self.ledger = ledger
        self._start_time = time.time()
        self._lock = threading.Lock()

        self._action_counts: Dict[str, int] = {t.value: 0 for t in EventType}
        self._rejection_counts: Dict[str, int] = {code: 0 for code in ERRORS_BY_CODE}

        # Histogram buckets for power (one per possible integer value)
        self._power_buckets = list(range(MIN_VOTING_POWER, MAX_VOTING_POWER + 1))
        self._power_counts = {b: 0 for b in self._power_buckets}
        self._power_sum = 0
        self._power_count = 0

        ledger.on_event(self._on_event)

    def _on_event(self, event: LedgerEvent) -> None:
        with self._lock:
            self._action_counts[event.event_type.value] += 1
        if event.event_type == EventType.VOTED:
            self.record_vote_power(event.data["power"])

    def record_vote_power(self, power: int) -> None:
        """Record the power of a cast vote."""
        with self._lock:
            self._power_sum += power
            self._power_count += 1
            if power in self._power_counts:
                self._power_counts[power] += 1

    def record_rejection(self, code: str) -> None:
        """Record a rejected action by error code."""
        with self._lock:
            self._rejection_counts[code] = self._rejection_counts.get(code, 0) + 1

    def collect(self) -> str:
        """
        Collect all metrics and return in Prometheus format.

        Returns:
            Prometheus-formatted metrics string
        """
        lines = []

        def add_header(name: str):
            metric_def = self.METRICS.get(name, {})
            lines.append(f"# HELP {name} {metric_def.get('help', '')}")
            lines.append(f"# TYPE {name} {metric_def.get('type', 'gauge')}")

        def add_metric(name: str, value: float, labels: Dict[str, str] = None):
            add_header(name)
            if labels:
                label_str = ",".join(f'{k}="{v}"' for k, v in labels.items())
                lines.append(f"{name}{{{label_str}}} {value}")
            else:
                lines.append(f"{name} {value}")

        def add_labelled(name: str, label: str, values: Dict[str, Any]):
            add_header(name)
            for key, value in values.items():
                lines.append(f'{name}{{{label}="{key}"}} {value}')

        with self._lock:
            action_counts = dict(self._action_counts)
            rejection_counts = dict(self._rejection_counts)
            power_counts = dict(self._power_counts)
            power_sum = self._power_sum
            power_count = self._power_count

        try:
            snapshot = self.ledger.snapshot()

            add_labelled("engagevote_votes", "choice", snapshot["tally"])
            add_metric("engagevote_total_votes", snapshot["total_votes"])
            add_metric("engagevote_participants", snapshot["participants"])
            add_metric("engagevote_outstanding_rewards", self.ledger.outstanding_rewards())
            add_metric("engagevote_election_active", 1 if snapshot["election_active"] else 0)
            add_metric("engagevote_owner_claimed", 1 if snapshot["owner"] else 0)

            add_labelled("engagevote_actions_total", "action", action_counts)
            add_labelled("engagevote_rejections_total", "code", rejection_counts)

            add_metric("engagevote_uptime_seconds", time.time() - self._start_time)
            add_metric("engagevote_info", 1, {"version": VERSION})

            # Vote power histogram
            if power_count > 0:
                add_header("engagevote_vote_power")
                cumulative = 0
                for bucket in self._power_buckets:
                    cumulative += power_counts[bucket]
                    lines.append(f'engagevote_vote_power_bucket{{le="{bucket}"}} {cumulative}')
                lines.append(f'engagevote_vote_power_bucket{{le="+Inf"}} {power_count}')
                lines.append(f"engagevote_vote_power_sum {power_sum}")
                lines.append(f"engagevote_vote_power_count {power_count}")

        except Exception as e:
            logger.error(f"Error collecting metrics: {e}")
            lines.append(f"# Error collecting metrics: {e}")

        return "\n".join(lines) + "\n"

    def get_stats(self) -> Dict[str, Any]:
        """
        Get metrics as a dictionary (for JSON API).

        Returns:
            Dictionary of metric values
        """
        with self._lock:
            actions = dict(self._action_counts)
            rejections = dict(self._rejection_counts)
            power_sum = self._power_sum
            power_count = self._power_count

        try:
            snapshot = self.ledger.snapshot()
            return {
                "votes": snapshot["tally"],
                "total_votes": snapshot["total_votes"],
                "participants": snapshot["participants"],
                "outstanding_rewards": self.ledger.outstanding_rewards(),
                "election_active": snapshot["election_active"],
                "owner_claimed": snapshot["owner"] is not None,
                "actions": actions,
                "rejections": rejections,
                "votes_recorded": power_count,
                "average_power": (
                    power_sum / power_count if power_count else 0.0
                ),
                "uptime_seconds": time.time() - self._start_time,
            }
        except Exception as e:
            logger.error(f"Error getting stats: {e}")
            return {"error": str(e)}

    def reset_counters(self) -> None:
        """Reset all counters (useful for testing)."""
        with self._lock:
            self._action_counts = {t.value: 0 for t in EventType}
            self._rejection_counts = {code: 0 for code in ERRORS_BY_CODE}
            self._power_counts = {b: 0 for b in self._power_buckets}
            self._power_sum = 0
            self._power_count = 0
