"""
vaultdrop/metrics.py

Prometheus metrics collection for vaultdrop.

Exposes trigger throughput, round outcomes, holder count, mailbox depth
and round duration.
"""

import time
import logging
from typing import TYPE_CHECKING, Dict, Any

from .protocol.orchestrator import RoundPhase

if TYPE_CHECKING:
    from .protocol.orchestrator import DistributionActor, RoundOutcome

logger = logging.getLogger("vaultdrop.metrics")


class MetricsCollector:
    """
    Prometheus metrics collector for the distribution actor.

    Usage:
        metrics = MetricsCollector(actor)
        actor.set_on_round_complete(metrics.record_outcome)

        prometheus_output = metrics.collect()
    """

    # Metric definitions
    METRICS = {
        "vaultdrop_events_received_total": {
            "type": "counter",
            "help": "Trigger events accepted into the mailbox",
        },
        "vaultdrop_events_processed_total": {
            "type": "counter",
            "help": "Trigger events fully handled by the actor",
        },
        "vaultdrop_events_skipped_total": {
            "type": "counter",
            "help": "Observed batches that did not touch the vault",
        },
        "vaultdrop_rounds_below_threshold_total": {
            "type": "counter",
            "help": "Events whose vault balance was below threshold",
        },
        "vaultdrop_rounds_submitted_total": {
            "type": "counter",
            "help": "Distribution transactions submitted",
        },
        "vaultdrop_rounds_failed_total": {
            "type": "counter",
            "help": "Distribution rounds aborted by an error",
        },
        "vaultdrop_pending_events": {
            "type": "gauge",
            "help": "Events waiting in the actor mailbox",
        },
        "vaultdrop_holders": {
            "type": "gauge",
            "help": "Cached marker token holder count",
        },
        "vaultdrop_threshold": {
            "type": "gauge",
            "help": "Vault balance that triggers a round (raw units)",
        },
        "vaultdrop_last_round_timestamp_seconds": {
            "type": "gauge",
            "help": "Unix time of the last submitted round (0 if none)",
        },
        "vaultdrop_actor_running": {
            "type": "gauge",
            "help": "Whether the distribution actor is consuming events (1=yes, 0=no)",
        },
        "vaultdrop_uptime_seconds": {
            "type": "counter",
            "help": "Service uptime in seconds",
        },
        "vaultdrop_round_duration_seconds": {
            "type": "histogram",
            "help": "Time spent handling events that reached the threshold",
            "buckets": [0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0],
        },
    }

    def __init__(self, actor: "DistributionActor"):
        """
        Initialize metrics collector.

        Args:
            actor: Distribution actor to collect metrics from
        """
        self.actor = actor
        self._start_time = time.time()

        # Histogram buckets for round duration
        self._duration_buckets = self.METRICS["vaultdrop_round_duration_seconds"]["buckets"]
        self._duration_counts = {b: 0 for b in self._duration_buckets}
        self._duration_counts[float('inf')] = 0
        self._duration_sum = 0.0
        self._duration_count = 0

    def record_outcome(self, outcome: "RoundOutcome") -> None:
        """Record a completed round; only attempted distributions are timed."""
        if outcome.phase not in (RoundPhase.SUBMITTED, RoundPhase.FAILED):
            return
        if outcome.finished_at is None:
            return
        self.record_round_duration(outcome.finished_at - outcome.started_at)

    def record_round_duration(self, seconds: float) -> None:
        """Record a round duration measurement."""
        self._duration_sum += seconds
        self._duration_count += 1

        for bucket in self._duration_buckets:
            if seconds <= bucket:
                self._duration_counts[bucket] += 1
                break
        else:
            self._duration_counts[float('inf')] += 1

    def collect(self) -> str:
        """
        Collect all metrics and return in Prometheus format.

        Returns:
            Prometheus-formatted metrics string
        """
        lines = []

        def add_metric(name: str, value: float):
            metric_def = self.METRICS.get(name, {})
            lines.append(f"# HELP {name} {metric_def.get('help', '')}")
            lines.append(f"# TYPE {name} {metric_def.get('type', 'gauge')}")
            lines.append(f"{name} {value}")

        try:
            actor = self.actor
            add_metric("vaultdrop_events_received_total", actor.events_received)
            add_metric("vaultdrop_events_processed_total", actor.events_processed)
            add_metric("vaultdrop_events_skipped_total", actor.events_skipped)
            add_metric("vaultdrop_rounds_below_threshold_total", actor.rounds_below_threshold)
            add_metric("vaultdrop_rounds_submitted_total", actor.rounds_submitted)
            add_metric("vaultdrop_rounds_failed_total", actor.rounds_failed)
            add_metric("vaultdrop_pending_events", actor.pending_events)
            add_metric("vaultdrop_holders", actor.directory.holders_number)
            add_metric("vaultdrop_threshold", actor.state.threshold())
            add_metric("vaultdrop_last_round_timestamp_seconds", actor.last_round_at or 0)
            add_metric("vaultdrop_actor_running", 1 if actor.is_running else 0)
            add_metric("vaultdrop_uptime_seconds", time.time() - self._start_time)

            if self._duration_count > 0:
                name = "vaultdrop_round_duration_seconds"
                lines.append(f"# HELP {name} {self.METRICS[name]['help']}")
                lines.append(f"# TYPE {name} histogram")

                cumulative = 0
                for bucket in self._duration_buckets:
                    cumulative += self._duration_counts[bucket]
                    lines.append(f'{name}_bucket{{le="{bucket}"}} {cumulative}')

                cumulative += self._duration_counts[float('inf')]
                lines.append(f'{name}_bucket{{le="+Inf"}} {cumulative}')
                lines.append(f"{name}_sum {self._duration_sum}")
                lines.append(f"{name}_count {self._duration_count}")

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
        stats = self.actor.get_stats()
        stats["rounds_timed"] = self._duration_count
        stats["round_duration_sum_seconds"] = self._duration_sum
        return stats

    def reset_counters(self) -> None:
        """Reset the duration histogram (useful for testing)."""
        self._duration_counts = {b: 0 for b in self._duration_buckets}
        self._duration_counts[float('inf')] = 0
        self._duration_sum = 0.0
        self._duration_count = 0
