"""
hydrafanout/metrics.py

Prometheus metrics collection for hydrafanout.

Exposes the live progress of the run in flight (gauges) together with
counters accumulated over every run the collector has seen.
"""

import time
import logging
from decimal import Decimal
from typing import TYPE_CHECKING, Dict, Optional, Any

if TYPE_CHECKING:
    from .protocol.orchestrator import SubmissionOrchestrator, SubmissionOutcome

logger = logging.getLogger("hydrafanout.metrics")


class MetricsCollector:
    """
    Prometheus metrics collector for distribution runs.

    Usage:
        from hydrafanout.metrics import MetricsCollector

        metrics = MetricsCollector()
        coordinator = FanoutCoordinator(client, network, signer, metrics=metrics)

        await coordinator.distribute_all(wallet_id)

        # Get metrics in Prometheus format
        prometheus_output = metrics.collect()
    """

    # Metric definitions
    METRICS = {
        "hydrafanout_members_confirmed": {
            "type": "gauge",
            "help": "Members confirmed in the current run",
        },
        "hydrafanout_members_pending": {
            "type": "gauge",
            "help": "Members not yet confirmed in the current run",
        },
        "hydrafanout_batches_confirmed": {
            "type": "gauge",
            "help": "Transactions confirmed in the current run",
        },
        "hydrafanout_batches_total": {
            "type": "gauge",
            "help": "Transactions planned for the current run",
        },
        "hydrafanout_retries_total": {
            "type": "counter",
            "help": "Total number of transaction resubmissions",
        },
        "hydrafanout_sessions_failed_total": {
            "type": "counter",
            "help": "Total number of failed signing sessions",
        },
        "hydrafanout_runs_total": {
            "type": "counter",
            "help": "Total number of runs by outcome status",
        },
        "hydrafanout_amount_paid_total": {
            "type": "counter",
            "help": "Total amount recorded as paid, in display units",
        },
        "hydrafanout_uptime_seconds": {
            "type": "counter",
            "help": "Collector uptime in seconds",
        },
    }

    def __init__(self, orchestrator: Optional["SubmissionOrchestrator"] = None):
        """
        Initialize metrics collector.

        Args:
            orchestrator: Orchestrator to read live progress from
        """
        self.orchestrator = None
        self._start_time = time.time()

        # Counters (persist across runs)
        self._retries = 0
        self._sessions_failed = 0
        self._amount_paid = Decimal(0)
        self._runs: Dict[str, int] = {}

        if orchestrator is not None:
            self.attach(orchestrator)

    def attach(self, orchestrator: "SubmissionOrchestrator") -> None:
        """Follow a new orchestrator; counters are kept."""
        self.orchestrator = orchestrator
        orchestrator.set_on_retry(lambda session_index, batch_index: self.record_retry())

    def record_retry(self) -> None:
        """Record a transaction resubmission."""
        self._retries += 1

    def record_outcome(self, outcome: "SubmissionOutcome") -> None:
        """Record the terminal outcome of a run."""
        status = outcome.status.value
        self._runs[status] = self._runs.get(status, 0) + 1
        if outcome.failed_session_index is not None:
            self._sessions_failed += 1
        self._amount_paid += sum((r.amount_paid for r in outcome.records), Decimal(0))

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

        def add_metric(name: str, value: Any):
            add_header(name)
            lines.append(f"{name} {value}")

        progress = self.orchestrator.progress if self.orchestrator else None
        add_metric("hydrafanout_members_confirmed", progress.confirmed_members if progress else 0)
        add_metric("hydrafanout_members_pending", progress.pending_members if progress else 0)
        add_metric("hydrafanout_batches_confirmed", progress.confirmed_batches if progress else 0)
        add_metric("hydrafanout_batches_total", progress.total_batches if progress else 0)

        add_metric("hydrafanout_retries_total", self._retries)
        add_metric("hydrafanout_sessions_failed_total", self._sessions_failed)
        add_metric("hydrafanout_amount_paid_total", self._amount_paid)

        add_header("hydrafanout_runs_total")
        for status, count in sorted(self._runs.items()):
            lines.append(f'hydrafanout_runs_total{{status="{status}"}} {count}')

        add_metric("hydrafanout_uptime_seconds", time.time() - self._start_time)

        return "\n".join(lines) + "\n"

    def get_stats(self) -> Dict[str, Any]:
        """
        Get metrics as a dictionary (for JSON output).

        Returns:
            Dictionary of metric values
        """
        stats = {
            "retries": self._retries,
            "sessions_failed": self._sessions_failed,
            "amount_paid": str(self._amount_paid),
            "runs": dict(self._runs),
            "uptime_seconds": time.time() - self._start_time,
        }
        if self.orchestrator:
            stats["progress"] = self.orchestrator.progress.to_dict()
        return stats

    def reset_counters(self) -> None:
        """Reset all counters (useful for testing)."""
        self._retries = 0
        self._sessions_failed = 0
        self._amount_paid = Decimal(0)
        self._runs = {}
