"""
Prometheus metrics exporter for the aPaaS client.

Exports low-cardinality metrics for the CallScheduler, RetryExecutor and
CredentialStore of a client. No object name, path, record id or token labels.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from prometheus_client import Counter, Gauge
from prometheus_client.registry import CollectorRegistry

if TYPE_CHECKING:
    from apaas_client.client import ApaasClient
    from apaas_client.resilience.credentials import CredentialStore
    from apaas_client.resilience.retry import RetryExecutor
    from apaas_client.resilience.scheduler import CallScheduler


# Forbidden labels that would cause cardinality explosion
FORBIDDEN_LABELS = frozenset(
    {
        "namespace",
        "object",
        "path",
        "record_id",
        "user_id",
        "department_id",
        "file_id",
        "token",
        "query",
    }
)


class MetricsExporter:
    """
    Prometheus metrics exporter for client flow control.

    Metric families:
    - apaas_sched_* : CallScheduler admission metrics
    - apaas_retry_* : RetryExecutor metrics
    - apaas_cred_*  : CredentialStore metrics

    Usage:
        registry = CollectorRegistry()
        exporter = MetricsExporter(registry=registry)
        exporter.update_from_client(client)
        # generate_latest(registry) -> bytes for a /metrics endpoint
    """

    def __init__(self, registry: CollectorRegistry | None = None) -> None:
        """
        Initialize metrics exporter.

        Args:
            registry: Prometheus CollectorRegistry. If None, a new one is created.
        """
        self._registry = registry or CollectorRegistry()

        # === Scheduler metrics (apaas_sched_*) ===
        self._sched_queue_depth = Gauge(
            "apaas_sched_queue_depth",
            "Current number of calls waiting for admission",
            registry=self._registry,
        )
        self._sched_in_flight = Gauge(
            "apaas_sched_in_flight",
            "Current number of admitted calls in flight",
            registry=self._registry,
        )
        self._sched_max_concurrent = Gauge(
            "apaas_sched_max_concurrent",
            "Configured concurrency cap",
            registry=self._registry,
        )
        self._sched_max_wait_ms = Gauge(
            "apaas_sched_max_wait_ms",
            "Longest observed admission wait in milliseconds",
            registry=self._registry,
        )
        self._sched_requests_admitted = Counter(
            "apaas_sched_requests_admitted",
            "Total calls admitted",
            registry=self._registry,
        )
        self._sched_requests_deferred = Counter(
            "apaas_sched_requests_deferred",
            "Total calls admitted after waiting in the queue",
            registry=self._registry,
        )
        self._sched_requests_dropped = Counter(
            "apaas_sched_requests_dropped",
            "Total calls refused because the queue was full",
            registry=self._registry,
        )
        self._sched_requests_timed_out = Counter(
            "apaas_sched_requests_timed_out",
            "Total calls that timed out waiting for admission",
            registry=self._registry,
        )

        # === Retry metrics (apaas_retry_*) ===
        self._retry_attempts = Counter(
            "apaas_retry_attempts",
            "Total operation attempts under a retry policy",
            registry=self._registry,
        )
        self._retry_retries = Counter(
            "apaas_retry_retries",
            "Total retries after a transient failure",
            registry=self._registry,
        )
        self._retry_exhausted = Counter(
            "apaas_retry_exhausted",
            "Total operations that failed after the last allowed attempt",
            registry=self._registry,
        )

        # === Credential metrics (apaas_cred_*) ===
        self._cred_refreshes = Counter(
            "apaas_cred_refreshes",
            "Total successful access token refreshes",
            registry=self._registry,
        )
        self._cred_refresh_failures = Counter(
            "apaas_cred_refresh_failures",
            "Total failed access token refreshes",
            registry=self._registry,
        )

        # Track last seen values for counter increments (counters are monotonic)
        self._last: dict[str, int] = {}

    @property
    def registry(self) -> CollectorRegistry:
        """Get the Prometheus CollectorRegistry."""
        return self._registry

    def _inc_delta(self, counter: Counter, key: str, current: int) -> None:
        """Increment counter by the growth of ``current`` since the last update."""
        delta = current - self._last.get(key, 0)
        if delta > 0:
            counter.inc(delta)
        self._last[key] = current

    def update(
        self,
        scheduler: CallScheduler | None = None,
        retry: RetryExecutor | None = None,
        credentials: CredentialStore | None = None,
    ) -> None:
        """
        Update all metrics from component states.

        Call this periodically (e.g., on every scrape) to sync internal
        component counters to Prometheus.
        """
        if scheduler is not None:
            self._update_scheduler_metrics(scheduler)

        if retry is not None:
            self._update_retry_metrics(retry)

        if credentials is not None:
            self._update_credential_metrics(credentials)

    def update_from_client(self, client: ApaasClient) -> None:
        """Update from every component of one client."""
        self.update(
            scheduler=client.scheduler,
            retry=client.retry_executor,
            credentials=client.credentials,
        )

    def _update_scheduler_metrics(self, scheduler: CallScheduler) -> None:
        metrics = scheduler.metrics
        # Gauges: set directly
        self._sched_queue_depth.set(metrics.current_queue_depth)
        self._sched_in_flight.set(metrics.current_in_flight)
        self._sched_max_concurrent.set(scheduler.config.max_concurrent)
        self._sched_max_wait_ms.set(metrics.max_wait_ms)

        # Counters: increment by delta since last update
        self._inc_delta(self._sched_requests_admitted, "sched_admitted", metrics.requests_admitted)
        self._inc_delta(self._sched_requests_deferred, "sched_deferred", metrics.requests_deferred)
        self._inc_delta(self._sched_requests_dropped, "sched_dropped", metrics.requests_dropped)
        self._inc_delta(
            self._sched_requests_timed_out, "sched_timed_out", metrics.requests_timed_out
        )

    def _update_retry_metrics(self, retry: RetryExecutor) -> None:
        stats = retry.stats
        self._inc_delta(self._retry_attempts, "retry_attempts", stats.attempts)
        self._inc_delta(self._retry_retries, "retry_retries", stats.retries)
        self._inc_delta(self._retry_exhausted, "retry_exhausted", stats.exhausted)

    def _update_credential_metrics(self, credentials: CredentialStore) -> None:
        stats = credentials.stats
        self._inc_delta(self._cred_refreshes, "cred_refreshes", stats.refreshes)
        self._inc_delta(self._cred_refresh_failures, "cred_refresh_failures", stats.refresh_failures)

    def reset_counter_tracking(self) -> None:
        """
        Reset internal counter tracking.

        Use when components are reset or for testing.
        Does NOT reset the Prometheus counters themselves.
        """
        self._last.clear()


# Metric names a dashboard may rely on
# Note: Counters are exported with _total suffix by prometheus_client
REQUIRED_METRIC_NAMES: frozenset[str] = frozenset(
    {
        # Scheduler (Gauges)
        "apaas_sched_queue_depth",
        "apaas_sched_in_flight",
        "apaas_sched_max_concurrent",
        "apaas_sched_max_wait_ms",
        # Scheduler (Counters)
        "apaas_sched_requests_admitted_total",
        "apaas_sched_requests_deferred_total",
        "apaas_sched_requests_dropped_total",
        "apaas_sched_requests_timed_out_total",
        # Retry (Counters)
        "apaas_retry_attempts_total",
        "apaas_retry_retries_total",
        "apaas_retry_exhausted_total",
        # Credentials (Counters)
        "apaas_cred_refreshes_total",
        "apaas_cred_refresh_failures_total",
    }
)
