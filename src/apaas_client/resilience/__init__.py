"""Resilience and flow control: credentials, admission, retry, batching, pagination."""

from apaas_client.resilience.batching import (
    BatchAggregator,
    BatchResult,
    FailedItem,
    Failure,
    Success,
    UnitOutcome,
    split,
)
from apaas_client.resilience.credentials import Credential, CredentialStore
from apaas_client.resilience.pagination import (
    CursorPage,
    CursorPageResult,
    CursorPaginator,
    FailedPage,
    OffsetPage,
    OffsetPageResult,
    OffsetPaginator,
)
from apaas_client.resilience.retry import (
    DEFAULT_RETRY_POLICY,
    RetryExecutor,
    RetryPolicy,
    compute_retry_delay,
    is_transient_error,
)
from apaas_client.resilience.scheduler import CallScheduler, SchedulerConfig, SchedulerMetrics

__all__ = [
    "DEFAULT_RETRY_POLICY",
    "BatchAggregator",
    "BatchResult",
    "CallScheduler",
    "Credential",
    "CredentialStore",
    "CursorPage",
    "CursorPageResult",
    "CursorPaginator",
    "FailedItem",
    "FailedPage",
    "Failure",
    "OffsetPage",
    "OffsetPageResult",
    "OffsetPaginator",
    "RetryExecutor",
    "RetryPolicy",
    "SchedulerConfig",
    "SchedulerMetrics",
    "Success",
    "UnitOutcome",
    "compute_retry_delay",
    "is_transient_error",
    "split",
]
