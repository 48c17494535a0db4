"""Async client for the Feishu aPaaS OpenAPI."""

from apaas_client.client import ApaasClient
from apaas_client.config import ClientConfig
from apaas_client.errors import (
    ApaasError,
    AuthError,
    PermanentRemoteError,
    SchedulerDroppedError,
    SchedulerTimeoutError,
    TransientRemoteError,
    TransportError,
    ValidationError,
)
from apaas_client.logging_config import setup_logging
from apaas_client.models import ApiResponse, ObjectListPage, RecordCount
from apaas_client.resilience import BatchResult, RetryPolicy, SchedulerConfig

__version__ = "0.1.0"

__all__ = [
    "ApaasClient",
    "ApaasError",
    "ApiResponse",
    "AuthError",
    "BatchResult",
    "ClientConfig",
    "ObjectListPage",
    "PermanentRemoteError",
    "RecordCount",
    "RetryPolicy",
    "SchedulerConfig",
    "SchedulerDroppedError",
    "SchedulerTimeoutError",
    "TransientRemoteError",
    "TransportError",
    "ValidationError",
    "__version__",
    "setup_logging",
]
