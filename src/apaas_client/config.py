"""
Client configuration.

Credentials may be passed explicitly or picked up from the environment
(APAAS_NAMESPACE, APAAS_CLIENT_ID, APAAS_CLIENT_SECRET, APAAS_BASE_URL).
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field

from apaas_client.resilience.retry import RetryPolicy
from apaas_client.resilience.scheduler import SchedulerConfig

DEFAULT_BASE_URL = "https://ae-openapi.feishu.cn"

# Redacted env vars for logging
REDACTED_ENV_VARS = frozenset({
    "APAAS_CLIENT_SECRET",
})


@dataclass
class ClientConfig:
    """Main client configuration.

    Attributes:
        namespace: Application namespace (APAAS_NAMESPACE).
        client_id: Application client id (APAAS_CLIENT_ID).
        client_secret: Application client secret (APAAS_CLIENT_SECRET).
        base_url: API base URL (APAAS_BASE_URL).
        disable_token_cache: Fetch a fresh access token before every call.
        request_timeout_s: Default per-request timeout.
        scheduler: Admission policy shared by every call of the client.
        retry: Policy for operations that retry by default (ID exchange).
    """

    namespace: str = ""
    client_id: str = ""
    client_secret: str = ""
    base_url: str = ""
    disable_token_cache: bool = False
    request_timeout_s: float = 30.0
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    retry: RetryPolicy = field(default_factory=RetryPolicy)

    def __post_init__(self) -> None:
        if not self.namespace:
            self.namespace = os.environ.get("APAAS_NAMESPACE", "")
        if not self.client_id:
            self.client_id = os.environ.get("APAAS_CLIENT_ID", "")
        if not self.client_secret:
            self.client_secret = os.environ.get("APAAS_CLIENT_SECRET", "")
        if not self.base_url:
            self.base_url = os.environ.get("APAAS_BASE_URL", DEFAULT_BASE_URL)
        self.base_url = self.base_url.rstrip("/")

        if not self.namespace:
            raise ValueError("APAAS_NAMESPACE required (namespace)")
        if not self.client_id:
            raise ValueError("APAAS_CLIENT_ID required (client_id)")
        if not self.client_secret:
            raise ValueError("APAAS_CLIENT_SECRET required (client_secret)")
        if self.request_timeout_s <= 0:
            raise ValueError(f"request_timeout_s must be > 0, got {self.request_timeout_s}")

    def __repr__(self) -> str:
        return (
            f"ClientConfig(namespace={self.namespace!r}, client_id={self.client_id!r}, "
            f"client_secret='***', base_url={self.base_url!r})"
        )


ENV_VARS = ("APAAS_NAMESPACE", "APAAS_CLIENT_ID", "APAAS_CLIENT_SECRET", "APAAS_BASE_URL")


def env_summary() -> dict[str, str]:
    """Describe the APAAS_* environment for startup logs. Secrets are masked."""
    summary: dict[str, str] = {}
    for name in ENV_VARS:
        value = os.environ.get(name)
        if value is None:
            summary[name] = "<unset>"
        elif name in REDACTED_ENV_VARS:
            summary[name] = "<redacted>"
        else:
            summary[name] = value
    return summary
