"""
aPaaS OpenAPI client facade.

One ApaasClient owns one transport, one CredentialStore, one CallScheduler
and one RetryExecutor. All endpoint groups share them through an ApiContext.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from apaas_client.api.attachments import AttachmentApi
from apaas_client.api.base import ApiContext
from apaas_client.api.directory import DepartmentApi, UserApi
from apaas_client.api.functions import AutomationApi, FunctionApi
from apaas_client.api.globals import GlobalApi
from apaas_client.api.objects import ObjectApi
from apaas_client.api.pages import PageApi
from apaas_client.errors import AuthError
from apaas_client.logging_config import set_package_level
from apaas_client.models import AppToken, AppTokenRequest
from apaas_client.resilience.batching import BatchAggregator
from apaas_client.resilience.credentials import Credential, CredentialStore
from apaas_client.resilience.retry import RetryExecutor
from apaas_client.resilience.scheduler import CallScheduler
from apaas_client.transport import HttpTransport

if TYPE_CHECKING:
    from collections.abc import Callable

    from apaas_client.config import ClientConfig
    from apaas_client.resilience.retry import SleepFn
    from apaas_client.transport import Transport

logger = logging.getLogger(__name__)

APP_TOKEN_PATH = "/auth/v1/appToken"


class ApaasClient:
    """
    Async client for one aPaaS application namespace.

    Usage:
        async with ApaasClient(ClientConfig()) as client:
            page = await client.object.list()
            result = await client.object.create.records_all("order", records)

    Endpoint groups:
        object, department, user, function, page, attachment, global_, automation
    """

    def __init__(
        self,
        config: ClientConfig,
        *,
        transport: Transport | None = None,
        scheduler: CallScheduler | None = None,
        time_fn: Callable[[], int] | None = None,
        sleep: SleepFn | None = None,
    ) -> None:
        """
        Initialize the client.

        Args:
            config: Client configuration.
            transport: Transport override (default: HttpTransport on config.base_url).
            scheduler: Shared CallScheduler (default: built from config.scheduler).
            time_fn: Clock in epoch milliseconds (for testing).
            sleep: Retry backoff sleep (for testing).
        """
        self._config = config
        self._owns_transport = transport is None
        self._transport: Transport = transport or HttpTransport(
            config.base_url, timeout_s=config.request_timeout_s
        )
        self._scheduler = scheduler or CallScheduler(config.scheduler, time_fn=time_fn)
        self._retry = RetryExecutor(sleep=sleep)
        self._credentials = CredentialStore(
            self._issue_credential,
            disable_cache=config.disable_token_cache,
            time_fn=time_fn,
        )

        ctx = ApiContext(
            transport=self._transport,
            credentials=self._credentials,
            scheduler=self._scheduler,
            retry=self._retry,
            batches=BatchAggregator(self._scheduler, self._retry),
            namespace=config.namespace,
            default_retry=config.retry,
        )
        self.object = ObjectApi(ctx)
        self.department = DepartmentApi(ctx)
        self.user = UserApi(ctx)
        self.function = FunctionApi(ctx)
        self.page = PageApi(ctx)
        self.attachment = AttachmentApi(ctx)
        self.global_ = GlobalApi(ctx)
        self.automation = AutomationApi(ctx)

        logger.info(
            "Client created",
            extra={"namespace": config.namespace, "cache_enabled": not config.disable_token_cache},
        )

    async def _issue_credential(self) -> Credential:
        """Fetch an app token. Not admitted through the scheduler."""
        request = AppTokenRequest(client_id=self._config.client_id, client_secret=self._config.client_secret)
        response = await self._transport.invoke(
            "POST",
            APP_TOKEN_PATH,
            json=request.to_body(),
        )
        if not response.ok:
            raise AuthError(response.msg or f"Token request failed with code {response.code}", response.code)

        try:
            token = AppToken.model_validate(response.data_dict())
        except ValueError as e:
            raise AuthError(f"Malformed token response: {e}", response.code) from e
        return Credential(token=token.access_token, expire_at_ms=token.expire_time)

    async def init(self) -> None:
        """Fetch the first access token."""
        await self._credentials.ensure_valid()
        logger.info("Client initialized", extra={"namespace": self._config.namespace})

    @property
    def namespace(self) -> str:
        return self._config.namespace

    @property
    def token(self) -> str | None:
        """Current access token, or None before the first fetch."""
        return self._credentials.token

    @property
    def token_expire_time(self) -> int | None:
        """Seconds until the current token expires (None before the first fetch)."""
        return self._credentials.remaining_seconds()

    @property
    def credentials(self) -> CredentialStore:
        return self._credentials

    @property
    def scheduler(self) -> CallScheduler:
        return self._scheduler

    @property
    def retry_executor(self) -> RetryExecutor:
        return self._retry

    def set_log_level(self, level: int | str) -> None:
        """Set the package log level ("trace", "debug", "info", ... or a number)."""
        set_package_level(level)
        logger.info("Log level changed", extra={"level": level})

    async def close(self) -> None:
        """Close the transport if the client created it."""
        if self._owns_transport:
            await self._transport.close()

    async def __aenter__(self) -> ApaasClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()
