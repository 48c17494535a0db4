"""
Shared plumbing for endpoint groups.

Every group holds the same ApiContext. Two request paths exist:

- ``_request``: credential check + transport call, no admission. Used as the
  unit call inside batch runs, which are admitted chunk by chunk.
- ``_call``: ``_request`` admitted through the client's CallScheduler. Used by
  every public single-call operation.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any
from urllib.parse import quote

from apaas_client.errors import ValidationError
from apaas_client.resilience.pagination import OffsetPage, OffsetPageResult, OffsetPaginator

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from apaas_client.models import ApiResponse
    from apaas_client.resilience.batching import BatchAggregator
    from apaas_client.resilience.credentials import CredentialStore
    from apaas_client.resilience.retry import RetryExecutor, RetryPolicy
    from apaas_client.resilience.scheduler import CallScheduler
    from apaas_client.transport import FormFile, Transport

logger = logging.getLogger(__name__)


@dataclass
class ApiContext:
    """Collaborators shared by all endpoint groups of one client."""

    transport: Transport
    credentials: CredentialStore
    scheduler: CallScheduler
    retry: RetryExecutor
    batches: BatchAggregator
    namespace: str
    default_retry: RetryPolicy


def segment(value: str, name: str = "id") -> str:
    """Quote one path segment. Empty values are rejected."""
    if not isinstance(value, str) or not value:
        raise ValidationError(f"{name} must be a non-empty string")
    return quote(value, safe="")


class ApiGroup:
    """Base class for an endpoint group."""

    def __init__(self, ctx: ApiContext) -> None:
        self._ctx = ctx

    @property
    def namespace(self) -> str:
        return self._ctx.namespace

    def _ns(self) -> str:
        return segment(self._ctx.namespace, "namespace")

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        params: dict[str, str] | None = None,
        form: FormFile | None = None,
        timeout_s: float | None = None,
        raw: bool = False,
    ) -> Any:
        token = await self._ctx.credentials.ensure_valid()
        return await self._ctx.transport.invoke(
            method,
            path,
            headers={"Authorization": token},
            json=json,
            params=params,
            form=form,
            timeout_s=timeout_s,
            raw=raw,
        )

    async def _call(
        self,
        label: str,
        method: str,
        path: str,
        *,
        json: Any = None,
        params: dict[str, str] | None = None,
        form: FormFile | None = None,
        timeout_s: float | None = None,
        raw: bool = False,
    ) -> Any:
        return await self._ctx.scheduler.schedule(
            lambda: self._request(
                method,
                path,
                json=json,
                params=params,
                form=form,
                timeout_s=timeout_s,
                raw=raw,
            ),
            label=label,
        )

    async def _collect_offset(
        self,
        label: str,
        fetch_page: Callable[[int, int], Awaitable[ApiResponse]],
        limit: int,
    ) -> OffsetPageResult[Any]:
        """Drive an offset/limit list endpoint whose envelope carries ``items`` and ``total``."""

        async def fetch(offset: int, page_limit: int) -> OffsetPage[Any]:
            response = await fetch_page(offset, page_limit)
            if not response.ok:
                logger.error(
                    "Error fetching page",
                    extra={"label": label, "code": response.code, "error": response.msg},
                )
            response.raise_for_code("Fetch")
            return OffsetPage(items=response.items(), total=response.total())

        paginator: OffsetPaginator[Any] = OffsetPaginator(fetch, limit=limit, label=label)
        return await paginator.collect()
