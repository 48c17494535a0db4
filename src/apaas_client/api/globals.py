"""Global options and global (environment) variables."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from apaas_client.api.base import ApiContext, ApiGroup, segment

if TYPE_CHECKING:
    from apaas_client.models import ApiResponse
    from apaas_client.resilience.pagination import OffsetPageResult

logger = logging.getLogger(__name__)


class _GlobalCatalogApi(ApiGroup):
    """detail / list / list_all over one ``/api/data/v1/namespaces/{ns}/<kind>`` catalog."""

    kind = ""
    label = ""

    def _base(self) -> str:
        return f"/api/data/v1/namespaces/{self._ns()}/{self.kind}"

    async def detail(self, api_name: str) -> ApiResponse:
        """One entry by API name."""
        logger.info("Fetching detail", extra={"label": self.label, "api_name": api_name})
        return await self._call(
            f"{self.label}.detail", "GET", f"{self._base()}/{segment(api_name, 'api_name')}"
        )

    async def list(
        self,
        limit: int = 100,
        offset: int = 0,
        filter: Mapping[str, Any] | None = None,
    ) -> ApiResponse:
        """One page of entries. ``filter`` accepts ``{"quickQuery": ...}``."""
        body: dict[str, Any] = {"limit": limit, "offset": offset}
        if filter:
            body["filter"] = dict(filter)
        logger.info(
            "Fetching list",
            extra={"label": self.label, "offset": offset, "limit": limit},
        )
        return await self._call(f"{self.label}.list", "POST", f"{self._base()}/list", json=body)

    async def list_all(
        self,
        limit: int = 100,
        filter: Mapping[str, Any] | None = None,
    ) -> OffsetPageResult[Any]:
        """Every entry, page by page."""
        return await self._collect_offset(
            f"{self.label}.list_all",
            lambda offset, page_limit: self.list(limit=page_limit, offset=offset, filter=filter),
            limit,
        )


class GlobalOptionsApi(_GlobalCatalogApi):
    kind = "globalOptions"
    label = "global.options"


class GlobalVariablesApi(_GlobalCatalogApi):
    kind = "globalVariables"
    label = "global.variables"


class GlobalApi:
    """Namespace-wide option sets and variables."""

    def __init__(self, ctx: ApiContext) -> None:
        self.options = GlobalOptionsApi(ctx)
        self.variables = GlobalVariablesApi(ctx)
