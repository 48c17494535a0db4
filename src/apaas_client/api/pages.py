"""Builder page metadata and page links."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from apaas_client.api.base import ApiGroup, segment
from apaas_client.errors import ValidationError

if TYPE_CHECKING:
    from apaas_client.models import ApiResponse
    from apaas_client.resilience.pagination import OffsetPageResult

logger = logging.getLogger(__name__)

# Server-side maximum page size
PAGE_LIST_LIMIT = 200


class PageApi(ApiGroup):
    """Pages built in the application builder."""

    def _base(self) -> str:
        return f"/api/builder/v1/namespaces/{self._ns()}/meta/pages"

    async def list(self, limit: int = 100, offset: int = 0) -> ApiResponse:
        """One page of the page list (limit at most 200)."""
        if not 0 < limit <= PAGE_LIST_LIMIT:
            raise ValidationError(f"limit must be in 1..{PAGE_LIST_LIMIT}, got {limit}")
        logger.info("Fetching pages list", extra={"offset": offset, "limit": limit})
        return await self._call(
            "page.list", "POST", self._base(), json={"limit": limit, "offset": offset}
        )

    async def list_all(self, limit: int = 100) -> OffsetPageResult[Any]:
        """Every page of the application."""
        if not 0 < limit <= PAGE_LIST_LIMIT:
            raise ValidationError(f"limit must be in 1..{PAGE_LIST_LIMIT}, got {limit}")
        return await self._collect_offset(
            "page.list_all",
            lambda offset, page_limit: self.list(limit=page_limit, offset=offset),
            limit,
        )

    async def detail(self, page_id: str) -> ApiResponse:
        logger.info("Fetching page detail", extra={"page_id": page_id})
        return await self._call("page.detail", "GET", f"{self._base()}/{segment(page_id, 'page_id')}")

    async def url(
        self,
        page_id: str,
        page_params: Any = None,
        parent_page_params: Any = None,
        nav_id: str | None = None,
        tab_id: str | None = None,
    ) -> ApiResponse:
        """
        Access link of a page.

        Only the given optional arguments are sent.
        """
        body: dict[str, Any] = {}
        if page_params:
            body["pageParams"] = page_params
        if parent_page_params:
            body["parentPageParams"] = parent_page_params
        if nav_id:
            body["navId"] = nav_id
        if tab_id:
            body["tabId"] = tab_id

        logger.info("Fetching page URL", extra={"page_id": page_id})
        return await self._call(
            "page.url",
            "POST",
            f"{self._base()}/{segment(page_id, 'page_id')}/link",
            json=body,
        )
