"""
Pagination state machines.

Two variants:

- OffsetPaginator: offset/limit pages against a known total. A failed page
  is recorded and skipped; the run continues while offset < total. An
  AuthError aborts the run.
- CursorPaginator: opaque continuation tokens. Any failure aborts the whole
  run.

Pages are fetched strictly one after another. Admission and credentials are
handled by the fetch callable, not here.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Generic, TypeVar

from apaas_client.errors import AuthError, TransportError, ValidationError
from apaas_client.logging_config import TRACE

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Code recorded for pages that failed without an envelope code
EXCEPTION_CODE = "1"


@dataclass
class OffsetPage(Generic[T]):
    """One successful offset page as returned by a fetch callable."""

    items: list[T]
    total: int | None = None
    has_more: bool | None = None


@dataclass
class CursorPage(Generic[T]):
    """One successful cursor page as returned by a fetch callable."""

    items: list[T]
    total: int | None = None
    next_token: str | None = None


@dataclass
class PageState:
    offset: int = 0
    limit: int = 50
    total: int = 0
    has_more: bool = True


@dataclass
class CursorState:
    page_token: str = ""
    has_more: bool = True


@dataclass(frozen=True)
class FailedPage:
    """A page that could not be fetched. Recorded, not fatal."""

    offset: int
    limit: int
    code: str
    msg: str

    def to_dict(self) -> dict[str, Any]:
        return {"offset": self.offset, "limit": self.limit, "code": self.code, "msg": self.msg}


@dataclass
class OffsetPageResult(Generic[T]):
    """Accumulated result of an offset pagination run.

    ``code`` is the number of failed pages as a string ("0" when complete).
    """

    total: int = 0
    items: list[T] = field(default_factory=list)
    failed: list[FailedPage] = field(default_factory=list)

    @property
    def code(self) -> str:
        return str(len(self.failed))

    @property
    def msg(self) -> str:
        if not self.failed:
            return "Success"
        return f"Completed with {len(self.failed)} failed page(s)"

    @property
    def complete(self) -> bool:
        return not self.failed

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "code": self.code,
            "msg": self.msg,
            "items": list(self.items),
            "total": self.total,
        }
        if self.failed:
            result["failed"] = [page.to_dict() for page in self.failed]
        return result


@dataclass
class CursorPageResult(Generic[T]):
    """Accumulated result of a cursor pagination run."""

    total: int = 0
    items: list[T] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"total": self.total, "items": list(self.items)}


def cursor_has_more(token: str | None) -> bool:
    """A continuation token means more pages unless empty or the literal "null"."""
    return bool(token) and token != "null"


def _failure_code(error: BaseException) -> str:
    if isinstance(error, TransportError) and error.code:
        return error.code
    return EXCEPTION_CODE


def _failure_msg(error: BaseException) -> str:
    if isinstance(error, TransportError) and error.msg:
        return error.msg
    return str(error) or type(error).__name__


class OffsetPaginator(Generic[T]):
    """
    Drives offset/limit pagination with failed-page tolerance.

    Usage:
        paginator = OffsetPaginator(lambda offset, limit: fetch(offset, limit), limit=50)
        result = await paginator.collect()
    """

    def __init__(
        self,
        fetch: Callable[[int, int], Awaitable[OffsetPage[T]]],
        *,
        limit: int = 50,
        label: str = "offset",
    ) -> None:
        if limit <= 0:
            raise ValidationError(f"limit must be > 0, got {limit}")
        self._fetch = fetch
        self._label = label
        self.state = PageState(limit=limit)

    async def collect(self) -> OffsetPageResult[T]:
        """Fetch every page and return the accumulated result."""
        state = self.state
        result: OffsetPageResult[T] = OffsetPageResult()
        succeeded = 0
        total_pages = 0

        logger.info(
            "Starting paginated query",
            extra={"label": self._label, "limit": state.limit},
        )

        while state.has_more:
            try:
                page = await self._fetch(state.offset, state.limit)
            except AuthError:
                logger.error(
                    "Credential unavailable, aborting paginated query",
                    extra={"label": self._label, "offset": state.offset},
                )
                raise
            except Exception as e:
                failed = FailedPage(state.offset, state.limit, _failure_code(e), _failure_msg(e))
                result.failed.append(failed)
                logger.error(
                    "Page fetch failed",
                    extra={
                        "label": self._label,
                        "offset": state.offset,
                        "code": failed.code,
                        "error": failed.msg,
                    },
                )
                state.offset += state.limit
                # Total unknown until one page succeeds
                state.has_more = succeeded > 0 and state.offset < state.total
                continue

            succeeded += 1
            result.items.extend(page.items)
            if page.total is not None:
                state.total = page.total

            if succeeded == 1:
                total_pages = math.ceil(state.total / state.limit)
                logger.info(
                    "Total items: %d, pages: %d",
                    state.total,
                    total_pages,
                    extra={"label": self._label},
                )

            if page.has_more is not None:
                state.has_more = page.has_more
            else:
                state.has_more = state.offset + state.limit < state.total
            state.offset += state.limit

            width = len(str(total_pages))
            logger.info(
                "Page completed: [%s/%s]",
                str(succeeded).zfill(width),
                str(total_pages).zfill(width),
                extra={"label": self._label},
            )
            logger.debug(
                "Page details",
                extra={"label": self._label, "count": len(page.items), "more": state.has_more},
            )
            logger.log(TRACE, "Page data: %s", page.items, extra={"label": self._label})

        result.total = state.total
        logger.info(
            "Paginated query completed",
            extra={
                "label": self._label,
                "code": result.code,
                "total": result.total,
                "fetched": len(result.items),
                "failed_pages": len(result.failed),
            },
        )
        return result


class CursorPaginator(Generic[T]):
    """
    Drives continuation-token pagination. Any failure aborts the run.

    The first request carries an empty token.
    """

    def __init__(
        self,
        fetch: Callable[[str], Awaitable[CursorPage[T]]],
        *,
        label: str = "cursor",
    ) -> None:
        self._fetch = fetch
        self._label = label
        self.state = CursorState()

    async def collect(self) -> CursorPageResult[T]:
        """Fetch every page and return the accumulated result."""
        state = self.state
        result: CursorPageResult[T] = CursorPageResult()
        page_number = 0

        while state.has_more:
            page = await self._fetch(state.page_token)
            page_number += 1
            result.items.extend(page.items)

            if page_number == 1:
                result.total = page.total or 0
                logger.info(
                    "Starting paginated query, total=%d",
                    result.total,
                    extra={"label": self._label},
                )

            next_token = page.next_token or ""
            if cursor_has_more(next_token) and next_token == state.page_token:
                logger.warning(
                    "Server repeated the continuation token, stopping",
                    extra={"label": self._label, "page": page_number},
                )
                state.has_more = False
                break

            state.page_token = next_token
            state.has_more = cursor_has_more(next_token)
            logger.debug(
                "Page %d completed",
                page_number,
                extra={"label": self._label, "count": len(page.items), "more": state.has_more},
            )
            logger.log(TRACE, "Page data: %s", page.items, extra={"label": self._label})

        logger.info(
            "Paginated query completed",
            extra={"label": self._label, "total": result.total, "fetched": len(result.items)},
        )
        return result
