"""
Object (data table) endpoints: metadata, record search, create, update, delete.

Record paths live under ``/v1/data/namespaces/{ns}/objects/{object}``;
metadata under ``/api/data/v1/namespaces/{ns}/meta/objects``.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from apaas_client.api.base import ApiContext, ApiGroup, segment
from apaas_client.errors import PermanentRemoteError
from apaas_client.logging_config import TRACE
from apaas_client.models import CountQuery, ObjectListPage, RecordCount
from apaas_client.resilience.batching import (
    UNKNOWN_ID,
    BatchResult,
    Failure,
    Success,
    UnitOutcome,
    validate_batch_input,
)
from apaas_client.resilience.pagination import (
    CursorPage,
    CursorPageResult,
    CursorPaginator,
    OffsetPage,
    OffsetPageResult,
    OffsetPaginator,
)

if TYPE_CHECKING:
    from apaas_client.models import ApiResponse
    from apaas_client.resilience.retry import RetryPolicy

logger = logging.getLogger(__name__)

# Server-side maximum records per batch request
RECORD_BATCH_LIMIT = 100


def _item_id(item: Any) -> str:
    if isinstance(item, Mapping) and item.get("_id"):
        return str(item["_id"])
    return UNKNOWN_ID


def _item_error(item: Any, default: str) -> str:
    if isinstance(item, Mapping):
        for key in ("error", "msg", "errors"):
            if item.get(key):
                return str(item[key])
    return default


def _record_outcomes(response: ApiResponse, *, lenient: bool, action: str) -> list[UnitOutcome]:
    """
    Classify per-item results of a batch write.

    lenient=True: success unless the item says ``success: false`` (create).
    lenient=False: success only when the item says ``success: true``.
    """
    outcomes: list[UnitOutcome] = []
    for item in response.items():
        flag = item.get("success") if isinstance(item, Mapping) else None
        ok = flag is not False if lenient else bool(flag)
        if ok:
            outcomes.append(Success(item, _item_id(item)))
        else:
            outcomes.append(Failure(_item_id(item), _item_error(item, f"{action} failed")))
    return outcomes


class ObjectMetadataApi(ApiGroup):
    """Field metadata of objects."""

    def _path(self, object_name: str) -> str:
        return f"/api/data/v1/namespaces/{self._ns()}/meta/objects/{segment(object_name, 'object_name')}"

    async def field(self, object_name: str, field_name: str) -> ApiResponse:
        """Metadata of one field."""
        path = f"{self._path(object_name)}/fields/{segment(field_name, 'field_name')}"
        logger.debug(
            "Fetching field metadata",
            extra={"object_name": object_name, "field_name": field_name},
        )
        return await self._call("object.metadata.field", "GET", path)

    async def fields(self, object_name: str) -> ApiResponse:
        """Metadata of every field of an object."""
        logger.debug("Fetching all fields metadata", extra={"object_name": object_name})
        return await self._call("object.metadata.fields", "GET", self._path(object_name))


class RecordSearchApi(ApiGroup):
    """Record queries."""

    def _path(self, object_name: str) -> str:
        return f"/v1/data/namespaces/{self._ns()}/objects/{segment(object_name, 'object_name')}"

    async def record(
        self, object_name: str, record_id: str, select: list[str] | None = None
    ) -> ApiResponse:
        """Fetch one record by id."""
        path = f"{self._path(object_name)}/records/{segment(record_id, 'record_id')}"
        logger.info("Querying record", extra={"object_name": object_name, "record_id": record_id})
        return await self._call("object.search.record", "POST", path, json={"select": select or []})

    async def records(self, object_name: str, query: Mapping[str, Any]) -> ApiResponse:
        """One ``records_query`` page (at most 100 records)."""
        response: ApiResponse = await self._call(
            "object.search.records",
            "POST",
            f"{self._path(object_name)}/records_query",
            json=dict(query),
        )
        logger.debug(
            "Records queried",
            extra={"object_name": object_name, "code": response.code, "total": response.total()},
        )
        return response

    async def records_all(
        self, object_name: str, query: Mapping[str, Any]
    ) -> CursorPageResult[dict[str, Any]]:
        """
        Every record matching query, following continuation tokens.

        With ``use_page_token`` set the first request carries an empty token.
        Any failed page aborts the whole query.

        Raises:
            PermanentRemoteError: On a non-success envelope.
            TransportError: On a failed call.
        """
        base = dict(query)

        async def fetch(token: str) -> CursorPage[dict[str, Any]]:
            body = dict(base)
            if token or base.get("use_page_token"):
                body["page_token"] = token
            response = await self.records(object_name, body)
            if not response.ok:
                logger.error(
                    "Error querying records",
                    extra={"object_name": object_name, "code": response.code, "error": response.msg},
                )
            response.raise_for_code("Query")
            next_token = response.data_dict().get("next_page_token")
            return CursorPage(
                items=response.items(),
                total=response.total(),
                next_token=str(next_token) if next_token is not None else None,
            )

        paginator: CursorPaginator[dict[str, Any]] = CursorPaginator(
            fetch, label=f"object.search.records_all:{object_name}"
        )
        return await paginator.collect()

    async def count(
        self, object_name: str, query: Mapping[str, Any] | None = None
    ) -> RecordCount:
        """
        Count records, optionally filtered.

        Sends a minimal query (one ``_id`` per page) merged with the caller's
        overrides.

        Raises:
            PermanentRemoteError: On a non-success envelope.
        """
        body = CountQuery.model_validate(dict(query or {})).to_body()
        logger.info("Counting records", extra={"object_name": object_name})
        logger.debug("Count query", extra={"object_name": object_name, "query": body})

        response = await self.records(object_name, body)
        if not response.ok:
            logger.error(
                "Error counting records",
                extra={"object_name": object_name, "code": response.code, "error": response.msg},
            )
        response.raise_for_code("Count")

        total = response.total() or 0
        logger.info("Records counted", extra={"object_name": object_name, "total": total})
        return RecordCount(code=response.code, msg=response.msg, total=total)


class _RecordWriteApi(ApiGroup):
    """Shared chunked-write driver for create/update/delete."""

    action = "Write"
    lenient = False

    def _path(self, object_name: str) -> str:
        return f"/v1/data/namespaces/{self._ns()}/objects/{segment(object_name, 'object_name')}"

    async def _run_chunks(
        self,
        label: str,
        items: list[Any],
        limit: int,
        send: Any,
        retry: RetryPolicy | None,
    ) -> BatchResult[Any]:
        async def unit_call(chunk: list[Any]) -> list[UnitOutcome]:
            response: ApiResponse = await send(chunk)
            response.raise_for_code(self.action)
            logger.log(TRACE, "Chunk response: %s", response.to_json().decode(), extra={"label": label})
            return _record_outcomes(response, lenient=self.lenient, action=self.action)

        return await self._ctx.batches.run_batch(
            items, limit, unit_call, retry_policy=retry, label=label
        )


class RecordCreateApi(_RecordWriteApi):
    """Record creation."""

    action = "Creation"
    lenient = True

    async def record(self, object_name: str, record: Mapping[str, Any]) -> ApiResponse:
        """Create one record."""
        logger.info("Creating record", extra={"object_name": object_name})
        return await self._call(
            "object.create.record",
            "POST",
            f"{self._path(object_name)}/records",
            json={"record": dict(record)},
        )

    async def _send_batch(self, object_name: str, records: list[Any]) -> ApiResponse:
        return await self._request(
            "POST", f"{self._path(object_name)}/records_batch", json={"records": records}
        )

    async def records(self, object_name: str, records: list[Mapping[str, Any]]) -> ApiResponse:
        """Create up to 100 records in one call."""
        validate_batch_input(records, "records")
        logger.info("Creating records", extra={"object_name": object_name, "count": len(records)})
        return await self._ctx.scheduler.schedule(
            lambda: self._send_batch(object_name, list(records)),
            label="object.create.records",
        )

    async def records_all(
        self,
        object_name: str,
        records: list[Mapping[str, Any]],
        limit: int = RECORD_BATCH_LIMIT,
        retry: RetryPolicy | None = None,
    ) -> BatchResult[Any]:
        """
        Create any number of records, ``limit`` per call.

        An item counts as created unless the server reports ``success: false``.
        """
        validate_batch_input(records, "records")
        return await self._run_chunks(
            f"object.create.records_all:{object_name}",
            list(records),
            limit,
            lambda chunk: self._send_batch(object_name, chunk),
            retry,
        )


class RecordUpdateApi(_RecordWriteApi):
    """Record updates."""

    action = "Update"

    async def record(
        self, object_name: str, record_id: str, record: Mapping[str, Any]
    ) -> ApiResponse:
        """Update one record."""
        logger.info("Updating record", extra={"object_name": object_name, "record_id": record_id})
        return await self._call(
            "object.update.record",
            "PATCH",
            f"{self._path(object_name)}/records/{segment(record_id, 'record_id')}",
            json={"record": dict(record)},
        )

    async def _send_batch(self, object_name: str, records: list[Any]) -> ApiResponse:
        return await self._request(
            "PATCH", f"{self._path(object_name)}/records_batch", json={"records": records}
        )

    async def records(self, object_name: str, records: list[Mapping[str, Any]]) -> ApiResponse:
        """Update up to 100 records (each carrying its ``_id``) in one call."""
        validate_batch_input(records, "records")
        logger.info("Updating records", extra={"object_name": object_name, "count": len(records)})
        return await self._ctx.scheduler.schedule(
            lambda: self._send_batch(object_name, list(records)),
            label="object.update.records",
        )

    async def records_all(
        self,
        object_name: str,
        records: list[Mapping[str, Any]],
        limit: int = RECORD_BATCH_LIMIT,
        retry: RetryPolicy | None = None,
    ) -> BatchResult[Any]:
        """Update any number of records. An item succeeds only on ``success: true``."""
        validate_batch_input(records, "records")
        return await self._run_chunks(
            f"object.update.records_all:{object_name}",
            list(records),
            limit,
            lambda chunk: self._send_batch(object_name, chunk),
            retry,
        )


class RecordDeleteApi(_RecordWriteApi):
    """Record deletion."""

    action = "Delete"

    async def record(self, object_name: str, record_id: str) -> ApiResponse:
        """Delete one record."""
        logger.info("Deleting record", extra={"object_name": object_name, "record_id": record_id})
        return await self._call(
            "object.delete.record",
            "DELETE",
            f"{self._path(object_name)}/records/{segment(record_id, 'record_id')}",
        )

    async def _send_batch(self, object_name: str, ids: list[str]) -> ApiResponse:
        return await self._request(
            "DELETE", f"{self._path(object_name)}/records_batch", json={"ids": ids}
        )

    async def records(self, object_name: str, ids: list[str]) -> ApiResponse:
        """Delete up to 100 records in one call."""
        validate_batch_input(ids, "ids")
        logger.info("Deleting records", extra={"object_name": object_name, "count": len(ids)})
        return await self._ctx.scheduler.schedule(
            lambda: self._send_batch(object_name, list(ids)),
            label="object.delete.records",
        )

    async def records_all(
        self,
        object_name: str,
        ids: list[str],
        limit: int = RECORD_BATCH_LIMIT,
        retry: RetryPolicy | None = None,
    ) -> BatchResult[Any]:
        """Delete any number of records. An item succeeds only on ``success: true``."""
        validate_batch_input(ids, "ids")
        return await self._run_chunks(
            f"object.delete.records_all:{object_name}",
            list(ids),
            limit,
            lambda chunk: self._send_batch(object_name, chunk),
            retry,
        )


class ObjectApi(ApiGroup):
    """Objects of the namespace and their records."""

    def __init__(self, ctx: ApiContext) -> None:
        super().__init__(ctx)
        self.metadata = ObjectMetadataApi(ctx)
        self.search = RecordSearchApi(ctx)
        self.create = RecordCreateApi(ctx)
        self.update = RecordUpdateApi(ctx)
        self.delete = RecordDeleteApi(ctx)

    async def list(
        self,
        offset: int = 0,
        limit: int = 50,
        filter: Mapping[str, Any] | None = None,
    ) -> ObjectListPage:
        """
        One page of the object list.

        ``has_more`` is derived locally as ``offset + limit < total``.
        """
        body: dict[str, Any] = {"offset": offset, "limit": limit}
        if filter:
            body["filter"] = dict(filter)

        logger.debug("Fetching objects list", extra={"offset": offset, "limit": limit})
        response: ApiResponse = await self._call(
            "object.list",
            "POST",
            f"/api/data/v1/namespaces/{self._ns()}/meta/objects/list",
            json=body,
        )

        total = response.total() or 0
        page = ObjectListPage(
            code=response.code,
            msg=response.msg,
            items=response.items(),
            total=total,
            has_more=offset + limit < total,
        )
        logger.debug(
            "Objects list fetched",
            extra={"code": page.code, "total": page.total, "more": page.has_more},
        )
        return page

    async def list_all(
        self,
        limit: int = 50,
        filter: Mapping[str, Any] | None = None,
    ) -> OffsetPageResult[dict[str, Any]]:
        """
        Every object, page by page.

        Failed pages are recorded in the result instead of aborting the run.
        """

        async def fetch(offset: int, page_limit: int) -> OffsetPage[dict[str, Any]]:
            page = await self.list(offset=offset, limit=page_limit, filter=filter)
            if page.code != "0":
                raise PermanentRemoteError.from_envelope(page.code, page.msg, "Query")
            return OffsetPage(items=page.items, total=page.total, has_more=page.has_more)

        paginator: OffsetPaginator[dict[str, Any]] = OffsetPaginator(
            fetch, limit=limit, label="object.list_all"
        )
        return await paginator.collect()
