"""
Department and user ID exchange against the Feishu directory integration.

Batch exchanges are chunked at 200 ids, carry a 30 s timeout per call and
retry transient failures with the client's default RetryPolicy unless the
caller passes another one.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any, Literal

from apaas_client.api.base import ApiGroup
from apaas_client.errors import ValidationError
from apaas_client.logging_config import TRACE
from apaas_client.resilience.batching import BatchResult, Success, UnitOutcome, validate_batch_input

if TYPE_CHECKING:
    from apaas_client.models import ApiResponse
    from apaas_client.resilience.retry import RetryPolicy

logger = logging.getLogger(__name__)

EXCHANGE_CHUNK_SIZE = 200
EXCHANGE_TIMEOUT_S = 30.0

DepartmentIdType = Literal["department_id", "external_department_id", "external_open_department_id"]
UserIdType = Literal["user_id", "external_user_id", "external_open_id"]


class _ExchangeApi(ApiGroup):
    """Shared exchange driver. Subclasses name the endpoint and id fields."""

    path = ""
    id_type_field = ""
    ids_field = ""
    label = ""

    async def _exchange_chunk(
        self, id_type: str, ids: list[str], extra: dict[str, Any]
    ) -> list[Any]:
        body = {self.id_type_field: id_type, **extra, self.ids_field: ids}
        response: ApiResponse = await self._request(
            "POST", self.path, json=body, timeout_s=EXCHANGE_TIMEOUT_S
        )
        logger.log(
            TRACE, "Exchange response: %s", response.to_json().decode(), extra={"label": self.label}
        )
        if not response.ok:
            logger.error(
                "Exchange failed",
                extra={"label": self.label, "code": response.code, "error": response.msg},
            )
        response.raise_for_code("Exchange")
        return response.data if isinstance(response.data, list) else []

    async def _exchange_one(self, id_type: str, value: str, extra: dict[str, Any]) -> Any:
        if not isinstance(value, str) or not value:
            raise ValidationError(f"{self.ids_field} entry must be a non-empty string")
        logger.info("Exchanging id", extra={"label": self.label})
        mapped = await self._ctx.scheduler.schedule(
            lambda: self._exchange_chunk(id_type, [value], extra),
            label=f"{self.label}.exchange",
        )
        return mapped[0] if mapped else None

    async def _batch_exchange(
        self,
        id_type: str,
        ids: list[str],
        extra: dict[str, Any],
        retry: RetryPolicy | None,
    ) -> BatchResult[Any]:
        validate_batch_input(ids, self.ids_field)

        async def unit_call(chunk: list[str]) -> list[UnitOutcome]:
            mapped = await self._exchange_chunk(id_type, chunk, extra)
            return [Success(item) for item in mapped]

        def answered_id(record: Any) -> str | None:
            # Each mapping record echoes the requested id under the id type
            value = record.get(id_type) if isinstance(record, Mapping) else None
            return None if value in (None, "") else str(value)

        return await self._ctx.batches.run_batch(
            list(ids),
            EXCHANGE_CHUNK_SIZE,
            unit_call,
            match_key=answered_id,
            retry_policy=retry or self._ctx.default_retry,
            label=f"{self.label}.batch_exchange",
        )


class DepartmentApi(_ExchangeApi):
    """Department id exchange."""

    path = "/api/integration/v2/feishu/getDepartments"
    id_type_field = "department_id_type"
    ids_field = "department_ids"
    label = "department"

    async def exchange(self, department_id_type: DepartmentIdType, department_id: str) -> Any:
        """
        Map one department id.

        Returns:
            The first mapping record, or None when the server returned none.

        Raises:
            PermanentRemoteError: On a non-success envelope.
        """
        return await self._exchange_one(department_id_type, department_id, {})

    async def batch_exchange(
        self,
        department_id_type: DepartmentIdType,
        department_ids: list[str],
        retry: RetryPolicy | None = None,
    ) -> BatchResult[Any]:
        """Map any number of department ids, 200 per call."""
        return await self._batch_exchange(department_id_type, department_ids, {}, retry)


class UserApi(_ExchangeApi):
    """User id exchange. Every call names the Feishu app the ids belong to."""

    path = "/api/integration/v2/feishu/getUsers"
    id_type_field = "user_id_type"
    ids_field = "user_ids"
    label = "user"

    async def exchange(self, user_id_type: UserIdType, user_id: str, feishu_app_id: str) -> Any:
        """Map one user id. Returns the first mapping record or None."""
        return await self._exchange_one(user_id_type, user_id, {"feishu_app_id": feishu_app_id})

    async def batch_exchange(
        self,
        user_id_type: UserIdType,
        user_ids: list[str],
        feishu_app_id: str,
        retry: RetryPolicy | None = None,
    ) -> BatchResult[Any]:
        """Map any number of user ids, 200 per call."""
        return await self._batch_exchange(
            user_id_type, user_ids, {"feishu_app_id": feishu_app_id}, retry
        )
