"""
Wire records for the aPaaS OpenAPI.

Every JSON response is an envelope ``{code, msg, data}``; ``code == "0"``
means success. Response models allow unknown fields so that new server-side
attributes pass through untouched.
"""

from __future__ import annotations

from typing import Any

import orjson
from pydantic import BaseModel, ConfigDict, Field, field_validator

from apaas_client.errors import PermanentRemoteError

SUCCESS_CODE = "0"


class ApiResponse(BaseModel):
    """
    Response envelope.

    Attributes:
        status: HTTP status of the response.
        code: Business code ("0" = success).
        msg: Server message.
        data: Endpoint-specific payload.
    """

    model_config = ConfigDict(extra="allow")

    status: int = 200
    code: str = Field(..., description="Business code, '0' on success")
    msg: str = ""
    data: Any = None

    @field_validator("code", mode="before")
    @classmethod
    def coerce_code(cls, v: Any) -> str:
        """Some endpoints return the code as a number."""
        return str(v)

    @field_validator("msg", mode="before")
    @classmethod
    def coerce_msg(cls, v: Any) -> str:
        return "" if v is None else str(v)

    @property
    def ok(self) -> bool:
        return self.code == SUCCESS_CODE

    def raise_for_code(self, action: str = "Request") -> ApiResponse:
        """
        Raise PermanentRemoteError on a non-success envelope.

        Returns:
            self, for chaining.
        """
        if not self.ok:
            error = PermanentRemoteError.from_envelope(self.code, self.msg, action)
            error.status = self.status
            raise error
        return self

    def data_dict(self) -> dict[str, Any]:
        """``data`` as a dict (empty when absent or not an object)."""
        return self.data if isinstance(self.data, dict) else {}

    def items(self) -> list[Any]:
        """``data.items`` as a list (empty when absent)."""
        items = self.data_dict().get("items")
        return items if isinstance(items, list) else []

    def total(self) -> int | None:
        """``data.total`` when present."""
        total = self.data_dict().get("total")
        return int(total) if total is not None else None

    def to_dict(self) -> dict[str, Any]:
        """Envelope as a plain dict (without the HTTP status)."""
        return self.model_dump(mode="json", exclude={"status"})

    def to_json(self) -> bytes:
        """Serialize to JSON bytes using orjson."""
        return orjson.dumps(self.to_dict())

    @classmethod
    def from_json(cls, data: bytes | str, status: int = 200) -> ApiResponse:
        """Deserialize from a JSON body."""
        if isinstance(data, str):
            data = data.encode()
        payload = orjson.loads(data)
        if not isinstance(payload, dict):
            payload = {"code": SUCCESS_CODE, "data": payload}
        return cls.model_validate({**payload, "status": status})


class AppTokenRequest(BaseModel):
    """Body of ``POST /auth/v1/appToken``."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    client_id: str = Field(..., min_length=1, alias="clientId")
    client_secret: str = Field(..., min_length=1, alias="clientSecret")

    def to_body(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)

    def __repr__(self) -> str:
        return f"AppTokenRequest(client_id={self.client_id!r}, client_secret='***')"


class AppToken(BaseModel):
    """``data`` of a successful appToken response."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    access_token: str = Field(..., min_length=1, alias="accessToken")
    expire_time: int = Field(..., alias="expireTime", description="Absolute expiry (ms)")


class ObjectListPage(BaseModel):
    """Flattened ``meta/objects/list`` page."""

    code: str
    msg: str = ""
    items: list[dict[str, Any]] = Field(default_factory=list)
    total: int = 0
    has_more: bool = False


class RecordCount(BaseModel):
    """Result of a record count query."""

    model_config = ConfigDict(frozen=True)

    code: str
    msg: str = ""
    total: int = Field(0, ge=0)


class CountQuery(BaseModel):
    """Minimal ``records_query`` body used for counting.

    Caller overrides win; unknown keys (filter, ...) pass through.
    """

    model_config = ConfigDict(extra="allow")

    offset: int = 0
    page_size: int = 1
    need_total_count: bool = True
    use_page_token: bool = True
    select: list[str] = Field(default_factory=lambda: ["_id"])
    query_deleted_record: bool = False

    def to_body(self) -> dict[str, Any]:
        return self.model_dump()


class FlowOperator(BaseModel):
    """Operator a flow runs as."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    id: int = Field(..., alias="_id")
    email: str = ""

    def to_body(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_unset=True)
