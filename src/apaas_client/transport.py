"""
HTTP transport for the aPaaS OpenAPI.

Sends one request and classifies the outcome:

- 2xx with a JSON body → ApiResponse (business code untouched)
- 429 or 5xx → TransientRemoteError
- other 4xx → PermanentRemoteError
- no response (connection reset, DNS failure, timeout) → TransientRemoteError(status=None)

Retry, admission and credentials live above this layer.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import TYPE_CHECKING, Any, Literal, Protocol, overload

import aiohttp
import orjson

from apaas_client.errors import PermanentRemoteError, TransientRemoteError
from apaas_client.logging_config import TRACE
from apaas_client.models import ApiResponse

if TYPE_CHECKING:
    from collections.abc import Mapping

logger = logging.getLogger(__name__)

# Maximum error body characters kept in exception messages
ERROR_BODY_LIMIT = 200


class FormFile:
    """One file part of a multipart upload."""

    def __init__(
        self,
        field: str,
        content: bytes,
        filename: str,
        content_type: str = "application/octet-stream",
    ) -> None:
        self.field = field
        self.content = content
        self.filename = filename
        self.content_type = content_type


class Transport(Protocol):
    """What the API layer needs from a transport."""

    async def invoke(
        self,
        method: str,
        path: str,
        *,
        headers: Mapping[str, str] | None = None,
        json: Any = None,
        params: Mapping[str, str] | None = None,
        form: FormFile | None = None,
        timeout_s: float | None = None,
        raw: bool = False,
    ) -> Any: ...

    async def close(self) -> None: ...


def _parse_retry_after(headers: Mapping[str, str]) -> int | None:
    """Retry-After (seconds) in milliseconds, when present and numeric."""
    value = headers.get("Retry-After")
    if value is None:
        return None
    with contextlib.suppress(ValueError):
        return int(float(value) * 1000)
    return None


def _error_envelope(body: bytes) -> tuple[str | None, str | None]:
    """Best-effort (code, msg) from an error body."""
    try:
        payload = orjson.loads(body)
    except orjson.JSONDecodeError:
        return None, None
    if not isinstance(payload, dict):
        return None, None
    code = payload.get("code")
    msg = payload.get("msg")
    return (
        str(code) if code is not None else None,
        str(msg) if msg is not None else None,
    )


class HttpTransport:
    """
    aiohttp-based transport.

    The ClientSession is created lazily on first use and reused until
    close(). Usable as an async context manager.
    """

    def __init__(self, base_url: str, timeout_s: float = 30.0) -> None:
        """
        Initialize the transport.

        Args:
            base_url: Scheme and host, e.g. "https://ae-openapi.feishu.cn".
            timeout_s: Default total timeout per request.
        """
        if timeout_s <= 0:
            raise ValueError(f"timeout_s must be > 0, got {timeout_s}")
        self._base_url = base_url.rstrip("/")
        self._timeout_s = timeout_s
        self._session: aiohttp.ClientSession | None = None

    @property
    def base_url(self) -> str:
        return self._base_url

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create aiohttp session."""
        if self._session is None or self._session.closed:
            timeout = aiohttp.ClientTimeout(total=self._timeout_s)
            self._session = aiohttp.ClientSession(timeout=timeout)
        return self._session

    async def close(self) -> None:
        """Close the HTTP session."""
        if self._session and not self._session.closed:
            await self._session.close()
        self._session = None

    async def __aenter__(self) -> HttpTransport:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    @overload
    async def invoke(
        self,
        method: str,
        path: str,
        *,
        headers: Mapping[str, str] | None = ...,
        json: Any = ...,
        params: Mapping[str, str] | None = ...,
        form: FormFile | None = ...,
        timeout_s: float | None = ...,
        raw: Literal[False] = ...,
    ) -> ApiResponse: ...

    @overload
    async def invoke(
        self,
        method: str,
        path: str,
        *,
        headers: Mapping[str, str] | None = ...,
        json: Any = ...,
        params: Mapping[str, str] | None = ...,
        form: FormFile | None = ...,
        timeout_s: float | None = ...,
        raw: Literal[True],
    ) -> bytes: ...

    async def invoke(
        self,
        method: str,
        path: str,
        *,
        headers: Mapping[str, str] | None = None,
        json: Any = None,
        params: Mapping[str, str] | None = None,
        form: FormFile | None = None,
        timeout_s: float | None = None,
        raw: bool = False,
    ) -> ApiResponse | bytes:
        """
        Send one request.

        Args:
            method: HTTP method.
            path: Path relative to base_url.
            headers: Extra headers (Authorization, ...).
            json: JSON body (serialized with orjson).
            params: Query parameters.
            form: Multipart file part (mutually exclusive with json).
            timeout_s: Per-request timeout (None = transport default).
            raw: Return the body bytes instead of parsing an envelope.

        Returns:
            ApiResponse, or bytes when raw=True.

        Raises:
            TransientRemoteError: No response, 429 or 5xx.
            PermanentRemoteError: Other 4xx, or an unparseable success body.
        """
        url = f"{self._base_url}{path}"
        request_headers: dict[str, str] = dict(headers or {})
        data: Any = None

        if form is not None:
            form_data = aiohttp.FormData()
            form_data.add_field(
                form.field,
                form.content,
                filename=form.filename,
                content_type=form.content_type,
            )
            data = form_data
        elif json is not None:
            data = orjson.dumps(json)
            request_headers["Content-Type"] = "application/json"

        request_kwargs: dict[str, Any] = {
            "headers": request_headers,
            "params": dict(params) if params else None,
            "data": data,
        }
        if timeout_s is not None:
            request_kwargs["timeout"] = aiohttp.ClientTimeout(total=timeout_s)

        logger.debug("Sending request", extra={"method": method, "path": path})

        try:
            session = await self._get_session()
            async with session.request(method, url, **request_kwargs) as response:
                status = response.status
                body = await response.read()

                if status == 429 or status >= 500:
                    code, msg = _error_envelope(body)
                    text = msg or body.decode(errors="replace")[:ERROR_BODY_LIMIT]
                    retry_after_ms = _parse_retry_after(response.headers)
                    logger.warning(
                        "Transient HTTP error",
                        extra={
                            "method": method,
                            "path": path,
                            "status": status,
                            "retry_after_ms": retry_after_ms,
                        },
                    )
                    raise TransientRemoteError(
                        f"HTTP {status}: {text}",
                        status=status,
                        code=code,
                        msg=text,
                        retry_after_ms=retry_after_ms,
                    )

                if status >= 400:
                    code, msg = _error_envelope(body)
                    text = msg or body.decode(errors="replace")[:ERROR_BODY_LIMIT]
                    logger.error(
                        "HTTP error",
                        extra={"method": method, "path": path, "status": status, "code": code},
                    )
                    raise PermanentRemoteError(
                        f"HTTP {status}: {text}",
                        status=status,
                        code=code,
                        msg=text,
                    )

                if raw:
                    logger.debug(
                        "Received binary body",
                        extra={"method": method, "path": path, "size": len(body)},
                    )
                    return body

                try:
                    result = ApiResponse.from_json(body, status=status)
                except ValueError as e:
                    # Invalid JSON or envelope schema
                    raise PermanentRemoteError(
                        f"Malformed response body: {e}",
                        status=status,
                    ) from e

        except aiohttp.ClientError as e:
            logger.warning(
                "Request failed without response",
                extra={"method": method, "path": path, "error": str(e)},
            )
            raise TransientRemoteError(f"Request failed: {e}") from e
        except asyncio.TimeoutError as e:
            logger.warning(
                "Request timed out",
                extra={"method": method, "path": path},
            )
            raise TransientRemoteError("Request timed out") from e

        logger.debug(
            "Response received",
            extra={"method": method, "path": path, "status": status, "code": result.code},
        )
        logger.log(TRACE, "Response: %s", result.to_json().decode(), extra={"path": path})
        return result
