"""Shared fixtures: an in-memory transport and a client wired to it."""

from __future__ import annotations

from collections import defaultdict, deque
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

import pytest

from apaas_client.client import APP_TOKEN_PATH, ApaasClient
from apaas_client.config import ClientConfig
from apaas_client.models import ApiResponse

# 2100-01-01T00:00:00Z
FAR_FUTURE_MS = 4_102_444_800_000


@dataclass
class RecordedCall:
    """One request seen by FakeTransport."""

    method: str
    path: str
    headers: dict[str, str]
    json: Any
    params: Any
    form: Any
    timeout_s: float | None
    raw: bool


class FakeTransport:
    """
    Transport double.

    Results are queued per (method, path) or produced by a handler. A result
    may be an envelope dict, raw bytes (for raw=True), or an exception to
    raise. Unrouted calls answer ``{"code": "0", "data": {}}``.
    """

    def __init__(self, token: str = "tok-1", expire_at_ms: int = FAR_FUTURE_MS) -> None:
        self.calls: list[RecordedCall] = []
        self.closed = False
        self._queues: dict[tuple[str, str], deque[Any]] = defaultdict(deque)
        self._handlers: dict[tuple[str, str], Callable[[RecordedCall], Any]] = {}
        self.token_count = 0
        self.set_token(token, expire_at_ms)

    def set_token(self, token: str, expire_at_ms: int) -> None:
        def issue(call: RecordedCall) -> dict[str, Any]:
            self.token_count += 1
            return {
                "code": "0",
                "msg": "",
                "data": {"accessToken": token, "expireTime": expire_at_ms},
            }

        self.on("POST", APP_TOKEN_PATH, issue)

    def queue(self, method: str, path: str, *results: Any) -> None:
        self._queues[(method, path)].extend(results)

    def on(self, method: str, path: str, handler: Callable[[RecordedCall], Any]) -> None:
        self._handlers[(method, path)] = handler

    @property
    def api_calls(self) -> list[RecordedCall]:
        """Calls other than token issuance."""
        return [call for call in self.calls if call.path != APP_TOKEN_PATH]

    async def invoke(
        self,
        method: str,
        path: str,
        *,
        headers: Any = None,
        json: Any = None,
        params: Any = None,
        form: Any = None,
        timeout_s: float | None = None,
        raw: bool = False,
    ) -> Any:
        call = RecordedCall(method, path, dict(headers or {}), json, params, form, timeout_s, raw)
        self.calls.append(call)

        key = (method, path)
        if key in self._handlers:
            result = self._handlers[key](call)
        elif self._queues[key]:
            result = self._queues[key].popleft()
        else:
            result = {"code": "0", "data": {}}

        if isinstance(result, BaseException):
            raise result
        if raw:
            return result
        return ApiResponse.model_validate(result)

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def config() -> ClientConfig:
    return ClientConfig(namespace="app_test", client_id="cid", client_secret="csecret")


@pytest.fixture
def sleeps() -> list[float]:
    """Backoff delays (seconds) requested by the client's retry executor."""
    return []


@pytest.fixture
def client(config: ClientConfig, transport: FakeTransport, sleeps: list[float]) -> ApaasClient:
    async def record_sleep(seconds: float) -> None:
        sleeps.append(seconds)

    return ApaasClient(config, transport=transport, sleep=record_sleep)
