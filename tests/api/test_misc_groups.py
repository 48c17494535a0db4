"""Tests for functions, automation, pages, globals and attachments."""

from __future__ import annotations

import io
from typing import TYPE_CHECKING, Any

import pytest

from apaas_client.errors import ValidationError
from apaas_client.models import FlowOperator

if TYPE_CHECKING:
    from apaas_client.client import ApaasClient
    from conftest import FakeTransport, RecordedCall

PAGES = "/api/builder/v1/namespaces/app_test/meta/pages"
OPTIONS = "/api/data/v1/namespaces/app_test/globalOptions"
VARIABLES = "/api/data/v1/namespaces/app_test/globalVariables"


class TestFunctions:
    """Tests for client.function and client.automation."""

    @pytest.mark.asyncio
    async def test_invoke(self, client: ApaasClient, transport: FakeTransport) -> None:
        transport.queue(
            "POST",
            "/api/cloudfunction/v1/namespaces/app_test/invoke/sum",
            {"code": "0", "data": {"result": 3}},
        )

        response = await client.function.invoke("sum", {"a": 1, "b": 2})

        assert response.data == {"result": 3}
        assert transport.api_calls[0].json == {"params": {"a": 1, "b": 2}}

    @pytest.mark.asyncio
    async def test_flow_v1(self, client: ApaasClient, transport: FakeTransport) -> None:
        await client.automation.v1.execute("approve", {"_id": 1, "email": "a@b.c"}, {"x": 1})

        call = transport.api_calls[0]
        assert call.path == "/api/flow/v1/namespaces/app_test/flows/approve/execute"
        assert call.json == {"operator": {"_id": 1, "email": "a@b.c"}, "params": {"x": 1}}

    @pytest.mark.asyncio
    async def test_flow_v2_optional_fields(
        self, client: ApaasClient, transport: FakeTransport
    ) -> None:
        await client.automation.v2.execute("approve", FlowOperator(_id=9), None)
        await client.automation.v2.execute(
            "approve", {"_id": 9}, {"y": 2}, is_resubmit=True, pre_instance_id="inst_1"
        )

        first, second = transport.api_calls
        assert first.path == "/v2/namespaces/app_test/flows/approve/execute"
        assert first.json == {"operator": {"_id": 9}, "params": None}
        assert second.json == {
            "operator": {"_id": 9},
            "params": {"y": 2},
            "is_resubmit": True,
            "pre_instance_id": "inst_1",
        }


class TestPages:
    """Tests for client.page."""

    @pytest.mark.asyncio
    async def test_list_and_detail(self, client: ApaasClient, transport: FakeTransport) -> None:
        await client.page.list(limit=20, offset=40)
        await client.page.detail("page_1")

        listing, detail = transport.api_calls
        assert (listing.method, listing.path, listing.json) == (
            "POST",
            PAGES,
            {"limit": 20, "offset": 40},
        )
        assert (detail.method, detail.path) == ("GET", f"{PAGES}/page_1")

    @pytest.mark.asyncio
    async def test_list_limit_bounds(self, client: ApaasClient, transport: FakeTransport) -> None:
        with pytest.raises(ValidationError):
            await client.page.list(limit=201)
        with pytest.raises(ValidationError):
            await client.page.list_all(limit=0)
        assert transport.calls == []

    @pytest.mark.asyncio
    async def test_list_all(self, client: ApaasClient, transport: FakeTransport) -> None:
        def handler(call: RecordedCall) -> dict[str, Any]:
            offset = call.json["offset"]
            items = [{"id": i} for i in range(offset, min(offset + call.json["limit"], 150))]
            return {"code": "0", "data": {"items": items, "total": 150}}

        transport.on("POST", PAGES, handler)

        result = await client.page.list_all()

        assert [c.json["offset"] for c in transport.api_calls] == [0, 100]
        assert len(result.items) == 150
        assert result.to_dict()["total"] == 150

    @pytest.mark.asyncio
    async def test_url_sends_only_given_fields(
        self, client: ApaasClient, transport: FakeTransport
    ) -> None:
        await client.page.url("page_1")
        await client.page.url("page_1", page_params={"id": 1}, nav_id="nav", tab_id="tab")

        bare, full = transport.api_calls
        assert bare.path == f"{PAGES}/page_1/link"
        assert bare.json == {}
        assert full.json == {"pageParams": {"id": 1}, "navId": "nav", "tabId": "tab"}


class TestGlobals:
    """Tests for client.global_."""

    @pytest.mark.asyncio
    async def test_options_and_variables(
        self, client: ApaasClient, transport: FakeTransport
    ) -> None:
        await client.global_.options.detail("color")
        await client.global_.variables.list(limit=10, offset=0, filter={"quickQuery": "env"})

        detail, listing = transport.api_calls
        assert (detail.method, detail.path) == ("GET", f"{OPTIONS}/color")
        assert (listing.method, listing.path) == ("POST", f"{VARIABLES}/list")
        assert listing.json == {"limit": 10, "offset": 0, "filter": {"quickQuery": "env"}}

    @pytest.mark.asyncio
    async def test_list_all_tolerates_failed_page(
        self, client: ApaasClient, transport: FakeTransport
    ) -> None:
        transport.queue(
            "POST",
            f"{OPTIONS}/list",
            {"code": "0", "data": {"items": [1, 2], "total": 5}},
            {"code": "k_1", "msg": "flaky"},
            {"code": "0", "data": {"items": [5], "total": 5}},
        )

        result = await client.global_.options.list_all(limit=2)

        assert result.items == [1, 2, 5]
        assert result.code == "1"
        assert result.failed[0].offset == 2


class TestAttachments:
    """Tests for client.attachment."""

    @pytest.mark.asyncio
    async def test_file_upload_bytes(self, client: ApaasClient, transport: FakeTransport) -> None:
        transport.queue("POST", "/api/attachment/v1/files", {"code": "0", "data": {"fileId": "f1"}})

        response = await client.attachment.file.upload(b"hello", "hello.txt")

        assert response.data == {"fileId": "f1"}
        form = transport.api_calls[0].form
        assert (form.field, form.content, form.filename) == ("file", b"hello", "hello.txt")

    @pytest.mark.asyncio
    async def test_avatar_upload_stream(self, client: ApaasClient, transport: FakeTransport) -> None:
        await client.attachment.avatar.upload(io.BytesIO(b"\x89PNG"), "a.png", "image/png")

        form = transport.api_calls[0].form
        assert transport.api_calls[0].path == "/api/attachment/v1/images"
        assert (form.field, form.content, form.content_type) == ("image", b"\x89PNG", "image/png")

    @pytest.mark.asyncio
    async def test_text_stream_rejected(self, client: ApaasClient, transport: FakeTransport) -> None:
        with pytest.raises(ValidationError):
            await client.attachment.file.upload(io.StringIO("text"), "a.txt")  # type: ignore[arg-type]
        assert transport.calls == []

    @pytest.mark.asyncio
    async def test_downloads_return_bytes(
        self, client: ApaasClient, transport: FakeTransport
    ) -> None:
        transport.queue("GET", "/api/attachment/v1/files/f1", b"file-bytes")
        transport.queue("GET", "/api/attachment/v1/images/i1", b"image-bytes")

        assert await client.attachment.file.download("f1") == b"file-bytes"
        assert await client.attachment.avatar.download("i1") == b"image-bytes"
        assert all(call.raw for call in transport.api_calls)

    @pytest.mark.asyncio
    async def test_file_delete(self, client: ApaasClient, transport: FakeTransport) -> None:
        await client.attachment.file.delete("f1")
        call = transport.api_calls[0]
        assert (call.method, call.path) == ("DELETE", "/v1/files/f1")
