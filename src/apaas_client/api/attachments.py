"""File and avatar (image) attachments."""

from __future__ import annotations

import logging
from typing import IO, TYPE_CHECKING

from apaas_client.api.base import ApiContext, ApiGroup, segment
from apaas_client.errors import ValidationError
from apaas_client.transport import FormFile

if TYPE_CHECKING:
    from apaas_client.models import ApiResponse

logger = logging.getLogger(__name__)

ATTACHMENT_BASE = "/api/attachment/v1"


def _read_content(content: bytes | bytearray | IO[bytes]) -> bytes:
    if isinstance(content, (bytes, bytearray)):
        return bytes(content)
    if hasattr(content, "read"):
        data = content.read()
        if not isinstance(data, bytes):
            raise ValidationError("file stream must be opened in binary mode")
        return data
    raise ValidationError(f"expected bytes or a binary stream, got {type(content).__name__}")


class FileApi(ApiGroup):
    """Generic file attachments."""

    async def upload(
        self,
        file: bytes | bytearray | IO[bytes],
        filename: str,
        content_type: str = "application/octet-stream",
    ) -> ApiResponse:
        """Upload a file as multipart field ``file``."""
        if not filename:
            raise ValidationError("filename must be a non-empty string")
        content = _read_content(file)
        logger.info("Uploading file", extra={"file_name": filename, "size": len(content)})
        return await self._call(
            "attachment.file.upload",
            "POST",
            f"{ATTACHMENT_BASE}/files",
            form=FormFile("file", content, filename, content_type),
        )

    async def download(self, file_id: str) -> bytes:
        """Raw file content."""
        logger.info("Downloading file", extra={"file_id": file_id})
        return await self._call(
            "attachment.file.download",
            "GET",
            f"{ATTACHMENT_BASE}/files/{segment(file_id, 'file_id')}",
            raw=True,
        )

    async def delete(self, file_id: str) -> ApiResponse:
        logger.info("Deleting file", extra={"file_id": file_id})
        return await self._call(
            "attachment.file.delete",
            "DELETE",
            f"/v1/files/{segment(file_id, 'file_id')}",
        )


class AvatarApi(ApiGroup):
    """Avatar images."""

    async def upload(
        self,
        image: bytes | bytearray | IO[bytes],
        filename: str,
        content_type: str = "application/octet-stream",
    ) -> ApiResponse:
        """Upload an image as multipart field ``image``."""
        if not filename:
            raise ValidationError("filename must be a non-empty string")
        content = _read_content(image)
        logger.info("Uploading avatar", extra={"file_name": filename, "size": len(content)})
        return await self._call(
            "attachment.avatar.upload",
            "POST",
            f"{ATTACHMENT_BASE}/images",
            form=FormFile("image", content, filename, content_type),
        )

    async def download(self, image_id: str) -> bytes:
        logger.info("Downloading avatar", extra={"image_id": image_id})
        return await self._call(
            "attachment.avatar.download",
            "GET",
            f"{ATTACHMENT_BASE}/images/{segment(image_id, 'image_id')}",
            raw=True,
        )


class AttachmentApi:
    """Attachments, grouped by kind."""

    def __init__(self, ctx: ApiContext) -> None:
        self.file = FileApi(ctx)
        self.avatar = AvatarApi(ctx)
