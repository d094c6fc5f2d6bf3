"""Chat file upload and download."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from pydantic import ValidationError

from ..errors import ApiError, DownloadError, UploadError
from ..schemas import FileDescriptor, MessageType, classify_mime_type
from .client import ApiClient, error_message

logger = logging.getLogger(__name__)

__all__ = ["AttachmentTransfer", "classify_mime_type", "MessageType"]

DEFAULT_CONTENT_TYPE = "application/octet-stream"


class AttachmentTransfer:
    def __init__(self, api: ApiClient, download_dir: Path, max_upload_bytes: int = 10 * 1024 * 1024) -> None:
        self.api = api
        self.download_dir = download_dir
        self.max_upload_bytes = max_upload_bytes

    async def upload(
        self,
        group_id: int,
        file_bytes: bytes,
        file_name: str,
        content_type: Optional[str] = None,
        caption: Optional[str] = None,
    ) -> FileDescriptor:
        if not file_bytes:
            raise UploadError("File is empty")
        if len(file_bytes) > self.max_upload_bytes:
            limit_mb = self.max_upload_bytes // (1024 * 1024)
            raise UploadError(f"File size must be less than {limit_mb}MB")

        files = {"file": (file_name, file_bytes, content_type or DEFAULT_CONTENT_TYPE)}
        data = {"caption": caption} if caption else None
        try:
            response = await self.api.request("POST", f"/chat/{group_id}/upload", files=files, data=data)
        except ApiError as exc:
            raise UploadError(exc.message) from exc
        if response.is_error:
            message = error_message(response, f"Upload failed: {response.status_code}")
            logger.error("Upload of %s to group %s failed: %s", file_name, group_id, message)
            raise UploadError(message, status_code=response.status_code)
        try:
            return FileDescriptor.model_validate(response.json())
        except (ValueError, ValidationError) as exc:
            raise UploadError(f"Upload returned an unexpected response: {exc}") from exc

    async def download(self, file_url: str, file_name: str, dest_dir: Optional[Path] = None) -> bytes:
        try:
            response = await self.api.request("GET", file_url, follow_redirects=True)
        except ApiError as exc:
            raise DownloadError(exc.message) from exc
        if response.is_error:
            logger.error("Download of %s failed with %s", file_url, response.status_code)
            raise DownloadError(f"Download failed: {response.status_code}", status_code=response.status_code)

        content = response.content
        target_dir = dest_dir or self.download_dir
        target_dir.mkdir(parents=True, exist_ok=True)
        target = target_dir / (Path(file_name).name or "download")
        target.write_bytes(content)
        logger.info("Saved %s (%d bytes)", target, len(content))
        return content


def describe_size(size: int) -> str:
    if size < 1024:
        return f"{size} B"
    if size < 1024 * 1024:
        return f"{size / 1024:.1f} KB"
    return f"{size / (1024 * 1024):.1f} MB"
