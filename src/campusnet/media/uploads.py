"""
Blob store boundary for avatars, covers, post media and message images.

Uploads are validated against per-folder size limits and the allowed
content types before any network call; the blob store re-validates on its
side and its rejections map onto the same ``QuotaExceeded`` error.
"""

from __future__ import annotations

import secrets
import time
from abc import ABC, abstractmethod
from enum import StrEnum
from pathlib import PurePosixPath
from typing import Any

import httpx
import structlog

from campusnet.config import get_settings
from campusnet.errors import NotFound, QuotaExceeded, TransientStoreFailure, UsageError

logger = structlog.get_logger()

MB = 1024 * 1024


class Folder(StrEnum):
    AVATARS = "avatars"
    COVERS = "covers"
    POSTS = "posts"
    MESSAGES = "messages"


UPLOAD_LIMITS_MB: dict[Folder, int] = {
    Folder.AVATARS: 2,
    Folder.COVERS: 5,
    Folder.POSTS: 10,
    Folder.MESSAGES: 5,
}

ALLOWED_IMAGE_TYPES = frozenset({"image/jpeg", "image/png", "image/gif", "image/webp"})
ALLOWED_VIDEO_TYPES = frozenset({"video/mp4", "video/webm", "video/quicktime"})
ALLOWED_TYPES = ALLOWED_IMAGE_TYPES | ALLOWED_VIDEO_TYPES

_EXTENSIONS = {
    "image/jpeg": "jpg",
    "image/png": "png",
    "image/gif": "gif",
    "image/webp": "webp",
    "video/mp4": "mp4",
    "video/webm": "webm",
    "video/quicktime": "mov",
}


def validate_upload(folder: Folder | str, size: int, content_type: str) -> Folder:
    """Reject an upload that exceeds the folder limit or has a disallowed type."""
    try:
        target = Folder(folder)
    except ValueError as e:
        raise UsageError(f"Unknown upload folder: {folder}") from e

    limit_mb = UPLOAD_LIMITS_MB[target]
    if size > limit_mb * MB:
        raise QuotaExceeded(f"File must be smaller than {limit_mb}MB")
    if size <= 0:
        raise UsageError("File is empty")
    if content_type not in ALLOWED_TYPES:
        raise QuotaExceeded(f"File type not allowed: {content_type}")
    return target


def media_kind(content_type: str) -> str | None:
    """``image``/``video`` for post media columns."""
    if content_type in ALLOWED_IMAGE_TYPES:
        return "image"
    if content_type in ALLOWED_VIDEO_TYPES:
        return "video"
    return None


def build_object_key(folder: Folder, user_id: int, filename: str | None, content_type: str) -> str:
    """``{folder}/{user_id}-{millis}-{random}.{ext}``; the extension follows the content type."""
    suffix = PurePosixPath(filename or "").suffix.lstrip(".").lower()
    ext = _EXTENSIONS.get(content_type) or suffix or "bin"
    return f"{folder.value}/{user_id}-{int(time.time() * 1000)}-{secrets.token_hex(4)}.{ext}"


class BaseBlobStore(ABC):
    """Abstract blob storage provider."""

    @abstractmethod
    async def put(self, key: str, data: bytes, content_type: str) -> str:
        """Store ``data`` under ``key`` and return its public URL."""
        ...

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Delete the object stored under ``key``."""
        ...


class HttpBlobStore(BaseBlobStore):
    """Object storage reached over HTTP (``PUT``/``DELETE {base_url}/{key}``)."""

    def __init__(
        self,
        base_url: str,
        public_url: str,
        api_key: str = "",
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.public_url = public_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self._client = client

    @classmethod
    def from_settings(cls, client: httpx.AsyncClient | None = None) -> HttpBlobStore:
        settings = get_settings()
        return cls(
            settings.blob_base_url,
            settings.blob_public_url,
            settings.blob_api_key,
            settings.blob_timeout_seconds,
            client=client,
        )

    def _headers(self, extra: dict[str, str] | None = None) -> dict[str, str]:
        headers = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else {}
        headers.update(extra or {})
        return headers

    async def _request(self, method: str, key: str, **kwargs: Any) -> httpx.Response:
        url = f"{self.base_url}/{key}"
        try:
            if self._client is not None:
                response = await self._client.request(method, url, timeout=self.timeout, **kwargs)
            else:
                async with httpx.AsyncClient() as client:
                    response = await client.request(method, url, timeout=self.timeout, **kwargs)
        except httpx.TransportError as e:
            logger.warning("blob_store_unreachable", method=method, key=key, error=str(e))
            raise TransientStoreFailure("Blob store unreachable") from e

        if response.status_code in (413, 415):
            raise QuotaExceeded(f"Blob store rejected the upload ({response.status_code})")
        if response.status_code == 404:
            raise NotFound(f"Object {key} not found")
        if response.status_code >= 500:
            raise TransientStoreFailure(f"Blob store error ({response.status_code})")
        response.raise_for_status()
        return response

    async def put(self, key: str, data: bytes, content_type: str) -> str:
        await self._request(
            "PUT",
            key,
            content=data,
            headers=self._headers({"Content-Type": content_type, "Cache-Control": "max-age=3600"}),
        )
        return f"{self.public_url}/{key}"

    async def delete(self, key: str) -> None:
        await self._request("DELETE", key, headers=self._headers())


async def upload_media(
    store: BaseBlobStore,
    folder: Folder | str,
    user_id: int,
    data: bytes,
    content_type: str,
    filename: str | None = None,
) -> dict[str, str]:
    """Validate and upload a file. Returns ``{"url": ..., "path": ...}``."""
    target = validate_upload(folder, len(data), content_type)
    key = build_object_key(target, user_id, filename, content_type)
    url = await store.put(key, data, content_type)
    logger.info("media_uploaded", folder=target.value, key=key, size=len(data), user_id=user_id)
    return {"url": url, "path": key}


async def delete_media(store: BaseBlobStore, key: str) -> None:
    if not key or ".." in key.split("/"):
        raise UsageError("Invalid object key")
    await store.delete(key)
    logger.info("media_deleted", key=key)
