"""Tests for upload validation and the HTTP blob store."""

from __future__ import annotations

import httpx
import pytest

from campusnet.errors import NotFound, QuotaExceeded, TransientStoreFailure, UsageError
from campusnet.media.uploads import (
    MB,
    Folder,
    HttpBlobStore,
    build_object_key,
    delete_media,
    media_kind,
    upload_media,
    validate_upload,
)


def _store(handler) -> HttpBlobStore:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return HttpBlobStore("http://blob/object", "http://cdn/public", api_key="k", client=client)


class TestValidation:
    def test_folder_limits(self) -> None:
        assert validate_upload("avatars", 2 * MB, "image/png") is Folder.AVATARS
        with pytest.raises(QuotaExceeded):
            validate_upload("avatars", 2 * MB + 1, "image/png")
        assert validate_upload("posts", 10 * MB, "video/mp4") is Folder.POSTS

    def test_type_and_folder(self) -> None:
        with pytest.raises(QuotaExceeded):
            validate_upload("messages", 100, "application/pdf")
        with pytest.raises(UsageError):
            validate_upload("secrets", 100, "image/png")
        with pytest.raises(UsageError):
            validate_upload("covers", 0, "image/png")

    def test_media_kind(self) -> None:
        assert media_kind("image/webp") == "image"
        assert media_kind("video/webm") == "video"
        assert media_kind("text/plain") is None

    def test_object_key(self) -> None:
        key = build_object_key(Folder.POSTS, 7, "holiday.JPEG", "image/jpeg")
        assert key.startswith("posts/7-")
        assert key.endswith(".jpg")


class TestHttpBlobStore:
    @pytest.mark.asyncio
    async def test_upload(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"Key": request.url.path})

        result = await upload_media(_store(handler), "avatars", 3, b"\x89PNG", "image/png", "me.png")

        assert result["path"].startswith("avatars/3-")
        assert result["url"] == f"http://cdn/public/{result['path']}"
        assert seen[0].method == "PUT"
        assert seen[0].headers["Authorization"] == "Bearer k"
        assert seen[0].headers["Content-Type"] == "image/png"

    @pytest.mark.asyncio
    async def test_rejections_map_to_errors(self) -> None:
        with pytest.raises(QuotaExceeded):
            await upload_media(_store(lambda r: httpx.Response(413)), "posts", 1, b"x", "image/png")
        with pytest.raises(TransientStoreFailure):
            await upload_media(_store(lambda r: httpx.Response(503)), "posts", 1, b"x", "image/png")
        with pytest.raises(NotFound):
            await delete_media(_store(lambda r: httpx.Response(404)), "posts/1-1-a.png")

    @pytest.mark.asyncio
    async def test_unreachable(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(TransientStoreFailure):
            await upload_media(_store(handler), "posts", 1, b"x", "image/png")

    @pytest.mark.asyncio
    async def test_validation_happens_before_network(self) -> None:
        calls = []
        store = _store(lambda r: calls.append(r) or httpx.Response(200))
        with pytest.raises(QuotaExceeded):
            await upload_media(store, "avatars", 1, b"x" * (2 * MB + 1), "image/png")
        assert calls == []

    @pytest.mark.asyncio
    async def test_delete_rejects_traversal(self) -> None:
        with pytest.raises(UsageError):
            await delete_media(_store(lambda r: httpx.Response(200)), "posts/../secrets")
