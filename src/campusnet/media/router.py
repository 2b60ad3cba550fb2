"""Media upload endpoints backed by the external blob store."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Header, Query, Request

from campusnet.auth.dependencies import get_current_user
from campusnet.db.models import Profile
from campusnet.errors import Forbidden
from campusnet.media.uploads import BaseBlobStore, HttpBlobStore, delete_media, upload_media

router = APIRouter(prefix="/api/v1/media", tags=["Media"])


def get_blob_store() -> BaseBlobStore:
    return HttpBlobStore.from_settings()


@router.put("/{folder}", status_code=201)
async def upload_endpoint(
    folder: str,
    request: Request,
    content_type: str = Header("application/octet-stream"),
    filename: str | None = Query(None, max_length=255),
    user: Profile = Depends(get_current_user),
    store: BaseBlobStore = Depends(get_blob_store),
):
    """Upload the raw request body into ``folder`` (avatars, posts, messages, covers)."""
    data = await request.body()
    return await upload_media(store, folder, user.id, data, content_type, filename)


@router.delete("", status_code=204)
async def delete_endpoint(
    key: str = Query(..., min_length=1),
    user: Profile = Depends(get_current_user),
    store: BaseBlobStore = Depends(get_blob_store),
):
    # Keys look like "{folder}/{owner_id}-{millis}-{random}.{ext}"
    _, _, name = key.partition("/")
    if not name.startswith(f"{user.id}-"):
        raise Forbidden("You can only delete your own media")
    await delete_media(store, key)
