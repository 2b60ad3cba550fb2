"""FastAPI authentication dependencies."""

from __future__ import annotations

import jwt
from fastapi import Depends, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from campusnet.auth.jwt import verify_token
from campusnet.db.models import Profile
from campusnet.dependencies import get_db
from campusnet.errors import Forbidden, Unauthorized
from campusnet.profiles.service import get_profile, is_banned

_bearer = HTTPBearer(auto_error=False)


async def authenticate(db: AsyncSession, token: str | None) -> Profile:
    """Resolve a bearer token to an active profile."""
    if not token:
        raise Unauthorized("Missing session token")
    try:
        payload = verify_token(token, expected_type="access")
        user_id = int(payload["sub"])
    except (jwt.InvalidTokenError, KeyError, ValueError) as e:
        raise Unauthorized(str(e)) from e

    profile = await get_profile(db, user_id)
    if profile is None:
        raise Unauthorized("User not found")
    if await is_banned(db, user_id):
        raise Forbidden("Account is banned")
    return profile


async def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Security(_bearer),
    db: AsyncSession = Depends(get_db),
) -> Profile:
    """
    Extract and verify the JWT, return the caller's profile.

    Raises 401 on a missing/invalid token or unknown user, 403 when banned.
    """
    return await authenticate(db, credentials.credentials if credentials else None)
