"""FastAPI authentication dependencies."""

from __future__ import annotations

import jwt
from fastapi import Depends, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from bloom.auth.jwt import verify_token
from bloom.auth.service import get_user_by_id, is_session_revoked
from bloom.database import get_session
from bloom.db.models import User
from bloom.errors import Unauthorized

_bearer = HTTPBearer(auto_error=False)


async def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Security(_bearer),
    db: AsyncSession = Depends(get_session),
) -> User:
    """
    Extract and verify the bearer JWT, return the User model.

    Raises Unauthorized on a missing, invalid, expired or revoked token.
    """
    if credentials is None:
        raise Unauthorized("Missing bearer token")
    try:
        payload = verify_token(credentials.credentials, expected_type="access")
    except jwt.InvalidTokenError as e:
        raise Unauthorized(str(e)) from e

    if await is_session_revoked(db, credentials.credentials):
        raise Unauthorized("Session has been revoked")

    user = await get_user_by_id(db, int(payload["sub"]))
    if user is None or not user.is_active:
        raise Unauthorized("User not found")
    return user


async def get_optional_user(
    credentials: HTTPAuthorizationCredentials | None = Security(_bearer),
    db: AsyncSession = Depends(get_session),
) -> User | None:
    """Like get_current_user, but anonymous callers get None instead of a 401."""
    if credentials is None:
        return None
    try:
        return await get_current_user(credentials, db)
    except Unauthorized:
        return None


async def get_bearer_token(
    credentials: HTTPAuthorizationCredentials | None = Security(_bearer),
) -> str | None:
    return credentials.credentials if credentials else None
