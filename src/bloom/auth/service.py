"""
User lookup and session revocation.

Sign-in itself (SIWE nonce issue and signature verification) lives in the
identity provider; this module only reads what it wrote.
"""

from __future__ import annotations

import hashlib
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

import structlog
from sqlalchemy import delete, or_, select, update

from bloom.db.models import Session, SiweNonce, User

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = structlog.get_logger()


def normalize_address(address: str) -> str:
    """Canonical wallet form: stripped and lower-cased."""
    return address.strip().lower()


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode()).hexdigest()


def mask_wallet(address: str) -> str:
    """'0x1234...abcd' form used anywhere a wallet is shown to other players."""
    if len(address) <= 10:
        return address
    return f"{address[:6]}...{address[-4:]}"


# ---------------------------------------------------------------------------
# User queries
# ---------------------------------------------------------------------------


async def get_user_by_id(db: AsyncSession, user_id: int) -> User | None:
    """Fetch a user by ID."""
    result = await db.execute(select(User).where(User.id == user_id))
    return result.scalar_one_or_none()


async def get_user_by_address(db: AsyncSession, wallet_address: str) -> User | None:
    """Fetch a user by wallet address (case-insensitive)."""
    result = await db.execute(select(User).where(User.wallet_address == normalize_address(wallet_address)))
    return result.scalar_one_or_none()


async def get_or_create_user(db: AsyncSession, wallet_address: str) -> tuple[User, bool]:
    """
    Get existing user or create a new one for a verified wallet.

    Returns:
        Tuple of (user, created) where created is True if a new user was made.
    """
    user = await get_user_by_address(db, wallet_address)
    if user is not None:
        return user, False

    user = User(wallet_address=normalize_address(wallet_address))
    db.add(user)
    await db.flush()
    logger.info("user_created", user_id=user.id, wallet=mask_wallet(user.wallet_address))
    return user, True


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------


async def is_session_revoked(db: AsyncSession, token: str) -> bool:
    """True when the token's session row exists and was deactivated."""
    result = await db.execute(select(Session.is_active).where(Session.token_hash == hash_token(token)))
    active = result.scalar_one_or_none()
    return active is False


async def revoke_session(db: AsyncSession, token: str) -> bool:
    """Deactivate the session for ``token``. Returns True if a row was updated."""
    result = await db.execute(
        update(Session)
        .where(Session.token_hash == hash_token(token), Session.is_active.is_(True))
        .values(is_active=False)
    )
    await db.commit()
    return bool(result.rowcount)


async def prune_auth_artifacts(
    db: AsyncSession,
    *,
    nonce_retention: timedelta,
    session_retention: timedelta,
    now: datetime | None = None,
) -> tuple[int, int]:
    """Delete stale SIWE nonces and expired or long-inactive sessions.

    Returns:
        (nonces_deleted, sessions_deleted)
    """
    now = now or datetime.now(timezone.utc)
    nonces = await db.execute(
        delete(SiweNonce).where(
            or_(SiweNonce.expires_at < now - nonce_retention, SiweNonce.used.is_(True))
        )
    )
    sessions = await db.execute(
        delete(Session).where(
            or_(
                Session.expires_at < now,
                (Session.is_active.is_(False)) & (Session.created_at < now - session_retention),
            )
        )
    )
    await db.commit()
    return nonces.rowcount or 0, sessions.rowcount or 0
