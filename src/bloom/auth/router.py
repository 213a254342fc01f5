"""Session endpoints owned by this service."""

from __future__ import annotations

import structlog
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from bloom.auth.dependencies import get_bearer_token
from bloom.auth.service import revoke_session
from bloom.database import get_session
from bloom.schemas import CamelModel, Envelope, success

logger = structlog.get_logger()

router = APIRouter(prefix="/api/v1/auth", tags=["Auth"])


class LogoutData(CamelModel):
    logged_out: bool = True


@router.post("/logout", response_model=Envelope[LogoutData])
async def logout(
    token: str | None = Depends(get_bearer_token),
    db: AsyncSession = Depends(get_session),
) -> Envelope[LogoutData]:
    """Revoke the caller's session. Always reports success."""
    if token:
        try:
            await revoke_session(db, token)
        except Exception:
            logger.warning("logout_revoke_failed", exc_info=True)
    return success(LogoutData())
