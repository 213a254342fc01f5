"""Daily bonus API."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from bloom.auth.dependencies import get_current_user
from bloom.bonus import service
from bloom.bonus.schemas import BonusStatusData, DailyBonusData
from bloom.claims.gateway import TokenDistributionGateway, get_token_gateway
from bloom.database import get_session
from bloom.db.models import User
from bloom.redis_client import get_optional_redis
from bloom.schemas import Envelope, success

router = APIRouter(prefix="/api/v1/claim", tags=["Daily Bonus"])


@router.get("/daily-bonus", response_model=Envelope[BonusStatusData])
async def daily_bonus_status(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> Envelope[BonusStatusData]:
    status = await service.get_bonus_status(db, user)
    return success(BonusStatusData(
        can_claim=status.can_claim,
        streak_day=status.streak_day,
        current_streak=status.current_streak,
        amount=str(status.amount),
        reason=status.reason,
        remaining_ms=status.remaining_ms,
    ))


@router.post("/daily-bonus", response_model=Envelope[DailyBonusData])
async def claim_daily_bonus(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
    gateway: TokenDistributionGateway = Depends(get_token_gateway),
) -> Envelope[DailyBonusData]:
    """Claim today's bonus.

    ``success`` when the transfer confirmed, ``pending`` while distribution is
    unavailable or unconfirmed. A failed transfer is still a successful claim:
    ``claimStatus`` is ``failed`` and ``rewardError`` says why. Today's claim
    is used up in every case.
    """
    result = await service.claim_daily_bonus(db, user, gateway, redis=get_optional_redis())
    outcome = result.outcome
    data = DailyBonusData(
        claim_id=outcome.claim.id,
        claim_status=outcome.claim.status,
        amount=str(result.amount),
        streak_day=result.streak_day,
        tx_hash=outcome.claim.tx_hash,
        block_number=outcome.claim.block_number,
        reward_error=outcome.error if outcome.status == "failed" else None,
    )
    if outcome.status == "pending":
        return Envelope(status="pending", data=data, error=outcome.error, error_code=outcome.error_code)
    return success(data)
