"""Daily bonus claims.

Eligibility gates run in order and the first failure wins:

1. a daily claim row already exists for today;
2. the last confirmed daily bonus is younger than the cooldown window;
3. the per-user claim rate limit is exhausted.

The daily claim row, the pending ledger entry and the streak update commit
together before the gateway is called, so a failed or pending transfer still
consumes the day. Claim vouchers stage the same rows, so a day paid through
the claim contract cannot also be paid by a server transfer.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING

import structlog
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from bloom.bonus.streak import BonusPolicy, next_streak_day, reward_for_day
from bloom.claims import ledger
from bloom.claims.gateway import TokenDistributionGateway
from bloom.claims.settlement import DistributionOutcome, distribute
from bloom.config import get_settings
from bloom.db.models import ClaimTransaction, DailyBonusClaim, User
from bloom.errors import AlreadyClaimed, CooldownActive, EconomyError, RateLimited
from bloom.lives.engine import ms_until
from bloom.periods import day_string

if TYPE_CHECKING:
    from redis.asyncio import Redis
    from sqlalchemy.ext.asyncio import AsyncSession

logger = structlog.get_logger()


@dataclass(frozen=True)
class BonusStatus:
    can_claim: bool
    streak_day: int
    current_streak: int
    amount: int
    reason: str | None = None
    remaining_ms: int = 0


@dataclass(frozen=True)
class DailyBonusResult:
    streak_day: int
    amount: int
    outcome: DistributionOutcome


async def _claimed_today(db: AsyncSession, user_id: int, today: str) -> bool:
    result = await db.execute(
        select(DailyBonusClaim.id).where(DailyBonusClaim.user_id == user_id, DailyBonusClaim.claim_date == today)
    )
    return result.first() is not None


async def check_claim_rate_limit(redis: Redis | None, user_id: int) -> None:
    """Fixed-window per-user counter; skipped when Redis is unavailable."""
    if redis is None:
        return
    settings = get_settings()
    window = int(time.time()) // settings.claim_rate_limit_window_seconds
    key = f"ratelimit:claim:{user_id}:{window}"
    pipe = redis.pipeline()
    pipe.incr(key)
    pipe.expire(key, settings.claim_rate_limit_window_seconds + 1)
    count, _ = await pipe.execute()
    if count > settings.claim_rate_limit_requests:
        raise RateLimited(retryAfter=settings.claim_rate_limit_window_seconds)


async def check_eligibility(
    db: AsyncSession,
    user: User,
    *,
    redis: Redis | None = None,
    now: datetime | None = None,
) -> None:
    """Raise the first failing gate (AlreadyClaimed, CooldownActive, RateLimited)."""
    now = now or datetime.now(timezone.utc)
    policy = BonusPolicy.from_settings(get_settings())

    if await _claimed_today(db, user.id, day_string(now)):
        raise AlreadyClaimed()

    last = await ledger.last_confirmed_claim(db, user.id, ledger.CLAIM_DAILY_BONUS)
    if last is not None and last.confirmed_at is not None:
        next_allowed = last.confirmed_at + policy.cooldown
        if next_allowed > now:
            raise CooldownActive(
                ms_until(next_allowed, now),
                "Daily bonus cooldown is still active",
                nextClaimAt=int(next_allowed.timestamp() * 1000),
            )

    await check_claim_rate_limit(redis, user.id)


async def get_bonus_status(db: AsyncSession, user: User, *, now: datetime | None = None) -> BonusStatus:
    """What a claim right now would yield, or why it is blocked."""
    now = now or datetime.now(timezone.utc)
    policy = BonusPolicy.from_settings(get_settings())
    today = day_string(now)
    try:
        await check_eligibility(db, user, now=now)
        day = next_streak_day(user.last_streak_claim_date, user.streak_count, today)
    except EconomyError as e:
        # Blocked today; report what the next allowed claim would continue with
        day = 1 if user.last_streak_claim_date is None else (user.streak_count % 7) + 1
        remaining = e.remaining_ms if isinstance(e, CooldownActive) else 0
        return BonusStatus(False, day, user.streak_count, reward_for_day(day, policy), e.error_code, remaining)
    return BonusStatus(True, day, user.streak_count, reward_for_day(day, policy))


@dataclass(frozen=True)
class DailyBonusReservation:
    """Today's claim rows, staged in the session but not yet committed."""

    claim: ClaimTransaction
    streak_day: int
    amount: int
    claim_date: str


async def stage_daily_bonus(
    db: AsyncSession,
    user: User,
    *,
    token_address: str,
    delivery: str = ledger.DELIVERY_TRANSFER,
    redis: Redis | None = None,
    now: datetime | None = None,
) -> DailyBonusReservation:
    """Run the eligibility gates and flush today's ledger entry, daily row and streak.

    The caller commits. A concurrent claim for the same day surfaces as
    ``AlreadyClaimed`` here or at commit time.
    """
    policy = BonusPolicy.from_settings(get_settings())
    now = now or datetime.now(timezone.utc)
    today = day_string(now)

    await check_eligibility(db, user, redis=redis, now=now)
    streak_day = next_streak_day(user.last_streak_claim_date, user.streak_count, today)
    amount = reward_for_day(streak_day, policy)
    user_id = user.id

    claim = ledger.open_claim(
        db,
        user_id=user_id,
        claim_type=ledger.CLAIM_DAILY_BONUS,
        amount=amount,
        token_address=token_address,
        claim_key=ledger.daily_bonus_key(user_id, today),
        delivery=delivery,
    )
    try:
        await db.flush()
        db.add(DailyBonusClaim(
            user_id=user_id,
            claim_date=today,
            streak_day=streak_day,
            amount=str(amount),
            transaction_id=claim.id,
            claimed_at=now,
        ))
        user.streak_count = streak_day
        user.last_streak_claim_date = today
        await db.flush()
    except IntegrityError as e:
        await db.rollback()
        logger.info("daily_bonus_race_lost", user_id=user_id, claim_date=today)
        raise AlreadyClaimed() from e
    return DailyBonusReservation(claim=claim, streak_day=streak_day, amount=amount, claim_date=today)


async def commit_reservation(db: AsyncSession, reservation: DailyBonusReservation, user_id: int) -> None:
    try:
        await db.commit()
    except IntegrityError as e:
        await db.rollback()
        logger.info("daily_bonus_race_lost", user_id=user_id, claim_date=reservation.claim_date)
        raise AlreadyClaimed() from e


async def claim_daily_bonus(
    db: AsyncSession,
    user: User,
    gateway: TokenDistributionGateway,
    *,
    redis: Redis | None = None,
    now: datetime | None = None,
) -> DailyBonusResult:
    """Claim today's bonus and push it through the token gateway."""
    settings = get_settings()
    user_id = user.id
    wallet = user.wallet_address

    reservation = await stage_daily_bonus(
        db, user, token_address=gateway.token_address or settings.token_address, redis=redis, now=now,
    )
    await commit_reservation(db, reservation, user_id)
    claim = reservation.claim

    logger.info(
        "daily_bonus_claimed",
        user_id=user_id,
        claim_id=claim.id,
        streak_day=reservation.streak_day,
        amount=str(reservation.amount),
    )
    outcome = await distribute(db, claim, wallet, gateway, timeout=settings.gateway_timeout_seconds)
    return DailyBonusResult(streak_day=reservation.streak_day, amount=reservation.amount, outcome=outcome)
