"""Claim vouchers: payouts the player redeems on the claim contract.

A voucher opens a ``voucher`` claim under the same claim key a server transfer
would use, in the transaction that consumes eligibility. The voucher is signed
before that transaction commits and handed out only after it has, so every
signature has exactly one ledger row and no bonus or score is paid twice. The
player reports the redemption transaction with ``record_redemption``.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING

import structlog
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from web3.exceptions import Web3Exception

from bloom.bonus import service as bonus_service
from bloom.claims import ledger
from bloom.claims.signature import ClaimSignature, ClaimType, NonceSource, issue_claim_signature
from bloom.config import get_settings
from bloom.db.models import ClaimTransaction, GameScore, User
from bloom.errors import AlreadyClaimed, GatewayUnavailable, RewardAlreadyClaimed, ValidationError

if TYPE_CHECKING:
    from redis.asyncio import Redis
    from sqlalchemy.ext.asyncio import AsyncSession

logger = structlog.get_logger()


@dataclass(frozen=True)
class IssuedVoucher:
    claim: ClaimTransaction
    signature: ClaimSignature
    streak_day: int | None = None


async def _stage_game_reward(
    db: AsyncSession, user_id: int, score_id: int, token_address: str,
) -> tuple[ClaimTransaction, int]:
    result = await db.execute(
        select(GameScore).where(
            GameScore.id == score_id,
            GameScore.user_id == user_id,
            GameScore.is_validated.is_(True),
        )
    )
    score = result.scalar_one_or_none()
    if score is None:
        raise ValidationError("No validated score matches this claim", error_code="invalid_score")
    amount = score.score * int(get_settings().game_reward_multiplier)
    if amount <= 0:
        raise ValidationError("This score carries no reward", error_code="invalid_score")

    claim = ledger.open_claim(
        db,
        user_id=user_id,
        claim_type=ledger.CLAIM_GAME_REWARD,
        amount=amount,
        token_address=token_address,
        claim_key=ledger.game_reward_key(score.id),
        delivery=ledger.DELIVERY_VOUCHER,
    )
    try:
        await db.flush()
    except IntegrityError as e:
        await db.rollback()
        raise RewardAlreadyClaimed() from e
    return claim, amount


async def issue_voucher(
    db: AsyncSession,
    user: User,
    nonce_source: NonceSource,
    *,
    claim_type: str,
    score_id: int | None = None,
    redis: Redis | None = None,
    now: datetime | None = None,
) -> IssuedVoucher:
    """Open a voucher claim and sign it.

    Raises:
        AlreadyClaimed: Today's bonus is already claimed, by voucher or transfer.
        RewardAlreadyClaimed: The score already has a claim.
        ValidationError: The score is unknown, not the caller's or unrewarded.
        GatewayUnavailable: The claim contract is missing or unreachable.
    """
    settings = get_settings()
    if not (settings.claim_contract_address and settings.claim_signer_private_key):
        raise GatewayUnavailable("Claim contract is not configured", error_code="not_configured")
    user_id = user.id
    wallet = user.wallet_address

    streak_day = None
    if claim_type == ledger.CLAIM_DAILY_BONUS:
        reservation = await bonus_service.stage_daily_bonus(
            db,
            user,
            token_address=settings.token_address,
            delivery=ledger.DELIVERY_VOUCHER,
            redis=redis,
            now=now,
        )
        claim, amount, kind = reservation.claim, reservation.amount, ClaimType.DAILY_BONUS
        streak_day = reservation.streak_day
    else:
        if score_id is None:
            raise ValidationError("scoreId is required for game rewards", error_code="invalid_score")
        claim, amount = await _stage_game_reward(db, user_id, score_id, settings.token_address)
        kind = ClaimType.GAME_REWARD

    try:
        signature = await issue_claim_signature(
            settings, nonce_source, user_address=wallet, claim_type=kind, amount=amount,
        )
    except (Web3Exception, OSError) as e:
        await db.rollback()
        logger.warning("claim_nonce_unavailable", user_id=user_id, error=str(e))
        raise GatewayUnavailable("Claim contract is unreachable", error_code="network_error") from e

    try:
        await db.commit()
    except IntegrityError as e:
        await db.rollback()
        if kind is ClaimType.DAILY_BONUS:
            raise AlreadyClaimed() from e
        raise RewardAlreadyClaimed() from e

    logger.info(
        "claim_voucher_issued",
        user_id=user_id,
        claim_id=claim.id,
        claim_type=claim_type,
        amount=str(amount),
        nonce=signature.nonce,
    )
    return IssuedVoucher(claim=claim, signature=signature, streak_day=streak_day)


async def record_redemption(db: AsyncSession, user_id: int, claim_id: int, tx_hash: str) -> ClaimTransaction:
    """Confirm a voucher claim with the transaction that redeemed it.

    Recording the same hash again returns the confirmed claim unchanged.

    Raises:
        ClaimNotFound: No such claim for this user.
        ClaimAlreadySettled: The claim settled with another outcome.
        ValidationError: Not a voucher claim, or the hash belongs to another claim.
    """
    tx_hash = tx_hash.lower()
    claim = await ledger.get_claim(db, claim_id, user_id=user_id)
    if claim.delivery != ledger.DELIVERY_VOUCHER:
        raise ValidationError("Only voucher claims can be recorded", error_code="not_a_voucher_claim")
    if claim.status == ledger.STATUS_CONFIRMED and claim.tx_hash == tx_hash:
        return claim

    used = await db.execute(
        select(ClaimTransaction.id).where(ClaimTransaction.tx_hash == tx_hash, ClaimTransaction.id != claim_id).limit(1)
    )
    if used.first() is not None:
        raise ValidationError("Transaction is already recorded for another claim", error_code="duplicate_transaction")

    claim = await ledger.settle(db, claim_id, confirmed=True, tx_hash=tx_hash)
    logger.info("claim_voucher_redeemed", user_id=user_id, claim_id=claim_id, tx_hash=tx_hash)
    return claim
