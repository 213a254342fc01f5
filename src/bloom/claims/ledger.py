"""Claim ledger: the record of every token payout.

A claim is opened ``pending`` and committed before any transfer is attempted.
It settles exactly once, to ``confirmed`` or ``failed``, through a conditional
update that only matches pending rows. Each eligible unit has one
``claim_key``, so the same bonus or score can never open two claims.
A server transfer is signed and stored on its claim before it is broadcast;
once a claim carries a transfer, no other transfer is ever sent for it.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

import structlog
from sqlalchemy import select, update

from bloom.db.models import ClaimTransaction
from bloom.errors import ClaimAlreadySettled, ClaimNotFound

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = structlog.get_logger()

CLAIM_DAILY_BONUS = "daily_bonus"
CLAIM_GAME_REWARD = "game_reward"

DELIVERY_TRANSFER = "transfer"
DELIVERY_VOUCHER = "voucher"

STATUS_PENDING = "pending"
STATUS_CONFIRMED = "confirmed"
STATUS_FAILED = "failed"


def daily_bonus_key(user_id: int, claim_date: str) -> str:
    return f"{CLAIM_DAILY_BONUS}:{user_id}:{claim_date}"


def game_reward_key(score_id: int) -> str:
    return f"{CLAIM_GAME_REWARD}:{score_id}"


def open_claim(
    db: AsyncSession,
    *,
    user_id: int,
    claim_type: str,
    amount: int,
    token_address: str,
    claim_key: str,
    delivery: str = DELIVERY_TRANSFER,
) -> ClaimTransaction:
    """Stage a pending claim in the session.

    The caller commits it together with the rows that consume eligibility,
    so a duplicate ``claim_key`` fails the whole unit of work.
    """
    if amount <= 0:
        msg = f"Claim amount must be positive, got {amount}"
        raise ValueError(msg)
    claim = ClaimTransaction(
        user_id=user_id,
        claim_type=claim_type,
        claim_key=claim_key,
        amount=str(amount),
        token_address=token_address,
        delivery=delivery,
        status=STATUS_PENDING,
    )
    db.add(claim)
    return claim


async def get_claim(db: AsyncSession, claim_id: int, *, user_id: int | None = None) -> ClaimTransaction:
    stmt = select(ClaimTransaction).where(ClaimTransaction.id == claim_id)
    if user_id is not None:
        stmt = stmt.where(ClaimTransaction.user_id == user_id)
    result = await db.execute(stmt.execution_options(populate_existing=True))
    claim = result.scalar_one_or_none()
    if claim is None:
        raise ClaimNotFound()
    return claim


async def settle(
    db: AsyncSession,
    claim_id: int,
    *,
    confirmed: bool,
    tx_hash: str | None = None,
    block_number: int | None = None,
    error: str | None = None,
    now: datetime | None = None,
) -> ClaimTransaction:
    """Move a pending claim to its terminal state.

    Raises:
        ClaimAlreadySettled: The claim is already confirmed or failed.
        ClaimNotFound: No such claim.
    """
    now = now or datetime.now(timezone.utc)
    values: dict[str, object] = {
        "status": STATUS_CONFIRMED if confirmed else STATUS_FAILED,
        "error_message": None if confirmed else error,
        "updated_at": now,
    }
    if tx_hash is not None:
        values["tx_hash"] = tx_hash
    if block_number is not None:
        values["block_number"] = block_number
    if confirmed:
        values["confirmed_at"] = now

    result = await db.execute(
        update(ClaimTransaction)
        .where(ClaimTransaction.id == claim_id, ClaimTransaction.status == STATUS_PENDING)
        .values(**values)
    )
    await db.commit()
    claim = await get_claim(db, claim_id)
    if result.rowcount == 0:
        raise ClaimAlreadySettled(f"Claim {claim_id} is already {claim.status}")

    logger.info("claim_settled", claim_id=claim_id, status=claim.status, tx_hash=tx_hash)
    return claim


async def mark_pending(db: AsyncSession, claim_id: int, reason: str) -> None:
    """Record why a claim is still pending. No-op once it has settled."""
    await db.execute(
        update(ClaimTransaction)
        .where(ClaimTransaction.id == claim_id, ClaimTransaction.status == STATUS_PENDING)
        .values(error_message=reason, updated_at=datetime.now(timezone.utc))
    )
    await db.commit()
    logger.warning("claim_left_pending", claim_id=claim_id, reason=reason)


async def attach_transfer(db: AsyncSession, claim_id: int, tx_hash: str, signed_transaction: str) -> bool:
    """Store a signed transfer on a pending claim before it is broadcast.

    Returns False when the claim already carries a transfer, in which case the
    new one must not be sent.
    """
    result = await db.execute(
        update(ClaimTransaction)
        .where(
            ClaimTransaction.id == claim_id,
            ClaimTransaction.status == STATUS_PENDING,
            ClaimTransaction.tx_hash.is_(None),
        )
        .values(tx_hash=tx_hash, signed_transaction=signed_transaction, updated_at=datetime.now(timezone.utc))
    )
    await db.commit()
    attached = result.rowcount == 1
    if attached:
        logger.info("claim_transfer_signed", claim_id=claim_id, tx_hash=tx_hash)
    return attached


async def record_attempt(db: AsyncSession, claim_id: int) -> None:
    await db.execute(
        update(ClaimTransaction)
        .where(ClaimTransaction.id == claim_id, ClaimTransaction.status == STATUS_PENDING)
        .values(attempts=ClaimTransaction.attempts + 1)
    )
    await db.commit()


async def list_claims(db: AsyncSession, user_id: int, *, limit: int = 50) -> list[ClaimTransaction]:
    result = await db.execute(
        select(ClaimTransaction)
        .where(ClaimTransaction.user_id == user_id)
        .order_by(ClaimTransaction.created_at.desc(), ClaimTransaction.id.desc())
        .limit(limit)
    )
    return list(result.scalars().all())


async def last_confirmed_claim(db: AsyncSession, user_id: int, claim_type: str) -> ClaimTransaction | None:
    result = await db.execute(
        select(ClaimTransaction)
        .where(
            ClaimTransaction.user_id == user_id,
            ClaimTransaction.claim_type == claim_type,
            ClaimTransaction.status == STATUS_CONFIRMED,
        )
        .order_by(ClaimTransaction.confirmed_at.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def find_stale_pending(
    db: AsyncSession,
    older_than: timedelta,
    *,
    now: datetime | None = None,
) -> list[ClaimTransaction]:
    """Pending claims untouched for longer than ``older_than``."""
    now = now or datetime.now(timezone.utc)
    result = await db.execute(
        select(ClaimTransaction)
        .where(ClaimTransaction.status == STATUS_PENDING, ClaimTransaction.updated_at < now - older_than)
        .order_by(ClaimTransaction.id)
    )
    return list(result.scalars().all())
