"""Drive a committed pending claim through the token gateway.

The transfer is signed first and stored on the claim, then broadcast. A
timeout or network error after that point leaves the claim pending with its
signed transfer, and an explicit retry rebroadcasts that same transaction.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import TYPE_CHECKING

import structlog

from bloom.claims import ledger
from bloom.claims.gateway import PreparedTransfer, TokenDistributionGateway, TransferRejected, TransferResult
from bloom.db.models import ClaimTransaction
from bloom.errors import ClaimAlreadySettled, ClaimNotRetryable

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = structlog.get_logger()

NOT_CONFIGURED_REASON = "Token distribution not configured"


@dataclass(frozen=True)
class DistributionOutcome:
    claim: ClaimTransaction
    status: str  # confirmed | failed | pending
    error: str | None = None
    error_code: str | None = None


async def _left_pending(db: AsyncSession, claim_id: int, reason: str, error_code: str) -> DistributionOutcome:
    await ledger.mark_pending(db, claim_id, reason)
    return DistributionOutcome(await ledger.get_claim(db, claim_id), "pending", reason, error_code)


async def _record(db: AsyncSession, claim_id: int, result: TransferResult) -> DistributionOutcome:
    if result.success:
        settled = await ledger.settle(
            db, claim_id, confirmed=True, tx_hash=result.tx_hash, block_number=result.block_number,
        )
        return DistributionOutcome(settled, "confirmed")
    if result.transient:
        return await _left_pending(db, claim_id, result.error or "Transfer not confirmed", result.error_code or "pending")

    settled = await ledger.settle(
        db, claim_id, confirmed=False, tx_hash=result.tx_hash, block_number=result.block_number, error=result.error,
    )
    return DistributionOutcome(settled, "failed", result.error, result.error_code or "transfer_failed")


async def _broadcast(
    db: AsyncSession,
    claim_id: int,
    transfer: PreparedTransfer,
    gateway: TokenDistributionGateway,
    timeout: float,
) -> DistributionOutcome:
    try:
        result = await asyncio.wait_for(gateway.broadcast(transfer), timeout=timeout)
    except asyncio.TimeoutError:
        return await _left_pending(db, claim_id, f"Token transfer timed out after {timeout:g}s", "timeout")
    except Exception as exc:
        logger.error("gateway_error", claim_id=claim_id, tx_hash=transfer.tx_hash, error=str(exc), exc_info=exc)
        return await _left_pending(db, claim_id, "Token gateway error", "gateway_error")
    return await _record(db, claim_id, result)


async def distribute(
    db: AsyncSession,
    claim: ClaimTransaction,
    recipient: str,
    gateway: TokenDistributionGateway,
    *,
    timeout: float,
) -> DistributionOutcome:
    """Attempt the transfer for a pending claim and record the result.

    An unconfigured gateway, a timeout or a transient gateway error leaves the
    claim pending with a reason; nothing here retries automatically.
    """
    claim_id = claim.id
    if not gateway.is_ready():
        return await _left_pending(db, claim_id, NOT_CONFIGURED_REASON, "not_configured")

    await ledger.record_attempt(db, claim_id)
    try:
        transfer = await asyncio.wait_for(gateway.prepare(recipient, int(claim.amount)), timeout=timeout)
    except TransferRejected as exc:
        return await _record(db, claim_id, exc.result)
    except asyncio.TimeoutError:
        return await _left_pending(db, claim_id, f"Preparing the transfer timed out after {timeout:g}s", "timeout")
    except Exception as exc:
        logger.error("gateway_error", claim_id=claim_id, error=str(exc), exc_info=exc)
        return await _left_pending(db, claim_id, "Token gateway error", "gateway_error")

    if not await ledger.attach_transfer(db, claim_id, transfer.tx_hash, transfer.raw_transaction):
        # A concurrent attempt signed its own transfer first; this one is dropped unsent
        claim = await ledger.get_claim(db, claim_id)
        return DistributionOutcome(claim, claim.status, "Transfer already in flight", "awaiting_receipt")
    return await _broadcast(db, claim_id, transfer, gateway, timeout)


async def retry(
    db: AsyncSession,
    claim_id: int,
    *,
    user_id: int,
    recipient: str,
    gateway: TokenDistributionGateway,
    timeout: float,
) -> DistributionOutcome:
    """Explicitly retry a claim. Idempotent.

    Confirmed claims come back unchanged and failed ones are rejected. A
    pending claim that already carries a signed transfer gets that same
    transaction rebroadcast; one without gets its first transfer.

    Raises:
        ClaimAlreadySettled: The claim failed.
        ClaimNotRetryable: The claim is paid through a voucher.
    """
    claim = await ledger.get_claim(db, claim_id, user_id=user_id)
    if claim.status == ledger.STATUS_CONFIRMED:
        return DistributionOutcome(claim, "confirmed")
    if claim.status == ledger.STATUS_FAILED:
        raise ClaimAlreadySettled(f"Claim {claim_id} failed and cannot be retried")
    if claim.delivery == ledger.DELIVERY_VOUCHER:
        raise ClaimNotRetryable("Voucher claims are redeemed on the claim contract")

    if claim.tx_hash is None:
        logger.info("claim_retry", claim_id=claim_id, attempts=claim.attempts)
        return await distribute(db, claim, recipient, gateway, timeout=timeout)

    if claim.signed_transaction is None:
        return DistributionOutcome(claim, "pending", "Awaiting confirmation of an earlier transfer", "awaiting_receipt")
    if not gateway.is_ready():
        return await _left_pending(db, claim_id, NOT_CONFIGURED_REASON, "not_configured")

    logger.info("claim_rebroadcast", claim_id=claim_id, tx_hash=claim.tx_hash, attempts=claim.attempts)
    await ledger.record_attempt(db, claim_id)
    transfer = PreparedTransfer(tx_hash=claim.tx_hash, raw_transaction=claim.signed_transaction)
    return await _broadcast(db, claim_id, transfer, gateway, timeout)
