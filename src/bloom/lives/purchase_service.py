"""Play pass purchases: payment references and on-chain verification."""

from __future__ import annotations

import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from functools import lru_cache
from typing import TYPE_CHECKING

import structlog
from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError

from bloom.config import Settings, get_settings
from bloom.db.models import BarnGamePurchase, PaymentReference
from bloom.errors import GatewayUnavailable, PaymentError, ValidationError
from bloom.lives import attempts
from bloom.lives.attempts import AttemptsPolicy
from bloom.lives.payments import TX_HASH_RE, PaymentVerifier, Web3PaymentVerifier
from bloom.lives.service import get_or_create_state

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = structlog.get_logger()

ITEM_PLAY_PASS = "play_pass"
SUPPORTED_ITEMS = frozenset({ITEM_PLAY_PASS})


@dataclass(frozen=True)
class PurchaseOutcome:
    status: str  # "completed" | "pending"
    message: str
    purchase_id: int | None = None
    play_pass_expires_at: datetime | None = None
    confirmations: int = 0


def token_terms(settings: Settings, token_symbol: str) -> tuple[str, int]:
    """(token contract address, price in smallest units) for a payment token."""
    symbol = token_symbol.upper()
    if symbol == "WLD":
        return settings.wld_token_address, int(settings.play_pass_price_wld)
    if symbol == "USDC":
        return settings.usdc_token_address, int(settings.play_pass_price_usdc)
    raise ValidationError(f"Unsupported payment token: {token_symbol}", error_code="invalid_token")


@lru_cache
def _build_verifier(rpc_url: str, min_confirmations: int) -> Web3PaymentVerifier:
    return Web3PaymentVerifier(rpc_url, min_confirmations=min_confirmations)


def get_payment_verifier() -> PaymentVerifier | None:
    """FastAPI dependency; None when no RPC endpoint is configured."""
    settings = get_settings()
    if not settings.chain_rpc_url:
        return None
    return _build_verifier(settings.chain_rpc_url, settings.payment_min_confirmations)


async def initiate_payment(
    db: AsyncSession,
    user_id: int,
    *,
    token_symbol: str = "WLD",
    item_type: str = ITEM_PLAY_PASS,
    now: datetime | None = None,
) -> PaymentReference:
    """Create a short-lived payment reference for the client to pay against."""
    settings = get_settings()
    now = now or datetime.now(timezone.utc)
    if item_type not in SUPPORTED_ITEMS:
        raise ValidationError(f"Unsupported item: {item_type}", error_code="invalid_item")
    if not settings.merchant_wallet:
        raise GatewayUnavailable("Payment recipient is not configured", error_code="config_error")
    _, price = token_terms(settings, token_symbol)

    reference = PaymentReference(
        reference_id=secrets.token_hex(16),
        user_id=user_id,
        item_type=item_type,
        token_symbol=token_symbol.upper(),
        amount=str(price),
        status="pending",
        expires_at=now + timedelta(minutes=settings.payment_reference_ttl_minutes),
    )
    db.add(reference)
    await db.commit()
    logger.info("payment_reference_created", user_id=user_id, reference_id=reference.reference_id)
    return reference


async def purchase_play_pass(
    db: AsyncSession,
    user_id: int,
    *,
    reference_id: str,
    transaction_id: str,
    verifier: PaymentVerifier | None,
    now: datetime | None = None,
) -> PurchaseOutcome:
    """Verify a payment and activate a play pass.

    Raises:
        ValidationError: Malformed transaction id.
        PaymentError: Reused reference/transaction, bad reference or failed verification.
        GatewayUnavailable: No payment verifier configured.
    """
    settings = get_settings()
    now = now or datetime.now(timezone.utc)

    if not TX_HASH_RE.match(transaction_id):
        raise ValidationError("Invalid transaction ID format", error_code="invalid_tx")

    existing = await db.execute(
        select(BarnGamePurchase).where(
            or_(
                BarnGamePurchase.payment_reference == reference_id,
                BarnGamePurchase.transaction_id == transaction_id,
            )
        )
    )
    duplicate = existing.scalars().first()
    if duplicate is not None:
        if duplicate.payment_reference == reference_id:
            raise PaymentError("This payment has already been processed", error_code="duplicate_payment")
        raise PaymentError("This transaction has already been used", error_code="duplicate_transaction")

    result = await db.execute(
        select(PaymentReference).where(
            PaymentReference.reference_id == reference_id,
            PaymentReference.user_id == user_id,
        )
    )
    reference = result.scalar_one_or_none()
    if reference is None or reference.status != "pending" or reference.expires_at <= now:
        raise PaymentError("Invalid or expired payment reference", error_code="invalid_reference")

    if verifier is None or not settings.merchant_wallet:
        raise GatewayUnavailable("Payment verification is not configured", error_code="config_error")

    token_address, price = token_terms(settings, reference.token_symbol)
    verification = await verifier.verify(
        transaction_id,
        recipient=settings.merchant_wallet,
        token_address=token_address,
        min_amount=price,
    )
    if verification.pending:
        return PurchaseOutcome(
            status="pending",
            message=verification.error or "Payment is pending confirmation",
            confirmations=verification.confirmations,
        )
    if not verification.verified:
        logger.warning(
            "payment_verification_failed",
            user_id=user_id,
            transaction_id=transaction_id,
            error_code=verification.error_code,
        )
        raise PaymentError(verification.error, error_code=verification.error_code or "verification_failed")

    state = await get_or_create_state(db, user_id, now=now, for_update=True)
    expires_at = attempts.grant_play_pass(state, now, AttemptsPolicy.from_settings(settings))

    purchase = BarnGamePurchase(
        user_id=user_id,
        payment_reference=reference_id,
        transaction_id=transaction_id,
        token_symbol=reference.token_symbol,
        amount=str(verification.amount),
        play_pass_expires_at=expires_at,
    )
    db.add(purchase)
    reference.status = "completed"
    reference.transaction_id = transaction_id
    reference.completed_at = now
    try:
        await db.commit()
    except IntegrityError as e:
        await db.rollback()
        raise PaymentError("This transaction has already been used", error_code="duplicate_transaction") from e

    logger.info("play_pass_purchased", user_id=user_id, purchase_id=purchase.id, expires_at=expires_at.isoformat())
    return PurchaseOutcome(
        status="completed",
        message="Play Pass activated",
        purchase_id=purchase.id,
        play_pass_expires_at=expires_at,
        confirmations=verification.confirmations,
    )
