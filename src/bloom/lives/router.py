"""Lives, barn attempts and play pass API."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from bloom.auth.dependencies import get_current_user
from bloom.config import get_settings
from bloom.database import get_session
from bloom.db.models import User
from bloom.lives import purchase_service, service
from bloom.lives.payments import PaymentVerifier
from bloom.lives.schemas import (
    AttemptRequest,
    ConsumeData,
    EndGameData,
    FullStatusData,
    InitiatePaymentData,
    InitiatePaymentRequest,
    PurchaseData,
    PurchaseRequest,
)
from bloom.periods import to_epoch_ms
from bloom.schemas import Envelope, pending, success

router = APIRouter(prefix="/api/v1/lives", tags=["Lives"])


@router.get("/status", response_model=Envelope[FullStatusData])
async def lives_status(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> Envelope[FullStatusData]:
    """Lives, play pass, cooldown and attempts for the caller."""
    status = await service.get_full_status(db, user.id)
    return success(FullStatusData.from_full(status))


@router.post("/consume", response_model=Envelope[ConsumeData])
async def consume_life(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> Envelope[ConsumeData]:
    """Spend a life to start a game."""
    result = await service.consume(db, user.id)
    return success(ConsumeData(lives_remaining=result.lives_remaining, next_life_at=to_epoch_ms(result.next_life_at)))


@router.post("/end-game", response_model=Envelope[EndGameData])
async def end_game(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> Envelope[EndGameData]:
    await service.end_game(db, user.id)
    return success(EndGameData())


@router.post("/attempts", response_model=Envelope[FullStatusData])
async def record_attempt(
    body: AttemptRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> Envelope[FullStatusData]:
    """Spend one barn attempt. The last one starts the cooldown."""
    status = await service.record_attempt(db, user.id, coins_won=body.coins_won, match_found=body.match_found)
    return success(FullStatusData.from_full(status))


@router.post("/free-game", response_model=Envelope[FullStatusData])
async def use_free_game(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> Envelope[FullStatusData]:
    status = await service.use_free_game(db, user.id)
    return success(FullStatusData.from_full(status))


@router.post("/payments/initiate", response_model=Envelope[InitiatePaymentData])
async def initiate_payment(
    body: InitiatePaymentRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> Envelope[InitiatePaymentData]:
    """Create a payment reference for a play pass purchase."""
    reference = await purchase_service.initiate_payment(
        db, user.id, token_symbol=body.token_symbol, item_type=body.item_type,
    )
    return success(InitiatePaymentData(
        reference_id=reference.reference_id,
        merchant_wallet=get_settings().merchant_wallet,
        token_symbol=reference.token_symbol,
        amount=reference.amount,
        expires_at=to_epoch_ms(reference.expires_at) or 0,
    ))


@router.post("/purchase", response_model=Envelope[PurchaseData])
async def purchase_play_pass(
    body: PurchaseRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
    verifier: PaymentVerifier | None = Depends(purchase_service.get_payment_verifier),
) -> Envelope[PurchaseData]:
    """Verify the on-chain payment and activate a play pass.

    Returns status "pending" while the transaction lacks confirmations.
    """
    outcome = await purchase_service.purchase_play_pass(
        db,
        user.id,
        reference_id=body.payment_reference,
        transaction_id=body.transaction_id,
        verifier=verifier,
    )
    data = PurchaseData(
        purchase_id=outcome.purchase_id,
        play_pass_expires_at=to_epoch_ms(outcome.play_pass_expires_at),
        confirmations=outcome.confirmations,
        message=outcome.message,
    )
    if outcome.status == "pending":
        return pending(data, outcome.message)
    return success(data)
