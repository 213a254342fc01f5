"""Claim ledger and claim voucher API."""

from __future__ import annotations

from functools import lru_cache

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from bloom.auth.dependencies import get_current_user
from bloom.claims import ledger, settlement, vouchers
from bloom.claims.gateway import TokenDistributionGateway, get_token_gateway
from bloom.claims.schemas import ClaimData, ClaimListData, RecordRequest, SignatureData, SignatureRequest
from bloom.claims.signature import ContractNonceSource, NonceSource
from bloom.config import get_settings
from bloom.database import get_session
from bloom.db.models import User
from bloom.errors import GatewayUnavailable
from bloom.redis_client import get_optional_redis
from bloom.schemas import Envelope, success

router = APIRouter(prefix="/api/v1", tags=["Claims"])


@lru_cache
def _nonce_source(rpc_url: str, contract_address: str) -> ContractNonceSource:
    return ContractNonceSource(rpc_url, contract_address)


def get_nonce_source() -> NonceSource | None:
    settings = get_settings()
    if not (settings.chain_rpc_url and settings.claim_contract_address):
        return None
    return _nonce_source(settings.chain_rpc_url, settings.claim_contract_address)


@router.get("/claims", response_model=Envelope[ClaimListData])
async def list_claims(
    limit: int = Query(50, ge=1, le=100),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> Envelope[ClaimListData]:
    """The caller's claims, newest first."""
    claims = await ledger.list_claims(db, user.id, limit=limit)
    return success(ClaimListData(claims=[ClaimData.from_claim(c) for c in claims], total=len(claims)))


@router.post("/claims/{claim_id}/retry", response_model=Envelope[ClaimData])
async def retry_claim(
    claim_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
    gateway: TokenDistributionGateway = Depends(get_token_gateway),
) -> Envelope[ClaimData]:
    """Retry distribution of a pending claim.

    A claim still waiting on the gateway comes back as ``pending``; a failed
    transfer comes back as the claim with status ``failed``.
    """
    outcome = await settlement.retry(
        db,
        claim_id,
        user_id=user.id,
        recipient=user.wallet_address,
        gateway=gateway,
        timeout=get_settings().gateway_timeout_seconds,
    )
    data = ClaimData.from_claim(outcome.claim)
    if outcome.status == "pending":
        return Envelope(status="pending", data=data, error=outcome.error, error_code=outcome.error_code)
    return success(data)


@router.post("/claim/signature", response_model=Envelope[SignatureData])
async def claim_signature(
    body: SignatureRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
    nonce_source: NonceSource | None = Depends(get_nonce_source),
) -> Envelope[SignatureData]:
    """Open a voucher claim and return the signature the user redeems on the claim contract."""
    if nonce_source is None:
        raise GatewayUnavailable("Claim contract is not configured", error_code="not_configured")

    issued = await vouchers.issue_voucher(
        db,
        user,
        nonce_source,
        claim_type=body.claim_type,
        score_id=body.score_id,
        redis=get_optional_redis(),
    )
    voucher = issued.signature
    return success(SignatureData(
        claim_id=issued.claim.id,
        signature=voucher.signature,
        amount=str(voucher.amount),
        claim_type=int(voucher.claim_type),
        nonce=voucher.nonce,
        deadline=voucher.deadline,
        contract_address=voucher.contract_address,
        streak_day=issued.streak_day,
    ))


@router.post("/claim/record", response_model=Envelope[ClaimData])
async def record_claim(
    body: RecordRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> Envelope[ClaimData]:
    """Record the on-chain transaction that redeemed a voucher."""
    claim = await vouchers.record_redemption(db, user.id, body.claim_id, body.tx_hash)
    return success(ClaimData.from_claim(claim))
