"""Pydantic schemas for claim endpoints."""

from __future__ import annotations

from typing import Literal

from pydantic import Field

from bloom.db.models import ClaimTransaction
from bloom.periods import to_epoch_ms
from bloom.schemas import CamelModel


class ClaimData(CamelModel):
    id: int
    claim_type: str
    delivery: str
    status: str
    amount: str
    token_address: str
    tx_hash: str | None = None
    block_number: int | None = None
    error_message: str | None = None
    attempts: int = 0
    created_at: int
    confirmed_at: int | None = None

    @classmethod
    def from_claim(cls, claim: ClaimTransaction) -> ClaimData:
        return cls(
            id=claim.id,
            claim_type=claim.claim_type,
            delivery=claim.delivery,
            status=claim.status,
            amount=claim.amount,
            token_address=claim.token_address,
            tx_hash=claim.tx_hash,
            block_number=claim.block_number,
            error_message=claim.error_message,
            attempts=claim.attempts,
            created_at=to_epoch_ms(claim.created_at) or 0,
            confirmed_at=to_epoch_ms(claim.confirmed_at),
        )


class ClaimListData(CamelModel):
    claims: list[ClaimData]
    total: int


class SignatureRequest(CamelModel):
    claim_type: Literal["daily_bonus", "game_reward"]
    score_id: int | None = Field(default=None, gt=0)


class SignatureData(CamelModel):
    claim_id: int
    signature: str
    amount: str
    claim_type: int
    nonce: int
    deadline: int
    contract_address: str
    streak_day: int | None = None


class RecordRequest(CamelModel):
    claim_id: int = Field(gt=0)
    tx_hash: str = Field(pattern=r"^0x[0-9a-fA-F]{64}$")
