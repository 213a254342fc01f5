"""Pydantic schemas for the daily bonus API."""

from __future__ import annotations

from bloom.schemas import CamelModel


class BonusStatusData(CamelModel):
    can_claim: bool
    streak_day: int
    current_streak: int
    amount: str
    reason: str | None = None
    remaining_ms: int = 0


class DailyBonusData(CamelModel):
    claim_id: int
    claim_status: str
    amount: str
    streak_day: int
    tx_hash: str | None = None
    block_number: int | None = None
    reward_error: str | None = None
