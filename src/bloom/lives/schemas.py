"""Pydantic schemas for lives, barn attempts and play pass endpoints.

Timestamps are epoch milliseconds.
"""

from __future__ import annotations

from pydantic import Field

from bloom.lives.service import FullStatus, LivesStatus
from bloom.periods import to_epoch_ms
from bloom.schemas import CamelModel


class LivesStatusData(CamelModel):
    lives: int
    max_lives: int
    next_life_at: int | None
    next_life_in_ms: int
    can_play: bool

    @classmethod
    def from_status(cls, status: LivesStatus) -> LivesStatusData:
        return cls(
            lives=status.lives,
            max_lives=status.max_lives,
            next_life_at=to_epoch_ms(status.next_life_at),
            next_life_in_ms=status.next_life_in_ms,
            can_play=status.can_play,
        )


class FullStatusData(LivesStatusData):
    has_active_pass: bool
    play_pass_expires_at: int | None
    play_pass_remaining_ms: int
    is_in_cooldown: bool
    cooldown_ends_at: int | None
    cooldown_remaining_ms: int
    attempts_remaining: int
    max_attempts: int
    free_game_available: bool
    has_active_game: bool

    @classmethod
    def from_full(cls, status: FullStatus) -> FullStatusData:
        lives = status.lives
        return cls(
            lives=lives.lives,
            max_lives=lives.max_lives,
            next_life_at=to_epoch_ms(lives.next_life_at),
            next_life_in_ms=lives.next_life_in_ms,
            can_play=status.can_play,
            has_active_pass=status.has_active_pass,
            play_pass_expires_at=to_epoch_ms(status.play_pass_expires_at),
            play_pass_remaining_ms=status.play_pass_remaining_ms,
            is_in_cooldown=status.is_in_cooldown,
            cooldown_ends_at=to_epoch_ms(status.cooldown_ends_at),
            cooldown_remaining_ms=status.cooldown_remaining_ms,
            attempts_remaining=status.attempts_remaining,
            max_attempts=status.max_attempts,
            free_game_available=status.free_game_available,
            has_active_game=status.has_active_game,
        )


class ConsumeData(CamelModel):
    game_started: bool = True
    lives_remaining: int
    next_life_at: int | None


class EndGameData(CamelModel):
    game_ended: bool = True


class AttemptRequest(CamelModel):
    coins_won: int = Field(default=0, ge=0)
    match_found: bool = False


class InitiatePaymentRequest(CamelModel):
    token_symbol: str = "WLD"
    item_type: str = "play_pass"


class InitiatePaymentData(CamelModel):
    reference_id: str
    merchant_wallet: str
    token_symbol: str
    amount: str
    expires_at: int


class PurchaseRequest(CamelModel):
    payment_reference: str = Field(min_length=1, max_length=64)
    transaction_id: str = Field(min_length=1, max_length=66)
    token_symbol: str = "WLD"


class PurchaseData(CamelModel):
    purchase_id: int | None = None
    play_pass_expires_at: int | None = None
    confirmations: int = 0
    message: str
