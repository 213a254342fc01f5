"""Pydantic schemas for score submission.

``validationData`` is a closed union tagged by ``gameType``; each game
reports the facts its anti-cheat checks need.
"""

from __future__ import annotations

from typing import Annotated, Literal
from uuid import UUID

from pydantic import Field

from bloom.schemas import CamelModel

# 9999-12-31T23:59:59.999Z, the last instant a datetime can hold
MAX_EPOCH_MS = 253_402_300_799_999


class CardMatchValidation(CamelModel):
    game_type: Literal["card_match"]
    pairs_matched: int = Field(ge=0)
    total_pairs: int = Field(gt=0)
    moves: int = Field(ge=0)


class HarvestValidation(CamelModel):
    game_type: Literal["harvest"]
    seeds_planted: int = Field(ge=0)
    plots_harvested: int = Field(ge=0)
    coins_earned: int = Field(ge=0)


ValidationData = Annotated[
    CardMatchValidation | HarvestValidation,
    Field(discriminator="game_type"),
]


class ScoreSubmitRequest(CamelModel):
    game_type: str = Field(min_length=1, max_length=32)
    score: int = Field(ge=0)
    monthly_profit: int = Field(default=0, ge=0)
    session_id: UUID | None = None
    game_started_at: int = Field(gt=0, le=MAX_EPOCH_MS, description="Epoch ms")
    game_ended_at: int = Field(gt=0, le=MAX_EPOCH_MS, description="Epoch ms")
    validation_data: ValidationData | None = None


class RewardData(CamelModel):
    claim_id: int
    amount: str
    status: str
    tx_hash: str | None = None


class ScoreSubmitData(CamelModel):
    score_id: int
    score: int
    monthly_profit: int
    leaderboard_period: str
    reward: RewardData | None = None
    reward_error: str | None = None


class RecentGameData(CamelModel):
    id: int
    game_type: str
    score: int
    monthly_profit: int
    time_taken: int | None = None
    moves: int | None = None
    leaderboard_period: str
    created_at: int


class UserStatsData(CamelModel):
    total_games: int
    total_score: int
    best_score: int | None
    total_profit: int
    average_score: int
    recent_games: list[RecentGameData]
