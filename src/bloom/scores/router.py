"""Score submission API."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from bloom.auth.dependencies import get_current_user
from bloom.claims.gateway import TokenDistributionGateway, get_token_gateway
from bloom.database import get_session
from bloom.db.models import User
from bloom.errors import ValidationError
from bloom.leaderboard.cache import LeaderboardCache
from bloom.leaderboard.router import get_leaderboard_cache
from bloom.periods import from_epoch_ms, to_epoch_ms
from bloom.scores import service
from bloom.scores.schemas import (
    RecentGameData,
    RewardData,
    ScoreSubmitData,
    ScoreSubmitRequest,
    UserStatsData,
)
from bloom.scores.validator import ScoreSubmission
from bloom.schemas import Envelope, success

router = APIRouter(prefix="/api/v1/scores", tags=["Scores"])


@router.post("/submit", response_model=Envelope[ScoreSubmitData])
async def submit_score(
    body: ScoreSubmitRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
    cache: LeaderboardCache = Depends(get_leaderboard_cache),
    gateway: TokenDistributionGateway = Depends(get_token_gateway),
) -> Envelope[ScoreSubmitData]:
    """Submit a finished game.

    A reward that cannot be paid does not fail the submission; it is
    reported in ``rewardError``.
    """
    if body.game_ended_at <= body.game_started_at:
        raise ValidationError("Game end time must be after start time", error_code="invalid_timing")

    submission = ScoreSubmission(
        game_type=body.game_type,
        score=body.score,
        monthly_profit=body.monthly_profit,
        started_at=from_epoch_ms(body.game_started_at),
        ended_at=from_epoch_ms(body.game_ended_at),
        validation=body.validation_data,
    )
    result = await service.submit_score(
        db,
        user,
        submission,
        cache=cache,
        gateway=gateway,
        session_id=str(body.session_id) if body.session_id else None,
    )

    reward = None
    if result.reward is not None:
        claim = result.reward.claim
        reward = RewardData(claim_id=claim.id, amount=claim.amount, status=claim.status, tx_hash=claim.tx_hash)
    return success(ScoreSubmitData(
        score_id=result.score.id,
        score=result.score.score,
        monthly_profit=result.score.monthly_profit,
        leaderboard_period=result.score.leaderboard_period,
        reward=reward,
        reward_error=result.reward_error,
    ))


@router.get("/me", response_model=Envelope[UserStatsData])
async def my_stats(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> Envelope[UserStatsData]:
    stats = await service.get_user_stats(db, user.id)
    return success(UserStatsData(
        total_games=stats.total_games,
        total_score=stats.total_score,
        best_score=stats.best_score,
        total_profit=stats.total_profit,
        average_score=stats.average_score,
        recent_games=[
            RecentGameData(
                id=g.id,
                game_type=g.game_type,
                score=g.score,
                monthly_profit=g.monthly_profit,
                time_taken=g.time_taken,
                moves=g.moves,
                leaderboard_period=g.leaderboard_period,
                created_at=to_epoch_ms(g.created_at) or 0,
            )
            for g in stats.recent_games
        ],
    ))
