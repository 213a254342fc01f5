"""Score submission and player statistics."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING

import structlog
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from bloom.claims import ledger
from bloom.claims.gateway import TokenDistributionGateway
from bloom.claims.settlement import DistributionOutcome, distribute
from bloom.config import get_settings
from bloom.db.models import GameScore, User
from bloom.errors import DuplicateSubmission, ScoreRejected
from bloom.leaderboard import service as leaderboard_service
from bloom.leaderboard.cache import LeaderboardCache
from bloom.periods import leaderboard_period
from bloom.scores.rules import load_rules
from bloom.scores.schemas import CardMatchValidation
from bloom.scores.validator import ScoreSubmission, validate_submission

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = structlog.get_logger()


@dataclass(frozen=True)
class SubmissionResult:
    score: GameScore
    reward_amount: int = 0
    reward: DistributionOutcome | None = None

    @property
    def reward_error(self) -> str | None:
        if self.reward is None or self.reward.status == "confirmed":
            return None
        return self.reward.error or "Reward distribution failed"


async def _session_used(db: AsyncSession, user_id: int, session_id: str) -> bool:
    result = await db.execute(
        select(GameScore.id).where(GameScore.user_id == user_id, GameScore.session_id == session_id).limit(1)
    )
    return result.first() is not None


async def submit_score(
    db: AsyncSession,
    user: User,
    submission: ScoreSubmission,
    *,
    cache: LeaderboardCache,
    gateway: TokenDistributionGateway,
    session_id: str | None = None,
    now: datetime | None = None,
) -> SubmissionResult:
    """Validate and store a game result, then pay its reward if enabled.

    Raises:
        ScoreRejected: An anti-cheat check failed.
        DuplicateSubmission: ``session_id`` was already used by this player.
    """
    settings = get_settings()
    now = now or datetime.now(timezone.utc)
    user_id = user.id
    wallet = user.wallet_address

    verdict = validate_submission(submission, load_rules(settings))
    if not verdict.accepted:
        logger.warning(
            "score_rejected",
            user_id=user_id,
            game_type=submission.game_type,
            score=submission.score,
            flags=list(verdict.flags),
        )
        raise ScoreRejected(verdict.reason or "Score validation failed", list(verdict.flags))

    if session_id and await _session_used(db, user_id, session_id):
        raise DuplicateSubmission()

    data = submission.validation
    row = GameScore(
        user_id=user_id,
        game_type=submission.game_type,
        score=submission.score,
        monthly_profit=submission.monthly_profit,
        session_id=session_id,
        time_taken=int(submission.duration_seconds),
        moves=data.moves if isinstance(data, CardMatchValidation) else None,
        validation_data=data.model_dump(by_alias=True) if data is not None else None,
        game_started_at=submission.started_at,
        game_ended_at=submission.ended_at,
        leaderboard_period=leaderboard_period(now),
        is_validated=True,
        created_at=now,
    )
    db.add(row)

    reward_amount = submission.score * int(settings.game_reward_multiplier) if settings.game_rewards_enabled else 0
    claim = None
    try:
        await db.flush()
        if reward_amount > 0:
            claim = ledger.open_claim(
                db,
                user_id=user_id,
                claim_type=ledger.CLAIM_GAME_REWARD,
                amount=reward_amount,
                token_address=gateway.token_address or settings.token_address,
                claim_key=ledger.game_reward_key(row.id),
            )
        await db.commit()
    except IntegrityError as e:
        await db.rollback()
        raise DuplicateSubmission() from e

    logger.info("score_submitted", user_id=user_id, score_id=row.id, score=row.score, period=row.leaderboard_period)
    await leaderboard_service.invalidate(cache)

    if claim is None:
        return SubmissionResult(score=row)
    outcome = await distribute(db, claim, wallet, gateway, timeout=settings.gateway_timeout_seconds)
    return SubmissionResult(score=row, reward_amount=reward_amount, reward=outcome)


@dataclass(frozen=True)
class UserStats:
    total_games: int
    total_score: int
    best_score: int | None
    total_profit: int
    average_score: int
    recent_games: list[GameScore]


async def get_user_stats(db: AsyncSession, user_id: int, *, recent_limit: int = 10) -> UserStats:
    totals = await db.execute(
        select(
            func.count(GameScore.id),
            func.coalesce(func.sum(GameScore.score), 0),
            func.max(GameScore.score),
            func.coalesce(func.sum(GameScore.monthly_profit), 0),
        ).where(GameScore.user_id == user_id, GameScore.is_validated.is_(True))
    )
    games, total_score, best, profit = totals.one()
    recent = await db.execute(
        select(GameScore)
        .where(GameScore.user_id == user_id)
        .order_by(GameScore.created_at.desc(), GameScore.id.desc())
        .limit(recent_limit)
    )
    games = int(games)
    return UserStats(
        total_games=games,
        total_score=int(total_score),
        best_score=best,
        total_profit=int(profit),
        average_score=round(int(total_score) / games) if games else 0,
        recent_games=list(recent.scalars().all()),
    )
