"""Leaderboard API."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from bloom.auth.dependencies import get_optional_user
from bloom.config import get_settings
from bloom.database import get_session
from bloom.db.models import User
from bloom.errors import ValidationError
from bloom.leaderboard import service
from bloom.leaderboard.cache import LeaderboardCache
from bloom.leaderboard.schemas import (
    LeaderboardData,
    LeaderboardEntryData,
    PaginationData,
    StatsData,
)
from bloom.periods import is_valid_period, leaderboard_period, previous_periods
from bloom.schemas import Envelope, success

router = APIRouter(prefix="/api/v1", tags=["Leaderboard"])


def get_leaderboard_cache(request: Request) -> LeaderboardCache:
    """The app-wide cache installed by the application factory."""
    return request.app.state.leaderboard_cache


@router.get("/leaderboard", response_model=Envelope[LeaderboardData])
async def leaderboard(
    period: str | None = Query(None, description="YYYY-MM, defaults to the current month"),
    game_type: str | None = Query(None, alias="gameType"),
    limit: int | None = Query(None, ge=1),
    offset: int = Query(0, ge=0),
    include_stats: bool = Query(False, alias="stats"),
    user: User | None = Depends(get_optional_user),
    db: AsyncSession = Depends(get_session),
    cache: LeaderboardCache = Depends(get_leaderboard_cache),
) -> Envelope[LeaderboardData]:
    """Ranked monthly leaderboard with the caller's rank when authenticated."""
    settings = get_settings()
    period = period or leaderboard_period()
    if not is_valid_period(period):
        raise ValidationError("Invalid period format. Use YYYY-MM", error_code="invalid_period")
    limit = min(limit or settings.leaderboard_default_limit, settings.leaderboard_max_limit)

    page = await service.get_leaderboard(db, cache, period=period, game_type=game_type, limit=limit, offset=offset)
    user_id = user.id if user else None

    data = LeaderboardData(
        period=period,
        game_type=game_type,
        ranking=page.ranking,
        entries=[LeaderboardEntryData.from_entry(e, user_id) for e in page.entries],
        pagination=PaginationData(
            limit=limit,
            offset=offset,
            total=page.total_players,
            has_more=offset + len(page.entries) < page.total_players,
        ),
        available_periods=previous_periods(settings.leaderboard_available_periods),
    )

    if user is not None:
        standing = await service.get_user_rank(db, user.id, period=period, game_type=game_type)
        if standing is not None:
            data.user_rank = standing.entry.rank
            data.user_entry = LeaderboardEntryData.from_entry(standing.entry, user.id)
            data.surrounding = [LeaderboardEntryData.from_entry(e, user.id) for e in standing.surrounding]

    if include_stats:
        data.stats = StatsData.from_stats(await service.get_stats(db, period, game_type))

    return success(data)
