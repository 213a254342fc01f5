"""Monthly leaderboard aggregation.

Validated scores are grouped per player for a period and ranked in one
snapshot, so the list and individual rank lookups always agree.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import TYPE_CHECKING, Any

import structlog
from sqlalchemy import func, select

from bloom.config import get_settings
from bloom.db.models import GameScore, User
from bloom.leaderboard.cache import LeaderboardCache, cache_key
from bloom.leaderboard.ranking import (
    PlayerAggregate,
    RankedEntry,
    RankingRule,
    rank_players,
    rule_for,
)

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = structlog.get_logger()


@dataclass(frozen=True)
class LeaderboardPage:
    period: str
    game_type: str | None
    ranking: str
    entries: list[RankedEntry]
    total_players: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "period": self.period,
            "game_type": self.game_type,
            "ranking": self.ranking,
            "total_players": self.total_players,
            "entries": [{"rank": e.rank, **asdict(e.player)} for e in self.entries],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> LeaderboardPage:
        entries = []
        for raw in data["entries"]:
            row = dict(raw)
            rank = row.pop("rank")
            entries.append(RankedEntry(rank=rank, player=PlayerAggregate(**row)))
        return cls(
            period=data["period"],
            game_type=data["game_type"],
            ranking=data["ranking"],
            entries=entries,
            total_players=data["total_players"],
        )


@dataclass(frozen=True)
class UserStanding:
    entry: RankedEntry
    surrounding: list[RankedEntry]


@dataclass(frozen=True)
class LeaderboardStats:
    total_players: int
    total_games: int
    total_profit: int
    average_profit: int


def ranking_rule(game_type: str | None) -> RankingRule:
    settings = get_settings()
    return rule_for(game_type, settings.leaderboard_ranking_rules, settings.leaderboard_default_ranking)


async def aggregate_period(db: AsyncSession, period: str, game_type: str | None = None) -> list[PlayerAggregate]:
    """Per-player totals of validated scores in ``period``."""
    stmt = (
        select(
            GameScore.user_id,
            User.wallet_address,
            func.coalesce(func.sum(GameScore.monthly_profit), 0),
            func.coalesce(func.sum(GameScore.score), 0),
            func.count(GameScore.id),
            func.min(GameScore.moves),
            func.min(GameScore.time_taken),
        )
        .join(User, User.id == GameScore.user_id)
        .where(GameScore.leaderboard_period == period, GameScore.is_validated.is_(True))
        .group_by(GameScore.user_id, User.wallet_address)
        .having(func.sum(GameScore.monthly_profit) >= 0)
    )
    if game_type:
        stmt = stmt.where(GameScore.game_type == game_type)
    result = await db.execute(stmt)
    return [
        PlayerAggregate(
            user_id=row[0],
            wallet_address=row[1],
            total_profit=int(row[2]),
            total_score=int(row[3]),
            games_played=int(row[4]),
            best_moves=row[5],
            best_time=row[6],
        )
        for row in result.all()
    ]


async def get_leaderboard(
    db: AsyncSession,
    cache: LeaderboardCache,
    *,
    period: str,
    game_type: str | None = None,
    limit: int = 50,
    offset: int = 0,
) -> LeaderboardPage:
    """One page of the ranked leaderboard, served from cache when fresh."""
    key = cache_key(period, game_type, limit, offset)
    cached = await cache.get(key)
    if cached is not None:
        return LeaderboardPage.from_dict(cached)

    rule = ranking_rule(game_type)
    ranked = rank_players(await aggregate_period(db, period, game_type), rule)
    page = LeaderboardPage(
        period=period,
        game_type=game_type,
        ranking=rule.name,
        entries=ranked[offset:offset + limit],
        total_players=len(ranked),
    )
    await cache.set(key, page.to_dict())
    return page


async def get_user_rank(
    db: AsyncSession,
    user_id: int,
    *,
    period: str,
    game_type: str | None = None,
    count: int = 2,
) -> UserStanding | None:
    """The player's ranked entry with up to ``count`` neighbours on each side.

    None when the player has no validated results this period.
    """
    ranked = rank_players(await aggregate_period(db, period, game_type), ranking_rule(game_type))
    for index, entry in enumerate(ranked):
        if entry.player.user_id == user_id:
            return UserStanding(entry=entry, surrounding=ranked[max(0, index - count):index + count + 1])
    return None


async def get_stats(db: AsyncSession, period: str, game_type: str | None = None) -> LeaderboardStats:
    stmt = select(
        func.count(func.distinct(GameScore.user_id)),
        func.count(GameScore.id),
        func.coalesce(func.sum(GameScore.monthly_profit), 0),
    ).where(GameScore.leaderboard_period == period, GameScore.is_validated.is_(True))
    if game_type:
        stmt = stmt.where(GameScore.game_type == game_type)
    players, games, profit = (await db.execute(stmt)).one()
    players, games, profit = int(players), int(games), int(profit)
    return LeaderboardStats(
        total_players=players,
        total_games=games,
        total_profit=profit,
        average_profit=profit // players if players else 0,
    )


async def invalidate(cache: LeaderboardCache) -> None:
    await cache.invalidate()
    logger.debug("leaderboard_cache_invalidated")
