"""Pydantic schemas for the leaderboard API."""

from __future__ import annotations

from bloom.auth.service import mask_wallet
from bloom.leaderboard.ranking import RankedEntry
from bloom.leaderboard.service import LeaderboardStats
from bloom.schemas import CamelModel


class LeaderboardEntryData(CamelModel):
    rank: int
    wallet_address: str  # always masked
    monthly_profit: int
    total_score: int
    games_played: int
    best_moves: int | None = None
    best_time: int | None = None
    is_current_user: bool = False

    @classmethod
    def from_entry(cls, entry: RankedEntry, current_user_id: int | None = None) -> LeaderboardEntryData:
        p = entry.player
        return cls(
            rank=entry.rank,
            wallet_address=mask_wallet(p.wallet_address),
            monthly_profit=p.total_profit,
            total_score=p.total_score,
            games_played=p.games_played,
            best_moves=p.best_moves,
            best_time=p.best_time,
            is_current_user=current_user_id is not None and p.user_id == current_user_id,
        )


class PaginationData(CamelModel):
    limit: int
    offset: int
    total: int
    has_more: bool


class StatsData(CamelModel):
    total_players: int
    total_games: int
    total_profit: int
    average_profit: int

    @classmethod
    def from_stats(cls, stats: LeaderboardStats) -> StatsData:
        return cls(
            total_players=stats.total_players,
            total_games=stats.total_games,
            total_profit=stats.total_profit,
            average_profit=stats.average_profit,
        )


class LeaderboardData(CamelModel):
    period: str
    game_type: str | None = None
    ranking: str
    entries: list[LeaderboardEntryData]
    pagination: PaginationData
    user_rank: int | None = None
    user_entry: LeaderboardEntryData | None = None
    surrounding: list[LeaderboardEntryData] | None = None
    stats: StatsData | None = None
    available_periods: list[str]
