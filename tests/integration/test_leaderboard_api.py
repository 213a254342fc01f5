"""Monthly leaderboard endpoint."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from bloom.db.models import GameScore, User
from bloom.leaderboard import service as leaderboard_service
from bloom.periods import leaderboard_period
from tests.conftest import WALLET, bearer, make_user


async def add_score(
    db: AsyncSession,
    user: User,
    *,
    profit: int,
    score: int = 100,
    game_type: str = "harvest",
    moves: int | None = None,
    time_taken: int = 60,
    period: str | None = None,
) -> None:
    ended = datetime.now(timezone.utc)
    db.add(GameScore(
        user_id=user.id,
        game_type=game_type,
        score=score,
        monthly_profit=profit,
        time_taken=time_taken,
        moves=moves,
        game_started_at=ended - timedelta(seconds=time_taken),
        game_ended_at=ended,
        leaderboard_period=period or leaderboard_period(),
        is_validated=True,
    ))
    await db.commit()


@pytest_asyncio.fixture
async def players(db_session: AsyncSession) -> list[User]:
    users = [await make_user(db_session, "0x" + f"{i:02x}" * 20) for i in range(1, 5)]
    await add_score(db_session, users[0], profit=500)
    await add_score(db_session, users[1], profit=900)
    await add_score(db_session, users[2], profit=500)
    await add_score(db_session, users[3], profit=100)
    await add_score(db_session, users[3], profit=50)
    return users


class TestLeaderboard:
    @pytest.mark.asyncio
    async def test_ranked_and_masked(self, client: AsyncClient, players):
        response = await client.get("/api/v1/leaderboard")
        assert response.status_code == 200
        data = response.json()["data"]
        assert data["period"] == leaderboard_period()
        assert data["ranking"] == "profit"
        ranks = [(e["rank"], e["monthlyProfit"]) for e in data["entries"]]
        assert ranks == [(1, 900), (2, 500), (2, 500), (4, 150)]
        assert data["entries"][0]["walletAddress"] == "0x0202...0202"
        assert data["entries"][3]["gamesPlayed"] == 2
        assert data["pagination"] == {"limit": 50, "offset": 0, "total": 4, "hasMore": False}
        assert data["userRank"] is None
        assert data["availablePeriods"][0] == leaderboard_period()

    @pytest.mark.asyncio
    async def test_caller_rank_and_neighbours(self, client: AsyncClient, players):
        response = await client.get("/api/v1/leaderboard", headers=bearer(players[2]))
        data = response.json()["data"]
        assert data["userRank"] == 2
        assert data["userEntry"]["isCurrentUser"] is True
        assert len(data["surrounding"]) == 4
        assert sum(e["isCurrentUser"] for e in data["entries"]) == 1

    @pytest.mark.asyncio
    async def test_caller_without_results(self, client: AsyncClient, db_session, players):
        outsider = await make_user(db_session, WALLET)
        data = (await client.get("/api/v1/leaderboard", headers=bearer(outsider))).json()["data"]
        assert data["userRank"] is None
        assert data["surrounding"] is None

    @pytest.mark.asyncio
    async def test_pagination(self, client: AsyncClient, players):
        data = (await client.get("/api/v1/leaderboard", params={"limit": 2, "offset": 1})).json()["data"]
        assert [e["rank"] for e in data["entries"]] == [2, 2]
        assert data["pagination"]["hasMore"] is True

    @pytest.mark.asyncio
    async def test_limit_is_clamped(self, client: AsyncClient, players):
        data = (await client.get("/api/v1/leaderboard", params={"limit": 500})).json()["data"]
        assert data["pagination"]["limit"] == 100

    @pytest.mark.asyncio
    async def test_invalid_period(self, client: AsyncClient):
        response = await client.get("/api/v1/leaderboard", params={"period": "2026-3"})
        assert response.status_code == 400
        assert response.json()["errorCode"] == "invalid_period"

    @pytest.mark.asyncio
    async def test_other_period_is_separate(self, client: AsyncClient, db_session, players):
        await add_score(db_session, players[0], profit=5, period="2020-01")
        data = (await client.get("/api/v1/leaderboard", params={"period": "2020-01"})).json()["data"]
        assert len(data["entries"]) == 1
        assert data["entries"][0]["monthlyProfit"] == 5

    @pytest.mark.asyncio
    async def test_stats(self, client: AsyncClient, players):
        data = (await client.get("/api/v1/leaderboard", params={"stats": "true"})).json()["data"]
        assert data["stats"] == {"totalPlayers": 4, "totalGames": 5, "totalProfit": 2050, "averageProfit": 512}

    @pytest.mark.asyncio
    async def test_card_match_ranks_by_moves_then_time(self, client: AsyncClient, db_session):
        a = await make_user(db_session, "0x" + "0a" * 20)
        b = await make_user(db_session, "0x" + "0b" * 20)
        c = await make_user(db_session, "0x" + "0c" * 20)
        await add_score(db_session, a, profit=999, game_type="card_match", moves=30, time_taken=50)
        await add_score(db_session, b, profit=1, game_type="card_match", moves=18, time_taken=90)
        await add_score(db_session, c, profit=1, game_type="card_match", moves=18, time_taken=70)

        data = (await client.get("/api/v1/leaderboard", params={"gameType": "card_match"})).json()["data"]
        assert data["ranking"] == "moves_time"
        assert [e["bestMoves"] for e in data["entries"]] == [18, 18, 30]
        assert [e["bestTime"] for e in data["entries"]] == [70, 90, 50]


class TestCache:
    @pytest.mark.asyncio
    async def test_pages_are_cached_until_invalidated(self, app, client: AsyncClient, db_session, players):
        first = (await client.get("/api/v1/leaderboard")).json()["data"]
        extra = await make_user(db_session, "0x" + "99" * 20)
        await add_score(db_session, extra, profit=10_000)

        cached = (await client.get("/api/v1/leaderboard")).json()["data"]
        assert cached["entries"] == first["entries"]

        await leaderboard_service.invalidate(app.state.leaderboard_cache)
        fresh = (await client.get("/api/v1/leaderboard")).json()["data"]
        assert fresh["entries"][0]["monthlyProfit"] == 10_000


class TestUserRank:
    @pytest.mark.asyncio
    async def test_tied_players_share_rank(self, db_session, players):
        first = await leaderboard_service.get_user_rank(db_session, players[0].id, period=leaderboard_period())
        third = await leaderboard_service.get_user_rank(db_session, players[2].id, period=leaderboard_period())
        assert first.entry.rank == third.entry.rank == 2
        expected = [players[1].id, players[0].id, players[2].id, players[3].id]
        assert [e.player.user_id for e in first.surrounding] == expected

    @pytest.mark.asyncio
    async def test_neighbours_are_clipped_at_the_top(self, db_session, players):
        top = await leaderboard_service.get_user_rank(db_session, players[1].id, period=leaderboard_period(), count=1)
        assert top.entry.rank == 1
        assert [e.player.user_id for e in top.surrounding] == [players[1].id, players[0].id]

    @pytest.mark.asyncio
    async def test_no_results_this_period(self, db_session, players):
        assert await leaderboard_service.get_user_rank(db_session, players[0].id, period="2020-01") is None

    @pytest.mark.asyncio
    async def test_equal_profit_goes_to_lower_score(self, client: AsyncClient, db_session):
        grinder = await make_user(db_session, "0x" + "0d" * 20)
        efficient = await make_user(db_session, "0x" + "0e" * 20)
        await add_score(db_session, grinder, profit=400, score=900)
        await add_score(db_session, efficient, profit=400, score=300)

        standing = await leaderboard_service.get_user_rank(db_session, efficient.id, period=leaderboard_period())
        assert standing.entry.rank == 1
        data = (await client.get("/api/v1/leaderboard", headers=bearer(grinder))).json()["data"]
        assert [e["totalScore"] for e in data["entries"]] == [300, 900]
        assert data["userRank"] == 2
