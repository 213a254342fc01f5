"""FastAPI application factory."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI

from bloom.auth.router import router as auth_router
from bloom.bonus.router import router as bonus_router
from bloom.claims.router import router as claims_router
from bloom.config import get_settings
from bloom.database import close_db, create_all, init_db
from bloom.health.router import router as health_router
from bloom.leaderboard.cache import InMemoryLeaderboardCache, RedisLeaderboardCache
from bloom.leaderboard.router import router as leaderboard_router
from bloom.lives.router import router as lives_router
from bloom.middleware import setup_middleware
from bloom.redis_client import close_redis, connect_redis
from bloom.scores.router import router as scores_router

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup and shutdown lifecycle."""
    settings = get_settings()
    await init_db(settings.database_url)
    if settings.auto_create_tables:
        await create_all()

    redis_client = await connect_redis(
        settings.redis_url,
        max_connections=settings.redis_max_connections,
        socket_timeout=settings.redis_socket_timeout_seconds,
    )
    # Without Redis: in-process leaderboard cache, no rate limiting
    if redis_client is not None:
        app.state.leaderboard_cache = RedisLeaderboardCache(redis_client, settings.leaderboard_cache_ttl_seconds)

    logger.info("startup_complete", environment=settings.environment, version=settings.app_version)
    yield

    await close_db()
    await close_redis()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="Bloom Economy API",
        description="Lives, daily bonuses, scores, leaderboards and token claims for the Bloom mini-games",
        version=settings.app_version,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )
    app.state.leaderboard_cache = InMemoryLeaderboardCache(settings.leaderboard_cache_ttl_seconds)

    setup_middleware(app, settings)
    app.include_router(health_router, tags=["Health"])
    app.include_router(auth_router)
    app.include_router(lives_router)
    app.include_router(bonus_router)
    app.include_router(scores_router)
    app.include_router(leaderboard_router)
    app.include_router(claims_router)

    return app


app = create_app()
