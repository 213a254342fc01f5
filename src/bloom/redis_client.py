"""Optional Redis connection.

Redis backs the shared leaderboard cache and the per-user rate limits. The
service also runs without it: ``connect_redis`` keeps the client only when the
server answers, and callers take ``get_optional_redis()`` and skip their Redis
work on ``None``.
"""

import redis.asyncio as redis
import structlog
from redis.exceptions import RedisError

logger = structlog.get_logger()

_client: redis.Redis | None = None


async def connect_redis(url: str, *, max_connections: int, socket_timeout: float) -> redis.Redis | None:
    """Open the pool and ping the server; None leaves Redis disabled."""
    global _client  # noqa: PLW0603
    client = redis.from_url(  # type: ignore[no-untyped-call]
        url,
        encoding="utf-8",
        decode_responses=True,
        max_connections=max_connections,
        socket_timeout=socket_timeout,
        socket_connect_timeout=socket_timeout,
    )
    try:
        await client.ping()
    except (RedisError, OSError) as exc:
        logger.warning("redis_unavailable", error=str(exc))
        await client.aclose()
        return None
    _client = client
    logger.info("redis_connected", max_connections=max_connections)
    return client


async def close_redis() -> None:
    global _client  # noqa: PLW0603
    if _client:
        await _client.aclose()
        _client = None


def get_optional_redis() -> redis.Redis | None:
    """Return the Redis client, or None when running without Redis."""
    return _client


async def redis_status() -> str:
    """``ok``, ``disabled`` without Redis, or ``error: ...`` when a ping fails."""
    if _client is None:
        return "disabled"
    try:
        await _client.ping()
    except (RedisError, OSError) as exc:
        return f"error: {exc}"
    return "ok"
