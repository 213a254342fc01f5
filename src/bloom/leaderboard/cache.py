"""Short-lived leaderboard page cache.

Two interchangeable implementations: Redis for multi-process deployments and
an in-process map guarded by an ``asyncio.Lock`` for tests and single-process
runs. Invalidation always drops every cached page.
"""

from __future__ import annotations

import asyncio
import json
import time
from typing import Any, Protocol

from redis.asyncio import Redis

KEY_PREFIX = "leaderboard:"


def cache_key(period: str, game_type: str | None, limit: int, offset: int) -> str:
    return f"{KEY_PREFIX}{period}:{game_type or 'all'}:{limit}:{offset}"


class LeaderboardCache(Protocol):
    async def get(self, key: str) -> dict[str, Any] | None: ...

    async def set(self, key: str, value: dict[str, Any]) -> None: ...

    async def invalidate(self) -> None: ...


class InMemoryLeaderboardCache:
    def __init__(self, ttl_seconds: float = 30.0) -> None:
        self._ttl = ttl_seconds
        self._entries: dict[str, tuple[float, dict[str, Any]]] = {}
        self._lock = asyncio.Lock()

    async def get(self, key: str) -> dict[str, Any] | None:
        async with self._lock:
            hit = self._entries.get(key)
            if hit is None:
                return None
            expires_at, value = hit
            if expires_at <= time.monotonic():
                del self._entries[key]
                return None
            return value

    async def set(self, key: str, value: dict[str, Any]) -> None:
        async with self._lock:
            self._entries[key] = (time.monotonic() + self._ttl, value)

    async def invalidate(self) -> None:
        async with self._lock:
            self._entries.clear()


class RedisLeaderboardCache:
    def __init__(self, redis: Redis, ttl_seconds: int = 30) -> None:
        self._redis = redis
        self._ttl = ttl_seconds

    async def get(self, key: str) -> dict[str, Any] | None:
        raw = await self._redis.get(key)
        if raw is None:
            return None
        return json.loads(raw)

    async def set(self, key: str, value: dict[str, Any]) -> None:
        await self._redis.setex(key, self._ttl, json.dumps(value))

    async def invalidate(self) -> None:
        keys = [key async for key in self._redis.scan_iter(match=f"{KEY_PREFIX}*", count=500)]
        if keys:
            await self._redis.delete(*keys)
