"""
cache/store.py -- Redis-backed read-through cache for user lookups.

Values are stored as JSON with a per-entry TTL (default 24 hours). Every
operation fails soft: a Redis error, or no Redis at all, is logged and
reported as a miss / False. The cache is an optimization only -- the user
store stays authoritative, so login keeps working when Redis is down.

Usage:
    redis = await connect_redis("redis://localhost:6379/0")
    cache = CacheStore(redis)
    await cache.set("user:42", {"id": 42, "username": "alice"})
    data = await cache.get("user:42")    # returns dict or None
    await cache.delete("user:42")
"""

from __future__ import annotations

import json
import logging
from typing import Any, Optional

from redis.asyncio import ConnectionPool, Redis
from redis.exceptions import RedisError

logger = logging.getLogger("gatekeeper.cache")

DEFAULT_TTL = 60 * 60 * 24  # 24 hours in seconds


async def connect_redis(
    url: str,
    *,
    enabled: bool = True,
    pool_size: int = 20,
    socket_timeout: float = 5.0,
) -> Optional[Redis]:
    """Open a pooled Redis client and verify it with PING.

    Returns None when Redis is disabled or unreachable. Callers treat None
    as "cache off": CacheStore degrades to misses, SessionManager raises.
    """
    if not enabled:
        logger.info("Redis disabled by configuration")
        return None
    pool = ConnectionPool.from_url(
        url,
        max_connections=pool_size,
        socket_timeout=socket_timeout,
        socket_connect_timeout=socket_timeout,
    )
    client = Redis(connection_pool=pool)
    try:
        await client.ping()
    except (RedisError, OSError) as exc:
        logger.warning("Redis connection failed: %s", exc)
        await client.aclose()
        await pool.disconnect()
        return None
    logger.info("Redis connected")
    return client


class CacheStore:
    def __init__(self, client: Optional[Redis], default_ttl: int = DEFAULT_TTL) -> None:
        self._client = client
        self.default_ttl = default_ttl

    @property
    def is_connected(self) -> bool:
        return self._client is not None

    async def get(self, key: str) -> Optional[Any]:
        """Return the decoded value for key, or None on miss or any error."""
        if self._client is None:
            return None
        try:
            data = await self._client.get(key)
        except RedisError as exc:
            logger.warning("Redis GET %s failed: %s", key, exc)
            return None
        if data is None:
            return None
        try:
            return json.loads(data)
        except ValueError as exc:
            logger.warning("Discarding undecodable cache entry %s: %s", key, exc)
            return None

    async def set(self, key: str, value: Any, ttl_seconds: Optional[int] = None) -> bool:
        """Store value as JSON with an expiry. Returns False on any error."""
        if self._client is None:
            return False
        ttl = ttl_seconds if ttl_seconds is not None else self.default_ttl
        try:
            await self._client.setex(key, ttl, json.dumps(value))
        except (RedisError, TypeError, ValueError) as exc:
            logger.warning("Redis SETEX %s failed: %s", key, exc)
            return False
        return True

    async def delete(self, *keys: str) -> bool:
        """Delete key(s). Returns False on any error."""
        if self._client is None or not keys:
            return False
        try:
            await self._client.delete(*keys)
        except RedisError as exc:
            logger.warning("Redis DELETE %s failed: %s", ", ".join(keys), exc)
            return False
        return True

    async def ping(self) -> bool:
        if self._client is None:
            return False
        try:
            return bool(await self._client.ping())
        except RedisError:
            return False
