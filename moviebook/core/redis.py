"""
Redis client for showtime locking with async support
"""
import asyncio
import logging
from typing import Any, Optional
from urllib.parse import quote, unquote, urlparse

import redis.asyncio as aioredis

from moviebook.core.config import REDIS_URL

logger = logging.getLogger(__name__)

REDIS_SOCKET_TIMEOUT = 1.0
REDIS_SOCKET_CONNECT_TIMEOUT = 1.0

# Global Redis client instance
_redis_client: Optional[aioredis.Redis] = None


def _parse_redis_url(url: str) -> str:
    """
    Normalize a REDIS_URL so the password is URL-encoded exactly once.
    Leaves other parts of the URL intact.
    """
    if not url:
        return url

    try:
        p = urlparse(url)
        if p.scheme not in ("redis", "rediss"):
            return url

        if "@" in p.netloc and p.password:
            username = p.username or ""
            host_port = p.netloc.split("@")[-1]
            password_quoted = quote(unquote(p.password), safe="")
            netloc = f"{username}:{password_quoted}@{host_port}"
            normalized = f"{p.scheme}://{netloc}{p.path or ''}"
            if p.query:
                normalized += f"?{p.query}"
            return normalized
    except ValueError as e:
        logger.warning("Redis URL parse/normalize failed: %s", e)
    return url


async def _maybe_await(value: Any) -> Any:
    """Await value if it is awaitable, otherwise return it."""
    if asyncio.iscoroutine(value) or hasattr(value, "__await__"):
        return await value
    return value


async def get_redis() -> aioredis.Redis:
    """Return a singleton async Redis client (best-effort connect)."""
    global _redis_client
    if _redis_client is not None:
        return _redis_client

    if not REDIS_URL:
        raise RuntimeError("REDIS_URL not set")

    url = _parse_redis_url(REDIS_URL)
    client = aioredis.from_url(
        url,
        socket_timeout=REDIS_SOCKET_TIMEOUT,
        socket_connect_timeout=REDIS_SOCKET_CONNECT_TIMEOUT,
        decode_responses=True,
    )
    try:
        pong = await _maybe_await(client.ping())
    except Exception as exc:
        await _maybe_await(client.aclose())
        raise RuntimeError(f"Redis connection failed: {exc}") from exc
    if not pong:
        await _maybe_await(client.aclose())
        raise RuntimeError("Redis connection failed: PING returned falsy value")

    logger.info("Connected to Redis at %s", url.split("@")[-1])
    _redis_client = client
    return _redis_client


async def get_optional_redis() -> Optional[aioredis.Redis]:
    """
    FastAPI dependency: the shared client, or None when Redis is not configured
    or unreachable. Callers degrade to database-only guarantees.
    """
    try:
        return await get_redis()
    except RuntimeError as e:
        logger.debug("Redis unavailable: %s", e)
        return None


async def close_redis():
    global _redis_client
    if _redis_client is not None:
        await _maybe_await(_redis_client.aclose())
        _redis_client = None
        logger.info("✓ Redis connection closed")
