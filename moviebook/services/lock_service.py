import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from moviebook.core.config import SEAT_LOCK_PREFIX, SHOWTIME_LOCK_TTL_MS
from moviebook.utils import generate_token

logger = logging.getLogger(__name__)

# Lua script for releasing a lock only when we still own it
RELEASE_LUA_SCRIPT = """
if redis.call('GET', KEYS[1]) == ARGV[1] then
    return redis.call('DEL', KEYS[1])
end
return 0
"""

LOCK_WAIT_TIMEOUT_S = 2.0
LOCK_RETRY_DELAY_S = 0.05


def _key_for(showtime_id: int) -> str:
    """Generate consistent Redis key for a showtime writer lock."""
    p = SEAT_LOCK_PREFIX or ""
    if p and not p.endswith(":"):
        p = p + ":"
    return f"{p}showtime_lock:{showtime_id}"


async def acquire_showtime_lock(
    redis,
    showtime_id: int,
    owner: str,
    ttl_ms: int = SHOWTIME_LOCK_TTL_MS,
) -> bool:
    """Single SET NX PX attempt. True when ``owner`` now holds the lock."""
    result = await redis.set(_key_for(showtime_id), owner, nx=True, px=ttl_ms)
    return bool(result)


async def release_showtime_lock(redis, showtime_id: int, owner: str) -> bool:
    """Release the lock if ``owner`` still holds it (it may have expired meanwhile)."""
    key = _key_for(showtime_id)
    try:
        released = await redis.eval(RELEASE_LUA_SCRIPT, 1, key, owner)
        return int(released) == 1
    except Exception as e:
        logger.error(f"Error in release Lua script for showtime {showtime_id}: {e}")
        # Fallback to check-and-delete
        current_owner = await redis.get(key)
        if isinstance(current_owner, bytes):
            current_owner = current_owner.decode()
        if current_owner == owner:
            await redis.delete(key)
            return True
        return False


@asynccontextmanager
async def showtime_write_lock(
    redis,
    showtime_id: int,
    ttl_ms: int = SHOWTIME_LOCK_TTL_MS,
    wait_timeout: float = LOCK_WAIT_TIMEOUT_S,
) -> AsyncIterator[Optional[str]]:
    """
    Serialize booking writers for one showtime across workers.

    Yields the owner token, or None when the lock could not be taken (Redis
    missing, unreachable, or contended past ``wait_timeout``). Callers carry on
    either way: the seat_holds unique constraint still rejects double holds.
    """
    if redis is None:
        logger.debug("Redis unavailable - showtime %s writes rely on the database constraint", showtime_id)
        yield None
        return

    owner = generate_token(16)
    acquired = False
    loop = asyncio.get_running_loop()
    deadline = loop.time() + wait_timeout
    try:
        while True:
            acquired = await acquire_showtime_lock(redis, showtime_id, owner, ttl_ms)
            if acquired or loop.time() >= deadline:
                break
            await asyncio.sleep(LOCK_RETRY_DELAY_S)
    except Exception as e:
        logger.warning(f"Redis lock error for showtime {showtime_id} - continuing without lock: {e}")
        acquired = False

    if not acquired:
        logger.warning(f"Could not lock showtime {showtime_id}; relying on database constraint")

    try:
        yield owner if acquired else None
    finally:
        if acquired:
            try:
                await release_showtime_lock(redis, showtime_id, owner)
            except Exception:
                logger.exception("Failed to release showtime lock %s; it expires on its own", showtime_id)
