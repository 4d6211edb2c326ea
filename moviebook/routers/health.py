# moviebook/routers/health.py
from typing import Awaitable, Optional, cast

from fastapi import APIRouter, Depends, HTTPException
from redis.asyncio.client import Redis
from sqlalchemy import text
from sqlalchemy.orm import Session

from moviebook.core.redis import get_optional_redis
from moviebook.database.database import get_db

router = APIRouter(prefix="/health", tags=["health"])


@router.get("")
def health(db: Session = Depends(get_db)):
    db.execute(text("SELECT 1"))
    return {"ok": True}


@router.get("/redis")
async def redis_health(r: Optional[Redis] = Depends(get_optional_redis)):
    """
    Lightweight health check for Redis.
    Seat holds keep working without it; only cross-worker showtime locks degrade.
    """
    if r is None:
        raise HTTPException(status_code=503, detail="Redis not configured or unreachable")
    try:
        pong = await cast(Awaitable[bool], r.ping())
        if not pong:
            raise HTTPException(status_code=503, detail="Redis PING returned False")
        info = await r.info("server")
        return {"ok": True, "redis_version": info.get("redis_version")}
    except HTTPException:
        raise
    except Exception as e:
        # Do not leak secrets; just return an operational error
        raise HTTPException(status_code=503, detail=f"Redis error: {str(e)}") from e
