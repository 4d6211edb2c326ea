# moviebook/main.py
import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from moviebook.core.config import settings
from moviebook.core.errors import register_error_handlers
from moviebook.database import models, payment_models  # noqa: F401  (register tables)
from moviebook.database.database import Base, engine

logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(name)s: %(message)s")
logger = logging.getLogger(__name__)


# Lifespan events (startup/shutdown)
@asynccontextmanager
async def lifespan(app: FastAPI):
    from moviebook.core.redis import close_redis, get_redis
    from moviebook.services.expiry_sweeper import ExpirySweeper, cancel_expiry_timers

    # Ensure DB models/tables exist
    Base.metadata.create_all(bind=engine)

    # Redis init (non-fatal)
    try:
        await get_redis()
        logger.info("✓ Redis connected successfully")
    except RuntimeError as e:
        logger.warning(f"⚠ Redis connection failed (showtime locks disabled, database constraint still applies): {e}")

    sweeper = ExpirySweeper()
    if settings.SWEEPER_ENABLED:
        sweeper.start()
    else:
        logger.info("ℹ️ Booking cleanup job disabled (SWEEPER_ENABLED=false)")
    app.state.sweeper = sweeper

    yield

    try:
        logger.info("🔄 Starting graceful shutdown...")
        await sweeper.stop()
        cancelled = cancel_expiry_timers()
        if cancelled:
            logger.info(f"✓ {cancelled} booking expiry timers cancelled (sweeper covers them on restart)")
        await close_redis()
        logger.info("✅ Graceful shutdown complete")
    except asyncio.CancelledError:
        logger.debug("Shutdown process cancelled (normal during Ctrl+C)")


# Build FastAPI app
fastapi_app = FastAPI(
    title=settings.PROJECT_NAME,
    description="Seat inventory and booking lifecycle APIs",
    version=settings.VERSION,
    lifespan=lifespan,
)

# CORS
fastapi_app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_error_handlers(fastapi_app)

# --- Register routers under the /api prefix the frontend expects ---
from moviebook.routers import booking_routes, health, payment_routes  # noqa: E402

fastapi_app.include_router(booking_routes.router, prefix="/api")
fastapi_app.include_router(payment_routes.router, prefix="/api")
fastapi_app.include_router(health.router, prefix="/api")


@fastapi_app.get("/")
def root():
    return {"message": "🎬 Moviebook booking API is running successfully!"}


app = fastapi_app
