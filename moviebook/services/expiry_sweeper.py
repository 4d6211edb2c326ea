"""
Release seats held by abandoned pending bookings.

The periodic sweep is the primary mechanism: it runs once at startup and then
every SWEEP_INTERVAL_SECONDS, and records when the next run is due in the
``sweep_markers`` table. Per-booking timers armed at creation time are only a
best-effort shortcut; they vanish on restart and the sweep picks up whatever
they miss.
"""
import asyncio
import logging
from datetime import datetime, timedelta
from typing import Callable, Dict, Optional

from sqlalchemy.orm import Session

from moviebook.core.config import settings
from moviebook.database.database import SessionLocal
from moviebook.database.models import Booking, BookingStatus, SweepMarker
from moviebook.services.booking_service import expire_booking
from moviebook.utils import utcnow

logger = logging.getLogger(__name__)

MARKER_NAME = "booking_expiry"


def sweep_expired(db: Session, now: Optional[datetime] = None) -> int:
    """
    Expire every pending booking whose hold has lapsed.

    Each booking is handled on its own: a failure is logged, rolled back and
    skipped without stopping the sweep.

    Returns:
        Number of bookings expired by this run
    """
    now = now or utcnow()
    expired_ids = [
        row[0]
        for row in db.query(Booking.id)
        .filter(Booking.status == BookingStatus.pending, Booking.expires_at < now)
        .order_by(Booking.expires_at)
        .all()
    ]

    if not expired_ids:
        logger.debug("No expired bookings to clean up")
        _touch_marker(db, now, 0)
        return 0

    logger.info(f"🧹 Cleaning up {len(expired_ids)} expired bookings...")
    cleaned = 0
    for booking_id in expired_ids:
        try:
            if expire_booking(db, booking_id, now=now):
                cleaned += 1
        except Exception:
            db.rollback()
            logger.exception("Error cleaning booking %s", booking_id)

    _touch_marker(db, now, cleaned)
    logger.info(f"✅ Cleaned up {cleaned} expired bookings")
    return cleaned


def _touch_marker(db: Session, now: datetime, expired_count: int) -> None:
    try:
        marker = db.query(SweepMarker).filter(SweepMarker.name == MARKER_NAME).first()
        if marker is None:
            marker = SweepMarker(name=MARKER_NAME)
            db.add(marker)
        marker.last_run_at = now
        marker.next_run_at = now + timedelta(seconds=settings.SWEEP_INTERVAL_SECONDS)
        marker.last_expired_count = expired_count
        db.commit()
    except Exception:
        db.rollback()
        logger.exception("Failed to persist sweep marker")


def next_sweep_due(db: Session) -> Optional[datetime]:
    marker = db.query(SweepMarker).filter(SweepMarker.name == MARKER_NAME).first()
    return marker.next_run_at if marker else None


class ExpirySweeper:
    """Background asyncio task running sweep_expired on a fixed interval."""

    def __init__(
        self,
        session_factory: Callable[[], Session] = SessionLocal,
        interval_seconds: int = settings.SWEEP_INTERVAL_SECONDS,
    ):
        self.session_factory = session_factory
        self.interval_seconds = interval_seconds
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def run_once(self) -> int:
        db = self.session_factory()
        try:
            return sweep_expired(db)
        except Exception:
            logger.exception("Error in booking cleanup")
            return 0
        finally:
            db.close()

    def _seconds_until_due(self) -> float:
        db = self.session_factory()
        try:
            due = next_sweep_due(db)
        except Exception:
            logger.exception("Could not read sweep marker")
            due = None
        finally:
            db.close()
        if due is None:
            return float(self.interval_seconds)
        return max(0.0, min(float(self.interval_seconds), (due - utcnow()).total_seconds()))

    async def _loop(self) -> None:
        while True:
            await asyncio.to_thread(self.run_once)
            await asyncio.sleep(await asyncio.to_thread(self._seconds_until_due))

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._loop(), name="booking-expiry-sweeper")
        logger.info(f"🔄 Booking cleanup job started (runs every {self.interval_seconds // 60} minutes)")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("✓ Booking cleanup job stopped")


# ---------------- per-booking timers (best effort) ----------------
_timers: Dict[int, asyncio.TimerHandle] = {}


def _expire_in_background(booking_id: int, session_factory: Callable[[], Session]) -> None:
    _timers.pop(booking_id, None)
    db = session_factory()
    try:
        expire_booking(db, booking_id)
    except Exception:
        logger.exception("Expiry timer failed for booking %s; the sweeper will retry", booking_id)
    finally:
        db.close()


def schedule_booking_expiry(
    booking_id: int,
    delay_seconds: float,
    session_factory: Callable[[], Session] = SessionLocal,
) -> Optional[asyncio.TimerHandle]:
    """Arm a one-shot timer that expires the booking if it is still pending."""
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        logger.debug("No running event loop; booking %s relies on the sweeper", booking_id)
        return None

    def _fire():
        loop.run_in_executor(None, _expire_in_background, booking_id, session_factory)

    handle = loop.call_later(delay_seconds, _fire)
    _timers[booking_id] = handle
    return handle


def cancel_expiry_timers() -> int:
    count = len(_timers)
    for handle in _timers.values():
        handle.cancel()
    _timers.clear()
    return count
