"""
Showtime seat model: availability, dynamic pricing and seat holds.

Every mutation of the hold table goes through place_hold, confirm_hold and
release_hold, and each of them moves ``Showtime.seats_available`` with a
conditional UPDATE so the counter never drifts from the hold rows:

    seats_available == seats_total - count(holds not in "available")
"""
import logging
import math
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from moviebook.core.errors import CategoryNotFound, SeatUnavailable, ShowtimeNotFound
from moviebook.database.models import HoldStatus, SeatCategory, SeatHold, Showtime
from moviebook.utils import parse_show_time

logger = logging.getLogger(__name__)

WEEKEND_DAYS = (5, 6)  # Saturday, Sunday
PEAK_HOURS = range(18, 24)  # evening shows, 18:00 to 23:59


def get_showtime(db: Session, showtime_id: int, active_only: bool = True) -> Showtime:
    query = db.query(Showtime).filter(Showtime.id == showtime_id)
    if active_only:
        query = query.filter(Showtime.is_active.is_(True))
    showtime = query.first()
    if showtime is None:
        raise ShowtimeNotFound(f"Showtime {showtime_id} not found")
    return showtime


def _find_hold(db: Session, showtime_id: int, seat_id: str) -> Optional[SeatHold]:
    return (
        db.query(SeatHold)
        .filter(SeatHold.showtime_id == showtime_id, SeatHold.seat_id == seat_id)
        .first()
    )


def is_seat_available(db: Session, showtime_id: int, seat_id: str) -> bool:
    hold = _find_hold(db, showtime_id, seat_id)
    return hold is None or hold.status == HoldStatus.available


def calculate_price(showtime: Showtime, category) -> int:
    """
    Price of one seat in ``category`` for this showtime.

    With dynamic pricing enabled the base price is multiplied by the weekend
    multiplier (Saturday/Sunday shows) and then by the peak multiplier (start
    hour 18..23). The result is rounded to whole currency units.
    """
    try:
        category = SeatCategory(category)
    except ValueError:
        raise CategoryNotFound(str(category))

    pricing = next((p for p in showtime.pricing if p.category == category), None)
    if pricing is None:
        raise CategoryNotFound(category.value)

    price = float(pricing.price)
    if pricing.dynamic_enabled:
        if showtime.show_date.weekday() in WEEKEND_DAYS and pricing.weekend_multiplier:
            price *= pricing.weekend_multiplier
        hour, _ = parse_show_time(showtime.start_time)
        if hour in PEAK_HOURS and pricing.peak_enabled and pricing.peak_multiplier:
            price *= pricing.peak_multiplier

    return _round_half_up(price)


def _round_half_up(value: float) -> int:
    # float error: 200 * 1.15 * 1.2 is 275.99999999999994
    return math.floor(round(value, 6) + 0.5)


def place_hold(db: Session, showtime: Showtime, seat_id: str, booking_id: int) -> SeatHold:
    """
    Insert a blocked hold and take one seat off ``seats_available``.

    Availability is the caller's check; a concurrent writer that already holds
    the seat is rejected by the (showtime_id, seat_id) unique constraint and
    surfaces as SeatUnavailable. On SeatUnavailable the session must be rolled
    back by the caller.
    """
    relic = _find_hold(db, showtime.id, seat_id)
    if relic is not None and relic.status == HoldStatus.available:
        db.delete(relic)
        db.flush()

    hold = SeatHold(
        showtime_id=showtime.id,
        seat_id=seat_id,
        booking_id=booking_id,
        status=HoldStatus.blocked,
    )
    db.add(hold)
    try:
        db.flush()
    except IntegrityError:
        logger.warning("Seat %s on showtime %s already held by another booking", seat_id, showtime.id)
        raise SeatUnavailable(seat_id)

    updated = (
        db.query(Showtime)
        .filter(Showtime.id == showtime.id, Showtime.seats_available > 0)
        .update({Showtime.seats_available: Showtime.seats_available - 1}, synchronize_session=False)
    )
    if not updated:
        logger.warning("Showtime %s is sold out, cannot hold seat %s", showtime.id, seat_id)
        raise SeatUnavailable(seat_id)
    db.expire(showtime, ["seats_available"])
    return hold


def confirm_hold(db: Session, showtime_id: int, seat_id: str, booking_id: int) -> bool:
    """Turn a blocked hold into a booked one. False when no matching hold exists."""
    updated = (
        db.query(SeatHold)
        .filter(
            SeatHold.showtime_id == showtime_id,
            SeatHold.seat_id == seat_id,
            SeatHold.booking_id == booking_id,
            SeatHold.status == HoldStatus.blocked,
        )
        .update({SeatHold.status: HoldStatus.booked}, synchronize_session="fetch")
    )
    if not updated:
        logger.warning("Hold not found: seat %s booking %s showtime %s", seat_id, booking_id, showtime_id)
        return False
    return True


def release_hold(db: Session, showtime_id: int, seat_id: str, booking_id: int) -> bool:
    """
    Remove the hold and give the seat back. Releasing a hold that is already
    gone is a no-op, so cancellation, the sweeper and expiry timers can race.
    """
    deleted = (
        db.query(SeatHold)
        .filter(
            SeatHold.showtime_id == showtime_id,
            SeatHold.seat_id == seat_id,
            SeatHold.booking_id == booking_id,
        )
        .delete(synchronize_session="fetch")
    )
    if not deleted:
        logger.debug("Hold already released: seat %s booking %s", seat_id, booking_id)
        return False

    db.query(Showtime).filter(
        Showtime.id == showtime_id,
        Showtime.seats_available < Showtime.seats_total,
    ).update({Showtime.seats_available: Showtime.seats_available + 1}, synchronize_session=False)
    showtime = db.get(Showtime, showtime_id)
    if showtime is not None:
        db.expire(showtime, ["seats_available"])
    return True


def held_seat_ids(db: Session, showtime_id: int) -> List[str]:
    rows = (
        db.query(SeatHold.seat_id)
        .filter(SeatHold.showtime_id == showtime_id, SeatHold.status != HoldStatus.available)
        .order_by(SeatHold.id)
        .all()
    )
    return [r[0] for r in rows]


def check_availability(db: Session, showtime_id: int) -> Dict[str, Any]:
    showtime = get_showtime(db, showtime_id, active_only=False)
    return {
        "showtime_id": showtime.id,
        "total": showtime.seats_total,
        "available": showtime.seats_available,
        "booked_seat_ids": held_seat_ids(db, showtime.id),
    }
