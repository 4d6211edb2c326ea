"""
Booking engine: the pending/confirmed/cancelled/expired lifecycle.

    pending ──confirm──▶ confirmed ──cancel──▶ cancelled
       │
       └──expire (system only)──▶ expired

Every transition is a conditional UPDATE on the booking's current status, so a
booking's own transitions are checked against its latest persisted state
right before they are applied (the sweeper, the expiry timer and a user
request may all touch the same booking).
"""
import logging
import re
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple, Union

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from moviebook.core.config import settings
from moviebook.core.errors import (
    BookingError,
    BookingNotFound,
    InvalidBookingRequest,
    InvalidState,
    PaymentGatewayError,
    PaymentVerificationFailed,
    SeatUnavailable,
    TooLateToCancel,
    Unauthorized,
)
from moviebook.database.models import Booking, BookingSeat, BookingStatus, RefundStatus, SeatCategory
from moviebook.services import seat_service
from moviebook.services.lock_service import showtime_write_lock
from moviebook.services.payment_service import PaymentGateway, get_payment_gateway, record_payment
from moviebook.services.ticket_service import build_ticket_payload, generate_qr_code
from moviebook.utils import generate_booking_code, show_start_utc, utcnow

logger = logging.getLogger(__name__)

SEAT_ID_PATTERN = re.compile(r"^[A-Z]\d{1,2}$")  # e.g. A1, B12

BookingRef = Union[int, str]


# ---------------- helpers ----------------
def _normalize_seat_requests(seats: Iterable[Any]) -> List[Tuple[str, SeatCategory]]:
    """Accept pydantic SeatRequest objects or plain dicts ({seatId|seat_id, category})."""
    normalized: List[Tuple[str, SeatCategory]] = []
    for seat in seats or []:
        if isinstance(seat, dict):
            seat_id = seat.get("seat_id") or seat.get("seatId")
            category = seat.get("category")
        else:
            seat_id = getattr(seat, "seat_id", None)
            category = getattr(seat, "category", None)

        if not seat_id or not category:
            raise InvalidBookingRequest("Each seat must have seatId and category")
        seat_id = str(seat_id).strip().upper()
        if not SEAT_ID_PATTERN.match(seat_id):
            raise InvalidBookingRequest(f"Invalid seat ID format: {seat_id}")
        try:
            category = SeatCategory(category)
        except ValueError:
            raise InvalidBookingRequest(f"Invalid seat category: {category}")
        normalized.append((seat_id, category))

    if not normalized:
        raise InvalidBookingRequest("Please select at least one seat")
    if len(normalized) > settings.MAX_SEATS_PER_BOOKING:
        raise InvalidBookingRequest(f"Please select 1-{settings.MAX_SEATS_PER_BOOKING} seats")
    seen = set()
    for seat_id, _ in normalized:
        if seat_id in seen:
            raise InvalidBookingRequest(f"Seat {seat_id} requested more than once")
        seen.add(seat_id)
    return normalized


def _load_booking(db: Session, booking_ref: BookingRef) -> Booking:
    """Look a booking up by numeric id or by booking code."""
    query = db.query(Booking)
    if isinstance(booking_ref, int) or str(booking_ref).isdigit():
        booking = query.filter(Booking.id == int(booking_ref)).first()
    else:
        booking = query.filter(Booking.booking_code == str(booking_ref)).first()
    if booking is None:
        raise BookingNotFound(f"Booking {booking_ref} not found")
    return booking


def _check_owner(booking: Booking, requester_id: int) -> None:
    if booking.user_id != requester_id:
        raise Unauthorized("Not authorized to access this booking")


def _transition(db: Session, booking: Booking, from_status: BookingStatus, values: Dict[Any, Any]) -> bool:
    """Compare-and-set on status. False when another writer moved the booking first."""
    updated = (
        db.query(Booking)
        .filter(Booking.id == booking.id, Booking.status == from_status)
        .update(values, synchronize_session="fetch")
    )
    return bool(updated)


def show_starts_at(booking: Booking) -> datetime:
    return show_start_utc(booking.show_date, booking.show_time)


# ---------------- create ----------------
def _persist_booking(
    db: Session,
    showtime_id: int,
    requested: List[Tuple[str, SeatCategory]],
    requester_id: int,
    now: datetime,
) -> Booking:
    """Booking row, seat snapshot and holds in one transaction (runs in a worker thread)."""
    try:
        showtime = seat_service.get_showtime(db, showtime_id)

        for seat_id, _ in requested:
            if not seat_service.is_seat_available(db, showtime.id, seat_id):
                raise SeatUnavailable(seat_id)

        priced = [
            (seat_id, category, seat_service.calculate_price(showtime, category))
            for seat_id, category in requested
        ]

        booking = Booking(
            booking_code=generate_booking_code(),
            user_id=requester_id,
            movie_id=showtime.movie_id,
            showtime_id=showtime.id,
            theatre_id=showtime.theatre_id,
            show_date=showtime.show_date,
            show_time=showtime.start_time,
            total_amount=float(sum(price for _, _, price in priced)),
            status=BookingStatus.pending,
            expires_at=now + timedelta(minutes=settings.HOLD_DURATION_MINUTES),
            seats=[
                BookingSeat(position=i, seat_id=seat_id, category=category, price=float(price))
                for i, (seat_id, category, price) in enumerate(priced)
            ],
        )
        db.add(booking)
        db.flush()

        for seat_id, _, _ in priced:
            seat_service.place_hold(db, showtime, seat_id, booking.id)

        db.commit()
    except BookingError:
        db.rollback()
        raise
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Failed to persist booking for showtime %s", showtime_id)
        raise

    db.refresh(booking)
    return booking


async def create_booking(
    db: Session,
    showtime_id: int,
    seats: Iterable[Any],
    requester_id: int,
    redis=None,
    now: Optional[datetime] = None,
    arm_timer: bool = True,
) -> Booking:
    """
    Hold ``seats`` on a showtime for ``requester_id``.

    Either every seat is held and a pending booking exists, or nothing is
    persisted at all: the booking row and its holds share one transaction.
    """
    requested = _normalize_seat_requests(seats)
    now = now or utcnow()

    async with showtime_write_lock(redis, showtime_id):
        booking = await run_in_threadpool(_persist_booking, db, showtime_id, requested, requester_id, now)

    logger.info(
        "Booking %s pending: showtime %s seats %s total %s",
        booking.booking_code, showtime_id, booking.seat_ids, booking.total_amount,
    )

    if arm_timer:
        from moviebook.services.expiry_sweeper import schedule_booking_expiry

        schedule_booking_expiry(booking.id, settings.HOLD_DURATION_MINUTES * 60)
    return booking


# ---------------- confirm ----------------
def _load_confirmable(
    db: Session,
    booking_ref: BookingRef,
    payment_reference: str,
    requester_id: int,
    now: datetime,
) -> Booking:
    booking = _load_booking(db, booking_ref)
    _check_owner(booking, requester_id)

    if booking.status != BookingStatus.pending:
        raise InvalidState(f"Booking is {booking.status.value}; only pending bookings can be confirmed")
    if not payment_reference:
        raise InvalidBookingRequest("paymentId is required")

    if booking.expires_at is not None and now > booking.expires_at:
        expire_booking(db, booking.id, now=now)
        raise InvalidState("Booking hold has expired; please select your seats again")
    return booking


def _persist_confirmation(
    db: Session,
    booking: Booking,
    payment_reference: str,
    provider: str,
    order_id: Optional[str],
    signature: Optional[str],
    artifact_generator: Callable[[str], str],
) -> Booking:
    qr_code = None
    try:
        qr_code = artifact_generator(build_ticket_payload(booking))
    except Exception:
        logger.exception("QR generation failed for booking %s; confirming without it", booking.booking_code)

    try:
        if not _transition(
            db,
            booking,
            BookingStatus.pending,
            {
                Booking.status: BookingStatus.confirmed,
                Booking.payment_reference: payment_reference,
                Booking.qr_code: qr_code,
            },
        ):
            db.rollback()
            db.refresh(booking)
            raise InvalidState(f"Booking is {booking.status.value}; only pending bookings can be confirmed")

        for seat in booking.seats:
            seat_service.confirm_hold(db, booking.showtime_id, seat.seat_id, booking.id)

        record_payment(db, booking, payment_reference, provider, order_id=order_id, signature=signature)
        db.commit()
    except IntegrityError:
        db.rollback()
        logger.warning("Payment reference %s already used", payment_reference)
        raise InvalidBookingRequest("Payment reference has already been used")
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Failed to confirm booking %s", booking.booking_code)
        raise

    db.refresh(booking)
    return booking


async def confirm_booking(
    db: Session,
    booking_ref: BookingRef,
    payment_reference: str,
    requester_id: int,
    order_id: Optional[str] = None,
    signature: Optional[str] = None,
    gateway: Optional[PaymentGateway] = None,
    artifact_generator: Callable[[str], str] = generate_qr_code,
    now: Optional[datetime] = None,
) -> Booking:
    """
    Move a pending booking to confirmed once it has been paid for.

    When the gateway order id and signature are supplied they are verified
    through the gateway adapter first; a gateway failure leaves the booking
    pending. A booking whose hold has already lapsed is expired here instead
    of being confirmed late.
    """
    now = now or utcnow()
    booking = await run_in_threadpool(_load_confirmable, db, booking_ref, payment_reference, requester_id, now)

    if order_id or signature:
        if not (order_id and signature):
            raise InvalidBookingRequest("orderId and signature must be supplied together")
        try:
            gateway = gateway or get_payment_gateway()
            verified = await run_in_threadpool(gateway.verify_signature, order_id, payment_reference, signature)
        except PaymentGatewayError:
            raise
        except Exception as e:
            logger.exception("Payment verification failed for booking %s", booking.booking_code)
            raise PaymentGatewayError(f"Payment gateway unavailable: {e}")
        if not verified:
            raise PaymentVerificationFailed("Invalid payment signature")

    provider = gateway.provider if gateway is not None else settings.PAYMENT_GATEWAY
    booking = await run_in_threadpool(
        _persist_confirmation, db, booking, payment_reference, provider, order_id, signature, artifact_generator
    )
    logger.info("✅ Booking confirmed: %s", booking.booking_code)
    return booking


# ---------------- cancel ----------------
def cancel_booking(
    db: Session,
    booking_ref: BookingRef,
    requester_id: int,
    now: Optional[datetime] = None,
) -> Tuple[Booking, float]:
    """
    Cancel a confirmed booking more than CANCELLATION_CUTOFF_HOURS before the
    show. The refund is REFUND_RATE of the total; refund processing itself is
    left pending for the payment side.
    """
    now = now or utcnow()
    booking = _load_booking(db, booking_ref)
    _check_owner(booking, requester_id)

    if booking.status != BookingStatus.confirmed:
        raise InvalidState("Only confirmed bookings can be cancelled")

    cutoff = timedelta(hours=settings.CANCELLATION_CUTOFF_HOURS)
    if show_starts_at(booking) - now <= cutoff:
        raise TooLateToCancel(
            f"Cannot cancel booking less than {settings.CANCELLATION_CUTOFF_HOURS:g} hours before show"
        )

    refund_amount = round(booking.total_amount * settings.REFUND_RATE, 2)

    try:
        if not _transition(
            db,
            booking,
            BookingStatus.confirmed,
            {
                Booking.status: BookingStatus.cancelled,
                Booking.cancelled_at: now,
                Booking.refund_amount: refund_amount,
                Booking.refund_status: RefundStatus.pending,
            },
        ):
            db.rollback()
            raise InvalidState("Only confirmed bookings can be cancelled")

        for seat in booking.seats:
            seat_service.release_hold(db, booking.showtime_id, seat.seat_id, booking.id)
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Failed to cancel booking %s", booking.booking_code)
        raise

    db.refresh(booking)
    logger.info("Booking %s cancelled, refund %s pending", booking.booking_code, refund_amount)
    return booking, refund_amount


# ---------------- expire ----------------
def expire_booking(db: Session, booking_id: int, now: Optional[datetime] = None) -> bool:
    """
    System-only transition. True when this call expired the booking; False
    when it was already handled, is not pending, or its hold has not lapsed.
    """
    now = now or utcnow()
    booking = db.get(Booking, booking_id)
    if booking is None:
        logger.warning("Expire: booking %s not found", booking_id)
        return False
    if booking.status != BookingStatus.pending:
        return False
    if booking.expires_at is not None and booking.expires_at >= now:
        return False

    try:
        if not _transition(db, booking, BookingStatus.pending, {Booking.status: BookingStatus.expired}):
            db.rollback()
            return False
        for seat in booking.seats:
            seat_service.release_hold(db, booking.showtime_id, seat.seat_id, booking.id)
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise

    logger.info("Booking %s expired, %s seats released", booking.booking_code, len(booking.seats))
    return True


# ---------------- queries ----------------
def get_booking(db: Session, booking_ref: BookingRef, requester_id: int, requester_role: str = "user") -> Booking:
    booking = _load_booking(db, booking_ref)
    if requester_role != "admin":
        _check_owner(booking, requester_id)
    return booking


def list_user_bookings(db: Session, user_id: int, status: Optional[str] = None) -> List[Booking]:
    query = db.query(Booking).filter(Booking.user_id == user_id)
    if status:
        try:
            query = query.filter(Booking.status == BookingStatus(status))
        except ValueError:
            raise InvalidBookingRequest(f"Unknown booking status: {status}")
    return query.order_by(Booking.created_at.desc(), Booking.id.desc()).all()


def check_availability(db: Session, showtime_id: int) -> Dict[str, Any]:
    return seat_service.check_availability(db, showtime_id)
