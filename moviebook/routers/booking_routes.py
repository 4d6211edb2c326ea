# moviebook/routers/booking_routes.py
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from redis.asyncio import Redis
from sqlalchemy.orm import Session

from moviebook.auth import get_current_user
from moviebook.core.redis import get_optional_redis
from moviebook.database.database import get_db
from moviebook.database.schemas import (
    AvailabilityResponse,
    BookingResponse,
    CancelBookingResponse,
    ConfirmBookingRequest,
    CreateBookingRequest,
    TokenData,
)
from moviebook.services import booking_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/bookings", tags=["Bookings"])


# -------------------- Public --------------------
@router.get("/seats/availability", response_model=AvailabilityResponse)
def check_seat_availability(
    showtime_id: int = Query(..., alias="showtimeId"),
    db: Session = Depends(get_db),
):
    return booking_service.check_availability(db, showtime_id)


# -------------------- Protected --------------------
@router.post("", status_code=status.HTTP_201_CREATED, response_model=BookingResponse)
async def create_booking(
    payload: CreateBookingRequest,
    db: Session = Depends(get_db),
    redis: Optional[Redis] = Depends(get_optional_redis),
    current_user: TokenData = Depends(get_current_user),
):
    """
    Hold seats for 15 minutes. The booking stays pending until it is confirmed
    with a payment, otherwise it expires and the seats are released.
    """
    booking = await booking_service.create_booking(
        db,
        showtime_id=payload.showtime_id,
        seats=payload.seats,
        requester_id=current_user.user_id,
        redis=redis,
    )
    return BookingResponse.from_booking(booking)


@router.get("", response_model=List[BookingResponse])
def get_user_bookings(
    status_filter: Optional[str] = Query(None, alias="status"),
    db: Session = Depends(get_db),
    current_user: TokenData = Depends(get_current_user),
):
    bookings = booking_service.list_user_bookings(db, current_user.user_id, status_filter)
    return [BookingResponse.from_booking(b) for b in bookings]


@router.get("/{booking_id}", response_model=BookingResponse)
def get_booking_by_id(
    booking_id: str,
    db: Session = Depends(get_db),
    current_user: TokenData = Depends(get_current_user),
):
    booking = booking_service.get_booking(db, booking_id, current_user.user_id, current_user.role)
    return BookingResponse.from_booking(booking)


@router.put("/{booking_id}/confirm", response_model=BookingResponse)
async def confirm_booking(
    booking_id: str,
    payload: ConfirmBookingRequest,
    db: Session = Depends(get_db),
    current_user: TokenData = Depends(get_current_user),
):
    """Confirm a pending booking after payment (Razorpay order/signature verified when sent)."""
    booking = await booking_service.confirm_booking(
        db,
        booking_id,
        payment_reference=payload.payment_id,
        requester_id=current_user.user_id,
        order_id=payload.order_id,
        signature=payload.signature,
    )
    return BookingResponse.from_booking(booking)


@router.put("/{booking_id}/cancel", response_model=CancelBookingResponse)
def cancel_booking(
    booking_id: str,
    db: Session = Depends(get_db),
    current_user: TokenData = Depends(get_current_user),
):
    booking, refund_amount = booking_service.cancel_booking(db, booking_id, current_user.user_id)
    return CancelBookingResponse(booking=BookingResponse.from_booking(booking), refund_amount=refund_amount)
