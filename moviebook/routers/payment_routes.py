"""
Payment routes (Razorpay + dev-friendly fallback)
Orders are created for an existing pending booking; confirmation happens on
PUT /bookings/{id}/confirm. Refunds of cancelled bookings are an admin action.
"""
import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from moviebook.auth import get_current_user
from moviebook.core.config import settings
from moviebook.core.errors import InvalidState, Unauthorized
from moviebook.database.database import get_db
from moviebook.database.models import BookingStatus
from moviebook.database.schemas import (
    BookingResponse,
    CreateOrderRequest,
    CreateOrderResponse,
    PaymentOut,
    RefundRequest,
    RefundResponse,
    TokenData,
)
from moviebook.services import booking_service
from moviebook.services.payment_service import (
    PaymentGateway,
    create_order_for_booking,
    get_optional_payment_gateway,
    get_payment_gateway,
    list_user_payments,
    process_refund,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payments", tags=["Payments"])


@router.get("/gateway-status")
def get_gateway_status(gateway: Optional[PaymentGateway] = Depends(get_optional_payment_gateway)) -> Dict[str, Any]:
    return {
        "gateway": gateway.provider if gateway else settings.PAYMENT_GATEWAY,
        "configured": gateway is not None,
        "razorpay_available": gateway is not None and gateway.provider == "razorpay",
        "key_id": settings.RAZORPAY_KEY_ID or None,
    }


@router.post("/create-order", status_code=201, response_model=CreateOrderResponse)
async def create_order(
    payload: CreateOrderRequest,
    db: Session = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
    current_user: TokenData = Depends(get_current_user),
) -> CreateOrderResponse:
    booking = booking_service.get_booking(db, payload.booking_id, current_user.user_id)
    if booking.status != BookingStatus.pending:
        raise InvalidState(f"Booking is {booking.status.value}; payment can only be started for pending bookings")

    order = await run_in_threadpool(
        create_order_for_booking, gateway, booking, payload.currency or settings.CURRENCY
    )
    logger.info("Order %s created for booking %s", order["id"], booking.booking_code)
    return CreateOrderResponse(
        key_id=settings.RAZORPAY_KEY_ID or None,
        order_id=order["id"],
        amount=int(order["amount"]),
        currency=order.get("currency", settings.CURRENCY),
        booking_code=booking.booking_code,
        provider=gateway.provider,
    )


@router.get("/user/history", response_model=List[PaymentOut])
def get_payment_history(
    db: Session = Depends(get_db),
    current_user: TokenData = Depends(get_current_user),
):
    return [PaymentOut.from_payment(p) for p in list_user_payments(db, current_user.user_id)]


# -------------------- Admin --------------------
@router.post("/{booking_id}/refund", response_model=RefundResponse)
async def refund_booking(
    booking_id: str,
    payload: Optional[RefundRequest] = None,
    db: Session = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
    current_user: TokenData = Depends(get_current_user),
):
    """Pay out the refund fixed at cancellation (admin only)."""
    if current_user.role != "admin":
        raise Unauthorized("Admin access required")

    booking = booking_service.get_booking(db, booking_id, current_user.user_id, current_user.role)
    payment = await run_in_threadpool(process_refund, db, booking, gateway, payload.reason if payload else None)
    return RefundResponse(booking=BookingResponse.from_booking(booking), payment=PaymentOut.from_payment(payment))
