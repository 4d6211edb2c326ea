# moviebook/database/schemas.py
# =========================================================
# 🧩 Booking Schemas (Pydantic v2 Compatible)
# =========================================================

from datetime import date, datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from moviebook.database.models import BookingStatus, RefundStatus, SeatCategory


# =========================================================
# ✅ Base Config for ORM Compatibility (Pydantic v2)
# =========================================================
class ConfigModel(BaseModel):
    model_config = ConfigDict(from_attributes=True, populate_by_name=True)


# =========================================================
# 📥 Request Payload Schemas
# =========================================================
class SeatRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    # Accept "seatId" from JSON but map to "seat_id" internally
    seat_id: str = Field(..., validation_alias="seatId", min_length=2, max_length=3)
    category: SeatCategory


class CreateBookingRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    showtime_id: int = Field(..., validation_alias="showtimeId")
    seats: List[SeatRequest] = Field(..., min_length=1)


class ConfirmBookingRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    payment_id: str = Field(..., validation_alias="paymentId", min_length=1)
    # Razorpay checkout response; verified when present
    order_id: Optional[str] = Field(None, validation_alias="razorpay_order_id")
    signature: Optional[str] = Field(None, validation_alias="razorpay_signature")


class CreateOrderRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    booking_id: str = Field(..., validation_alias="bookingId")
    currency: Optional[str] = None


class RefundRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    reason: Optional[str] = Field(None, validation_alias="refundReason", max_length=200)


# =========================================================
# 🎟 Booking Responses
# =========================================================
class BookingSeatOut(ConfigModel):
    seat_id: str
    category: SeatCategory
    price: float


class CancellationOut(ConfigModel):
    cancelled_at: datetime
    refund_amount: float
    refund_status: RefundStatus


class BookingResponse(ConfigModel):
    id: int
    booking_code: str
    user_id: int
    movie_id: int
    showtime_id: int
    theatre_id: int
    show_date: date
    show_time: str
    seats: List[BookingSeatOut]
    total_amount: float
    status: BookingStatus
    expires_at: Optional[datetime] = None
    payment_reference: Optional[str] = None
    qr_code: Optional[str] = None
    cancellation: Optional[CancellationOut] = None
    created_at: Optional[datetime] = None

    @classmethod
    def from_booking(cls, booking) -> "BookingResponse":
        out = cls.model_validate(booking)
        if booking.cancelled_at is not None:
            out.cancellation = CancellationOut(
                cancelled_at=booking.cancelled_at,
                refund_amount=booking.refund_amount,
                refund_status=booking.refund_status,
            )
        return out


class CancelBookingResponse(BaseModel):
    booking: BookingResponse
    refund_amount: float
    message: str = "Booking cancelled successfully"


class AvailabilityResponse(BaseModel):
    showtime_id: int
    total: int
    available: int
    booked_seat_ids: List[str]


class CreateOrderResponse(BaseModel):
    key_id: Optional[str] = None
    order_id: str
    amount: int  # paise
    currency: str
    booking_code: str
    provider: str


# =========================================================
# 💳 Payment Responses
# =========================================================
class PaymentOut(ConfigModel):
    id: int
    booking_id: Optional[int] = None
    booking_code: Optional[str] = None
    order_id: Optional[str] = None
    payment_id: str
    status: str
    amount: float
    currency: Optional[str] = None
    provider: str
    refund_id: Optional[str] = None
    refunded_amount: Optional[float] = None
    refunded_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    @classmethod
    def from_payment(cls, payment) -> "PaymentOut":
        out = cls.model_validate(payment)
        if payment.booking is not None:
            out.booking_code = payment.booking.booking_code
        return out


class RefundResponse(BaseModel):
    booking: BookingResponse
    payment: PaymentOut
    message: str = "Refund processed successfully"


# =========================================================
# 🔐 Token Schemas
# =========================================================
class TokenData(BaseModel):
    user_id: int
    role: str = "user"
