"""
Booking error taxonomy and the FastAPI handlers that render it
"""
import logging

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class BookingError(Exception):
    """Base class for every operational error raised by the booking core."""

    status_code = 400
    code = "booking_error"

    def __init__(self, message: str = "", **details):
        super().__init__(message or self.__class__.__doc__ or self.code)
        self.message = message or (self.__class__.__doc__ or self.code).strip()
        self.details = details

    @property
    def status(self) -> str:
        return "fail" if str(self.status_code).startswith("4") else "error"


# ---------------- Validation ----------------
class InvalidBookingRequest(BookingError):
    """Invalid booking request"""
    status_code = 400
    code = "invalid_request"


class CategoryNotFound(InvalidBookingRequest):
    """No pricing configured for this seat category"""
    code = "category_not_found"

    def __init__(self, category: str):
        super().__init__(f"No pricing configured for category {category}", category=category)
        self.category = category


# ---------------- Not found ----------------
class ShowtimeNotFound(BookingError):
    """Showtime not found"""
    status_code = 404
    code = "showtime_not_found"


class BookingNotFound(BookingError):
    """Booking not found"""
    status_code = 404
    code = "booking_not_found"


# ---------------- Authorization ----------------
class Unauthorized(BookingError):
    """Not authorized to access this booking"""
    status_code = 403
    code = "unauthorized"


# ---------------- Conflicts ----------------
class SeatUnavailable(BookingError):
    status_code = 409
    code = "seat_unavailable"

    def __init__(self, seat_id: str):
        super().__init__(f"Seat {seat_id} is not available", seat_id=seat_id)
        self.seat_id = seat_id


class InvalidState(BookingError):
    """Booking is not in a state that allows this operation"""
    status_code = 409
    code = "invalid_state"


class TooLateToCancel(BookingError):
    """Cannot cancel booking less than 2 hours before show"""
    status_code = 409
    code = "too_late_to_cancel"


# ---------------- Payment collaborator ----------------
class PaymentVerificationFailed(BookingError):
    """Invalid payment signature"""
    status_code = 402
    code = "payment_verification_failed"


class PaymentGatewayError(BookingError):
    """Payment gateway unavailable"""
    status_code = 502
    code = "payment_gateway_error"


async def booking_error_handler(request: Request, exc: BookingError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    body = {"status": exc.status, "code": exc.code, "message": exc.message}
    if exc.details:
        body["details"] = exc.details
    return JSONResponse(status_code=exc.status_code, content=body)


def _describe(error: dict) -> str:
    # drop the "body"/"query" prefix: "seats.0.category: Input should be ..."
    loc = [str(part) for part in error.get("loc", ()) if part not in ("body", "query", "path")]
    return f"{'.'.join(loc)}: {error.get('msg')}" if loc else str(error.get("msg"))


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Schema failures share the InvalidBookingRequest contract instead of FastAPI's 422."""
    errors = jsonable_encoder(exc.errors())
    body = {
        "status": "fail",
        "code": InvalidBookingRequest.code,
        "message": "; ".join(_describe(e) for e in errors) or InvalidBookingRequest.__doc__,
        "details": {"errors": errors},
    }
    return JSONResponse(status_code=InvalidBookingRequest.status_code, content=body)


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(BookingError, booking_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
