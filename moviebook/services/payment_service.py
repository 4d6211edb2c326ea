"""
Payment gateway adapter (Razorpay + dev-friendly fallback)

The booking engine only sees create_order / verify_signature / refund; it
never re-derives the signature scheme itself.
"""
import hashlib
import hmac
import logging
import re
import time
import uuid
from typing import Any, Dict, List, Optional

import razorpay
from razorpay.errors import BadRequestError, ServerError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from moviebook.core.config import settings
from moviebook.core.errors import InvalidState, PaymentGatewayError
from moviebook.database.models import Booking, BookingStatus, RefundStatus
from moviebook.database.payment_models import Payment
from moviebook.utils import utcnow

logger = logging.getLogger(__name__)


def _to_paise(amount_rupees: float) -> int:
    return int(round(float(amount_rupees) * 100))


def _safe_receipt(receipt: str) -> str:
    # Razorpay rejects receipts longer than 40 chars
    sanitized = re.sub(r"[^A-Za-z0-9_]", "", receipt or "")[:40]
    return sanitized or f"rcpt_{uuid.uuid4().hex[:8]}"


def _expected_signature(secret: str, order_id: str, payment_id: str) -> str:
    return hmac.new(secret.encode(), f"{order_id}|{payment_id}".encode(), hashlib.sha256).hexdigest()


class PaymentGateway:
    provider = "base"

    def create_order(self, amount: float, currency: str, receipt: str, notes: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        raise NotImplementedError

    def verify_signature(self, order_id: str, payment_id: str, signature: str) -> bool:
        raise NotImplementedError

    def refund(self, payment_id: str, amount: float, notes: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        raise NotImplementedError


class RazorpayGateway(PaymentGateway):
    provider = "razorpay"

    def __init__(self, key_id: str, key_secret: str, client: Optional[Any] = None):
        if not key_id or not key_secret:
            raise PaymentGatewayError("Razorpay credentials not configured")
        self.key_id = key_id
        self.key_secret = key_secret
        self.client = client or razorpay.Client(auth=(key_id, key_secret))

    def create_order(self, amount, currency, receipt, notes=None):
        payload = {
            "amount": _to_paise(amount),
            "currency": currency,
            "receipt": _safe_receipt(receipt),
            "notes": {k: str(v) for k, v in (notes or {}).items()},
        }
        try:
            order = self.client.order.create(payload)
        except (BadRequestError, ServerError) as e:
            logger.error("Razorpay rejected order %s: %s", payload["receipt"], e)
            raise PaymentGatewayError(f"Payment gateway rejected the order: {e}")
        except Exception as e:
            logger.exception("Failed to create gateway order")
            raise PaymentGatewayError(f"Payment gateway unavailable: {e}")
        logger.info("Razorpay order %s created for %s paise", order.get("id"), payload["amount"])
        return order

    def verify_signature(self, order_id, payment_id, signature):
        expected = _expected_signature(self.key_secret, order_id, payment_id)
        return hmac.compare_digest(expected, signature or "")

    def refund(self, payment_id, amount, notes=None):
        payload = {"amount": _to_paise(amount), "notes": {k: str(v) for k, v in (notes or {}).items()}}
        try:
            refund = self.client.payment.refund(payment_id, payload)
        except (BadRequestError, ServerError) as e:
            logger.error("Razorpay rejected refund for %s: %s", payment_id, e)
            raise PaymentGatewayError(f"Payment gateway rejected the refund: {e}")
        except Exception as e:
            logger.exception("Failed to refund payment %s", payment_id)
            raise PaymentGatewayError(f"Payment gateway unavailable: {e}")
        logger.info("Razorpay refund %s issued for %s paise", refund.get("id"), payload["amount"])
        return refund


class FallbackGateway(PaymentGateway):
    """Development gateway: synthetic orders and refunds, HMAC check only when a secret is set."""

    provider = "fallback"

    def __init__(self, key_secret: str = ""):
        self.key_secret = key_secret

    def create_order(self, amount, currency, receipt, notes=None):
        now = int(time.time() * 1000)
        return {
            "id": f"dev-{now}",
            "amount": _to_paise(amount),
            "currency": currency,
            "receipt": _safe_receipt(receipt),
            "notes": {k: str(v) for k, v in (notes or {}).items()},
            "status": "created",
        }

    def verify_signature(self, order_id, payment_id, signature):
        if not self.key_secret:
            logger.warning("Fallback gateway has no secret - accepting payment %s unverified", payment_id)
            return True
        return hmac.compare_digest(_expected_signature(self.key_secret, order_id, payment_id), signature or "")

    def refund(self, payment_id, amount, notes=None):
        now = int(time.time() * 1000)
        return {
            "id": f"rfnd_dev-{now}",
            "payment_id": payment_id,
            "amount": _to_paise(amount),
            "notes": {k: str(v) for k, v in (notes or {}).items()},
            "status": "processed",
        }


_gateway: Optional[PaymentGateway] = None


def get_payment_gateway() -> PaymentGateway:
    """Gateway selected by PAYMENT_GATEWAY, built once per process."""
    global _gateway
    if _gateway is None:
        if settings.PAYMENT_GATEWAY == "razorpay":
            _gateway = RazorpayGateway(settings.RAZORPAY_KEY_ID, settings.RAZORPAY_KEY_SECRET)
        else:
            _gateway = FallbackGateway(settings.RAZORPAY_KEY_SECRET)
        logger.info("Payment gateway: %s", _gateway.provider)
    return _gateway


def get_optional_payment_gateway() -> Optional[PaymentGateway]:
    """Like get_payment_gateway, but None when the configured gateway cannot be built."""
    try:
        return get_payment_gateway()
    except PaymentGatewayError as e:
        logger.warning("Payment gateway not configured: %s", e.message)
        return None


def create_order_for_booking(gateway: PaymentGateway, booking: Booking, currency: str = settings.CURRENCY) -> Dict[str, Any]:
    return gateway.create_order(
        amount=booking.total_amount,
        currency=currency,
        receipt=f"receipt_{booking.booking_code}",
        notes={"booking_code": booking.booking_code, "user_id": booking.user_id},
    )


def record_payment(
    db: Session,
    booking: Booking,
    payment_reference: str,
    provider: str,
    order_id: Optional[str] = None,
    signature: Optional[str] = None,
    currency: str = settings.CURRENCY,
) -> Payment:
    """Attach a PAID payment row to a booking being confirmed (caller commits)."""
    payment = Payment(
        order_id=order_id,
        payment_id=payment_reference,
        status="PAID",
        amount=booking.total_amount,
        currency=currency,
        provider=provider,
        booking_id=booking.id,
        razorpay_signature=signature,
        meta={"booking_code": booking.booking_code, "seats": booking.seat_ids},
    )
    db.add(payment)
    return payment


def process_refund(db: Session, booking: Booking, gateway: PaymentGateway, reason: Optional[str] = None) -> Payment:
    """
    Refund a cancelled booking's payment through the gateway.

    The refund amount is the one fixed at cancellation. A gateway failure
    marks the booking's refund as failed (it can be retried) and re-raises.
    """
    if booking.status != BookingStatus.cancelled:
        raise InvalidState("Only cancelled bookings can be refunded")
    if booking.refund_status == RefundStatus.processed:
        raise InvalidState("Refund already processed")

    payment = db.query(Payment).filter(Payment.booking_id == booking.id).first()
    if payment is None:
        raise InvalidState("No payment recorded for this booking")
    if payment.status == "REFUNDED":
        raise InvalidState("Payment already refunded")

    notes = {"booking_code": booking.booking_code, "reason": reason or "Booking cancelled"}
    try:
        refund = gateway.refund(payment.payment_id, booking.refund_amount, notes=notes)
    except PaymentGatewayError:
        booking.refund_status = RefundStatus.failed
        db.commit()
        logger.error("Refund for booking %s failed; marked for retry", booking.booking_code)
        raise

    payment.status = "REFUNDED"
    payment.refund_id = refund.get("id")
    payment.refunded_amount = booking.refund_amount
    payment.refunded_at = utcnow()
    booking.refund_status = RefundStatus.processed
    try:
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Refund %s issued but not recorded for booking %s", payment.refund_id, booking.booking_code)
        raise

    logger.info("Refund %s processed for booking %s", payment.refund_id, booking.booking_code)
    return payment


def list_user_payments(db: Session, user_id: int) -> List[Payment]:
    """Payments on the user's bookings, newest first."""
    return (
        db.query(Payment)
        .join(Booking, Payment.booking_id == Booking.id)
        .filter(Booking.user_id == user_id)
        .order_by(Payment.created_at.desc(), Payment.id.desc())
        .all()
    )
