import hashlib
import hmac

import pytest
from razorpay.errors import BadRequestError

from moviebook.core.config import settings
from moviebook.core.errors import InvalidState, PaymentGatewayError
from moviebook.database.models import RefundStatus
from moviebook.services import booking_service, payment_service
from moviebook.services.payment_service import (
    FallbackGateway,
    PaymentGateway,
    RazorpayGateway,
    get_payment_gateway,
    list_user_payments,
    process_refund,
)


class _FakeOrders:
    def __init__(self, error=None):
        self.error = error
        self.payloads = []

    def create(self, payload):
        self.payloads.append(payload)
        if self.error:
            raise self.error
        return {"id": "order_Fake123", "amount": payload["amount"], "currency": payload["currency"], "status": "created"}


class _FakeRefunds:
    def __init__(self, error=None):
        self.error = error
        self.calls = []

    def refund(self, payment_id, payload):
        self.calls.append((payment_id, payload))
        if self.error:
            raise self.error
        return {"id": "rfnd_Fake456", "payment_id": payment_id, "amount": payload["amount"], "status": "processed"}


class _FakeClient:
    def __init__(self, error=None):
        self.order = _FakeOrders(error)
        self.payment = _FakeRefunds(error)


class _DownGateway(PaymentGateway):
    provider = "down"

    def refund(self, payment_id, amount, notes=None):
        raise PaymentGatewayError("Payment gateway unavailable: timeout")


async def _cancelled_booking(db, showtime, user, seat_id, payment_reference):
    booking = await booking_service.create_booking(
        db, showtime.id, [{"seatId": seat_id, "category": "Gold"}], requester_id=user.id, arm_timer=False
    )
    await booking_service.confirm_booking(
        db, booking.id, payment_reference, user.id, artifact_generator=lambda payload: None
    )
    booking, _ = booking_service.cancel_booking(db, booking.id, user.id)
    return booking


def _sign(secret, order_id, payment_id):
    return hmac.new(secret.encode(), f"{order_id}|{payment_id}".encode(), hashlib.sha256).hexdigest()


class TestRazorpayGateway:
    def test_create_order_sends_paise_and_short_receipt(self):
        client = _FakeClient()
        gateway = RazorpayGateway("rzp_test_key", "secret", client=client)

        order = gateway.create_order(400.5, "INR", "receipt_BK1700000000000ABCDEFGHIJ-extra!", notes={"user_id": 7})

        payload = client.order.payloads[0]
        assert payload["amount"] == 40050
        assert payload["currency"] == "INR"
        assert len(payload["receipt"]) <= 40
        assert payload["receipt"].startswith("receipt_BK1700000000000")
        assert payload["notes"] == {"user_id": "7"}
        assert order["id"] == "order_Fake123"

    def test_rejected_order_becomes_gateway_error(self):
        gateway = RazorpayGateway("rzp_test_key", "secret", client=_FakeClient(BadRequestError("amount too low")))
        with pytest.raises(PaymentGatewayError):
            gateway.create_order(1, "INR", "r1")

    def test_transport_failure_becomes_gateway_error(self):
        gateway = RazorpayGateway("rzp_test_key", "secret", client=_FakeClient(ConnectionError("reset")))
        with pytest.raises(PaymentGatewayError) as exc:
            gateway.create_order(1, "INR", "r1")
        assert exc.value.status_code == 502

    def test_missing_credentials(self):
        with pytest.raises(PaymentGatewayError):
            RazorpayGateway("", "")

    def test_refund_sends_paise_and_notes(self):
        client = _FakeClient()
        gateway = RazorpayGateway("rzp_test_key", "secret", client=client)

        refund = gateway.refund("pay_9", 180, notes={"booking_code": "BK1"})

        assert client.payment.calls == [("pay_9", {"amount": 18000, "notes": {"booking_code": "BK1"}})]
        assert refund["id"] == "rfnd_Fake456"

    def test_rejected_refund_becomes_gateway_error(self):
        gateway = RazorpayGateway("rzp_test_key", "secret", client=_FakeClient(BadRequestError("already refunded")))
        with pytest.raises(PaymentGatewayError):
            gateway.refund("pay_9", 180)

    def test_signature_check(self):
        gateway = RazorpayGateway("rzp_test_key", "secret", client=_FakeClient())
        assert gateway.verify_signature("order_1", "pay_1", _sign("secret", "order_1", "pay_1"))
        assert not gateway.verify_signature("order_1", "pay_1", _sign("other", "order_1", "pay_1"))
        assert not gateway.verify_signature("order_1", "pay_1", None)


class TestFallbackGateway:
    def test_synthetic_order(self):
        order = FallbackGateway().create_order(250, "INR", "receipt_x")
        assert order["id"].startswith("dev-")
        assert order["amount"] == 25000

    def test_accepts_unverified_without_secret(self):
        assert FallbackGateway().verify_signature("o", "p", "anything")

    def test_checks_hmac_with_secret(self):
        gateway = FallbackGateway("s3cret")
        assert gateway.verify_signature("o", "p", _sign("s3cret", "o", "p"))
        assert not gateway.verify_signature("o", "p", "bad")


def test_configured_gateway_is_fallback_under_test_settings():
    assert get_payment_gateway().provider == "fallback"


async def test_create_order_route(client, db, make_showtime, users, headers_for):
    showtime = make_showtime()
    booking = await booking_service.create_booking(
        db, showtime.id, [{"seatId": "D5", "category": "Gold"}], requester_id=users[0].id, arm_timer=False
    )

    res = client.post(
        "/api/payments/create-order",
        json={"bookingId": str(booking.id)},
        headers=headers_for(users[0].id),
    )
    assert res.status_code == 201, res.text
    body = res.json()
    assert body["order_id"].startswith("dev-")
    assert body["amount"] == 20000
    assert body["currency"] == "INR"
    assert body["booking_code"] == booking.booking_code
    assert body["provider"] == "fallback"

    res = client.post(
        "/api/payments/create-order",
        json={"bookingId": booking.booking_code},
        headers=headers_for(users[1].id),
    )
    assert res.status_code == 403


async def test_create_order_for_confirmed_booking_is_rejected(client, db, make_showtime, users, headers_for):
    showtime = make_showtime()
    booking = await booking_service.create_booking(
        db, showtime.id, [{"seatId": "D6", "category": "Gold"}], requester_id=users[0].id, arm_timer=False
    )
    await booking_service.confirm_booking(
        db, booking.id, "pay_done", users[0].id, artifact_generator=lambda payload: None
    )

    res = client.post(
        "/api/payments/create-order",
        json={"bookingId": str(booking.id)},
        headers=headers_for(users[0].id),
    )
    assert res.status_code == 409


class TestRefunds:
    async def test_refund_marks_payment_and_booking(self, db, make_showtime, users):
        showtime = make_showtime()
        booking = await _cancelled_booking(db, showtime, users[0], "F1", "pay_refund")
        assert booking.refund_status == RefundStatus.pending

        payment = process_refund(db, booking, FallbackGateway(), reason="changed plans")

        assert payment.status == "REFUNDED"
        assert payment.refund_id.startswith("rfnd_dev-")
        assert payment.refunded_amount == 180
        assert payment.refunded_at is not None
        db.refresh(booking)
        assert booking.refund_status == RefundStatus.processed

        with pytest.raises(InvalidState):
            process_refund(db, booking, FallbackGateway())

    async def test_gateway_failure_marks_refund_failed_and_can_be_retried(self, db, make_showtime, users):
        showtime = make_showtime()
        booking = await _cancelled_booking(db, showtime, users[0], "F2", "pay_retry")

        with pytest.raises(PaymentGatewayError):
            process_refund(db, booking, _DownGateway())
        db.refresh(booking)
        assert booking.refund_status == RefundStatus.failed

        payment = process_refund(db, booking, FallbackGateway())
        assert payment.status == "REFUNDED"
        db.refresh(booking)
        assert booking.refund_status == RefundStatus.processed

    async def test_only_cancelled_bookings_are_refunded(self, db, make_showtime, users):
        showtime = make_showtime()
        booking = await booking_service.create_booking(
            db, showtime.id, [{"seatId": "F3", "category": "Gold"}], requester_id=users[0].id, arm_timer=False
        )
        with pytest.raises(InvalidState):
            process_refund(db, booking, FallbackGateway())

    async def test_refund_route_is_admin_only(self, client, db, make_showtime, users, headers_for):
        showtime = make_showtime()
        booking = await _cancelled_booking(db, showtime, users[0], "F4", "pay_admin")

        res = client.post(f"/api/payments/{booking.id}/refund", headers=headers_for(users[0].id))
        assert res.status_code == 403

        res = client.post(
            f"/api/payments/{booking.booking_code}/refund",
            json={"refundReason": "show rescheduled"},
            headers=headers_for(users[1].id, "admin"),
        )
        assert res.status_code == 200, res.text
        body = res.json()
        assert body["payment"]["status"] == "REFUNDED"
        assert body["payment"]["refunded_amount"] == 180
        assert body["booking"]["cancellation"]["refund_status"] == "processed"

    async def test_refund_route_reports_gateway_failure(self, client, db, make_showtime, users, headers_for):
        showtime = make_showtime()
        booking = await _cancelled_booking(db, showtime, users[0], "F5", "pay_down")
        client.app.dependency_overrides[get_payment_gateway] = lambda: _DownGateway()

        res = client.post(f"/api/payments/{booking.id}/refund", headers=headers_for(users[1].id, "admin"))

        assert res.status_code == 502
        assert res.json()["code"] == "payment_gateway_error"
        db.refresh(booking)
        assert booking.refund_status == RefundStatus.failed


async def test_payment_history_lists_only_own_payments(client, db, make_showtime, users, headers_for):
    showtime = make_showtime()
    for seat_id, user in (("G1", users[0]), ("G2", users[0]), ("G3", users[1])):
        booking = await booking_service.create_booking(
            db, showtime.id, [{"seatId": seat_id, "category": "Gold"}], requester_id=user.id, arm_timer=False
        )
        await booking_service.confirm_booking(
            db, booking.id, f"pay_{seat_id}", user.id, artifact_generator=lambda payload: None
        )

    assert [p.payment_id for p in list_user_payments(db, users[0].id)] == ["pay_G2", "pay_G1"]

    res = client.get("/api/payments/user/history", headers=headers_for(users[0].id))
    assert res.status_code == 200
    history = res.json()
    assert [p["payment_id"] for p in history] == ["pay_G2", "pay_G1"]
    assert all(p["booking_code"].startswith("BK") for p in history)
    assert client.get("/api/payments/user/history").status_code == 401


def test_gateway_status_reports_unconfigured_razorpay(client, monkeypatch):
    monkeypatch.setattr(settings, "PAYMENT_GATEWAY", "razorpay")
    monkeypatch.setattr(settings, "RAZORPAY_KEY_ID", "")
    monkeypatch.setattr(settings, "RAZORPAY_KEY_SECRET", "")
    monkeypatch.setattr(payment_service, "_gateway", None)

    res = client.get("/api/payments/gateway-status")

    assert res.status_code == 200
    assert res.json() == {"gateway": "razorpay", "configured": False, "razorpay_available": False, "key_id": None}


def test_gateway_status_reports_fallback(client):
    res = client.get("/api/payments/gateway-status")
    assert res.status_code == 200
    assert res.json()["gateway"] == "fallback"
    assert res.json()["configured"] is True
