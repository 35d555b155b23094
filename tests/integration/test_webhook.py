# tests/integration/test_webhook.py

import json

from sqlalchemy import func, select

from event_registration.domain.state_machine import BookingStatus, PaymentStatus
from event_registration.infrastructure.db.models import (
    Booking,
    FlatBooking,
    PaymentWebhookEvent,
)
from event_registration.infrastructure.repositories.slot_repository import SlotRepository

EVENT_DATE = "2025-08-16"


def _captured(payment_id, order_id=None):
    return {"id": payment_id, "order_id": order_id, "amount": 240000, "status": "captured"}


def _failed(payment_id, description="Card declined by issuer"):
    return {
        "id": payment_id,
        "status": "failed",
        "error_reason": "payment_failed",
        "error_description": description,
    }


def _count(db, model):
    return db.execute(select(func.count()).select_from(model)).scalar_one()


# ---------------------
# SIGNATURE
# ---------------------

def test_missing_signature_is_rejected(client, db):
    response = client.post("/razorpayWebhook", content=b'{"event": "payment.captured"}')

    assert response.status_code == 400
    assert response.json() == {"error": "No signature provided"}
    assert _count(db, Booking) == 0


def test_bad_signature_is_rejected_without_db_writes(client, make_booking, db, sleeper):
    booking_id = make_booking("pay_sig_001")
    body = json.dumps(
        {"event": "payment.captured", "payload": {"payment": {"entity": _captured("pay_sig_001")}}}
    ).encode("utf-8")

    response = client.post(
        "/razorpayWebhook",
        content=body,
        headers={"x-razorpay-signature": "f" * 64},
    )

    assert response.status_code == 400
    assert response.json() == {"error": "Invalid signature"}
    assert sleeper.calls == []
    assert db.get(Booking, booking_id).status == BookingStatus.PENDING
    assert _count(db, PaymentWebhookEvent) == 0


def test_signature_from_other_secret_is_rejected(client, sign):
    body = b'{"event": "payment.captured", "payload": {}}'

    response = client.post(
        "/razorpayWebhook",
        content=body,
        headers={"x-razorpay-signature": sign(body, secret="someone_elses_secret")},
    )

    assert response.status_code == 400


def test_signed_garbage_body_is_rejected(client, sign):
    body = b"not json at all"

    response = client.post(
        "/razorpayWebhook",
        content=body,
        headers={"x-razorpay-signature": sign(body)},
    )

    assert response.status_code == 400


def test_preflight_returns_no_content(client):
    response = client.options("/razorpayWebhook")

    assert response.status_code == 204
    assert response.content == b""
    assert response.headers["access-control-allow-origin"] == "*"


def test_status_endpoint(client):
    response = client.get("/webhookStatus")

    assert response.status_code == 200
    assert "timestamp" in response.json()


# ---------------------
# payment.captured
# ---------------------

def test_capture_confirms_booking_on_first_attempt(client, post_webhook, make_booking, db, sleeper):
    booking_id = make_booking("pay_cap_001")

    response = post_webhook("payment.captured", _captured("pay_cap_001", "order_cap_001"))

    assert response.status_code == 200
    body = response.json()
    assert body["booking_id"] == booking_id
    assert body["search_method"] == "paymentId"
    assert sleeper.calls == [2.0]

    booking = db.get(Booking, booking_id)
    assert booking.status == BookingStatus.CONFIRMED
    assert booking.payment_status == PaymentStatus.SUCCESS
    assert booking.webhook_processed is True
    assert booking.captured_at is not None
    assert booking.order_id == "order_cap_001"

    rows = db.execute(select(FlatBooking).where(FlatBooking.booking_id == booking_id)).scalars().all()
    assert {row.booking_status for row in rows} == {"confirmed"}
    assert {row.payment_status for row in rows} == {"success"}
    assert _count(db, PaymentWebhookEvent) == 1


def test_capture_waits_for_late_booking_write(
    client, post_webhook, make_booking, session_factory, sleeper, db
):
    created = {}

    # The client's write lands while the handler waits before its third lookup.
    sleeper.on_call(3, lambda: created.setdefault("id", make_booking("pay_late_001")))

    response = post_webhook("payment.captured", _captured("pay_late_001"))

    assert response.status_code == 200
    assert response.json()["booking_id"] == created["id"]
    assert sleeper.calls == [2.0, 3.0, 3.0]
    assert db.get(Booking, created["id"]).status == BookingStatus.CONFIRMED


def test_capture_falls_back_to_order_id(client, post_webhook, make_booking, db):
    booking_id = make_booking("pay_client_side", order_id="order_match_001")

    response = post_webhook("payment.captured", _captured("pay_gateway_side", "order_match_001"))

    assert response.status_code == 200
    assert response.json()["search_method"] == "orderId"
    booking = db.get(Booking, booking_id)
    assert booking.status == BookingStatus.CONFIRMED
    assert booking.payment_id == "pay_gateway_side"


def test_duplicate_capture_is_acknowledged_once(client, post_webhook, make_booking, db):
    booking_id = make_booking("pay_dup_001")

    first = post_webhook("payment.captured", _captured("pay_dup_001"))
    captured_at = db.get(Booking, booking_id).captured_at

    second = post_webhook("payment.captured", _captured("pay_dup_001"))

    assert first.status_code == 200
    assert second.status_code == 200
    assert second.json()["already_processed"] is True
    db.expire_all()
    assert db.get(Booking, booking_id).captured_at == captured_at
    assert _count(db, PaymentWebhookEvent) == 1


def test_capture_for_unknown_payment_is_404_after_all_attempts(client, post_webhook, sleeper):
    response = post_webhook("payment.captured", _captured("pay_nobody"))

    assert response.status_code == 404
    assert response.json() == {"error": "Booking not found", "payment_id": "pay_nobody"}
    assert sleeper.calls == [2.0, 3.0, 3.0, 3.0, 3.0]


def test_capture_for_cancelled_booking_is_not_applied(client, post_webhook, make_booking, db):
    booking_id = make_booking("pay_too_late")
    client.post("/payments/pay_too_late/cleanup")

    response = post_webhook("payment.captured", _captured("pay_too_late"))

    assert response.status_code == 200
    db.expire_all()
    booking = db.get(Booking, booking_id)
    assert booking.status == BookingStatus.CANCELLED
    assert booking.payment_status != PaymentStatus.SUCCESS


def test_capture_without_payment_entity_is_400(client, post_webhook):
    response = post_webhook("payment.captured")

    assert response.status_code == 400


# ---------------------
# payment.failed
# ---------------------

def test_failure_frees_only_that_bookings_slots(client, post_webhook, make_booking, db):
    failed_id = make_booking("pay_fail_001", time_slots=("10:00 AM", "10:10 AM"))
    other_id = make_booking("pay_other_001", time_slots=("10:20 AM", "10:30 AM"))

    response = post_webhook("payment.failed", _failed("pay_fail_001"))

    assert response.status_code == 200
    assert response.json()["slots_freed"] == 2
    assert response.json()["booking_id"] == failed_id

    slots = SlotRepository(db).get_slots_for_date(EVENT_DATE)
    assert slots["10:00 AM"] == "available"
    assert slots["10:10 AM"] == "available"
    assert slots["10:20 AM"] == "booked"
    assert slots["10:30 AM"] == "booked"

    booking = db.get(Booking, failed_id)
    assert booking.status == BookingStatus.CANCELLED
    assert booking.payment_status == PaymentStatus.FAILED
    assert booking.failed_at is not None
    assert booking.failure_reason == "Card declined by issuer"

    remaining = db.execute(select(FlatBooking.booking_id)).scalars().all()
    assert set(remaining) == {other_id}
    assert db.get(Booking, other_id).status == BookingStatus.PENDING


def test_failure_redelivery_frees_nothing(client, post_webhook, make_booking, db):
    make_booking("pay_fail_002")
    post_webhook("payment.failed", _failed("pay_fail_002"))

    again = post_webhook("payment.failed", _failed("pay_fail_002"))

    assert again.status_code == 200
    assert again.json()["slots_freed"] == 0
    assert again.json()["already_processed"] is True


def test_failure_for_unknown_payment_is_404(client, post_webhook):
    response = post_webhook("payment.failed", _failed("pay_ghost"))

    assert response.status_code == 404


def test_failure_reason_defaults_when_gateway_sends_none(client, post_webhook, make_booking, db):
    booking_id = make_booking("pay_fail_003")

    post_webhook("payment.failed", {"id": "pay_fail_003", "status": "failed"})

    assert db.get(Booking, booking_id).failure_reason == "Payment failed"


# ---------------------
# payment.authorized and others
# ---------------------

def test_authorized_marks_payment_without_waiting(client, post_webhook, make_booking, db, sleeper):
    booking_id = make_booking("pay_auth_001")

    response = post_webhook("payment.authorized", {"id": "pay_auth_001", "status": "authorized"})

    assert response.status_code == 200
    assert sleeper.calls == []
    booking = db.get(Booking, booking_id)
    assert booking.payment_status == PaymentStatus.AUTHORIZED
    assert booking.status == BookingStatus.PENDING
    assert booking.webhook_processed is True


def test_authorized_after_capture_keeps_success(client, post_webhook, make_booking, db):
    booking_id = make_booking("pay_auth_002")
    post_webhook("payment.captured", _captured("pay_auth_002"))

    response = post_webhook("payment.authorized", {"id": "pay_auth_002", "status": "authorized"})

    assert response.status_code == 200
    db.expire_all()
    assert db.get(Booking, booking_id).payment_status == PaymentStatus.SUCCESS


def test_authorized_without_booking_is_still_200(client, post_webhook):
    response = post_webhook("payment.authorized", {"id": "pay_auth_none"})

    assert response.status_code == 200


def test_other_events_are_acknowledged(client, post_webhook):
    response = post_webhook("order.paid")

    assert response.status_code == 200
    assert response.json() == {"message": "Webhook received"}


# ---------------------
# payload shape
# ---------------------

def _post_signed(client, sign, payload):
    body = json.dumps(payload).encode("utf-8")
    return client.post(
        "/razorpayWebhook",
        content=body,
        headers={"Content-Type": "application/json", "x-razorpay-signature": sign(body)},
    )


def test_other_event_with_partial_entity_is_acknowledged(client, sign):
    response = _post_signed(
        client,
        sign,
        {"event": "order.paid", "payload": {"payment": {"entity": {"amount": 1}}}},
    )

    assert response.status_code == 200
    assert response.json() == {"message": "Webhook received"}


def test_other_event_with_non_object_payment_is_acknowledged(client, sign):
    response = _post_signed(client, sign, {"event": "refund.created", "payload": {"payment": "x"}})

    assert response.status_code == 200


def test_other_event_with_non_object_payload_is_acknowledged(client, sign):
    response = _post_signed(client, sign, {"event": "refund.created", "payload": ["x"]})

    assert response.status_code == 200


def test_authorized_entity_without_id_is_still_200(client, sign, sleeper):
    response = _post_signed(
        client,
        sign,
        {"event": "payment.authorized", "payload": {"payment": {"entity": {"amount": 100}}}},
    )

    assert response.status_code == 200
    assert sleeper.calls == []


def test_capture_entity_without_id_is_400(client, sign, sleeper):
    response = _post_signed(
        client,
        sign,
        {"event": "payment.captured", "payload": {"payment": {"entity": {"amount": 100}}}},
    )

    assert response.status_code == 400
    assert sleeper.calls == []


def test_unexpected_error_becomes_500(client, post_webhook, make_booking, monkeypatch):
    make_booking("pay_boom_001")

    def explode(self, booking, payment_id, order_id):
        raise RuntimeError("database went away")

    monkeypatch.setattr(
        "event_registration.application.booking_service.BookingService.confirm_payment",
        explode,
    )

    response = post_webhook("payment.captured", _captured("pay_boom_001"))

    assert response.status_code == 500
    assert response.json() == {"error": "Internal server error"}


# ---------------------
# retried checkout on one order
# ---------------------

def test_earlier_failed_attempt_on_same_order_keeps_booking(client, post_webhook, make_booking, db):
    booking_id = make_booking("pay_second", order_id="order_retry_001")

    failed = post_webhook(
        "payment.failed",
        {**_failed("pay_first"), "order_id": "order_retry_001"},
    )

    assert failed.status_code == 200
    assert failed.json()["slots_freed"] == 0
    assert failed.json()["search_method"] == "orderId"
    slots = SlotRepository(db).get_slots_for_date(EVENT_DATE)
    assert slots["09:00 AM"] == "booked"

    captured = post_webhook("payment.captured", _captured("pay_second", "order_retry_001"))

    assert captured.status_code == 200
    booking = db.get(Booking, booking_id)
    assert booking.status == BookingStatus.CONFIRMED
    assert booking.payment_id == "pay_second"
    assert booking.payment_status == PaymentStatus.SUCCESS
