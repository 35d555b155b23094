# tests/conftest.py

import hashlib
import hmac
import json
import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["CLEANUP_WORKER_ENABLED"] = "false"

import pytest
import razorpay
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool

from event_registration.api.dependencies import get_gateway, get_session_factory, get_sleep
from event_registration.application.booking_service import BookingService
from event_registration.infrastructure.config import Settings, get_settings
from event_registration.infrastructure.db.session import (
    Base,
    build_engine,
    build_session_factory,
    get_db_session,
)
from event_registration.infrastructure.payments.razorpay_gateway import RazorpayGateway
from event_registration.main import app

EVENT_DATE = "2025-08-16"
KEY_ID = "rzp_test_key"
KEY_SECRET = "test_key_secret"
WEBHOOK_SECRET = "test_webhook_secret"


class FakeOrderResource:

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.created = []

    def create(self, data):
        if self.fail:
            raise razorpay.errors.BadRequestError("Authentication failed")
        self.created.append(data)
        return {
            "id": f"order_test_{len(self.created)}",
            "entity": "order",
            "amount": data["amount"],
            "currency": data["currency"],
            "receipt": data.get("receipt"),
            "status": "created",
        }


class FakeRazorpayClient:
    """Fake order API with the SDK's real signature utilities."""

    orders = FakeOrderResource()

    def __init__(self, auth=None, **kwargs):
        self.auth = auth
        self.order = self.orders
        self.utility = razorpay.Client(auth=auth).utility


class RecordingSleep:
    """Records requested delays; an optional hook runs on a given call number."""

    def __init__(self):
        self.calls = []
        self.hooks = {}

    def on_call(self, number, hook):
        self.hooks[number] = hook

    def __call__(self, seconds):
        self.calls.append(seconds)
        hook = self.hooks.get(len(self.calls))
        if hook is not None:
            hook()


@pytest.fixture
def settings():
    return Settings(
        razorpay_key_id=KEY_ID,
        razorpay_key_secret=KEY_SECRET,
        razorpay_webhook_secret=WEBHOOK_SECRET,
        cleanup_worker_enabled=False,
    )


@pytest.fixture
def engine():
    engine = build_engine("sqlite://", poolclass=StaticPool)
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def fake_orders():
    FakeRazorpayClient.orders = FakeOrderResource()
    return FakeRazorpayClient.orders


@pytest.fixture
def gateway(settings, fake_orders):
    return RazorpayGateway(settings, client_factory=FakeRazorpayClient)


@pytest.fixture
def sleeper():
    return RecordingSleep()


@pytest.fixture
def client(settings, session_factory, gateway, sleeper):
    app.dependency_overrides[get_settings] = lambda: settings
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_gateway] = lambda: gateway
    app.dependency_overrides[get_sleep] = lambda: sleeper
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def make_booking(session_factory):
    """Commits a pending booking through the service and returns its id."""

    def _make(
        payment_id="pay_test_001",
        time_slots=("09:00 AM", "09:10 AM"),
        performance_type="solo",
        participant_details=None,
        order_id=None,
        event_date=EVENT_DATE,
    ):
        with get_db_session(session_factory) as session:
            booking = BookingService(session).create_booking(
                event_date=event_date,
                time_slots=list(time_slots),
                performance_type=performance_type,
                participant_details=participant_details or {"fullName": "Asha Rao"},
                payment_id=payment_id,
                order_id=order_id,
            )
            return booking.id

    return _make


@pytest.fixture
def sign():
    def _sign(body: bytes, secret: str = WEBHOOK_SECRET) -> str:
        return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()

    return _sign


@pytest.fixture
def post_webhook(client, sign):
    """Posts a correctly signed webhook for the given event and payment entity."""

    def _post(event, entity=None):
        payload = {"entity": "event", "event": event, "payload": {}}
        if entity is not None:
            payload["payload"] = {"payment": {"entity": entity}}
        body = json.dumps(payload).encode("utf-8")
        return client.post(
            "/razorpayWebhook",
            content=body,
            headers={
                "Content-Type": "application/json",
                "x-razorpay-signature": sign(body),
            },
        )

    return _post
