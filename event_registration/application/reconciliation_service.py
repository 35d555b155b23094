import hashlib
import logging
import time
from dataclasses import dataclass, field
from typing import Callable

from sqlalchemy.orm import Session

from event_registration.application.booking_service import BookingService
from event_registration.domain.state_machine import BookingStatus
from event_registration.infrastructure.config import Settings
from event_registration.infrastructure.db.models import Booking
from event_registration.infrastructure.payments.razorpay_gateway import PROVIDER
from event_registration.infrastructure.repositories.booking_repository import BookingRepository

logger = logging.getLogger(__name__)

PAYMENT_CAPTURED = "payment.captured"
PAYMENT_FAILED = "payment.failed"
PAYMENT_AUTHORIZED = "payment.authorized"


@dataclass(frozen=True)
class PaymentEvent:
    event_type: str
    payment_id: str | None = None
    order_id: str | None = None
    error_reason: str | None = None


@dataclass
class WebhookResult:
    status_code: int
    body: dict = field(default_factory=dict)


class PaymentReconciliationService:
    """
    Applies gateway payment events to bookings.

    The client writes its booking optimistically, so a webhook can arrive
    before that write has committed. Captured and failed events therefore
    look the booking up with a bounded wait:

        initial delay, then up to ``max_attempts`` lookups spaced by
        ``retry_delay`` (no wait after the last attempt).

    With the defaults (2 s, 5 attempts, 3 s) a webhook is held at most 14 s.
    """

    def __init__(
        self,
        db: Session,
        settings: Settings,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.db = db
        self.settings = settings
        self._sleep = sleep
        self.booking_repository = BookingRepository(db)
        self.booking_service = BookingService(db)

    def handle(self, event: PaymentEvent, raw_body: bytes) -> WebhookResult:
        logger.info(
            "Received webhook %s for payment %s",
            event.event_type,
            event.payment_id,
        )
        if event.event_type == PAYMENT_CAPTURED:
            return self._handle_captured(event, raw_body)
        if event.event_type == PAYMENT_FAILED:
            return self._handle_failed(event, raw_body)
        if event.event_type == PAYMENT_AUTHORIZED:
            return self._handle_authorized(event)

        return WebhookResult(200, {"message": "Webhook received"})

    # -----------------------------
    # Lookup
    # -----------------------------
    def find_booking(
        self,
        payment_id: str | None,
        order_id: str | None,
    ) -> tuple[Booking | None, str | None]:
        if payment_id:
            booking = self.booking_repository.get_by_payment_id(payment_id)
            if booking:
                return booking, "paymentId"
        if order_id:
            booking = self.booking_repository.get_by_order_id(order_id)
            if booking:
                return booking, "orderId"
        return None, None

    def locate_booking(
        self,
        payment_id: str | None,
        order_id: str | None,
    ) -> tuple[Booking | None, str | None]:
        max_attempts = self.settings.webhook_max_lookup_attempts
        retry_delay = self.settings.webhook_retry_delay_seconds

        self._sleep(self.settings.webhook_initial_delay_seconds)

        for attempt in range(1, max_attempts + 1):
            # End the previous read so this attempt sees freshly committed rows.
            self.db.rollback()
            booking, method = self.find_booking(payment_id, order_id)
            if booking:
                logger.info(
                    "Booking %s located by %s on attempt %s/%s",
                    booking.id,
                    method,
                    attempt,
                    max_attempts,
                )
                return booking, method

            if attempt == max_attempts:
                logger.warning(
                    "No booking found for payment %s (order %s) after %s attempts.",
                    payment_id,
                    order_id,
                    max_attempts,
                )
                break

            logger.warning(
                "Booking not found for payment %s (attempt %s/%s). Retrying in %.1f seconds...",
                payment_id,
                attempt,
                max_attempts,
                retry_delay,
            )
            self._sleep(retry_delay)

        return None, None

    # -----------------------------
    # Event handlers
    # -----------------------------
    def _handle_captured(self, event: PaymentEvent, raw_body: bytes) -> WebhookResult:
        found, method = self.locate_booking(event.payment_id, event.order_id)
        if found is None:
            return _not_found(event)

        booking = self.booking_repository.lock_by_id(found.id)
        if booking is None:
            return _not_found(event)

        body = {
            "payment_id": event.payment_id,
            "booking_id": booking.id,
            "search_method": method,
        }

        if booking.status == BookingStatus.CONFIRMED:
            logger.info("Capture for booking %s already applied", booking.id)
            return WebhookResult(
                200,
                {"message": "Payment already processed", "already_processed": True, **body},
            )

        if booking.status == BookingStatus.CANCELLED:
            logger.warning(
                "Payment %s captured for cancelled booking %s; refund required",
                event.payment_id,
                booking.id,
            )
            return WebhookResult(
                200,
                {"message": "Booking already cancelled; capture not applied", **body},
            )

        self.booking_service.confirm_payment(booking, event.payment_id, event.order_id)
        self._record(event, booking, raw_body)
        return WebhookResult(200, {"message": "Payment captured and booking confirmed", **body})

    def _handle_failed(self, event: PaymentEvent, raw_body: bytes) -> WebhookResult:
        found, method = self.locate_booking(event.payment_id, event.order_id)
        if found is None:
            return _not_found(event)

        booking = self.booking_repository.lock_by_id(found.id)
        if booking is None:
            return _not_found(event)

        body = {
            "payment_id": event.payment_id,
            "booking_id": booking.id,
            "search_method": method,
        }

        # An order can carry a failed attempt followed by a successful one;
        # the booking then belongs to the later payment.
        if (
            method == "orderId"
            and booking.payment_id
            and booking.payment_id != event.payment_id
        ):
            logger.warning(
                "Ignoring payment.failed for %s: booking %s holds payment %s on the same order",
                event.payment_id,
                booking.id,
                booking.payment_id,
            )
            return WebhookResult(
                200,
                {"message": "Failed attempt superseded by another payment", "slots_freed": 0, **body},
            )

        if booking.status == BookingStatus.CANCELLED:
            return WebhookResult(
                200,
                {
                    "message": "Booking already cancelled",
                    "slots_freed": 0,
                    "already_processed": True,
                    **body,
                },
            )

        if booking.status == BookingStatus.CONFIRMED:
            logger.warning(
                "Ignoring payment.failed for confirmed booking %s (payment %s)",
                booking.id,
                event.payment_id,
            )
            return WebhookResult(
                200,
                {"message": "Booking already confirmed; failure ignored", "slots_freed": 0, **body},
            )

        freed = self.booking_service.cancel_booking(
            booking,
            reason=event.error_reason or "Payment failed",
            payment_failed=True,
        )
        self._record(event, booking, raw_body)
        return WebhookResult(
            200,
            {
                "message": "Payment failure recorded and booking cancelled",
                "slots_freed": freed,
                **body,
            },
        )

    def _handle_authorized(self, event: PaymentEvent) -> WebhookResult:
        # Advisory only, so no retry wait.
        booking, method = self.find_booking(event.payment_id, event.order_id)
        if booking is None:
            logger.info("payment.authorized for %s with no booking yet", event.payment_id)
            return WebhookResult(
                200,
                {"message": "Payment authorized; booking not found", "payment_id": event.payment_id},
            )

        self.booking_service.mark_authorized(booking)
        return WebhookResult(
            200,
            {
                "message": "Payment authorized",
                "payment_id": event.payment_id,
                "booking_id": booking.id,
                "search_method": method,
            },
        )

    def _record(self, event: PaymentEvent, booking: Booking, raw_body: bytes) -> None:
        self.booking_repository.record_event(
            provider=PROVIDER,
            event_type=event.event_type,
            payment_id=event.payment_id or booking.payment_id or "",
            booking_id=booking.id,
            payload_hash=hashlib.sha256(raw_body).hexdigest(),
        )
        self.db.flush()


def _not_found(event: PaymentEvent) -> WebhookResult:
    return WebhookResult(404, {"error": "Booking not found", "payment_id": event.payment_id})
