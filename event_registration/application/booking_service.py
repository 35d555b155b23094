import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy.orm import Session

from event_registration.domain.event_config import EVENT_CONFIG, EventConfig
from event_registration.domain.exceptions import (
    BookingNotFoundError,
    DuplicatePaymentError,
    NonContiguousSlotsError,
    SlotUnavailableError,
    UnknownPerformanceTypeError,
)
from event_registration.domain.state_machine import (
    BookingStateMachine,
    BookingStatus,
    PaymentStatus,
    SlotStatus,
    can_advance_payment,
)
from event_registration.domain.time_slots import (
    are_contiguous,
    generate_slot_labels,
    participant_display_name,
    quote,
    sort_labels,
)
from event_registration.infrastructure.db.models import Booking, FlatBooking, utc_now
from event_registration.infrastructure.payments.razorpay_gateway import RazorpayGateway
from event_registration.infrastructure.repositories.booking_repository import BookingRepository
from event_registration.infrastructure.repositories.slot_repository import SlotRepository

logger = logging.getLogger(__name__)

DEFAULT_FAILURE_REASON = "Payment was declined or failed"


@dataclass(frozen=True)
class PaymentStatusCheck:
    status: str
    webhook_processed: bool
    booking_id: str | None = None
    failure_reason: str | None = None


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes for timezone-aware columns.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class BookingService:
    """Application service coordinating the booking lifecycle."""

    def __init__(
        self,
        db: Session,
        gateway: RazorpayGateway | None = None,
        config: EventConfig = EVENT_CONFIG,
    ):
        self.db = db
        self.gateway = gateway
        self.config = config
        self.booking_repository = BookingRepository(db)
        self.slot_repository = SlotRepository(db, config)

    def create_booking(
        self,
        event_date: str,
        time_slots: list[str],
        performance_type: str,
        participant_details: dict,
        payment_id: str,
        order_id: str | None = None,
        signature: str | None = None,
        amount: int | None = None,
        currency: str = "INR",
    ) -> Booking:
        """
        Records the client's optimistic booking right after the gateway
        reported success in the browser. The booking stays pending until
        the webhook (or the poller/sweep) settles it.
        """
        perf = self.config.performance_type(performance_type)
        if perf is None:
            raise UnknownPerformanceTypeError(f"Unknown performance type: {performance_type}")

        known = set(generate_slot_labels(self.config))
        unknown = [label for label in time_slots if label not in known]
        if unknown:
            raise SlotUnavailableError(event_date, unknown)

        labels = sort_labels(list(dict.fromkeys(time_slots)))
        if not are_contiguous(labels, self.config):
            raise NonContiguousSlotsError("Selected time slots must be consecutive")

        if self.booking_repository.get_by_payment_id(payment_id):
            raise DuplicatePaymentError(f"Payment {payment_id} is already linked to a booking")

        if self.gateway is not None and order_id and signature:
            self.gateway.verify_payment_signature(order_id, payment_id, signature)

        self.slot_repository.initialize_slots_for_date(event_date)
        locked = self.slot_repository.lock_slots(event_date, labels)
        taken = [slot.label for slot in locked if slot.status != SlotStatus.AVAILABLE]
        if taken:
            raise SlotUnavailableError(event_date, sort_labels(taken))
        self.slot_repository.reserve(event_date, labels)

        pricing = quote(labels, performance_type, participant_details, self.config)
        booking = Booking(
            event_date=event_date,
            time_slots=labels,
            performance_type=performance_type,
            participant_details=participant_details,
            status=BookingStatus.PENDING,
            payment_id=payment_id,
            order_id=order_id,
            payment_signature=signature,
            amount=amount if amount is not None else pricing.total_amount_paise,
            currency=currency,
            payment_status=PaymentStatus.PENDING,
            webhook_processed=False,
        )
        participant_name = participant_display_name(performance_type, participant_details)
        flat_rows = [
            FlatBooking(
                event_date=event_date,
                time_slot=slot.label,
                performance_type=performance_type,
                performance_type_name=perf.name,
                participant_name=participant_name,
                price_per_person=slot.price_per_person,
                amount_per_slot=slot.amount,
                total_slots=len(labels),
                payment_id=payment_id,
                payment_status=PaymentStatus.PENDING.value,
                booking_status=BookingStatus.PENDING.value,
            )
            for slot in pricing.slots
        ]
        self.booking_repository.add(booking, flat_rows)

        logger.info(
            "Pending booking created. booking_id=%s date=%s slots=%s payment_id=%s",
            booking.id,
            event_date,
            labels,
            payment_id,
        )
        return booking

    def get_booking(self, booking_id: str) -> Booking:
        booking = self.booking_repository.get_by_id(booking_id)
        if not booking:
            raise BookingNotFoundError("Booking not found")
        return booking

    def confirm_payment(
        self,
        booking: Booking,
        payment_id: str | None,
        order_id: str | None,
    ) -> None:
        self._transition(booking, BookingStatus.CONFIRMED)
        booking.payment_status = PaymentStatus.SUCCESS
        booking.captured_at = utc_now()
        booking.webhook_processed = True
        booking.failure_reason = None
        if payment_id:
            booking.payment_id = payment_id
        if order_id:
            booking.order_id = order_id
        self.booking_repository.sync_flat_rows(booking)
        self.db.flush()

        logger.info("Booking confirmed. booking_id=%s payment_id=%s", booking.id, booking.payment_id)

    def mark_authorized(self, booking: Booking) -> None:
        if can_advance_payment(booking.payment_status, PaymentStatus.AUTHORIZED):
            booking.payment_status = PaymentStatus.AUTHORIZED
        booking.webhook_processed = True
        self.booking_repository.sync_flat_rows(booking)
        self.db.flush()

    def cancel_booking(
        self,
        booking: Booking,
        reason: str,
        payment_failed: bool = False,
    ) -> int:
        """
        Compensating step for a booking that will never be paid: frees every
        slot it holds, drops its report rows and marks it cancelled.
        Returns the number of slots released.
        """
        self._transition(booking, BookingStatus.CANCELLED)
        freed = self.slot_repository.release(booking.event_date, list(booking.time_slots))
        self.booking_repository.delete_flat_rows(booking.id)

        booking.failure_reason = reason
        if payment_failed:
            booking.payment_status = PaymentStatus.FAILED
            booking.failed_at = utc_now()
            booking.webhook_processed = True
        self.db.flush()

        logger.info(
            "Booking cancelled. booking_id=%s slots_freed=%s reason=%s",
            booking.id,
            freed,
            reason,
        )
        return freed

    def list_flat_bookings(self, event_date: str | None = None) -> list[FlatBooking]:
        return self.booking_repository.list_flat_rows(event_date)

    def cancel_by_admin(self, booking_id: str, reason: str) -> tuple[Booking, int]:
        """
        Administrative cancellation of a pending booking. Cancelling an
        already-cancelled booking frees nothing; a confirmed booking is final
        and raises InvalidStateTransitionError.
        """
        booking = self.booking_repository.lock_by_id(booking_id)
        if booking is None:
            raise BookingNotFoundError("Booking not found")
        if booking.status == BookingStatus.CANCELLED:
            return booking, 0

        freed = self.cancel_booking(booking, reason)
        logger.info("Booking %s cancelled by administrator", booking.id)
        return booking, freed

    def check_payment_status(self, payment_id: str) -> PaymentStatusCheck:
        booking = self.booking_repository.get_by_payment_id(payment_id)
        if booking is None:
            return PaymentStatusCheck(status="not_found", webhook_processed=False)

        if booking.status == BookingStatus.CONFIRMED:
            status = "confirmed"
        elif booking.status == BookingStatus.CANCELLED:
            status = "cancelled"
        elif booking.payment_status == PaymentStatus.SUCCESS:
            status = "confirmed"
        elif booking.payment_status == PaymentStatus.FAILED:
            status = "cancelled"
        else:
            status = "pending"

        return PaymentStatusCheck(
            status=status,
            webhook_processed=booking.webhook_processed,
            booking_id=booking.id,
            failure_reason=booking.failure_reason,
        )

    def cleanup_failed_booking(
        self,
        payment_id: str,
        reason: str = "Payment could not be verified",
    ) -> int:
        """
        Cancels any still-pending booking carrying this payment id.
        Confirmed bookings are left alone; repeated calls are no-ops.
        """
        cancelled = 0
        for candidate in self.booking_repository.list_by_payment_id(payment_id):
            booking = self.booking_repository.lock_by_id(candidate.id)
            if booking is None or booking.status != BookingStatus.PENDING:
                continue
            self.cancel_booking(booking, reason)
            cancelled += 1
        return cancelled

    def expire_pending_booking(self, booking_id: str, cutoff: datetime) -> bool:
        """Cancels the booking only if, re-read under lock, it is still pending and stale."""
        booking = self.booking_repository.lock_by_id(booking_id)
        if booking is None or booking.status != BookingStatus.PENDING:
            return False
        if _as_utc(booking.created_at) > _as_utc(cutoff):
            return False

        self.cancel_booking(booking, "Payment not confirmed in time")
        return True

    def _transition(self, booking: Booking, to_status: BookingStatus) -> None:
        BookingStateMachine.validate_transition(booking.status, to_status)
        self.booking_repository.update_status(booking, to_status)
