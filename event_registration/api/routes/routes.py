import logging
from typing import Callable

from fastapi import APIRouter, Depends, HTTPException, Path, Query, status
from sqlalchemy.orm import Session, sessionmaker

from event_registration.api.dependencies import (
    get_db,
    get_gateway,
    get_session_factory,
    get_sleep,
)
from event_registration.api.schemas.schemas import (
    DATE_PATTERN,
    AwaitPaymentResponse,
    BookingRequest,
    BookingResponse,
    CancelBookingRequest,
    CancelBookingResponse,
    CleanupResponse,
    FlatBookingResponse,
    PaymentStatusResponse,
    PaymentSummary,
    QuoteRequest,
    QuoteResponse,
    SlotMapResponse,
    SlotPriceResponse,
)
from event_registration.application.booking_service import BookingService
from event_registration.application.status_poller import (
    PaymentStatusPoller,
    SessionStatusSource,
)
from event_registration.domain.event_config import EVENT_CONFIG
from event_registration.domain.exceptions import (
    BookingNotFoundError,
    DuplicatePaymentError,
    GatewayNotConfiguredError,
    InvalidSignatureError,
    InvalidStateTransitionError,
    NonContiguousSlotsError,
    SlotUnavailableError,
    UnknownPerformanceTypeError,
)
from event_registration.domain.state_machine import SlotStatus
from event_registration.domain.time_slots import quote, sort_labels
from event_registration.infrastructure.config import Settings, get_settings
from event_registration.infrastructure.db.models import Booking
from event_registration.infrastructure.payments.razorpay_gateway import RazorpayGateway
from event_registration.infrastructure.repositories.slot_repository import SlotRepository


router = APIRouter()
logger = logging.getLogger(__name__)


def _booking_response(booking: Booking) -> BookingResponse:
    return BookingResponse(
        booking_id=booking.id,
        date=booking.event_date,
        time_slots=list(booking.time_slots),
        performance_type=booking.performance_type,
        status=booking.status.value,
        failure_reason=booking.failure_reason,
        payment=PaymentSummary(
            payment_id=booking.payment_id,
            order_id=booking.order_id,
            amount=booking.amount,
            currency=booking.currency,
            status=booking.payment_status.value,
            webhook_processed=booking.webhook_processed,
        ),
    )


@router.get("/health")
def health():
    return {"message": f"{EVENT_CONFIG.event_name} registration service is running"}


@router.get("/slots/{event_date}", response_model=SlotMapResponse)
def get_slots(event_date: str = Path(pattern=DATE_PATTERN), db: Session = Depends(get_db)):
    repo = SlotRepository(db)
    repo.initialize_slots_for_date(event_date)
    return SlotMapResponse(date=event_date, slots=repo.get_slots_for_date(event_date))


@router.get("/slots/{event_date}/available", response_model=list[str])
def get_available_slots(event_date: str = Path(pattern=DATE_PATTERN), db: Session = Depends(get_db)):
    repo = SlotRepository(db)
    repo.initialize_slots_for_date(event_date)
    slots = repo.get_slots_for_date(event_date)
    return sort_labels(
        [label for label, state in slots.items() if state == SlotStatus.AVAILABLE.value]
    )


@router.post("/bookings/quote", response_model=QuoteResponse)
def quote_booking(request: QuoteRequest):
    try:
        result = quote(
            request.time_slots,
            request.performance_type,
            request.participant_details,
        )
    except UnknownPerformanceTypeError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid time slot label",
        ) from exc

    return QuoteResponse(
        performance_type=result.performance_type,
        participant_count=result.participant_count,
        slots=[
            SlotPriceResponse(
                time_slot=slot.label,
                price_per_person=slot.price_per_person,
                amount=slot.amount,
            )
            for slot in result.slots
        ],
        total_amount=result.total_amount,
        total_amount_paise=result.total_amount_paise,
    )


@router.post("/bookings", response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
def create_booking(
    request: BookingRequest,
    db: Session = Depends(get_db),
    gateway: RazorpayGateway = Depends(get_gateway),
):
    service = BookingService(db, gateway=gateway)

    try:
        booking = service.create_booking(
            event_date=request.date,
            time_slots=request.time_slots,
            performance_type=request.performance_type,
            participant_details=request.participant_details,
            payment_id=request.payment.payment_id,
            order_id=request.payment.order_id,
            signature=request.payment.signature,
            amount=request.payment.amount,
            currency=request.payment.currency,
        )
    except (UnknownPerformanceTypeError, NonContiguousSlotsError, InvalidSignatureError) as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc
    except (SlotUnavailableError, DuplicatePaymentError) as exc:
        logger.info("Booking rejected for payment %s: %s", request.payment.payment_id, exc)
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=str(exc),
        ) from exc
    except GatewayNotConfiguredError as exc:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=str(exc),
        ) from exc

    return _booking_response(booking)


@router.get("/bookings", response_model=list[FlatBookingResponse])
def list_bookings(
    date: str | None = Query(default=None, pattern=DATE_PATTERN),
    db: Session = Depends(get_db),
):
    """Per-slot reporting rows, newest first; all dates when no date is given."""
    rows = BookingService(db).list_flat_bookings(date)
    return [FlatBookingResponse.model_validate(row) for row in rows]


@router.post("/bookings/{booking_id}/cancel", response_model=CancelBookingResponse)
def cancel_booking(
    booking_id: str,
    request: CancelBookingRequest | None = None,
    db: Session = Depends(get_db),
):
    reason = request.reason if request else CancelBookingRequest().reason
    try:
        booking, freed = BookingService(db).cancel_by_admin(booking_id, reason)
    except BookingNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(exc),
        ) from exc
    except InvalidStateTransitionError as exc:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Confirmed bookings cannot be cancelled",
        ) from exc

    return CancelBookingResponse(
        booking_id=booking.id,
        status=booking.status.value,
        slots_freed=freed,
    )


@router.get("/bookings/{booking_id}", response_model=BookingResponse)
def get_booking(booking_id: str, db: Session = Depends(get_db)):
    try:
        booking = BookingService(db).get_booking(booking_id)
    except BookingNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(exc),
        ) from exc
    return _booking_response(booking)


@router.get("/payments/{payment_id}/status", response_model=PaymentStatusResponse)
def payment_status(payment_id: str, db: Session = Depends(get_db)):
    result = BookingService(db).check_payment_status(payment_id)
    return PaymentStatusResponse(
        payment_id=payment_id,
        status=result.status,
        webhook_processed=result.webhook_processed,
        booking_id=result.booking_id,
        failure_reason=result.failure_reason,
    )


@router.post("/payments/{payment_id}/cleanup", response_model=CleanupResponse)
def cleanup_payment(payment_id: str, db: Session = Depends(get_db)):
    cancelled = BookingService(db).cleanup_failed_booking(payment_id)
    return CleanupResponse(payment_id=payment_id, bookings_cancelled=cancelled)


@router.get("/payments/{payment_id}/await", response_model=AwaitPaymentResponse)
def await_payment(
    payment_id: str,
    settings: Settings = Depends(get_settings),
    session_factory: sessionmaker = Depends(get_session_factory),
    sleep: Callable[[float], None] = Depends(get_sleep),
):
    source = SessionStatusSource(session_factory)
    poller = PaymentStatusPoller(
        check=source.check,
        cleanup=source.cleanup,
        interval_seconds=settings.status_poll_interval_seconds,
        timeout_seconds=settings.status_poll_timeout_seconds,
        sleep=sleep,
    )
    outcome = poller.wait(payment_id)
    return AwaitPaymentResponse(
        payment_id=payment_id,
        confirmed=outcome.confirmed,
        status=outcome.status,
        reason=outcome.reason,
        booking_id=outcome.booking_id,
    )
