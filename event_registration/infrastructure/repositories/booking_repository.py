# event_registration/infrastructure/repositories/booking_repository.py

from datetime import datetime

from sqlalchemy.orm import Session
from sqlalchemy import delete, select, update

from event_registration.infrastructure.db.models import (
    Booking,
    FlatBooking,
    PaymentWebhookEvent,
)
from event_registration.domain.state_machine import BookingStatus


class BookingRepository:

    def __init__(self, db: Session):
        self.db = db

    def get_by_id(
        self,
        booking_id: str,
    ) -> Booking | None:

        stmt = select(Booking).where(Booking.id == booking_id)
        return self.db.execute(stmt).scalar_one_or_none()

    def lock_by_id(self, booking_id: str) -> Booking | None:
        """Re-reads the row under a write lock, discarding any cached state."""
        stmt = (
            select(Booking)
            .where(Booking.id == booking_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return self.db.execute(stmt).scalar_one_or_none()

    def get_by_payment_id(self, payment_id: str) -> Booking | None:
        stmt = (
            select(Booking)
            .where(Booking.payment_id == payment_id)
            .order_by(Booking.created_at.desc())
            .execution_options(populate_existing=True)
        )
        return self.db.execute(stmt).scalars().first()

    def get_by_order_id(self, order_id: str) -> Booking | None:
        stmt = (
            select(Booking)
            .where(Booking.order_id == order_id)
            .order_by(Booking.created_at.desc())
            .execution_options(populate_existing=True)
        )
        return self.db.execute(stmt).scalars().first()

    def list_by_payment_id(self, payment_id: str) -> list[Booking]:
        stmt = select(Booking).where(Booking.payment_id == payment_id)
        return list(self.db.execute(stmt).scalars().all())

    def list_stale_pending_ids(self, cutoff: datetime) -> list[str]:
        stmt = (
            select(Booking.id)
            .where(Booking.status == BookingStatus.PENDING)
            .where(Booking.created_at <= cutoff)
            .order_by(Booking.created_at)
        )
        return list(self.db.execute(stmt).scalars().all())

    def add(self, booking: Booking, flat_rows: list[FlatBooking]) -> Booking:
        self.db.add(booking)
        self.db.flush()
        for row in flat_rows:
            row.booking_id = booking.id
            self.db.add(row)
        self.db.flush()
        return booking

    def update_status(
        self,
        booking: Booking,
        new_status: BookingStatus,
    ) -> None:

        booking.status = new_status

    def list_flat_rows(self, event_date: str | None = None) -> list[FlatBooking]:
        stmt = select(FlatBooking).order_by(FlatBooking.created_at.desc())
        if event_date:
            stmt = stmt.where(FlatBooking.event_date == event_date)
        return list(self.db.execute(stmt).scalars().all())

    def delete_flat_rows(self, booking_id: str) -> int:
        result = self.db.execute(
            delete(FlatBooking).where(FlatBooking.booking_id == booking_id)
        )
        return result.rowcount or 0

    def sync_flat_rows(self, booking: Booking) -> None:
        self.db.execute(
            update(FlatBooking)
            .where(FlatBooking.booking_id == booking.id)
            .values(
                payment_id=booking.payment_id,
                payment_status=booking.payment_status.value,
                booking_status=booking.status.value,
            )
        )

    def has_processed_event(
        self,
        provider: str,
        event_type: str,
        payment_id: str,
    ) -> bool:
        stmt = (
            select(PaymentWebhookEvent.id)
            .where(PaymentWebhookEvent.provider == provider)
            .where(PaymentWebhookEvent.event_type == event_type)
            .where(PaymentWebhookEvent.payment_id == payment_id)
        )
        return self.db.execute(stmt).first() is not None

    def record_event(
        self,
        provider: str,
        event_type: str,
        payment_id: str,
        booking_id: str,
        payload_hash: str,
    ) -> None:
        if self.has_processed_event(provider, event_type, payment_id):
            return

        self.db.add(
            PaymentWebhookEvent(
                provider=provider,
                event_type=event_type,
                payment_id=payment_id,
                booking_id=booking_id,
                payload_hash=payload_hash,
                status="PROCESSED",
            )
        )
