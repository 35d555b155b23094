# event_registration/infrastructure/db/models.py

import secrets
import time
from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    CheckConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from event_registration.infrastructure.db.session import Base
from event_registration.domain.state_machine import (
    BookingStatus,
    PaymentStatus,
    SlotStatus,
)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def new_booking_id() -> str:
    return f"booking_{int(time.time() * 1000)}_{secrets.token_hex(4)}"


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


class SlotState(Base):
    """
    One bookable time slot on one date.

    Rows for a date are created together on first access and are never
    deleted; only ``status`` changes.
    """

    __tablename__ = "slot_states"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid4()),
    )
    event_date: Mapped[str] = mapped_column(String(10), nullable=False, index=True)
    label: Mapped[str] = mapped_column(String(16), nullable=False)
    status: Mapped[SlotStatus] = mapped_column(
        Enum(SlotStatus, name="slot_status", values_callable=_enum_values),
        nullable=False,
        default=SlotStatus.AVAILABLE,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utc_now,
        onupdate=utc_now,
        nullable=False,
    )

    __table_args__ = (
        UniqueConstraint("event_date", "label", name="uq_slot_date_label"),
    )


class Booking(Base):
    """
    Authoritative booking record, with the payment sub-record embedded.
    Domain controls status transitions.
    """

    __tablename__ = "bookings"

    id: Mapped[str] = mapped_column(
        String(64),
        primary_key=True,
        default=new_booking_id,
    )
    event_date: Mapped[str] = mapped_column(String(10), nullable=False)
    time_slots: Mapped[list] = mapped_column(JSON, nullable=False)
    performance_type: Mapped[str] = mapped_column(String(32), nullable=False)
    participant_details: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    status: Mapped[BookingStatus] = mapped_column(
        Enum(BookingStatus, name="booking_status", values_callable=_enum_values),
        nullable=False,
        default=BookingStatus.PENDING,
        index=True,
    )
    failure_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    payment_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    order_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    payment_signature: Mapped[str | None] = mapped_column(String(255), nullable=True)
    amount: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    currency: Mapped[str] = mapped_column(String(8), nullable=False, default="INR")
    payment_status: Mapped[PaymentStatus] = mapped_column(
        Enum(PaymentStatus, name="payment_status", values_callable=_enum_values),
        nullable=False,
        default=PaymentStatus.PENDING,
    )
    webhook_processed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    captured_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    failed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utc_now,
        nullable=False,
        index=True,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utc_now,
        onupdate=utc_now,
        nullable=False,
    )

    __table_args__ = (
        CheckConstraint("amount >= 0", name="ck_booking_amount_nonnegative"),
    )


class FlatBooking(Base):
    """Per-slot reporting projection of a booking. Never authoritative."""

    __tablename__ = "flat_bookings"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid4()),
    )
    booking_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("bookings.id"),
        nullable=False,
        index=True,
    )
    event_date: Mapped[str] = mapped_column(String(10), nullable=False)
    time_slot: Mapped[str] = mapped_column(String(16), nullable=False)
    performance_type: Mapped[str] = mapped_column(String(32), nullable=False)
    performance_type_name: Mapped[str] = mapped_column(String(64), nullable=False)
    participant_name: Mapped[str] = mapped_column(Text, nullable=False, default="")
    price_per_person: Mapped[int] = mapped_column(Integer, nullable=False)
    amount_per_slot: Mapped[int] = mapped_column(Integer, nullable=False)
    total_slots: Mapped[int] = mapped_column(Integer, nullable=False)
    payment_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    payment_status: Mapped[str] = mapped_column(String(16), nullable=False)
    booking_status: Mapped[str] = mapped_column(String(16), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utc_now,
        nullable=False,
    )


class PaymentWebhookEvent(Base):
    __tablename__ = "payment_webhook_events"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid4()),
    )
    provider: Mapped[str] = mapped_column(String(32), nullable=False)
    event_type: Mapped[str] = mapped_column(String(64), nullable=False)
    payment_id: Mapped[str] = mapped_column(String(128), nullable=False)
    booking_id: Mapped[str] = mapped_column(String(64), nullable=False)
    payload_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="PROCESSED")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utc_now,
        nullable=False,
    )

    __table_args__ = (
        UniqueConstraint(
            "provider",
            "event_type",
            "payment_id",
            name="uq_webhook_provider_event_payment",
        ),
    )
