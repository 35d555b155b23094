# event_registration/domain/state_machine.py

from enum import Enum
from typing import Dict, Set

from event_registration.domain.exceptions import InvalidStateTransitionError


class BookingStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    AUTHORIZED = "authorized"
    SUCCESS = "success"
    FAILED = "failed"


class SlotStatus(str, Enum):
    AVAILABLE = "available"
    BOOKED = "booked"


class BookingStateMachine:
    """
    Central lifecycle controller for booking transitions.

    A booking is tentative (pending) from the client's optimistic write
    until the gateway webhook, the status poller or the cleanup sweep
    settles it. Settled states are terminal.
    """

    _ALLOWED_TRANSITIONS: Dict[BookingStatus, Set[BookingStatus]] = {
        BookingStatus.PENDING: {
            BookingStatus.CONFIRMED,
            BookingStatus.CANCELLED,
        },
        BookingStatus.CONFIRMED: set(),
        BookingStatus.CANCELLED: set(),
    }

    @classmethod
    def can_transition(
        cls,
        from_status: BookingStatus,
        to_status: BookingStatus,
    ) -> bool:
        """
        Returns True if transition is allowed.
        """
        cls._ensure_valid_status(from_status)
        cls._ensure_valid_status(to_status)

        return to_status in cls._ALLOWED_TRANSITIONS.get(from_status, set())

    @classmethod
    def validate_transition(
        cls,
        from_status: BookingStatus,
        to_status: BookingStatus,
    ) -> None:
        """
        Raises InvalidStateTransitionError if transition is illegal.
        """
        if not cls.can_transition(from_status, to_status):
            raise InvalidStateTransitionError(
                from_state=from_status.value,
                to_state=to_status.value,
            )

    @classmethod
    def is_terminal(cls, status: BookingStatus) -> bool:
        cls._ensure_valid_status(status)
        return len(cls._ALLOWED_TRANSITIONS.get(status, set())) == 0

    @classmethod
    def get_allowed_transitions(
        cls, status: BookingStatus
    ) -> Set[BookingStatus]:
        cls._ensure_valid_status(status)
        return cls._ALLOWED_TRANSITIONS.get(status, set())

    @staticmethod
    def _ensure_valid_status(status: BookingStatus) -> None:
        if not isinstance(status, BookingStatus):
            raise TypeError(
                f"Expected BookingStatus, got {type(status)}"
            )


# Payment status only moves forward; success and failed are final.
_PAYMENT_ORDER: Dict[PaymentStatus, int] = {
    PaymentStatus.PENDING: 0,
    PaymentStatus.AUTHORIZED: 1,
    PaymentStatus.SUCCESS: 2,
    PaymentStatus.FAILED: 2,
}


def can_advance_payment(from_status: PaymentStatus, to_status: PaymentStatus) -> bool:
    if from_status in (PaymentStatus.SUCCESS, PaymentStatus.FAILED):
        return False
    return _PAYMENT_ORDER[to_status] > _PAYMENT_ORDER[from_status]
