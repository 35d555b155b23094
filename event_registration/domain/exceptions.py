

class RegistrationError(Exception):
    """
    Base exception for all domain-level errors
    inside the event registration service.
    """


class InvalidStateTransitionError(RegistrationError):
    """
    Raised when an illegal booking state transition is attempted.
    """

    def __init__(self, from_state: str, to_state: str):
        self.from_state = from_state
        self.to_state = to_state

        message = (
            f"Illegal state transition attempted: "
            f"{from_state} -> {to_state}"
        )
        super().__init__(message)


class SlotUnavailableError(RegistrationError):
    """Raised when a requested time slot is not available."""

    def __init__(self, event_date: str, labels: list[str]):
        self.event_date = event_date
        self.labels = labels
        super().__init__(
            f"Time slots not available on {event_date}: {', '.join(labels)}"
        )


class NonContiguousSlotsError(RegistrationError):
    """Raised when the selected slots do not form one continuous block."""


class UnknownPerformanceTypeError(RegistrationError):
    """Raised for a performance type the event does not offer."""


class BookingNotFoundError(RegistrationError):
    """Raised when no booking matches the given identifier."""


class DuplicatePaymentError(RegistrationError):
    """Raised when a payment id is already attached to another booking."""


class InvalidSignatureError(RegistrationError):
    """Raised when a gateway signature does not verify."""


class GatewayNotConfiguredError(RegistrationError):
    """Raised when payment gateway credentials are missing."""


class PaymentGatewayError(RegistrationError):
    """Raised when a call to the payment gateway fails."""
