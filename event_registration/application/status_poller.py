"""Waits for a tentative booking to be settled after the browser reports payment success.

The poller checks the booking's status right away and then on a fixed
interval, under a hard timeout that does not depend on the checks
succeeding. A missing booking or an expired timeout triggers the
defensive cleanup before failure is reported, so a lost webhook can never
leave the slots held.
"""
import logging
import time
from dataclasses import dataclass
from typing import Callable

from sqlalchemy.orm import sessionmaker

from event_registration.application.booking_service import (
    DEFAULT_FAILURE_REASON,
    BookingService,
    PaymentStatusCheck,
)
from event_registration.infrastructure.db.session import get_db_session

logger = logging.getLogger(__name__)

TIMEOUT_REASON = "Webhook timeout - payment status unclear"
NOT_FOUND_REASON = "Payment could not be verified. Please retry."
INVALID_REASON = "Invalid payment data"


@dataclass(frozen=True)
class PollOutcome:
    confirmed: bool
    status: str
    reason: str | None = None
    booking_id: str | None = None


class SessionStatusSource:
    """Reads and cleans up through a fresh session per call."""

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    def check(self, payment_id: str) -> PaymentStatusCheck:
        with get_db_session(self.session_factory) as db:
            return BookingService(db).check_payment_status(payment_id)

    def cleanup(self, payment_id: str) -> int:
        with get_db_session(self.session_factory) as db:
            return BookingService(db).cleanup_failed_booking(payment_id)


class PaymentStatusPoller:

    def __init__(
        self,
        check: Callable[[str], PaymentStatusCheck],
        cleanup: Callable[[str], int],
        interval_seconds: float = 3.0,
        timeout_seconds: float = 30.0,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._check = check
        self._cleanup = cleanup
        self.interval_seconds = interval_seconds
        self.timeout_seconds = timeout_seconds
        self._sleep = sleep
        self._clock = clock

    def wait(self, payment_id: str | None) -> PollOutcome:
        if not payment_id:
            return PollOutcome(confirmed=False, status="invalid", reason=INVALID_REASON)

        deadline = self._clock() + self.timeout_seconds
        logger.info("Waiting for confirmation of payment %s", payment_id)
        try:
            while True:
                result = self._safe_check(payment_id)
                if result is not None:
                    outcome = self._resolve(payment_id, result)
                    if outcome is not None:
                        return outcome

                remaining = deadline - self._clock()
                if remaining <= 0:
                    logger.warning("No confirmation for payment %s within %.0f seconds", payment_id, self.timeout_seconds)
                    self._safe_cleanup(payment_id)
                    return PollOutcome(confirmed=False, status="timeout", reason=TIMEOUT_REASON)

                self._sleep(min(self.interval_seconds, remaining))
        finally:
            logger.debug("Stopped polling payment %s", payment_id)

    def _resolve(self, payment_id: str, result: PaymentStatusCheck) -> PollOutcome | None:
        if result.status == "confirmed":
            return PollOutcome(confirmed=True, status="confirmed", booking_id=result.booking_id)

        if result.status == "cancelled":
            return PollOutcome(
                confirmed=False,
                status="cancelled",
                reason=result.failure_reason or DEFAULT_FAILURE_REASON,
                booking_id=result.booking_id,
            )

        if result.status == "not_found":
            self._safe_cleanup(payment_id)
            return PollOutcome(confirmed=False, status="not_found", reason=NOT_FOUND_REASON)

        return None

    def _safe_check(self, payment_id: str) -> PaymentStatusCheck | None:
        try:
            return self._check(payment_id)
        except Exception:
            logger.exception("Error checking payment status for %s", payment_id)
            return None

    def _safe_cleanup(self, payment_id: str) -> None:
        # Failure is reported to the caller either way; the sweep retries later.
        try:
            released = self._cleanup(payment_id)
            logger.info("Cleanup for payment %s cancelled %s booking(s)", payment_id, released)
        except Exception:
            logger.exception("Cleanup failed for payment %s", payment_id)
