"""Background sweep that releases slots held by stale pending bookings.

A pending booking whose webhook never arrived is cancelled once it is
older than the configured TTL. Each candidate is re-read under a row lock
in its own transaction, so a booking confirmed while the sweep runs is
skipped.

start_cleanup_worker returns an async callable that stops the worker.
"""
from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable
from zoneinfo import ZoneInfo

from sqlalchemy.orm import sessionmaker

from event_registration.application.booking_service import BookingService
from event_registration.infrastructure.config import Settings
from event_registration.infrastructure.db.session import get_db_session
from event_registration.infrastructure.repositories.booking_repository import BookingRepository

logger = logging.getLogger(__name__)


def sweep_stale_bookings(
    session_factory: sessionmaker,
    ttl_seconds: float,
    now: datetime | None = None,
) -> int:
    now = now or datetime.now(timezone.utc)
    cutoff = now - timedelta(seconds=ttl_seconds)

    with get_db_session(session_factory) as db:
        candidate_ids = BookingRepository(db).list_stale_pending_ids(cutoff)

    swept = 0
    for booking_id in candidate_ids:
        try:
            with get_db_session(session_factory) as db:
                if BookingService(db).expire_pending_booking(booking_id, cutoff):
                    swept += 1
        except Exception:
            # Every step is idempotent; the next sweep picks it up again.
            logger.exception("Cleanup of booking %s failed", booking_id)

    if candidate_ids:
        logger.info(
            "Cleanup sweep released %d of %d stale pending booking(s)",
            swept,
            len(candidate_ids),
        )
    return swept


async def _run_loop(
    stop_event: asyncio.Event,
    settings: Settings,
    session_factory: sessionmaker,
) -> None:
    tz = ZoneInfo(settings.cleanup_timezone)
    while not stop_event.is_set():
        started = datetime.now(tz)
        try:
            swept = await asyncio.to_thread(
                sweep_stale_bookings,
                session_factory,
                settings.pending_booking_ttl_seconds,
            )
            logger.debug("Cleanup run at %s swept %d booking(s)", started.isoformat(), swept)
        except Exception:
            logger.exception("Cleanup worker iteration error at %s", started.isoformat())

        try:
            await asyncio.wait_for(stop_event.wait(), timeout=settings.cleanup_interval_seconds)
        except asyncio.TimeoutError:
            continue


async def start_cleanup_worker(
    settings: Settings,
    session_factory: sessionmaker,
) -> Callable[[], Awaitable[None]]:
    """Start the cleanup worker and return an async stop() function."""
    stop_event = asyncio.Event()
    task = asyncio.create_task(
        _run_loop(stop_event, settings, session_factory),
        name="booking-cleanup",
    )
    logger.info(
        "Cleanup worker started (every %.0f seconds, ttl %.0f seconds, tz %s)",
        settings.cleanup_interval_seconds,
        settings.pending_booking_ttl_seconds,
        settings.cleanup_timezone,
    )

    async def _stop() -> None:
        stop_event.set()
        try:
            await asyncio.wait_for(task, timeout=5)
        except asyncio.TimeoutError:
            task.cancel()
        logger.info("Cleanup worker stopped")

    return _stop
