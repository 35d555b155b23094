import logging
import time

from fastapi import FastAPI
from fastapi.concurrency import run_in_threadpool
from sqlalchemy import text
from sqlalchemy.exc import OperationalError

from event_registration.api.routes.routes import router
from event_registration.api.routes.webhooks import router as webhook_router
from event_registration.domain.event_config import EVENT_CONFIG
from event_registration.infrastructure.config import Settings, get_settings
from event_registration.infrastructure.db import models  # noqa: F401  (registers tables)
from event_registration.infrastructure.db.session import Base, SessionLocal, engine
from event_registration.workers.cleanup import start_cleanup_worker

settings = get_settings()

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = FastAPI(title=f"{EVENT_CONFIG.event_name} Registration")

app.include_router(router)
app.include_router(webhook_router)
logger = logging.getLogger(__name__)

_stop_cleanup_worker = None


def _wait_for_db(settings: Settings) -> None:
    # Handles the common case where API starts before Postgres is ready.
    max_retries = settings.db_connect_max_retries
    retry_delay_seconds = settings.db_connect_retry_delay

    for attempt in range(1, max_retries + 1):
        try:
            with engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            logger.info("Database is reachable.")
            return
        except OperationalError:
            if attempt == max_retries:
                logger.exception(
                    "Database not reachable after %s attempts. Check DATABASE_URL and Postgres status.",
                    max_retries,
                )
                raise
            logger.warning(
                "Database not ready (attempt %s/%s). Retrying in %.1f seconds...",
                attempt,
                max_retries,
                retry_delay_seconds,
            )
            time.sleep(retry_delay_seconds)


@app.on_event("startup")
async def on_startup() -> None:
    global _stop_cleanup_worker

    await run_in_threadpool(_wait_for_db, settings)
    await run_in_threadpool(Base.metadata.create_all, engine)

    if not settings.has_gateway_credentials:
        logger.warning("Razorpay keys are not set; order creation will fail.")
    if not settings.razorpay_webhook_secret:
        logger.warning("RAZORPAY_WEBHOOK_SECRET is not set; webhooks will be rejected.")

    if settings.cleanup_worker_enabled:
        _stop_cleanup_worker = await start_cleanup_worker(settings, SessionLocal)


@app.on_event("shutdown")
async def on_shutdown() -> None:
    global _stop_cleanup_worker

    if _stop_cleanup_worker is not None:
        await _stop_cleanup_worker()
        _stop_cleanup_worker = None
