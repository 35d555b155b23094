# event_registration/infrastructure/config.py

import os
from functools import lru_cache

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field

load_dotenv()


class Settings(BaseModel):
    """
    Process-wide configuration, read from the environment once at startup
    and passed explicitly to the components that need it.
    """

    model_config = ConfigDict(frozen=True)

    razorpay_key_id: str | None = None
    razorpay_key_secret: str | None = None
    razorpay_webhook_secret: str | None = None

    webhook_initial_delay_seconds: float = Field(default=2.0, ge=0)
    webhook_retry_delay_seconds: float = Field(default=3.0, ge=0)
    webhook_max_lookup_attempts: int = Field(default=5, ge=1)

    status_poll_interval_seconds: float = Field(default=3.0, gt=0)
    status_poll_timeout_seconds: float = Field(default=30.0, gt=0)

    cleanup_worker_enabled: bool = True
    cleanup_interval_seconds: float = Field(default=300.0, gt=0)
    pending_booking_ttl_seconds: float = Field(default=300.0, gt=0)
    cleanup_timezone: str = "Asia/Kolkata"

    db_connect_max_retries: int = Field(default=30, ge=1)
    db_connect_retry_delay: float = Field(default=1.5, ge=0)

    cors_allow_origin: str = "*"
    log_level: str = "INFO"

    @property
    def has_gateway_credentials(self) -> bool:
        return bool(self.razorpay_key_id) and bool(self.razorpay_key_secret)

    @classmethod
    def from_env(cls) -> "Settings":
        env = {
            "razorpay_key_id": os.getenv("RAZORPAY_KEY_ID"),
            "razorpay_key_secret": os.getenv("RAZORPAY_KEY_SECRET"),
            "razorpay_webhook_secret": os.getenv("RAZORPAY_WEBHOOK_SECRET"),
            "webhook_initial_delay_seconds": os.getenv("WEBHOOK_INITIAL_DELAY_SECONDS"),
            "webhook_retry_delay_seconds": os.getenv("WEBHOOK_RETRY_DELAY_SECONDS"),
            "webhook_max_lookup_attempts": os.getenv("WEBHOOK_MAX_LOOKUP_ATTEMPTS"),
            "status_poll_interval_seconds": os.getenv("STATUS_POLL_INTERVAL_SECONDS"),
            "status_poll_timeout_seconds": os.getenv("STATUS_POLL_TIMEOUT_SECONDS"),
            "cleanup_worker_enabled": os.getenv("CLEANUP_WORKER_ENABLED"),
            "cleanup_interval_seconds": os.getenv("CLEANUP_INTERVAL_SECONDS"),
            "pending_booking_ttl_seconds": os.getenv("PENDING_BOOKING_TTL_SECONDS"),
            "cleanup_timezone": os.getenv("CLEANUP_TIMEZONE"),
            "db_connect_max_retries": os.getenv("DB_CONNECT_MAX_RETRIES"),
            "db_connect_retry_delay": os.getenv("DB_CONNECT_RETRY_DELAY"),
            "cors_allow_origin": os.getenv("CORS_ALLOW_ORIGIN"),
            "log_level": os.getenv("LOG_LEVEL"),
        }
        # Unset variables fall back to the field defaults.
        return cls.model_validate({k: v for k, v in env.items() if v not in (None, "")})


@lru_cache
def get_settings() -> Settings:
    return Settings.from_env()
