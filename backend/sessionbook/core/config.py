# backend/sessionbook/core/config.py
import logging
import os
from pathlib import Path
from typing import Literal, Optional

from dotenv import load_dotenv
from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
import pytz


def is_running_tests() -> bool:
    """
    Detect if code is running under pytest.

    PYTEST_CURRENT_TEST is set automatically by pytest during test runs, and is
    not expected to be present in production environments.
    """
    return os.getenv("PYTEST_CURRENT_TEST") is not None


logger = logging.getLogger(__name__)

# Load .env file only if not in CI
if not os.getenv("CI"):
    env_path = Path(__file__).parent.parent.parent / ".env"  # Goes up to backend/.env
    logger.debug(f"[CONFIG] Looking for .env at: {env_path}")
    load_dotenv(env_path)


class Settings(BaseSettings):
    environment: Literal["development", "test", "staging", "production"] = Field(
        default="development",
        description="Deployment environment name",
    )
    is_testing: bool = Field(default=False, description="Set by the test suite")

    database_url: str = Field(
        default="sqlite:///./sessionbook.db",
        description="SQLAlchemy database URL",
    )
    database_pool_timeout_seconds: int = Field(default=5, ge=1)
    redis_url: str = Field(default="redis://localhost:6379/0")

    # Booking rules
    max_bookings_per_day: int = Field(
        default=5,
        ge=1,
        alias="MAX_CLASSES_PER_DAY",
        description="Per-student cap on active bookings starting on the same day",
    )
    booking_day_timezone: str = Field(
        default="UTC",
        description="Timezone whose calendar day is used for the per-student daily cap",
    )

    # Default availability policy for instructors without a stored profile
    default_timezone: str = Field(default="UTC")
    default_min_advance_booking_hours: int = Field(default=2, ge=0)
    default_max_advance_booking_days: int = Field(default=60, ge=1)
    default_slot_duration_hours: float = Field(default=1.0, ge=0.5)
    default_buffer_minutes: int = Field(default=0, ge=0)

    # Reconciliation sweeps
    reminder_lookahead_minutes: int = Field(default=60, ge=1)
    missed_grace_minutes: int = Field(default=0, ge=0)
    missed_sweep_interval_seconds: int = Field(default=3600, ge=1)
    reminder_sweep_interval_seconds: int = Field(default=900, ge=1)
    sweep_batch_size: int = Field(default=500, ge=1)

    # Critical section
    booking_lock_redis_enabled: bool = Field(default=False)
    booking_lock_ttl_seconds: int = Field(default=30, ge=1)
    booking_lock_wait_seconds: float = Field(default=10.0, gt=0)
    booking_lock_namespace: str = Field(default="sessionbook")

    # Outbound calls
    external_call_timeout_seconds: float = Field(default=5.0, gt=0)

    # Video rooms
    video_room_enabled: bool = Field(default=False)
    video_room_access_key: str = Field(default="")
    video_room_app_secret: SecretStr = Field(default=SecretStr(""))
    video_room_api_base_url: str = Field(default="https://api.100ms.live/v2")
    video_room_join_base_url: str = Field(default="https://sessions.example.com/join")
    video_room_template_id: Optional[str] = Field(default=None)
    video_room_token_validity_seconds: int = Field(default=6 * 3600, ge=60)

    model_config = SettingsConfigDict(
        env_file=".env" if not os.getenv("CI") else None,
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    @field_validator("default_timezone", "booking_day_timezone")
    @classmethod
    def _validate_timezone(cls, value: str) -> str:
        if value not in pytz.all_timezones_set:
            raise ValueError(f"Unknown timezone: {value}")
        return value

    @field_validator("video_room_api_base_url", "video_room_join_base_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")


settings = Settings()
