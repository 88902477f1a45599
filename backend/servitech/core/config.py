# backend/servitech/core/config.py
from decimal import Decimal
import logging
import os
from pathlib import Path
from typing import List, Literal, Optional

from dotenv import load_dotenv
from pydantic import AliasChoices, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


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


PAYMENT_METHODS: tuple[str, ...] = ("mercadopago", "pse", "tarjeta", "nequi", "daviplata")


class Settings(BaseSettings):
    environment: Literal["development", "test", "staging", "production"] = Field(
        default="development",
        validation_alias=AliasChoices("ENVIRONMENT", "NODE_ENV", "environment"),
        description="Deployment environment name",
    )
    log_level: str = Field(default="INFO", description="Root log level for workers")

    database_url: str = Field(
        default="sqlite:///./servitech.db",
        validation_alias=AliasChoices("DATABASE_URL", "database_url"),
        description="SQLAlchemy URL for the advisory/payment store",
    )
    database_echo: bool = Field(default=False, description="Echo SQL statements")

    redis_url: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("REDIS_URL", "redis_url"),
        description="Redis URL for distributed expert locks (process-local locks when unset)",
    )
    celery_broker_url: str = Field(
        default="redis://localhost:6379/0",
        validation_alias=AliasChoices("CELERY_BROKER_URL", "celery_broker_url"),
        description="Broker URL for background tasks",
    )
    celery_result_backend: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("CELERY_RESULT_BACKEND", "celery_result_backend"),
    )

    # Money
    platform_commission_rate: Decimal = Field(
        default=Decimal("0.15"),
        validation_alias=AliasChoices("PLATFORM_COMMISSION_RATE", "platform_commission_rate"),
        description="Share of each gross payment retained by the platform",
    )
    payment_min_amount: Decimal = Field(
        default=Decimal("0.01"), description="Smallest accepted gross amount"
    )
    payment_max_amount: Decimal = Field(
        default=Decimal("10000000"), description="Largest accepted gross amount"
    )
    payment_currency: str = Field(default="COP", description="ISO currency for new payments")
    payment_methods: List[str] = Field(default_factory=lambda: list(PAYMENT_METHODS))

    # Scheduling
    advisory_allowed_durations: List[int] = Field(
        default_factory=lambda: [30, 60, 90],
        description="Permitted advisory lengths in minutes",
    )
    advisory_title_max_length: int = Field(default=200)

    # Sweeper
    auto_complete_grace_hours: int = Field(
        default=24,
        validation_alias=AliasChoices("AUTO_COMPLETE_GRACE_HOURS", "auto_complete_grace_hours"),
        description="Hours after end_time before a confirmed advisory is force-completed",
    )
    sweep_interval_minutes: int = Field(
        default=60, description="How often the auto-resolution sweep runs"
    )
    sweep_batch_size: int = Field(default=100, description="Max advisories finalized per sweep")

    # Cancellation
    client_cancellation_refund_pct: int = Field(
        default=100,
        ge=0,
        le=100,
        description="Percent of the gross refunded when the client cancels a confirmed advisory",
    )

    # Locking
    expert_lock_ttl_seconds: int = Field(default=30, description="Redis expert lock TTL")
    expert_lock_wait_seconds: float = Field(
        default=5.0, description="Max time to wait for the per-expert lock"
    )

    notifications_enabled: bool = Field(default=True)

    model_config = SettingsConfigDict(
        env_file=".env" if not os.getenv("CI") else None,
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("platform_commission_rate")
    @classmethod
    def _validate_commission_rate(cls, value: Decimal) -> Decimal:
        if value < 0 or value >= 1:
            raise ValueError("PLATFORM_COMMISSION_RATE must be within [0, 1)")
        return value

    @field_validator("advisory_allowed_durations", mode="before")
    @classmethod
    def _parse_durations(cls, value: object) -> object:
        if isinstance(value, str):
            return [int(part) for part in value.split(",") if part.strip()]
        return value

    @field_validator("advisory_allowed_durations")
    @classmethod
    def _validate_durations(cls, value: List[int]) -> List[int]:
        if not value:
            raise ValueError("ADVISORY_ALLOWED_DURATIONS must not be empty")
        if any(minutes <= 0 for minutes in value):
            raise ValueError("ADVISORY_ALLOWED_DURATIONS must be positive")
        return sorted(set(value))

    @model_validator(mode="after")
    def _validate_amount_bounds(self) -> "Settings":
        if self.payment_min_amount <= 0:
            raise ValueError("PAYMENT_MIN_AMOUNT must be positive")
        if self.payment_min_amount > self.payment_max_amount:
            raise ValueError("PAYMENT_MIN_AMOUNT must not exceed PAYMENT_MAX_AMOUNT")
        return self

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    def get_database_url(self) -> str:
        if is_running_tests() and self.database_url.startswith("sqlite:///./"):
            # Never write a stray database file from a test run
            return "sqlite://"
        return self.database_url


settings = Settings()
