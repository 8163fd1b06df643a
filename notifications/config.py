"""
Service configuration loaded from the environment (and an optional .env file).

SMTP values are optional here so the service can boot with a non-email
provider set; the EmailProvider validates them itself when constructed.
"""

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class NotificationsSettings(BaseSettings):
    """
    Settings for the notification dispatch service.

    Environment Variables:
        NOTIFICATIONS_DATABASE_URL: SQLAlchemy async URL of the record store
        NOTIFICATIONS_BROKER_URL: Celery broker holding delivery jobs (Redis)
        NOTIFICATIONS_RESULT_BACKEND: Celery result backend (failed jobs are kept here)
        NOTIFICATIONS_QUEUE_NAME: Dispatch queue name (default: notifications)
        NOTIFICATIONS_WORKER_CONCURRENCY: Parallel delivery workers (default: 5)
        NOTIFICATIONS_BACKOFF_DELAY_SECONDS: Base delay for exponential retry backoff
        SMTP_HOST / SMTP_PORT / SMTP_USER / SMTP_PASSWORD: SMTP transport
        EMAIL_FROM_ADDRESS: Sender address for outgoing email
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore",
    )

    NOTIFICATIONS_SERVICE_PORT: int = Field(default=3040, ge=0, le=65535)
    NOTIFICATIONS_SERVICE_GLOBAL_PREFIX: str = Field(default="api", min_length=1)

    NOTIFICATIONS_DATABASE_URL: str = Field(
        default="sqlite+aiosqlite:///./notifications.db",
        description="Where notification and template records are persisted",
    )

    NOTIFICATIONS_BROKER_URL: str = Field(
        default="redis://localhost:6379/0",
        description="Celery broker the dispatch queue publishes to",
    )
    NOTIFICATIONS_RESULT_BACKEND: str = Field(
        default="redis://localhost:6379/1",
        description="Celery result backend; failed jobs stay inspectable here",
    )
    NOTIFICATIONS_BROKER_VISIBILITY_TIMEOUT_SECONDS: int = Field(
        default=12 * 60 * 60,
        gt=0,
        description="Redis redelivers unacknowledged jobs after this long; "
                    "must exceed the longest scheduling delay",
    )
    NOTIFICATIONS_QUEUE_NAME: str = Field(
        default="notifications",
        min_length=1,
        description="Name of the dispatch queue delivery jobs go to",
    )
    NOTIFICATIONS_WORKER_CONCURRENCY: int = Field(
        default=5,
        ge=1,
        description="Number of jobs processed in parallel",
    )
    NOTIFICATIONS_BACKOFF_DELAY_SECONDS: float = Field(
        default=1.0,
        gt=0,
        description="Base unit of the exponential retry backoff",
    )

    LOG_LEVEL: str = Field(default="INFO")

    EMAIL_FROM_ADDRESS: Optional[str] = None
    SMTP_HOST: Optional[str] = None
    SMTP_PORT: Optional[int] = Field(default=587, ge=1, le=65535)
    SMTP_USER: Optional[str] = None
    SMTP_PASSWORD: Optional[str] = None
    SMTP_TIMEOUT_SECONDS: float = Field(default=10.0, gt=0)

    @property
    def smtp_configured(self) -> bool:
        """True when every value the email provider requires is present."""
        return all(
            (
                self.SMTP_HOST,
                self.SMTP_PORT,
                self.SMTP_USER,
                self.SMTP_PASSWORD,
                self.EMAIL_FROM_ADDRESS,
            )
        )


@lru_cache
def get_settings() -> NotificationsSettings:
    """Process-wide settings, read once."""
    return NotificationsSettings()
