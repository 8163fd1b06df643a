"""
HTTP models for the notification API.

These Pydantic models define the contract between HTTP callers and the
dispatch service. Request shapes reuse the core models; the HTTP layer is
stricter about max_attempts (rejected outside 1..10 instead of clamped).
"""

from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, Field

from notifications.models import MAX_ATTEMPTS, MIN_ATTEMPTS, DEFAULT_MAX_ATTEMPTS, EnqueueRequest


class NotificationCreate(EnqueueRequest):
    """Request body of POST /notifications."""
    max_attempts: int = Field(
        default=DEFAULT_MAX_ATTEMPTS,
        ge=MIN_ATTEMPTS,
        le=MAX_ATTEMPTS,
        description="Delivery attempts before the notification is abandoned",
    )


class HealthStatus(BaseModel):
    status: Literal["ok"] = "ok"
    timestamp: datetime
    details: Optional[dict[str, str]] = None
