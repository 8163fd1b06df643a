"""
Domain models for the notification dispatch pipeline.

Design decisions:
- Using Pydantic for validation and serialization (records are mapped
  to and from database rows by the data store)
- Subject and body are snapshotted onto the Notification when it is
  created; the template is only referenced weakly by id afterwards
- The payload is opaque: nothing here looks inside it
- All timestamps are timezone-aware UTC
"""

import json
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, RootModel, field_validator


MIN_ATTEMPTS = 1
MAX_ATTEMPTS = 10
DEFAULT_MAX_ATTEMPTS = 3


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid4())


def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC; convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def clamp_attempts(value: int) -> int:
    return max(MIN_ATTEMPTS, min(MAX_ATTEMPTS, value))


# =============================================================================
# Enums
# =============================================================================

class NotificationChannel(str, Enum):
    """Delivery media. Each channel is served by exactly one provider."""
    EMAIL = "EMAIL"


class NotificationStatus(str, Enum):
    """
    Notification lifecycle states.

    QUEUED until the first attempt finishes. FAILED is re-entered after every
    failed attempt and is terminal once the queue gives up on the job.
    """
    QUEUED = "QUEUED"
    DELIVERED = "DELIVERED"
    FAILED = "FAILED"


# =============================================================================
# Opaque payload
# =============================================================================

class OpaquePayload(RootModel[Any]):
    """
    Structured data attached to a notification by the caller.

    The core never inspects its shape. Body resolution may serialize it as a
    last resort when a notification has no body.
    """

    def to_text(self) -> str:
        return json.dumps(self.root, default=str)


# =============================================================================
# Entities
# =============================================================================

class NotificationTemplate(BaseModel):
    """
    Reusable, key-addressed message content.

    The key is unique and immutable. Editing or deleting a template never
    touches notifications that were already created from it.
    """
    id: str = Field(default_factory=new_id, description="Unique template identifier")
    key: str = Field(..., min_length=1, max_length=120, description="Unique lookup key")
    channel: NotificationChannel = Field(default=NotificationChannel.EMAIL)
    subject: Optional[str] = Field(default=None, max_length=200)
    body: str = Field(..., min_length=1, description="Message content")
    description: Optional[str] = Field(default=None, max_length=240)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class Notification(BaseModel):
    """
    A single request to notify one recipient over one channel.

    Invariants:
    - attempt_count never decreases and never exceeds max_attempts at rest
    - sent_at is set if and only if status is DELIVERED
    - subject/body are copied in at creation and never refreshed
    """
    id: str = Field(default_factory=new_id, description="Unique notification identifier")
    template_id: Optional[str] = Field(
        default=None,
        description="Template the content was copied from (informational only)"
    )
    channel: NotificationChannel
    recipient: str = Field(..., min_length=1, max_length=320)
    subject: Optional[str] = None
    body: Optional[str] = None
    payload: Optional[OpaquePayload] = None
    status: NotificationStatus = Field(default=NotificationStatus.QUEUED)
    error: Optional[str] = Field(default=None, description="Last delivery error")
    attempt_count: int = Field(default=0, ge=0, description="Attempts started")
    max_attempts: int = Field(
        default=DEFAULT_MAX_ATTEMPTS, ge=MIN_ATTEMPTS, le=MAX_ATTEMPTS
    )
    scheduled_for: datetime = Field(default_factory=utcnow)
    sent_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def is_terminal(self) -> bool:
        """True once no further attempt will be made for this record."""
        if self.status == NotificationStatus.DELIVERED:
            return True
        return (
            self.status == NotificationStatus.FAILED
            and self.attempt_count >= self.max_attempts
        )

    def resolve_content(self) -> str:
        """
        Content to hand to the channel provider.

        The snapshotted body wins; otherwise the payload is serialized. The
        template registry is never consulted here.
        """
        if self.body:
            return self.body
        if self.payload is not None:
            return self.payload.to_text()
        return "{}"


# =============================================================================
# Requests
# =============================================================================

class EnqueueRequest(BaseModel):
    """
    Request to create and dispatch a notification.

    Either template_key or body must resolve to content. max_attempts is
    clamped into 1..10 by the service rather than rejected here.
    """
    channel: NotificationChannel = Field(..., description="Delivery channel")
    recipient: str = Field(..., min_length=1, max_length=320)
    template_key: Optional[str] = Field(default=None, max_length=120)
    subject: Optional[str] = Field(default=None, max_length=180)
    body: Optional[str] = None
    payload: Optional[Any] = Field(
        default=None,
        description="Opaque structured data, passed through untouched"
    )
    max_attempts: int = Field(default=DEFAULT_MAX_ATTEMPTS)
    scheduled_for: Optional[datetime] = Field(
        default=None,
        description="Earliest delivery time (defaults to now)"
    )

    model_config = ConfigDict(extra="forbid")

    @field_validator("scheduled_for")
    @classmethod
    def _normalize_schedule(cls, value: Optional[datetime]) -> Optional[datetime]:
        return as_utc(value) if value is not None else None


class TemplateCreate(BaseModel):
    """Fields accepted when registering a template."""
    key: str = Field(..., min_length=1, max_length=120)
    channel: NotificationChannel = Field(default=NotificationChannel.EMAIL)
    subject: Optional[str] = Field(default=None, max_length=200)
    body: str = Field(..., min_length=1)
    description: Optional[str] = Field(default=None, max_length=240)


class TemplateUpdate(BaseModel):
    """Partial template update. The key cannot be changed."""
    subject: Optional[str] = Field(default=None, max_length=200)
    body: Optional[str] = Field(default=None, min_length=1)
    description: Optional[str] = Field(default=None, max_length=240)

    model_config = ConfigDict(extra="forbid")
