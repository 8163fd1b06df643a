"""
Core building blocks of the notification dispatch service.

This package contains everything the dispatch pipeline sits on:
- Domain models (Notification, NotificationTemplate, requests)
- Record store on SQLAlchemy (SQLite by default)
- Template registry
- Channel providers (SMTP email, recording provider)
- Error taxonomy and settings
"""

from notifications.models import (
    EnqueueRequest,
    Notification,
    NotificationChannel,
    NotificationStatus,
    NotificationTemplate,
    OpaquePayload,
)
from notifications.data_store import DataStore
from notifications.templates import TemplateRegistry
from notifications.channels import ChannelProviders, EmailProvider, RecordingChannel

__all__ = [
    "EnqueueRequest",
    "Notification",
    "NotificationChannel",
    "NotificationStatus",
    "NotificationTemplate",
    "OpaquePayload",
    "DataStore",
    "TemplateRegistry",
    "ChannelProviders",
    "EmailProvider",
    "RecordingChannel",
]
