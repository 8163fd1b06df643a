"""
Error taxonomy for the notification dispatch pipeline.

Synchronous errors (validation, not found, conflict) are raised straight back
to the caller. Delivery errors are raised by channel providers inside the
worker, recorded on the notification, and then re-raised so the dispatch
queue's retry policy decides what happens next.
"""


class NotificationError(Exception):
    """Base class for every error raised by this package."""


class ValidationError(NotificationError):
    """The request cannot resolve to any deliverable content."""


class NotFoundError(NotificationError):
    """A template or notification id/key does not exist."""

    def __init__(self, entity: str, identifier: str):
        self.entity = entity
        self.identifier = identifier
        super().__init__(f"{entity} not found: {identifier}")


class ConflictError(NotificationError):
    """A template with the same key already exists."""


class DeliveryError(NotificationError):
    """A channel provider failed to hand the message to its transport."""

    def __init__(self, channel: str, recipient: str, reason: str):
        self.channel = channel
        self.recipient = recipient
        self.reason = reason
        super().__init__(f"Failed to deliver via {channel} to {recipient}: {reason}")


class UnsupportedChannelError(NotificationError):
    """No provider is registered for the notification's channel."""

    def __init__(self, channel: str):
        self.channel = channel
        super().__init__(f"Unsupported channel: {channel}")


class ConfigurationError(NotificationError):
    """Required configuration is missing or malformed."""


class QueueClosedError(NotificationError):
    """A job could not be submitted: the queue is closed or its broker is unreachable."""
