"""
Notification service: the entry point callers use to send notifications.

This service validates a request, resolves and snapshots template content,
persists the notification and submits exactly one delivery job for it. It
never sends anything itself; delivery happens later in the DeliveryWorker.

Design decisions:
- Collaborators (store, queue, template registry) are passed in explicitly
- Subject and body are copied onto the record at creation; the worker never
  goes back to the template registry
- The queue job carries only the notification id; everything else is read
  from the store at delivery time
- Retry policy (attempts, exponential backoff) is handed to the queue with
  the job; this service does not compute backoff itself

Known gap: if the record is created but the queue submission fails, the
record stays QUEUED with no delivery scheduled. The error is logged and
re-raised to the caller.
"""

import logging
from typing import Optional

from dispatch.dispatch_queue import Backoff, DispatchQueue, JobOptions
from notifications.data_store import DataStore
from notifications.errors import NotFoundError, ValidationError
from notifications.models import (
    EnqueueRequest,
    Notification,
    NotificationChannel,
    NotificationStatus,
    NotificationTemplate,
    as_utc,
    clamp_attempts,
    utcnow,
)
from notifications.templates import TemplateRegistry

logger = logging.getLogger("notification_service")

DEFAULT_QUEUE_NAME = "notifications"


class NotificationService:
    """
    Orchestrates notification creation and dispatch.

    Example:
        service = NotificationService(data_store, queue, TemplateRegistry(data_store))
        record = await service.enqueue(EnqueueRequest(
            channel=NotificationChannel.EMAIL,
            recipient="a@b.com",
            body="hi",
        ))
        # ... later, poll for the outcome
        record = await service.get_notification(record.id)
    """

    def __init__(
        self,
        data_store: DataStore,
        dispatch_queue: DispatchQueue,
        template_registry: Optional[TemplateRegistry] = None,
        queue_name: str = DEFAULT_QUEUE_NAME,
        backoff_delay: float = 1.0,
    ):
        """
        Initialize the notification service.

        Args:
            data_store: Record store for notifications and templates
            dispatch_queue: Queue that delivery jobs are submitted to
            template_registry: Template lookups (defaults to one over data_store)
            queue_name: Name of the queue delivery workers consume
            backoff_delay: Base delay in seconds of the exponential retry backoff
        """
        self.data_store = data_store
        self.dispatch_queue = dispatch_queue
        self.templates = template_registry or TemplateRegistry(data_store)
        self.queue_name = queue_name
        self.backoff_delay = backoff_delay

    # =========================================================================
    # Dispatch
    # =========================================================================

    async def enqueue(self, request: EnqueueRequest) -> Notification:
        """
        Create a notification and schedule its delivery.

        Steps:
        1. Look up the template, if a key was given
        2. Resolve subject and body (explicit values win over the template)
        3. Persist the record as QUEUED with the resolved content
        4. Submit one job carrying the notification id

        Raises:
            NotFoundError: If template_key names no template
            ValidationError: If neither the request nor the template has a body
        """
        template: Optional[NotificationTemplate] = None
        if request.template_key:
            template = await self.templates.get_template_by_key(request.template_key)

        subject = request.subject or (template.subject if template else None)
        body = request.body or (template.body if template else None)
        if not body:
            raise ValidationError("Provide either a templateKey or body")

        now = utcnow()
        scheduled_for = as_utc(request.scheduled_for) if request.scheduled_for else now

        record = await self.data_store.create_notification(Notification(
            template_id=template.id if template else None,
            channel=request.channel,
            recipient=request.recipient,
            subject=subject,
            body=body,
            payload=request.payload,
            status=NotificationStatus.QUEUED,
            attempt_count=0,
            max_attempts=clamp_attempts(request.max_attempts),
            scheduled_for=scheduled_for,
        ))

        options = JobOptions(
            delay=self._calculate_delay(record.scheduled_for),
            attempts=record.max_attempts,
            backoff=Backoff(type="exponential", delay=self.backoff_delay),
            remove_on_complete=True,
            remove_on_fail=False,
        )
        try:
            await self.dispatch_queue.enqueue(
                self.queue_name, {"notification_id": record.id}, options
            )
        except Exception:
            logger.exception(
                f"Failed to submit delivery job; notification {record.id} left QUEUED"
            )
            raise

        logger.info(
            f"Notification queued: id={record.id}, channel={record.channel.value}, "
            f"delay={options.delay:.3f}s"
        )
        return record

    async def get_notification(self, notification_id: str) -> Notification:
        """
        Raises:
            NotFoundError: If the notification does not exist
        """
        record = await self.data_store.find_notification(notification_id)
        if record is None:
            raise NotFoundError("Notification", notification_id)
        return record

    # =========================================================================
    # Lifecycle writes (used by the DeliveryWorker)
    # =========================================================================

    async def increment_attempt(self, notification_id: str) -> Notification:
        """Count an attempt as started. Called before the provider is invoked."""
        return await self.data_store.increment_attempt(notification_id)

    async def mark_as_delivered(self, notification_id: str) -> Notification:
        # error is left as-is; a previous failure message is not cleared
        return await self.data_store.update_notification(
            notification_id,
            status=NotificationStatus.DELIVERED,
            sent_at=utcnow(),
        )

    async def mark_as_failed(self, notification_id: str, error: str) -> Notification:
        return await self.data_store.update_notification(
            notification_id,
            status=NotificationStatus.FAILED,
            error=error,
        )

    # =========================================================================
    # Template management
    # =========================================================================

    async def create_template(
        self,
        key: str,
        channel: NotificationChannel,
        body: str,
        subject: Optional[str] = None,
        description: Optional[str] = None,
    ) -> NotificationTemplate:
        return await self.templates.create_template(
            key=key, channel=channel, body=body, subject=subject, description=description
        )

    async def update_template(
        self,
        template_id: str,
        subject: Optional[str] = None,
        body: Optional[str] = None,
        description: Optional[str] = None,
    ) -> NotificationTemplate:
        return await self.templates.update_template(
            template_id, subject=subject, body=body, description=description
        )

    async def list_templates(self) -> list[NotificationTemplate]:
        return await self.templates.list_templates()

    async def delete_template(self, template_id: str) -> None:
        await self.templates.delete_template(template_id)

    # =========================================================================
    # Helpers
    # =========================================================================

    @staticmethod
    def _calculate_delay(scheduled_for) -> float:
        """Seconds until scheduled_for, never negative."""
        diff = (scheduled_for - utcnow()).total_seconds()
        return diff if diff > 0 else 0.0
