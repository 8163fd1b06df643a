"""
Delivery worker: consumes dispatch jobs and delivers notifications.

Per job:
1. Load the notification (unknown id: log and drop, never retried)
2. Count the attempt
3. Pick the provider for the notification's channel
4. Resolve content from the snapshot (body, else serialized payload)
5. Send
6. Record DELIVERED, or record FAILED and re-raise so the queue retries

A failure is always written to the record before the exception leaves this
module.
"""

import logging

from dispatch.dispatch_queue import DispatchQueue, Job
from dispatch.notification_service import DEFAULT_QUEUE_NAME, NotificationService
from notifications.channels import ChannelProviders
from notifications.errors import NotFoundError
from notifications.models import NotificationStatus

logger = logging.getLogger("delivery_worker")


class DeliveryWorker:
    """Drives the per-notification state machine for each queued job."""

    def __init__(self, service: NotificationService, providers: ChannelProviders):
        self.service = service
        self.providers = providers

    def start(
        self,
        dispatch_queue: DispatchQueue,
        queue_name: str = DEFAULT_QUEUE_NAME,
        concurrency: int = 5,
    ) -> None:
        """Attach this worker to a queue with a fixed number of parallel slots."""
        dispatch_queue.process(queue_name, self.process, concurrency=concurrency)

    async def process(self, job: Job) -> None:
        notification_id = job.data["notification_id"]

        try:
            record = await self.service.get_notification(notification_id)
        except NotFoundError:
            logger.warning(f"Notification not found, skipping: {notification_id}")
            return

        # Redelivery of a job whose outcome was already written (the broker
        # hands unacknowledged jobs out again after a worker crash).
        if record.status == NotificationStatus.DELIVERED:
            logger.info(f"Notification {notification_id} already delivered, skipping")
            return
        # A redelivered job can arrive after its last attempt was already counted.
        if record.attempt_count >= record.max_attempts:
            logger.warning(
                f"Notification {notification_id} has used all {record.max_attempts} attempts, "
                f"skipping"
            )
            if record.status != NotificationStatus.FAILED:
                await self.service.mark_as_failed(notification_id, "Attempts exhausted")
            return

        updated = await self.service.increment_attempt(notification_id)

        try:
            # A missing provider is treated exactly like a transport failure and
            # is retried until attempts run out, even though it cannot succeed.
            provider = self.providers.get(record.channel)
            content = record.resolve_content()
            await provider.send(
                to=record.recipient,
                subject=record.subject,
                html=content,
                text=content,
            )
        except Exception as e:
            message = str(e) or type(e).__name__
            await self.service.mark_as_failed(notification_id, message)
            logger.error(
                f"Notification delivery failed: id={notification_id}, "
                f"attempt={updated.attempt_count}/{updated.max_attempts}, error={message}"
            )
            raise

        await self.service.mark_as_delivered(notification_id)
        logger.info(
            f"Notification delivered: id={notification_id}, attempt={updated.attempt_count}"
        )
