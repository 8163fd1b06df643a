"""
Demonstration scripts for the dispatch pipeline.

Each scenario wires a runtime with a RecordingChannel in place of SMTP,
runs an embedded Celery worker on kombu's in-memory broker, enqueues a
notification, waits for its outcome and prints the record.
"""

import asyncio
import logging
import tempfile
import time
from pathlib import Path
from uuid import uuid4

from celery.contrib.testing.worker import start_worker

from dispatch.celery_queue import CeleryDispatchQueue, create_celery_app
from dispatch.notification_service import NotificationService
from dispatch.runtime import DispatchRuntime
from notifications.channels import ChannelProviders, RecordingChannel
from notifications.config import NotificationsSettings
from notifications.models import EnqueueRequest, Notification, NotificationChannel

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(name)-24s | %(levelname)-5s | %(message)s",
    datefmt="%H:%M:%S",
)

DEMO_BACKOFF_SECONDS = 0.2


def _banner(title: str) -> None:
    print("\n" + "=" * 70)
    print(title)
    print("=" * 70 + "\n")


def demo_settings(data_dir: Path) -> NotificationsSettings:
    """Settings for a self-contained run: SQLite file, in-memory broker."""
    return NotificationsSettings(
        _env_file=None,
        NOTIFICATIONS_DATABASE_URL=f"sqlite+aiosqlite:///{data_dir / 'demo.db'}",
        NOTIFICATIONS_BROKER_URL="memory://",
        NOTIFICATIONS_RESULT_BACKEND="cache+memory://",
        NOTIFICATIONS_QUEUE_NAME=f"demo-{uuid4().hex[:8]}",
        NOTIFICATIONS_BACKOFF_DELAY_SECONDS=DEMO_BACKOFF_SECONDS,
    )


async def wait_for_outcome(
    service: NotificationService, notification_id: str, timeout: float = 30
) -> Notification:
    """Poll until the record is DELIVERED or permanently FAILED."""
    deadline = time.monotonic() + timeout
    record = await service.get_notification(notification_id)
    while not record.is_terminal and time.monotonic() < deadline:
        await asyncio.sleep(0.05)
        record = await service.get_notification(notification_id)
    return record


def _run(channel: RecordingChannel, request: EnqueueRequest) -> None:
    with tempfile.TemporaryDirectory() as data_dir:
        settings = demo_settings(Path(data_dir))
        queue = CeleryDispatchQueue(create_celery_app(settings))
        queue.celery_app.conf.worker_hijack_root_logger = False
        runtime = DispatchRuntime.from_settings(
            settings, ChannelProviders([channel]), dispatch_queue=queue
        )

        queue.run(runtime.start())
        try:
            with start_worker(queue.celery_app, pool="solo", perform_ping_check=False):
                record = queue.run(runtime.service.enqueue(request))
                print(
                    f"Queued {record.id}: status={record.status.value}, "
                    f"attempts={record.attempt_count}\n"
                )
                record = queue.run(wait_for_outcome(runtime.service, record.id))
        finally:
            queue.run(runtime.stop())

    print("\n" + "-" * 70)
    print(
        f"RESULT: status={record.status.value}, attempts={record.attempt_count}/"
        f"{record.max_attempts}, sent_at={record.sent_at}, error={record.error}"
    )
    print("-" * 70)
    print("\nProvider saw:")
    for msg in channel.sent_messages:
        print(f"  {msg}")


def run_delivered_demo():
    """A plain body, delivered on the first attempt."""
    _banner("DISPATCH DEMO: Delivered on first attempt")
    _run(
        RecordingChannel(),
        EnqueueRequest(
            channel=NotificationChannel.EMAIL,
            recipient="alice@example.com",
            subject="Welcome",
            body="Thanks for signing up!",
        ),
    )


def run_retry_demo():
    """The provider fails once; the queue retries and the second attempt succeeds."""
    _banner("DISPATCH DEMO: Failure, retry, delivery")
    _run(
        RecordingChannel(fail_first=1),
        EnqueueRequest(
            channel=NotificationChannel.EMAIL,
            recipient="bob@example.com",
            subject="Your listing is live",
            body="Your vehicle listing has been approved.",
        ),
    )


def run_exhausted_demo():
    """Every attempt fails; the notification ends up permanently FAILED."""
    _banner("DISPATCH DEMO: All attempts exhausted")
    _run(
        RecordingChannel(fail_first=3, error_message="SMTP 421 Service not available"),
        EnqueueRequest(
            channel=NotificationChannel.EMAIL,
            recipient="carol@example.com",
            subject="Payment receipt",
            body="We received your payment.",
            max_attempts=3,
        ),
    )


if __name__ == "__main__":
    run_delivered_demo()
    run_retry_demo()
    run_exhausted_demo()
