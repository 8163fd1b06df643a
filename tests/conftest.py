"""
Shared pytest fixtures for the notification dispatch tests.

These fixtures provide fresh collaborators for every test (a SQLite file
under tmp_path, an in-process dispatch queue) so tests never interfere
with each other.
"""

import pytest

from dispatch.dispatch_queue import Job
from dispatch.notification_service import NotificationService
from dispatch.worker import DeliveryWorker
from notifications.channels import ChannelProviders, RecordingChannel
from notifications.config import NotificationsSettings
from notifications.data_store import DataStore
from notifications.models import EnqueueRequest, NotificationChannel
from notifications.templates import TemplateRegistry
from queue_fakes import InMemoryDispatchQueue

# Retry backoff used in tests: short enough to keep scenarios fast
TEST_BACKOFF_SECONDS = 0.01


@pytest.fixture
def database_url(tmp_path) -> str:
    """URL of an empty SQLite database private to the test."""
    return f"sqlite+aiosqlite:///{tmp_path / 'notifications.db'}"


@pytest.fixture
async def data_store(database_url):
    """Fresh DataStore with its schema created."""
    store = DataStore(database_url)
    await store.initialize()
    yield store
    await store.dispose()


@pytest.fixture
def template_registry(data_store: DataStore) -> TemplateRegistry:
    return TemplateRegistry(data_store)


@pytest.fixture
def recording_channel() -> RecordingChannel:
    """Email provider that records sends and never fails."""
    return RecordingChannel()


@pytest.fixture
def providers(recording_channel: RecordingChannel) -> ChannelProviders:
    return ChannelProviders([recording_channel])


@pytest.fixture
async def dispatch_queue():
    """Open dispatch queue with no workers attached."""
    queue = InMemoryDispatchQueue()
    await queue.open()
    yield queue
    await queue.close()


@pytest.fixture
def service(data_store, dispatch_queue, template_registry) -> NotificationService:
    return NotificationService(
        data_store=data_store,
        dispatch_queue=dispatch_queue,
        template_registry=template_registry,
        backoff_delay=TEST_BACKOFF_SECONDS,
    )


@pytest.fixture
def worker(service, providers) -> DeliveryWorker:
    return DeliveryWorker(service, providers)


@pytest.fixture
def email_request() -> EnqueueRequest:
    """The simplest valid request: explicit body, default attempts."""
    return EnqueueRequest(
        channel=NotificationChannel.EMAIL,
        recipient="a@b.com",
        body="hi",
    )


@pytest.fixture
def smtp_settings() -> NotificationsSettings:
    """Settings with every SMTP value present (ignores the environment's .env)."""
    return NotificationsSettings(
        _env_file=None,
        SMTP_HOST="smtp.example.com",
        SMTP_PORT=587,
        SMTP_USER="mailer",
        SMTP_PASSWORD="secret",
        EMAIL_FROM_ADDRESS="no-reply@example.com",
    )


@pytest.fixture
def job_for():
    """Build a dispatch job the way the service submits one."""
    def _job_for(notification_id: str) -> Job:
        return Job(queue_name="notifications", data={"notification_id": notification_id})
    return _job_for
