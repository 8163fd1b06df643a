"""
Tests for the NotificationService.

The queue in these tests is open but has no workers, so submitted jobs stay
put and can be inspected.
"""

from datetime import timedelta

import pytest
from sqlalchemy import select

from dispatch.notification_service import NotificationService
from notifications.data_store import DataStore
from notifications.errors import NotFoundError, QueueClosedError, ValidationError
from notifications.models import EnqueueRequest, NotificationChannel, NotificationStatus, utcnow
from notifications.tables import NotificationRow
from queue_fakes import InMemoryDispatchQueue, JobState


def make_request(**overrides) -> EnqueueRequest:
    fields = {"channel": NotificationChannel.EMAIL, "recipient": "a@b.com"}
    fields.update(overrides)
    return EnqueueRequest(**fields)


class TestEnqueue:
    """Tests for creating and dispatching a notification."""

    async def test_creates_queued_record(self, service: NotificationService, email_request):
        record = await service.enqueue(email_request)

        assert record.status == NotificationStatus.QUEUED
        assert record.attempt_count == 0
        assert record.max_attempts == 3
        assert record.body == "hi"
        assert record.sent_at is None
        assert (await service.get_notification(record.id)).id == record.id

    async def test_submits_one_job_with_retry_policy(
        self, service: NotificationService, dispatch_queue: InMemoryDispatchQueue, email_request
    ):
        record = await service.enqueue(email_request)

        jobs = dispatch_queue.get_jobs(JobState.WAITING)
        assert len(jobs) == 1
        job = jobs[0]
        assert job.queue_name == "notifications"
        assert job.data == {"notification_id": record.id}
        assert job.options.attempts == 3
        assert job.options.backoff.type == "exponential"
        assert job.options.backoff.delay == service.backoff_delay
        assert job.options.remove_on_complete is True
        assert job.options.remove_on_fail is False
        assert job.options.delay == 0.0

    async def test_requires_body_or_template(
        self, service: NotificationService, dispatch_queue: InMemoryDispatchQueue
    ):
        with pytest.raises(ValidationError, match="templateKey or body"):
            await service.enqueue(make_request())

        assert dispatch_queue.get_jobs() == []

    async def test_empty_body_counts_as_missing(self, service: NotificationService):
        with pytest.raises(ValidationError):
            await service.enqueue(make_request(body=""))

    async def test_unknown_template_key(
        self, service: NotificationService, dispatch_queue: InMemoryDispatchQueue
    ):
        with pytest.raises(NotFoundError):
            await service.enqueue(make_request(template_key="missing"))

        assert dispatch_queue.get_jobs() == []

    async def test_template_content_is_snapshotted(self, service: NotificationService):
        """Later template edits and deletion never change a created notification."""
        template = await service.create_template(
            key="welcome",
            channel=NotificationChannel.EMAIL,
            subject="Welcome!",
            body="Thanks for joining.",
        )
        record = await service.enqueue(make_request(template_key="welcome"))

        await service.update_template(template.id, subject="Changed", body="Changed body")
        await service.delete_template(template.id)

        stored = await service.get_notification(record.id)
        assert stored.template_id == template.id
        assert stored.subject == "Welcome!"
        assert stored.body == "Thanks for joining."

    async def test_explicit_values_override_template(self, service: NotificationService):
        await service.create_template(
            key="welcome", channel=NotificationChannel.EMAIL, subject="Template subject", body="Template body"
        )

        record = await service.enqueue(make_request(template_key="welcome", subject="Custom subject"))

        assert record.subject == "Custom subject"
        assert record.body == "Template body"

    async def test_explicit_body_overrides_template(self, service: NotificationService):
        await service.create_template(key="welcome", channel=NotificationChannel.EMAIL, body="Template body")

        record = await service.enqueue(make_request(template_key="welcome", body="Custom body"))

        assert record.body == "Custom body"
        assert record.subject is None

    async def test_payload_is_stored_untouched(self, service: NotificationService):
        payload = {"order": {"id": "ord-1", "items": [1, 2]}}

        record = await service.enqueue(make_request(body="x", payload=payload))

        assert record.payload.root == payload

    @pytest.mark.parametrize("requested,expected", [(0, 1), (-2, 1), (7, 7), (50, 10)])
    async def test_max_attempts_is_clamped(
        self, service: NotificationService, dispatch_queue: InMemoryDispatchQueue, requested, expected
    ):
        record = await service.enqueue(make_request(body="x", max_attempts=requested))

        assert record.max_attempts == expected
        assert dispatch_queue.get_jobs()[0].options.attempts == expected

    async def test_future_schedule_delays_job(
        self, service: NotificationService, dispatch_queue: InMemoryDispatchQueue
    ):
        scheduled_for = utcnow() + timedelta(seconds=60)

        record = await service.enqueue(make_request(body="x", scheduled_for=scheduled_for))

        assert record.scheduled_for == scheduled_for
        delay = dispatch_queue.get_jobs()[0].options.delay
        assert 58 < delay <= 60

    async def test_past_schedule_runs_immediately(
        self, service: NotificationService, dispatch_queue: InMemoryDispatchQueue
    ):
        await service.enqueue(make_request(body="x", scheduled_for=utcnow() - timedelta(hours=1)))

        assert dispatch_queue.get_jobs()[0].options.delay == 0.0

    @pytest.mark.parametrize(
        "opened, reject_with",
        [(False, None), (True, "broker connection refused")],
        ids=["closed", "broker-rejects"],
    )
    async def test_queue_failure_leaves_record_queued(
        self, data_store: DataStore, opened, reject_with
    ):
        """If the job cannot be submitted the caller sees the error; the record stays QUEUED."""
        failing_queue = InMemoryDispatchQueue(reject_with=reject_with)
        if opened:
            await failing_queue.open()
        service = NotificationService(data_store, failing_queue)

        with pytest.raises(QueueClosedError):
            await service.enqueue(make_request(body="x"))

        async with data_store.engine.connect() as conn:
            rows = (
                await conn.execute(select(NotificationRow.status, NotificationRow.attempt_count))
            ).all()
        assert [tuple(row) for row in rows] == [("QUEUED", 0)]
        assert failing_queue.get_jobs() == []


class TestLifecycleWrites:
    """Tests for the writes the delivery worker performs."""

    async def test_get_unknown_notification(self, service: NotificationService):
        with pytest.raises(NotFoundError):
            await service.get_notification("missing")

    async def test_increment_attempt(self, service: NotificationService, email_request):
        record = await service.enqueue(email_request)

        updated = await service.increment_attempt(record.id)

        assert updated.attempt_count == 1

    async def test_mark_as_failed(self, service: NotificationService, email_request):
        record = await service.enqueue(email_request)

        failed = await service.mark_as_failed(record.id, "SMTP timeout")

        assert failed.status == NotificationStatus.FAILED
        assert failed.error == "SMTP timeout"
        assert failed.sent_at is None

    async def test_mark_as_delivered_keeps_last_error(self, service: NotificationService, email_request):
        record = await service.enqueue(email_request)
        await service.mark_as_failed(record.id, "SMTP timeout")

        delivered = await service.mark_as_delivered(record.id)

        assert delivered.status == NotificationStatus.DELIVERED
        assert delivered.sent_at is not None
        assert delivered.error == "SMTP timeout"
