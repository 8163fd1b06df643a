"""
Tests for the HTTP API.

Most tests inject a NotificationService backed by a recording queue, so no
delivery happens and submitted jobs can be inspected. The last class runs the
real lifespan with a full dispatch runtime.
"""

import asyncio
import time

import pytest
from fastapi.testclient import TestClient

from api.main import app, reset_api_state, settings
from dispatch.celery_queue import CeleryDispatchQueue, create_celery_app
from dispatch.dispatch_queue import JobOptions
from dispatch.notification_service import NotificationService
from dispatch.runtime import DispatchRuntime
from notifications.channels import ChannelProviders, RecordingChannel
from notifications.config import NotificationsSettings
from notifications.data_store import DataStore
from notifications.errors import QueueClosedError
from queue_fakes import InMemoryDispatchQueue

PREFIX = f"/{settings.NOTIFICATIONS_SERVICE_GLOBAL_PREFIX}/v1/notifications"


class RecordingQueue:
    """Dispatch queue stand-in that only remembers what was submitted."""

    def __init__(self):
        self.is_open = True
        self.broker_down = False
        self.submitted: list[tuple[str, dict, JobOptions]] = []

    async def enqueue(self, queue_name, data, options):
        if self.broker_down:
            raise QueueClosedError("Broker rejected job: connection refused")
        self.submitted.append((queue_name, data, options))


@pytest.fixture
def queue() -> RecordingQueue:
    return RecordingQueue()


@pytest.fixture
def store(database_url):
    """Initialized store; the TestClient runs requests on its own event loop."""
    store = DataStore(database_url)
    asyncio.run(store.initialize())
    yield store
    asyncio.run(store.dispose())


@pytest.fixture
def client(store, queue):
    """Test client over a service with a recording queue."""
    reset_api_state(service=NotificationService(store, queue))
    yield TestClient(app)
    reset_api_state()


def create_template(client, key="welcome", **fields):
    body = {"key": key, "channel": "EMAIL", "body": "Hello there", **fields}
    response = client.post(f"{PREFIX}/templates", json=body)
    assert response.status_code == 201
    return response.json()


class TestHealthEndpoints:

    def test_liveness(self, client):
        response = client.get("/healthz")

        assert response.status_code == 200
        assert response.json()["status"] == "ok"

    def test_readiness(self, client):
        response = client.get("/healthz/ready")

        assert response.status_code == 200
        assert response.json()["details"] == {"store": "up", "queue": "up"}

    def test_not_ready_when_queue_closed(self, client, queue):
        queue.is_open = False

        response = client.get("/healthz/ready")

        assert response.status_code == 503

    def test_readiness_follows_celery_queue_state(self, store):
        celery_queue = CeleryDispatchQueue(create_celery_app(NotificationsSettings(
            _env_file=None,
            NOTIFICATIONS_BROKER_URL="memory://",
            NOTIFICATIONS_RESULT_BACKEND="cache+memory://",
        )))
        reset_api_state(service=NotificationService(store, celery_queue))
        try:
            client = TestClient(app)
            assert client.get("/healthz/ready").status_code == 503

            asyncio.run(celery_queue.open())

            assert client.get("/healthz/ready").status_code == 200
        finally:
            reset_api_state()

    def test_not_ready_without_service(self):
        reset_api_state()

        response = TestClient(app).get("/healthz/ready")

        assert response.status_code == 503


class TestNotificationEndpoints:
    """Tests for enqueue and status polling."""

    def test_enqueue_returns_202(self, client, queue):
        response = client.post(PREFIX, json={
            "channel": "EMAIL",
            "recipient": "a@b.com",
            "subject": "Hi",
            "body": "Hello",
            "payload": {"order_id": "ord-1"},
        })

        assert response.status_code == 202
        data = response.json()
        assert data["status"] == "QUEUED"
        assert data["attempt_count"] == 0
        assert data["max_attempts"] == 3
        assert data["payload"] == {"order_id": "ord-1"}

        assert len(queue.submitted) == 1
        queue_name, job_data, options = queue.submitted[0]
        assert queue_name == "notifications"
        assert job_data == {"notification_id": data["id"]}
        assert options.attempts == 3

    def test_broker_unavailable_is_503(self, client, queue):
        queue.broker_down = True

        response = client.post(PREFIX, json={"channel": "EMAIL", "recipient": "a@b.com", "body": "x"})

        assert response.status_code == 503
        assert "connection refused" in response.json()["detail"]

    def test_get_notification(self, client):
        created = client.post(PREFIX, json={"channel": "EMAIL", "recipient": "a@b.com", "body": "x"}).json()

        response = client.get(f"{PREFIX}/{created['id']}")

        assert response.status_code == 200
        assert response.json()["id"] == created["id"]

    def test_get_unknown_notification(self, client):
        response = client.get(f"{PREFIX}/does-not-exist")

        assert response.status_code == 404
        assert "does-not-exist" in response.json()["detail"]

    def test_missing_body_and_template_is_400(self, client, queue):
        response = client.post(PREFIX, json={"channel": "EMAIL", "recipient": "a@b.com"})

        assert response.status_code == 400
        assert queue.submitted == []

    def test_unknown_template_is_404(self, client):
        response = client.post(PREFIX, json={
            "channel": "EMAIL",
            "recipient": "a@b.com",
            "template_key": "missing",
        })

        assert response.status_code == 404

    def test_enqueue_from_template(self, client):
        create_template(client, subject="Welcome!")

        response = client.post(PREFIX, json={
            "channel": "EMAIL",
            "recipient": "a@b.com",
            "template_key": "welcome",
        })

        assert response.status_code == 202
        assert response.json()["subject"] == "Welcome!"
        assert response.json()["body"] == "Hello there"

    @pytest.mark.parametrize(
        "body",
        [
            {"channel": "EMAIL", "body": "x"},
            {"channel": "SMS", "recipient": "a@b.com", "body": "x"},
            {"channel": "EMAIL", "recipient": "a@b.com", "body": "x", "max_attempts": 0},
            {"channel": "EMAIL", "recipient": "a@b.com", "body": "x", "max_attempts": 11},
            {"channel": "EMAIL", "recipient": "a@b.com", "body": "x", "priority": "high"},
            {"channel": "EMAIL", "recipient": "a@b.com", "subject": "s" * 181, "body": "x"},
        ],
    )
    def test_malformed_request_is_422(self, client, body):
        response = client.post(PREFIX, json=body)

        assert response.status_code == 422


class TestTemplateEndpoints:
    """Tests for template management."""

    def test_create_template(self, client):
        data = create_template(client, subject="Welcome!", description="greeting")

        assert data["key"] == "welcome"
        assert data["subject"] == "Welcome!"
        assert data["id"]

    def test_duplicate_key_is_409(self, client):
        create_template(client)

        response = client.post(f"{PREFIX}/templates", json={"key": "welcome", "body": "Other"})

        assert response.status_code == 409

    def test_list_templates(self, client):
        create_template(client, key="zeta")
        create_template(client, key="alpha")

        response = client.get(f"{PREFIX}/templates/all/list")

        assert response.status_code == 200
        assert [t["key"] for t in response.json()] == ["alpha", "zeta"]

    def test_update_template(self, client):
        template = create_template(client, subject="Old")

        response = client.put(f"{PREFIX}/templates/{template['id']}", json={"subject": "New"})

        assert response.status_code == 200
        assert response.json()["subject"] == "New"
        assert response.json()["body"] == "Hello there"

    def test_update_cannot_change_key(self, client):
        template = create_template(client)

        response = client.put(f"{PREFIX}/templates/{template['id']}", json={"key": "renamed"})

        assert response.status_code == 422

    def test_update_unknown_template(self, client):
        response = client.put(f"{PREFIX}/templates/missing", json={"body": "x"})

        assert response.status_code == 404

    def test_delete_template(self, client):
        template = create_template(client)

        response = client.delete(f"{PREFIX}/templates/{template['id']}")

        assert response.status_code == 204
        assert client.get(f"{PREFIX}/templates/all/list").json() == []
        assert client.delete(f"{PREFIX}/templates/{template['id']}").status_code == 404


class TestApiLifespan:
    """The lifespan starts the runtime; notifications get delivered."""

    def test_end_to_end_delivery(self, database_url):
        channel = RecordingChannel(fail_first=1)
        runtime = DispatchRuntime(
            data_store=DataStore(database_url),
            dispatch_queue=InMemoryDispatchQueue(),
            providers=ChannelProviders([channel]),
            backoff_delay=0.01,
        )
        reset_api_state(runtime=runtime)
        try:
            with TestClient(app) as client:
                assert client.get("/healthz/ready").status_code == 200

                created = client.post(PREFIX, json={
                    "channel": "EMAIL",
                    "recipient": "a@b.com",
                    "body": "Hello",
                }).json()

                record = created
                deadline = time.monotonic() + 5
                while record["status"] != "DELIVERED" and time.monotonic() < deadline:
                    time.sleep(0.02)
                    record = client.get(f"{PREFIX}/{created['id']}").json()

            assert record["status"] == "DELIVERED"
            assert record["attempt_count"] == 2
            assert not runtime.started
        finally:
            reset_api_state()
