"""
Tests for the Celery worker entry module.

Jobs are applied eagerly to the module's task, the way a worker process
would receive them; nothing talks to a broker.
"""

import pytest

from dispatch import celery_worker
from dispatch.dispatch_queue import Job, JobOptions


@pytest.fixture
def worker_module(monkeypatch, smtp_settings, database_url):
    """The worker module pointed at a private database, restored afterwards."""
    settings = smtp_settings.model_copy(update={"NOTIFICATIONS_DATABASE_URL": database_url})
    monkeypatch.setattr(celery_worker, "settings", settings)
    monkeypatch.setattr(celery_worker, "_runtime", None)
    monkeypatch.setattr(celery_worker.queue, "_processors", dict(celery_worker.queue._processors))
    yield celery_worker
    celery_worker.stop_runtime()


def apply_job(module, notification_id: str):
    queue_name = module.settings.NOTIFICATIONS_QUEUE_NAME
    job = Job(queue_name=queue_name, data={"notification_id": notification_id}, options=JobOptions())
    return module.queue.task.apply(
        kwargs={"queue_name": queue_name, "job": job.model_dump(mode="json")},
        task_id=job.id,
    )


class TestCeleryWorkerModule:
    """Tests for the per-process runtime started by the first job."""

    def test_processor_registered_at_import(self):
        queue_name = celery_worker.settings.NOTIFICATIONS_QUEUE_NAME

        assert queue_name in celery_worker.queue._processors
        assert celery_worker.app is celery_worker.queue.celery_app

    def test_first_job_starts_runtime(self, worker_module, database_url):
        assert worker_module._runtime is None

        result = apply_job(worker_module, "does-not-exist")

        runtime = worker_module._runtime
        assert result.state == "SUCCESS"
        assert runtime is not None
        assert runtime.started
        assert runtime.data_store.database_url == database_url
        assert worker_module.queue.is_open

    def test_runtime_is_reused_by_later_jobs(self, worker_module):
        apply_job(worker_module, "first")
        runtime = worker_module._runtime

        result = apply_job(worker_module, "second")

        assert result.state == "SUCCESS"
        assert worker_module._runtime is runtime
        queue_name = worker_module.settings.NOTIFICATIONS_QUEUE_NAME
        assert worker_module.queue._processors[queue_name] == runtime.worker.process

    def test_shutdown_stops_runtime(self, worker_module):
        apply_job(worker_module, "does-not-exist")
        runtime = worker_module._runtime

        worker_module.stop_runtime()

        assert not runtime.started
        assert worker_module._runtime is None
        assert not worker_module.queue.is_open
