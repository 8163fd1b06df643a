"""
Celery worker entry point.

    celery -A dispatch.celery_worker worker -Q notifications --loglevel=INFO

Importing this module builds the Celery app and registers a processor for
the configured queue. Nothing connects at import time: each worker process
builds its own DispatchRuntime when its first job arrives, so after a
prefork fork the children never share database connections or event loops,
and the solo pool works the same way.
"""

import logging
from typing import Optional

from celery.signals import worker_process_shutdown, worker_shutdown

from dispatch.celery_queue import CeleryDispatchQueue, create_celery_app
from dispatch.dispatch_queue import Job
from dispatch.runtime import DispatchRuntime
from notifications.config import get_settings

logger = logging.getLogger("celery_worker")

settings = get_settings()
queue = CeleryDispatchQueue(create_celery_app(settings))
app = queue.celery_app

_runtime: Optional[DispatchRuntime] = None


async def process_job(job: Job) -> None:
    """Start this process's runtime on first use, then deliver the job."""
    global _runtime
    if _runtime is None:
        runtime = DispatchRuntime.from_settings(settings, dispatch_queue=queue)
        await runtime.start()
        _runtime = runtime
        logger.info("Delivery worker process ready")
    await _runtime.worker.process(job)


queue.process(
    settings.NOTIFICATIONS_QUEUE_NAME,
    process_job,
    concurrency=settings.NOTIFICATIONS_WORKER_CONCURRENCY,
)


@worker_process_shutdown.connect
@worker_shutdown.connect
def stop_runtime(**kwargs) -> None:
    global _runtime
    if _runtime is not None:
        queue.run(_runtime.stop())
        _runtime = None
