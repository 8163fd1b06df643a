"""
Celery-backed dispatch queue.

Jobs are published to a broker (Redis in production) and consumed by a
Celery worker process started with:

    celery -A dispatch.celery_worker worker -Q notifications

Design decisions:
- One Celery task (dispatch.run_job) carries every job; the queue name in
  its kwargs selects the processor registered with process()
- The job id is the Celery task id, so a job can be looked up in the
  result backend by the id enqueue() returned
- delay maps to countdown; retries go through Task.retry() with the job's
  own backoff, and the job's attempts bound max_retries
- remove_on_complete maps to ignore_result; failures are always stored
  (store_errors_even_if_ignored) and forgotten again when remove_on_fail
- Acks are late and prefetch is 1, so a job held by a worker that dies is
  redelivered rather than lost (at-least-once)
- Processors are coroutines; each worker thread runs them on its own
  event loop
"""

import asyncio
import logging
import threading
from typing import Any, Coroutine, Optional, TypeVar

from celery import Celery, Task
from kombu import Exchange, Queue
from kombu.exceptions import KombuError

from dispatch.dispatch_queue import Job, JobOptions, JobProcessor
from notifications.config import NotificationsSettings
from notifications.errors import ConfigurationError, QueueClosedError

logger = logging.getLogger("celery_queue")

RUN_JOB_TASK = "dispatch.run_job"

T = TypeVar("T")


def create_celery_app(settings: NotificationsSettings) -> Celery:
    """Build a Celery application configured for notification dispatch."""
    queue_name = settings.NOTIFICATIONS_QUEUE_NAME
    app = Celery(
        "notifications",
        broker=settings.NOTIFICATIONS_BROKER_URL,
        backend=settings.NOTIFICATIONS_RESULT_BACKEND,
    )
    app.conf.update(
        task_serializer="json",
        accept_content=["json"],
        result_serializer="json",
        timezone="UTC",
        enable_utc=True,
        task_acks_late=True,
        task_reject_on_worker_lost=True,
        worker_prefetch_multiplier=1,
        worker_concurrency=settings.NOTIFICATIONS_WORKER_CONCURRENCY,
        task_default_queue=queue_name,
        task_queues=(
            Queue(queue_name, Exchange("notifications"), routing_key=queue_name),
        ),
        # Redis hands unacknowledged (including countdown) jobs to another
        # worker after this long
        broker_transport_options={
            "visibility_timeout": settings.NOTIFICATIONS_BROKER_VISIBILITY_TIMEOUT_SECONDS,
        },
    )
    return app


class DispatchTask(Task):
    """Base task for dispatch jobs; applies the job's retention on failure."""

    def on_failure(self, exc, task_id, args, kwargs, einfo):
        options = JobOptions(**kwargs.get("job", {}).get("options", {}))
        if options.remove_on_fail:
            self.AsyncResult(task_id).forget()


class CeleryDispatchQueue:
    """
    Dispatch queue on top of a Celery application.

    Example usage:
        queue = CeleryDispatchQueue(create_celery_app(settings))
        await queue.open()
        queue.process("notifications", worker.process)
        await queue.enqueue("notifications", {"notification_id": "..."},
                            JobOptions(attempts=3, backoff=Backoff(delay=1.0)))
    """

    def __init__(self, celery_app: Celery):
        self.celery_app = celery_app
        self._processors: dict[str, JobProcessor] = {}
        self._loops = threading.local()
        self._open = False

        def run_job(task: Task, queue_name: str, job: dict[str, Any]) -> None:
            self._execute(task, queue_name, job)

        self.task = celery_app.task(
            bind=True,
            base=DispatchTask,
            name=RUN_JOB_TASK,
            store_errors_even_if_ignored=True,
            shared=False,
            lazy=False,
        )(run_job)

    # =========================================================================
    # Lifecycle
    # =========================================================================

    @property
    def is_open(self) -> bool:
        return self._open

    async def open(self) -> None:
        self._open = True
        logger.info(f"Dispatch queue open (app={self.celery_app.main})")

    async def close(self) -> None:
        if not self._open:
            return
        self._open = False
        logger.info("Dispatch queue closed")

    # =========================================================================
    # Producing
    # =========================================================================

    async def enqueue(
        self, queue_name: str, data: dict[str, Any], options: JobOptions
    ) -> Job:
        """
        Publish a job to the broker.

        Raises:
            QueueClosedError: If the queue is not open or the broker refuses the job
        """
        if not self._open:
            raise QueueClosedError(f"Dispatch queue is not open (queue={queue_name})")

        job = Job(queue_name=queue_name, data=dict(data), options=options)
        try:
            await asyncio.to_thread(
                self.celery_app.send_task,
                RUN_JOB_TASK,
                kwargs={"queue_name": queue_name, "job": job.model_dump(mode="json")},
                task_id=job.id,
                queue=queue_name,
                countdown=options.delay,
                ignore_result=options.remove_on_complete,
            )
        except (KombuError, OSError) as e:
            raise QueueClosedError(f"Broker rejected job for queue '{queue_name}': {e}") from e

        logger.debug(f"Job {job.id} enqueued on '{queue_name}' (delay={options.delay:.3f}s)")
        return job

    # =========================================================================
    # Consuming
    # =========================================================================

    def process(
        self, queue_name: str, processor: JobProcessor, concurrency: int = 5
    ) -> None:
        """
        Register the processor for a queue.

        Jobs are consumed by the Celery worker process; concurrency takes
        effect when it is set before that worker boots.
        """
        self._processors[queue_name] = processor
        self.celery_app.conf.worker_concurrency = concurrency
        logger.info(f"Processor registered on '{queue_name}' (concurrency={concurrency})")

    def run(self, coro: Coroutine[Any, Any, T]) -> T:
        """Run a coroutine to completion on this thread's event loop."""
        loop: Optional[asyncio.AbstractEventLoop] = getattr(self._loops, "loop", None)
        if loop is None or loop.is_closed():
            loop = asyncio.new_event_loop()
            self._loops.loop = loop
        return loop.run_until_complete(coro)

    def _execute(self, task: Task, queue_name: str, job_data: dict[str, Any]) -> None:
        job = Job(**job_data)
        job.attempts_made = task.request.retries or 0

        processor = self._processors.get(queue_name)
        if processor is None:
            raise ConfigurationError(f"No processor registered for queue '{queue_name}'")

        try:
            self.run(processor(job.model_copy(deep=True)))
        except Exception as e:
            attempts_made = job.attempts_made + 1
            if attempts_made >= job.options.attempts:
                logger.warning(
                    f"Job {job.id} failed permanently after {attempts_made} attempts: {e}"
                )
                raise
            delay = job.options.retry_delay(attempts_made)
            logger.info(
                f"Job {job.id} failed (attempt {attempts_made}/{job.options.attempts}), "
                f"retrying in {delay:.3f}s"
            )
            raise task.retry(exc=e, countdown=delay, max_retries=job.options.attempts - 1)

        logger.debug(f"Job {job.id} completed")
