"""
Dispatch queue contract: delayed, retrying job queue that drives delivery.

The notification service submits one job per notification; delivery workers
consume them. The queue, not the service or the worker, owns retry timing.

This module only defines the job model and the DispatchQueue protocol. The
production engine is dispatch.celery_queue.CeleryDispatchQueue.

Design decisions:
- A job carries its own options (delay, attempts, backoff, retention), so
  whichever process consumes it can apply the retry policy without asking
  the producer
- attempts_made is the number of attempts that already failed before the
  current one
- If the processor raises, the job is retried with backoff until attempts
  are used up, then kept as failed (unless remove_on_fail)
"""

from typing import Any, Awaitable, Callable, Literal, Optional, Protocol
from uuid import uuid4

from pydantic import BaseModel, Field


class Backoff(BaseModel):
    """Retry delay policy. delay is the base unit in seconds."""
    type: Literal["exponential", "fixed"] = "exponential"
    delay: float = Field(default=1.0, ge=0)

    def delay_for(self, attempts_made: int) -> float:
        """Delay before the next attempt, given how many attempts have failed."""
        if self.type == "fixed":
            return self.delay
        return self.delay * (2 ** max(0, attempts_made - 1))


class JobOptions(BaseModel):
    """Per-job scheduling and retry options."""
    delay: float = Field(default=0.0, ge=0, description="Seconds before first attempt")
    attempts: int = Field(default=1, ge=1, description="Total attempts allowed")
    backoff: Optional[Backoff] = None
    remove_on_complete: bool = True
    remove_on_fail: bool = False

    def retry_delay(self, attempts_made: int) -> float:
        """Seconds to wait before retrying after `attempts_made` failures."""
        backoff = self.backoff or Backoff(type="fixed", delay=0.0)
        return backoff.delay_for(attempts_made)


class Job(BaseModel):
    """A unit of work held by the queue."""
    id: str = Field(default_factory=lambda: str(uuid4()))
    queue_name: str
    data: dict[str, Any]
    options: JobOptions = Field(default_factory=JobOptions)
    attempts_made: int = 0


JobProcessor = Callable[[Job], Awaitable[None]]


class DispatchQueue(Protocol):
    """What the service, the worker and the health check need from a queue engine."""

    @property
    def is_open(self) -> bool: ...

    async def open(self) -> None: ...

    async def close(self) -> None: ...

    async def enqueue(
        self, queue_name: str, data: dict[str, Any], options: JobOptions
    ) -> Job: ...

    def process(
        self, queue_name: str, processor: JobProcessor, concurrency: int = 5
    ) -> None: ...
