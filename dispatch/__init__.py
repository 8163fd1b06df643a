"""
Asynchronous dispatch pipeline.

The NotificationService records requests and submits jobs to the dispatch
queue; DeliveryWorkers consume those jobs and call the channel providers.
CeleryDispatchQueue carries the jobs over a broker, and DispatchRuntime
wires the pieces together with an explicit lifecycle.
"""

from dispatch.dispatch_queue import Backoff, DispatchQueue, Job, JobOptions
from dispatch.celery_queue import CeleryDispatchQueue, create_celery_app
from dispatch.notification_service import NotificationService
from dispatch.worker import DeliveryWorker
from dispatch.runtime import DispatchRuntime

__all__ = [
    "Backoff",
    "CeleryDispatchQueue",
    "DispatchQueue",
    "Job",
    "JobOptions",
    "create_celery_app",
    "NotificationService",
    "DeliveryWorker",
    "DispatchRuntime",
]
