"""
Runtime wiring for the dispatch pipeline.

Builds the store, queue, service, providers and worker once at process start
and gives them an explicit start/stop lifecycle. There is no module-level
queue connection; everything is passed in by construction.
"""

import logging
from typing import Optional

from dispatch.celery_queue import CeleryDispatchQueue, create_celery_app
from dispatch.dispatch_queue import DispatchQueue
from dispatch.notification_service import NotificationService
from dispatch.worker import DeliveryWorker
from notifications.channels import ChannelProviders, EmailProvider
from notifications.config import NotificationsSettings
from notifications.data_store import DataStore
from notifications.templates import TemplateRegistry

logger = logging.getLogger("dispatch_runtime")


class DispatchRuntime:
    """
    All long-lived collaborators of the dispatch pipeline.

    Example:
        runtime = DispatchRuntime.from_settings(get_settings())
        await runtime.start()
        record = await runtime.service.enqueue(request)
        ...
        await runtime.stop()
    """

    def __init__(
        self,
        data_store: DataStore,
        dispatch_queue: DispatchQueue,
        providers: ChannelProviders,
        queue_name: str = "notifications",
        concurrency: int = 5,
        backoff_delay: float = 1.0,
    ):
        self.data_store = data_store
        self.dispatch_queue = dispatch_queue
        self.providers = providers
        self.queue_name = queue_name
        self.concurrency = concurrency

        self.templates = TemplateRegistry(data_store)
        self.service = NotificationService(
            data_store=data_store,
            dispatch_queue=dispatch_queue,
            template_registry=self.templates,
            queue_name=queue_name,
            backoff_delay=backoff_delay,
        )
        self.worker = DeliveryWorker(self.service, providers)
        self._started = False

    @classmethod
    def from_settings(
        cls,
        settings: NotificationsSettings,
        providers: Optional[ChannelProviders] = None,
        dispatch_queue: Optional[DispatchQueue] = None,
    ) -> "DispatchRuntime":
        """
        Build a runtime from settings.

        Without explicit providers an EmailProvider is created, which raises
        ConfigurationError right here if any SMTP value is missing. Without an
        explicit queue a CeleryDispatchQueue on the configured broker is used.
        """
        if providers is None:
            providers = ChannelProviders([EmailProvider(settings)])
        if dispatch_queue is None:
            dispatch_queue = CeleryDispatchQueue(create_celery_app(settings))
        return cls(
            data_store=DataStore(settings.NOTIFICATIONS_DATABASE_URL),
            dispatch_queue=dispatch_queue,
            providers=providers,
            queue_name=settings.NOTIFICATIONS_QUEUE_NAME,
            concurrency=settings.NOTIFICATIONS_WORKER_CONCURRENCY,
            backoff_delay=settings.NOTIFICATIONS_BACKOFF_DELAY_SECONDS,
        )

    @property
    def started(self) -> bool:
        return self._started

    async def start(self) -> None:
        """Prepare the store, open the queue and attach the delivery worker."""
        if self._started:
            logger.warning("DispatchRuntime already started")
            return
        await self.data_store.initialize()
        await self.dispatch_queue.open()
        self.worker.start(self.dispatch_queue, self.queue_name, concurrency=self.concurrency)
        self._started = True
        logger.info(
            f"Dispatch runtime started: queue={self.queue_name}, concurrency={self.concurrency}"
        )

    async def stop(self) -> None:
        """Close the queue and release database connections."""
        if not self._started:
            return
        await self.dispatch_queue.close()
        await self.data_store.dispose()
        self._started = False
        logger.info("Dispatch runtime stopped")

    async def __aenter__(self) -> "DispatchRuntime":
        await self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.stop()
