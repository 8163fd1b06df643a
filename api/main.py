"""
FastAPI application for the notification dispatch service.

This application provides:
1. Notification endpoints (enqueue, poll status)
2. Template management endpoints
3. Liveness and readiness probes

Run with:
    uv run uvicorn api.main:app --reload

The routes are a thin adapter: all behavior lives in NotificationService.
The dispatch runtime (store, queue, workers) is built in the lifespan and
torn down on shutdown.
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request, Response, status
from fastapi.responses import JSONResponse

from api.models import HealthStatus, NotificationCreate
from dispatch.notification_service import NotificationService
from dispatch.runtime import DispatchRuntime
from notifications.config import get_settings
from notifications.errors import ConflictError, NotFoundError, QueueClosedError, ValidationError
from notifications.models import Notification, NotificationTemplate, TemplateCreate, TemplateUpdate, utcnow

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(name)-24s | %(levelname)-5s | %(message)s",
    datefmt="%H:%M:%S",
)

logger = logging.getLogger("notification_api")

# Module-level state, set by the lifespan or by reset_api_state() in tests
_runtime: Optional[DispatchRuntime] = None
_service: Optional[NotificationService] = None


def get_service() -> NotificationService:
    """Dependency: the notification service."""
    if _service is None:
        raise HTTPException(status_code=503, detail="Notification service not started")
    return _service


def reset_api_state(
    service: Optional[NotificationService] = None,
    runtime: Optional[DispatchRuntime] = None,
) -> None:
    """Replace the service/runtime used by the routes (for testing)."""
    global _service, _runtime
    _runtime = runtime
    _service = service if service is not None else (runtime.service if runtime else None)


# Application lifespan
@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build and start the dispatch runtime; stop it on shutdown."""
    settings = get_settings()
    logging.getLogger().setLevel(settings.LOG_LEVEL)

    owned = _runtime is None and _service is None
    if owned:
        runtime = DispatchRuntime.from_settings(settings)
        reset_api_state(runtime=runtime)
    if _runtime is not None:
        await _runtime.start()

    logger.info("Notifications service ready")
    try:
        yield
    finally:
        if _runtime is not None:
            await _runtime.stop()
        if owned:
            reset_api_state()
        logger.info("Shutting down")


settings = get_settings()

app = FastAPI(
    title="Notification Dispatch Service",
    description="Queue notifications for asynchronous delivery with bounded retries.",
    version="1.0.0",
    lifespan=lifespan,
)

router = APIRouter(
    prefix=f"/{settings.NOTIFICATIONS_SERVICE_GLOBAL_PREFIX}/v1/notifications",
    tags=["Notifications"],
)


# =============================================================================
# Error mapping
# =============================================================================

@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError):
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(ConflictError)
async def conflict_handler(request: Request, exc: ConflictError):
    return JSONResponse(status_code=409, content={"detail": str(exc)})


@app.exception_handler(QueueClosedError)
async def queue_closed_handler(request: Request, exc: QueueClosedError):
    return JSONResponse(status_code=503, content={"detail": str(exc)})


# =============================================================================
# Health Check
# =============================================================================

@app.get("/healthz", response_model=HealthStatus, tags=["Health"])
def liveness():
    """Liveness probe."""
    return HealthStatus(timestamp=utcnow())


@app.get("/healthz/ready", response_model=HealthStatus, tags=["Health"])
async def readiness(service: NotificationService = Depends(get_service)):
    """Readiness probe: the store answers and the dispatch queue is open."""
    try:
        await service.data_store.ping()
    except Exception:
        logger.exception("Record store readiness check failed")
        raise HTTPException(status_code=503, detail="Record store unavailable")

    if not service.dispatch_queue.is_open:
        raise HTTPException(status_code=503, detail="Dispatch queue unavailable")

    return HealthStatus(
        timestamp=utcnow(),
        details={"store": "up", "queue": "up"},
    )


# =============================================================================
# Notifications
# =============================================================================

@router.post("", response_model=Notification, status_code=status.HTTP_202_ACCEPTED)
async def enqueue_notification(
    request: NotificationCreate,
    service: NotificationService = Depends(get_service),
) -> Notification:
    """
    Queue a notification for delivery.

    The response is the stored record (status QUEUED). Poll
    GET /notifications/{id} for the outcome.
    """
    return await service.enqueue(request)


@router.get("/{notification_id}", response_model=Notification)
async def get_notification(
    notification_id: str,
    service: NotificationService = Depends(get_service),
) -> Notification:
    return await service.get_notification(notification_id)


# =============================================================================
# Templates
# =============================================================================

@router.post("/templates", response_model=NotificationTemplate, status_code=status.HTTP_201_CREATED)
async def create_template(
    request: TemplateCreate,
    service: NotificationService = Depends(get_service),
) -> NotificationTemplate:
    return await service.create_template(
        key=request.key,
        channel=request.channel,
        body=request.body,
        subject=request.subject,
        description=request.description,
    )


@router.get("/templates/all/list", response_model=list[NotificationTemplate])
async def list_templates(service: NotificationService = Depends(get_service)):
    """All templates ordered by key."""
    return await service.list_templates()


@router.put("/templates/{template_id}", response_model=NotificationTemplate)
async def update_template(
    template_id: str,
    request: TemplateUpdate,
    service: NotificationService = Depends(get_service),
) -> NotificationTemplate:
    return await service.update_template(
        template_id,
        subject=request.subject,
        body=request.body,
        description=request.description,
    )


@router.delete("/templates/{template_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_template(
    template_id: str,
    service: NotificationService = Depends(get_service),
) -> Response:
    await service.delete_template(template_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


app.include_router(router)
