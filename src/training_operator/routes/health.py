"""Health check endpoints for Kubernetes probes."""

from datetime import UTC, datetime
from typing import Annotated, Any

from fastapi import APIRouter, Depends, Request, Response, status
from pydantic import BaseModel

from training_operator import __version__
from training_operator.core.config import Settings, get_settings
from training_operator.services.dispatcher import SchemeDispatcher

SettingsDep = Annotated[Settings, Depends(get_settings)]

router = APIRouter(tags=["health"])


def get_dispatcher(request: Request) -> SchemeDispatcher:
    """Dispatcher attached to the application at creation time."""
    return request.app.state.dispatcher


DispatcherDep = Annotated[SchemeDispatcher, Depends(get_dispatcher)]


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    timestamp: datetime
    version: str
    environment: str


class ReadinessResponse(BaseModel):
    """Readiness check response with per-controller status."""

    status: str
    timestamp: datetime
    checks: dict[str, Any]


@router.get("/healthz", response_model=HealthResponse)
async def health_check(settings: SettingsDep) -> HealthResponse:
    """Liveness probe.

    Returns minimal information to confirm the process is serving.
    """
    return HealthResponse(
        status="healthy",
        timestamp=datetime.now(UTC),
        version=__version__,
        environment=settings.environment,
    )


@router.get("/readyz", response_model=ReadinessResponse)
async def readiness_check(dispatcher: DispatcherDep, response: Response) -> ReadinessResponse:
    """Readiness probe.

    Ready once every enabled job controller is running.
    """
    checks: dict[str, Any] = {
        controller.kind: {"status": "ok" if controller.is_running else "error"}
        for controller in dispatcher.controllers.values()
    }

    ready = dispatcher.is_running
    if not ready:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    return ReadinessResponse(
        status="ready" if ready else "not_ready",
        timestamp=datetime.now(UTC),
        checks=checks,
    )
