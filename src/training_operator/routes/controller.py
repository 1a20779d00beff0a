"""Controller routes exposing enabled job kinds and their counters."""

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, ConfigDict, Field

from training_operator.routes.health import DispatcherDep
from training_operator.services.controller import JobController

router = APIRouter(prefix="/api/v1/controller", tags=["Controller"])


class ControllerMetricsResponse(BaseModel):
    """Response model for one job controller."""

    model_config = ConfigDict(populate_by_name=True)

    kind: str
    running: bool
    workers: int
    queue_depth: int = Field(alias="queueDepth")
    jobs: int
    reconciles: int
    errors: int
    requeues: int
    last_error: str | None = Field(default=None, alias="lastError")
    last_resync: str | None = Field(default=None, alias="lastResync")
    last_duration_seconds: float = Field(alias="lastDurationSeconds")


class ControllerSummaryResponse(BaseModel):
    """Response model for the operator summary."""

    model_config = ConfigDict(populate_by_name=True)

    enabled_schemes: list[str] = Field(alias="enabledSchemes")
    gang_scheduling: bool = Field(alias="gangScheduling")
    controllers: list[ControllerMetricsResponse]


def _metrics_response(controller: JobController) -> ControllerMetricsResponse:
    metrics = controller.metrics
    return ControllerMetricsResponse(
        kind=controller.kind,
        running=controller.is_running,
        workers=controller.settings.workers,
        queueDepth=len(controller.queue) if controller.queue is not None else 0,
        jobs=len(metrics.jobs_seen),
        reconciles=metrics.reconciles,
        errors=metrics.errors,
        requeues=metrics.requeues,
        lastError=metrics.last_error,
        lastResync=metrics.last_resync.isoformat() if metrics.last_resync else None,
        lastDurationSeconds=metrics.last_duration_seconds,
    )


@router.get("", response_model=ControllerSummaryResponse, response_model_by_alias=True)
async def get_summary(dispatcher: DispatcherDep) -> ControllerSummaryResponse:
    """Get the enabled job kinds and the counters of their controllers."""
    return ControllerSummaryResponse(
        enabledSchemes=dispatcher.enabled_schemes,
        gangScheduling=dispatcher.gang_scheduling,
        controllers=[_metrics_response(c) for c in dispatcher.controllers.values()],
    )


@router.get(
    "/{scheme}", response_model=ControllerMetricsResponse, response_model_by_alias=True
)
async def get_controller(scheme: str, dispatcher: DispatcherDep) -> ControllerMetricsResponse:
    """Get the counters of one job kind's controller."""
    controller = dispatcher.controllers.get(scheme.lower())
    if controller is None:
        raise HTTPException(status_code=404, detail=f"Job kind '{scheme}' is not enabled")
    return _metrics_response(controller)
