"""
FastAPI routes for the chain engine API.

Implements the core API endpoints:
- POST /v1/chains - Enqueue a chain
- GET /v1/queue - Queue size
- POST /v1/windows - Drain the queue inside an execution window
- GET /v1/events - Recent completion events
- POST /v1/migration - Run the legacy migration
- POST /v1/migration/rollback - Clear the migration flag
- DELETE /v1/migration/legacy - Delete legacy storage
- GET /v1/health - Health check
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from pydantic import BaseModel, Field

from chain_engine import __version__
from chain_engine.core.errors import (
    ChainEngineError,
    CoordinationError,
    PayloadTooLargeError,
    QueueFullError,
)
from chain_engine.core.models import BatchReport, ChainEvent, MigrationResult, TaskRequest
from chain_engine.core.window import ExecutionWindow
from chain_engine.orchestrator.scheduler import ChainScheduler

router = APIRouter(prefix="/v1", tags=["chains"])


# ==================== Request/Response Models ====================

class ChainSubmitRequest(BaseModel):
    """Request body for chain submission."""

    stages: list[list[TaskRequest]] = Field(..., min_length=1, description="Stages in execution order")

    model_config = {
        "json_schema_extra": {
            "example": {
                "stages": [
                    [{"workerTypeName": "sync", "inputPayload": "{\"items\": 3}"}],
                    [
                        {"workerTypeName": "upload"},
                        {"workerTypeName": "heavy_processing", "inputPayload": "{\"limit\": 5000}"},
                    ],
                ]
            }
        }
    }


class ChainSubmitResponse(BaseModel):
    """Response for chain submission."""

    chain_id: str
    queue_size: int
    message: str = "Chain enqueued successfully"


class QueueStatusResponse(BaseModel):
    size: int
    in_flight: int
    capacity: int


class WindowRequest(BaseModel):
    """Request body for opening an execution window."""

    duration: Optional[float] = Field(default=None, gt=0, description="Window length in seconds")
    max_chains: Optional[int] = Field(default=None, ge=1, description="Upper bound on chains executed")


class WindowResponse(BaseModel):
    report: BatchReport
    needs_another_window: bool


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str
    services: dict[str, str]


# ==================== Dependency Injection ====================

async def get_scheduler(request: Request) -> ChainScheduler:
    """Get scheduler from app state."""
    return request.app.state.scheduler


def _require_migrator(scheduler: ChainScheduler):
    if scheduler.migrator is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="No legacy store configured"
        )
    return scheduler.migrator


# ==================== Routes ====================

@router.post(
    "/chains",
    response_model=ChainSubmitResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Enqueue a chain",
    description="Persist a chain of stages and append it to the durable queue."
)
async def submit_chain(
    request: ChainSubmitRequest,
    scheduler: ChainScheduler = Depends(get_scheduler),
) -> ChainSubmitResponse:
    """Enqueue a chain for the next execution window."""
    try:
        chain_id = await scheduler.enqueue_chain(request.stages)
        return ChainSubmitResponse(chain_id=chain_id, queue_size=await scheduler.get_queue_size())

    except PayloadTooLargeError as e:
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail=str(e),
        )
    except QueueFullError as e:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=str(e),
        )
    except CoordinationError as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=str(e),
        )
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e),
        )


@router.get(
    "/queue",
    response_model=QueueStatusResponse,
    summary="Get queue status",
)
async def get_queue_status(
    scheduler: ChainScheduler = Depends(get_scheduler),
) -> QueueStatusResponse:
    """Report queued and in-flight chain counts."""
    return QueueStatusResponse(
        size=await scheduler.get_queue_size(),
        in_flight=len(await scheduler.queue.in_flight()),
        capacity=scheduler.queue.max_size,
    )


@router.post(
    "/windows",
    response_model=WindowResponse,
    summary="Run an execution window",
    description="Drain queued chains until the window's budget runs low."
)
async def run_window(
    request: WindowRequest,
    scheduler: ChainScheduler = Depends(get_scheduler),
) -> WindowResponse:
    """Open a window and execute a batch of chains inside it."""
    duration = request.duration or scheduler.settings.executor.window_duration
    window = ExecutionWindow.open(duration)

    try:
        report = await scheduler.run_window(window, max_chains=request.max_chains)
    except CoordinationError as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=str(e),
        )

    return WindowResponse(report=report, needs_another_window=report.needs_another_window)


@router.get(
    "/events",
    response_model=list[ChainEvent],
    summary="Recent chain events",
)
async def get_events(
    limit: int = Query(default=20, ge=1, le=1000),
    scheduler: ChainScheduler = Depends(get_scheduler),
) -> list[ChainEvent]:
    """Most recent completion/failure events, newest last."""
    return scheduler.event_bus.recent[-limit:]


@router.post(
    "/migration",
    response_model=MigrationResult,
    summary="Migrate legacy storage",
)
async def run_migration(
    scheduler: ChainScheduler = Depends(get_scheduler),
) -> MigrationResult:
    """Run the one-time legacy migration (no-op once completed)."""
    return await _require_migrator(scheduler).migrate()


@router.post(
    "/migration/rollback",
    summary="Clear the migration flag",
)
async def rollback_migration(
    scheduler: ChainScheduler = Depends(get_scheduler),
) -> dict[str, bool]:
    """Allow the migration to run again."""
    return {"rolled_back": await _require_migrator(scheduler).rollback()}


@router.delete(
    "/migration/legacy",
    summary="Delete legacy storage",
    description="Irreversibly removes every legacy key. Only allowed after migration."
)
async def clear_legacy_storage(
    scheduler: ChainScheduler = Depends(get_scheduler),
) -> dict[str, int]:
    """Delete the migrated legacy keys."""
    try:
        removed = await _require_migrator(scheduler).clear_old_storage()
    except ChainEngineError as e:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=str(e),
        )
    return {"removed": removed}


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
)
async def health_check(request: Request) -> HealthResponse:
    """Check storage and legacy store health."""
    services: dict[str, str] = {}

    scheduler: Optional[ChainScheduler] = getattr(request.app.state, "scheduler", None)
    if scheduler is None:
        services["storage"] = "not initialized"
    else:
        try:
            await scheduler.get_queue_size()
            services["storage"] = "healthy"
        except CoordinationError:
            services["storage"] = "unhealthy"

        if scheduler.migrator is not None:
            legacy_ok = await scheduler.migrator.legacy.health_check()
            services["legacy_store"] = "healthy" if legacy_ok else "unhealthy"

    overall = "healthy" if all(s == "healthy" for s in services.values()) else "degraded"

    return HealthResponse(
        status=overall,
        version=__version__,
        services=services,
    )
