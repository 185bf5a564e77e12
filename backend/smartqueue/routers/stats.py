"""
Service statistics endpoints.
"""

from datetime import datetime

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from smartqueue.auth.dependencies import get_orchestrator
from smartqueue.domain import EtaStats
from smartqueue.services.queue_orchestrator import QueueOrchestrator

router = APIRouter()


class UpdateStatsRequest(BaseModel):
    """A batch of customers served over a measurement window."""
    queue_id: str = Field(..., min_length=1)
    count: int = Field(..., ge=0)
    window_sec: float = Field(60, gt=0)


class UpdateStatsResponse(BaseModel):
    message: str
    queue_id: str
    served_count: int
    ema_service_rate: float


class StatsResponse(BaseModel):
    queue_id: str
    window_key: str
    window_start: datetime
    served_count: int
    ema_service_rate: float
    p50_wait_minutes: int
    p90_wait_minutes: int
    updated_at: datetime


def _stats_response(stats: EtaStats) -> StatsResponse:
    return StatsResponse(
        queue_id=stats.queue_id,
        window_key=stats.window_key,
        window_start=stats.window_start,
        served_count=stats.served_count,
        ema_service_rate=stats.ema_service_rate,
        p50_wait_minutes=stats.p50_wait_minutes,
        p90_wait_minutes=stats.p90_wait_minutes,
        updated_at=stats.updated_at,
    )


@router.post("/served", response_model=UpdateStatsResponse)
async def update_served_stats(
    request: UpdateStatsRequest,
    orchestrator: QueueOrchestrator = Depends(get_orchestrator),
):
    """Fold a served-customers report into the queue's service rate."""
    stats = await orchestrator.update_served_stats(
        request.queue_id, request.count, request.window_sec
    )
    return UpdateStatsResponse(
        message="Stats updated successfully",
        queue_id=request.queue_id,
        served_count=request.count,
        ema_service_rate=stats.ema_service_rate,
    )


@router.get("/{queue_id}", response_model=StatsResponse)
async def get_stats(
    queue_id: str,
    orchestrator: QueueOrchestrator = Depends(get_orchestrator),
):
    """Statistics for the current hourly window."""
    stats = await orchestrator.latest_stats(queue_id)
    return _stats_response(stats)
