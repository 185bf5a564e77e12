"""
Admin API endpoints for managing queues.

All endpoints require a valid `X-Admin-API-Key` header.
Customers use `/api/queues/{queue_id}/...` and never need these.
"""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field

from smartqueue.auth.dependencies import get_orchestrator, verify_admin_access
from smartqueue.domain import QueueRecord
from smartqueue.services.queue_orchestrator import QueueOrchestrator

router = APIRouter(dependencies=[Depends(verify_admin_access)])


# =============================================================================
# Schemas
# =============================================================================

class QueueCreate(BaseModel):
    """Schema for creating a new queue."""
    queue_id: str = Field(..., min_length=1, max_length=100)
    name: str = Field(..., min_length=1, max_length=255)
    max_capacity: int = Field(..., ge=0)
    open_slots: Optional[int] = Field(None, ge=0)  # defaults to max_capacity
    is_active: bool = True


class QueueUpdate(BaseModel):
    """Schema for updating a queue (all fields optional)."""
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    max_capacity: Optional[int] = Field(None, ge=0)
    open_slots: Optional[int] = Field(None, ge=0)
    is_active: Optional[bool] = None


class QueueResponse(BaseModel):
    """Schema for queue response."""
    queue_id: str
    name: str
    is_active: bool
    max_capacity: int
    open_slots: int
    service_rate_ema: Optional[float] = None
    created_at: datetime
    updated_at: datetime


class MessageResponse(BaseModel):
    message: str
    queue_id: str


def _queue_response(queue: QueueRecord) -> QueueResponse:
    return QueueResponse(
        queue_id=queue.queue_id,
        name=queue.name,
        is_active=queue.is_active,
        max_capacity=queue.max_capacity,
        open_slots=queue.open_slots,
        service_rate_ema=queue.service_rate_ema,
        created_at=queue.created_at,
        updated_at=queue.updated_at,
    )


# =============================================================================
# Queue Admin Endpoints
# =============================================================================

@router.get("/queues", response_model=list[QueueResponse])
async def list_queues(orchestrator: QueueOrchestrator = Depends(get_orchestrator)):
    """List all queues."""
    queues = await orchestrator.list_queues()
    return [_queue_response(q) for q in queues]


@router.post("/queues", response_model=QueueResponse, status_code=status.HTTP_201_CREATED)
async def create_queue(
    data: QueueCreate,
    orchestrator: QueueOrchestrator = Depends(get_orchestrator),
):
    """Create a new queue. Open slots default to the full capacity."""
    queue = await orchestrator.create_queue(
        data.queue_id,
        data.name,
        data.max_capacity,
        open_slots=data.open_slots,
        is_active=data.is_active,
    )
    return _queue_response(queue)


@router.get("/queues/{queue_id}", response_model=QueueResponse)
async def get_queue(
    queue_id: str,
    orchestrator: QueueOrchestrator = Depends(get_orchestrator),
):
    """Get a single queue."""
    return _queue_response(await orchestrator.get_queue(queue_id))


@router.put("/queues/{queue_id}", response_model=QueueResponse)
async def update_queue(
    queue_id: str,
    data: QueueUpdate,
    orchestrator: QueueOrchestrator = Depends(get_orchestrator),
):
    """Update a queue. Only provided fields are changed."""
    queue = await orchestrator.update_queue(
        queue_id,
        name=data.name,
        max_capacity=data.max_capacity,
        open_slots=data.open_slots,
        is_active=data.is_active,
    )
    return _queue_response(queue)


@router.delete("/queues/{queue_id}", response_model=MessageResponse)
async def delete_queue(
    queue_id: str,
    orchestrator: QueueOrchestrator = Depends(get_orchestrator),
):
    """Delete a queue. Fails while customers are still waiting in it."""
    await orchestrator.delete_queue(queue_id)
    return MessageResponse(message="Queue deleted successfully", queue_id=queue_id)
