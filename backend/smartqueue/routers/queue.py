"""
Queue API endpoints.
Customers join and check their place in line; operators serve the front.
"""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from smartqueue.auth.dependencies import get_orchestrator
from smartqueue.services.notifier import NotificationChannel
from smartqueue.services.queue_orchestrator import QueueOrchestrator

router = APIRouter()


# =============================================================================
# Request/Response Models
# =============================================================================

class JoinQueueRequest(BaseModel):
    """Who is joining. The holder reference is opaque to the queue."""
    holder: str = Field(..., min_length=1, max_length=255)


class JoinQueueResponse(BaseModel):
    ticket_id: str
    queue_id: str
    position: int
    message: str = "Successfully joined queue"


class QueueStatusResponse(BaseModel):
    """Where a ticket stands right now."""
    ticket_id: str
    queue_id: str
    position: int
    estimated_wait_minutes: int
    status: str


class ProcessNextRequest(BaseModel):
    count: int = Field(1, ge=1, le=1000)


class ProcessNextResponse(BaseModel):
    queue_id: str
    served_count: int
    new_open_slots: int
    message: str


class TicketResponse(BaseModel):
    ticket_id: str
    queue_id: str
    status: str
    position: Optional[int] = None
    joined_at: datetime
    notification_count: int
    last_eta_minutes: Optional[int] = None


class NotifyRequest(BaseModel):
    """Ask for a heads-up to be sent to a waiting customer."""
    channel: NotificationChannel = NotificationChannel.PUSH
    address: Optional[str] = Field(None, min_length=1, max_length=255)  # defaults to the holder
    message: Optional[str] = Field(None, min_length=1, max_length=1000)


class NotifyResponse(BaseModel):
    notification_id: str
    ticket_id: str
    channel: str
    scheduled: bool
    status: str


class EtaResponse(BaseModel):
    queue_id: str
    position: int
    estimated_wait_minutes: int
    p50_wait_minutes: int
    p90_wait_minutes: int
    service_rate: float
    degraded: bool


def _ticket_response(ticket) -> TicketResponse:
    return TicketResponse(
        ticket_id=ticket.ticket_id,
        queue_id=ticket.queue_id,
        status=ticket.status.value,
        position=ticket.position,
        joined_at=ticket.joined_at,
        notification_count=ticket.notification_count,
        last_eta_minutes=ticket.last_eta_minutes,
    )


# =============================================================================
# Endpoints
# =============================================================================

@router.post("/{queue_id}/join", response_model=JoinQueueResponse)
async def join_queue(
    queue_id: str,
    request: JoinQueueRequest,
    orchestrator: QueueOrchestrator = Depends(get_orchestrator),
):
    """Join a queue and receive a ticket and position."""
    result = await orchestrator.join_queue(queue_id, request.holder)
    return JoinQueueResponse(
        ticket_id=result.ticket_id,
        queue_id=result.queue_id,
        position=result.position,
    )


@router.get("/{queue_id}/status", response_model=QueueStatusResponse)
async def get_status(
    queue_id: str,
    ticket_id: str = Query(..., min_length=1),
    orchestrator: QueueOrchestrator = Depends(get_orchestrator),
):
    """
    Current position and estimated wait for a ticket.

    The wait estimate is always present; when statistics are unavailable it
    is a rougher per-position figure.
    """
    result = await orchestrator.get_status(queue_id, ticket_id)
    return QueueStatusResponse(
        ticket_id=result.ticket_id,
        queue_id=result.queue_id,
        position=result.position,
        estimated_wait_minutes=result.estimated_wait_minutes,
        status=result.status.value,
    )


@router.post("/{queue_id}/next", response_model=ProcessNextResponse)
async def process_next(
    queue_id: str,
    request: ProcessNextRequest,
    orchestrator: QueueOrchestrator = Depends(get_orchestrator),
):
    """Serve the next `count` customers."""
    result = await orchestrator.process_next(queue_id, request.count)
    return ProcessNextResponse(
        queue_id=result.queue_id,
        served_count=result.served_count,
        new_open_slots=result.new_open_slots,
        message=f"Successfully processed {result.served_count} customers",
    )


@router.post("/{queue_id}/tickets/{ticket_id}/cancel", response_model=TicketResponse)
async def cancel_ticket(
    queue_id: str,
    ticket_id: str,
    orchestrator: QueueOrchestrator = Depends(get_orchestrator),
):
    """Leave the queue."""
    ticket = await orchestrator.cancel_ticket(queue_id, ticket_id)
    return _ticket_response(ticket)


@router.post("/{queue_id}/tickets/{ticket_id}/expire", response_model=TicketResponse)
async def expire_ticket(
    queue_id: str,
    ticket_id: str,
    orchestrator: QueueOrchestrator = Depends(get_orchestrator),
):
    """Drop a customer who did not show up."""
    ticket = await orchestrator.expire_ticket(queue_id, ticket_id)
    return _ticket_response(ticket)


@router.post("/{queue_id}/tickets/{ticket_id}/notify", response_model=NotifyResponse)
async def notify_ticket(
    queue_id: str,
    ticket_id: str,
    request: NotifyRequest,
    orchestrator: QueueOrchestrator = Depends(get_orchestrator),
):
    """Tell a waiting customer their turn is near. Delivery happens in the background."""
    result = await orchestrator.notify_ticket(
        queue_id,
        ticket_id,
        channel=request.channel,
        address=request.address,
        message=request.message,
    )
    return NotifyResponse(
        notification_id=result.notification_id,
        ticket_id=result.ticket_id,
        channel=result.channel,
        scheduled=result.scheduled,
        status="SCHEDULED",
    )


@router.get("/{queue_id}/tickets", response_model=list[TicketResponse])
async def list_waiting(
    queue_id: str,
    orchestrator: QueueOrchestrator = Depends(get_orchestrator),
):
    """Everyone still in line, front first."""
    tickets = await orchestrator.list_waiting(queue_id)
    return [_ticket_response(t) for t in tickets]


@router.get("/{queue_id}/eta", response_model=EtaResponse)
async def get_eta(
    queue_id: str,
    position: int = Query(..., ge=1),
    orchestrator: QueueOrchestrator = Depends(get_orchestrator),
):
    """Estimated wait for an arbitrary position in a queue."""
    estimate = await orchestrator.estimate_for_position(queue_id, position)
    return EtaResponse(
        queue_id=queue_id,
        position=position,
        estimated_wait_minutes=estimate.minutes,
        p50_wait_minutes=estimate.p50_minutes,
        p90_wait_minutes=estimate.p90_minutes,
        service_rate=estimate.service_rate,
        degraded=estimate.degraded,
    )
