"""
Error taxonomy for the queue engine.

Every error carries the identifier it failed on so the HTTP layer can
report it back to the caller.
"""

from typing import Optional


class SmartQueueError(Exception):
    """Base class for all engine errors."""

    code = "error"

    def __init__(self, message: str, identifier: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.identifier = identifier


class NotFound(SmartQueueError):
    code = "not_found"


class QueueNotFound(NotFound):
    code = "queue_not_found"

    def __init__(self, queue_id: str):
        super().__init__(f"Queue not found: {queue_id}", queue_id)


class TicketNotFound(NotFound):
    code = "ticket_not_found"

    def __init__(self, ticket_id: str, message: Optional[str] = None):
        super().__init__(message or f"Ticket not found: {ticket_id}", ticket_id)


class InvalidState(SmartQueueError):
    code = "invalid_state"


class QueueInactive(InvalidState):
    code = "queue_inactive"

    def __init__(self, queue_id: str):
        super().__init__(f"Queue is not active: {queue_id}", queue_id)


class QueueFull(InvalidState):
    code = "queue_full"

    def __init__(self, queue_id: str):
        super().__init__(f"Queue has no open slots: {queue_id}", queue_id)


class QueueNotEmpty(InvalidState):
    code = "queue_not_empty"

    def __init__(self, queue_id: str, waiting: int):
        super().__init__(
            f"Cannot delete queue {queue_id} with {waiting} waiting customers",
            queue_id,
        )
        self.waiting = waiting


class QueueExists(InvalidState):
    code = "queue_exists"

    def __init__(self, queue_id: str):
        super().__init__(f"Queue already exists: {queue_id}", queue_id)


class InvalidTransition(InvalidState):
    code = "invalid_transition"

    def __init__(self, ticket_id: str, current: str, target: str):
        super().__init__(
            f"Ticket {ticket_id} cannot move from {current} to {target}",
            ticket_id,
        )
        self.current = current
        self.target = target


class UpstreamUnavailable(SmartQueueError):
    """A store, lock or other collaborator failed or timed out."""

    code = "upstream_unavailable"


class ValidationError(SmartQueueError):
    """Malformed input from the caller."""

    code = "validation_error"
