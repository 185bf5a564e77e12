"""
Request dependencies for FastAPI.
"""

from typing import Optional

from fastapi import Header, HTTPException, Request, status

from smartqueue.config import Settings
from smartqueue.services.queue_orchestrator import QueueOrchestrator


def get_orchestrator(request: Request) -> QueueOrchestrator:
    """The orchestrator wired up at startup."""
    return request.app.state.orchestrator


def get_app_settings(request: Request) -> Settings:
    """Settings the application was built with."""
    return request.app.state.settings


async def verify_admin_access(
    request: Request,
    x_admin_api_key: Optional[str] = Header(None, alias="X-Admin-API-Key"),
) -> None:
    """
    Verify admin access via the X-Admin-API-Key header.

    Raises 403 if no admin key is configured or the header does not match.
    """
    settings = get_app_settings(request)

    if not settings.admin_api_key:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Queue administration is disabled (no admin API key configured)",
        )

    if x_admin_api_key != settings.admin_api_key:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required. Provide a valid X-Admin-API-Key header.",
        )
