"""
Shared API Dependencies
=======================

FastAPI dependencies used by every router:
- the acting identity from the identity boundary headers
- the service container stored on app.state
- degraded-read signalling
"""

from typing import Optional

from fastapi import Depends, Header, HTTPException, Request, Response, status

from helpdesk_engine.config import ActorRole
from helpdesk_engine.container import EngineContainer
from helpdesk_engine.shared.domain import Actor
from helpdesk_engine.shared.infrastructure.resilience import StoreResult

DEGRADED_HEADER = "X-Data-Degraded"


async def get_actor(
    x_actor_id: Optional[int] = Header(None, alias="X-Actor-Id"),
    x_actor_role: Optional[ActorRole] = Header(None, alias="X-Actor-Role"),
) -> Actor:
    """Identity vouched for by the upstream gateway."""
    if x_actor_id is None or x_actor_role is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="X-Actor-Id and X-Actor-Role headers are required"
        )
    return Actor(user_id=x_actor_id, role=x_actor_role)


def get_container(request: Request) -> EngineContainer:
    container = getattr(request.app.state, "container", None)
    if container is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Engine not initialized"
        )
    return container


def get_ticket_service(container: EngineContainer = Depends(get_container)):
    return container.ticket_service


def get_assignment_coordinator(container: EngineContainer = Depends(get_container)):
    return container.assignment_coordinator


def get_sla_monitor(container: EngineContainer = Depends(get_container)):
    return container.sla_monitor


def mark_degraded(response: Response, result: StoreResult) -> bool:
    """Flag a degraded read on the response; returns the flag."""
    if result.degraded:
        response.headers[DEGRADED_HEADER] = "true"
    return result.degraded
