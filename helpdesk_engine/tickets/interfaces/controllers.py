"""
Ticket Controllers (API Routes)
===============================

FastAPI routes for ticket reads and status transitions.

Controllers are thin - they delegate to TicketService. Domain errors are
mapped to HTTP responses by the shared exception handlers.
"""

from fastapi import APIRouter, Depends, Response

from helpdesk_engine.shared.api.dependencies import get_actor, get_ticket_service, mark_degraded
from helpdesk_engine.shared.domain import Actor
from helpdesk_engine.shared.infrastructure.logging import get_logger
from helpdesk_engine.tickets.application import (
    HistoryEntryResponse,
    TicketHistoryResponse,
    TicketResponse,
    TicketService,
    TransitionRequest,
)

logger = get_logger(__name__)
router = APIRouter(prefix="/tickets", tags=["Tickets"])


@router.get(
    "/{ticket_id}",
    response_model=TicketResponse,
    summary="Get a ticket",
    description="Status, priority, assignee, due date and resolution time. "
                "May be served from cache when the store is unreachable (`degraded: true`)."
)
async def get_ticket(
    ticket_id: int,
    response: Response,
    service: TicketService = Depends(get_ticket_service),
):
    result = await service.get_ticket(ticket_id)
    degraded = mark_degraded(response, result)
    return TicketResponse.from_entity(result.value, degraded=degraded)


@router.post(
    "/{ticket_id}/transitions",
    response_model=TicketResponse,
    summary="Change ticket status",
    description="""
    Move a ticket to another status.

    Allowed moves depend on the current status and the actor's role. An illegal
    move returns 409 with `allowed_next` listing the states this role may move to.
    """
)
async def transition_ticket(
    ticket_id: int,
    request: TransitionRequest,
    actor: Actor = Depends(get_actor),
    service: TicketService = Depends(get_ticket_service),
):
    ticket = await service.change_status(ticket_id, request.status, actor)
    return TicketResponse.from_entity(ticket)


@router.get(
    "/{ticket_id}/history",
    response_model=TicketHistoryResponse,
    summary="Ticket audit trail"
)
async def get_ticket_history(
    ticket_id: int,
    response: Response,
    service: TicketService = Depends(get_ticket_service),
):
    result = await service.list_history(ticket_id)
    degraded = mark_degraded(response, result)
    return TicketHistoryResponse(
        ticket_id=ticket_id,
        entries=[HistoryEntryResponse.from_entity(e) for e in result.value],
        degraded=degraded,
    )
