"""
Assignment Controllers (API Routes)
===================================

FastAPI routes for offering tickets to agents and deciding offers.

Controllers are thin - they delegate to AssignmentCoordinator.
"""

from typing import Optional

from fastapi import APIRouter, Body, Depends, Response, status

from helpdesk_engine.assignment.application import (
    AcceptResponse,
    AssignmentCoordinator,
    AssignmentDecision,
    AssignmentRequestCreate,
    AssignmentRequestListResponse,
    AssignmentRequestResponse,
    RejectResponse,
)
from helpdesk_engine.config import ActorRole
from helpdesk_engine.core import AuthorizationException
from helpdesk_engine.shared.api.dependencies import get_actor, get_assignment_coordinator, mark_degraded
from helpdesk_engine.shared.domain import Actor
from helpdesk_engine.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)
router = APIRouter(tags=["Assignment"])


def _list_response(response: Response, result) -> AssignmentRequestListResponse:
    degraded = mark_degraded(response, result)
    return AssignmentRequestListResponse(
        requests=[AssignmentRequestResponse.from_entity(r) for r in result.value],
        count=len(result.value),
        degraded=degraded,
    )


@router.post(
    "/tickets/{ticket_id}/assignment-requests",
    response_model=AssignmentRequestListResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Offer a ticket to candidate agents",
    description="""
    Creates one pending request per candidate agent. Duplicate candidates and
    agents that were already offered the ticket are skipped.

    Returns 422 `no_eligible_agents` when the candidate list is empty.
    """
)
async def create_assignment_requests(
    ticket_id: int,
    request: AssignmentRequestCreate,
    actor: Actor = Depends(get_actor),
    coordinator: AssignmentCoordinator = Depends(get_assignment_coordinator),
):
    if not actor.is_staff:
        raise AuthorizationException("Only staff may route tickets", {"actor_id": actor.user_id})

    created = await coordinator.request_assignment(ticket_id, request.agent_ids)
    return AssignmentRequestListResponse(
        requests=[AssignmentRequestResponse.from_entity(r) for r in created],
        count=len(created),
    )


@router.get(
    "/tickets/{ticket_id}/assignment-requests",
    response_model=AssignmentRequestListResponse,
    summary="Every offer made for a ticket"
)
async def list_ticket_assignment_requests(
    ticket_id: int,
    response: Response,
    actor: Actor = Depends(get_actor),
    coordinator: AssignmentCoordinator = Depends(get_assignment_coordinator),
):
    if not actor.is_staff:
        raise AuthorizationException("Only staff may view routing history", {"actor_id": actor.user_id})

    result = await coordinator.list_for_ticket(ticket_id)
    return _list_response(response, result)


@router.get(
    "/agent/pending-requests",
    response_model=AssignmentRequestListResponse,
    summary="Pending offers for the calling agent"
)
async def list_pending_requests(
    response: Response,
    actor: Actor = Depends(get_actor),
    coordinator: AssignmentCoordinator = Depends(get_assignment_coordinator),
):
    if actor.role != ActorRole.AGENT:
        raise AuthorizationException("Only agents have pending requests", {"actor_id": actor.user_id})

    result = await coordinator.list_pending_for_agent(actor.user_id)
    return _list_response(response, result)


@router.put(
    "/assignment-requests/{request_id}/accept",
    response_model=AcceptResponse,
    summary="Accept an offer",
    description="""
    First acceptance wins: the ticket moves to InProgress with the caller as
    assignee and every other pending offer is cancelled.

    Returns 409 `already_taken` when another agent won the race.
    """
)
async def accept_request(
    request_id: int,
    decision: Optional[AssignmentDecision] = Body(None),
    actor: Actor = Depends(get_actor),
    coordinator: AssignmentCoordinator = Depends(get_assignment_coordinator),
):
    result = await coordinator.accept(request_id, actor, note=decision.note if decision else None)
    return AcceptResponse.from_result(result)


@router.put(
    "/assignment-requests/{request_id}/reject",
    response_model=RejectResponse,
    summary="Decline an offer"
)
async def reject_request(
    request_id: int,
    decision: Optional[AssignmentDecision] = Body(None),
    actor: Actor = Depends(get_actor),
    coordinator: AssignmentCoordinator = Depends(get_assignment_coordinator),
):
    result = await coordinator.reject(request_id, actor, note=decision.note if decision else None)
    return RejectResponse.from_result(result)
