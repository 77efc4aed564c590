"""
Assignment Application DTOs
===========================

Pydantic models for assignment request API requests and responses.
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from helpdesk_engine.assignment.domain import AcceptResult, AssignmentRequest, RejectResult
from helpdesk_engine.config import AssignmentState
from helpdesk_engine.tickets.application import TicketResponse


# ========== Request DTOs ==========

class AssignmentRequestCreate(BaseModel):
    """Candidate agents to offer a ticket to."""
    agent_ids: List[int] = Field(default_factory=list, description="Candidate agent ids; duplicates are ignored")


class AssignmentDecision(BaseModel):
    """Optional note recorded with an accept or reject."""
    note: Optional[str] = Field(None, max_length=1000)


# ========== Response DTOs ==========

class AssignmentRequestResponse(BaseModel):
    id: int
    ticket_id: int
    agent_id: int
    state: AssignmentState
    requested_at: datetime
    decided_at: Optional[datetime] = None
    response_note: Optional[str] = None

    @classmethod
    def from_entity(cls, request: AssignmentRequest) -> "AssignmentRequestResponse":
        return cls(
            id=request.id,
            ticket_id=request.ticket_id,
            agent_id=request.agent_id,
            state=request.state,
            requested_at=request.requested_at,
            decided_at=request.decided_at,
            response_note=request.response_note,
        )


class AssignmentRequestListResponse(BaseModel):
    requests: List[AssignmentRequestResponse] = Field(default_factory=list)
    count: int = 0
    degraded: bool = False


class AcceptResponse(BaseModel):
    request: AssignmentRequestResponse
    ticket: TicketResponse
    cancelled_request_ids: List[int] = Field(default_factory=list)
    replayed: bool = Field(False, description="True when an earlier attempt had already committed")

    @classmethod
    def from_result(cls, result: AcceptResult) -> "AcceptResponse":
        return cls(
            request=AssignmentRequestResponse.from_entity(result.request),
            ticket=TicketResponse.from_entity(result.ticket),
            cancelled_request_ids=list(result.cancelled_request_ids),
            replayed=result.replayed,
        )


class RejectResponse(BaseModel):
    request: AssignmentRequestResponse
    remaining_pending: int
    unassignable: bool

    @classmethod
    def from_result(cls, result: RejectResult) -> "RejectResponse":
        return cls(
            request=AssignmentRequestResponse.from_entity(result.request),
            remaining_pending=result.remaining_pending,
            unassignable=result.unassignable,
        )
