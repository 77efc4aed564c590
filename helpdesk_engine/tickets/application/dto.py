"""
Ticket Application DTOs
=======================

Pydantic models for ticket API requests and responses.
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from helpdesk_engine.config import Priority, TicketStatus, SLAState
from helpdesk_engine.tickets.domain import Ticket, TicketHistoryEntry


# ========== Request DTOs ==========

class TicketCreateDTO(BaseModel):
    """Data handed over by the ticket creation boundary."""
    title: str = Field(..., min_length=1, max_length=255)
    description: str = Field(..., min_length=1)
    priority: Priority = Field(default=Priority.MEDIUM)
    client_id: int = Field(..., ge=1)
    category_id: Optional[int] = None
    subcategory_id: Optional[int] = None
    location: Optional[str] = Field(None, max_length=255)
    ticket_number: Optional[str] = Field(None, max_length=50, description="Generated when omitted")
    created_at: Optional[datetime] = Field(None, description="Defaults to now")
    due_date: Optional[datetime] = Field(None, description="Defaults to the SLA window")


class TransitionRequest(BaseModel):
    """Request body for a status move."""
    status: TicketStatus = Field(..., description="Target status")


# ========== Response DTOs ==========

class TicketResponse(BaseModel):
    """Read view of a ticket."""
    id: int
    ticket_number: str
    title: str
    description: str
    priority: Priority
    status: TicketStatus
    client_id: int
    category_id: Optional[int] = None
    subcategory_id: Optional[int] = None
    location: Optional[str] = None
    assigned_to: Optional[int] = None
    due_date: Optional[datetime] = None
    resolution_time: Optional[int] = Field(None, description="Minutes from creation to resolution")
    sla_state: SLAState
    created_at: datetime
    modified_at: datetime
    resolved_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None
    degraded: bool = False

    @classmethod
    def from_entity(cls, ticket: Ticket, degraded: bool = False) -> "TicketResponse":
        return cls(
            id=ticket.id,
            ticket_number=ticket.ticket_number,
            title=ticket.title,
            description=ticket.description,
            priority=ticket.priority,
            status=ticket.status,
            client_id=ticket.client_id,
            category_id=ticket.category_id,
            subcategory_id=ticket.subcategory_id,
            location=ticket.location,
            assigned_to=ticket.assigned_to,
            due_date=ticket.due_date,
            resolution_time=ticket.resolution_time,
            sla_state=ticket.sla_state,
            created_at=ticket.created_at,
            modified_at=ticket.modified_at,
            resolved_at=ticket.resolved_at,
            closed_at=ticket.closed_at,
            degraded=degraded,
        )


class HistoryEntryResponse(BaseModel):
    field: str
    old_value: Optional[str] = None
    new_value: Optional[str] = None
    changed_by: Optional[int] = None
    changed_at: datetime

    @classmethod
    def from_entity(cls, entry: TicketHistoryEntry) -> "HistoryEntryResponse":
        return cls(
            field=entry.field,
            old_value=entry.old_value,
            new_value=entry.new_value,
            changed_by=entry.changed_by,
            changed_at=entry.changed_at,
        )


class TicketHistoryResponse(BaseModel):
    """Audit trail of a ticket, oldest first."""
    ticket_id: int
    entries: List[HistoryEntryResponse] = Field(default_factory=list)
    degraded: bool = False
