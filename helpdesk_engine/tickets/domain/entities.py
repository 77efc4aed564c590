"""
Ticket Domain Entities
======================

Pure Python domain entities for the ticket lifecycle.

These entities carry the business object and its audit trail; they are
free of infrastructure concerns.
"""

from dataclasses import dataclass, replace
from datetime import datetime
from typing import Optional

from helpdesk_engine.config import (
    Priority, TicketStatus, SLAState,
    ACTIVE_STATUSES, TERMINAL_STATUSES
)


@dataclass(frozen=True)
class Ticket:
    """
    Ticket entity representing a support ticket.

    Immutable snapshot: lifecycle moves return a new instance and the
    store persists it with a conditional update against the old one.
    """

    # Identity
    id: int
    ticket_number: str

    # Core attributes
    title: str
    description: str
    priority: Priority
    status: TicketStatus
    client_id: int

    # Timestamps
    created_at: datetime
    modified_at: datetime

    category_id: Optional[int] = None
    subcategory_id: Optional[int] = None
    location: Optional[str] = None
    assigned_to: Optional[int] = None

    # Resolution tracking
    due_date: Optional[datetime] = None
    resolution_time: Optional[int] = None  # minutes from creation
    resolved_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None

    # SLA materialisation
    sla_state: SLAState = SLAState.ON_TRACK
    sla_priority: Optional[Priority] = None
    sla_checked_at: Optional[datetime] = None
    sla_version: int = 0

    def __post_init__(self):
        """Validate ticket on initialization."""
        if self.modified_at < self.created_at:
            raise ValueError("modified_at cannot be before created_at")

        if self.resolved_at and self.resolved_at < self.created_at:
            raise ValueError("resolved_at cannot be before created_at")

    @property
    def is_active(self) -> bool:
        """Check if ticket is still being worked on."""
        return self.status in ACTIVE_STATUSES

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def is_unassigned(self) -> bool:
        return self.assigned_to is None

    @property
    def is_assignable(self) -> bool:
        """Open and nobody has taken it yet."""
        return self.status == TicketStatus.OPEN and self.assigned_to is None

    def age_minutes(self, now: datetime) -> int:
        """Get ticket age in minutes at the given instant."""
        return int((now - self.created_at).total_seconds() // 60)

    def evolve(self, **changes) -> "Ticket":
        return replace(self, **changes)


@dataclass(frozen=True)
class TicketHistoryEntry:
    """One audited field change, written with the change it describes."""
    ticket_id: int
    field: str
    old_value: Optional[str]
    new_value: Optional[str]
    changed_by: Optional[int]
    changed_at: datetime
    id: Optional[int] = None

    def to_dict(self) -> dict:
        """Convert to dictionary for API responses."""
        return {
            "id": self.id,
            "ticket_id": self.ticket_id,
            "field": self.field,
            "old_value": self.old_value,
            "new_value": self.new_value,
            "changed_by": self.changed_by,
            "changed_at": self.changed_at.isoformat(),
        }
