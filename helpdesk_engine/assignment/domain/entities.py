"""
Assignment Domain Entities
==========================

An assignment request offers one ticket to one candidate agent. Requests
are decided exactly once; the first acceptance for a ticket wins and every
sibling still pending is cancelled with it.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from helpdesk_engine.config import AssignmentState
from helpdesk_engine.tickets.domain import Ticket


@dataclass(frozen=True)
class AssignmentRequest:
    """Offer of a ticket to a single agent."""
    id: int
    ticket_id: int
    agent_id: int
    state: AssignmentState
    requested_at: datetime
    decided_at: Optional[datetime] = None
    response_note: Optional[str] = None

    @property
    def is_pending(self) -> bool:
        return self.state == AssignmentState.PENDING

    @property
    def is_decided(self) -> bool:
        return not self.is_pending

    def to_dict(self) -> dict:
        """Convert to dictionary for API responses."""
        return {
            "id": self.id,
            "ticket_id": self.ticket_id,
            "agent_id": self.agent_id,
            "state": self.state.value,
            "requested_at": self.requested_at.isoformat(),
            "decided_at": self.decided_at.isoformat() if self.decided_at else None,
            "response_note": self.response_note,
        }


@dataclass(frozen=True)
class AcceptanceCommit:
    """What the store reports after an acceptance transaction."""
    request: AssignmentRequest
    cancelled_request_ids: List[int] = field(default_factory=list)
    replayed: bool = False


@dataclass(frozen=True)
class RejectionCommit:
    """What the store reports after a rejection transaction."""
    request: AssignmentRequest
    remaining_pending: int
    any_accepted: bool
    ticket_assignable: bool = True

    @property
    def leaves_ticket_unassignable(self) -> bool:
        return self.remaining_pending == 0 and not self.any_accepted and self.ticket_assignable


@dataclass(frozen=True)
class AcceptResult:
    """Outcome of AssignmentCoordinator.accept."""
    request: AssignmentRequest
    ticket: Ticket
    cancelled_request_ids: List[int] = field(default_factory=list)
    replayed: bool = False


@dataclass(frozen=True)
class RejectResult:
    """Outcome of AssignmentCoordinator.reject."""
    request: AssignmentRequest
    remaining_pending: int
    unassignable: bool = False
