"""
Ticket Lifecycle
================

The status state machine for support tickets.

Open -> InProgress -> {WaitingForClient, WaitingForThirdParty} -> Resolved -> Closed,
with Cancelled reachable from every non-terminal state. Closed and Cancelled
are terminal. Every move is checked against the role of the actor asking.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, FrozenSet, List, Optional, Tuple

from helpdesk_engine.config import ActorRole, TicketStatus, TERMINAL_STATUSES
from helpdesk_engine.core import InvalidTransitionException
from helpdesk_engine.tickets.domain.entities import Ticket, TicketHistoryEntry

_STAFF = frozenset({ActorRole.ADMIN, ActorRole.AGENT})
_EVERYONE = frozenset({ActorRole.ADMIN, ActorRole.AGENT, ActorRole.CLIENT})

# (from, to) -> roles allowed to make the move
TRANSITIONS: Dict[Tuple[TicketStatus, TicketStatus], FrozenSet[ActorRole]] = {
    (TicketStatus.OPEN, TicketStatus.IN_PROGRESS): _STAFF,
    (TicketStatus.OPEN, TicketStatus.CANCELLED): _EVERYONE,

    (TicketStatus.IN_PROGRESS, TicketStatus.WAITING_FOR_CLIENT): _STAFF,
    (TicketStatus.IN_PROGRESS, TicketStatus.WAITING_FOR_THIRD_PARTY): _STAFF,
    (TicketStatus.IN_PROGRESS, TicketStatus.RESOLVED): _STAFF,
    (TicketStatus.IN_PROGRESS, TicketStatus.CANCELLED): _STAFF,

    (TicketStatus.WAITING_FOR_CLIENT, TicketStatus.IN_PROGRESS): _EVERYONE,
    (TicketStatus.WAITING_FOR_CLIENT, TicketStatus.RESOLVED): _STAFF,
    (TicketStatus.WAITING_FOR_CLIENT, TicketStatus.CANCELLED): _STAFF,

    (TicketStatus.WAITING_FOR_THIRD_PARTY, TicketStatus.IN_PROGRESS): _STAFF,
    (TicketStatus.WAITING_FOR_THIRD_PARTY, TicketStatus.RESOLVED): _STAFF,
    (TicketStatus.WAITING_FOR_THIRD_PARTY, TicketStatus.CANCELLED): _STAFF,

    (TicketStatus.RESOLVED, TicketStatus.CLOSED): _EVERYONE,
    (TicketStatus.RESOLVED, TicketStatus.IN_PROGRESS): frozenset({ActorRole.ADMIN, ActorRole.CLIENT}),
    (TicketStatus.RESOLVED, TicketStatus.CANCELLED): _STAFF,
}


@dataclass(frozen=True)
class TransitionResult:
    """Outcome of a validated move: the new snapshot plus its audit rows."""
    before: Ticket
    ticket: Ticket
    history: List[TicketHistoryEntry] = field(default_factory=list)

    @property
    def assignee_changed(self) -> bool:
        return self.before.assigned_to != self.ticket.assigned_to


class TicketLifecycle:
    """
    Pure state machine for ticket status.

    Nothing here touches storage: transition() validates and builds the
    next snapshot; the caller persists it with a conditional update.
    """

    def __init__(self, transitions: Optional[Dict[Tuple[TicketStatus, TicketStatus], FrozenSet[ActorRole]]] = None):
        self._transitions = transitions or TRANSITIONS

    def allowed_next(self, status: TicketStatus, role: Optional[ActorRole] = None) -> List[TicketStatus]:
        """States reachable from status, optionally restricted to a role."""
        return [
            target for (source, target), roles in self._transitions.items()
            if source == status and (role is None or role in roles)
        ]

    def can_transition(self, status: TicketStatus, target: TicketStatus, role: ActorRole) -> bool:
        return role in self._transitions.get((status, target), frozenset())

    def transition(
        self,
        ticket: Ticket,
        target: TicketStatus,
        actor_role: ActorRole,
        *,
        now: datetime,
        assignee: Optional[int] = None,
        actor_id: Optional[int] = None,
    ) -> TransitionResult:
        """
        Validate and apply a status move.

        Args:
            ticket: Current snapshot
            target: Requested status
            actor_role: Role of whoever is asking
            now: Timestamp to stamp on the change
            assignee: Agent to assign in the same move (assignment accept)
            actor_id: Recorded as changed_by on the history rows

        Raises:
            InvalidTransitionException: illegal move or forbidden role; lists
                the states this role may move to instead
        """
        current = ticket.status
        roles = self._transitions.get((current, target))

        if roles is None:
            reason = "ticket is in a terminal state" if current in TERMINAL_STATUSES else "transition not allowed"
            raise InvalidTransitionException(
                current, target, self.allowed_next(current, actor_role), reason
            )
        if actor_role not in roles:
            raise InvalidTransitionException(
                current, target, self.allowed_next(current, actor_role),
                f"role {actor_role.value} may not make this move"
            )
        if assignee is not None and target != TicketStatus.IN_PROGRESS:
            raise InvalidTransitionException(
                current, target, self.allowed_next(current, actor_role),
                "an assignee can only be set when moving to InProgress"
            )

        changes = {"status": target, "modified_at": now}

        if assignee is not None:
            changes["assigned_to"] = assignee

        if target in (TicketStatus.RESOLVED, TicketStatus.CLOSED):
            if ticket.resolution_time is None:
                changes["resolution_time"] = ticket.age_minutes(now)
            if ticket.resolved_at is None:
                changes["resolved_at"] = now
            if target == TicketStatus.CLOSED:
                changes["closed_at"] = now
        elif current == TicketStatus.RESOLVED and target == TicketStatus.IN_PROGRESS:
            # Reopen
            changes["resolution_time"] = None
            changes["resolved_at"] = None

        updated = ticket.evolve(**changes)

        history = [
            TicketHistoryEntry(
                ticket_id=ticket.id,
                field="status",
                old_value=current.value,
                new_value=target.value,
                changed_by=actor_id,
                changed_at=now,
            )
        ]
        if updated.assigned_to != ticket.assigned_to:
            history.append(TicketHistoryEntry(
                ticket_id=ticket.id,
                field="assigned_to",
                old_value=_str_or_none(ticket.assigned_to),
                new_value=_str_or_none(updated.assigned_to),
                changed_by=actor_id,
                changed_at=now,
            ))

        return TransitionResult(before=ticket, ticket=updated, history=history)


def _str_or_none(value) -> Optional[str]:
    return None if value is None else str(value)
