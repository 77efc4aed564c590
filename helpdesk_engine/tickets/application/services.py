"""
Ticket Application Services
===========================

Application services orchestrate the lifecycle state machine and the
ticket store.

Following SOLID principles:
- Single Responsibility: TicketService owns status changes, nothing else
- Dependency Inversion: depends on ITicketRepository, not on SQLAlchemy
"""

import random
import time
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Callable, List, Optional

from helpdesk_engine.config import ActorRole, Priority, SLAState, TicketStatus
from helpdesk_engine.core import (
    AuthorizationException,
    ConflictException,
    ResourceNotFoundException,
)
from helpdesk_engine.shared.domain import Actor
from helpdesk_engine.shared.infrastructure.cache import make_cache_key
from helpdesk_engine.shared.infrastructure.logging import get_logger
from helpdesk_engine.shared.infrastructure.resilience import Deadline, ResilientStore, StoreResult
from helpdesk_engine.tickets.application.dto import TicketCreateDTO
from helpdesk_engine.tickets.domain import (
    Ticket,
    TicketHistoryEntry,
    TicketLifecycle,
    TransitionResult,
)

logger = get_logger(__name__)

TICKET_CACHE_PREFIX = "ticket"
HISTORY_CACHE_PREFIX = "ticket_history"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def generate_ticket_number() -> str:
    """Human-readable ticket number, e.g. TKT-482913-077."""
    millis = str(int(time.time() * 1000))
    return f"TKT-{millis[-6:]}-{random.randint(0, 999):03d}"


# ========== Repository Interfaces (Dependency Inversion) ==========

class ITicketRepository(ABC):
    """
    Interface for ticket data access.

    Every state-changing method is a compare-and-swap: it returns False
    when the stored row no longer matches the expected snapshot.
    """

    @abstractmethod
    async def get_by_id(self, ticket_id: int) -> Optional[Ticket]:
        """Get ticket by id."""

    @abstractmethod
    async def create(self, data: TicketCreateDTO, ticket_number: str, created_at: datetime) -> Ticket:
        """Insert a new Open ticket."""

    @abstractmethod
    async def list_open(self) -> List[Ticket]:
        """All tickets whose status is still active."""

    @abstractmethod
    async def apply_transition(self, result: TransitionResult) -> bool:
        """
        Persist a lifecycle move and its history rows in one transaction.

        Conditional on the stored status (and assignee) still matching
        result.before.
        """

    @abstractmethod
    async def update_sla(
        self,
        ticket_id: int,
        expected_version: int,
        *,
        due_date: datetime,
        sla_state: SLAState,
        sla_priority: Priority,
        checked_at: datetime,
    ) -> bool:
        """
        Write SLA fields if sla_version still equals expected_version and
        the ticket is still active; False otherwise.
        """

    @abstractmethod
    async def count_active_for_assignee(self, agent_id: int) -> int:
        """Number of active tickets assigned to the agent."""

    @abstractmethod
    async def count_created_since(self, since: datetime) -> int:
        """Number of tickets created at or after since."""

    @abstractmethod
    async def list_history(self, ticket_id: int) -> List[TicketHistoryEntry]:
        """History rows for a ticket, oldest first."""


# ========== Application Services ==========

class TicketService:
    """
    Service for ticket reads and status changes.

    Reads for display may be served from cache; every read that backs a
    decision is authoritative.
    """

    def __init__(
        self,
        repository: ITicketRepository,
        store: ResilientStore,
        lifecycle: Optional[TicketLifecycle] = None,
        *,
        operation_deadline: Optional[float] = None,
        due_date_policy: Optional[Callable[[Priority, datetime], datetime]] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._repo = repository
        self._store = store
        self._lifecycle = lifecycle or TicketLifecycle()
        self._deadline = operation_deadline
        self._due_date_policy = due_date_policy
        self._clock = clock

    @property
    def lifecycle(self) -> TicketLifecycle:
        return self._lifecycle

    @property
    def repository(self) -> ITicketRepository:
        return self._repo

    async def create_ticket(self, data: TicketCreateDTO) -> Ticket:
        """
        Store a ticket handed over by the creation boundary.

        The due date comes from the SLA policy unless the caller set one.
        """
        created_at = data.created_at or self._clock()
        if data.due_date is None and self._due_date_policy is not None:
            data = data.model_copy(update={"due_date": self._due_date_policy(data.priority, created_at)})
        number = data.ticket_number or generate_ticket_number()

        ticket = await self._store.write(
            lambda: self._repo.create(data, number, created_at),
            name="tickets.create",
        )
        logger.info(
            "Ticket created",
            extra={"ticket_id": ticket.id, "ticket_number": ticket.ticket_number, "priority": ticket.priority.value}
        )
        return ticket

    async def get_ticket(self, ticket_id: int) -> StoreResult[Ticket]:
        """Cache-tolerant read of a ticket."""
        result = await self._store.read(
            lambda: self._repo.get_by_id(ticket_id),
            name="tickets.get",
            cache_key=make_cache_key(TICKET_CACHE_PREFIX, {"id": ticket_id}),
        )
        if result.value is None:
            raise ResourceNotFoundException("Ticket", ticket_id)
        return result

    async def load_authoritative(self, ticket_id: int, deadline: Optional[Deadline] = None) -> Ticket:
        """
        Read straight from the store; raises if absent.

        Pass the calling operation's deadline so this read spends from it.
        """
        result = await self._store.read(
            lambda: self._repo.get_by_id(ticket_id),
            name="tickets.get",
            authoritative=True,
            deadline=deadline if deadline is not None else self._deadline,
        )
        if result.value is None:
            raise ResourceNotFoundException("Ticket", ticket_id)
        return result.value

    async def change_status(self, ticket_id: int, target: TicketStatus, actor: Actor) -> Ticket:
        """
        Move a ticket to target on behalf of actor.

        An agent taking an unassigned Open ticket into InProgress becomes
        its assignee.

        Raises:
            ResourceNotFoundException: unknown ticket
            AuthorizationException: a client acting on someone else's ticket
            InvalidTransitionException: illegal move for this role
            ConflictException: someone else changed the ticket first
        """
        budget = self._store.deadline(self._deadline)
        ticket = await self.load_authoritative(ticket_id, budget)

        if actor.role == ActorRole.CLIENT and ticket.client_id != actor.user_id:
            raise AuthorizationException(
                "Clients may only change their own tickets",
                {"ticket_id": ticket_id, "actor_id": actor.user_id}
            )

        assignee = None
        if (
            actor.role == ActorRole.AGENT
            and ticket.is_assignable
            and target == TicketStatus.IN_PROGRESS
        ):
            assignee = actor.user_id

        result = self._lifecycle.transition(
            ticket, target, actor.role,
            now=self._clock(), assignee=assignee, actor_id=actor.user_id,
        )

        applied = await self._store.write(
            lambda: self._repo.apply_transition(result),
            name="tickets.apply_transition",
            deadline=budget,
        )
        if not applied and not await self._already_applied(result, budget):
            raise ConflictException(
                f"Ticket {ticket_id} was modified concurrently",
                {"ticket_id": ticket_id, "expected_status": ticket.status.value}
            )

        self.invalidate(ticket_id)
        logger.info(
            "Ticket status changed",
            extra={
                "ticket_id": ticket_id,
                "from_status": ticket.status.value,
                "to_status": target.value,
                "actor_id": actor.user_id,
                "actor_role": actor.role.value,
            }
        )
        return result.ticket

    async def _already_applied(self, result: TransitionResult, budget: Deadline) -> bool:
        # A retried write whose first attempt committed sees its own change.
        current = (await self._store.read(
            lambda: self._repo.get_by_id(result.ticket.id),
            name="tickets.get",
            authoritative=True,
            deadline=budget,
        )).value
        return (
            current is not None
            and current.status == result.ticket.status
            and current.assigned_to == result.ticket.assigned_to
            and current.modified_at == result.ticket.modified_at
        )

    async def list_history(self, ticket_id: int) -> StoreResult[List[TicketHistoryEntry]]:
        """Cache-tolerant read of the audit trail; degrades to an empty list."""
        return await self._store.read(
            lambda: self._repo.list_history(ticket_id),
            name="tickets.list_history",
            cache_key=make_cache_key(HISTORY_CACHE_PREFIX, {"id": ticket_id}),
            default=[],
        )

    def invalidate(self, ticket_id: int) -> None:
        self._store.forget(make_cache_key(TICKET_CACHE_PREFIX, {"id": ticket_id}))
        self._store.forget(make_cache_key(HISTORY_CACHE_PREFIX, {"id": ticket_id}))
