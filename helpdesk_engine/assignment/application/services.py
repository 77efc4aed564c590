"""
Assignment Application Services
===============================

AssignmentCoordinator fans a ticket out to candidate agents and settles
the race between them: the first acceptance wins, every other pending
offer is cancelled in the same transaction.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Callable, Iterable, List, Optional

from helpdesk_engine.assignment.domain import (
    AcceptanceCommit,
    AcceptResult,
    AssignmentRequest,
    RejectionCommit,
    RejectResult,
)
from helpdesk_engine.config import ActorRole, AssignmentState, TicketStatus
from helpdesk_engine.core import (
    AuthorizationException,
    CapacityExceededException,
    NoEligibleAgentsException,
    NotPendingException,
    ResourceNotFoundException,
    ValidationException,
)
from helpdesk_engine.shared.domain import (
    Actor,
    INotificationSink,
    NotificationIntent,
    NotificationKind,
    emit_safely,
)
from helpdesk_engine.shared.infrastructure.cache import make_cache_key
from helpdesk_engine.shared.infrastructure.logging import get_logger
from helpdesk_engine.shared.infrastructure.resilience import Deadline, ResilientStore, StoreResult
from helpdesk_engine.tickets.application import TicketService, utcnow
from helpdesk_engine.tickets.domain import TransitionResult

logger = get_logger(__name__)

ASSIGNMENT_CACHE_PREFIX = "assignments:"


# ========== Repository Interfaces (Dependency Inversion) ==========

class IAssignmentRepository(ABC):
    """Interface for assignment request data access."""

    @abstractmethod
    async def create_batch(
        self,
        ticket_id: int,
        agent_ids: List[int],
        requested_at: datetime,
    ) -> List[AssignmentRequest]:
        """
        Create Pending requests in one transaction.

        Pairs that already exist are skipped; only new requests are returned.
        """

    @abstractmethod
    async def get_by_id(self, request_id: int) -> Optional[AssignmentRequest]:
        """Get request by id."""

    @abstractmethod
    async def list_pending_for_agent(self, agent_id: int) -> List[AssignmentRequest]:
        """Pending requests offered to an agent, oldest first."""

    @abstractmethod
    async def list_for_ticket(self, ticket_id: int) -> List[AssignmentRequest]:
        """Every request ever made for a ticket."""

    @abstractmethod
    async def commit_acceptance(
        self,
        request_id: int,
        agent_id: int,
        transition: TransitionResult,
        decided_at: datetime,
        note: Optional[str] = None,
    ) -> AcceptanceCommit:
        """
        Accept a request and take the ticket in one transaction.

        Locks the ticket row, moves the request Pending -> Accepted, moves
        the ticket per transition, cancels sibling Pending requests and
        writes history. Returns replayed=True when this agent's acceptance
        had already committed.

        Raises:
            NotPendingException: the request or the ticket was taken first
        """

    @abstractmethod
    async def commit_rejection(
        self,
        request_id: int,
        agent_id: int,
        decided_at: datetime,
        note: Optional[str] = None,
    ) -> RejectionCommit:
        """
        Reject a request under the ticket row lock and count what is left.

        Raises:
            NotPendingException: the request was already decided
        """


# ========== Application Services ==========

class AssignmentCoordinator:
    """
    Coordinates fan-out assignment requests.

    Every decision is taken on authoritative reads and committed with a
    conditional write; notification intents go out only after commit.
    """

    def __init__(
        self,
        repository: IAssignmentRepository,
        tickets: TicketService,
        store: ResilientStore,
        sink: INotificationSink,
        *,
        max_active_tickets: int = 10,
        operation_deadline: Optional[float] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._repo = repository
        self._tickets = tickets
        self._store = store
        self._sink = sink
        self._max_active = max_active_tickets
        self._deadline = operation_deadline
        self._clock = clock

    async def request_assignment(
        self,
        ticket_id: int,
        candidate_agent_ids: Iterable[int],
    ) -> List[AssignmentRequest]:
        """
        Offer an Open, unassigned ticket to every candidate agent.

        Raises:
            NoEligibleAgentsException: no candidates after de-duplication
            ResourceNotFoundException: unknown ticket
            ValidationException: ticket is no longer Open and unassigned
        """
        candidates = list(dict.fromkeys(candidate_agent_ids))
        if not candidates:
            raise NoEligibleAgentsException(ticket_id)

        budget = self._store.deadline(self._deadline)
        ticket = await self._tickets.load_authoritative(ticket_id, budget)
        if not ticket.is_assignable:
            raise ValidationException(
                f"Ticket {ticket_id} is not open for assignment",
                {"ticket_id": ticket_id, "status": ticket.status.value, "assigned_to": ticket.assigned_to}
            )

        created = await self._store.write(
            lambda: self._repo.create_batch(ticket_id, candidates, self._clock()),
            name="assignments.create_batch",
            deadline=budget,
        )
        self._store.invalidate(ASSIGNMENT_CACHE_PREFIX)

        logger.info(
            "Assignment requests created",
            extra={
                "ticket_id": ticket_id,
                "candidates": len(candidates),
                "created_count": len(created),
            }
        )

        for request in created:
            await emit_safely(self._sink, NotificationIntent(
                kind=NotificationKind.ASSIGNMENT_OFFERED,
                ticket_id=ticket_id,
                agent_id=request.agent_id,
                client_id=ticket.client_id,
                payload={
                    "request_id": request.id,
                    "ticket_number": ticket.ticket_number,
                    "priority": ticket.priority.value,
                },
            ))

        return created

    async def accept(self, request_id: int, actor: Actor, note: Optional[str] = None) -> AcceptResult:
        """
        Accept an offer on behalf of its agent.

        Raises:
            ResourceNotFoundException: unknown request or ticket
            AuthorizationException: actor is not the request's agent
            NotPendingException: the offer or the ticket was already taken
            CapacityExceededException: agent is at the active ticket limit
        """
        budget = self._store.deadline(self._deadline)
        request = await self._load_request(request_id, budget)
        self._ensure_own_request(request, actor)

        if request.state == AssignmentState.ACCEPTED:
            # An earlier attempt of this same call already won.
            ticket = await self._tickets.load_authoritative(request.ticket_id, budget)
            return AcceptResult(request=request, ticket=ticket, replayed=True)
        if not request.is_pending:
            raise NotPendingException(request_id, request.state)

        ticket = await self._tickets.load_authoritative(request.ticket_id, budget)
        if not ticket.is_assignable:
            raise NotPendingException(
                request_id, request.state,
                reason=f"Ticket {ticket.id} has already been taken"
            )

        active = (await self._store.read(
            lambda: self._tickets.repository.count_active_for_assignee(actor.user_id),
            name="tickets.count_active_for_assignee",
            authoritative=True,
            deadline=budget,
        )).value
        if active >= self._max_active:
            raise CapacityExceededException(actor.user_id, active, self._max_active)

        now = self._clock()
        transition = self._tickets.lifecycle.transition(
            ticket, TicketStatus.IN_PROGRESS, ActorRole.AGENT,
            now=now, assignee=actor.user_id, actor_id=actor.user_id,
        )

        commit = await self._store.write(
            lambda: self._repo.commit_acceptance(request_id, actor.user_id, transition, now, note),
            name="assignments.commit_acceptance",
            deadline=budget,
        )
        self._store.invalidate(ASSIGNMENT_CACHE_PREFIX)
        self._tickets.invalidate(ticket.id)

        if commit.replayed:
            ticket = await self._tickets.load_authoritative(ticket.id, budget)
            return AcceptResult(request=commit.request, ticket=ticket, replayed=True)

        logger.info(
            "Assignment request accepted",
            extra={
                "request_id": request_id,
                "ticket_id": ticket.id,
                "agent_id": actor.user_id,
                "cancelled": len(commit.cancelled_request_ids),
            }
        )

        await emit_safely(self._sink, NotificationIntent(
            kind=NotificationKind.ASSIGNMENT_ACCEPTED,
            ticket_id=ticket.id,
            agent_id=actor.user_id,
            client_id=ticket.client_id,
            payload={
                "request_id": request_id,
                "ticket_number": ticket.ticket_number,
                "cancelled_request_ids": list(commit.cancelled_request_ids),
            },
        ))

        return AcceptResult(
            request=commit.request,
            ticket=transition.ticket,
            cancelled_request_ids=list(commit.cancelled_request_ids),
        )

    async def reject(self, request_id: int, actor: Actor, note: Optional[str] = None) -> RejectResult:
        """
        Decline an offer.

        When the last pending offer for a ticket is declined and nobody
        accepted, an Unassignable intent is emitted.

        Raises:
            ResourceNotFoundException: unknown request
            AuthorizationException: actor is not the request's agent
            NotPendingException: the request was already decided
        """
        budget = self._store.deadline(self._deadline)
        request = await self._load_request(request_id, budget)
        self._ensure_own_request(request, actor)
        if not request.is_pending:
            raise NotPendingException(request_id, request.state)

        commit = await self._store.write(
            lambda: self._repo.commit_rejection(request_id, actor.user_id, self._clock(), note),
            name="assignments.commit_rejection",
            deadline=budget,
        )
        self._store.invalidate(ASSIGNMENT_CACHE_PREFIX)

        unassignable = commit.leaves_ticket_unassignable
        logger.info(
            "Assignment request rejected",
            extra={
                "request_id": request_id,
                "ticket_id": request.ticket_id,
                "agent_id": actor.user_id,
                "remaining_pending": commit.remaining_pending,
                "unassignable": unassignable,
            }
        )

        if unassignable:
            await emit_safely(self._sink, NotificationIntent(
                kind=NotificationKind.UNASSIGNABLE,
                ticket_id=request.ticket_id,
                payload={"last_request_id": request_id},
            ))

        return RejectResult(
            request=commit.request,
            remaining_pending=commit.remaining_pending,
            unassignable=unassignable,
        )

    async def list_pending_for_agent(self, agent_id: int) -> StoreResult[List[AssignmentRequest]]:
        """Cache-tolerant; degrades to an empty list."""
        return await self._store.read(
            lambda: self._repo.list_pending_for_agent(agent_id),
            name="assignments.list_pending_for_agent",
            cache_key=make_cache_key(ASSIGNMENT_CACHE_PREFIX + "agent", {"agent_id": agent_id}),
            default=[],
        )

    async def list_for_ticket(self, ticket_id: int) -> StoreResult[List[AssignmentRequest]]:
        """Audit view of every offer made for a ticket."""
        return await self._store.read(
            lambda: self._repo.list_for_ticket(ticket_id),
            name="assignments.list_for_ticket",
            cache_key=make_cache_key(ASSIGNMENT_CACHE_PREFIX + "ticket", {"ticket_id": ticket_id}),
            default=[],
        )

    async def _load_request(self, request_id: int, budget: Deadline) -> AssignmentRequest:
        result = await self._store.read(
            lambda: self._repo.get_by_id(request_id),
            name="assignments.get",
            authoritative=True,
            deadline=budget,
        )
        if result.value is None:
            raise ResourceNotFoundException("AssignmentRequest", request_id)
        return result.value

    @staticmethod
    def _ensure_own_request(request: AssignmentRequest, actor: Actor) -> None:
        if actor.role != ActorRole.AGENT or actor.user_id != request.agent_id:
            raise AuthorizationException(
                "Only the agent the request was offered to may decide it",
                {"request_id": request.id, "actor_id": actor.user_id}
            )
