"""In-memory collaborators for service-level tests.

Every repository call yields to the event loop once before touching state,
so concurrent coroutines interleave between their reads and their writes the
way they would against a real database. The state change itself happens
without an await, which stands in for the row lock / conditional update.
"""

import asyncio
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Dict, List, Optional

from helpdesk_engine.assignment.application import IAssignmentRepository
from helpdesk_engine.assignment.domain import AcceptanceCommit, AssignmentRequest, RejectionCommit
from helpdesk_engine.config import ACTIVE_STATUSES, AssignmentState, Priority, TicketStatus
from helpdesk_engine.core import NotPendingException, ResourceNotFoundException
from helpdesk_engine.shared.domain import INotificationSink, NotificationIntent, NotificationKind
from helpdesk_engine.shared.infrastructure.cache import TTLCache
from helpdesk_engine.shared.infrastructure.resilience import ResilientStore, RetryPolicy
from helpdesk_engine.sla.application import ISweepScheduler
from helpdesk_engine.tickets.application import ITicketRepository, TicketCreateDTO
from helpdesk_engine.tickets.domain import Ticket, TicketHistoryEntry, TransitionResult

T0 = datetime(2024, 1, 15, 9, 0, tzinfo=timezone.utc)


async def no_sleep(_delay: float) -> None:
    return None


def make_store(read_attempts: int = 2, write_attempts: int = 2, cache: Optional[TTLCache] = None) -> ResilientStore:
    """Store with instant retries."""
    return ResilientStore(
        read_policy=RetryPolicy(max_attempts=read_attempts, base_delay=0.0, jitter=0.0),
        write_policy=RetryPolicy(max_attempts=write_attempts, base_delay=0.0, jitter=0.0),
        cache=cache,
        sleep=no_sleep,
    )


class FrozenClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime = T0):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta) -> datetime:
        self.now = self.now + timedelta(**delta)
        return self.now

    def set(self, now: datetime) -> None:
        self.now = now


class RecordingSink(INotificationSink):
    def __init__(self, fail: bool = False):
        self.intents: List[NotificationIntent] = []
        self.fail = fail

    async def emit(self, intent: NotificationIntent) -> None:
        if self.fail:
            raise RuntimeError("delivery service down")
        self.intents.append(intent)

    def of_kind(self, kind: NotificationKind) -> List[NotificationIntent]:
        return [i for i in self.intents if i.kind == kind]


class FakeScheduler(ISweepScheduler):
    """Records what the monitor asks for; the test fires the job by hand."""

    def __init__(self):
        self.job: Optional[Callable[[], Awaitable[None]]] = None
        self.interval: Optional[int] = None
        self.starts = 0
        self.stops = 0
        self._running = False

    def start(self, job, interval_seconds, run_immediately=True):
        self.job = job
        self.interval = interval_seconds
        self.starts += 1
        self._running = True

    async def stop(self):
        self.stops += 1
        self._running = False

    @property
    def is_running(self):
        return self._running

    async def fire(self):
        await self.job()


def make_ticket(ticket_id: int = 1, **overrides) -> Ticket:
    fields = dict(
        id=ticket_id,
        ticket_number=f"TKT-{ticket_id:06d}-001",
        title="VPN drops every hour",
        description="The VPN client disconnects roughly every sixty minutes.",
        priority=Priority.CRITICAL,
        status=TicketStatus.OPEN,
        client_id=500,
        created_at=T0,
        modified_at=T0,
    )
    fields.update(overrides)
    return Ticket(**fields)


class InMemoryTicketRepository(ITicketRepository):
    def __init__(self):
        self.tickets: Dict[int, Ticket] = {}
        self.history: List[TicketHistoryEntry] = []
        self.failure: Optional[Exception] = None
        self.failing_sla_updates: Dict[int, Exception] = {}
        self.calls: Dict[str, int] = {}
        self.list_open_gate: Optional[asyncio.Event] = None
        self.delay = 0.0
        self._next_id = 1

    def add(self, ticket: Ticket) -> Ticket:
        self.tickets[ticket.id] = ticket
        self._next_id = max(self._next_id, ticket.id + 1)
        return ticket

    async def _enter(self, name: str) -> None:
        self.calls[name] = self.calls.get(name, 0) + 1
        await asyncio.sleep(self.delay)
        if self.failure is not None:
            raise self.failure

    async def get_by_id(self, ticket_id):
        await self._enter("get_by_id")
        return self.tickets.get(ticket_id)

    async def create(self, data: TicketCreateDTO, ticket_number, created_at):
        await self._enter("create")
        ticket = make_ticket(
            self._next_id,
            ticket_number=ticket_number,
            title=data.title,
            description=data.description,
            priority=data.priority,
            client_id=data.client_id,
            created_at=created_at,
            modified_at=created_at,
            due_date=data.due_date,
            sla_priority=data.priority if data.due_date else None,
        )
        return self.add(ticket)

    async def list_open(self):
        await self._enter("list_open")
        if self.list_open_gate is not None:
            await self.list_open_gate.wait()
        return [t for t in self.tickets.values() if t.status in ACTIVE_STATUSES]

    async def apply_transition(self, result: TransitionResult):
        await self._enter("apply_transition")
        return self.apply_now(result)

    def apply_now(self, result: TransitionResult) -> bool:
        stored = self.tickets.get(result.before.id)
        if (
            stored is None
            or stored.status != result.before.status
            or stored.assigned_to != result.before.assigned_to
        ):
            return False
        # SLA columns are owned by the monitor and survive a status move
        self.tickets[stored.id] = replace(
            result.ticket,
            sla_state=stored.sla_state,
            sla_priority=stored.sla_priority,
            sla_checked_at=stored.sla_checked_at,
            sla_version=stored.sla_version,
            due_date=stored.due_date,
        )
        self.history.extend(result.history)
        return True

    async def update_sla(self, ticket_id, expected_version, *, due_date, sla_state, sla_priority, checked_at):
        await self._enter("update_sla")
        if ticket_id in self.failing_sla_updates:
            raise self.failing_sla_updates[ticket_id]
        stored = self.tickets.get(ticket_id)
        if stored is None or stored.sla_version != expected_version or stored.status not in ACTIVE_STATUSES:
            return False
        self.tickets[ticket_id] = replace(
            stored,
            due_date=due_date,
            sla_state=sla_state,
            sla_priority=sla_priority,
            sla_checked_at=checked_at,
            sla_version=expected_version + 1,
        )
        return True

    async def count_active_for_assignee(self, agent_id):
        await self._enter("count_active_for_assignee")
        return sum(
            1 for t in self.tickets.values()
            if t.assigned_to == agent_id and t.status in ACTIVE_STATUSES
        )

    async def count_created_since(self, since):
        await self._enter("count_created_since")
        return sum(1 for t in self.tickets.values() if t.created_at >= since)

    async def list_history(self, ticket_id):
        await self._enter("list_history")
        return [h for h in self.history if h.ticket_id == ticket_id]


class InMemoryAssignmentRepository(IAssignmentRepository):
    def __init__(self, tickets: InMemoryTicketRepository):
        self.ticket_repo = tickets
        self.requests: Dict[int, AssignmentRequest] = {}
        self.failure: Optional[Exception] = None
        self.delay = 0.0
        self._next_id = 1

    async def _enter(self) -> None:
        await asyncio.sleep(self.delay)
        if self.failure is not None:
            raise self.failure

    async def create_batch(self, ticket_id, agent_ids, requested_at):
        await self._enter()
        existing = {r.agent_id for r in self.requests.values() if r.ticket_id == ticket_id}
        created = []
        for agent_id in agent_ids:
            if agent_id in existing:
                continue
            request = AssignmentRequest(
                id=self._next_id,
                ticket_id=ticket_id,
                agent_id=agent_id,
                state=AssignmentState.PENDING,
                requested_at=requested_at,
            )
            self.requests[request.id] = request
            self._next_id += 1
            created.append(request)
        return created

    async def get_by_id(self, request_id):
        await self._enter()
        return self.requests.get(request_id)

    async def list_pending_for_agent(self, agent_id):
        await self._enter()
        return [r for r in self.requests.values() if r.agent_id == agent_id and r.is_pending]

    async def list_for_ticket(self, ticket_id):
        await self._enter()
        return [r for r in self.requests.values() if r.ticket_id == ticket_id]

    async def commit_acceptance(self, request_id, agent_id, transition, decided_at, note=None):
        await self._enter()
        current = self.requests[request_id]
        if not current.is_pending:
            if current.state == AssignmentState.ACCEPTED and current.agent_id == agent_id:
                return AcceptanceCommit(request=current, replayed=True)
            raise NotPendingException(request_id, current.state)

        if not self.ticket_repo.apply_now(transition):
            raise NotPendingException(
                request_id, current.state,
                reason=f"Ticket {transition.before.id} has already been taken"
            )

        accepted = replace(current, state=AssignmentState.ACCEPTED, decided_at=decided_at, response_note=note)
        self.requests[request_id] = accepted
        cancelled = []
        for other in list(self.requests.values()):
            if other.ticket_id == current.ticket_id and other.id != request_id and other.is_pending:
                self.requests[other.id] = replace(other, state=AssignmentState.CANCELLED, decided_at=decided_at)
                cancelled.append(other.id)
        return AcceptanceCommit(request=accepted, cancelled_request_ids=cancelled)

    async def commit_rejection(self, request_id, agent_id, decided_at, note=None):
        await self._enter()
        current = self.requests.get(request_id)
        if current is None:
            raise ResourceNotFoundException("AssignmentRequest", request_id)
        if not current.is_pending:
            raise NotPendingException(request_id, current.state)

        rejected = replace(current, state=AssignmentState.REJECTED, decided_at=decided_at, response_note=note)
        self.requests[request_id] = rejected
        siblings = [r for r in self.requests.values() if r.ticket_id == current.ticket_id]
        ticket = self.ticket_repo.tickets.get(current.ticket_id)
        return RejectionCommit(
            request=rejected,
            remaining_pending=sum(1 for r in siblings if r.is_pending),
            any_accepted=any(r.state == AssignmentState.ACCEPTED for r in siblings),
            ticket_assignable=ticket is not None and ticket.is_assignable,
        )
