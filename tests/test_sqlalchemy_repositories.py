"""Tests for the SQLAlchemy repositories against in-memory SQLite."""

from datetime import timedelta

import pytest

from helpdesk_engine.assignment.infrastructure import SQLAlchemyAssignmentRepository
from helpdesk_engine.config import ActorRole, AssignmentState, Priority, SLAState, TicketStatus
from helpdesk_engine.core import NotPendingException
from helpdesk_engine.tickets.application import TicketCreateDTO
from helpdesk_engine.tickets.domain import TicketLifecycle
from helpdesk_engine.tickets.infrastructure import SQLAlchemyTicketRepository
from tests.fakes import T0

lifecycle = TicketLifecycle()


@pytest.fixture
def tickets(session_factory):
    return SQLAlchemyTicketRepository(session_factory)


@pytest.fixture
def assignments(session_factory):
    return SQLAlchemyAssignmentRepository(session_factory)


async def new_ticket(tickets, number="TKT-000001-001", created_at=T0, **overrides):
    data = dict(title="Mail bounces", description="Outbound mail bounces", client_id=500, priority=Priority.HIGH)
    data.update(overrides)
    return await tickets.create(TicketCreateDTO(**data), number, created_at)


def take(ticket, agent_id, minutes=5):
    return lifecycle.transition(
        ticket, TicketStatus.IN_PROGRESS, ActorRole.AGENT,
        now=T0 + timedelta(minutes=minutes), assignee=agent_id, actor_id=agent_id,
    )


class TestTicketRepository:

    @pytest.mark.asyncio
    async def test_create_and_get(self, tickets):
        created = await new_ticket(tickets)

        loaded = await tickets.get_by_id(created.id)

        assert loaded == created
        assert loaded.status == TicketStatus.OPEN
        assert loaded.created_at == T0
        assert loaded.sla_state == SLAState.ON_TRACK
        assert loaded.sla_version == 0

    @pytest.mark.asyncio
    async def test_get_unknown_returns_none(self, tickets):
        assert await tickets.get_by_id(404) is None

    @pytest.mark.asyncio
    async def test_transition_is_conditional(self, tickets):
        ticket = await new_ticket(tickets)

        first = take(ticket, agent_id=10)
        second = take(ticket, agent_id=20)

        assert await tickets.apply_transition(first)
        assert not await tickets.apply_transition(second)

        stored = await tickets.get_by_id(ticket.id)
        assert stored.assigned_to == 10
        history = await tickets.list_history(ticket.id)
        assert [(h.field, h.new_value) for h in history] == [("status", "InProgress"), ("assigned_to", "10")]

    @pytest.mark.asyncio
    async def test_update_sla_checks_version(self, tickets):
        ticket = await new_ticket(tickets)
        due = T0 + timedelta(days=1)
        fields = dict(due_date=due, sla_state=SLAState.AT_RISK, sla_priority=Priority.HIGH, checked_at=T0)

        assert await tickets.update_sla(ticket.id, 0, **fields)
        assert not await tickets.update_sla(ticket.id, 0, **fields)

        stored = await tickets.get_by_id(ticket.id)
        assert stored.sla_version == 1
        assert stored.due_date == due
        assert stored.sla_state == SLAState.AT_RISK

    @pytest.mark.asyncio
    async def test_update_sla_skips_finished_ticket(self, tickets):
        ticket = await new_ticket(tickets)
        await tickets.apply_transition(lifecycle.transition(
            ticket, TicketStatus.CANCELLED, ActorRole.CLIENT, now=T0 + timedelta(hours=1),
        ))

        written = await tickets.update_sla(
            ticket.id, 0,
            due_date=T0 + timedelta(days=1), sla_state=SLAState.BREACHED,
            sla_priority=Priority.HIGH, checked_at=T0 + timedelta(days=2),
        )

        stored = await tickets.get_by_id(ticket.id)
        assert not written
        assert stored.sla_version == 0
        assert stored.sla_state != SLAState.BREACHED

    @pytest.mark.asyncio
    async def test_status_move_keeps_sla_columns(self, tickets):
        ticket = await new_ticket(tickets)
        await tickets.update_sla(
            ticket.id, 0,
            due_date=T0 + timedelta(days=1), sla_state=SLAState.ON_TRACK,
            sla_priority=Priority.HIGH, checked_at=T0,
        )

        await tickets.apply_transition(take(ticket, agent_id=10))

        stored = await tickets.get_by_id(ticket.id)
        assert stored.sla_version == 1
        assert stored.due_date == T0 + timedelta(days=1)

    @pytest.mark.asyncio
    async def test_list_open_and_counts(self, tickets):
        first = await new_ticket(tickets, "TKT-1")
        await new_ticket(tickets, "TKT-2", created_at=T0 + timedelta(hours=1))
        third = await new_ticket(tickets, "TKT-3", created_at=T0 + timedelta(hours=2))
        await tickets.apply_transition(take(first, agent_id=10))
        await tickets.apply_transition(lifecycle.transition(
            third, TicketStatus.CANCELLED, ActorRole.CLIENT, now=T0 + timedelta(hours=3),
        ))

        open_ids = [t.id for t in await tickets.list_open()]

        assert len(open_ids) == 2
        assert third.id not in open_ids
        assert await tickets.count_active_for_assignee(10) == 1
        assert await tickets.count_created_since(T0 + timedelta(minutes=30)) == 2


class TestAssignmentRepository:

    @pytest.mark.asyncio
    async def test_create_batch_skips_existing_pairs(self, tickets, assignments):
        ticket = await new_ticket(tickets)

        first = await assignments.create_batch(ticket.id, [10, 20], T0)
        second = await assignments.create_batch(ticket.id, [20, 30], T0)

        assert [r.agent_id for r in first] == [10, 20]
        assert [r.agent_id for r in second] == [30]
        assert all(r.state == AssignmentState.PENDING for r in first + second)

    @pytest.mark.asyncio
    async def test_acceptance_takes_ticket_and_cancels_siblings(self, tickets, assignments):
        ticket = await new_ticket(tickets)
        requests = await assignments.create_batch(ticket.id, [10, 20, 30], T0)

        commit = await assignments.commit_acceptance(requests[1].id, 20, take(ticket, 20), T0, note="mine")

        assert commit.request.state == AssignmentState.ACCEPTED
        assert commit.request.response_note == "mine"
        assert commit.cancelled_request_ids == [requests[0].id, requests[2].id]
        stored = await tickets.get_by_id(ticket.id)
        assert stored.status == TicketStatus.IN_PROGRESS
        assert stored.assigned_to == 20
        states = {r.agent_id: r.state for r in await assignments.list_for_ticket(ticket.id)}
        assert states == {10: AssignmentState.CANCELLED, 20: AssignmentState.ACCEPTED, 30: AssignmentState.CANCELLED}
        assert await assignments.list_pending_for_agent(10) == []

    @pytest.mark.asyncio
    async def test_second_acceptance_loses(self, tickets, assignments):
        ticket = await new_ticket(tickets)
        requests = await assignments.create_batch(ticket.id, [10, 20], T0)
        await assignments.commit_acceptance(requests[0].id, 10, take(ticket, 10), T0)

        with pytest.raises(NotPendingException):
            await assignments.commit_acceptance(requests[1].id, 20, take(ticket, 20), T0)

        assert (await tickets.get_by_id(ticket.id)).assigned_to == 10

    @pytest.mark.asyncio
    async def test_repeated_acceptance_is_replay(self, tickets, assignments):
        ticket = await new_ticket(tickets)
        requests = await assignments.create_batch(ticket.id, [10], T0)
        await assignments.commit_acceptance(requests[0].id, 10, take(ticket, 10), T0)

        again = await assignments.commit_acceptance(requests[0].id, 10, take(ticket, 10), T0)

        assert again.replayed
        assert again.request.state == AssignmentState.ACCEPTED

    @pytest.mark.asyncio
    async def test_acceptance_rolls_back_when_ticket_was_taken(self, tickets, assignments):
        ticket = await new_ticket(tickets)
        requests = await assignments.create_batch(ticket.id, [10], T0)
        await tickets.apply_transition(take(ticket, 99))

        with pytest.raises(NotPendingException):
            await assignments.commit_acceptance(requests[0].id, 10, take(ticket, 10), T0)

        stored = await assignments.get_by_id(requests[0].id)
        assert stored.state == AssignmentState.PENDING

    @pytest.mark.asyncio
    async def test_rejections_count_what_is_left(self, tickets, assignments):
        ticket = await new_ticket(tickets)
        requests = await assignments.create_batch(ticket.id, [10, 20], T0)

        first = await assignments.commit_rejection(requests[0].id, 10, T0)
        last = await assignments.commit_rejection(requests[1].id, 20, T0, note="busy")

        assert first.remaining_pending == 1
        assert not first.leaves_ticket_unassignable
        assert last.remaining_pending == 0
        assert last.leaves_ticket_unassignable
        assert last.request.response_note == "busy"

        with pytest.raises(NotPendingException):
            await assignments.commit_rejection(requests[1].id, 20, T0)
