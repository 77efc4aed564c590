"""
Ticket Infrastructure Repositories
==================================

SQLAlchemy implementation of ITicketRepository.

Each method runs in its own unit of work. State changes are conditional
UPDATE statements; a rowcount of zero means another writer got there
first and nothing was applied.
"""

from datetime import datetime
from typing import List, Optional

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from helpdesk_engine.config import ACTIVE_STATUSES, Priority, SLAState, TicketStatus
from helpdesk_engine.infrastructure.database import as_utc, session_scope
from helpdesk_engine.tickets.application import ITicketRepository, TicketCreateDTO
from helpdesk_engine.tickets.domain import Ticket, TicketHistoryEntry, TransitionResult
from helpdesk_engine.tickets.infrastructure.models import TicketHistoryModel, TicketModel

_ACTIVE_VALUES = [s.value for s in ACTIVE_STATUSES]


def ticket_to_entity(model: TicketModel) -> Ticket:
    return Ticket(
        id=model.id,
        ticket_number=model.ticket_number,
        title=model.title,
        description=model.description,
        priority=Priority(model.priority),
        status=TicketStatus(model.status),
        client_id=model.client_id,
        created_at=as_utc(model.created_at),
        modified_at=as_utc(model.modified_at),
        category_id=model.category_id,
        subcategory_id=model.subcategory_id,
        location=model.location,
        assigned_to=model.assigned_to,
        due_date=as_utc(model.due_date),
        resolution_time=model.resolution_time,
        resolved_at=as_utc(model.resolved_at),
        closed_at=as_utc(model.closed_at),
        sla_state=SLAState(model.sla_state),
        sla_priority=Priority(model.sla_priority) if model.sla_priority else None,
        sla_checked_at=as_utc(model.sla_checked_at),
        sla_version=model.sla_version,
    )


def _history_to_entity(model: TicketHistoryModel) -> TicketHistoryEntry:
    return TicketHistoryEntry(
        id=model.id,
        ticket_id=model.ticket_id,
        field=model.field_name,
        old_value=model.old_value,
        new_value=model.new_value,
        changed_by=model.changed_by,
        changed_at=as_utc(model.changed_at),
    )


async def apply_transition_in_session(session: AsyncSession, result: TransitionResult) -> bool:
    """
    Conditional ticket update plus history rows inside an open session.

    Shared with the assignment repository so acceptance can move the
    ticket in the same transaction as the request decision.
    """
    before, after = result.before, result.ticket

    conditions = [
        TicketModel.id == before.id,
        TicketModel.status == before.status.value,
    ]
    if before.assigned_to is None:
        conditions.append(TicketModel.assigned_to.is_(None))
    else:
        conditions.append(TicketModel.assigned_to == before.assigned_to)

    stmt = (
        update(TicketModel)
        .where(*conditions)
        .values(
            status=after.status.value,
            assigned_to=after.assigned_to,
            modified_at=after.modified_at,
            resolution_time=after.resolution_time,
            resolved_at=after.resolved_at,
            closed_at=after.closed_at,
        )
        .execution_options(synchronize_session=False)
    )
    outcome = await session.execute(stmt)
    if outcome.rowcount != 1:
        return False

    for entry in result.history:
        session.add(TicketHistoryModel(
            ticket_id=entry.ticket_id,
            field_name=entry.field,
            old_value=entry.old_value,
            new_value=entry.new_value,
            changed_by=entry.changed_by,
            changed_at=entry.changed_at,
        ))
    await session.flush()
    return True


class SQLAlchemyTicketRepository(ITicketRepository):
    """
    SQLAlchemy implementation of ticket repository.

    Handles persistence of Ticket entities using async SQLAlchemy.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def get_by_id(self, ticket_id: int) -> Optional[Ticket]:
        async with session_scope(self._session_factory) as session:
            model = await session.get(TicketModel, ticket_id)
            return ticket_to_entity(model) if model else None

    async def create(self, data: TicketCreateDTO, ticket_number: str, created_at: datetime) -> Ticket:
        """Create new ticket."""
        async with session_scope(self._session_factory) as session:
            model = TicketModel(
                ticket_number=ticket_number,
                title=data.title,
                description=data.description,
                priority=data.priority.value,
                status=TicketStatus.OPEN.value,
                category_id=data.category_id,
                subcategory_id=data.subcategory_id,
                client_id=data.client_id,
                assigned_to=None,
                location=data.location,
                due_date=data.due_date,
                sla_state=SLAState.ON_TRACK.value,
                sla_priority=data.priority.value if data.due_date else None,
                sla_version=0,
                created_at=created_at,
                modified_at=created_at,
            )
            session.add(model)
            await session.flush()
            return ticket_to_entity(model)

    async def list_open(self) -> List[Ticket]:
        async with session_scope(self._session_factory) as session:
            stmt = (
                select(TicketModel)
                .where(TicketModel.status.in_(_ACTIVE_VALUES))
                .order_by(TicketModel.id.asc())
            )
            result = await session.execute(stmt)
            return [ticket_to_entity(m) for m in result.scalars().all()]

    async def apply_transition(self, result: TransitionResult) -> bool:
        async with session_scope(self._session_factory) as session:
            return await apply_transition_in_session(session, result)

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
        async with session_scope(self._session_factory) as session:
            stmt = (
                update(TicketModel)
                .where(
                    TicketModel.id == ticket_id,
                    TicketModel.sla_version == expected_version,
                    TicketModel.status.in_(_ACTIVE_VALUES),
                )
                .values(
                    due_date=due_date,
                    sla_state=sla_state.value,
                    sla_priority=sla_priority.value,
                    sla_checked_at=checked_at,
                    sla_version=expected_version + 1,
                )
                .execution_options(synchronize_session=False)
            )
            outcome = await session.execute(stmt)
            return outcome.rowcount == 1

    async def count_active_for_assignee(self, agent_id: int) -> int:
        async with session_scope(self._session_factory) as session:
            stmt = select(func.count(TicketModel.id)).where(
                TicketModel.assigned_to == agent_id,
                TicketModel.status.in_(_ACTIVE_VALUES),
            )
            return (await session.execute(stmt)).scalar_one()

    async def count_created_since(self, since: datetime) -> int:
        async with session_scope(self._session_factory) as session:
            stmt = select(func.count(TicketModel.id)).where(TicketModel.created_at >= since)
            return (await session.execute(stmt)).scalar_one()

    async def list_history(self, ticket_id: int) -> List[TicketHistoryEntry]:
        async with session_scope(self._session_factory) as session:
            stmt = (
                select(TicketHistoryModel)
                .where(TicketHistoryModel.ticket_id == ticket_id)
                .order_by(TicketHistoryModel.id.asc())
            )
            result = await session.execute(stmt)
            return [_history_to_entity(m) for m in result.scalars().all()]
