"""
Assignment Infrastructure Repositories
======================================

SQLAlchemy implementation of IAssignmentRepository.

Accept and reject lock the ticket row first (SELECT ... FOR UPDATE), so
decisions on offers for the same ticket are serialized and the pending
count a rejection sees is exact.
"""

from datetime import datetime
from typing import List, Optional

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from helpdesk_engine.assignment.application import IAssignmentRepository
from helpdesk_engine.assignment.domain import AcceptanceCommit, AssignmentRequest, RejectionCommit
from helpdesk_engine.assignment.infrastructure.models import AssignmentRequestModel
from helpdesk_engine.config import AssignmentState, TicketStatus
from helpdesk_engine.core import ConflictException, NotPendingException, ResourceNotFoundException
from helpdesk_engine.infrastructure.database import as_utc, session_scope
from helpdesk_engine.tickets.domain import TransitionResult
from helpdesk_engine.tickets.infrastructure import TicketModel, apply_transition_in_session


def _to_entity(model: AssignmentRequestModel) -> AssignmentRequest:
    return AssignmentRequest(
        id=model.id,
        ticket_id=model.ticket_id,
        agent_id=model.agent_id,
        state=AssignmentState(model.state),
        requested_at=as_utc(model.requested_at),
        decided_at=as_utc(model.decided_at),
        response_note=model.response_note,
    )


class SQLAlchemyAssignmentRepository(IAssignmentRepository):
    """
    SQLAlchemy implementation of assignment request repository.

    Every decision is a conditional UPDATE on state = 'Pending'.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def create_batch(
        self,
        ticket_id: int,
        agent_ids: List[int],
        requested_at: datetime,
    ) -> List[AssignmentRequest]:
        try:
            async with session_scope(self._session_factory) as session:
                stmt = select(AssignmentRequestModel.agent_id).where(
                    AssignmentRequestModel.ticket_id == ticket_id
                )
                existing = set((await session.execute(stmt)).scalars().all())

                models = [
                    AssignmentRequestModel(
                        ticket_id=ticket_id,
                        agent_id=agent_id,
                        state=AssignmentState.PENDING.value,
                        requested_at=requested_at,
                    )
                    for agent_id in agent_ids
                    if agent_id not in existing
                ]
                session.add_all(models)
                await session.flush()
                return [_to_entity(m) for m in models]
        except IntegrityError as e:
            # A concurrent batch inserted one of the same pairs first
            raise ConflictException(
                f"Assignment requests for ticket {ticket_id} were created concurrently",
                {"ticket_id": ticket_id}
            ) from e

    async def get_by_id(self, request_id: int) -> Optional[AssignmentRequest]:
        async with session_scope(self._session_factory) as session:
            model = await session.get(AssignmentRequestModel, request_id)
            return _to_entity(model) if model else None

    async def list_pending_for_agent(self, agent_id: int) -> List[AssignmentRequest]:
        async with session_scope(self._session_factory) as session:
            stmt = (
                select(AssignmentRequestModel)
                .where(
                    AssignmentRequestModel.agent_id == agent_id,
                    AssignmentRequestModel.state == AssignmentState.PENDING.value,
                )
                .order_by(AssignmentRequestModel.requested_at.asc(), AssignmentRequestModel.id.asc())
            )
            result = await session.execute(stmt)
            return [_to_entity(m) for m in result.scalars().all()]

    async def list_for_ticket(self, ticket_id: int) -> List[AssignmentRequest]:
        async with session_scope(self._session_factory) as session:
            stmt = (
                select(AssignmentRequestModel)
                .where(AssignmentRequestModel.ticket_id == ticket_id)
                .order_by(AssignmentRequestModel.id.asc())
            )
            result = await session.execute(stmt)
            return [_to_entity(m) for m in result.scalars().all()]

    async def commit_acceptance(
        self,
        request_id: int,
        agent_id: int,
        transition: TransitionResult,
        decided_at: datetime,
        note: Optional[str] = None,
    ) -> AcceptanceCommit:
        ticket_id = transition.before.id

        async with session_scope(self._session_factory) as session:
            await self._lock_ticket(session, ticket_id)

            outcome = await session.execute(
                update(AssignmentRequestModel)
                .where(
                    AssignmentRequestModel.id == request_id,
                    AssignmentRequestModel.agent_id == agent_id,
                    AssignmentRequestModel.state == AssignmentState.PENDING.value,
                )
                .values(
                    state=AssignmentState.ACCEPTED.value,
                    decided_at=decided_at,
                    response_note=note,
                )
                .execution_options(synchronize_session=False)
            )

            if outcome.rowcount != 1:
                current = await self._fetch(session, request_id)
                if (
                    current is not None
                    and current.state == AssignmentState.ACCEPTED.value
                    and current.agent_id == agent_id
                ):
                    return AcceptanceCommit(request=_to_entity(current), replayed=True)
                raise NotPendingException(request_id, current.state if current else None)

            if not await apply_transition_in_session(session, transition):
                # Raising rolls back the request decision made above
                raise NotPendingException(
                    request_id, AssignmentState.PENDING,
                    reason=f"Ticket {ticket_id} has already been taken"
                )

            sibling_filter = (
                AssignmentRequestModel.ticket_id == ticket_id,
                AssignmentRequestModel.id != request_id,
                AssignmentRequestModel.state == AssignmentState.PENDING.value,
            )
            cancelled_ids = list((await session.execute(
                select(AssignmentRequestModel.id).where(*sibling_filter).order_by(AssignmentRequestModel.id)
            )).scalars().all())

            if cancelled_ids:
                await session.execute(
                    update(AssignmentRequestModel)
                    .where(*sibling_filter)
                    .values(state=AssignmentState.CANCELLED.value, decided_at=decided_at)
                    .execution_options(synchronize_session=False)
                )

            accepted = await self._fetch(session, request_id)
            return AcceptanceCommit(request=_to_entity(accepted), cancelled_request_ids=cancelled_ids)

    async def commit_rejection(
        self,
        request_id: int,
        agent_id: int,
        decided_at: datetime,
        note: Optional[str] = None,
    ) -> RejectionCommit:
        async with session_scope(self._session_factory) as session:
            current = await self._fetch(session, request_id)
            if current is None:
                raise ResourceNotFoundException("AssignmentRequest", request_id)
            ticket_id = current.ticket_id

            ticket = await self._lock_ticket(session, ticket_id)

            outcome = await session.execute(
                update(AssignmentRequestModel)
                .where(
                    AssignmentRequestModel.id == request_id,
                    AssignmentRequestModel.agent_id == agent_id,
                    AssignmentRequestModel.state == AssignmentState.PENDING.value,
                )
                .values(
                    state=AssignmentState.REJECTED.value,
                    decided_at=decided_at,
                    response_note=note,
                )
                .execution_options(synchronize_session=False)
            )
            if outcome.rowcount != 1:
                current = await self._fetch(session, request_id)
                raise NotPendingException(request_id, current.state)

            counts = dict((await session.execute(
                select(AssignmentRequestModel.state, func.count(AssignmentRequestModel.id))
                .where(AssignmentRequestModel.ticket_id == ticket_id)
                .group_by(AssignmentRequestModel.state)
            )).all())

            rejected = await self._fetch(session, request_id)
            return RejectionCommit(
                request=_to_entity(rejected),
                remaining_pending=counts.get(AssignmentState.PENDING.value, 0),
                any_accepted=counts.get(AssignmentState.ACCEPTED.value, 0) > 0,
                ticket_assignable=(
                    ticket is not None
                    and ticket.status == TicketStatus.OPEN.value
                    and ticket.assigned_to is None
                ),
            )

    @staticmethod
    async def _lock_ticket(session: AsyncSession, ticket_id: int) -> Optional[TicketModel]:
        stmt = (
            select(TicketModel)
            .where(TicketModel.id == ticket_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return (await session.execute(stmt)).scalar_one_or_none()

    @staticmethod
    async def _fetch(session: AsyncSession, request_id: int) -> Optional[AssignmentRequestModel]:
        stmt = (
            select(AssignmentRequestModel)
            .where(AssignmentRequestModel.id == request_id)
            .execution_options(populate_existing=True)
        )
        return (await session.execute(stmt)).scalar_one_or_none()
