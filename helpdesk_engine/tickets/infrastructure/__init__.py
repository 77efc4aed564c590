"""
Ticket Infrastructure Layer
===========================

- Models: SQLAlchemy ORM models (tickets, ticket_history)
- Repositories: SQLAlchemyTicketRepository with conditional updates
"""

from helpdesk_engine.tickets.infrastructure.models import TicketModel, TicketHistoryModel
from helpdesk_engine.tickets.infrastructure.repositories import (
    SQLAlchemyTicketRepository,
    apply_transition_in_session,
    ticket_to_entity,
)

__all__ = [
    "TicketModel",
    "TicketHistoryModel",
    "SQLAlchemyTicketRepository",
    "apply_transition_in_session",
    "ticket_to_entity",
]
