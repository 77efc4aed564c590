"""
Ticket Application Layer
========================

Contains:
- Services: TicketService (status changes, reads, history)
- DTOs: Pydantic request/response models
- ITicketRepository: the persistence port implemented in infrastructure
"""

from helpdesk_engine.tickets.application.dto import (
    TicketCreateDTO,
    TransitionRequest,
    TicketResponse,
    HistoryEntryResponse,
    TicketHistoryResponse,
)
from helpdesk_engine.tickets.application.services import (
    ITicketRepository,
    TicketService,
    generate_ticket_number,
    utcnow,
)

__all__ = [
    # DTOs
    "TicketCreateDTO",
    "TransitionRequest",
    "TicketResponse",
    "HistoryEntryResponse",
    "TicketHistoryResponse",
    # Services
    "TicketService",
    "generate_ticket_number",
    "utcnow",
    # Repository Interfaces
    "ITicketRepository",
]
