"""
Ticket Domain Layer
===================

Contains:
- Entities: Ticket snapshot and its history entries
- Lifecycle: the status state machine (TicketLifecycle)

Pure Python, no infrastructure dependencies.
"""

from helpdesk_engine.tickets.domain.entities import Ticket, TicketHistoryEntry
from helpdesk_engine.tickets.domain.lifecycle import (
    TicketLifecycle,
    TransitionResult,
    TRANSITIONS,
)

__all__ = [
    "Ticket",
    "TicketHistoryEntry",
    "TicketLifecycle",
    "TransitionResult",
    "TRANSITIONS",
]
