"""
Ticket Interfaces Layer
=======================

FastAPI route handlers for the tickets module.
"""

from helpdesk_engine.tickets.interfaces.controllers import router as tickets_router

__all__ = ["tickets_router"]
