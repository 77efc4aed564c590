"""
Assignment Interfaces Layer
===========================

FastAPI route handlers for assignment requests.
"""

from helpdesk_engine.assignment.interfaces.controllers import router as assignment_router

__all__ = ["assignment_router"]
