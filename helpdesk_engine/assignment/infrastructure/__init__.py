"""
Assignment Infrastructure Layer
===============================

- Models: AssignmentRequestModel (unique per ticket and agent)
- Repositories: SQLAlchemyAssignmentRepository with row-locked decisions
"""

from helpdesk_engine.assignment.infrastructure.models import AssignmentRequestModel
from helpdesk_engine.assignment.infrastructure.repositories import SQLAlchemyAssignmentRepository

__all__ = [
    "AssignmentRequestModel",
    "SQLAlchemyAssignmentRepository",
]
