"""
Assignment Domain Layer
=======================

Entities for fan-out assignment requests and the results of deciding them.
"""

from helpdesk_engine.assignment.domain.entities import (
    AssignmentRequest,
    AcceptanceCommit,
    RejectionCommit,
    AcceptResult,
    RejectResult,
)

__all__ = [
    "AssignmentRequest",
    "AcceptanceCommit",
    "RejectionCommit",
    "AcceptResult",
    "RejectResult",
]
