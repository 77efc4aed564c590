"""
Assignment Application Layer
============================

Contains:
- AssignmentCoordinator: request / accept / reject / list
- DTOs: Pydantic request/response models
- IAssignmentRepository: the persistence port implemented in infrastructure
"""

from helpdesk_engine.assignment.application.dto import (
    AssignmentRequestCreate,
    AssignmentDecision,
    AssignmentRequestResponse,
    AssignmentRequestListResponse,
    AcceptResponse,
    RejectResponse,
)
from helpdesk_engine.assignment.application.services import (
    AssignmentCoordinator,
    IAssignmentRepository,
    ASSIGNMENT_CACHE_PREFIX,
)

__all__ = [
    # DTOs
    "AssignmentRequestCreate",
    "AssignmentDecision",
    "AssignmentRequestResponse",
    "AssignmentRequestListResponse",
    "AcceptResponse",
    "RejectResponse",
    # Services
    "AssignmentCoordinator",
    "ASSIGNMENT_CACHE_PREFIX",
    # Repository Interfaces
    "IAssignmentRepository",
]
