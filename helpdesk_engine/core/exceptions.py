"""
Core Exceptions
================

Custom exceptions for the engine following clean architecture principles.

These exceptions define domain-specific errors that can be caught and handled
appropriately at the application boundaries. Anything deriving from
ApplicationException is a deliberate outcome and is never retried by the
resilient store.
"""

from typing import Any, Iterable, Optional


class ApplicationException(Exception):
    """Base exception for all application errors."""

    def __init__(self, message: str, details: Optional[dict] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class DomainException(ApplicationException):
    """Base exception for domain logic violations."""


class RepositoryException(ApplicationException):
    """Base exception for repository/data access errors."""


class ValidationException(ApplicationException):
    """Exception for validation errors."""


class ConfigurationException(ApplicationException):
    """Exception for configuration errors."""


class ResourceNotFoundException(ApplicationException):
    """Exception when a requested resource is not found."""

    def __init__(
        self,
        resource_type: str,
        resource_id: Optional[Any] = None,
        details: Optional[dict] = None
    ):
        self.resource_type = resource_type
        self.resource_id = resource_id
        message = f"{resource_type}"
        if resource_id is not None:
            message += f" with id '{resource_id}'"
        message += " not found"
        super().__init__(message, details)


class AuthorizationException(DomainException):
    """The actor is not allowed to perform the operation."""


class ConflictException(DomainException):
    """A conditional update lost a race against a concurrent writer."""


class InvalidTransitionException(DomainException):
    """Raised when a ticket status move is not allowed."""

    def __init__(
        self,
        current: Any,
        target: Any,
        allowed_next: Iterable[Any],
        reason: str = "transition not allowed",
    ):
        self.current = current
        self.target = target
        self.allowed_next = sorted(getattr(s, "value", s) for s in allowed_next)
        super().__init__(
            f"Cannot move ticket from {getattr(current, 'value', current)} "
            f"to {getattr(target, 'value', target)}: {reason}",
            {
                "current": getattr(current, "value", current),
                "target": getattr(target, "value", target),
                "allowed_next": self.allowed_next,
            }
        )


class NotPendingException(DomainException):
    """The assignment request was already decided (the race was lost)."""

    def __init__(self, request_id: Any, state: Any, reason: Optional[str] = None):
        self.request_id = request_id
        self.state = getattr(state, "value", state)
        super().__init__(
            reason or f"Assignment request {request_id} is no longer pending",
            {"request_id": request_id, "state": self.state}
        )


class NoEligibleAgentsException(DomainException):
    """An assignment batch was requested with no candidate agents."""

    def __init__(self, ticket_id: Any):
        self.ticket_id = ticket_id
        super().__init__(
            f"No eligible agents to route ticket {ticket_id}",
            {"ticket_id": ticket_id}
        )


class CapacityExceededException(DomainException):
    """The agent already holds the maximum number of active tickets."""

    def __init__(self, agent_id: Any, active: int, limit: int):
        self.agent_id = agent_id
        self.active = active
        self.limit = limit
        super().__init__(
            f"Agent {agent_id} already has {active} active tickets (limit {limit})",
            {"agent_id": agent_id, "active": active, "limit": limit}
        )


class StorageUnavailableException(RepositoryException):
    """Retries were exhausted and no usable fallback existed."""

    def __init__(
        self,
        operation: str,
        attempts: int,
        cause: Optional[BaseException] = None,
        reason: str = "retries exhausted",
    ):
        self.operation = operation
        self.attempts = attempts
        self.cause = cause
        super().__init__(
            f"Storage unavailable for {operation} after {attempts} attempt(s): {reason}",
            {
                "operation": operation,
                "attempts": attempts,
                "cause": type(cause).__name__ if cause else None,
            }
        )


class NotificationDeliveryException(ApplicationException):
    """A sink could not hand an intent to the delivery service."""

    def __init__(self, kind: str, ticket_id: Optional[int], reason: str):
        self.kind = kind
        self.ticket_id = ticket_id
        super().__init__(
            f"Notification intent {kind} not delivered: {reason}",
            {"kind": kind, "ticket_id": ticket_id, "reason": reason}
        )
