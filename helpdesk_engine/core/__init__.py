"""
Core Module
============

Shared core utilities and abstractions used across the engine.

This module contains framework-agnostic code that defines the fundamental
building blocks of the system.
"""

from helpdesk_engine.core.exceptions import (
    ApplicationException,
    DomainException,
    RepositoryException,
    ValidationException,
    ConfigurationException,
    ResourceNotFoundException,
    AuthorizationException,
    ConflictException,
    InvalidTransitionException,
    NotPendingException,
    NoEligibleAgentsException,
    CapacityExceededException,
    StorageUnavailableException,
    NotificationDeliveryException,
)

__all__ = [
    "ApplicationException",
    "DomainException",
    "RepositoryException",
    "ValidationException",
    "ConfigurationException",
    "ResourceNotFoundException",
    "AuthorizationException",
    "ConflictException",
    "InvalidTransitionException",
    "NotPendingException",
    "NoEligibleAgentsException",
    "CapacityExceededException",
    "StorageUnavailableException",
    "NotificationDeliveryException",
]
