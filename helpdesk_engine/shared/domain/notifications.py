"""
Notification Intents
====================

The engine never delivers notifications. It emits intents describing what
happened; a sink hands them to the external delivery boundary.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from helpdesk_engine.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)


class NotificationKind(str, Enum):
    """Kinds of notification intents."""
    ASSIGNMENT_OFFERED = "AssignmentOffered"
    ASSIGNMENT_ACCEPTED = "AssignmentAccepted"
    SLA_BREACHED = "SLABreached"
    SLA_AT_RISK = "SLAAtRisk"
    UNASSIGNABLE = "Unassignable"
    UNASSIGNED_BACKLOG = "UnassignedBacklog"
    HIGH_VOLUME = "HighVolume"


@dataclass(frozen=True)
class NotificationIntent:
    """A request for the delivery boundary to notify someone."""
    kind: NotificationKind
    ticket_id: Optional[int] = None
    agent_id: Optional[int] = None
    client_id: Optional[int] = None
    payload: Dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict:
        """Convert to a JSON-ready dictionary."""
        return {
            "kind": self.kind.value,
            "ticket_id": self.ticket_id,
            "agent_id": self.agent_id,
            "client_id": self.client_id,
            "payload": self.payload,
            "created_at": self.created_at.isoformat(),
        }


class INotificationSink(ABC):
    """Interface for handing intents to the delivery boundary."""

    @abstractmethod
    async def emit(self, intent: NotificationIntent) -> None:
        """
        Publish a single intent.

        Raises when the intent could not be handed over.
        """


async def emit_safely(sink: INotificationSink, intent: NotificationIntent) -> bool:
    """
    Emit an intent, logging instead of raising on failure.

    Delivery problems must never roll back or fail the domain operation
    that produced the intent.
    """
    try:
        await sink.emit(intent)
        return True
    except Exception as e:
        logger.error(
            "Failed to emit notification intent",
            extra={
                "kind": intent.kind.value,
                "ticket_id": intent.ticket_id,
                "error": str(e),
            }
        )
        return False
