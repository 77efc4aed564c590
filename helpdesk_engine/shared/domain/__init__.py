"""
Shared Domain
=============

Vocabulary shared by every bounded context:
- Actor: identity and role handed in by the identity boundary
- NotificationIntent: what the engine asks the delivery boundary to send
"""

from helpdesk_engine.shared.domain.actors import Actor
from helpdesk_engine.shared.domain.notifications import (
    NotificationKind,
    NotificationIntent,
    INotificationSink,
    emit_safely,
)

__all__ = [
    "Actor",
    "NotificationKind",
    "NotificationIntent",
    "INotificationSink",
    "emit_safely",
]
