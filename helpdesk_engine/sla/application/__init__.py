"""
SLA Application Layer
======================

Application layer for SLA monitoring module.

Contains:
- Services: the SLA monitor and its ports
- DTOs: Data transfer objects for API serialization

This layer depends on the domain layer and port interfaces,
but not on concrete infrastructure implementations.
"""

from helpdesk_engine.sla.application.dto import (
    DueDateResponse,
    MonitorStartRequest,
    MonitorStatusResponse,
    RescheduleRequest,
    SLAStatisticsResponse,
    SLAWindowResponse,
    SweepOutcomeResponse,
)
from helpdesk_engine.sla.application.services import (
    STATISTICS_CACHE_KEY,
    ISLAConfigProvider,
    ISweepScheduler,
    SLAMonitor,
    StaticSLAConfigProvider,
)

__all__ = [
    # DTOs
    "DueDateResponse",
    "MonitorStartRequest",
    "MonitorStatusResponse",
    "RescheduleRequest",
    "SLAStatisticsResponse",
    "SLAWindowResponse",
    "SweepOutcomeResponse",
    # Services
    "SLAMonitor",
    "STATISTICS_CACHE_KEY",
    # Ports
    "ISLAConfigProvider",
    "ISweepScheduler",
    "StaticSLAConfigProvider",
]
