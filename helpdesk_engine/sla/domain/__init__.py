"""
SLA Domain Layer
================

Domain layer for SLA monitoring module.

Contains:
- Entities: SLAWindow, SweepOutcome, MonitorStatus, SLAStatistics
- Value Objects: SLAConfig (YAML policy)
- Domain Services: Stateless business logic (SLACalculator)

This layer has no dependencies on infrastructure - pure Python business logic.
"""

from helpdesk_engine.sla.domain.entities import (
    SLAWindow,
    SweepOutcome,
    MonitorStatus,
    SLAStatistics,
    AlertLedger,
)
from helpdesk_engine.sla.domain.value_objects import (
    SLACalculator,
    SLAConfig,
    HighVolumeConfig,
    DEFAULT_RESOLUTION_MINUTES,
)

__all__ = [
    # Entities
    "SLAWindow",
    "SweepOutcome",
    "MonitorStatus",
    "SLAStatistics",
    "AlertLedger",
    # Value Objects & Services
    "SLACalculator",
    "SLAConfig",
    "HighVolumeConfig",
    "DEFAULT_RESOLUTION_MINUTES",
]
