"""
SLA Infrastructure Layer
=========================

Infrastructure implementations for SLA monitoring:
- External: YAML policy watcher and the sweep scheduler

Ticket persistence is shared with the tickets module.
"""

from helpdesk_engine.sla.infrastructure.external import (
    ConfigFileHandler,
    SLAConfigManager,
    SweepScheduler,
)

__all__ = [
    "ConfigFileHandler",
    "SLAConfigManager",
    "SweepScheduler",
]
