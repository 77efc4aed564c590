"""
SLA Domain Entities
===================

Pure Python domain entities for SLA monitoring.

These carry the computed SLA view of a ticket and the bookkeeping of
the monitor itself; they are free of infrastructure concerns.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from helpdesk_engine.config import MonitorState, Priority, SLAState


@dataclass(frozen=True)
class SLAWindow:
    """
    The SLA view of a single ticket at one instant.

    Breach state is monotonic: once Breached it stays Breached until an
    explicit reschedule.
    """
    ticket_id: int
    priority: Priority
    due_date: datetime
    state: SLAState
    checked_at: datetime
    remaining_seconds: float

    @property
    def is_breached(self) -> bool:
        return self.state == SLAState.BREACHED

    def to_dict(self) -> dict:
        """Convert to dictionary for API responses."""
        return {
            "ticket_id": self.ticket_id,
            "priority": self.priority.value,
            "due_date": self.due_date.isoformat(),
            "state": self.state.value,
            "checked_at": self.checked_at.isoformat(),
            "remaining_seconds": self.remaining_seconds,
        }


@dataclass
class SweepOutcome:
    """Counts from one pass over the open tickets."""
    started_at: datetime
    finished_at: Optional[datetime] = None
    checked: int = 0
    updated: int = 0
    at_risk: int = 0
    breached: int = 0
    notified: int = 0
    conflicts: int = 0
    failed: int = 0
    aborted: bool = False
    error: Optional[str] = None

    @property
    def duration_ms(self) -> Optional[float]:
        if self.finished_at is None:
            return None
        return round((self.finished_at - self.started_at).total_seconds() * 1000, 2)

    def to_dict(self) -> dict:
        return {
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "duration_ms": self.duration_ms,
            "checked": self.checked,
            "updated": self.updated,
            "at_risk": self.at_risk,
            "breached": self.breached,
            "notified": self.notified,
            "conflicts": self.conflicts,
            "failed": self.failed,
            "aborted": self.aborted,
            "error": self.error,
        }


@dataclass(frozen=True)
class MonitorStatus:
    """Snapshot of the monitor's run state."""
    state: MonitorState
    interval_seconds: Optional[int]
    last_sweep_started_at: Optional[datetime] = None
    last_sweep_finished_at: Optional[datetime] = None
    last_outcome: Optional[SweepOutcome] = None
    sweep_in_progress: bool = False

    @property
    def running(self) -> bool:
        return self.state == MonitorState.RUNNING


@dataclass(frozen=True)
class SLAStatistics:
    """Counts of open tickets per SLA state."""
    total: int = 0
    on_track: int = 0
    at_risk: int = 0
    breached: int = 0
    computed_at: Optional[datetime] = None

    @property
    def percentage_on_time(self) -> float:
        """Share of open tickets not breached; 100 when there are none."""
        if self.total == 0:
            return 100.0
        return round((self.total - self.breached) / self.total * 100, 2)

    def to_dict(self) -> dict:
        return {
            "total": self.total,
            "on_track": self.on_track,
            "at_risk": self.at_risk,
            "breached": self.breached,
            "percentage_on_time": self.percentage_on_time,
            "computed_at": self.computed_at.isoformat() if self.computed_at else None,
        }


@dataclass
class AlertLedger:
    """Per-process memory of sweep-level alerts already raised."""
    unassigned_ticket_ids: set = field(default_factory=set)
    last_high_volume_at: Optional[datetime] = None
