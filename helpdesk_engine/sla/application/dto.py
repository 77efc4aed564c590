"""
SLA Application DTOs
=====================

Data Transfer Objects for SLA API layer.

These Pydantic models handle serialization/deserialization and validation
for API requests and responses. Following YAGNI - only what's needed.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from helpdesk_engine.config import MonitorState, Priority, SLAState
from helpdesk_engine.sla.domain import MonitorStatus, SLAStatistics, SLAWindow, SweepOutcome


# ========== Request DTOs ==========

class MonitorStartRequest(BaseModel):
    """Request body for starting the monitor."""
    interval_seconds: Optional[int] = Field(
        None,
        ge=1,
        description="Sweep interval; defaults to SLA_CHECK_INTERVAL_SECONDS"
    )
    run_immediately: bool = Field(default=True, description="Run the first sweep right away")


class RescheduleRequest(BaseModel):
    """Request body for pushing a due date forward."""
    due_date: Optional[datetime] = Field(
        None,
        description="New due date; defaults to now plus the priority's window"
    )

    @field_validator("due_date")
    @classmethod
    def validate_timezone(cls, v: Optional[datetime]) -> Optional[datetime]:
        if v is not None and v.tzinfo is None:
            raise ValueError("due_date must include a timezone offset")
        return v


# ========== Response DTOs ==========

class SweepOutcomeResponse(BaseModel):
    """Counts from one sweep."""
    started_at: datetime
    finished_at: Optional[datetime] = None
    duration_ms: Optional[float] = None
    checked: int = 0
    updated: int = 0
    at_risk: int = 0
    breached: int = 0
    notified: int = 0
    conflicts: int = 0
    failed: int = 0
    aborted: bool = False
    error: Optional[str] = None

    @classmethod
    def from_entity(cls, outcome: SweepOutcome) -> "SweepOutcomeResponse":
        return cls(**outcome.to_dict())


class MonitorStatusResponse(BaseModel):
    """Run state of the SLA monitor."""
    state: MonitorState
    running: bool
    interval_seconds: Optional[int] = None
    sweep_in_progress: bool = False
    last_sweep_started_at: Optional[datetime] = None
    last_sweep_finished_at: Optional[datetime] = None
    last_outcome: Optional[SweepOutcomeResponse] = None

    @classmethod
    def from_entity(cls, status: MonitorStatus) -> "MonitorStatusResponse":
        return cls(
            state=status.state,
            running=status.running,
            interval_seconds=status.interval_seconds,
            sweep_in_progress=status.sweep_in_progress,
            last_sweep_started_at=status.last_sweep_started_at,
            last_sweep_finished_at=status.last_sweep_finished_at,
            last_outcome=(
                SweepOutcomeResponse.from_entity(status.last_outcome)
                if status.last_outcome else None
            ),
        )


class SLAWindowResponse(BaseModel):
    """SLA view of one ticket."""
    ticket_id: int
    priority: Priority
    due_date: datetime
    state: SLAState
    checked_at: datetime
    remaining_seconds: float

    @classmethod
    def from_entity(cls, window: SLAWindow) -> "SLAWindowResponse":
        return cls(
            ticket_id=window.ticket_id,
            priority=window.priority,
            due_date=window.due_date,
            state=window.state,
            checked_at=window.checked_at,
            remaining_seconds=window.remaining_seconds,
        )


class SLAStatisticsResponse(BaseModel):
    """Open tickets per SLA state."""
    total: int = 0
    on_track: int = 0
    at_risk: int = 0
    breached: int = 0
    percentage_on_time: float = 100.0
    computed_at: Optional[datetime] = None
    degraded: bool = False

    @classmethod
    def from_entity(cls, stats: SLAStatistics, degraded: bool = False) -> "SLAStatisticsResponse":
        return cls(
            total=stats.total,
            on_track=stats.on_track,
            at_risk=stats.at_risk,
            breached=stats.breached,
            percentage_on_time=stats.percentage_on_time,
            computed_at=stats.computed_at,
            degraded=degraded,
        )


class DueDateResponse(BaseModel):
    priority: Priority
    created_at: datetime
    due_date: datetime
    window_minutes: int
