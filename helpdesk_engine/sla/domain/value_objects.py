"""
SLA Value Objects
=================

Immutable value objects for the SLA domain.

Value objects are defined by their attributes rather than an identity.
They are immutable and can be freely shared.
"""

from datetime import datetime, timedelta
from typing import Dict, Optional

from pydantic import BaseModel, Field, field_validator

from helpdesk_engine.config import Priority, SLAState, VALID_PRIORITIES

DEFAULT_RESOLUTION_MINUTES: Dict[str, int] = {
    Priority.CRITICAL.value: 4 * 60,
    Priority.HIGH.value: 24 * 60,
    Priority.MEDIUM.value: 72 * 60,
    Priority.LOW.value: 168 * 60,
}


class HighVolumeConfig(BaseModel):
    """Alert when this many tickets arrive within the window."""
    window_minutes: int = Field(default=30, ge=1)
    threshold: int = Field(default=20, ge=1)


class SLAConfig(BaseModel):
    """
    SLA policy loaded from YAML.

    Due date = creation time + resolution target of the ticket's priority.

    This is a value object - immutable and defined by its attributes.
    """
    resolution_targets: Dict[str, int] = Field(
        default_factory=lambda: dict(DEFAULT_RESOLUTION_MINUTES),
        description="Resolution targets in minutes by priority"
    )
    warning_threshold_percent: float = Field(
        default=25.0,
        gt=0,
        lt=100,
        description="A ticket is at risk once the remaining time is at most this share of its window"
    )
    unassigned_alert_hours: float = Field(
        default=4.0,
        gt=0,
        description="Unassigned tickets older than this raise an UnassignedBacklog intent"
    )
    high_volume: HighVolumeConfig = Field(default_factory=HighVolumeConfig)

    @field_validator("resolution_targets")
    @classmethod
    def validate_resolution_targets(cls, v: Dict[str, int]) -> Dict[str, int]:
        """Every priority needs a positive target; missing ones take the default."""
        targets = dict(v)
        for priority in VALID_PRIORITIES:
            if priority not in targets:
                targets[priority] = DEFAULT_RESOLUTION_MINUTES[priority]
        for priority, minutes in targets.items():
            if priority not in VALID_PRIORITIES:
                raise ValueError(f"unknown priority in resolution_targets: {priority}")
            if minutes <= 0:
                raise ValueError(f"resolution target for {priority} must be positive")
        return targets

    def window_minutes(self, priority: Priority) -> int:
        """Resolution window for a priority, in minutes."""
        return self.resolution_targets[Priority(priority).value]

    def window(self, priority: Priority) -> timedelta:
        return timedelta(minutes=self.window_minutes(priority))


class SLACalculator:
    """
    Pure functions for SLA calculations.

    Stateless utility class: every SLA decision is made here so the
    monitor, the reschedule path and the due-date endpoint agree.
    """

    @staticmethod
    def compute_due_date(priority: Priority, created_at: datetime, config: SLAConfig) -> datetime:
        """
        Calculate the SLA deadline for a ticket.

        Deterministic: same priority and creation time, same due date.
        """
        return created_at + config.window(priority)

    @staticmethod
    def remaining_seconds(due_date: datetime, now: datetime) -> float:
        """Seconds until due (negative once past due)."""
        return (due_date - now).total_seconds()

    @staticmethod
    def evaluate(
        due_date: datetime,
        now: datetime,
        window: timedelta,
        warning_threshold_percent: float,
    ) -> SLAState:
        """
        Calculate the current SLA state.

        Breached once now is strictly after the due date; AtRisk while the
        remaining time is at most warning_threshold_percent of the window.
        """
        if now > due_date:
            return SLAState.BREACHED

        remaining = (due_date - now).total_seconds()
        threshold = window.total_seconds() * warning_threshold_percent / 100
        if remaining <= threshold:
            return SLAState.AT_RISK
        return SLAState.ON_TRACK

    @staticmethod
    def escalate(previous: Optional[SLAState], current: SLAState) -> SLAState:
        """Breach state never goes down on its own."""
        if previous is None:
            return current
        return previous if previous.severity >= current.severity else current

    @staticmethod
    def entered(previous: Optional[SLAState], current: SLAState) -> Optional[SLAState]:
        """
        The alerting state a ticket has just entered, if any.

        OnTrack -> Breached reports only Breached; AtRisk -> Breached
        reports Breached; anything that stays put reports nothing.
        """
        previous = previous or SLAState.ON_TRACK
        if current == previous or current == SLAState.ON_TRACK:
            return None
        if current.severity < previous.severity:
            return None
        return current
