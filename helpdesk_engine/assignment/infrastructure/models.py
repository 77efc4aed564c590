"""
Assignment Infrastructure Models
================================

SQLAlchemy ORM model for assignment requests.
"""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import DateTime, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from helpdesk_engine.config import AssignmentState
from helpdesk_engine.infrastructure.database import Base


class AssignmentRequestModel(Base):
    """
    Database model for AssignmentRequest entity.

    Maps to the 'ticket_assignment_requests' table. One row per
    (ticket, agent) pair.
    """
    __tablename__ = "ticket_assignment_requests"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    ticket_id: Mapped[int] = mapped_column(Integer, ForeignKey("tickets.id"), nullable=False, index=True)
    agent_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    state: Mapped[str] = mapped_column(String(20), nullable=False, default=AssignmentState.PENDING.value)
    requested_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc)
    )
    decided_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    response_note: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    __table_args__ = (
        UniqueConstraint("ticket_id", "agent_id", name="uq_assignment_ticket_agent"),
    )
