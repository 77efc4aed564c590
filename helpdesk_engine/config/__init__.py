"""
Configuration Module
====================

Application settings and configuration management using Pydantic.
"""

from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Engine settings loaded from environment variables.

    Uses Pydantic for validation and type safety.
    """

    # ========== Application ==========
    app_name: str = Field(default="helpdesk-engine", description="Application name")
    app_version: str = Field(default="1.0.0", description="Application version")
    environment: str = Field(default="development", description="Environment name")
    debug: bool = Field(default=False, description="Enable debug mode")
    log_level: str = Field(default="INFO", description="Root log level")

    # ========== Server ==========
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8000, description="Server port", ge=1, le=65535)

    # ========== Database ==========
    database_url: str = Field(
        default="postgresql+asyncpg://localhost:5432/helpdesk",
        description="PostgreSQL connection URL (async)"
    )
    db_pool_size: int = Field(default=5, description="Database connection pool size", ge=1)
    db_max_overflow: int = Field(default=10, description="Max overflow connections", ge=0)

    # ========== SLA Monitor ==========
    sla_config_path: Path = Field(
        default=Path("sla_config.yaml"),
        description="Path to SLA policy YAML file"
    )
    sla_sweep_interval_seconds: int = Field(
        default=1800,
        description="Seconds between scheduled SLA sweeps",
        ge=1
    )
    sla_monitor_autostart: bool = Field(
        default=False,
        description="Start the SLA monitor on process start (Stopped otherwise)"
    )

    # ========== Resilient Store ==========
    store_read_attempts: int = Field(default=3, description="Total attempts for reads", ge=1, le=10)
    store_write_attempts: int = Field(default=2, description="Total attempts for writes", ge=1, le=10)
    store_base_delay_seconds: float = Field(default=0.2, description="Backoff base delay", ge=0.0)
    store_backoff_multiplier: float = Field(default=2.0, description="Backoff multiplier", ge=1.0)
    store_max_delay_seconds: float = Field(default=2.0, description="Backoff delay cap", ge=0.0)
    store_jitter: float = Field(default=0.2, description="Jitter fraction added to delays", ge=0.0, le=1.0)
    cache_ttl_seconds: float = Field(default=300.0, description="Read cache TTL", gt=0)
    cache_max_entries: int = Field(default=1024, description="Read cache capacity", ge=1)
    client_operation_deadline_seconds: float = Field(
        default=5.0,
        description="Overall deadline for accept/reject/transition calls",
        gt=0
    )

    # ========== Assignment ==========
    agent_max_active_tickets: int = Field(
        default=10,
        description="Active tickets an agent may hold before accepts are refused",
        ge=1
    )

    # ========== Notifications ==========
    notification_webhook_url: Optional[str] = Field(
        default=None,
        description="Endpoint of the external delivery service for notification intents"
    )
    notification_timeout_seconds: float = Field(
        default=5.0,
        description="Timeout for notification webhook calls",
        ge=0.1,
        le=30
    )
    notification_delivery_deadline_seconds: float = Field(
        default=3.0,
        description="Cap on one intent delivery, retries included",
        gt=0,
        le=60
    )

    # ========== CORS ==========
    cors_origins: List[str] = Field(
        default=["http://localhost:3000"],
        description="Allowed CORS origins"
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Ensure environment is one of allowed values."""
        allowed = {"development", "staging", "production"}
        if v not in allowed:
            raise ValueError(f"environment must be one of {allowed}")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        allowed = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v.upper() not in allowed:
            raise ValueError(f"log_level must be one of {allowed}")
        return v.upper()


@lru_cache()
def get_settings() -> Settings:
    """Returns cached Settings instance."""
    return Settings()


# ========== Constants ==========

class Priority(str, Enum):
    """Ticket priority levels."""
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"
    CRITICAL = "Critical"


class TicketStatus(str, Enum):
    """Ticket lifecycle statuses."""
    OPEN = "Open"
    IN_PROGRESS = "InProgress"
    WAITING_FOR_CLIENT = "WaitingForClient"
    WAITING_FOR_THIRD_PARTY = "WaitingForThirdParty"
    RESOLVED = "Resolved"
    CLOSED = "Closed"
    CANCELLED = "Cancelled"


class ActorRole(str, Enum):
    """Roles supplied by the identity boundary."""
    ADMIN = "Admin"
    AGENT = "Agent"
    CLIENT = "Client"


class AssignmentState(str, Enum):
    """Assignment request states."""
    PENDING = "Pending"
    ACCEPTED = "Accepted"
    REJECTED = "Rejected"
    CANCELLED = "Cancelled"


class SLAState(str, Enum):
    """Breach state of an SLA window, ordered by severity."""
    ON_TRACK = "OnTrack"
    AT_RISK = "AtRisk"
    BREACHED = "Breached"

    @property
    def severity(self) -> int:
        return _SLA_SEVERITY[self]


_SLA_SEVERITY = {
    SLAState.ON_TRACK: 0,
    SLAState.AT_RISK: 1,
    SLAState.BREACHED: 2,
}


class MonitorState(str, Enum):
    """SLA monitor run states."""
    STOPPED = "Stopped"
    RUNNING = "Running"


# ========== Lists for validation ==========

VALID_PRIORITIES = [p.value for p in Priority]
VALID_STATUSES = [s.value for s in TicketStatus]
TERMINAL_STATUSES = frozenset({TicketStatus.CLOSED, TicketStatus.CANCELLED})
ACTIVE_STATUSES = [
    TicketStatus.OPEN, TicketStatus.IN_PROGRESS,
    TicketStatus.WAITING_FOR_CLIENT, TicketStatus.WAITING_FOR_THIRD_PARTY
]
