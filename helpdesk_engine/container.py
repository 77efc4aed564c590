"""
Service Container
=================

Builds the engine's services once and hands them to the API layer via
app.state. Tests build their own container with fakes.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy.ext.asyncio import async_sessionmaker

from helpdesk_engine.assignment.application import AssignmentCoordinator
from helpdesk_engine.assignment.infrastructure import SQLAlchemyAssignmentRepository
from helpdesk_engine.config import Settings
from helpdesk_engine.shared.domain import INotificationSink
from helpdesk_engine.shared.infrastructure.logging import get_logger
from helpdesk_engine.shared.infrastructure.notifications import (
    LoggingNotificationSink,
    WebhookNotificationSink,
)
from helpdesk_engine.shared.infrastructure.resilience import ResilientStore
from helpdesk_engine.sla.application import ISLAConfigProvider, ISweepScheduler, SLAMonitor
from helpdesk_engine.sla.infrastructure import SweepScheduler
from helpdesk_engine.tickets.application import TicketService, utcnow
from helpdesk_engine.tickets.infrastructure import SQLAlchemyTicketRepository

logger = get_logger(__name__)


@dataclass
class EngineContainer:
    """The wired services of one engine instance."""
    settings: Settings
    store: ResilientStore
    sink: INotificationSink
    ticket_service: TicketService
    assignment_coordinator: AssignmentCoordinator
    sla_monitor: SLAMonitor
    config_provider: ISLAConfigProvider

    async def close(self) -> None:
        """Stop background work and release outbound clients."""
        await self.sla_monitor.stop()
        close = getattr(self.sink, "close", None)
        if close is not None:
            await close()


def build_sink(settings: Settings) -> INotificationSink:
    """Webhook sink when a delivery endpoint is configured, logging sink otherwise."""
    if settings.notification_webhook_url:
        logger.info("Notification intents go to webhook", extra={"url": settings.notification_webhook_url})
        return WebhookNotificationSink(
            settings.notification_webhook_url,
            timeout_seconds=settings.notification_timeout_seconds,
            delivery_deadline_seconds=settings.notification_delivery_deadline_seconds,
        )
    logger.info("No notification webhook configured, logging intents only")
    return LoggingNotificationSink()


def build_container(
    settings: Settings,
    session_factory: async_sessionmaker,
    config_provider: ISLAConfigProvider,
    *,
    sink: Optional[INotificationSink] = None,
    scheduler: Optional[ISweepScheduler] = None,
    store: Optional[ResilientStore] = None,
    clock: Callable[[], datetime] = utcnow,
) -> EngineContainer:
    """Wire repositories, store and services over one session factory."""
    store = store or ResilientStore.from_settings(settings)
    sink = sink or build_sink(settings)
    deadline = settings.client_operation_deadline_seconds

    ticket_repo = SQLAlchemyTicketRepository(session_factory)
    sla_monitor = SLAMonitor(
        ticket_repo,
        store,
        config_provider,
        sink,
        scheduler or SweepScheduler(),
        default_interval_seconds=settings.sla_sweep_interval_seconds,
        clock=clock,
    )
    ticket_service = TicketService(
        ticket_repo,
        store,
        operation_deadline=deadline,
        due_date_policy=sla_monitor.compute_due_date,
        clock=clock,
    )
    coordinator = AssignmentCoordinator(
        SQLAlchemyAssignmentRepository(session_factory),
        ticket_service,
        store,
        sink,
        max_active_tickets=settings.agent_max_active_tickets,
        operation_deadline=deadline,
        clock=clock,
    )

    return EngineContainer(
        settings=settings,
        store=store,
        sink=sink,
        ticket_service=ticket_service,
        assignment_coordinator=coordinator,
        sla_monitor=sla_monitor,
        config_provider=config_provider,
    )
