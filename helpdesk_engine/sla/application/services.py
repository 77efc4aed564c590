"""
SLA Application Services
========================

SLAMonitor keeps the SLA state of every open ticket materialised on the
ticket row and emits intents when a ticket enters AtRisk or Breached.

Following SOLID principles:
- Single Responsibility: calculations live in SLACalculator, scheduling in
  an ISweepScheduler, persistence behind ITicketRepository
- Dependency Inversion: depend on abstractions, not concrete implementations
"""

import asyncio
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import Awaitable, Callable, List, Optional

from helpdesk_engine.config import MonitorState, Priority, SLAState
from helpdesk_engine.core import (
    AuthorizationException,
    ConflictException,
    ResourceNotFoundException,
    StorageUnavailableException,
    ValidationException,
)
from helpdesk_engine.shared.domain import (
    Actor,
    INotificationSink,
    NotificationIntent,
    NotificationKind,
    emit_safely,
)
from helpdesk_engine.shared.infrastructure.cache import make_cache_key
from helpdesk_engine.shared.infrastructure.logging import get_logger, log_latency
from helpdesk_engine.shared.infrastructure.resilience import ResilientStore, StoreResult
from helpdesk_engine.sla.domain import (
    AlertLedger,
    MonitorStatus,
    SLACalculator,
    SLAConfig,
    SLAStatistics,
    SLAWindow,
    SweepOutcome,
)
from helpdesk_engine.tickets.application import ITicketRepository, utcnow
from helpdesk_engine.tickets.domain import Ticket

logger = get_logger(__name__)

STATISTICS_CACHE_KEY = make_cache_key("sla:statistics")

_INTENT_FOR_STATE = {
    SLAState.AT_RISK: NotificationKind.SLA_AT_RISK,
    SLAState.BREACHED: NotificationKind.SLA_BREACHED,
}


# ========== Ports ==========

class ISLAConfigProvider(ABC):
    """Interface for SLA configuration access."""

    @abstractmethod
    def get_config(self) -> SLAConfig:
        """Get current SLA configuration."""


class StaticSLAConfigProvider(ISLAConfigProvider):
    """Fixed policy, for tests and for deployments without a YAML file."""

    def __init__(self, config: Optional[SLAConfig] = None):
        self._config = config or SLAConfig()

    def get_config(self) -> SLAConfig:
        return self._config


class ISweepScheduler(ABC):
    """Runs a coroutine function periodically, never overlapping itself."""

    @abstractmethod
    def start(
        self,
        job: Callable[[], Awaitable[None]],
        interval_seconds: int,
        run_immediately: bool = True,
    ) -> None:
        """Begin running job every interval_seconds."""

    @abstractmethod
    async def stop(self) -> None:
        """Stop scheduling new runs."""

    @property
    @abstractmethod
    def is_running(self) -> bool:
        """Whether jobs are being scheduled."""


# ========== Application Services ==========

class SLAMonitor:
    """
    Background SLA evaluation over all open tickets.

    Monitor states: Stopped -> Running -> Stopped. A process always starts
    Stopped; the operator (or SLA_MONITOR_AUTOSTART) starts it.

    Sweeps never overlap: a scheduled sweep that finds one in flight is
    skipped, an on-demand sweep waits for it.
    """

    def __init__(
        self,
        repository: ITicketRepository,
        store: ResilientStore,
        config_provider: ISLAConfigProvider,
        sink: INotificationSink,
        scheduler: ISweepScheduler,
        *,
        default_interval_seconds: int = 1800,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._repo = repository
        self._store = store
        self._config_provider = config_provider
        self._sink = sink
        self._scheduler = scheduler
        self._default_interval = default_interval_seconds
        self._clock = clock

        self._sweep_lock = asyncio.Lock()
        self._state = MonitorState.STOPPED
        self._interval: Optional[int] = None
        self._last_started: Optional[datetime] = None
        self._last_finished: Optional[datetime] = None
        self._last_outcome: Optional[SweepOutcome] = None
        self._ledger = AlertLedger()

    # ---------- run state ----------

    @property
    def config(self) -> SLAConfig:
        return self._config_provider.get_config()

    def status(self) -> MonitorStatus:
        return MonitorStatus(
            state=self._state,
            interval_seconds=self._interval,
            last_sweep_started_at=self._last_started,
            last_sweep_finished_at=self._last_finished,
            last_outcome=self._last_outcome,
            sweep_in_progress=self._sweep_lock.locked(),
        )

    async def start(self, interval_seconds: Optional[int] = None, run_immediately: bool = True) -> MonitorStatus:
        """Start periodic sweeps. Starting a running monitor changes nothing."""
        if self._state == MonitorState.RUNNING:
            logger.info("SLA monitor already running", extra={"interval_seconds": self._interval})
            return self.status()

        interval = interval_seconds or self._default_interval
        if interval <= 0:
            raise ValidationException("interval_seconds must be positive", {"interval_seconds": interval})

        self._scheduler.start(self._scheduled_sweep, interval, run_immediately=run_immediately)
        self._state = MonitorState.RUNNING
        self._interval = interval

        logger.info("SLA monitor started", extra={"interval_seconds": interval})
        return self.status()

    async def stop(self) -> MonitorStatus:
        """Stop periodic sweeps, waiting for one in flight to finish."""
        if self._state == MonitorState.STOPPED:
            return self.status()

        await self._scheduler.stop()
        async with self._sweep_lock:
            self._state = MonitorState.STOPPED
            self._interval = None

        logger.info("SLA monitor stopped")
        return self.status()

    # ---------- calculations ----------

    def compute_due_date(self, priority: Priority, created_at: datetime) -> datetime:
        """Pure: creation time plus the priority's resolution window."""
        return SLACalculator.compute_due_date(priority, created_at, self.config)

    def evaluate(self, ticket: Ticket, now: datetime, config: Optional[SLAConfig] = None) -> SLAWindow:
        """SLA view of a ticket at now, with breach kept monotonic."""
        config = config or self.config
        due = ticket.due_date or SLACalculator.compute_due_date(ticket.priority, ticket.created_at, config)
        fresh = SLACalculator.evaluate(
            due, now, config.window(ticket.priority), config.warning_threshold_percent
        )
        return SLAWindow(
            ticket_id=ticket.id,
            priority=ticket.priority,
            due_date=due,
            state=SLACalculator.escalate(ticket.sla_state, fresh),
            checked_at=now,
            remaining_seconds=SLACalculator.remaining_seconds(due, now),
        )

    # ---------- sweeps ----------

    async def _scheduled_sweep(self) -> None:
        if self._sweep_lock.locked():
            logger.warning("SLA sweep still in progress, skipping scheduled run")
            return
        await self.sweep_once()

    async def force_check(self) -> SweepOutcome:
        """Run a sweep now, after any sweep in flight."""
        return await self.sweep_once()

    async def sweep_once(self) -> SweepOutcome:
        """
        One pass over every open ticket.

        Storage exhaustion aborts the pass (the monitor keeps running);
        any other per-ticket error is logged and counted as failed.
        """
        async with self._sweep_lock:
            now = self._clock()
            outcome = SweepOutcome(started_at=now)
            self._last_started = now

            with log_latency(logger, "sla_sweep"):
                await self._sweep(now, outcome)

            outcome.finished_at = self._clock()
            self._last_finished = outcome.finished_at
            self._last_outcome = outcome

            self._store.forget(STATISTICS_CACHE_KEY)
            logger.info("SLA sweep finished", extra=outcome.to_dict())
            return outcome

    async def _sweep(self, now: datetime, outcome: SweepOutcome) -> None:
        config = self.config

        try:
            tickets = (await self._store.read(
                self._repo.list_open, name="sla.list_open", authoritative=True
            )).value
        except StorageUnavailableException as e:
            self._abort(outcome, e)
            return

        for ticket in tickets:
            outcome.checked += 1
            try:
                await self._process(ticket, now, config, outcome)
            except StorageUnavailableException as e:
                self._abort(outcome, e, ticket_id=ticket.id)
                return
            except Exception as e:
                outcome.failed += 1
                logger.error(
                    "SLA check failed for ticket",
                    extra={"ticket_id": ticket.id, "error": str(e), "error_type": type(e).__name__}
                )

        try:
            await self._sweep_alerts(tickets, now, config, outcome)
        except StorageUnavailableException as e:
            self._abort(outcome, e)

    def _abort(self, outcome: SweepOutcome, error: StorageUnavailableException, ticket_id: Optional[int] = None) -> None:
        outcome.aborted = True
        outcome.error = error.message
        logger.error(
            "SLA sweep aborted: storage unavailable",
            extra={"ticket_id": ticket_id, "error": error.message, "attempts": error.attempts}
        )

    async def _process(self, ticket: Ticket, now: datetime, config: SLAConfig, outcome: SweepOutcome) -> SLAWindow:
        window = self.evaluate(ticket, now, config)

        if window.state == SLAState.AT_RISK:
            outcome.at_risk += 1
        elif window.state == SLAState.BREACHED:
            outcome.breached += 1

        needs_write = (
            ticket.due_date is None
            or window.state != ticket.sla_state
            or ticket.sla_priority != ticket.priority
        )
        if not needs_write:
            return window

        won = await self._store.write(
            lambda: self._repo.update_sla(
                ticket.id, ticket.sla_version,
                due_date=window.due_date,
                sla_state=window.state,
                sla_priority=ticket.priority,
                checked_at=now,
            ),
            name="sla.update",
        )
        if not won:
            outcome.conflicts += 1
            logger.info("SLA update lost to a concurrent writer", extra={"ticket_id": ticket.id})
            return window

        outcome.updated += 1
        entered = SLACalculator.entered(ticket.sla_state, window.state)
        if entered is not None:
            if await emit_safely(self._sink, self._sla_intent(ticket, window, entered)):
                outcome.notified += 1
        return window

    @staticmethod
    def _sla_intent(ticket: Ticket, window: SLAWindow, state: SLAState) -> NotificationIntent:
        return NotificationIntent(
            kind=_INTENT_FOR_STATE[state],
            ticket_id=ticket.id,
            agent_id=ticket.assigned_to,
            client_id=ticket.client_id,
            payload={
                "ticket_number": ticket.ticket_number,
                "priority": ticket.priority.value,
                "due_date": window.due_date.isoformat(),
                "remaining_seconds": window.remaining_seconds,
            },
        )

    async def _sweep_alerts(
        self,
        tickets: List[Ticket],
        now: datetime,
        config: SLAConfig,
        outcome: SweepOutcome,
    ) -> None:
        # Unassigned backlog: one intent per ticket per process
        cutoff = now - timedelta(hours=config.unassigned_alert_hours)
        unassigned = {t.id: t for t in tickets if t.assigned_to is None and t.created_at < cutoff}
        self._ledger.unassigned_ticket_ids &= set(unassigned)

        for ticket_id, ticket in unassigned.items():
            if ticket_id in self._ledger.unassigned_ticket_ids:
                continue
            if await emit_safely(self._sink, NotificationIntent(
                kind=NotificationKind.UNASSIGNED_BACKLOG,
                ticket_id=ticket_id,
                client_id=ticket.client_id,
                payload={
                    "ticket_number": ticket.ticket_number,
                    "unassigned_hours": round((now - ticket.created_at).total_seconds() / 3600, 1),
                },
            )):
                self._ledger.unassigned_ticket_ids.add(ticket_id)
                outcome.notified += 1

        # High volume: at most one intent per window
        window = timedelta(minutes=config.high_volume.window_minutes)
        last = self._ledger.last_high_volume_at
        if last is not None and now - last < window:
            return

        created = (await self._store.read(
            lambda: self._repo.count_created_since(now - window),
            name="sla.count_created_since",
            authoritative=True,
        )).value
        if created >= config.high_volume.threshold:
            if await emit_safely(self._sink, NotificationIntent(
                kind=NotificationKind.HIGH_VOLUME,
                payload={
                    "created": created,
                    "window_minutes": config.high_volume.window_minutes,
                    "threshold": config.high_volume.threshold,
                },
            )):
                self._ledger.last_high_volume_at = now
                outcome.notified += 1

    # ---------- on demand ----------

    async def check_ticket(self, ticket_id: int) -> SLAWindow:
        """
        Evaluate a single ticket now.

        Active tickets are persisted and may emit like a sweep would;
        finished tickets are only evaluated.

        Raises:
            ResourceNotFoundException: unknown ticket
        """
        ticket = await self._load(ticket_id)
        now = self._clock()
        if not ticket.is_active:
            return self.evaluate(ticket, now)

        outcome = SweepOutcome(started_at=now)
        window = await self._process(ticket, now, self.config, outcome)
        self._store.forget(STATISTICS_CACHE_KEY)
        return window

    async def statistics(self) -> StoreResult[SLAStatistics]:
        """Counts of open tickets per SLA state; cache-tolerant."""
        result = await self._store.read(
            self._repo.list_open,
            name="sla.list_open",
            cache_key=STATISTICS_CACHE_KEY,
            default=[],
        )
        now = self._clock()
        config = self.config
        counts = {SLAState.ON_TRACK: 0, SLAState.AT_RISK: 0, SLAState.BREACHED: 0}
        for ticket in result.value:
            counts[self.evaluate(ticket, now, config).state] += 1

        stats = SLAStatistics(
            total=len(result.value),
            on_track=counts[SLAState.ON_TRACK],
            at_risk=counts[SLAState.AT_RISK],
            breached=counts[SLAState.BREACHED],
            computed_at=now,
        )
        return StoreResult(
            value=stats,
            source=result.source,
            attempts=result.attempts,
            age_seconds=result.age_seconds,
        )

    async def reschedule(self, ticket_id: int, actor: Actor, due_date: Optional[datetime] = None) -> SLAWindow:
        """
        Push a ticket's due date forward and reset its breach state.

        Without an explicit date the clock restarts: now plus the window of
        the ticket's current priority.

        Raises:
            AuthorizationException: actor is not staff
            ResourceNotFoundException: unknown ticket
            ValidationException: ticket finished, or the date does not move forward
            ConflictException: a concurrent SLA write got there first
        """
        if not actor.is_staff:
            raise AuthorizationException(
                "Only admins and agents may reschedule a ticket",
                {"ticket_id": ticket_id, "actor_id": actor.user_id}
            )

        ticket = await self._load(ticket_id)
        if not ticket.is_active:
            raise ValidationException(
                f"Ticket {ticket_id} is {ticket.status.value} and cannot be rescheduled",
                {"ticket_id": ticket_id, "status": ticket.status.value}
            )

        now = self._clock()
        config = self.config
        new_due = due_date or now + config.window(ticket.priority)
        current_due = ticket.due_date or SLACalculator.compute_due_date(ticket.priority, ticket.created_at, config)
        if new_due <= current_due:
            raise ValidationException(
                "Due date can only move forward",
                {"ticket_id": ticket_id, "current_due_date": current_due.isoformat(), "requested": new_due.isoformat()}
            )

        state = SLACalculator.evaluate(
            new_due, now, config.window(ticket.priority), config.warning_threshold_percent
        )
        won = await self._store.write(
            lambda: self._repo.update_sla(
                ticket.id, ticket.sla_version,
                due_date=new_due,
                sla_state=state,
                sla_priority=ticket.priority,
                checked_at=now,
            ),
            name="sla.reschedule",
        )
        if not won:
            raise ConflictException(
                f"SLA of ticket {ticket_id} was updated concurrently",
                {"ticket_id": ticket_id}
            )

        self._store.forget(STATISTICS_CACHE_KEY)
        logger.info(
            "Ticket rescheduled",
            extra={
                "ticket_id": ticket_id,
                "actor_id": actor.user_id,
                "previous_due_date": current_due.isoformat(),
                "due_date": new_due.isoformat(),
                "sla_state": state.value,
            }
        )
        return SLAWindow(
            ticket_id=ticket.id,
            priority=ticket.priority,
            due_date=new_due,
            state=state,
            checked_at=now,
            remaining_seconds=SLACalculator.remaining_seconds(new_due, now),
        )

    async def _load(self, ticket_id: int) -> Ticket:
        result = await self._store.read(
            lambda: self._repo.get_by_id(ticket_id),
            name="tickets.get",
            authoritative=True,
        )
        if result.value is None:
            raise ResourceNotFoundException("Ticket", ticket_id)
        return result.value
