"""
SLA Controllers (API Routes)
=============================

FastAPI routes for SLA monitoring endpoints.

Controllers are thin - they delegate to SLAMonitor.
"""

from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Body, Depends, Query, Response

from helpdesk_engine.config import Priority
from helpdesk_engine.core import AuthorizationException
from helpdesk_engine.shared.api.dependencies import get_actor, get_sla_monitor, mark_degraded
from helpdesk_engine.shared.domain import Actor
from helpdesk_engine.shared.infrastructure.logging import get_logger
from helpdesk_engine.sla.application import (
    DueDateResponse,
    MonitorStartRequest,
    MonitorStatusResponse,
    RescheduleRequest,
    SLAMonitor,
    SLAStatisticsResponse,
    SLAWindowResponse,
    SweepOutcomeResponse,
)

logger = get_logger(__name__)
router = APIRouter(prefix="/sla", tags=["SLA Monitoring"])


def _require_staff(actor: Actor, action: str) -> None:
    if not actor.is_staff:
        raise AuthorizationException(f"Only admins and agents may {action}", {"actor_id": actor.user_id})


# ========== Monitor ==========

@router.post(
    "/monitor/start",
    response_model=MonitorStatusResponse,
    summary="Start the SLA monitor",
    description="Starts periodic sweeps. Starting a running monitor is a no-op."
)
async def start_monitor(
    request: Optional[MonitorStartRequest] = Body(None),
    actor: Actor = Depends(get_actor),
    monitor: SLAMonitor = Depends(get_sla_monitor),
):
    _require_staff(actor, "control the SLA monitor")
    request = request or MonitorStartRequest()
    status = await monitor.start(request.interval_seconds, run_immediately=request.run_immediately)
    logger.info("SLA monitor start requested", extra={"actor_id": actor.user_id})
    return MonitorStatusResponse.from_entity(status)


@router.post(
    "/monitor/stop",
    response_model=MonitorStatusResponse,
    summary="Stop the SLA monitor",
    description="Waits for a sweep in flight to finish. Stopping a stopped monitor is a no-op."
)
async def stop_monitor(
    actor: Actor = Depends(get_actor),
    monitor: SLAMonitor = Depends(get_sla_monitor),
):
    _require_staff(actor, "control the SLA monitor")
    status = await monitor.stop()
    logger.info("SLA monitor stop requested", extra={"actor_id": actor.user_id})
    return MonitorStatusResponse.from_entity(status)


@router.get(
    "/monitor/status",
    response_model=MonitorStatusResponse,
    summary="SLA monitor run state"
)
async def monitor_status(monitor: SLAMonitor = Depends(get_sla_monitor)):
    return MonitorStatusResponse.from_entity(monitor.status())


@router.post(
    "/monitor/force-check",
    response_model=SweepOutcomeResponse,
    summary="Run one sweep now",
    description="Works whether or not the monitor is running; waits for a sweep in flight."
)
async def force_check(
    actor: Actor = Depends(get_actor),
    monitor: SLAMonitor = Depends(get_sla_monitor),
):
    _require_staff(actor, "force an SLA sweep")
    outcome = await monitor.force_check()
    return SweepOutcomeResponse.from_entity(outcome)


# ========== Tickets ==========

@router.post(
    "/tickets/{ticket_id}/check",
    response_model=SLAWindowResponse,
    summary="Evaluate one ticket now"
)
async def check_ticket(
    ticket_id: int,
    actor: Actor = Depends(get_actor),
    monitor: SLAMonitor = Depends(get_sla_monitor),
):
    _require_staff(actor, "check a ticket's SLA")
    window = await monitor.check_ticket(ticket_id)
    return SLAWindowResponse.from_entity(window)


@router.post(
    "/tickets/{ticket_id}/reschedule",
    response_model=SLAWindowResponse,
    summary="Push a ticket's due date forward",
    description="""
    Sets a later due date and re-evaluates the SLA state, clearing a breach.

    Without a body the window restarts from now. Returns 422 when the new
    date is not later than the current one.
    """
)
async def reschedule_ticket(
    ticket_id: int,
    request: Optional[RescheduleRequest] = Body(None),
    actor: Actor = Depends(get_actor),
    monitor: SLAMonitor = Depends(get_sla_monitor),
):
    due_date = request.due_date if request else None
    window = await monitor.reschedule(ticket_id, actor, due_date=due_date)
    return SLAWindowResponse.from_entity(window)


# ========== Reporting ==========

@router.get(
    "/statistics",
    response_model=SLAStatisticsResponse,
    summary="Open tickets per SLA state",
    description="May be served from cache when the store is unreachable (`degraded: true`)."
)
async def sla_statistics(
    response: Response,
    monitor: SLAMonitor = Depends(get_sla_monitor),
):
    result = await monitor.statistics()
    degraded = mark_degraded(response, result)
    return SLAStatisticsResponse.from_entity(result.value, degraded=degraded)


@router.get(
    "/due-date",
    response_model=DueDateResponse,
    summary="Compute a due date",
    description="Creation time plus the resolution window of the priority. Defaults to now."
)
async def compute_due_date(
    priority: Priority = Query(..., description="Ticket priority"),
    created_at: Optional[datetime] = Query(None, description="Creation time (ISO 8601)"),
    monitor: SLAMonitor = Depends(get_sla_monitor),
):
    created_at = created_at or datetime.now(timezone.utc)
    if created_at.tzinfo is None:
        created_at = created_at.replace(tzinfo=timezone.utc)
    return DueDateResponse(
        priority=priority,
        created_at=created_at,
        due_date=monitor.compute_due_date(priority, created_at),
        window_minutes=monitor.config.window_minutes(priority),
    )
