"""HTTP tests: the FastAPI app over SQLite with a recording sink and a manual scheduler."""

from types import SimpleNamespace

import httpx
import pytest
import pytest_asyncio

from helpdesk_engine.config import Priority, Settings
from helpdesk_engine.container import build_container
from helpdesk_engine.main import create_app
from helpdesk_engine.shared.domain import NotificationKind
from helpdesk_engine.sla.application import StaticSLAConfigProvider
from helpdesk_engine.tickets.application import TicketCreateDTO
from tests.fakes import FakeScheduler, FrozenClock, RecordingSink, make_store

ADMIN = {"X-Actor-Id": "1", "X-Actor-Role": "Admin"}
CLIENT = {"X-Actor-Id": "500", "X-Actor-Role": "Client"}


def agent(user_id):
    return {"X-Actor-Id": str(user_id), "X-Actor-Role": "Agent"}


@pytest_asyncio.fixture
async def api(session_factory):
    sink = RecordingSink()
    scheduler = FakeScheduler()
    clock = FrozenClock()
    container = build_container(
        Settings(_env_file=None),
        session_factory,
        StaticSLAConfigProvider(),
        sink=sink,
        scheduler=scheduler,
        store=make_store(),
        clock=clock,
    )
    app = create_app(container=container)
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as client:
        yield SimpleNamespace(client=client, container=container, sink=sink, scheduler=scheduler, clock=clock)


async def create_ticket(api, priority=Priority.CRITICAL):
    return await api.container.ticket_service.create_ticket(TicketCreateDTO(
        title="Payroll export fails", description="Export job exits with code 2",
        priority=priority, client_id=500,
    ))


class TestTicketEndpoints:

    @pytest.mark.asyncio
    async def test_get_ticket(self, api):
        ticket = await create_ticket(api)

        response = await api.client.get(f"/tickets/{ticket.id}")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "Open"
        assert body["priority"] == "Critical"
        assert body["due_date"] is not None
        assert body["degraded"] is False
        assert "X-Correlation-ID" in response.headers

    @pytest.mark.asyncio
    async def test_unknown_ticket_is_404(self, api):
        response = await api.client.get("/tickets/999", headers={"X-Correlation-ID": "abc-123"})

        assert response.status_code == 404
        assert response.json()["code"] == "not_found"
        assert response.json()["correlation_id"] == "abc-123"

    @pytest.mark.asyncio
    async def test_transition_requires_identity(self, api):
        ticket = await create_ticket(api)

        response = await api.client.post(f"/tickets/{ticket.id}/transitions", json={"status": "InProgress"})

        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_agent_takes_ticket_and_history_is_kept(self, api):
        ticket = await create_ticket(api)

        response = await api.client.post(
            f"/tickets/{ticket.id}/transitions", json={"status": "InProgress"}, headers=agent(7),
        )
        history = await api.client.get(f"/tickets/{ticket.id}/history")

        assert response.status_code == 200
        assert response.json()["assigned_to"] == 7
        assert [e["field"] for e in history.json()["entries"]] == ["status", "assigned_to"]

    @pytest.mark.asyncio
    async def test_illegal_move_lists_allowed_states(self, api):
        ticket = await create_ticket(api)

        response = await api.client.post(
            f"/tickets/{ticket.id}/transitions", json={"status": "Resolved"}, headers=agent(7),
        )

        assert response.status_code == 409
        body = response.json()
        assert body["code"] == "invalid_transition"
        assert body["details"]["allowed_next"] == ["Cancelled", "InProgress"]

    @pytest.mark.asyncio
    async def test_other_clients_ticket_is_forbidden(self, api):
        ticket = await create_ticket(api)

        response = await api.client.post(
            f"/tickets/{ticket.id}/transitions", json={"status": "Cancelled"},
            headers={"X-Actor-Id": "501", "X-Actor-Role": "Client"},
        )

        assert response.status_code == 403
        assert response.json()["code"] == "forbidden"


class TestAssignmentEndpoints:

    async def offer(self, api, ticket_id, agent_ids):
        response = await api.client.post(
            f"/tickets/{ticket_id}/assignment-requests", json={"agent_ids": agent_ids}, headers=ADMIN,
        )
        assert response.status_code == 201
        return {r["agent_id"]: r["id"] for r in response.json()["requests"]}

    @pytest.mark.asyncio
    async def test_first_acceptance_wins(self, api):
        ticket = await create_ticket(api)
        requests = await self.offer(api, ticket.id, [10, 20])

        pending = await api.client.get("/agent/pending-requests", headers=agent(10))
        won = await api.client.put(f"/assignment-requests/{requests[20]}/accept", headers=agent(20))
        lost = await api.client.put(f"/assignment-requests/{requests[10]}/accept", headers=agent(10))

        assert pending.json()["count"] == 1
        assert won.status_code == 200
        assert won.json()["ticket"]["assigned_to"] == 20
        assert won.json()["cancelled_request_ids"] == [requests[10]]
        assert lost.status_code == 409
        assert lost.json()["code"] == "already_taken"
        assert len(api.sink.of_kind(NotificationKind.ASSIGNMENT_ACCEPTED)) == 1

    @pytest.mark.asyncio
    async def test_empty_candidate_list(self, api):
        ticket = await create_ticket(api)

        response = await api.client.post(
            f"/tickets/{ticket.id}/assignment-requests", json={"agent_ids": []}, headers=ADMIN,
        )

        assert response.status_code == 422
        assert response.json()["code"] == "no_eligible_agents"

    @pytest.mark.asyncio
    async def test_clients_cannot_route_tickets(self, api):
        ticket = await create_ticket(api)

        response = await api.client.post(
            f"/tickets/{ticket.id}/assignment-requests", json={"agent_ids": [10]}, headers=CLIENT,
        )

        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_last_rejection_marks_unassignable(self, api):
        ticket = await create_ticket(api)
        requests = await self.offer(api, ticket.id, [10])

        response = await api.client.put(
            f"/assignment-requests/{requests[10]}/reject", json={"note": "out sick"}, headers=agent(10),
        )

        assert response.status_code == 200
        assert response.json()["unassignable"] is True
        assert response.json()["request"]["response_note"] == "out sick"
        assert len(api.sink.of_kind(NotificationKind.UNASSIGNABLE)) == 1

    @pytest.mark.asyncio
    async def test_routing_history(self, api):
        ticket = await create_ticket(api)
        await self.offer(api, ticket.id, [10, 20])

        response = await api.client.get(f"/tickets/{ticket.id}/assignment-requests", headers=ADMIN)

        assert response.json()["count"] == 2


class TestSLAEndpoints:

    @pytest.mark.asyncio
    async def test_monitor_start_status_stop(self, api):
        before = await api.client.get("/sla/monitor/status")
        started = await api.client.post("/sla/monitor/start", json={"interval_seconds": 120}, headers=ADMIN)
        stopped = await api.client.post("/sla/monitor/stop", headers=ADMIN)

        assert before.json()["state"] == "Stopped"
        assert started.json()["state"] == "Running"
        assert started.json()["interval_seconds"] == 120
        assert api.scheduler.interval == 120
        assert stopped.json()["state"] == "Stopped"

    @pytest.mark.asyncio
    async def test_clients_cannot_control_monitor(self, api):
        response = await api.client.post("/sla/monitor/start", headers=CLIENT)

        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_force_check_statistics_and_reschedule(self, api):
        ticket = await create_ticket(api)
        api.clock.advance(hours=5)

        sweep = await api.client.post("/sla/monitor/force-check", headers=ADMIN)
        stats = await api.client.get("/sla/statistics")
        rescheduled = await api.client.post(f"/sla/tickets/{ticket.id}/reschedule", headers=agent(7))

        assert sweep.json()["breached"] == 1
        assert stats.json()["breached"] == 1
        assert stats.json()["percentage_on_time"] == 0.0
        assert rescheduled.status_code == 200
        assert rescheduled.json()["state"] == "OnTrack"
        assert len(api.sink.of_kind(NotificationKind.SLA_BREACHED)) == 1

    @pytest.mark.asyncio
    async def test_check_ticket(self, api):
        ticket = await create_ticket(api, priority=Priority.LOW)

        response = await api.client.post(f"/sla/tickets/{ticket.id}/check", headers=agent(7))

        assert response.status_code == 200
        assert response.json()["state"] == "OnTrack"

    @pytest.mark.asyncio
    async def test_due_date(self, api):
        response = await api.client.get(
            "/sla/due-date", params={"priority": "High", "created_at": "2024-01-15T09:00:00+00:00"},
        )

        assert response.status_code == 200
        assert response.json()["window_minutes"] == 1440
        assert response.json()["due_date"].startswith("2024-01-16T09:00:00")


class TestHealth:

    @pytest.mark.asyncio
    async def test_health_reports_monitor_state(self, api):
        response = await api.client.get("/health")

        body = response.json()
        assert body["status"] == "healthy"
        assert body["checks"]["sla_monitor"] == "Stopped"
        assert body["checks"]["notification_sink"] == "RecordingSink"
