"""Shared fixtures: fakes for service tests, in-memory SQLite for repository tests."""

import sys
from pathlib import Path

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from helpdesk_engine.assignment.application import AssignmentCoordinator  # noqa: E402
from helpdesk_engine.infrastructure.database import build_session_factory, create_tables  # noqa: E402
from helpdesk_engine.sla.application import SLAMonitor, StaticSLAConfigProvider  # noqa: E402
from helpdesk_engine.sla.domain import SLAConfig  # noqa: E402
from helpdesk_engine.tickets.application import TicketService  # noqa: E402
from tests.fakes import (  # noqa: E402
    FakeScheduler,
    FrozenClock,
    InMemoryAssignmentRepository,
    InMemoryTicketRepository,
    RecordingSink,
    make_store,
)


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def scheduler():
    return FakeScheduler()


@pytest.fixture
def store():
    return make_store()


@pytest.fixture
def ticket_repo():
    return InMemoryTicketRepository()


@pytest.fixture
def assignment_repo(ticket_repo):
    return InMemoryAssignmentRepository(ticket_repo)


@pytest.fixture
def sla_config():
    return SLAConfig()


@pytest.fixture
def ticket_service(ticket_repo, store, clock):
    return TicketService(ticket_repo, store, operation_deadline=5.0, clock=clock)


@pytest.fixture
def coordinator(assignment_repo, ticket_service, store, sink, clock):
    return AssignmentCoordinator(
        assignment_repo, ticket_service, store, sink,
        max_active_tickets=3, operation_deadline=5.0, clock=clock,
    )


@pytest.fixture
def monitor(ticket_repo, store, sla_config, sink, scheduler, clock):
    return SLAMonitor(
        ticket_repo, store, StaticSLAConfigProvider(sla_config), sink, scheduler,
        default_interval_seconds=60, clock=clock,
    )


# ========== SQLite ==========

@pytest_asyncio.fixture
async def db_engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    await create_tables(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return build_session_factory(db_engine)
