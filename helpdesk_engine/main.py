"""
Helpdesk Engine - Main Application
==================================

Ticket lifecycle, agent assignment and SLA monitoring service.

Modules:
- Tickets: status lifecycle with role-based transitions and history
- Assignment: offer a ticket to several agents, first acceptance wins
- SLA Monitoring: due dates, periodic sweeps, breach and backlog alerts

Clean Architecture Layers:
- Interfaces: FastAPI controllers
- Application: Services and DTOs
- Domain: Entities and value objects
- Infrastructure: Database, scheduler, config watcher, notification sinks
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import SQLAlchemyError

from helpdesk_engine.assignment.interfaces import assignment_router
from helpdesk_engine.config import Settings, get_settings
from helpdesk_engine.container import EngineContainer, build_container
from helpdesk_engine.infrastructure.database import close_database, create_tables, init_database
from helpdesk_engine.infrastructure.database import get_session_factory
from helpdesk_engine.shared.api.middleware import (
    CorrelationIDMiddleware,
    LoggingMiddleware,
    register_exception_handlers,
)
from helpdesk_engine.shared.infrastructure.logging import get_logger, setup_logging
from helpdesk_engine.sla.infrastructure import SLAConfigManager
from helpdesk_engine.sla.interfaces import sla_router
from helpdesk_engine.tickets.interfaces import tickets_router

logger = get_logger(__name__)


def _lifespan(settings: Settings, injected: Optional[EngineContainer]):
    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator:
        """
        Application lifespan manager.

        STARTUP:
        1. Setup structured logging
        2. Initialize database and create tables
        3. Load SLA configuration and watch the file
        4. Wire the services
        5. Start the SLA monitor if SLA_MONITOR_AUTOSTART is set

        SHUTDOWN:
        1. Stop the SLA monitor and close the notification sink
        2. Stop the config watcher
        3. Close database connections
        """
        if injected is not None:
            app.state.container = injected
            yield
            return

        # === STARTUP ===
        setup_logging(settings.log_level, settings.environment)
        logger.info("Starting Helpdesk Engine", extra={
            "version": settings.app_version,
            "environment": settings.environment
        })

        engine = init_database(settings)

        # Tables for development - use migrations in production
        try:
            await create_tables(engine)
        except (SQLAlchemyError, OSError) as e:
            logger.warning("Database not available - endpoints will report storage errors",
                           extra={"error": str(e)})

        config_manager = SLAConfigManager()
        config_manager.load(settings.sla_config_path)
        config_manager.start_watching()

        container = build_container(settings, get_session_factory(), config_manager)
        app.state.container = container

        if settings.sla_monitor_autostart:
            await container.sla_monitor.start()
        else:
            logger.info("SLA monitor is Stopped; start it via POST /sla/monitor/start")

        logger.info("Helpdesk Engine started successfully")

        yield  # Application runs here

        # === SHUTDOWN ===
        logger.info("Shutting down Helpdesk Engine")
        await container.close()
        config_manager.stop_watching()
        await close_database()
        logger.info("Helpdesk Engine shutdown complete")

    return lifespan


def create_app(
    container: Optional[EngineContainer] = None,
    settings: Optional[Settings] = None,
) -> FastAPI:
    """
    Build the FastAPI application.

    Passing a container skips all infrastructure setup in the lifespan.
    """
    settings = settings or (container.settings if container else get_settings())

    app = FastAPI(
        title="Helpdesk Engine API",
        description="""
        ## Helpdesk ticket engine

        - **Tickets**: read tickets and their history, move them through the lifecycle
        - **Assignment**: offer tickets to agents; the first acceptance wins
        - **SLA**: due dates, periodic sweeps, statistics and reschedules

        Callers identify themselves with `X-Actor-Id` and `X-Actor-Role`
        (`Admin`, `Agent` or `Client`) set by the upstream gateway.
        """,
        version=settings.app_version,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=_lifespan(settings, container),
    )
    if container is not None:
        app.state.container = container

    # === CORS Middleware ===
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Added last runs first: correlation id must be set before logging reads it
    app.add_middleware(LoggingMiddleware)
    app.add_middleware(CorrelationIDMiddleware)
    register_exception_handlers(app)

    # === Include Module Routers ===
    app.include_router(tickets_router)
    app.include_router(assignment_router)
    app.include_router(sla_router)

    @app.get("/health", tags=["Health"])
    async def health_check(request: Request):
        """
        Health check endpoint for load balancers and orchestrators.

        Reports the SLA monitor state; an aborted last sweep marks the
        service degraded.
        """
        engine_container: Optional[EngineContainer] = getattr(request.app.state, "container", None)
        if engine_container is None:
            return {"status": "starting", "version": settings.app_version}

        monitor_status = engine_container.sla_monitor.status()
        last = monitor_status.last_outcome
        return {
            "status": "degraded" if last is not None and last.aborted else "healthy",
            "version": settings.app_version,
            "environment": settings.environment,
            "checks": {
                "sla_monitor": monitor_status.state.value,
                "last_sweep_finished_at": (
                    monitor_status.last_sweep_finished_at.isoformat()
                    if monitor_status.last_sweep_finished_at else None
                ),
                "notification_sink": type(engine_container.sink).__name__,
            }
        }

    return app


app = create_app()


# === Development Entry Point ===

if __name__ == "__main__":
    import uvicorn

    _settings = get_settings()
    uvicorn.run(
        "helpdesk_engine.main:app",
        host=_settings.host,
        port=_settings.port,
        reload=_settings.environment == "development",
        log_level="info"
    )
