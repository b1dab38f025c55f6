"""
Ticket Sentinel - Main Application
==================================

Inactivity timers for support ticket channels.

Modules:
- Tickets: requester reminders and staff escalation per ticket channel

Clean Architecture Layers:
- Interfaces: FastAPI controllers
- Application: Lifecycle engine, command surface, DTOs
- Domain: Entities and value objects
- Infrastructure: Database, scheduler, Discord client
"""

import sys
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse

# Configuration and Core
from ticket_sentinel.config import settings
from ticket_sentinel.core import ApplicationException, ConfigurationException, PersistenceException

# Infrastructure
from ticket_sentinel.infrastructure.database import (
    init_database, close_database, create_tables, get_session_maker, ping_database
)

# Tickets Module
from ticket_sentinel.tickets.application import TicketLifecycleService, TicketCommandService
from ticket_sentinel.tickets.infrastructure import (
    SQLAlchemyTicketStore, YAMLTimerPolicyProvider, TimerRegistry, DiscordClient
)
from ticket_sentinel.tickets.interfaces import tickets_router

# Logging
from ticket_sentinel.shared.infrastructure.logging import setup_logging, get_logger, log_latency
from ticket_sentinel.shared.api.middleware import (
    CorrelationIDMiddleware,
    LoggingMiddleware,
    application_exception_handler,
    global_exception_handler
)

logger = get_logger(__name__)

ALIVE_TEXT = "Bot is alive! 🤖"


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """
    Application lifespan manager.

    STARTUP:
    1. Setup structured logging
    2. Validate required settings
    3. Initialize database and create tables
    4. Load timer policy
    5. Start timer scheduler
    6. Recover timers for running countdowns

    SHUTDOWN:
    1. Stop timer scheduler
    2. Close Discord client
    3. Close database connections
    """
    # === STARTUP ===
    setup_logging(settings.log_level, settings.environment)
    logger.info("Starting Ticket Sentinel", extra={
        "version": settings.app_version,
        "environment": settings.environment
    })

    missing = settings.missing_required()
    if missing:
        logger.error("Missing required settings", extra={"missing": missing})
        raise ConfigurationException(
            f"Missing required settings: {', '.join(missing)}",
            {"missing": missing}
        )

    logger.info("Initializing database")
    init_database()
    await create_tables()

    store = SQLAlchemyTicketStore(
        get_session_maker(),
        timeout_seconds=settings.persistence_timeout_seconds
    )

    policy = YAMLTimerPolicyProvider.from_settings(settings).get_policy()
    messenger = DiscordClient.from_settings(settings)
    timers = TimerRegistry()

    engine = TicketLifecycleService(
        store,
        messenger,
        timers,
        policy,
        intake_bot_id=settings.ticket_tool_bot_id,
        ticket_category_id=settings.ticket_category_id,
        alert_role_ids=[settings.staff_role_id, settings.king_role_id],
        log_channel_id=settings.log_channel_id,
        persistence_retries=settings.persistence_retries,
        retry_backoff_seconds=settings.persistence_retry_backoff_seconds
    )

    # Store services in app state for dependency injection
    app.state.settings = settings
    app.state.ticket_store = store
    app.state.timer_registry = timers
    app.state.lifecycle_service = engine
    app.state.command_service = TicketCommandService(engine, messenger)
    app.state.started_at = time.monotonic()

    timers.start()

    with log_latency(logger, "timer_recovery"):
        summary = await engine.recover()
    app.state.recovery_summary = summary

    logger.info("Ticket Sentinel started successfully", extra=summary.to_dict())

    yield  # Application runs here

    # === SHUTDOWN ===
    logger.info("Shutting down Ticket Sentinel")

    timers.shutdown()
    await messenger.close()
    await close_database()

    logger.info("Ticket Sentinel shutdown complete")


# Create FastAPI application
app = FastAPI(
    title="Ticket Sentinel API",
    description="""
    ## Ticket Inactivity Timers

    Reminds silent requesters and escalates stale tickets to staff.

    ---

    ### ⏱️ Tickets Module

    **Endpoints:**
    - `POST /tickets/events/message` - Relay a ticket-channel message
    - `POST /tickets/events/channel-deleted` - Relay a channel deletion
    - `POST /tickets/commands/timer` - `/timer stop|restart|status`
    - `POST /tickets/commands/creator` - `/creator check|assign`
    - `GET /tickets/{channel_id}` - Timer state of a ticket

    **Lifecycle:**
    - A staff message arms a 10 minute pre-delay; every further staff message restarts it
    - Once active, the requester is reminded every 6 hours
    - Staff are alerted 24 hours after the countdown started
    - Any requester reply stops the countdown

    Timers survive restarts: running countdowns are rebuilt from the ticket store on startup.
    """,
    version=settings.app_version,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan
)

# === CORS Middleware ===
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# === Custom Middleware (from shared) ===
app.add_middleware(LoggingMiddleware)
app.add_middleware(CorrelationIDMiddleware)
app.add_exception_handler(ApplicationException, application_exception_handler)
app.add_exception_handler(Exception, global_exception_handler)

# === Include Module Routers ===
app.include_router(tickets_router)


# === Liveness Endpoints ===

@app.get("/", tags=["Health"], response_class=PlainTextResponse)
async def root():
    """Keep-alive endpoint for hosting platforms."""
    return ALIVE_TEXT


@app.get("/ping", tags=["Health"], response_class=PlainTextResponse)
async def ping():
    return ALIVE_TEXT


@app.get("/status", tags=["Health"], responses={
    200: {
        "description": "Service status",
        "content": {
            "application/json": {
                "example": {
                    "status": "online",
                    "tickets": 12,
                    "uptime": 5400.25,
                    "timestamp": "2024-01-15T10:00:00+00:00"
                }
            }
        }
    }
})
async def service_status(request: Request):
    """Ticket count, uptime in seconds and server time."""
    tickets = await request.app.state.ticket_store.count()
    started_at = getattr(request.app.state, "started_at", time.monotonic())

    return {
        "status": "online",
        "tickets": tickets,
        "uptime": round(time.monotonic() - started_at, 2),
        "timestamp": datetime.now(timezone.utc).isoformat()
    }


@app.get("/health", tags=["Health"])
async def health_check(request: Request):
    """
    Health check endpoint for load balancers and orchestrators.

    Returns service health status including:
    - Database connectivity
    - Scheduler state
    - Last startup recovery outcome
    """
    database_ok = await ping_database()
    timers = getattr(request.app.state, "timer_registry", None)
    summary = getattr(request.app.state, "recovery_summary", None)

    checks = {
        "database": "connected" if database_ok else "unavailable",
        "timer_scheduler": "running" if timers and timers.is_running else "stopped",
        "recovery": summary.to_dict() if summary else None
    }

    return {
        "status": "healthy" if database_ok else "degraded",
        "version": settings.app_version,
        "environment": settings.environment,
        "checks": checks
    }


@app.get("/test-db", tags=["Health"])
async def test_database(request: Request):
    """Ticket store connectivity check with a small sample of records."""
    if not await ping_database():
        return JSONResponse(status_code=503, content={"error": "Ticket store not connected"})

    store = request.app.state.ticket_store
    try:
        count = await store.count()
        sample = (await store.list_all())[:5]
    except PersistenceException as e:
        return JSONResponse(status_code=503, content={"error": e.message})

    started_at = getattr(request.app.state, "started_at", time.monotonic())
    return {
        "database": "connected",
        "ticket_count": count,
        "tickets": [
            {
                "channel_id": r.id,
                "creator_id": r.creator_id,
                "timer_start_time": r.timer_start_time.isoformat() if r.timer_start_time else None,
                "reminder_count": r.reminder_count,
                "staff_alerted_at": r.staff_alerted_at.isoformat() if r.staff_alerted_at else None
            }
            for r in sample
        ],
        "uptime": round(time.monotonic() - started_at, 2),
        "timestamp": datetime.now(timezone.utc).isoformat()
    }


# === Entry Point ===

def run() -> None:
    """Console entry point; exits with status 1 on missing settings."""
    import uvicorn

    missing = settings.missing_required()
    if missing:
        setup_logging(settings.log_level, settings.environment)
        logger.error("Missing required settings", extra={"missing": missing})
        sys.exit(1)

    uvicorn.run(
        "ticket_sentinel.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.environment == "development" and settings.debug,
        log_level=settings.log_level.lower()
    )


if __name__ == "__main__":
    run()
