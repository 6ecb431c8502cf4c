"""
RN Governance Service - Main Application
========================================

Assignment governance and SLA tracking for RN case management.

Modules:
- Governance: epochs, lifecycle replay, SLA clocks, supervisor actions,
  legacy repair and outreach tracking

Clean Architecture Layers:
- Interfaces: FastAPI controllers
- Application: Services and DTOs
- Domain: Entities and value objects
- Infrastructure: Database, policy watcher, scheduler
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

# Configuration
from config import settings

# Infrastructure
from infrastructure.database import close_database, create_tables, get_session_context, init_database

# Governance Module
from governance.infrastructure import ReconciliationScheduler, SLAPolicyManager
from governance.interfaces import governance_router
from governance.interfaces.controllers import build_services

# Logging & middleware
from shared.api.middleware import CorrelationIDMiddleware, LoggingMiddleware, register_exception_handlers
from shared.infrastructure.logging import get_logger, log_latency, setup_logging

logger = get_logger(__name__)

# Global service instances
policy_manager = None
reconciliation_scheduler = None


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """
    Application lifespan manager.

    STARTUP:
    1. Setup structured logging
    2. Initialize database
    3. Create database tables
    4. Load SLA policy and watch it for changes
    5. Start the reconciliation scheduler (when enabled)

    SHUTDOWN:
    1. Stop the reconciliation scheduler
    2. Stop the policy watcher
    3. Close database connections
    """
    global policy_manager, reconciliation_scheduler

    # === STARTUP ===
    setup_logging(settings.log_level, settings.environment)
    logger.info("Starting RN Governance Service", extra={
        "version": settings.app_version,
        "environment": settings.environment
    })

    logger.info("Initializing database")
    init_database()

    # Create tables (development only - production schemas come from migrations)
    logger.info("Creating database tables")
    try:
        await create_tables()
    except Exception as e:
        logger.warning("Database not available - running in degraded mode", extra={"error": str(e)})

    logger.info("Loading SLA policy")
    policy_manager = SLAPolicyManager()
    policy_manager.load(settings.sla_policy_path)
    policy_manager.start_watching()
    app.state.policy_manager = policy_manager
    app.state.settings = settings

    if settings.reconciliation_enabled:
        async def reconciliation_job():
            """Background reconciliation pass."""
            async with get_session_context() as session:
                services = build_services(session, policy_manager)
                with log_latency(logger, "reconciliation"):
                    await services.reconciliation.reconcile_all()

        reconciliation_scheduler = ReconciliationScheduler(interval_seconds=settings.reconciliation_interval)
        await reconciliation_scheduler.start(reconciliation_job)
    else:
        logger.info("Proactive reconciliation disabled")

    logger.info("RN Governance Service started successfully")

    yield  # Application runs here

    # === SHUTDOWN ===
    logger.info("Shutting down RN Governance Service")

    if reconciliation_scheduler:
        await reconciliation_scheduler.stop()

    if policy_manager:
        policy_manager.stop_watching()

    await close_database()

    logger.info("RN Governance Service shutdown complete")


# Create FastAPI application
app = FastAPI(
    title="RN Governance API",
    description="""
    ## RN Assignment Governance & SLA Engine

    Every assignment of a case to an RN is scoped by an **epoch**. Lifecycle
    state is rebuilt by replaying governance events for the current epoch.

    ---

    ### Lifecycle

    `unassigned` → `pending_acceptance` → `accepted_awaiting_notification` → `cleared`,
    or `pending_acceptance` → `declined`. Unassign / reassign close an epoch.

    ### SLA clocks

    | Obligation | Starts at | Deadline |
    |------------|-----------|----------|
    | Acceptance | assignment | +8h (wall clock) |
    | Notification | acceptance | +4h within the business day, else next business day close |
    | Outreach | acceptance (or assignment) | +4h within the business day, else next business day close |

    ### Acting user

    Send `X-Actor-Id` and `X-Actor-Role` (`supervisor` or `rn`) headers.
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
register_exception_handlers(app)

# === Include Module Routers ===
app.include_router(governance_router)


# === Health Check Endpoint ===

@app.get("/health", tags=["Health"], responses={
    200: {
        "description": "Service is healthy",
        "content": {
            "application/json": {
                "example": {
                    "status": "healthy",
                    "version": "1.0.0",
                    "environment": "development",
                    "checks": {
                        "sla_policy": "loaded",
                        "reconciliation": "disabled"
                    }
                }
            }
        }
    }
})
async def health_check(request: Request):
    """Health check endpoint for load balancers and orchestrators."""
    manager = getattr(request.app.state, "policy_manager", None)
    if reconciliation_scheduler and reconciliation_scheduler.is_running:
        reconciliation = "running"
    elif settings.reconciliation_enabled:
        reconciliation = "stopped"
    else:
        reconciliation = "disabled"

    return {
        "status": "healthy",
        "version": settings.app_version,
        "environment": settings.environment,
        "checks": {
            "sla_policy": "loaded" if manager is not None else "defaults",
            "reconciliation": reconciliation,
        }
    }


@app.get("/", tags=["Root"])
async def root():
    """Root endpoint with API information."""
    return {
        "service": "RN Governance Service",
        "version": settings.app_version,
        "architecture": "Clean Architecture / Modular Monolith",
        "docs": "/docs",
        "health": "/health",
        "modules": {
            "governance": {
                "prefix": "/governance",
                "endpoints": [
                    "GET /governance/dashboard - Supervisor queue",
                    "GET /governance/cases/{id} - Case lifecycle and SLA status",
                    "POST /governance/cases/{id}/assign|unassign|reassign|nudge|ack-sent - Supervisor actions",
                    "POST /governance/cases/{id}/accept|decline - RN responses",
                    "POST /governance/cases/{id}/outreach-attempts - Log outreach",
                    "GET /governance/cases/{id}/outreach-sla - Outreach SLA",
                    "GET /governance/outreach - Outreach tracker",
                    "POST /governance/reconcile - Reconciliation pass"
                ]
            }
        }
    }


# === Development Entry Point ===

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.environment == "development",
        log_level="info"
    )
