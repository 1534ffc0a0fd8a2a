import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from starlette.middleware.gzip import GZipMiddleware

from meterflow.config import settings
from meterflow.api.v1 import assignments, billing, cycles, meters, pricing, readings, sessions
from meterflow.core.exceptions import register_exception_handlers
from meterflow.core.redis import close_redis
from meterflow.database import init_db, close_db
from meterflow.directory.http import close_http_client
from meterflow.middleware.logging import LoggingMiddleware
from meterflow.middleware.monitoring import MonitoringMiddleware
from meterflow.middleware.request_id import RequestIDMiddleware, configure_logging
from meterflow.monitoring import metrics
from meterflow.services.health_service import get_detailed_health

configure_logging(settings.DEBUG)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_db()
    logger.info(f"{settings.APP_NAME} {settings.APP_VERSION} started ({settings.ENVIRONMENT})")
    yield
    await close_http_client()
    if settings.LOCK_BACKEND == "redis":
        await close_redis()
    await close_db()


app = FastAPI(
    title=settings.APP_NAME,
    description="""
    **Meterflow API** - utility meter reading cycles and billing reconciliation

    ## Features
    * Reading cycles with a forward-only state machine
    * Assignment of units to field staff, with no unit read twice in a cycle
    * Idempotent reading submission, single or bulk, with meter auto-provisioning
    * Progress tracking and completion gate
    * Progressive pricing tiers with gap and overlap checks
    * Invoice export per building and billing cycle reconciliation
    """,
    version=settings.APP_VERSION,
    openapi_tags=[
        {"name": "reading-cycles", "description": "Cycle lifecycle, progress and invoice export"},
        {"name": "assignments", "description": "Unit assignments to field staff"},
        {"name": "meters", "description": "Meter management"},
        {"name": "readings", "description": "Reading submission"},
        {"name": "reading-sessions", "description": "Field reading sessions"},
        {"name": "pricing-tiers", "description": "Progressive pricing tiers"},
        {"name": "billing-cycles", "description": "Billing cycle reconciliation"},
        {"name": "monitoring", "description": "System monitoring"},
    ],
    lifespan=lifespan,
)

register_exception_handlers(app)

# =====================================
# Configure Middleware Stack
# =====================================

app.add_middleware(GZipMiddleware, minimum_size=1000)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["*"],
    expose_headers=["X-Request-ID", "Content-Disposition"],
    max_age=3600,
)

app.add_middleware(MonitoringMiddleware)
app.add_middleware(LoggingMiddleware)
app.add_middleware(RequestIDMiddleware)

# Include routers
app.include_router(cycles.router, prefix=f"{settings.API_V1_PREFIX}/reading-cycles", tags=["reading-cycles"])
app.include_router(assignments.router, prefix=f"{settings.API_V1_PREFIX}/assignments", tags=["assignments"])
app.include_router(meters.router, prefix=f"{settings.API_V1_PREFIX}/meters", tags=["meters"])
app.include_router(readings.router, prefix=f"{settings.API_V1_PREFIX}/readings", tags=["readings"])
app.include_router(sessions.router, prefix=f"{settings.API_V1_PREFIX}/reading-sessions", tags=["reading-sessions"])
app.include_router(pricing.router, prefix=f"{settings.API_V1_PREFIX}/pricing-tiers", tags=["pricing-tiers"])
app.include_router(billing.router, prefix=f"{settings.API_V1_PREFIX}/billing-cycles", tags=["billing-cycles"])

# Monitoring endpoints (internal use)
if settings.EXPOSE_METRICS:
    app.include_router(
        metrics.router,
        prefix="/internal",
        tags=["monitoring"]
    )


@app.get("/health", tags=["monitoring"])
async def health_check():
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "version": settings.APP_VERSION,
    }


@app.get("/health/detailed", tags=["monitoring"])
async def detailed_health_check():
    return await get_detailed_health()
