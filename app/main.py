# app/main.py - Observable correlation API
from fastapi import FastAPI, Depends, HTTPException, status
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession
from contextlib import asynccontextmanager
from prometheus_fastapi_instrumentator import Instrumentator
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
import time

from app.core.config import settings
from app.db.database import get_db, init_db, engine
from app.core import tracing

from app.api.v1.endpoints import observables, evidence, cases, audit_logs

from app.middleware.security import SecurityHeadersMiddleware
from app.middleware.cors import setup_cors_middleware
from app.middleware.rate_limiting import limiter, rate_limit_exceeded_handler
from app.middleware.monitoring import MonitoringMiddleware

from app.exceptions.correlation import CorrelationError
from app.exceptions.handlers import (
    http_exception_handler,
    validation_exception_handler,
    correlation_exception_handler,
    global_exception_handler,
    starlette_http_exception_handler
)

API_VERSION = "1.0.0"

tracing_enabled = False


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Create tables on startup and log the active configuration
    """
    tracing.info("Correlation API startup initiated")

    try:
        await init_db()
        tracing.info("Database initialized successfully")
    except Exception as e:
        tracing.error(f"Database initialization failed: {e}")
        raise

    tracing.info(f"Environment: {settings.ENVIRONMENT}")
    tracing.info(f"Database: {'sqlite' if settings.is_sqlite else 'postgresql'}")
    tracing.info(f"Tracing: {'Enabled' if tracing_enabled else 'Disabled'}")
    tracing.info(f"Rate Limiting: {'Enabled' if settings.RATE_LIMIT_ENABLED else 'Disabled'}")
    tracing.info(f"Auto extraction: {'Enabled' if settings.AUTO_EXTRACT_OBSERVABLES else 'Disabled'}")

    yield

    tracing.info("Correlation API shutdown initiated")
    await engine.dispose()
    tracing.info("Correlation API shutdown complete")


app = FastAPI(
    title="Observable Correlation API",
    description="Correlates indicators of compromise across forensic cases and evidence",
    version=API_VERSION,
    lifespan=lifespan,
    docs_url="/docs" if settings.ENVIRONMENT == "development" else None,
    redoc_url="/redoc" if settings.ENVIRONMENT == "development" else None,
    openapi_url="/openapi.json" if settings.ENVIRONMENT == "development" else None
)

# =============================================================================
# TRACING
# =============================================================================

try:
    tracing_enabled = tracing.setup_tracing(app, engine)
except Exception as e:
    tracing.error(f"❌ Failed to initialize tracing: {e}")
    tracing_enabled = False

# =============================================================================
# MIDDLEWARE (last added runs first)
# =============================================================================

app.add_middleware(MonitoringMiddleware)
app.add_middleware(SecurityHeadersMiddleware, enable_hsts=settings.ENVIRONMENT == "production")
setup_cors_middleware(app)

app.state.limiter = limiter
app.add_middleware(SlowAPIMiddleware)

# =============================================================================
# EXCEPTION HANDLERS
# =============================================================================

app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)
app.add_exception_handler(HTTPException, http_exception_handler)
app.add_exception_handler(StarletteHTTPException, starlette_http_exception_handler)
app.add_exception_handler(CorrelationError, correlation_exception_handler)
app.add_exception_handler(Exception, global_exception_handler)

# =============================================================================
# PROMETHEUS METRICS
# =============================================================================

instrumentator = Instrumentator(
    should_group_status_codes=True,
    should_ignore_untemplated=True,
    should_instrument_requests_inprogress=True,
    inprogress_labels=True
)
instrumentator.instrument(app).expose(app, endpoint="/metrics", include_in_schema=False)

# =============================================================================
# API ROUTES
# =============================================================================

app.include_router(observables.router, prefix="/api/v1/observables", tags=["Observables"])
app.include_router(evidence.router, prefix="/api/v1/evidence", tags=["Evidence"])
app.include_router(cases.router, prefix="/api/v1/cases", tags=["Cases"])
app.include_router(audit_logs.router, prefix="/api/v1/audit-logs", tags=["Audit"])


# =============================================================================
# SYSTEM ENDPOINTS
# =============================================================================

@app.get("/health", tags=["System"])
async def health_check(db: AsyncSession = Depends(get_db)):
    """Health check with a database round trip"""
    try:
        await db.execute(text("SELECT 1"))
    except Exception as e:
        tracing.error(f"Health check failed: {e}", endpoint="/health", error_type=type(e).__name__)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Service unhealthy - database connection failed"
        )

    return {
        "status": "healthy",
        "service": tracing.SERVICE,
        "version": API_VERSION,
        "environment": settings.ENVIRONMENT,
        "timestamp": time.time(),
        "trace_id": tracing.get_current_trace_id(),
        "checks": {
            "database": "connected",
            "tracing": "enabled" if tracing_enabled else "disabled",
            "rate_limiting": "enabled" if settings.RATE_LIMIT_ENABLED else "disabled"
        }
    }


@app.get("/", tags=["System"])
async def api_information():
    """API information endpoint"""
    return {
        "message": "Observable Correlation API",
        "version": API_VERSION,
        "environment": settings.ENVIRONMENT,
        "status": "operational",
        "trace_id": tracing.get_current_trace_id(),
        "endpoints": {
            "health": "/health",
            "metrics": "/metrics",
            "observables": "/api/v1/observables",
            "evidence": "/api/v1/evidence",
            "cases": "/api/v1/cases",
            "audit_logs": "/api/v1/audit-logs",
        },
        "timestamp": time.time()
    }


tracing.info("Correlation API initialized")
