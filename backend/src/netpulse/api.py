"""FastAPI application for NetPulse."""

# Configure logging FIRST before any other imports that might use structlog
from .logging import configure_logging
configure_logging()

from typing import Any

import structlog
from fastapi import Body, FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse, JSONResponse, PlainTextResponse

from .config import get_settings
from .db import get_db
from .metrics import get_metrics
from .middleware import CorrelationIDMiddleware, RequestLoggingMiddleware
from .models import ComponentHealth, HealthStatus, IpInfo, SequenceSnapshot, TestResultCreate
from .services import AppState, lifespan

log = structlog.get_logger()

settings = get_settings()

app = FastAPI(
    title=settings.app_name,
    description="Network speed test dashboard with a simulated test sequence and result history",
    version=settings.version,
    lifespan=lifespan,
)

# Middleware (order matters - first added is outermost)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(CorrelationIDMiddleware)


def get_app_state(request: Request) -> AppState:
    """Get application state from request."""
    return request.state.state


# ============================================
# Dashboard
# ============================================


@app.get("/", response_class=HTMLResponse, include_in_schema=False)
async def dashboard(request: Request) -> HTMLResponse:
    """Render the dashboard page."""
    state: AppState = get_app_state(request)
    await state.dashboard.refresh_history()
    return HTMLResponse(state.dashboard.render(state.sequence.get_snapshot()))


# ============================================
# Test Result Endpoints
# ============================================


@app.get("/api/history")
async def get_history(request: Request) -> JSONResponse:
    """Get the most recent test results, newest first (at most 50)."""
    state: AppState = get_app_state(request)
    try:
        history = await state.repository.get_recent()
    except Exception as e:
        log.error("history_fetch_failed", error=str(e))
        return JSONResponse(status_code=500, content={"error": "Failed to fetch history"})
    return JSONResponse(content=history)


@app.post("/api/tests", status_code=201)
async def save_test(
    request: Request,
    payload: Any = Body(None),
) -> JSONResponse:
    """Store one test result exactly as given.

    Any JSON body is accepted; fields it does not carry are stored as NULL.
    The timestamp is assigned by the database.
    """
    state: AppState = get_app_state(request)
    result = (
        TestResultCreate.model_validate(payload)
        if isinstance(payload, dict)
        else TestResultCreate()
    )
    try:
        row_id = await state.repository.insert(result)
    except Exception as e:
        log.error("test_save_failed", error=str(e))
        return JSONResponse(status_code=500, content={"error": "Failed to save test"})

    get_metrics().inc_counter("netpulse_tests_stored_total")
    log.info("test_saved", id=row_id)
    return JSONResponse(status_code=201, content={"success": True})


# ============================================
# Sequence Endpoints
# ============================================


@app.post("/api/run")
async def run_sequence(request: Request) -> JSONResponse:
    """Start the simulated test sequence in the background.

    Poll GET /api/run/status for progress.
    """
    state: AppState = get_app_state(request)
    task = state.sequence.start()
    if task is None:
        return JSONResponse(status_code=409, content={"status": "busy"})
    return JSONResponse(status_code=202, content={"status": "started"})


@app.get("/api/run/status", response_model=SequenceSnapshot)
async def get_run_status(request: Request) -> SequenceSnapshot:
    """Get the current phase, progress and readings of the sequence."""
    state: AppState = get_app_state(request)
    return state.sequence.get_snapshot()


@app.get("/api/ip-info", response_model=IpInfo | None)
async def get_ip_info(
    request: Request,
    refresh: bool = Query(False, description="Query the geolocation service again"),
) -> IpInfo | None:
    """Get the client IP information looked up at startup."""
    state: AppState = get_app_state(request)
    if refresh:
        await state.geolocation.lookup()
    return state.geolocation.current


# ============================================
# Health & Status Endpoints
# ============================================


@app.get("/health", response_model=HealthStatus)
async def health_check(request: Request) -> HealthStatus:
    """Health check with component details."""
    state: AppState = get_app_state(request)
    db_healthy = await get_db().is_connected()
    ip_available = state.geolocation.current is not None

    components = [
        ComponentHealth(
            name="database",
            healthy=db_healthy,
            message="OK" if db_healthy else "Connection failed",
        ),
        ComponentHealth(
            name="ip_lookup",
            healthy=ip_available,
            message="OK" if ip_available else "No lookup result",
        ),
    ]

    # The lookup is optional; only the database decides "unhealthy"
    if not db_healthy:
        status = "unhealthy"
    elif not ip_available:
        status = "degraded"
    else:
        status = "healthy"

    return HealthStatus(
        status=status,
        uptime_seconds=state.uptime_seconds,
        version=settings.version,
        components=components,
        db_connected=db_healthy,
        sequence_running=state.sequence.is_running,
        ip_info_available=ip_available,
    )


@app.get("/health/live")
async def liveness_probe() -> dict:
    """Liveness probe: the app is alive if this responds."""
    return {"status": "alive"}


@app.get("/health/ready")
async def readiness_probe() -> JSONResponse:
    """Readiness probe: 200 when the database is reachable, else 503."""
    if await get_db().is_connected():
        return JSONResponse(status_code=200, content={"status": "ready", "db": "connected"})
    return JSONResponse(status_code=503, content={"status": "not_ready", "db": "disconnected"})


@app.get("/metrics")
async def metrics_endpoint(request: Request) -> PlainTextResponse:
    """Prometheus metrics endpoint."""
    state: AppState = get_app_state(request)
    content = get_metrics().to_prometheus_format(app_state=state)
    return PlainTextResponse(content=content, media_type="text/plain; version=0.0.4; charset=utf-8")


@app.get("/api/db-stats")
async def get_db_stats() -> dict:
    """Get database statistics."""
    return await get_db().get_stats()


# ============================================
# Error Handlers
# ============================================


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Global exception handler."""
    log.error("unhandled_exception", error=str(exc), path=request.url.path)
    return JSONResponse(
        status_code=500,
        content={"error": "Internal server error", "detail": str(exc) if settings.debug else None},
    )
