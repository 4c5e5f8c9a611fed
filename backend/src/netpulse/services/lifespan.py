"""Application lifespan management."""

import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import AsyncIterator

from fastapi import FastAPI

from ..config import get_settings
from ..dashboard import DashboardView
from ..db import TestResultRepository, get_db
from ..logging import get_logger
from ..models import SequenceOutcome
from .geolocation import GeolocationService
from .latency import LatencyProbe
from .sequence import SpeedTestSequence

log = get_logger("lifespan")


@dataclass
class AppState:
    """Application state container for dependency injection."""

    repository: TestResultRepository
    geolocation: GeolocationService
    sequence: SpeedTestSequence
    dashboard: DashboardView
    start_time: float = field(default_factory=time.time)

    @property
    def uptime_seconds(self) -> float:
        """Get application uptime in seconds."""
        return time.time() - self.start_time


def build_state(
    repository: TestResultRepository | None = None,
    geolocation: GeolocationService | None = None,
    probe: LatencyProbe | None = None,
    sequence: SpeedTestSequence | None = None,
) -> AppState:
    """Wire the services together, sharing one repository and one lookup."""
    repository = repository or TestResultRepository()
    geolocation = geolocation or GeolocationService()
    sequence = sequence or SpeedTestSequence(
        probe=probe or LatencyProbe(),
        geolocation=geolocation,
        repository=repository,
    )
    dashboard = DashboardView(repository=repository, geolocation=geolocation)

    async def on_sequence_complete(outcome: SequenceOutcome) -> None:
        """Reload history so the page shows the new row."""
        await dashboard.refresh_history()

    sequence.on_complete(on_sequence_complete)

    return AppState(
        repository=repository,
        geolocation=geolocation,
        sequence=sequence,
        dashboard=dashboard,
    )


# Global state instance
_state: AppState | None = None


def get_state() -> AppState:
    """Get the global application state."""
    if _state is None:
        raise RuntimeError("Application state not initialized. Is the app running?")
    return _state


def set_state(state: AppState | None) -> None:
    """Install the state the next lifespan will use (None builds a fresh one)."""
    global _state
    _state = state


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[dict]:
    """Application lifespan manager.

    Handles:
    - Database initialization
    - The one-time IP lookup on load
    - Initial history fetch
    - Letting an in-flight sequence finish on shutdown
    """
    global _state
    settings = get_settings()

    log.info(
        "app_starting",
        app_name=settings.app_name,
        version=settings.version,
        debug=settings.debug,
    )

    db = get_db()
    await db.initialize()

    state = _state or build_state()
    _state = state

    if settings.lookup_on_startup:
        info = await state.geolocation.lookup()
        log.info("startup_ip_lookup", available=info is not None)

    await state.dashboard.refresh_history()

    log.info("app_started", history_count=len(state.dashboard.history))

    yield {"state": state}

    log.info("app_stopping")

    # No cancellation: an in-flight run finishes and stores its result
    if state.sequence.is_running:
        log.info("waiting_for_sequence")
        try:
            await state.sequence.wait()
        except Exception as e:
            log.error("sequence_shutdown_error", error=str(e))

    _state = None
    log.info("app_stopped", uptime_seconds=state.uptime_seconds)
