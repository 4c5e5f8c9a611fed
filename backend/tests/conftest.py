"""Shared pytest fixtures."""

import asyncio
import time

import httpx
import pytest
from fastapi.testclient import TestClient

from netpulse.config import get_settings
from netpulse.db import TestResultRepository, get_db, reset_db
from netpulse.metrics import reset_metrics
from netpulse.services import GeolocationService, SpeedTestSequence, build_state, set_state

IPAPI_PAYLOAD = {
    "ip": "203.0.113.7",
    "city": "Lisbon",
    "region": "Lisbon",
    "country_name": "Portugal",
    "org": "Example Telecom",
}


class FakeClock:
    """Clock whose time only moves when sleep() is awaited."""

    def __init__(self, start: float = 100.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.now += seconds
        await asyncio.sleep(0)


class FakeProbe:
    def __init__(self, latency: int = 42):
        self.latency = latency
        self.calls = 0

    async def measure(self) -> int:
        self.calls += 1
        return self.latency


class FailingRepository(TestResultRepository):
    async def insert(self, result):
        raise RuntimeError("disk I/O error")


def ipapi_transport(payload: dict | None = None, status_code: int = 200) -> httpx.MockTransport:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status_code, json=payload if payload is not None else IPAPI_PAYLOAD)

    return httpx.MockTransport(handler)


def failing_transport() -> httpx.MockTransport:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("network unreachable", request=request)

    return httpx.MockTransport(handler)


@pytest.fixture
def settings_env(tmp_path, monkeypatch):
    """Point the app at a fresh database file and reset cached singletons."""
    monkeypatch.setenv("DB_PATH", str(tmp_path / "network_tests.db"))
    monkeypatch.setenv("LOG_FORMAT", "console")
    get_settings.cache_clear()
    reset_db()
    reset_metrics()
    yield get_settings()
    get_settings.cache_clear()
    reset_db()
    reset_metrics()


@pytest.fixture
def repository(settings_env):
    return TestResultRepository(get_db())


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def app_state(settings_env, clock):
    repository = TestResultRepository(get_db())
    geolocation = GeolocationService(transport=ipapi_transport())
    sequence = SpeedTestSequence(
        probe=FakeProbe(42),
        geolocation=geolocation,
        repository=repository,
        sleep=clock.sleep,
        clock=clock,
        rng=lambda: 0.5,
    )
    state = build_state(repository=repository, geolocation=geolocation, sequence=sequence)
    set_state(state)
    yield state
    set_state(None)


@pytest.fixture
def client(app_state):
    from netpulse.api import app

    with TestClient(app) as test_client:
        yield test_client


def wait_until_idle(client: TestClient, timeout: float = 5.0) -> dict:
    """Poll the run status endpoint until the sequence has finished."""
    deadline = time.monotonic() + timeout
    while True:
        status = client.get("/api/run/status").json()
        if not status["running"] or time.monotonic() > deadline:
            return status
        time.sleep(0.01)
