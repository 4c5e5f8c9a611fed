"""Simulated speed test sequence.

Runs idle -> pinging -> downloading -> completed:

1. One latency sample from the LatencyProbe.
2. One fabricated step per nominal payload size: sleep a randomized
   interval, then derive size * 8 / elapsed as the step's Mbps. The
   displayed speed is the cumulative average of the steps so far.
3. Persist the result. A failed write is logged and otherwise ignored.

Nothing is actually downloaded; the throughput figures come from the length
of the artificial delays.
"""

import asyncio
import random
import time
from datetime import datetime
from typing import Any, Awaitable, Callable

import structlog

from ..config import get_settings
from ..db import TestResultRepository
from ..logging import bind_run_id, reset_run_id
from ..models import (
    DownloadStep,
    IpInfo,
    SequenceOutcome,
    SequenceSnapshot,
    TestPhase,
    TestResult,
    TestResultCreate,
)
from .geolocation import GeolocationService
from .latency import LatencyProbe

log = structlog.get_logger()


def build_result(
    latency: int, download_speed: float, ip_info: IpInfo | None
) -> TestResult:
    """Build the stored result, falling back where IP info is missing."""
    if ip_info is None:
        return TestResult(latency=latency, download_speed=download_speed)
    return TestResult(
        latency=latency,
        download_speed=download_speed,
        isp=ip_info.org or "Unknown",
        ip=ip_info.ip or "0.0.0.0",
        location=ip_info.location,
    )


class SpeedTestSequence:
    """Drives one simulated test at a time and tracks its progress."""

    def __init__(
        self,
        probe: LatencyProbe | None = None,
        geolocation: GeolocationService | None = None,
        repository: TestResultRepository | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], float] = time.perf_counter,
        rng: Callable[[], float] = random.random,
    ):
        settings = get_settings()
        self.sizes_mb = list(settings.sequence.sizes_mb)
        self.min_delay = settings.sequence.min_delay_seconds
        self.delay_jitter = settings.sequence.delay_jitter_seconds
        self.ping_progress = settings.sequence.ping_progress

        self._probe = probe or LatencyProbe()
        self._geolocation = geolocation or GeolocationService()
        self._repository = repository or TestResultRepository()
        self._sleep = sleep
        self._clock = clock
        self._rng = rng

        self._running = False
        self._lock = asyncio.Lock()
        self._task: asyncio.Task | None = None
        self._snapshot = SequenceSnapshot(total_steps=len(self.sizes_mb))
        self._last_outcome: SequenceOutcome | None = None
        self._callbacks: list[Callable[[SequenceOutcome], Any]] = []

        self._stats = {
            "runs_started": 0,
            "runs_completed": 0,
            "busy_rejections": 0,
            "save_failures": 0,
        }

    def on_complete(self, callback: Callable[[SequenceOutcome], Any]) -> None:
        """Register a callback invoked after each completed run."""
        self._callbacks.append(callback)

    @property
    def is_running(self) -> bool:
        return self._running or (self._task is not None and not self._task.done())

    @property
    def last_outcome(self) -> SequenceOutcome | None:
        return self._last_outcome

    def get_snapshot(self) -> SequenceSnapshot:
        """Copy of the current sequence state."""
        snapshot = self._snapshot.model_copy(deep=True)
        # A started task counts as running before its first step executes
        snapshot.running = self.is_running
        return snapshot

    def get_stats(self) -> dict:
        return dict(self._stats)

    def start(self) -> asyncio.Task | None:
        """Start a run in the background. Returns None if one is in progress."""
        if self.is_running:
            self._stats["busy_rejections"] += 1
            log.info("sequence_busy")
            return None
        self._task = asyncio.create_task(self.run())
        return self._task

    async def wait(self) -> SequenceOutcome | None:
        """Wait for the run started by start(), if any."""
        if self._task is None:
            return None
        return await self._task

    async def run(self) -> SequenceOutcome:
        """Run the whole sequence, or report busy if one is in progress."""
        async with self._lock:
            if self._running:
                self._stats["busy_rejections"] += 1
                log.info("sequence_busy")
                return SequenceOutcome(
                    status="busy", error_message="Speed test already running"
                )
            self._running = True

        self._stats["runs_started"] += 1
        token = bind_run_id(self._stats["runs_started"])
        try:
            outcome = await self._execute()
        finally:
            reset_run_id(token)
            async with self._lock:
                self._running = False
                self._snapshot.running = False

        self._last_outcome = outcome
        for callback in self._callbacks:
            try:
                maybe_awaitable = callback(outcome)
                if asyncio.iscoroutine(maybe_awaitable):
                    await maybe_awaitable
            except Exception as e:
                log.error("sequence_callback_error", error=str(e))

        return outcome

    async def _execute(self) -> SequenceOutcome:
        self._snapshot = SequenceSnapshot(
            phase=TestPhase.PINGING,
            running=True,
            progress=0.0,
            total_steps=len(self.sizes_mb),
            started_at=datetime.utcnow(),
        )
        log.info("sequence_started", sizes_mb=self.sizes_mb)

        latency = await self._probe.measure()
        self._snapshot.latency = latency
        self._snapshot.progress = self.ping_progress

        self._snapshot.phase = TestPhase.DOWNLOADING
        steps = await self._run_download_steps()
        final_speed = round(sum(step.rate_mbps for step in steps) / len(steps))

        self._snapshot.download_speed = final_speed
        self._snapshot.phase = TestPhase.COMPLETED
        self._snapshot.completed_at = datetime.utcnow()

        result = build_result(latency, float(final_speed), self._geolocation.current)
        persisted = await self._save(result)

        self._stats["runs_completed"] += 1
        log.info(
            "sequence_completed",
            latency_ms=latency,
            download_mbps=final_speed,
            persisted=persisted,
        )
        return SequenceOutcome(
            status="completed", result=result, steps=steps, persisted=persisted
        )

    async def _run_download_steps(self) -> list[DownloadStep]:
        steps: list[DownloadStep] = []
        total = 0.0
        count = len(self.sizes_mb)
        span = 100.0 - self.ping_progress

        for i, size in enumerate(self.sizes_mb):
            start = self._clock()
            await self._sleep(self.min_delay + self._rng() * self.delay_jitter)
            duration = self._clock() - start

            rate = (size * 8) / duration
            total += rate
            step = DownloadStep(
                index=i,
                size_mb=size,
                duration_seconds=duration,
                rate_mbps=rate,
                cumulative_average_mbps=total / (i + 1),
            )
            steps.append(step)

            self._snapshot.steps.append(step)
            self._snapshot.step = i + 1
            self._snapshot.progress = self.ping_progress + ((i + 1) / count) * span
            self._snapshot.download_speed = round(step.cumulative_average_mbps)
            log.debug(
                "sequence_step",
                step=i + 1,
                size_mb=size,
                duration_seconds=round(duration, 3),
                rate_mbps=round(rate, 2),
            )

        return steps

    async def _save(self, result: TestResult) -> bool:
        payload = TestResultCreate(**result.model_dump(exclude={"id", "timestamp"}))
        try:
            result.id = await self._repository.insert(payload)
            return True
        except Exception as e:
            self._stats["save_failures"] += 1
            log.error("test_save_failed", error=str(e))
            return False
