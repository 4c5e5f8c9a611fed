"""Latency probe: times one outbound request as a stand-in for ping."""

import random
import time
from typing import Callable

import httpx
import structlog

from ..config import get_settings

log = structlog.get_logger()


class LatencyProbe:
    """Measures a single round-trip latency sample.

    Any HTTP response counts as a sample, whatever its status. If the request
    fails outright, a value is drawn from the configured fallback range
    instead, so measure() always returns an integer.
    """

    def __init__(
        self,
        url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        clock: Callable[[], float] = time.perf_counter,
        rng: Callable[[], float] = random.random,
    ):
        settings = get_settings()
        self.url = url or settings.probe.url
        self.timeout = timeout or settings.probe.timeout_seconds
        self.fallback_min_ms = settings.probe.fallback_min_ms
        self.fallback_span_ms = settings.probe.fallback_span_ms
        self._transport = transport
        self._clock = clock
        self._rng = rng

    def fallback_latency(self) -> int:
        """Random latency in [fallback_min_ms, fallback_min_ms + fallback_span_ms]."""
        return round(self._rng() * self.fallback_span_ms + self.fallback_min_ms)

    async def measure(self) -> int:
        """Take one latency sample in milliseconds."""
        start = self._clock()
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, transport=self._transport
            ) as client:
                await client.get(self.url, headers={"Cache-Control": "no-cache"})
        except httpx.HTTPError as e:
            latency = self.fallback_latency()
            log.warning(
                "latency_probe_failed",
                url=self.url,
                error=str(e),
                fallback_ms=latency,
            )
            return latency

        latency = round((self._clock() - start) * 1000)
        log.debug("latency_probe_sample", url=self.url, latency_ms=latency)
        return latency
