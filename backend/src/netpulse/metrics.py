"""Prometheus metrics for NetPulse.

Exposes application metrics in Prometheus text format:
- HTTP request metrics (count, duration, status)
- Simulated sequence counters and last readings
- IP lookup counters
"""

import time
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any


@dataclass
class MetricsCollector:
    """Collects and exposes application metrics.

    Simple counters and gauges, rendered in Prometheus text format.
    """

    # Request counters: {(method, path, status): count}
    request_count: dict[tuple[str, str, int], int] = field(default_factory=lambda: defaultdict(int))

    # Request duration: {(method, path): [total_ms, count]}
    request_duration: dict[tuple[str, str], list[float]] = field(
        default_factory=lambda: defaultdict(lambda: [0.0, 0])
    )

    gauges: dict[str, float] = field(default_factory=dict)
    counters: dict[str, int] = field(default_factory=lambda: defaultdict(int))

    start_time: float = field(default_factory=time.time)

    def record_request(
        self, method: str, path: str, status_code: int, duration_ms: float
    ) -> None:
        """Record an HTTP request."""
        normalized_path = self._normalize_path(path)

        self.request_count[(method, normalized_path, status_code)] += 1
        duration_data = self.request_duration[(method, normalized_path)]
        duration_data[0] += duration_ms
        duration_data[1] += 1

    def set_gauge(self, name: str, value: float, labels: dict[str, str] | None = None) -> None:
        """Set a gauge value."""
        self.gauges[self._make_key(name, labels)] = value

    def inc_counter(self, name: str, value: int = 1, labels: dict[str, str] | None = None) -> None:
        """Increment a counter."""
        self.counters[self._make_key(name, labels)] += value

    def _make_key(self, name: str, labels: dict[str, str] | None) -> str:
        if not labels:
            return name
        label_str = ",".join(f'{k}="{v}"' for k, v in sorted(labels.items()))
        return f"{name}{{{label_str}}}"

    def _normalize_path(self, path: str) -> str:
        """Replace numeric path segments to keep label cardinality low."""
        return "/".join(":id" if part.isdigit() else part for part in path.split("/"))

    def get_uptime_seconds(self) -> float:
        return time.time() - self.start_time

    @staticmethod
    def _metric(lines: list[str], name: str, kind: str, help_text: str, value: Any) -> None:
        lines.append(f"# HELP {name} {help_text}")
        lines.append(f"# TYPE {name} {kind}")
        lines.append(f"{name} {value}")
        lines.append("")

    def to_prometheus_format(self, app_state: Any | None = None) -> str:
        """Export metrics in Prometheus text format."""
        lines: list[str] = []

        self._metric(
            lines, "netpulse_uptime_seconds", "gauge",
            "Application uptime in seconds", f"{self.get_uptime_seconds():.2f}",
        )

        if self.request_count:
            lines.append("# HELP http_requests_total Total HTTP requests")
            lines.append("# TYPE http_requests_total counter")
            for (method, path, status), count in sorted(self.request_count.items()):
                lines.append(
                    f'http_requests_total{{method="{method}",path="{path}",status="{status}"}} {count}'
                )
            lines.append("")

        if self.request_duration:
            lines.append("# HELP http_request_duration_ms_sum Total HTTP request duration in milliseconds")
            lines.append("# TYPE http_request_duration_ms_sum counter")
            for (method, path), (total_ms, _) in sorted(self.request_duration.items()):
                lines.append(
                    f'http_request_duration_ms_sum{{method="{method}",path="{path}"}} {total_ms:.2f}'
                )
            lines.append("")
            lines.append("# HELP http_request_duration_ms_count Number of HTTP requests for duration")
            lines.append("# TYPE http_request_duration_ms_count counter")
            for (method, path), (_, count) in sorted(self.request_duration.items()):
                lines.append(
                    f'http_request_duration_ms_count{{method="{method}",path="{path}"}} {count}'
                )
            lines.append("")

        if app_state is not None:
            stats = app_state.sequence.get_stats()
            self._metric(
                lines, "netpulse_sequence_runs_total", "counter",
                "Simulated test sequences completed", stats["runs_completed"],
            )
            self._metric(
                lines, "netpulse_sequence_busy_total", "counter",
                "Run requests rejected because a sequence was in progress",
                stats["busy_rejections"],
            )
            self._metric(
                lines, "netpulse_sequence_save_failures_total", "counter",
                "Completed sequences whose result could not be stored",
                stats["save_failures"],
            )
            self._metric(
                lines, "netpulse_sequence_running", "gauge",
                "Sequence running state (1=running, 0=idle)",
                1 if app_state.sequence.is_running else 0,
            )

            outcome = app_state.sequence.last_outcome
            if outcome is not None and outcome.result is not None:
                self._metric(
                    lines, "netpulse_last_download_mbps", "gauge",
                    "Download speed of the last completed sequence in Mbps",
                    outcome.result.download_speed,
                )
                self._metric(
                    lines, "netpulse_last_latency_ms", "gauge",
                    "Latency of the last completed sequence in milliseconds",
                    outcome.result.latency,
                )

            geo_stats = app_state.geolocation.get_stats()
            self._metric(
                lines, "netpulse_ip_lookup_errors_total", "counter",
                "Failed IP geolocation lookups", geo_stats["errors"],
            )

        for key, value in sorted(self.gauges.items()):
            lines.append(f"{key} {value}")

        for key, value in sorted(self.counters.items()):
            lines.append(f"{key} {value}")

        return "\n".join(lines)


# Global metrics collector instance
_metrics: MetricsCollector | None = None


def get_metrics() -> MetricsCollector:
    """Get the global metrics collector instance."""
    global _metrics
    if _metrics is None:
        _metrics = MetricsCollector()
    return _metrics


def reset_metrics() -> None:
    """Reset metrics collector (for testing)."""
    global _metrics
    _metrics = None
