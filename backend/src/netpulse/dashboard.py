"""Dashboard view state and HTML rendering.

The view keeps what the page shows (latest readings, sequence phase and
progress, stored history, IP info) and renders it server-side. A small
inline script starts a run and polls its status to animate progress.
"""

import math
from datetime import datetime
from html import escape
from typing import TYPE_CHECKING, Any

import structlog

from .config import get_settings
from .db import TestResultRepository
from .models import IpInfo, SequenceSnapshot, TestPhase

if TYPE_CHECKING:
    from .services.geolocation import GeolocationService

log = structlog.get_logger()

CHART_WIDTH = 640
CHART_HEIGHT = 260
CHART_PADDING = 24


def parse_timestamp(value: Any) -> datetime | None:
    """Parse a stored timestamp ("YYYY-MM-DD HH:MM:SS", UTC)."""
    if not isinstance(value, str):
        return None
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        return None


def format_time(value: Any) -> str:
    ts = parse_timestamp(value)
    return ts.strftime("%H:%M") if ts else ""


def format_date(value: Any) -> str:
    ts = parse_timestamp(value)
    return ts.strftime("%Y-%m-%d") if ts else ""


def build_chart_data(history: list[dict]) -> list[dict]:
    """Chart points oldest-first from newest-first history rows."""
    return [
        {
            "time": format_time(row.get("timestamp")),
            "speed": row.get("download_speed"),
            "ping": row.get("latency"),
        }
        for row in reversed(history)
    ]


def _as_number(value: Any) -> float:
    # Rows are stored unvalidated; anything non-numeric plots as zero
    if isinstance(value, bool):
        return 0.0
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0.0
    return number if math.isfinite(number) and number > 0 else 0.0


def build_chart_paths(
    points: list[dict],
    width: int = CHART_WIDTH,
    height: int = CHART_HEIGHT,
    padding: int = CHART_PADDING,
) -> tuple[str, str]:
    """SVG path data (line, filled area) for the download speed series.

    Returns empty strings when there is nothing to draw.
    """
    if not points:
        return "", ""

    speeds = [_as_number(p["speed"]) for p in points]
    top = max(max(speeds), 1.0)
    plot_w = width - 2 * padding
    plot_h = height - 2 * padding
    baseline = height - padding
    step = plot_w / (len(speeds) - 1) if len(speeds) > 1 else 0

    coords = [
        (padding + i * step, baseline - (speed / top) * plot_h)
        for i, speed in enumerate(speeds)
    ]
    if len(coords) == 1:
        # Single sample: draw a flat segment across the plot
        coords.append((padding + plot_w, coords[0][1]))

    line = "M " + " L ".join(f"{x:.1f} {y:.1f}" for x, y in coords)
    area = (
        f"{line} L {coords[-1][0]:.1f} {baseline:.1f} "
        f"L {coords[0][0]:.1f} {baseline:.1f} Z"
    )
    return line, area


class DashboardView:
    """UI state for the dashboard page."""

    def __init__(
        self,
        geolocation: "GeolocationService",
        repository: TestResultRepository | None = None,
    ):
        self._geolocation = geolocation
        self._repository = repository or TestResultRepository()
        self.history: list[dict] = []

    @property
    def ip_info(self) -> IpInfo | None:
        return self._geolocation.current

    @property
    def connected(self) -> bool:
        return self.ip_info is not None

    async def refresh_history(self) -> list[dict]:
        """Reload history from the store. Keeps the previous list on failure."""
        try:
            self.history = await self._repository.get_recent()
        except Exception as e:
            log.error("history_fetch_failed", error=str(e))
        return self.history

    def displayed_download(self, snapshot: SequenceSnapshot) -> Any:
        """Current reading, else the newest stored result, else 0."""
        if snapshot.download_speed:
            return snapshot.download_speed
        if self.history and self.history[0].get("download_speed"):
            return self.history[0]["download_speed"]
        return 0

    def displayed_latency(self, snapshot: SequenceSnapshot) -> Any:
        """Current reading, else the newest stored result, else 0."""
        if snapshot.latency:
            return snapshot.latency
        if self.history and self.history[0].get("latency"):
            return self.history[0]["latency"]
        return 0

    def chart_data(self) -> list[dict]:
        return build_chart_data(self.history)

    def render(self, snapshot: SequenceSnapshot) -> str:
        """Render the full dashboard page."""
        settings = get_settings()
        testing = snapshot.running
        return PAGE_TEMPLATE.format(
            title=escape(settings.app_name),
            version=escape(settings.version),
            connection_class="on" if self.connected else "off",
            connection_label="Connected" if self.connected else "Disconnected",
            button_disabled="disabled" if testing else "",
            button_label="Testing..." if testing else "Start Test",
            download=escape(str(self.displayed_download(snapshot))),
            latency=escape(str(self.displayed_latency(snapshot))),
            progress=f"{snapshot.progress:.0f}",
            progress_display=(
                "block"
                if testing and snapshot.phase == TestPhase.DOWNLOADING
                else "none"
            ),
            provider=self._render_provider(),
            chart=self._render_chart(),
            recent=self._render_recent(),
        )

    def _render_provider(self) -> str:
        info = self.ip_info
        org = escape(info.org) if info and info.org else "Detecting..."
        ip = escape(info.ip) if info and info.ip else "0.0.0.0"
        location = escape(info.display_location) if info else "Locating..."
        return (
            f'<div class="row">{org}</div>'
            f'<div class="row mono">{ip}</div>'
            f'<div class="row">{location}</div>'
        )

    def _render_chart(self) -> str:
        line, area = build_chart_paths(self.chart_data())
        if not line:
            return '<div class="empty">No data yet.</div>'
        return (
            f'<svg viewBox="0 0 {CHART_WIDTH} {CHART_HEIGHT}" class="chart">'
            f'<path d="{area}" class="area"/>'
            f'<path d="{line}" class="line"/>'
            "</svg>"
        )

    def _render_recent(self) -> str:
        if not self.history:
            return '<div class="empty">No tests run yet.</div>'
        items = []
        for row in self.history:
            items.append(
                '<li class="test">'
                f'<span class="when">{escape(format_date(row.get("timestamp")))} '
                f'{escape(format_time(row.get("timestamp")))}</span>'
                f'<span class="speed">{escape(str(row.get("download_speed")))} Mbps</span>'
                f'<span class="ping">{escape(str(row.get("latency")))}ms</span>'
                f'<span class="isp">{escape(str(row.get("isp") or ""))}</span>'
                "</li>"
            )
        return '<ul class="tests">' + "".join(items) + "</ul>"


PAGE_TEMPLATE = """<!DOCTYPE html>
<html lang="en">
<head>
<meta charset="utf-8">
<meta name="viewport" content="width=device-width, initial-scale=1">
<title>{title}</title>
<style>
  body {{ font-family: system-ui, sans-serif; background: #0a0a0b; color: #fafafa; margin: 0; }}
  .wrap {{ max-width: 1100px; margin: 0 auto; padding: 24px; }}
  header {{ display: flex; justify-content: space-between; align-items: center;
           border-bottom: 1px solid #27272a; padding-bottom: 16px; }}
  .badge {{ font-size: 12px; padding: 4px 10px; border-radius: 999px; border: 1px solid #27272a; }}
  .badge.on {{ color: #10b981; }} .badge.off {{ color: #ef4444; }}
  button {{ background: #10b981; color: #0a0a0b; font-weight: bold; border: 0;
           padding: 8px 20px; border-radius: 8px; cursor: pointer; }}
  button:disabled {{ opacity: .5; }}
  .grid {{ display: grid; grid-template-columns: repeat(3, 1fr); gap: 16px; margin-top: 24px; }}
  .card {{ background: #141417; border: 1px solid #27272a; border-radius: 16px; padding: 20px;
          position: relative; overflow: hidden; }}
  .label {{ color: #71717a; font-size: 12px; text-transform: uppercase; letter-spacing: .05em; }}
  .value {{ font-family: monospace; font-size: 44px; font-weight: bold; }}
  .unit {{ color: #71717a; }}
  .bar {{ position: absolute; left: 0; bottom: 0; height: 4px; background: #10b981; }}
  .row {{ font-size: 14px; margin-top: 8px; }} .mono {{ font-family: monospace; }}
  .lower {{ display: grid; grid-template-columns: 2fr 1fr; gap: 16px; margin-top: 16px; }}
  .chart .area {{ fill: rgba(16, 185, 129, .2); }}
  .chart .line {{ fill: none; stroke: #10b981; stroke-width: 2; }}
  ul.tests {{ list-style: none; padding: 0; max-height: 300px; overflow-y: auto; }}
  li.test {{ display: grid; grid-template-columns: 1fr 1fr; font-size: 13px; padding: 8px;
            border: 1px solid #27272a; border-radius: 10px; margin-bottom: 8px; }}
  .speed {{ color: #10b981; font-weight: bold; }}
  .empty {{ color: #71717a; font-style: italic; text-align: center; padding: 32px; }}
  footer {{ color: #71717a; font-size: 12px; margin-top: 32px; border-top: 1px solid #27272a;
           padding-top: 16px; }}
</style>
</head>
<body>
<div class="wrap">
  <header>
    <div><h1>{title}</h1><div class="label">Network monitoring dashboard</div></div>
    <div>
      <span class="badge {connection_class}">{connection_label}</span>
      <button id="run" {button_disabled}>{button_label}</button>
    </div>
  </header>
  <div class="grid">
    <div class="card">
      <div class="label">Download</div>
      <span class="value" id="download">{download}</span> <span class="unit">Mbps</span>
      <div class="bar" id="progress" style="width: {progress}%; display: {progress_display}"></div>
    </div>
    <div class="card">
      <div class="label">Latency (Ping)</div>
      <span class="value" id="latency">{latency}</span> <span class="unit">ms</span>
    </div>
    <div class="card">
      <div class="label">Provider &amp; IP</div>
      {provider}
    </div>
  </div>
  <div class="lower">
    <div class="card"><div class="label">Performance history</div>{chart}</div>
    <div class="card"><div class="label">Recent tests</div>{recent}</div>
  </div>
  <footer>{title} v{version}. For more accurate results, close other tabs and
    applications using bandwidth during the test.</footer>
</div>
<script>
const button = document.getElementById("run");
async function poll() {{
  const response = await fetch("/api/run/status");
  const state = await response.json();
  const bar = document.getElementById("progress");
  bar.style.display = state.phase === "downloading" ? "block" : "none";
  bar.style.width = state.progress + "%";
  if (state.latency) document.getElementById("latency").textContent = state.latency;
  if (state.download_speed) document.getElementById("download").textContent = state.download_speed;
  if (state.running) {{ setTimeout(poll, 250); }} else {{ location.reload(); }}
}}
button.addEventListener("click", async () => {{
  button.disabled = true;
  button.textContent = "Testing...";
  await fetch("/api/run", {{ method: "POST" }});
  poll();
}});
</script>
</body>
</html>
"""
