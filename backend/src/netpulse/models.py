"""Data models for NetPulse using Pydantic."""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class TestPhase(str, Enum):
    """Phases of the simulated test sequence."""

    __test__ = False  # not a pytest test class

    IDLE = "idle"
    PINGING = "pinging"
    DOWNLOADING = "downloading"
    COMPLETED = "completed"


# ============================================
# Test Result Models
# ============================================


class TestResultCreate(BaseModel):
    """Body of POST /api/tests.

    Fields are stored as given; nothing is coerced or range-checked and
    missing fields become NULL.
    """

    __test__ = False

    model_config = ConfigDict(extra="ignore")

    latency: Any = None
    download_speed: Any = None
    isp: Any = None
    ip: Any = None
    location: Any = None


class TestResult(BaseModel):
    """A stored speed test result."""

    __test__ = False

    id: int | None = None
    timestamp: str | None = None  # Assigned by the database
    latency: int
    download_speed: float  # Mbps
    isp: str = "Unknown"
    ip: str = "0.0.0.0"
    location: str = "Unknown, "


# ============================================
# Geolocation Models
# ============================================


class IpInfo(BaseModel):
    """Client IP information from the geolocation service."""

    model_config = ConfigDict(extra="ignore")

    ip: str | None = None
    city: str | None = None
    region: str | None = None
    country_name: str | None = None
    org: str | None = None

    @property
    def location(self) -> str:
        """Location string stored with a result: "city, region"."""
        return f"{self.city or 'Unknown'}, {self.region or ''}"

    @property
    def display_location(self) -> str:
        """Location shown on the dashboard: "city, country"."""
        return f"{self.city}, {self.country_name}"


# ============================================
# Sequence Models
# ============================================


class DownloadStep(BaseModel):
    """One fabricated download step."""

    index: int
    size_mb: float
    duration_seconds: float
    rate_mbps: float
    cumulative_average_mbps: float  # Running sum of rates / steps so far


class SequenceSnapshot(BaseModel):
    """Live state of the simulated test sequence."""

    phase: TestPhase = TestPhase.IDLE
    running: bool = False
    progress: float = 0.0
    latency: int | None = None
    download_speed: int | None = None  # Rounded cumulative average
    step: int = 0  # Download steps completed
    total_steps: int = 0
    steps: list[DownloadStep] = Field(default_factory=list)
    started_at: datetime | None = None
    completed_at: datetime | None = None


class SequenceOutcome(BaseModel):
    """Result of a call to SpeedTestSequence.run()."""

    status: str = "completed"  # completed, busy
    result: TestResult | None = None
    steps: list[DownloadStep] = Field(default_factory=list)
    persisted: bool = False
    error_message: str | None = None


# ============================================
# Health Models
# ============================================


class ComponentHealth(BaseModel):
    """Health status of a component."""

    name: str
    healthy: bool
    message: str = "OK"
    last_check: datetime = Field(default_factory=datetime.utcnow)


class HealthStatus(BaseModel):
    """Overall application health status."""

    status: str = "healthy"  # healthy, degraded, unhealthy
    uptime_seconds: float
    version: str

    components: list[ComponentHealth] = Field(default_factory=list)

    db_connected: bool = True
    sequence_running: bool = False
    ip_info_available: bool = False
