"""Services module for NetPulse."""

from .geolocation import GeolocationService
from .latency import LatencyProbe
from .lifespan import lifespan, AppState, build_state, get_state, set_state
from .sequence import SpeedTestSequence, build_result

__all__ = [
    "GeolocationService",
    "LatencyProbe",
    "lifespan",
    "AppState",
    "build_state",
    "get_state",
    "set_state",
    "SpeedTestSequence",
    "build_result",
]
