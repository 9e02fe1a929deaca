"""Agent, anomaly and snapshot data model.

AgentState and AnomalyState are mutable and owned by SimulationEngine.
TelemetrySnapshot is the frozen value handed to everyone else (history,
channels, renderer).  Snapshots keep raw floats; each consumer rounds as
its wire format requires.

Anomaly variants live in ANOMALY_PROFILES: one entry per non-normal mode
with its duration budget, status label, severity and per-tick step.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Optional

# Canvas extent and the margin the drone is clamped to
CANVAS_WIDTH = 600.0
CANVAS_HEIGHT = 400.0
POSITION_MIN_X = 10.0
POSITION_MAX_X = 590.0
POSITION_MIN_Y = 10.0
POSITION_MAX_Y = 390.0

# Normal-mode waypoint sampling sub-rectangle
WAYPOINT_MIN_X = 50.0
WAYPOINT_MIN_Y = 50.0
WAYPOINT_SPAN_X = 500.0
WAYPOINT_SPAN_Y = 300.0

# Construction defaults
START_X = 50.0
START_Y = 200.0
START_ALTITUDE = 100.0
START_SPEED = 60.0
START_BATTERY = 100.0
HOME_TARGET = (550.0, 200.0)

STATUS_STANDBY = "Standby"
STATUS_AIRBORNE = "Airborne"
STATUS_STOPPED = "Stopped"
STATUS_LOW_BATTERY = "WARNING: Low Battery"


def utc_timestamp() -> str:
    """ISO-8601 UTC timestamp with a trailing Z."""
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


class AnomalyMode(str, Enum):
    NORMAL = "normal"
    ROUTE = "route"
    ALTITUDE = "altitude"
    SPEED = "speed"


@dataclass
class AgentState:
    """Live drone state. Only SimulationEngine writes to it."""

    x: float = START_X
    y: float = START_Y
    altitude: float = START_ALTITUDE
    speed: float = START_SPEED
    heading: float = 0.0
    target_x: float = HOME_TARGET[0]
    target_y: float = HOME_TARGET[1]
    battery: float = START_BATTERY
    status: str = STATUS_STANDBY
    active: bool = False


@dataclass
class AnomalyState:
    mode: AnomalyMode = AnomalyMode.NORMAL
    remaining_ticks: int = 0
    recovery_x: float = HOME_TARGET[0]
    recovery_y: float = HOME_TARGET[1]

    @property
    def is_normal(self) -> bool:
        return self.mode is AnomalyMode.NORMAL


# ---------------------------------------------------------------------------
# Anomaly profiles
# ---------------------------------------------------------------------------

def _altitude_step(agent: AgentState) -> None:
    agent.altitude = max(0.0, agent.altitude - 2.0)


def _speed_step(agent: AgentState) -> None:
    agent.speed = max(10.0, agent.speed - 1.0)
    # Fighting the fault drains the pack faster
    agent.battery = max(0.0, agent.battery - 0.2)


@dataclass(frozen=True)
class AnomalyProfile:
    """How one anomaly kind behaves while active."""

    duration: int
    status: str
    severity: str
    # None: no per-tick effect, the diverted target does the work
    step: Optional[Callable[[AgentState], None]]


ANOMALY_PROFILES: dict[AnomalyMode, AnomalyProfile] = {
    AnomalyMode.ROUTE: AnomalyProfile(
        duration=100,
        status="ANOMALY: Route Deviation",
        severity="medium",
        step=None,
    ),
    AnomalyMode.ALTITUDE: AnomalyProfile(
        duration=50,
        status="ANOMALY: Altitude Loss",
        severity="high",
        step=_altitude_step,
    ),
    AnomalyMode.SPEED: AnomalyProfile(
        duration=80,
        status="ANOMALY: Speed Loss",
        severity="low",
        step=_speed_step,
    ),
}


def parse_anomaly_kind(kind: AnomalyMode | str) -> AnomalyMode:
    """Resolve a trigger kind. Raises ValueError for normal or unknown kinds."""
    try:
        mode = AnomalyMode(kind)
    except ValueError:
        raise ValueError(f"Unknown anomaly kind: {kind!r}") from None
    if mode not in ANOMALY_PROFILES:
        raise ValueError(f"Not an anomaly kind: {kind!r}")
    return mode


def anomaly_severity(kind: AnomalyMode | str) -> str:
    """Fixed severity lookup. Unknown kinds are reported as medium."""
    try:
        return ANOMALY_PROFILES[AnomalyMode(kind)].severity
    except (ValueError, KeyError):
        return "medium"


# ---------------------------------------------------------------------------
# Snapshot
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class TelemetrySnapshot:
    """Immutable point-in-time telemetry record."""

    timestamp: str
    x: float
    y: float
    altitude: float
    speed: float
    heading: float
    battery: float
    status: str
    active: bool
    mode: AnomalyMode
    target_x: float
    target_y: float
    anomaly_ticks_remaining: int = 0

    @property
    def has_anomaly(self) -> bool:
        return self.mode is not AnomalyMode.NORMAL

    @classmethod
    def capture(cls, agent: AgentState, anomaly: AnomalyState) -> TelemetrySnapshot:
        return cls(
            timestamp=utc_timestamp(),
            x=agent.x,
            y=agent.y,
            altitude=agent.altitude,
            speed=agent.speed,
            heading=agent.heading,
            battery=agent.battery,
            status=agent.status,
            active=agent.active,
            mode=anomaly.mode,
            target_x=agent.target_x,
            target_y=agent.target_y,
            anomaly_ticks_remaining=anomaly.remaining_ticks,
        )

    def to_dict(self) -> dict:
        data = asdict(self)
        data["mode"] = self.mode.value
        data["has_anomaly"] = self.has_anomaly
        return data

    def to_display(self) -> dict:
        """Rounded values for the renderer/log panel."""
        return {
            "timestamp": self.timestamp,
            "x": round(self.x),
            "y": round(self.y),
            "altitude": round(self.altitude),
            "speed": round(self.speed),
            "heading": round(self.heading),
            "battery": round(self.battery),
            "status": self.status,
            "mode": self.mode.value,
        }
