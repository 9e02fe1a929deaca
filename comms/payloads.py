"""Wire payloads for the persistent and batch channels.

Outbound builders are plain functions returning JSON-ready dicts.  The
streaming channel rounds for display-grade telemetry; the batch channel
sends raw floats.  Inbound messages from the backend are validated with
pydantic before anything is dispatched to the simulator.
"""

from __future__ import annotations

import json
import time
import uuid
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, model_validator

from geo.reference import DEFAULT_BOUNDS, GeoBounds, geo_coordinates
from simulation.state import TelemetrySnapshot, utc_timestamp

SOURCE = "drone-simulator"
VERSION = "1.0.0"

DEVICE_NAME = "Simulation Drone"
DEVICE_TYPE = "quadcopter"
DEVICE_FIRMWARE = "2.1.4"


def new_session_id() -> str:
    """session_<epoch ms>_<9 random chars>."""
    return f"session_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"


# ---------------------------------------------------------------------------
# Persistent channel (outbound)
# ---------------------------------------------------------------------------

def telemetry_message(
    snapshot: TelemetrySnapshot,
    drone_id: str,
    session_id: str,
    bounds: GeoBounds = DEFAULT_BOUNDS,
) -> dict:
    return {
        "timestamp": utc_timestamp(),
        "sessionId": session_id,
        "drone": {
            "id": drone_id,
            "coordinates": geo_coordinates(snapshot.x, snapshot.y, bounds, precision=1),
            "telemetry": {
                "altitude": round(snapshot.altitude),
                "speed": round(snapshot.speed),
                "direction": round(snapshot.heading),
                "battery": round(snapshot.battery),
            },
            "status": {
                "mode": snapshot.mode.value,
                "statusText": snapshot.status,
                "isActive": snapshot.active,
                "hasAnomaly": snapshot.has_anomaly,
            },
            "target": {
                "x": round(snapshot.target_x),
                "y": round(snapshot.target_y),
            },
        },
        "metadata": {
            "source": SOURCE,
            "version": VERSION,
            "dataType": "real-time",
        },
    }


def connection_message(drone_id: str, session_id: str, started_at: str) -> dict:
    """One-time session announcement sent on every successful open."""
    return {
        "type": "connection",
        "timestamp": utc_timestamp(),
        "drone": {
            "id": drone_id,
            "name": DEVICE_NAME,
            "type": DEVICE_TYPE,
            "firmware": DEVICE_FIRMWARE,
        },
        "session": {
            "id": session_id,
            "startTime": started_at,
            "simulator": True,
        },
    }


def anomaly_alert_message(
    kind: str,
    severity: str,
    snapshot: TelemetrySnapshot,
    drone_id: str,
    bounds: GeoBounds = DEFAULT_BOUNDS,
) -> dict:
    return {
        "type": "anomaly_alert",
        "timestamp": utc_timestamp(),
        "anomaly": {
            "type": kind,
            "severity": severity,
            "description": snapshot.status,
            "droneId": drone_id,
        },
        "coordinates": geo_coordinates(snapshot.x, snapshot.y, bounds),
    }


def pong_message() -> dict:
    return {"type": "pong", "timestamp": utc_timestamp()}


# ---------------------------------------------------------------------------
# Batch channel (outbound, raw values)
# ---------------------------------------------------------------------------

def batch_telemetry_payload(
    snapshot: TelemetrySnapshot,
    drone_id: str,
    bounds: GeoBounds = DEFAULT_BOUNDS,
) -> dict:
    return {
        "timestamp": utc_timestamp(),
        "droneId": drone_id,
        "coordinates": geo_coordinates(snapshot.x, snapshot.y, bounds),
        "telemetry": {
            "altitude": snapshot.altitude,
            "speed": snapshot.speed,
            "direction": snapshot.heading,
            "battery": snapshot.battery,
        },
        "status": {
            "mode": snapshot.mode.value,
            "statusText": snapshot.status,
            "isActive": snapshot.active,
        },
    }


def batch_anomaly_payload(
    kind: str,
    severity: str,
    snapshot: TelemetrySnapshot,
    drone_id: str,
    bounds: GeoBounds = DEFAULT_BOUNDS,
) -> dict:
    return {
        "timestamp": utc_timestamp(),
        "droneId": drone_id,
        "anomaly": {
            "type": kind,
            "severity": severity,
            "description": snapshot.status,
        },
        "coordinates": geo_coordinates(snapshot.x, snapshot.y, bounds),
    }


# ---------------------------------------------------------------------------
# Inbound (backend -> drone)
# ---------------------------------------------------------------------------

class TargetPoint(BaseModel):
    x: float
    y: float


class Command(BaseModel):
    """Nested ``command`` object of an inbound command message."""
    model_config = ConfigDict(extra="ignore")

    action: Literal["start", "stop", "reset", "trigger_anomaly", "set_target"]
    anomaly_type: Optional[Literal["route", "altitude", "speed"]] = None
    target: Optional[TargetPoint] = None

    @model_validator(mode="after")
    def _check_parameters(self) -> "Command":
        if self.action == "trigger_anomaly" and self.anomaly_type is None:
            raise ValueError("trigger_anomaly requires anomaly_type")
        if self.action == "set_target" and self.target is None:
            raise ValueError("set_target requires target")
        return self


class CommandMessage(BaseModel):
    type: Literal["command"]
    command: Command


class ConfigUpdateMessage(BaseModel):
    type: Literal["config_update"]
    config: dict = {}


def decode_message(raw: str | bytes) -> dict | None:
    """Parse an inbound frame into a dict, or None if it is not a JSON object."""
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8", errors="replace")
    try:
        data = json.loads(raw)
    except (ValueError, RecursionError):
        # Deeply nested arrays exhaust the recursion limit
        return None
    if not isinstance(data, dict):
        return None
    return data
