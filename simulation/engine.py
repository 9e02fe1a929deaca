"""SimulationEngine — kinematic update + anomaly state machine for one drone.

The engine is the only writer of AgentState and AnomalyState.  It knows
nothing about clocks or transports: the owner (DroneSimulator) calls
tick() every 100 ms while active, and everyone else reads immutable
TelemetrySnapshots.

Tick order (strict, synchronous):
  1. anomaly step  -- decrement the budget, apply the variant's effect,
                      return to normal when the budget hits zero
  2. motion step   -- steer toward the target; step length is speed/10
                      canvas units per tick.  On arrival pick a new random
                      waypoint, but only in normal mode: during an anomaly
                      the anomaly owns the routing.
  3. clamp         -- position stays inside [10,590] x [10,390]
  4. battery step  -- 0.05% per tick spent moving
  5. snapshot      -- recorded in the history buffer and published as a
                      ``telemetry`` event

All arithmetic saturates; nothing in here raises during a tick.
"""

from __future__ import annotations

import math
import random
from typing import TYPE_CHECKING

from loguru import logger

from .history import HistoryBuffer
from .state import (
    ANOMALY_PROFILES,
    CANVAS_HEIGHT,
    CANVAS_WIDTH,
    POSITION_MAX_X,
    POSITION_MAX_Y,
    POSITION_MIN_X,
    POSITION_MIN_Y,
    STATUS_AIRBORNE,
    STATUS_LOW_BATTERY,
    STATUS_STANDBY,
    STATUS_STOPPED,
    WAYPOINT_MIN_X,
    WAYPOINT_MIN_Y,
    WAYPOINT_SPAN_X,
    WAYPOINT_SPAN_Y,
    AgentState,
    AnomalyMode,
    AnomalyState,
    TelemetrySnapshot,
    parse_anomaly_kind,
)

if TYPE_CHECKING:
    from comms.event_bus import EventBus


class SimulationEngine:
    """Owns the drone and advances it one tick at a time."""

    # Arrival threshold (canvas units)
    ARRIVE_DIST = 5.0

    # Battery cost per tick of movement (percent)
    BATTERY_DRAIN_PER_TICK = 0.05

    LOW_BATTERY_THRESHOLD = 20.0

    # Partial recovery applied by return_to_normal()
    RECOVERY_STEP = 5.0
    MAX_RECOVERY_ALTITUDE = 150.0
    MAX_RECOVERY_SPEED = 80.0

    def __init__(
        self,
        event_bus: EventBus | None = None,
        history_size: int = HistoryBuffer.DEFAULT_CAPACITY,
        rng: random.Random | None = None,
    ) -> None:
        self._event_bus = event_bus
        self._rng = rng or random.Random()
        self.history = HistoryBuffer(history_size)
        self._agent = AgentState()
        self._anomaly = AnomalyState()
        self.tick_count = 0

    # --- Read surface ---

    @property
    def agent(self) -> AgentState:
        """Live agent state. Treat as read-only outside the engine."""
        return self._agent

    @property
    def anomaly(self) -> AnomalyState:
        return self._anomaly

    @property
    def mode(self) -> AnomalyMode:
        return self._anomaly.mode

    @property
    def active(self) -> bool:
        return self._agent.active

    def snapshot(self) -> TelemetrySnapshot:
        """Capture the current state without advancing the simulation."""
        return TelemetrySnapshot.capture(self._agent, self._anomaly)

    # --- Lifecycle ---

    def start(self) -> bool:
        """Mark the drone airborne. Returns False if it already was."""
        if self._agent.active:
            return False
        self._agent.active = True
        self._agent.status = STATUS_AIRBORNE
        logger.info("Simulation started")
        return True

    def stop(self) -> None:
        self._agent.active = False
        self._agent.status = STATUS_STOPPED
        logger.info("Simulation stopped")

    def reset(self) -> None:
        """Stop and restore construction defaults, clearing history."""
        self.stop()
        self._agent = AgentState()
        self._anomaly = AnomalyState()
        self.history.clear()
        self.tick_count = 0
        logger.info("Simulation reset")

    # --- Control ---

    def set_target(self, x: float, y: float) -> None:
        self._agent.target_x = float(x)
        self._agent.target_y = float(y)

    def trigger_anomaly(self, kind: AnomalyMode | str) -> AnomalyMode:
        """Enter an anomaly mode with a fresh duration budget.

        Raises ValueError for unknown kinds (or ``normal``).
        """
        mode = parse_anomaly_kind(kind)
        profile = ANOMALY_PROFILES[mode]

        if self._anomaly.is_normal:
            # Remember where we were heading so recovery resumes the route
            self._anomaly.recovery_x = self._agent.target_x
            self._anomaly.recovery_y = self._agent.target_y

        self._anomaly.mode = mode
        self._anomaly.remaining_ticks = profile.duration
        self._agent.status = profile.status

        if mode is AnomalyMode.ROUTE:
            # Full canvas, not the normal waypoint sub-rectangle
            self._agent.target_x = self._rng.random() * CANVAS_WIDTH
            self._agent.target_y = self._rng.random() * CANVAS_HEIGHT

        logger.warning(f"Anomaly triggered: {mode.value} ({profile.duration} ticks, {profile.severity})")
        self._publish("anomaly_started", {
            "kind": mode.value,
            "severity": profile.severity,
            "duration": profile.duration,
        })
        return mode

    def return_to_normal(self) -> None:
        previous = self._anomaly.mode
        self._anomaly.mode = AnomalyMode.NORMAL
        self._anomaly.remaining_ticks = 0

        agent = self._agent
        agent.target_x = self._anomaly.recovery_x
        agent.target_y = self._anomaly.recovery_y
        agent.altitude = min(self.MAX_RECOVERY_ALTITUDE, agent.altitude + self.RECOVERY_STEP)
        agent.speed = min(self.MAX_RECOVERY_SPEED, agent.speed + self.RECOVERY_STEP)

        if agent.battery < self.LOW_BATTERY_THRESHOLD:
            agent.status = STATUS_LOW_BATTERY
        elif agent.active:
            agent.status = STATUS_AIRBORNE
        else:
            agent.status = STATUS_STANDBY

        if previous is not AnomalyMode.NORMAL:
            logger.info(f"Anomaly cleared: {previous.value}")
            self._publish("anomaly_cleared", {"kind": previous.value})

    # --- Tick ---

    def tick(self) -> TelemetrySnapshot:
        """Advance one step and return the snapshot it produced."""
        self._anomaly_step()
        distance = self._motion_step()
        self._clamp_position()
        if distance > self.ARRIVE_DIST:
            self._agent.battery = max(0.0, self._agent.battery - self.BATTERY_DRAIN_PER_TICK)

        self.tick_count += 1
        snapshot = self.snapshot()
        self.history.record(snapshot)
        self._publish("telemetry", snapshot.to_dict())
        return snapshot

    def _anomaly_step(self) -> None:
        anomaly = self._anomaly
        if anomaly.remaining_ticks <= 0:
            return
        anomaly.remaining_ticks -= 1
        profile = ANOMALY_PROFILES.get(anomaly.mode)
        if profile is not None and profile.step is not None:
            profile.step(self._agent)
        if anomaly.remaining_ticks == 0:
            self.return_to_normal()

    def _motion_step(self) -> float:
        """Move toward the target. Returns the distance measured before moving."""
        agent = self._agent
        dx = agent.target_x - agent.x
        dy = agent.target_y - agent.y
        distance = math.sqrt(dx * dx + dy * dy)

        if distance > self.ARRIVE_DIST:
            # Degrees, 0 = +x, clockwise on screen (canvas y points down)
            agent.heading = math.degrees(math.atan2(dy, dx))
            step = agent.speed / 10.0
            agent.x += (dx / distance) * step
            agent.y += (dy / distance) * step
        elif self._anomaly.is_normal:
            self._pick_waypoint()
        return distance

    def _pick_waypoint(self) -> None:
        self._agent.target_x = WAYPOINT_MIN_X + self._rng.random() * WAYPOINT_SPAN_X
        self._agent.target_y = WAYPOINT_MIN_Y + self._rng.random() * WAYPOINT_SPAN_Y

    def _clamp_position(self) -> None:
        agent = self._agent
        agent.x = max(POSITION_MIN_X, min(POSITION_MAX_X, agent.x))
        agent.y = max(POSITION_MIN_Y, min(POSITION_MAX_Y, agent.y))

    def _publish(self, event_type: str, data: dict) -> None:
        if self._event_bus is not None:
            self._event_bus.publish(event_type, data)
