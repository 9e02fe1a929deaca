"""DroneSimulator — owner of the engine, the ticker and both telemetry channels.

Everything runs on a single asyncio event loop:

  sim-tick     every 100 ms while active: engine.tick()
  stream-push  every 500 ms while active (persistent/both): push the
               current snapshot over the persistent channel
  batch timer  every 1000 ms while active (batch/both): lives inside
               BatchChannel

Channels never touch engine state.  Inbound commands from the persistent
channel come back through handle_command(), which only calls this class's
public operations.
"""

from __future__ import annotations

import asyncio
from enum import Enum
from typing import Optional

from loguru import logger

from comms.batch import BatchChannel
from comms.event_bus import EventBus
from comms.payloads import Command
from comms.streaming import StreamingChannel

from .engine import SimulationEngine
from .state import AnomalyMode, TelemetrySnapshot, anomaly_severity


class StreamingMethod(str, Enum):
    PERSISTENT = "persistent"
    BATCH = "batch"
    BOTH = "both"

    @property
    def uses_persistent(self) -> bool:
        return self in (StreamingMethod.PERSISTENT, StreamingMethod.BOTH)

    @property
    def uses_batch(self) -> bool:
        return self in (StreamingMethod.BATCH, StreamingMethod.BOTH)


def parse_streaming_method(method: StreamingMethod | str) -> StreamingMethod:
    try:
        return StreamingMethod(method)
    except ValueError:
        raise ValueError(f"Unknown streaming method: {method!r}") from None


class DroneSimulator:
    """Control surface + read surface for one simulated drone."""

    def __init__(
        self,
        engine: SimulationEngine,
        streaming: StreamingChannel,
        batch: BatchChannel,
        event_bus: EventBus | None = None,
        method: StreamingMethod | str = StreamingMethod.PERSISTENT,
        tick_interval: float = 0.1,
        stream_interval: float = 0.5,
    ) -> None:
        self.engine = engine
        self.streaming = streaming
        self.batch = batch
        self.event_bus = event_bus
        self.method = parse_streaming_method(method)
        self.tick_interval = tick_interval
        self.stream_interval = stream_interval

        self._tick_task: Optional[asyncio.Task] = None
        self._push_task: Optional[asyncio.Task] = None
        self._reports: set[asyncio.Task] = set()
        self.last_config: dict = {}

        streaming.on_command = self.handle_command
        streaming.on_config_update = self.handle_config_update

    @property
    def running(self) -> bool:
        return self._tick_task is not None and not self._tick_task.done()

    # --- Control surface ---

    def start(self) -> None:
        """Start ticking and streaming. No-op if already running."""
        if self.running:
            return
        self.engine.start()
        self._tick_task = asyncio.create_task(self._tick_loop())
        # Inbound commands arrive on the persistent link whatever the method
        self.streaming.open()
        self._start_channels()
        logger.info(f"Simulator running (streaming: {self.method.value})")

    def stop(self) -> None:
        """Halt ticking and batch sending. The persistent link stays up."""
        self._cancel_loops()
        self.batch.stop_sending()
        self.engine.stop()

    def reset(self) -> None:
        self.stop()
        self.engine.reset()

    def trigger_anomaly(self, kind: AnomalyMode | str) -> AnomalyMode:
        mode = self.engine.trigger_anomaly(kind)
        self._report_anomaly(mode.value)
        return mode

    def return_to_normal(self) -> None:
        self.engine.return_to_normal()

    def set_target(self, x: float, y: float) -> None:
        self.engine.set_target(x, y)

    def set_streaming_method(self, method: StreamingMethod | str) -> StreamingMethod:
        """Switch transport. Restarts the implied channels if running."""
        new_method = parse_streaming_method(method)
        self.batch.stop_sending()
        self._cancel(self._push_task)
        self._push_task = None
        self.method = new_method
        if self.running:
            self._start_channels()
        logger.info(f"Streaming method set to {new_method.value}")
        return new_method

    def retry_failed_requests(self) -> asyncio.Task:
        """Kick off a retry-queue drain on the batch channel."""
        return self._spawn(self.batch.retry_failed_requests())

    def rearm_streaming(self) -> None:
        self.streaming.rearm()

    # --- Inbound dispatch ---

    def handle_command(self, command: Command) -> None:
        """Apply a validated command received from the backend."""
        action = command.action
        logger.info(f"Backend command: {action}")
        if action == "start":
            self.start()
        elif action == "stop":
            self.stop()
        elif action == "reset":
            self.reset()
        elif action == "trigger_anomaly":
            self.trigger_anomaly(command.anomaly_type)
        elif action == "set_target":
            self.set_target(command.target.x, command.target.y)

    def handle_config_update(self, config: dict) -> None:
        # Accepted as-is; no simulator setting is driven by it
        self.last_config = dict(config)
        logger.info(f"Backend config update: {sorted(config)}")
        if self.event_bus is not None:
            self.event_bus.publish("config_update", self.last_config)

    # --- Read surface ---

    def snapshot(self) -> TelemetrySnapshot:
        return self.engine.snapshot()

    def history(self, limit: int | None = None) -> list[TelemetrySnapshot]:
        return self.engine.history.latest(limit)

    def trail(self) -> list[tuple[float, float]]:
        return self.engine.history.trail()

    def connection_status(self) -> dict:
        return {
            "method": self.method.value,
            "running": self.running,
            "status": self.streaming.status_label,
            "online": self.streaming.connected,
            "streaming": self.streaming.stats,
            "batch": self.batch.stats,
        }

    # --- Shutdown ---

    async def close(self) -> None:
        self.stop()
        if self._reports:
            await asyncio.gather(*self._reports, return_exceptions=True)
        await self.streaming.close()
        await self.batch.aclose()

    # --- Internals ---

    def _start_channels(self) -> None:
        if self.method.uses_persistent:
            if self._push_task is None or self._push_task.done():
                self._push_task = asyncio.create_task(self._push_loop())
        if self.method.uses_batch:
            self.batch.start_sending()

    def _report_anomaly(self, kind: str) -> None:
        if self.method.uses_persistent:
            self._spawn(self.streaming.send_anomaly_alert(kind, anomaly_severity(kind)))
        if self.method.uses_batch:
            self._spawn(self.batch.send_anomaly_report(kind))

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._reports.add(task)
        task.add_done_callback(self._reports.discard)
        return task

    async def _tick_loop(self) -> None:
        while True:
            await asyncio.sleep(self.tick_interval)
            self.engine.tick()

    async def _push_loop(self) -> None:
        while True:
            await asyncio.sleep(self.stream_interval)
            await self.streaming.send_telemetry()

    def _cancel_loops(self) -> None:
        for task in (self._tick_task, self._push_task):
            self._cancel(task)
        self._tick_task = None
        self._push_task = None

    @staticmethod
    def _cancel(task: Optional[asyncio.Task]) -> None:
        if task is not None and not task.done():
            task.cancel()
