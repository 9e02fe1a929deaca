"""StreamingChannel — persistent WebSocket link to the telemetry backend.

Connection lifecycle:

    DISCONNECTED --connect()--> CONNECTED
    CONNECTED --peer close / network error--> DISCONNECTED (reconnect scheduled)
    (backoff elapses) --> RECONNECTING --connect()--> CONNECTED | ERROR

Reconnect backoff is linear: attempt N waits ``reconnect_base_delay * N``
seconds (3, 6, 9, 12, 15 by default).  The attempt counter is bumped
before the wait and reset on every successful open.  Once
``max_reconnect_attempts`` consecutive attempts have failed the channel is
*exhausted*: no further automatic attempts are made until the owner calls
open() or rearm().

Outbound frames are JSON (see comms/payloads.py).  Inbound frames are
dispatched on ``type``; anything malformed is logged and dropped without
touching the connection state.
"""

from __future__ import annotations

import asyncio
import json
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

import websockets
from loguru import logger
from pydantic import ValidationError
from websockets.exceptions import ConnectionClosed, WebSocketException

from geo.reference import DEFAULT_BOUNDS, GeoBounds
from simulation.state import TelemetrySnapshot, utc_timestamp

from .payloads import (
    Command,
    CommandMessage,
    ConfigUpdateMessage,
    anomaly_alert_message,
    connection_message,
    decode_message,
    new_session_id,
    pong_message,
    telemetry_message,
)

Connector = Callable[[str], Awaitable[Any]]


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    ERROR = "error"


class StreamingChannel:
    """Long-lived bidirectional telemetry connection with auto-reconnect."""

    def __init__(
        self,
        url: str,
        snapshot_source: Callable[[], TelemetrySnapshot],
        drone_id: str = "DRONE_001",
        token: str = "",
        bounds: GeoBounds = DEFAULT_BOUNDS,
        max_reconnect_attempts: int = 5,
        reconnect_base_delay: float = 3.0,
        connector: Connector | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.url = url
        self._snapshot_source = snapshot_source
        self.drone_id = drone_id
        self._token = token
        self._bounds = bounds
        self.max_reconnect_attempts = max_reconnect_attempts
        self.reconnect_base_delay = reconnect_base_delay
        self._connector = connector or self._open_websocket
        self._sleep = sleep

        self.session_id = new_session_id()
        self.started_at = utc_timestamp()

        self._ws = None
        self._state = ConnectionState.DISCONNECTED
        self._closing = False
        self._exhausted = False
        self.reconnect_attempts = 0

        self._connect_task: Optional[asyncio.Task] = None
        self._reconnect_task: Optional[asyncio.Task] = None
        self._reader_task: Optional[asyncio.Task] = None

        # Inbound dispatch targets, wired by the owner
        self.on_command: Callable[[Command], None] | None = None
        self.on_config_update: Callable[[dict], None] | None = None

        # Stats
        self.messages_sent: int = 0
        self.messages_received: int = 0
        self.last_error: str = ""

    # --- Properties ---

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED and self._ws is not None

    @property
    def exhausted(self) -> bool:
        """True once the reconnect budget is spent and nothing is pending."""
        return self._exhausted

    @property
    def status_label(self) -> str:
        return self._state.value.upper()

    @property
    def stats(self) -> dict:
        return {
            "state": self._state.value,
            "status": self.status_label,
            "online": self.connected,
            "url": self.url,
            "session_id": self.session_id,
            "reconnect_attempts": self.reconnect_attempts,
            "max_reconnect_attempts": self.max_reconnect_attempts,
            "exhausted": self._exhausted,
            "messages_sent": self.messages_sent,
            "messages_received": self.messages_received,
            "last_error": self.last_error,
        }

    # --- Lifecycle ---

    def open(self) -> None:
        """Start connecting in the background unless already up or pending.

        An exhausted channel is re-armed first.
        """
        if self.connected or self._pending():
            return
        if self._exhausted:
            logger.info("Streaming channel re-armed after exhausting reconnects")
        self._exhausted = False
        self.reconnect_attempts = 0
        self._closing = False
        self._connect_task = asyncio.create_task(self.connect())

    def rearm(self) -> None:
        """Reset the reconnect budget and try again now."""
        self._cancel(self._reconnect_task)
        self._reconnect_task = None
        self._exhausted = False
        self.reconnect_attempts = 0
        self.open()

    async def connect(self) -> bool:
        """Make one connection attempt. Schedules a reconnect on failure."""
        self._closing = False
        try:
            ws = await self._connector(self.url)
        except (OSError, asyncio.TimeoutError, WebSocketException) as e:
            self._state = ConnectionState.ERROR
            self.last_error = str(e) or type(e).__name__
            logger.warning(f"Streaming connection to {self.url} failed: {self.last_error}")
            self._schedule_reconnect()
            return False

        self._ws = ws
        self._state = ConnectionState.CONNECTED
        self._exhausted = False
        self.reconnect_attempts = 0
        logger.info(f"Streaming channel connected to {self.url}")

        await self._send(connection_message(self.drone_id, self.session_id, self.started_at))
        self._reader_task = asyncio.create_task(self._receive_loop(ws))
        return True

    async def close(self) -> None:
        """Owner-initiated shutdown. No reconnect follows."""
        self._closing = True
        for task in (self._reconnect_task, self._connect_task):
            self._cancel(task)
        self._reconnect_task = None
        self._connect_task = None

        ws, self._ws = self._ws, None
        if ws is not None:
            try:
                await ws.close()
            except (OSError, WebSocketException) as e:
                logger.debug(f"Error while closing streaming socket: {e}")

        reader, self._reader_task = self._reader_task, None
        if reader is not None and reader is not asyncio.current_task():
            self._cancel(reader)
            await asyncio.gather(reader, return_exceptions=True)

        self._state = ConnectionState.DISCONNECTED
        logger.info("Streaming channel closed")

    # --- Outbound ---

    async def send_telemetry(self) -> bool:
        """Push the current snapshot. Returns False when not connected."""
        if not self.connected:
            return False
        message = telemetry_message(self._snapshot_source(), self.drone_id, self.session_id, self._bounds)
        return await self._send(message)

    async def send_anomaly_alert(self, kind: str, severity: str = "medium") -> bool:
        if not self.connected:
            return False
        message = anomaly_alert_message(kind, severity, self._snapshot_source(), self.drone_id, self._bounds)
        return await self._send(message)

    async def _send(self, message: dict) -> bool:
        ws = self._ws
        if ws is None:
            return False
        try:
            await ws.send(json.dumps(message))
        except (ConnectionClosed, OSError) as e:
            # The receive loop notices the close and schedules the reconnect
            logger.warning(f"Streaming send failed: {e}")
            return False
        self.messages_sent += 1
        return True

    # --- Inbound ---

    async def handle_message(self, raw: str | bytes) -> None:
        """Dispatch one inbound frame by its ``type`` discriminator."""
        self.messages_received += 1
        data = decode_message(raw)
        if data is None:
            logger.warning("Dropping malformed inbound message")
            return

        msg_type = data.get("type")
        if msg_type == "command":
            try:
                msg = CommandMessage.model_validate(data)
            except ValidationError as e:
                logger.warning(f"Dropping invalid command ({e.error_count()} errors): {data.get('command')}")
                return
            self._dispatch(self.on_command, msg.command)
        elif msg_type == "config_update":
            try:
                msg = ConfigUpdateMessage.model_validate(data)
            except ValidationError:
                logger.warning("Dropping invalid config_update")
                return
            self._dispatch(self.on_config_update, msg.config)
        elif msg_type == "ping":
            await self._send(pong_message())
        else:
            logger.info(f"Unknown message type: {msg_type}")

    def _dispatch(self, callback: Callable | None, payload: Any) -> None:
        if callback is None:
            return
        try:
            callback(payload)
        except Exception:
            logger.exception("Inbound handler failed")

    async def _receive_loop(self, ws) -> None:
        try:
            async for raw in ws:
                try:
                    await self.handle_message(raw)
                except Exception:
                    logger.exception("Dropping inbound frame that broke its handler")
        except ConnectionClosed as e:
            self.last_error = str(e)

        if ws is not self._ws:
            return
        self._ws = None
        self._state = ConnectionState.DISCONNECTED
        if self._closing:
            return
        logger.warning("Streaming connection closed by peer")
        self._schedule_reconnect()

    # --- Reconnect ---

    def _pending(self) -> bool:
        for task in (self._connect_task, self._reconnect_task):
            if task is not None and not task.done():
                return True
        return False

    def _schedule_reconnect(self) -> None:
        if self._closing:
            return
        if self.reconnect_attempts >= self.max_reconnect_attempts:
            self._exhausted = True
            logger.error(
                f"Streaming channel gave up after {self.reconnect_attempts} reconnect attempts"
            )
            return
        self.reconnect_attempts += 1
        delay = self.reconnect_base_delay * self.reconnect_attempts
        logger.info(
            f"Reconnect {self.reconnect_attempts}/{self.max_reconnect_attempts} in {delay:.1f}s"
        )
        self._reconnect_task = asyncio.create_task(self._reconnect_after(delay))

    async def _reconnect_after(self, delay: float) -> None:
        await self._sleep(delay)
        self._state = ConnectionState.RECONNECTING
        await self.connect()

    async def _open_websocket(self, url: str):
        headers = {"Authorization": f"Bearer {self._token}"} if self._token else None
        return await websockets.connect(url, additional_headers=headers)

    @staticmethod
    def _cancel(task: Optional[asyncio.Task]) -> None:
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
