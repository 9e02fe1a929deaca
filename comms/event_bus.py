"""EventBus — in-process pub/sub for simulator events.

The engine publishes ``telemetry`` once per tick and ``anomaly_started`` /
``anomaly_cleared`` on mode changes; the simulator republishes inbound
``config_update`` messages.  Consumers (the live renderer feed in
app/routers/ws.py) subscribe and drain their own queue.

Everything runs on one asyncio event loop, so no locking is needed.
"""

from __future__ import annotations

import asyncio


class EventBus:
    """Simple pub/sub for pushing events to subscribers."""

    QUEUE_SIZE = 100

    def __init__(self) -> None:
        self._subscribers: list[asyncio.Queue] = []

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribe(self) -> asyncio.Queue:
        """Subscribe to events. Returns a Queue that receives all events."""
        q: asyncio.Queue = asyncio.Queue(maxsize=self.QUEUE_SIZE)
        self._subscribers.append(q)
        return q

    def unsubscribe(self, q: asyncio.Queue) -> None:
        try:
            self._subscribers.remove(q)
        except ValueError:
            pass

    def publish(self, event_type: str, data: dict | None = None) -> None:
        msg = {"type": event_type}
        if data is not None:
            msg["data"] = data
        for q in self._subscribers:
            try:
                q.put_nowait(msg)
            except asyncio.QueueFull:
                # Slow consumer: drop its oldest event
                q.get_nowait()
                q.put_nowait(msg)
