"""BatchChannel — periodic HTTP telemetry with a bounded retry queue.

Every ``interval`` seconds while armed, one raw telemetry payload is POSTed
to ``{base_url}/drone-data``.  A non-2xx answer or a transport failure
puts the payload in the RetryQueue instead of retrying inline.  The queue
holds at most ``queue_size`` payloads and drops the oldest when full.

retry_failed_requests() drains the queue front to back and stops at the
first failure, putting that entry back at the front.  The periodic sender
calls it after each successful send while the queue is non-empty
(``retry_on_success``); external callers may also invoke it.

Anomaly reports go to ``{base_url}/anomalies`` and are never queued.
"""

from __future__ import annotations

import asyncio
from collections import deque
from typing import Callable, Coroutine, Iterator, Optional

import httpx
from loguru import logger

from geo.reference import DEFAULT_BOUNDS, GeoBounds
from simulation.state import TelemetrySnapshot, anomaly_severity

from .payloads import batch_anomaly_payload, batch_telemetry_payload


class RetryQueue:
    """Bounded FIFO of unsent payloads. Oldest entry goes first on overflow."""

    def __init__(self, capacity: int = 100) -> None:
        if capacity <= 0:
            raise ValueError(f"capacity must be positive, got {capacity}")
        self.capacity = capacity
        self._items: deque[dict] = deque()
        self.dropped: int = 0

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[dict]:
        return iter(self._items)

    @property
    def full(self) -> bool:
        return len(self._items) >= self.capacity

    def enqueue(self, item: dict) -> dict | None:
        """Append at the back. Returns the evicted oldest entry, if any."""
        evicted = None
        if self.full:
            evicted = self._items.popleft()
            self.dropped += 1
            logger.debug("Retry queue full, dropped oldest payload")
        self._items.append(item)
        return evicted

    def pop_front(self) -> dict | None:
        if not self._items:
            return None
        return self._items.popleft()

    def push_front(self, item: dict) -> bool:
        """Put an entry back at the front.

        If newer payloads filled the queue meanwhile, the re-inserted entry
        is the oldest one and is the one dropped.  Returns False in that case.
        """
        if self.full:
            self.dropped += 1
            return False
        self._items.appendleft(item)
        return True

    def clear(self) -> None:
        self._items.clear()


class BatchChannel:
    """Discrete request/response telemetry sender on a fixed timer."""

    TELEMETRY_PATH = "/drone-data"
    ANOMALY_PATH = "/anomalies"

    def __init__(
        self,
        base_url: str,
        snapshot_source: Callable[[], TelemetrySnapshot],
        drone_id: str = "DRONE_001",
        token: str = "",
        bounds: GeoBounds = DEFAULT_BOUNDS,
        interval: float = 1.0,
        timeout: float = 5.0,
        queue_size: int = 100,
        retry_on_success: bool = True,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._snapshot_source = snapshot_source
        self.drone_id = drone_id
        self._bounds = bounds
        self.interval = interval
        self.retry_on_success = retry_on_success
        self.queue = RetryQueue(queue_size)

        headers = {"Content-Type": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

        self._timer_task: Optional[asyncio.Task] = None
        self._inflight: set[asyncio.Task] = set()
        self._draining = False

        # Stats
        self.sent: int = 0
        self.failed: int = 0

    @property
    def active(self) -> bool:
        return self._timer_task is not None and not self._timer_task.done()

    @property
    def stats(self) -> dict:
        return {
            "active": self.active,
            "base_url": self.base_url,
            "sent": self.sent,
            "failed": self.failed,
            "queued": len(self.queue),
            "dropped": self.queue.dropped,
        }

    # --- Timer ---

    def start_sending(self) -> None:
        if self.active:
            return
        self._timer_task = asyncio.create_task(self._timer_loop())
        logger.info(f"Batch telemetry started ({self.interval:.1f}s interval)")

    def stop_sending(self) -> None:
        """Disarm the timer. In-flight requests are left to finish."""
        if not self.active:
            return
        self._timer_task.cancel()
        self._timer_task = None
        logger.info("Batch telemetry stopped")

    async def _timer_loop(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            # Sends run detached from the timer
            self.spawn(self.send_telemetry())

    def spawn(self, coro: Coroutine) -> asyncio.Task:
        """Run a request in the background, keeping a reference until done."""
        task = asyncio.create_task(coro)
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)
        return task

    # --- Requests ---

    async def send_telemetry(self) -> bool:
        """Send one telemetry payload; queue it for retry on failure."""
        payload = batch_telemetry_payload(self._snapshot_source(), self.drone_id, self._bounds)
        if not await self._post(self.TELEMETRY_PATH, payload):
            self.queue.enqueue(payload)
            return False
        if self.retry_on_success and len(self.queue) and not self._draining:
            await self.retry_failed_requests()
        return True

    async def retry_failed_requests(self) -> int:
        """Drain the retry queue until empty or the first failure.

        Returns the number of payloads delivered.
        """
        if self._draining:
            return 0
        self._draining = True
        delivered = 0
        try:
            while len(self.queue):
                payload = self.queue.pop_front()
                if not await self._post(self.TELEMETRY_PATH, payload):
                    self.queue.push_front(payload)
                    break
                delivered += 1
        finally:
            self._draining = False
        if delivered:
            logger.info(f"Retried {delivered} queued payloads, {len(self.queue)} left")
        return delivered

    async def send_anomaly_report(self, kind: str) -> bool:
        """Report an anomaly. Failures are logged, not queued."""
        payload = batch_anomaly_payload(
            kind, anomaly_severity(kind), self._snapshot_source(), self.drone_id, self._bounds,
        )
        ok = await self._post(self.ANOMALY_PATH, payload)
        if ok:
            logger.info(f"Anomaly reported: {kind}")
        else:
            logger.warning(f"Failed to report anomaly: {kind}")
        return ok

    async def aclose(self) -> None:
        self.stop_sending()
        if self._inflight:
            await asyncio.gather(*self._inflight, return_exceptions=True)
        await self._client.aclose()

    async def _post(self, path: str, payload: dict) -> bool:
        """POST a payload. True on 2xx, False on any failure."""
        try:
            resp = await self._client.post(path, json=payload)
        except httpx.TimeoutException:
            logger.warning(f"POST {path} timed out")
        except httpx.ConnectError:
            logger.warning(f"POST {path} connection refused")
        except httpx.HTTPError as e:
            logger.warning(f"POST {path} failed: {e}")
        else:
            if resp.is_success:
                self.sent += 1
                return True
            logger.warning(f"POST {path} returned {resp.status_code}")
        self.failed += 1
        return False
