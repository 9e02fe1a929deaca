"""Shared fakes for simulator and channel tests.

FakeWebSocket stands in for a websockets client connection; FakeBackend is
an httpx.MockTransport handler that records requests and can be told to
fail.  Async code under test is driven with asyncio.run() from sync tests.
"""

from __future__ import annotations

import asyncio
import json
import random

import httpx
import pytest


class FakeWebSocket:
    """In-memory websocket: records sends, yields fed messages."""

    def __init__(self) -> None:
        self.sent: list[dict] = []
        self.closed = False
        self._inbox: asyncio.Queue = asyncio.Queue()

    async def send(self, data: str) -> None:
        if self.closed:
            raise OSError("socket closed")
        self.sent.append(json.loads(data))

    async def close(self) -> None:
        self.closed = True
        self._inbox.put_nowait(None)

    def feed(self, message) -> None:
        """Queue an inbound frame (dicts are JSON-encoded)."""
        if isinstance(message, dict):
            message = json.dumps(message)
        self._inbox.put_nowait(message)

    def drop(self) -> None:
        """Simulate the peer closing the connection."""
        self.closed = True
        self._inbox.put_nowait(None)

    def of_type(self, msg_type: str) -> list[dict]:
        return [m for m in self.sent if m.get("type") == msg_type]

    def __aiter__(self):
        return self

    async def __anext__(self):
        msg = await self._inbox.get()
        if msg is None:
            raise StopAsyncIteration
        return msg


class FakeConnector:
    """Connector callable for StreamingChannel. Fails while ``fail`` is set."""

    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.calls = 0
        self.sockets: list[FakeWebSocket] = []

    async def __call__(self, url: str) -> FakeWebSocket:
        self.calls += 1
        if self.fail:
            raise ConnectionRefusedError(f"connection to {url} refused")
        ws = FakeWebSocket()
        self.sockets.append(ws)
        return ws

    @property
    def last(self) -> FakeWebSocket:
        return self.sockets[-1]


class RecordingSleep:
    """Replacement for asyncio.sleep that records delays and returns at once."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


class FakeBackend:
    """httpx.MockTransport handler recording every request."""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.status_code = 200
        self.refuse = False

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if self.refuse:
            raise httpx.ConnectError("connection refused", request=request)
        self.requests.append(request)
        return httpx.Response(self.status_code, json={"ok": self.status_code < 400})

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)

    def bodies(self, path_suffix: str = "") -> list[dict]:
        return [
            json.loads(r.content) for r in self.requests
            if r.url.path.endswith(path_suffix)
        ]


class FixedRandom:
    """rng stub: random() always returns the same value."""

    def __init__(self, value: float) -> None:
        self.value = value

    def random(self) -> float:
        return self.value


async def settle(rounds: int = 50) -> None:
    """Let pending tasks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture
def connector() -> FakeConnector:
    return FakeConnector()


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def rng() -> random.Random:
    return random.Random(42)


@pytest.fixture
def fixed_random():
    """Factory: fixed_random(0.1) -> rng whose random() is always 0.1."""
    return FixedRandom


@pytest.fixture
def drain():
    """Coroutine that yields to the loop until pending tasks have run."""
    return settle


@pytest.fixture
def failing_connector() -> FakeConnector:
    return FakeConnector(fail=True)
