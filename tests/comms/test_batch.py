"""Tests for BatchChannel and RetryQueue."""

from __future__ import annotations

import asyncio

import httpx
import pytest

from comms.batch import BatchChannel, RetryQueue
from simulation.engine import SimulationEngine

BASE_URL = "http://backend.test/api"


def _channel(engine: SimulationEngine, transport, **kwargs) -> BatchChannel:
    return BatchChannel(
        BASE_URL,
        engine.snapshot,
        drone_id="DRONE_TEST",
        transport=transport,
        **kwargs,
    )


class ScriptedBackend:
    """Answers with the given status codes in order, then 200."""

    def __init__(self, statuses: list[int]) -> None:
        self.statuses = list(statuses)
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        status = self.statuses.pop(0) if self.statuses else 200
        return httpx.Response(status)


@pytest.mark.unit
class TestRetryQueue:

    def test_fifo(self):
        q = RetryQueue()
        q.enqueue({"n": 1})
        q.enqueue({"n": 2})
        assert q.pop_front() == {"n": 1}
        assert q.pop_front() == {"n": 2}
        assert q.pop_front() is None

    def test_default_capacity(self):
        assert RetryQueue().capacity == 100

    def test_overflow_drops_oldest(self):
        q = RetryQueue(capacity=100)
        for i in range(101):
            evicted = q.enqueue({"n": i})
        assert len(q) == 100
        assert evicted == {"n": 0}
        assert q.dropped == 1
        assert next(iter(q)) == {"n": 1}

    def test_push_front(self):
        q = RetryQueue(capacity=3)
        q.enqueue({"n": 2})
        assert q.push_front({"n": 1}) is True
        assert [e["n"] for e in q] == [1, 2]

    def test_push_front_on_full_queue_drops_entry(self):
        q = RetryQueue(capacity=2)
        q.enqueue({"n": 2})
        q.enqueue({"n": 3})
        assert q.push_front({"n": 1}) is False
        assert [e["n"] for e in q] == [2, 3]
        assert q.dropped == 1

    def test_rejects_non_positive_capacity(self):
        with pytest.raises(ValueError):
            RetryQueue(0)


@pytest.mark.unit
class TestSendTelemetry:

    def test_success(self, backend):
        engine = SimulationEngine()

        async def run():
            ch = _channel(engine, backend.transport)
            ok = await ch.send_telemetry()
            await ch.aclose()
            return ok, ch

        ok, ch = asyncio.run(run())
        assert ok is True
        assert ch.sent == 1
        assert len(ch.queue) == 0
        request = backend.requests[0]
        assert request.method == "POST"
        assert request.url.path == "/api/drone-data"

    def test_payload_uses_raw_values(self, backend):
        engine = SimulationEngine()
        engine.tick()
        engine.agent.altitude = 99.37

        async def run():
            ch = _channel(engine, backend.transport)
            await ch.send_telemetry()
            await ch.aclose()

        asyncio.run(run())
        body = backend.bodies("/drone-data")[0]
        assert body["droneId"] == "DRONE_TEST"
        assert body["telemetry"]["altitude"] == pytest.approx(99.37)
        assert body["telemetry"]["battery"] == pytest.approx(99.95)
        assert body["coordinates"]["x"] == pytest.approx(56.0)
        assert "latitude" in body["coordinates"]
        assert body["status"]["mode"] == "normal"

    def test_bearer_token(self, backend):
        engine = SimulationEngine()

        async def run():
            ch = _channel(engine, backend.transport, token="s3cret")
            await ch.send_telemetry()
            await ch.aclose()

        asyncio.run(run())
        headers = backend.requests[0].headers
        assert headers["Authorization"] == "Bearer s3cret"
        assert headers["Content-Type"] == "application/json"

    def test_no_auth_header_without_token(self, backend):
        engine = SimulationEngine()

        async def run():
            ch = _channel(engine, backend.transport)
            await ch.send_telemetry()
            await ch.aclose()

        asyncio.run(run())
        assert "Authorization" not in backend.requests[0].headers

    def test_http_error_status_queues_payload(self, backend):
        engine = SimulationEngine()
        backend.status_code = 500

        async def run():
            ch = _channel(engine, backend.transport)
            ok = await ch.send_telemetry()
            await ch.aclose()
            return ok, ch

        ok, ch = asyncio.run(run())
        assert ok is False
        assert len(ch.queue) == 1
        assert ch.failed == 1

    def test_connect_error_queues_payload(self, backend):
        engine = SimulationEngine()
        backend.refuse = True

        async def run():
            ch = _channel(engine, backend.transport)
            for _ in range(3):
                await ch.send_telemetry()
            await ch.aclose()
            return ch

        ch = asyncio.run(run())
        assert len(ch.queue) == 3
        assert ch.stats["queued"] == 3


@pytest.mark.unit
class TestRetryDrain:

    def test_success_drains_queue_in_order(self, backend):
        engine = SimulationEngine()

        async def run():
            ch = _channel(engine, backend.transport)
            backend.refuse = True
            for _ in range(3):
                engine.tick()
                await ch.send_telemetry()
            backend.refuse = False
            engine.tick()
            await ch.send_telemetry()
            await ch.aclose()
            return ch

        ch = asyncio.run(run())
        assert len(ch.queue) == 0
        xs = [b["coordinates"]["x"] for b in backend.bodies("/drone-data")]
        # the fresh payload goes first, then the backlog oldest to newest
        assert xs == pytest.approx([74.0, 56.0, 62.0, 68.0])

    def test_drain_stops_at_first_failure(self):
        engine = SimulationEngine()
        scripted = ScriptedBackend([500, 500, 500, 200, 503])

        async def run():
            ch = _channel(engine, httpx.MockTransport(scripted), retry_on_success=False)
            for _ in range(3):
                engine.tick()
                await ch.send_telemetry()
            delivered = await ch.retry_failed_requests()
            await ch.aclose()
            return ch, delivered

        ch, delivered = asyncio.run(run())
        assert delivered == 1
        assert len(ch.queue) == 2
        # the failed entry went back to the front
        assert next(iter(ch.queue))["coordinates"]["x"] == pytest.approx(62.0)

    def test_no_drain_when_disabled(self, backend):
        engine = SimulationEngine()

        async def run():
            ch = _channel(engine, backend.transport, retry_on_success=False)
            backend.refuse = True
            await ch.send_telemetry()
            backend.refuse = False
            await ch.send_telemetry()
            await ch.aclose()
            return ch

        ch = asyncio.run(run())
        assert len(ch.queue) == 1
        assert len(backend.requests) == 1

    def test_retry_on_empty_queue(self, backend):
        engine = SimulationEngine()

        async def run():
            ch = _channel(engine, backend.transport)
            delivered = await ch.retry_failed_requests()
            await ch.aclose()
            return delivered

        assert asyncio.run(run()) == 0
        assert backend.requests == []

    def test_queue_bounded(self, backend):
        engine = SimulationEngine()
        backend.refuse = True

        async def run():
            ch = _channel(engine, backend.transport, queue_size=5)
            for _ in range(8):
                await ch.send_telemetry()
            await ch.aclose()
            return ch

        ch = asyncio.run(run())
        assert len(ch.queue) == 5
        assert ch.queue.dropped == 3


@pytest.mark.unit
class TestAnomalyReport:

    def test_report_posted(self, backend):
        engine = SimulationEngine()
        engine.trigger_anomaly("altitude")

        async def run():
            ch = _channel(engine, backend.transport)
            ok = await ch.send_anomaly_report("altitude")
            await ch.aclose()
            return ok

        assert asyncio.run(run()) is True
        assert backend.requests[0].url.path == "/api/anomalies"
        body = backend.bodies("/anomalies")[0]
        assert body["anomaly"]["type"] == "altitude"
        assert body["anomaly"]["severity"] == "high"
        assert body["anomaly"]["description"] == "ANOMALY: Altitude Loss"
        assert body["droneId"] == "DRONE_TEST"

    def test_failed_report_not_queued(self, backend):
        engine = SimulationEngine()
        backend.status_code = 502

        async def run():
            ch = _channel(engine, backend.transport)
            ok = await ch.send_anomaly_report("speed")
            await ch.aclose()
            return ok, ch

        ok, ch = asyncio.run(run())
        assert ok is False
        assert len(ch.queue) == 0


@pytest.mark.unit
class TestTimer:

    def test_start_and_stop_idempotent(self, backend):
        engine = SimulationEngine()

        async def run():
            ch = _channel(engine, backend.transport, interval=0.01)
            ch.start_sending()
            first = ch._timer_task
            ch.start_sending()
            assert ch._timer_task is first
            assert ch.active
            ch.stop_sending()
            ch.stop_sending()
            assert not ch.active
            await ch.aclose()
        asyncio.run(run())

    def test_timer_sends_periodically(self, backend):
        engine = SimulationEngine()

        async def run():
            ch = _channel(engine, backend.transport, interval=0.01)
            ch.start_sending()
            await asyncio.sleep(0.1)
            await ch.aclose()

        asyncio.run(run())
        assert len(backend.requests) >= 2

    def test_no_sends_after_stop(self, backend):
        engine = SimulationEngine()

        async def run():
            ch = _channel(engine, backend.transport, interval=0.01)
            ch.start_sending()
            await asyncio.sleep(0.05)
            ch.stop_sending()
            await asyncio.sleep(0.02)
            count = len(backend.requests)
            await asyncio.sleep(0.05)
            assert len(backend.requests) == count
            await ch.aclose()
        asyncio.run(run())
