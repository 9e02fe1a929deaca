"""Tests for EventBus."""

import pytest

from comms.event_bus import EventBus


@pytest.mark.unit
class TestEventBus:

    def test_publish_reaches_all_subscribers(self):
        bus = EventBus()
        a = bus.subscribe()
        b = bus.subscribe()
        bus.publish("telemetry", {"x": 1})
        assert a.get_nowait() == {"type": "telemetry", "data": {"x": 1}}
        assert b.get_nowait() == {"type": "telemetry", "data": {"x": 1}}

    def test_publish_without_data(self):
        bus = EventBus()
        q = bus.subscribe()
        bus.publish("ping")
        assert q.get_nowait() == {"type": "ping"}

    def test_unsubscribe(self):
        bus = EventBus()
        q = bus.subscribe()
        bus.unsubscribe(q)
        bus.unsubscribe(q)
        bus.publish("telemetry", {})
        assert q.empty()
        assert bus.subscriber_count == 0

    def test_full_queue_drops_oldest(self):
        bus = EventBus()
        q = bus.subscribe()
        for i in range(EventBus.QUEUE_SIZE + 5):
            bus.publish("telemetry", {"n": i})
        assert q.qsize() == EventBus.QUEUE_SIZE
        assert q.get_nowait()["data"]["n"] == 5
