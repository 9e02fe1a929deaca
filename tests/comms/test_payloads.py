"""Tests for comms.payloads — outbound builders and inbound validation."""

from __future__ import annotations

import re

import pytest
from pydantic import ValidationError

from comms.payloads import (
    Command,
    CommandMessage,
    ConfigUpdateMessage,
    anomaly_alert_message,
    batch_telemetry_payload,
    connection_message,
    decode_message,
    new_session_id,
    pong_message,
    telemetry_message,
)
from simulation.state import AnomalyMode, TelemetrySnapshot


@pytest.fixture
def snapshot() -> TelemetrySnapshot:
    return TelemetrySnapshot(
        timestamp="2024-01-01T00:00:00Z",
        x=123.456,
        y=78.94,
        altitude=87.6,
        speed=41.2,
        heading=-33.7,
        battery=64.55,
        status="ANOMALY: Speed Loss",
        active=True,
        mode=AnomalyMode.SPEED,
        target_x=301.7,
        target_y=122.2,
        anomaly_ticks_remaining=12,
    )


class TestSessionId:

    @pytest.mark.unit
    def test_format(self):
        assert re.fullmatch(r"session_\d+_[0-9a-f]{9}", new_session_id())

    @pytest.mark.unit
    def test_unique(self):
        assert new_session_id() != new_session_id()


class TestStreamingFrames:

    @pytest.mark.unit
    def test_telemetry_rounding(self, snapshot):
        msg = telemetry_message(snapshot, "DRONE_001", "session_1_abc")
        drone = msg["drone"]
        assert drone["coordinates"]["x"] == pytest.approx(123.5)
        assert drone["coordinates"]["y"] == pytest.approx(78.9)
        assert drone["telemetry"] == {"altitude": 88, "speed": 41, "direction": -34, "battery": 65}
        assert drone["target"] == {"x": 302, "y": 122}

    @pytest.mark.unit
    def test_telemetry_status_block(self, snapshot):
        msg = telemetry_message(snapshot, "DRONE_001", "session_1_abc")
        assert msg["drone"]["status"] == {
            "mode": "speed",
            "statusText": "ANOMALY: Speed Loss",
            "isActive": True,
            "hasAnomaly": True,
        }
        assert msg["metadata"] == {"source": "drone-simulator", "version": "1.0.0", "dataType": "real-time"}
        assert msg["timestamp"].endswith("Z")

    @pytest.mark.unit
    def test_connection_announcement(self):
        msg = connection_message("DRONE_001", "session_1_abc", "2024-01-01T00:00:00Z")
        assert msg["type"] == "connection"
        assert msg["drone"] == {
            "id": "DRONE_001",
            "name": "Simulation Drone",
            "type": "quadcopter",
            "firmware": "2.1.4",
        }
        assert msg["session"]["startTime"] == "2024-01-01T00:00:00Z"

    @pytest.mark.unit
    def test_anomaly_alert_keeps_raw_coordinates(self, snapshot):
        msg = anomaly_alert_message("speed", "low", snapshot, "DRONE_001")
        assert msg["type"] == "anomaly_alert"
        assert msg["anomaly"]["description"] == "ANOMALY: Speed Loss"
        assert msg["coordinates"]["x"] == 123.456

    @pytest.mark.unit
    def test_pong(self):
        assert pong_message()["type"] == "pong"


class TestBatchPayloads:

    @pytest.mark.unit
    def test_telemetry_unrounded(self, snapshot):
        body = batch_telemetry_payload(snapshot, "DRONE_001")
        assert body["telemetry"]["battery"] == 64.55
        assert body["telemetry"]["direction"] == -33.7
        assert body["coordinates"]["y"] == 78.94
        assert "hasAnomaly" not in body["status"]


class TestInbound:

    @pytest.mark.unit
    def test_decode_object(self):
        assert decode_message('{"type": "ping"}') == {"type": "ping"}
        assert decode_message(b'{"type": "ping"}') == {"type": "ping"}

    @pytest.mark.unit
    def test_decode_rejects_non_objects(self):
        assert decode_message("not json") is None
        assert decode_message("[1]") is None
        assert decode_message('"ping"') is None

    @pytest.mark.unit
    def test_decode_rejects_deep_nesting(self):
        assert decode_message("[" * 100000 + "]" * 100000) is None

    @pytest.mark.unit
    def test_simple_commands(self):
        for action in ("start", "stop", "reset"):
            assert Command(action=action).action == action

    @pytest.mark.unit
    def test_unknown_action_rejected(self):
        with pytest.raises(ValidationError):
            Command(action="self_destruct")

    @pytest.mark.unit
    def test_trigger_requires_anomaly_type(self):
        with pytest.raises(ValidationError):
            Command(action="trigger_anomaly")
        with pytest.raises(ValidationError):
            Command(action="trigger_anomaly", anomaly_type="normal")

    @pytest.mark.unit
    def test_set_target_requires_target(self):
        with pytest.raises(ValidationError):
            Command(action="set_target")
        cmd = Command(action="set_target", target={"x": 1, "y": 2})
        assert (cmd.target.x, cmd.target.y) == (1.0, 2.0)

    @pytest.mark.unit
    def test_command_message_extra_fields_ignored(self):
        msg = CommandMessage.model_validate({
            "type": "command",
            "command": {"action": "start", "issued_by": "ops"},
            "id": 7,
        })
        assert msg.command.action == "start"

    @pytest.mark.unit
    def test_config_update_defaults_to_empty(self):
        assert ConfigUpdateMessage.model_validate({"type": "config_update"}).config == {}
