from __future__ import annotations

import json

import pytest

from resonancemonitor.errors import ProtocolError
from resonancemonitor.ws_models import (
    DeleteSessionMessage,
    DeviceConnectedMessage,
    FftResultMessage,
    FrequencyDataEvent,
    GetDeviceListMessage,
    SessionDeletedEvent,
    StartTestMessage,
    event_payload,
    parse_device_message,
    parse_observer_message,
)


def test_device_connected_parses() -> None:
    msg = parse_device_message('{"type": "device_connected", "deviceId": "esp-01"}')
    assert isinstance(msg, DeviceConnectedMessage)
    assert msg.deviceId == "esp-01"


def test_fft_result_defaults_and_extras() -> None:
    msg = parse_device_message(
        {"type": "fft_result", "deviceId": "esp-01", "deltaZ": 0.4, "firmware": "1.2"}
    )
    assert isinstance(msg, FftResultMessage)
    assert msg.timestamp is None
    assert msg.deltaZ == 0.4
    assert msg.rawAcceleration == 0.0
    assert msg.frequency is None


@pytest.mark.parametrize("key", ["rawAcceleration", "raw_acceleration"])
def test_fft_result_accepts_both_raw_acceleration_spellings(key: str) -> None:
    msg = parse_device_message(
        json.dumps({"type": "fft_result", "deviceId": "esp-01", "timestamp": 5, key: 9.7})
    )
    assert msg.rawAcceleration == 9.7
    assert msg.timestamp == 5.0


def test_bytes_frames_are_decoded() -> None:
    msg = parse_observer_message(b'{"type": "get_device_list"}')
    assert isinstance(msg, GetDeviceListMessage)


def test_start_test_defaults() -> None:
    msg = parse_observer_message({"type": "start_test"})
    assert isinstance(msg, StartTestMessage)
    assert msg.sessionName == ""
    assert msg.testMass == 1.0


def test_delete_session_requires_id() -> None:
    assert isinstance(
        parse_observer_message({"type": "delete_session", "sessionId": "abc"}),
        DeleteSessionMessage,
    )
    with pytest.raises(ProtocolError, match="sessionId"):
        parse_observer_message({"type": "delete_session"})


@pytest.mark.parametrize(
    ("raw", "message"),
    [
        ("{not json", "Message is not valid JSON"),
        ("[1, 2]", "Message must be a JSON object"),
        ('{"deviceId": "x"}', "Message is missing a 'type' field"),
        ('{"type": "reboot"}', "Unknown message type: 'reboot'"),
    ],
)
def test_malformed_device_frames_raise_protocol_error(raw: str, message: str) -> None:
    with pytest.raises(ProtocolError) as excinfo:
        parse_device_message(raw)
    assert str(excinfo.value) == message


def test_device_message_types_are_not_observer_messages() -> None:
    with pytest.raises(ProtocolError, match="Unknown message type"):
        parse_observer_message({"type": "fft_result", "deviceId": "esp-01"})


def test_non_numeric_field_rejected() -> None:
    with pytest.raises(ProtocolError, match="testMass"):
        parse_observer_message({"type": "start_test", "testMass": "heavy"})


def test_protocol_error_is_a_value_error() -> None:
    with pytest.raises(ValueError):
        parse_device_message("")


def test_empty_device_id_rejected() -> None:
    with pytest.raises(ProtocolError, match="deviceId"):
        parse_device_message({"type": "device_connected", "deviceId": ""})


def test_event_payload_keeps_nulls_except_for_session_deleted() -> None:
    freq = event_payload(
        FrequencyDataEvent(
            sessionId="s1",
            frequency=None,
            amplitude=None,
            qFactor=1.0,
            naturalPeriod=0.0,
            stiffness=0.0,
            rms=0.0,
            crestFactor=0.0,
            bandwidth=1.0,
        )
    )
    assert freq["type"] == "frequency_data"
    assert freq["frequency"] is None

    failed = event_payload(SessionDeletedEvent(sessionId="s1", success=False, error="missing"))
    assert failed == {
        "type": "session_deleted",
        "sessionId": "s1",
        "success": False,
        "error": "missing",
    }


@pytest.mark.parametrize("msg_type", ["device_connected", "fft_result"])
def test_device_id_control_characters_are_stripped(msg_type: str) -> None:
    msg = parse_device_message({"type": msg_type, "deviceId": " esp\x07-01\x7f "})
    assert msg.deviceId == "esp-01"


def test_device_id_of_only_control_characters_rejected() -> None:
    with pytest.raises(ProtocolError, match="deviceId"):
        parse_device_message({"type": "fft_result", "deviceId": "\x01\x02"})
