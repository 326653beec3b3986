"""Pydantic models for the WebSocket message contract.

Inbound messages (device → server, observer → server) are discriminated
unions on ``type`` and are decoded exactly once at the connection boundary
via :func:`parse_device_message` / :func:`parse_observer_message`.  Anything
that fails to decode raises :class:`~resonancemonitor.errors.ProtocolError`.

Outbound events are plain models; :func:`event_payload` dumps them to the
camelCase dict that goes on the wire.
"""

from __future__ import annotations

import json
from typing import Annotated, Any, Literal

from pydantic import AfterValidator, AliasChoices, BaseModel, ConfigDict, Field, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from .errors import ProtocolError

# -- inbound: devices ---------------------------------------------------------


def sanitize_device_id(device_id: str) -> str:
    # Strip control characters (U+0000 to U+001F, U+007F)
    clean = "".join(c for c in str(device_id) if ord(c) >= 0x20 and ord(c) != 0x7F)
    return clean.strip()


def _clean_device_id(value: str) -> str:
    clean = sanitize_device_id(value)
    if not clean:
        raise ValueError("deviceId must not be empty")
    return clean


DeviceId = Annotated[str, AfterValidator(_clean_device_id)]


class DeviceConnectedMessage(BaseModel):
    model_config = ConfigDict(extra="ignore")

    type: Literal["device_connected"]
    deviceId: DeviceId


class FftResultMessage(BaseModel):
    """One accelerometer reading plus the device's own per-sample FFT result."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    type: Literal["fft_result"]
    deviceId: DeviceId
    timestamp: float | None = None
    deltaZ: float = 0.0
    frequency: float | None = None
    amplitude: float | None = None
    rawAcceleration: float = Field(
        default=0.0,
        validation_alias=AliasChoices("raw_acceleration", "rawAcceleration"),
    )


DeviceMessage = Annotated[
    DeviceConnectedMessage | FftResultMessage,
    Field(discriminator="type"),
]

# -- inbound: observers -------------------------------------------------------


class GetDeviceListMessage(BaseModel):
    type: Literal["get_device_list"]


class GetSessionsMessage(BaseModel):
    type: Literal["get_sessions"]


class GetSessionDataMessage(BaseModel):
    type: Literal["get_session_data"]
    sessionId: str


class StartTestMessage(BaseModel):
    type: Literal["start_test"]
    sessionName: str = ""
    testMass: float = 1.0


class StopTestMessage(BaseModel):
    type: Literal["stop_test"]


class DeleteSessionMessage(BaseModel):
    type: Literal["delete_session"]
    sessionId: str


ObserverMessage = Annotated[
    GetDeviceListMessage
    | GetSessionsMessage
    | GetSessionDataMessage
    | StartTestMessage
    | StopTestMessage
    | DeleteSessionMessage,
    Field(discriminator="type"),
]

_DEVICE_ADAPTER: TypeAdapter[Any] = TypeAdapter(DeviceMessage)
_OBSERVER_ADAPTER: TypeAdapter[Any] = TypeAdapter(ObserverMessage)


def _describe(exc: PydanticValidationError) -> str:
    first = exc.errors()[0] if exc.errors() else None
    if first is None:
        return "Invalid message"
    if first.get("type") == "union_tag_invalid":
        tag = (first.get("ctx") or {}).get("tag")
        return f"Unknown message type: {tag!r}"
    if first.get("type") == "union_tag_not_found":
        return "Message is missing a 'type' field"
    loc = ".".join(str(part) for part in first.get("loc", ()))
    return f"Invalid message field {loc!r}: {first.get('msg')}" if loc else str(first.get("msg"))


def _decode(raw: str | bytes | dict[str, Any], adapter: TypeAdapter[Any]) -> Any:
    data: Any = raw
    if isinstance(raw, (str, bytes)):
        try:
            data = json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise ProtocolError("Message is not valid JSON") from exc
    if not isinstance(data, dict):
        raise ProtocolError("Message must be a JSON object")
    try:
        return adapter.validate_python(data)
    except PydanticValidationError as exc:
        raise ProtocolError(_describe(exc)) from exc


def parse_device_message(
    raw: str | bytes | dict[str, Any],
) -> DeviceConnectedMessage | FftResultMessage:
    return _decode(raw, _DEVICE_ADAPTER)


def parse_observer_message(raw: str | bytes | dict[str, Any]) -> BaseModel:
    return _decode(raw, _OBSERVER_ADAPTER)


# -- outbound -----------------------------------------------------------------


class SessionStatusEvent(BaseModel):
    type: Literal["session_status"] = "session_status"
    isActive: bool
    sessionId: str | None = None
    connectedDevices: list[str] = []


class DeviceStatusEvent(BaseModel):
    type: Literal["device_status"] = "device_status"
    deviceId: str
    status: Literal["connected", "disconnected"]


class DeviceListEvent(BaseModel):
    type: Literal["device_list"] = "device_list"
    devices: list[str] = []


class TestStartedEvent(BaseModel):
    __test__ = False

    type: Literal["test_started"] = "test_started"
    sessionId: str
    sessionName: str
    testMass: float


class TestStoppedEvent(BaseModel):
    __test__ = False

    type: Literal["test_stopped"] = "test_stopped"
    sessionId: str


class SessionsListEvent(BaseModel):
    type: Literal["sessions_list"] = "sessions_list"
    sessions: list[dict[str, Any]] = []


class SessionDataEvent(BaseModel):
    type: Literal["session_data"] = "session_data"
    sessionId: str
    data: list[dict[str, Any]] = []
    frequencyData: dict[str, Any] = {}


class VibrationDataEvent(BaseModel):
    type: Literal["vibration_data"] = "vibration_data"
    sessionId: str
    deviceId: str
    timestamp: float
    deltaZ: float
    frequency: float | None = None
    amplitude: float | None = None
    rawAcceleration: float
    isActive: bool = True
    receivedAt: str | None = None


class FrequencyDataEvent(BaseModel):
    type: Literal["frequency_data"] = "frequency_data"
    sessionId: str
    frequency: float | None
    amplitude: float | None
    qFactor: float
    naturalPeriod: float
    stiffness: float
    rms: float
    crestFactor: float
    bandwidth: float
    dampingCoefficient: float = 0.0
    dampingRatio: float = 0.0
    logDecrementDampingRatio: float = 0.0
    resonanceMagnification: float = 0.0


class SessionDeletedEvent(BaseModel):
    type: Literal["session_deleted"] = "session_deleted"
    sessionId: str
    success: bool
    error: str | None = None


class ErrorEvent(BaseModel):
    type: Literal["error"] = "error"
    message: str


def event_payload(event: BaseModel) -> dict[str, Any]:
    """Wire dict for *event*; ``error`` is omitted from successful deletions."""
    return event.model_dump(mode="python", exclude_none=isinstance(event, SessionDeletedEvent))
