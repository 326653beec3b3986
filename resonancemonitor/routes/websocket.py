"""WebSocket endpoints for sensing devices and observer clients.

Devices connect on ``/ws/device`` and stream ``fft_result`` readings;
observers connect on ``/ws/web`` to control sessions and receive events.
Every inbound frame is decoded once; a frame that fails to decode is
answered with an ``error`` event and the connection stays open.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from ..errors import ProtocolError, ResonanceMonitorError
from ..ws_hub import encode_event
from ..ws_models import (
    DeleteSessionMessage,
    DeviceConnectedMessage,
    DeviceListEvent,
    DeviceStatusEvent,
    ErrorEvent,
    FftResultMessage,
    GetDeviceListMessage,
    GetSessionDataMessage,
    GetSessionsMessage,
    SessionDataEvent,
    SessionDeletedEvent,
    SessionsListEvent,
    StartTestMessage,
    StopTestMessage,
    parse_device_message,
    parse_observer_message,
)

if TYPE_CHECKING:
    from ..app import RuntimeState

LOGGER = logging.getLogger(__name__)

ObserverHandler = Callable[["RuntimeState", WebSocket, Any], Awaitable[None]]


# -- observer handlers --------------------------------------------------------


async def _handle_get_device_list(
    state: RuntimeState, ws: WebSocket, _message: GetDeviceListMessage
) -> None:
    devices = state.registry.list_connected()
    await state.hub.send(ws, DeviceListEvent(devices=devices))
    for device_id in devices:
        await state.hub.send(ws, DeviceStatusEvent(deviceId=device_id, status="connected"))


async def _handle_get_sessions(
    state: RuntimeState, ws: WebSocket, _message: GetSessionsMessage
) -> None:
    sessions = await state.sessions.list_sessions()
    await state.hub.send(ws, SessionsListEvent(sessions=[s.to_dict() for s in sessions]))


async def _handle_get_session_data(
    state: RuntimeState, ws: WebSocket, message: GetSessionDataMessage
) -> None:
    try:
        result = await state.sessions.session_data(message.sessionId)
    except ResonanceMonitorError as exc:
        await state.hub.send(ws, ErrorEvent(message=str(exc)))
        return
    await state.hub.send(
        ws,
        SessionDataEvent(
            sessionId=message.sessionId,
            data=result["data"],
            frequencyData=result["frequencyData"],
        ),
    )


async def _handle_start_test(
    state: RuntimeState, ws: WebSocket, message: StartTestMessage
) -> None:
    # Success is acknowledged by the ``test_started`` broadcast.
    try:
        await state.sessions.start(message.sessionName, message.testMass)
    except ResonanceMonitorError as exc:
        LOGGER.info("start_test rejected: %s", exc)
        await state.hub.send(ws, ErrorEvent(message=str(exc)))


async def _handle_stop_test(
    state: RuntimeState, ws: WebSocket, _message: StopTestMessage
) -> None:
    try:
        await state.sessions.stop()
    except ResonanceMonitorError as exc:
        LOGGER.info("stop_test rejected: %s", exc)
        await state.hub.send(ws, ErrorEvent(message=str(exc)))


async def _handle_delete_session(
    state: RuntimeState, ws: WebSocket, message: DeleteSessionMessage
) -> None:
    try:
        await state.sessions.delete(message.sessionId)
    except ResonanceMonitorError as exc:
        LOGGER.info("delete_session %s rejected: %s", message.sessionId, exc)
        await state.hub.send(
            ws,
            SessionDeletedEvent(sessionId=message.sessionId, success=False, error=str(exc)),
        )


_OBSERVER_HANDLERS: dict[type, ObserverHandler] = {
    GetDeviceListMessage: _handle_get_device_list,
    GetSessionsMessage: _handle_get_sessions,
    GetSessionDataMessage: _handle_get_session_data,
    StartTestMessage: _handle_start_test,
    StopTestMessage: _handle_stop_test,
    DeleteSessionMessage: _handle_delete_session,
}


async def handle_observer_text(state: RuntimeState, ws: WebSocket, text: str | bytes) -> None:
    """Decode and dispatch one observer frame; every failure is answered on *ws*."""
    try:
        message = parse_observer_message(text)
    except ProtocolError as exc:
        LOGGER.debug("Rejected observer message: %s", exc)
        await state.hub.send(ws, ErrorEvent(message=str(exc)))
        return
    handler = _OBSERVER_HANDLERS[type(message)]
    try:
        await handler(state, ws, message)
    except Exception:
        LOGGER.warning("Observer request %s failed", type(message).__name__, exc_info=True)
        await state.hub.send(ws, ErrorEvent(message="Internal error while handling request"))


# -- device handling ----------------------------------------------------------


async def _send_device_error(ws: WebSocket, message: str) -> None:
    try:
        await ws.send_text(encode_event(ErrorEvent(message=message)))
    except Exception:
        LOGGER.debug("Could not send error to device connection", exc_info=True)


async def handle_device_text(state: RuntimeState, ws: WebSocket, text: str | bytes) -> None:
    """Decode and dispatch one device frame; per-sample failures are logged only."""
    try:
        message = parse_device_message(text)
    except ProtocolError as exc:
        LOGGER.debug("Rejected device message: %s", exc)
        await _send_device_error(ws, str(exc))
        return
    if isinstance(message, DeviceConnectedMessage):
        try:
            await state.registry.device_connected(message.deviceId, ws)
        except ProtocolError as exc:
            await _send_device_error(ws, str(exc))
    elif isinstance(message, FftResultMessage):
        try:
            await state.ingestor.ingest(message)
        except Exception:
            LOGGER.warning("Dropping sample from %s", message.deviceId, exc_info=True)


def create_websocket_routes(state: RuntimeState) -> APIRouter:
    router = APIRouter()

    @router.websocket("/ws/device")
    async def device_endpoint(ws: WebSocket) -> None:
        await ws.accept()
        LOGGER.debug("Device connection opened")
        try:
            while True:
                text = await ws.receive_text()
                await handle_device_text(state, ws, text)
        except WebSocketDisconnect:
            LOGGER.debug("Device connection closed")
        except Exception:
            LOGGER.warning("Device WebSocket handler error", exc_info=True)
        finally:
            # Runs to completion even when the connection task is cancelled.
            await asyncio.shield(state.registry.device_disconnected(ws))

    @router.websocket("/ws/web")
    async def observer_endpoint(ws: WebSocket) -> None:
        await ws.accept()
        await state.hub.add(ws)
        try:
            await state.hub.send(
                ws, state.sessions.session_status(state.registry.list_connected())
            )
            while True:
                text = await ws.receive_text()
                await handle_observer_text(state, ws, text)
        except WebSocketDisconnect:
            LOGGER.debug("Observer disconnected")
        except Exception:
            LOGGER.warning("Observer WebSocket handler error", exc_info=True)
        finally:
            await state.hub.remove(ws)

    return router
