from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Any

from fastapi import WebSocket
from pydantic import BaseModel
from starlette.websockets import WebSocketState

from .json_utils import sanitize_for_json
from .ws_models import event_payload

LOGGER = logging.getLogger(__name__)

_SEND_TIMEOUT_S: float = 0.5
"""Per-connection send timeout; connections exceeding this are dropped."""

_SEND_ERROR_LOG_INTERVAL_S: float = 10.0
"""Minimum interval between logged send-error warnings to avoid log spam."""


@dataclass(slots=True)
class ObserverConnection:
    websocket: WebSocket
    send_lock: asyncio.Lock = field(default_factory=asyncio.Lock)


def encode_event(event: BaseModel | dict[str, Any]) -> str:
    """Serialise an outbound event, replacing NaN/Inf with ``null``."""
    raw = event_payload(event) if isinstance(event, BaseModel) else event
    cleaned, had_non_finite = sanitize_for_json(raw)
    if had_non_finite:
        LOGGER.debug(
            "Event %r contained NaN/Inf values; replaced with null.",
            cleaned.get("type") if isinstance(cleaned, dict) else None,
        )
    return json.dumps(cleaned, separators=(",", ":"), allow_nan=False)


class ObserverHub:
    """Fan-out of events to every open observer connection.

    Each event is encoded once per broadcast.  Sends to one connection are
    serialised by that connection's lock so events arrive in publish order;
    different connections are written concurrently and a slow or broken one
    is dropped without affecting the rest.
    """

    def __init__(self, send_timeout_s: float = _SEND_TIMEOUT_S) -> None:
        self._connections: dict[int, ObserverConnection] = {}
        self._lock = asyncio.Lock()
        self._send_timeout_s = send_timeout_s
        self._last_send_error_log_ts = 0.0
        self._send_error_log_interval_s = _SEND_ERROR_LOG_INTERVAL_S

    async def add(self, websocket: WebSocket) -> None:
        async with self._lock:
            self._connections[id(websocket)] = ObserverConnection(websocket=websocket)

    async def remove(self, websocket: WebSocket) -> None:
        async with self._lock:
            self._connections.pop(id(websocket), None)

    async def count(self) -> int:
        async with self._lock:
            return len(self._connections)

    async def _snapshot(self) -> list[ObserverConnection]:
        async with self._lock:
            return list(self._connections.values())

    async def _get(self, websocket: WebSocket) -> ObserverConnection | None:
        async with self._lock:
            return self._connections.get(id(websocket))

    async def _send_text(self, conn: ObserverConnection, text: str) -> bool:
        if conn.websocket.client_state != WebSocketState.CONNECTED:
            return True
        try:
            async with conn.send_lock:
                await asyncio.wait_for(
                    conn.websocket.send_text(text),
                    timeout=self._send_timeout_s,
                )
            return True
        except Exception:
            now = asyncio.get_running_loop().time()
            if (now - self._last_send_error_log_ts) >= self._send_error_log_interval_s:
                self._last_send_error_log_ts = now
                LOGGER.warning(
                    "Observer send failed; connection will be removed.",
                    exc_info=True,
                )
            return False

    async def broadcast(self, event: BaseModel | dict[str, Any]) -> None:
        conns = await self._snapshot()
        if not conns:
            return
        text = encode_event(event)
        results = await asyncio.gather(*(self._send_text(conn, text) for conn in conns))
        for conn, ok in zip(conns, results, strict=True):
            if not ok:
                await self.remove(conn.websocket)

    async def send(self, websocket: WebSocket, event: BaseModel | dict[str, Any]) -> None:
        """Send *event* to one observer only (replies and acknowledgements)."""
        conn = await self._get(websocket)
        if conn is None:
            # Not registered (yet); still reply on the socket it came from.
            conn = ObserverConnection(websocket=websocket)
        if not await self._send_text(conn, encode_event(event)):
            await self.remove(websocket)
