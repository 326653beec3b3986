"""Shared test helpers for the resonancemonitor test suite."""

from __future__ import annotations

import asyncio
import json
import math
import os
import time
from unittest.mock import AsyncMock

from starlette.websockets import WebSocketState

os.environ.setdefault("RESONANCE_DISABLE_AUTO_APP", "1")


async def async_wait_until(predicate, timeout_s: float = 2.0, step_s: float = 0.02) -> bool:
    """Poll *predicate* until it returns truthy, yielding to the event loop between polls."""
    deadline = time.monotonic() + timeout_s
    while time.monotonic() < deadline:
        if predicate():
            return True
        await asyncio.sleep(step_s)
    return False


def make_ws(state: WebSocketState = WebSocketState.CONNECTED) -> AsyncMock:
    """Mock WebSocket whose ``send_text`` records every payload it is given."""
    ws = AsyncMock()
    ws.client_state = state
    ws.send_text = AsyncMock()
    return ws


def sent_events(ws: AsyncMock) -> list[dict]:
    """Decoded JSON payloads passed to ``ws.send_text`` so far."""
    return [json.loads(call.args[0]) for call in ws.send_text.await_args_list]


def sent_types(ws: AsyncMock) -> list[str]:
    return [event["type"] for event in sent_events(ws)]


def sine_wave(freq_hz: float, sample_rate_hz: float, n: int, amplitude: float = 1.0) -> list[float]:
    return [amplitude * math.sin(2.0 * math.pi * freq_hz * i / sample_rate_hz) for i in range(n)]
