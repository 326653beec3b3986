"""Tests for the /api/health endpoint."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import MagicMock

import pytest

from resonancemonitor.app import build_runtime
from resonancemonitor.config import load_config
from resonancemonitor.routes import create_router


def _health_endpoint(router):
    for route in router.routes:
        if getattr(route, "path", "") == "/api/health":
            return route.endpoint
    raise AssertionError("Route not found: /api/health")


def test_routes_registered():
    router = create_router(MagicMock())
    routes = {r.path: r.methods for r in router.routes if hasattr(r, "methods")}
    assert "GET" in routes["/api/health"]
    assert "GET" in routes["/api/sessions"]
    assert "DELETE" in routes["/api/sessions/{session_id}"]
    assert "GET" in routes["/api/export/{session_id}"]
    ws_paths = {r.path for r in router.routes if not hasattr(r, "methods")}
    assert {"/ws/device", "/ws/web"} <= ws_paths


@pytest.mark.asyncio
async def test_health_reports_session_and_counters(tmp_path: Path) -> None:
    runtime = build_runtime(load_config(tmp_path / "config.yaml"))
    endpoint = _health_endpoint(create_router(runtime))

    idle = await endpoint()
    assert idle.status == "ok"
    assert idle.sessionActive is False
    assert idle.activeSessionId is None
    assert idle.observers == 0

    session = await runtime.sessions.start("healthy")
    await runtime.registry.device_connected("esp-01", object())
    busy = await endpoint()
    assert busy.sessionActive is True
    assert busy.activeSessionId == session.id
    assert busy.connectedDevices == ["esp-01"]
    assert busy.samplesAccepted == 0

    await runtime.ingestor.close()
    await runtime.sessions.close()
    runtime.store.close()
