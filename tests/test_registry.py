from __future__ import annotations

import pytest
from conftest import make_ws, sent_events

from resonancemonitor.errors import ProtocolError
from resonancemonitor.registry import DeviceRegistry
from resonancemonitor.ws_hub import ObserverHub


async def _hub_with_observer():
    hub = ObserverHub()
    observer = make_ws()
    await hub.add(observer)
    return hub, observer


@pytest.mark.asyncio
async def test_connect_registers_and_broadcasts() -> None:
    hub, observer = await _hub_with_observer()
    registry = DeviceRegistry(hub)
    handle = object()

    device_id = await registry.device_connected("esp-01", handle)

    assert device_id == "esp-01"
    assert registry.list_connected() == ["esp-01"]
    assert sent_events(observer) == [
        {"type": "device_status", "deviceId": "esp-01", "status": "connected"}
    ]


@pytest.mark.asyncio
async def test_device_id_is_sanitized() -> None:
    registry = DeviceRegistry()
    assert await registry.device_connected("  esp\x00-02\n ", object()) == "esp-02"
    assert registry.list_connected() == ["esp-02"]


@pytest.mark.asyncio
async def test_blank_device_id_rejected() -> None:
    registry = DeviceRegistry()
    with pytest.raises(ProtocolError):
        await registry.device_connected(" \x07 ", object())
    assert registry.list_connected() == []


@pytest.mark.asyncio
async def test_reconnect_rebinds_handle_without_duplicates() -> None:
    registry = DeviceRegistry()
    old, new = object(), object()
    await registry.device_connected("esp-01", old)
    await registry.device_connected("esp-01", new)

    assert registry.list_connected() == ["esp-01"]
    # The stale connection closing must not unregister the new one.
    assert await registry.device_disconnected(old) is None
    assert registry.list_connected() == ["esp-01"]


@pytest.mark.asyncio
async def test_disconnect_by_handle_broadcasts() -> None:
    hub, observer = await _hub_with_observer()
    registry = DeviceRegistry(hub)
    handle = object()
    await registry.device_connected("esp-01", handle)

    assert await registry.device_disconnected(handle) == "esp-01"

    assert registry.list_connected() == []
    assert sent_events(observer)[-1] == {
        "type": "device_status",
        "deviceId": "esp-01",
        "status": "disconnected",
    }


@pytest.mark.asyncio
async def test_disconnect_unknown_handle_is_noop() -> None:
    hub, observer = await _hub_with_observer()
    registry = DeviceRegistry(hub)
    assert await registry.device_disconnected(object()) is None
    observer.send_text.assert_not_awaited()
