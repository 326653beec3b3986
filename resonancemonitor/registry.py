from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from threading import RLock
from typing import TYPE_CHECKING, Any

from .errors import ProtocolError
from .ws_models import DeviceStatusEvent, sanitize_device_id

if TYPE_CHECKING:
    from .ws_hub import ObserverHub

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class DeviceRecord:
    device_id: str
    handle: Any
    connected_at: float


class DeviceRegistry:
    """In-memory map of connected sensing devices to their connection handles.

    Nothing here is persisted; a restart starts with an empty registry and
    devices re-announce themselves with ``device_connected``.
    """

    def __init__(self, hub: ObserverHub | None = None) -> None:
        self._hub = hub
        self._lock = RLock()
        self._devices: dict[str, DeviceRecord] = {}

    async def device_connected(self, device_id: str, handle: Any) -> str:
        """Register (or re-register) *device_id* and announce it to observers."""
        clean_id = sanitize_device_id(device_id)
        if not clean_id:
            raise ProtocolError("deviceId must not be empty")
        with self._lock:
            previous = self._devices.get(clean_id)
            self._devices[clean_id] = DeviceRecord(
                device_id=clean_id,
                handle=handle,
                connected_at=time.time(),
            )
        if previous is not None and previous.handle is not handle:
            LOGGER.info("Device %s reconnected on a new connection", clean_id)
        else:
            LOGGER.info("Device connected: %s", clean_id)
        if self._hub is not None:
            await self._hub.broadcast(DeviceStatusEvent(deviceId=clean_id, status="connected"))
        return clean_id

    async def device_disconnected(self, handle: Any) -> str | None:
        """Forget the device bound to *handle*; unknown handles are a no-op."""
        with self._lock:
            device_id = next(
                (rec.device_id for rec in self._devices.values() if rec.handle is handle),
                None,
            )
            if device_id is not None:
                del self._devices[device_id]
        if device_id is None:
            return None
        LOGGER.info("Device disconnected: %s", device_id)
        if self._hub is not None:
            await self._hub.broadcast(
                DeviceStatusEvent(deviceId=device_id, status="disconnected")
            )
        return device_id

    def list_connected(self) -> list[str]:
        with self._lock:
            return list(self._devices)
