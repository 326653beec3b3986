"""Sample ingestion with debounced bulk updates of the recent-sample ring.

Every accepted sample takes two independent paths:

* a standalone row insert, fired in the background and never awaited by the
  live path;
* a projection pushed into a :class:`CoalescingBuffer`, which appends the
  whole batch to the session's bounded ``recent_samples`` after a quiet
  period.

Observers get a ``vibration_data`` event for every sample regardless of
either write.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any, Generic, TypeVar

from .models import RECENT_SAMPLES_CAPACITY, ActiveSession, Sample, utc_now_iso
from .ws_models import FftResultMessage, VibrationDataEvent

if TYPE_CHECKING:
    from .history_db import HistoryDB
    from .ws_hub import ObserverHub

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


class CoalescingBuffer(Generic[T]):
    """Collects items and hands them to *sink* in one batch after *delay_s* of quiet.

    Every :meth:`push` re-arms a single timer.  At most one sink call runs at
    a time; a cycle that fires while another is in flight waits for it.  A
    failing sink call is logged and its batch discarded.
    """

    def __init__(self, sink: Callable[[list[T]], Awaitable[None]], delay_s: float) -> None:
        self._sink = sink
        self._delay_s = max(0.0, float(delay_s))
        self._pending: list[T] = []
        self._timer: asyncio.Task[None] | None = None
        self._flush_lock = asyncio.Lock()

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    @property
    def armed(self) -> bool:
        return self._timer is not None and not self._timer.done()

    def push(self, item: T) -> None:
        self._pending.append(item)
        self._cancel_timer()
        self._timer = asyncio.get_running_loop().create_task(self._fire_after_delay())

    def _cancel_timer(self) -> None:
        if self._timer is not None and not self._timer.done():
            self._timer.cancel()
        self._timer = None

    async def _fire_after_delay(self) -> None:
        await asyncio.sleep(self._delay_s)
        # A push during the flush must re-arm, not cancel, this task.
        if self._timer is asyncio.current_task():
            self._timer = None
        await self._flush_batch()

    async def _flush_batch(self) -> None:
        async with self._flush_lock:
            batch, self._pending = self._pending, []
            if not batch:
                return
            try:
                await self._sink(batch)
            except Exception:
                LOGGER.warning(
                    "Bulk update of %d buffered item(s) failed; batch discarded.",
                    len(batch),
                    exc_info=True,
                )

    async def flush(self) -> None:
        """Cancel the timer and flush pending items now, waiting for completion."""
        self._cancel_timer()
        await self._flush_batch()

    def discard(self) -> int:
        """Drop pending items without flushing; returns how many were dropped."""
        dropped = len(self._pending)
        self._pending = []
        self._cancel_timer()
        return dropped

    async def close(self) -> None:
        await self.flush()


class SampleIngestor:
    """Turns ``fft_result`` messages into persisted samples and live events."""

    def __init__(
        self,
        *,
        store: HistoryDB,
        hub: ObserverHub,
        active_session: Callable[[], ActiveSession | None],
        debounce_s: float = 1.0,
        recent_capacity: int = RECENT_SAMPLES_CAPACITY,
    ) -> None:
        self._store = store
        self._hub = hub
        self._active_session = active_session
        self._recent_capacity = max(1, int(recent_capacity))
        self._buffer: CoalescingBuffer[tuple[str, dict[str, Any]]] = CoalescingBuffer(
            self._append_recent, debounce_s
        )
        self._writes: set[asyncio.Task[None]] = set()
        self.samples_accepted = 0
        self.samples_dropped = 0
        self.write_failures = 0

    @property
    def buffer(self) -> CoalescingBuffer[tuple[str, dict[str, Any]]]:
        return self._buffer

    async def ingest(self, message: FftResultMessage) -> Sample | None:
        """Accept one device reading; returns ``None`` when no session is active."""
        active = self._active_session()
        if active is None:
            self.samples_dropped += 1
            return None
        sample = Sample(
            session_id=active.id,
            device_id=message.deviceId,
            timestamp=(
                float(message.timestamp)
                if message.timestamp is not None
                else time.time() * 1000.0
            ),
            delta_z=float(message.deltaZ),
            raw_acceleration=float(message.rawAcceleration),
            frequency=message.frequency,
            amplitude=message.amplitude,
            received_at=utc_now_iso(),
        )
        task = asyncio.get_running_loop().create_task(self._write_sample(sample))
        self._writes.add(task)
        task.add_done_callback(self._writes.discard)

        self._buffer.push((sample.session_id, sample.projection()))
        self.samples_accepted += 1

        await self._hub.broadcast(
            VibrationDataEvent(
                sessionId=sample.session_id,
                deviceId=sample.device_id,
                timestamp=sample.timestamp,
                deltaZ=sample.delta_z,
                frequency=sample.frequency,
                amplitude=sample.amplitude,
                rawAcceleration=sample.raw_acceleration,
                isActive=True,
                receivedAt=sample.received_at,
            )
        )
        return sample

    async def _write_sample(self, sample: Sample) -> None:
        try:
            await asyncio.to_thread(self._store.create_sample, sample)
        except Exception:
            self.write_failures += 1
            LOGGER.warning(
                "Failed to persist sample for session %s from %s; dropped.",
                sample.session_id,
                sample.device_id,
                exc_info=True,
            )

    async def _append_recent(self, batch: list[tuple[str, dict[str, Any]]]) -> None:
        grouped: dict[str, list[dict[str, Any]]] = {}
        for session_id, projection in batch:
            grouped.setdefault(session_id, []).append(projection)
        for session_id, projections in grouped.items():
            updated = await asyncio.to_thread(
                self._store.append_recent_samples,
                session_id,
                projections,
                self._recent_capacity,
            )
            if not updated:
                LOGGER.debug(
                    "Recent-sample update for %s skipped; session no longer exists",
                    session_id,
                )

    async def drain(self) -> None:
        """Wait until every standalone sample write scheduled so far has finished."""
        while self._writes:
            await asyncio.gather(*list(self._writes))

    async def flush(self) -> None:
        """Finish outstanding sample writes, then flush the recent-sample buffer."""
        await self.drain()
        await self._buffer.flush()

    def discard(self) -> int:
        dropped = self._buffer.discard()
        if dropped:
            LOGGER.info("Discarded %d buffered recent-sample update(s)", dropped)
        return dropped

    async def close(self) -> None:
        await self.drain()
        await self._buffer.close()
