"""Session lifecycle: ``NoSession → Active → Sealed``.

:class:`SessionStateMachine` owns the single active-session slot.  Every
transition (start, stop, delete) runs under one :class:`asyncio.Lock` that
is held across the persistence awaits, so two concurrent ``start`` requests
can never both observe "no active session".

Blocking store calls are pushed to worker threads with
:func:`asyncio.to_thread`; spectral analysis for the post-session summary
runs there too.
"""

from __future__ import annotations

import asyncio
import logging
import math
import uuid
from typing import TYPE_CHECKING, Any

from .beam import BeamParameters, beam_from_config
from .errors import (
    ConflictError,
    NoActiveSessionError,
    NotFoundError,
    NumericDegenerateError,
    PersistenceError,
    ResonanceMonitorError,
    ValidationError,
)
from .models import ActiveSession, Sample, Session, SpectrumResult, as_float_or_none, utc_now_iso
from .processing.fft import (
    DEFAULT_SETTINGS,
    AnalyzerSettings,
    analyze_spectrum,
    estimate_sampling_hz,
    fallback_spectrum,
    frequency_time_series,
)
from .processing.summary import ResonanceSummary, summarize_resonance
from .ws_models import (
    FrequencyDataEvent,
    SessionDeletedEvent,
    SessionStatusEvent,
    TestStartedEvent,
    TestStoppedEvent,
)

if TYPE_CHECKING:
    from .config import AnalysisConfig, BeamConfig
    from .history_db import HistoryDB
    from .ingest import SampleIngestor
    from .ws_hub import ObserverHub

LOGGER = logging.getLogger(__name__)

SPECTRUM_MIN_POINTS = 32
"""Recent samples needed before ``session_data`` includes spectrum arrays."""


def _validate_name(name: object) -> str:
    clean = str(name).strip() if name is not None else ""
    if not clean:
        raise ValidationError("Session name must not be empty")
    return clean


def _validate_mass(test_mass: object) -> float:
    try:
        mass = float(test_mass)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        raise ValidationError(f"Test mass must be a number, got {test_mass!r}") from None
    if not math.isfinite(mass) or mass <= 0:
        raise ValidationError(f"Test mass must be a positive number, got {test_mass!r}")
    return mass


def _projection_signal(projection: dict[str, Any]) -> float:
    raw = as_float_or_none(projection.get("rawAcceleration"))
    if raw:
        return raw
    delta = as_float_or_none(projection.get("deltaZ"))
    return delta if delta is not None else 0.0


def frequency_event(session_id: str, summary: ResonanceSummary) -> FrequencyDataEvent:
    props = summary.mechanical_properties
    return FrequencyDataEvent(
        sessionId=session_id,
        frequency=summary.natural_frequency,
        amplitude=summary.peak_amplitude,
        qFactor=props.q_factor,
        naturalPeriod=props.natural_period,
        stiffness=props.stiffness,
        rms=props.rms,
        crestFactor=props.crest_factor,
        bandwidth=props.bandwidth,
        dampingCoefficient=props.damping_coefficient,
        dampingRatio=props.damping_ratio,
        logDecrementDampingRatio=props.log_decrement_damping_ratio,
        resonanceMagnification=props.resonance_magnification,
    )


class SessionStateMachine:
    def __init__(
        self,
        *,
        store: HistoryDB,
        hub: ObserverHub,
        ingestor: SampleIngestor | None = None,
        analysis: AnalysisConfig | None = None,
        beam: BeamConfig | None = None,
        default_sample_interval_ms: float = 50.0,
    ) -> None:
        self._store = store
        self._hub = hub
        self._ingestor = ingestor
        self._beam_cfg = beam
        self._settings: AnalyzerSettings = (
            analysis.analyzer_settings() if analysis is not None else DEFAULT_SETTINGS
        )
        self._reconcile = bool(analysis.reconcile_with_theory) if analysis is not None else False
        self._summary_grace_s = float(analysis.summary_grace_s) if analysis is not None else 0.0
        self._default_interval_ms = float(default_sample_interval_ms)
        self._lock = asyncio.Lock()
        self._active: ActiveSession | None = None
        self._summary_tasks: set[asyncio.Task[None]] = set()

    # -- state ----------------------------------------------------------------

    def active_session(self) -> ActiveSession | None:
        return self._active

    def session_status(self, connected_devices: list[str]) -> SessionStatusEvent:
        active = self._active
        return SessionStatusEvent(
            isActive=active is not None,
            sessionId=active.id if active is not None else None,
            connectedDevices=list(connected_devices),
        )

    async def recover_stale_sessions(self) -> int:
        """Seal sessions a previous process left active; call once at startup."""
        count = await asyncio.to_thread(self._store.recover_stale_active_sessions, utc_now_iso())
        if count:
            LOGGER.warning("Sealed %d session(s) left active by a previous run", count)
        return count

    # -- transitions ----------------------------------------------------------

    async def start(self, name: object, test_mass: object = 1.0) -> Session:
        clean_name = _validate_name(name)
        mass = _validate_mass(test_mass)
        async with self._lock:
            if self._active is not None:
                raise ConflictError(
                    f"Session {self._active.name!r} is already active; stop it first"
                )
            now = utc_now_iso()
            session = Session(
                id=uuid.uuid4().hex,
                name=clean_name,
                start_time=now,
                test_mass=mass,
                is_active=True,
                created_at=now,
            )
            try:
                await asyncio.to_thread(self._store.create_session, session)
            except ResonanceMonitorError:
                raise
            except Exception as exc:
                raise PersistenceError(f"Could not create session: {exc}") from exc
            self._active = ActiveSession(id=session.id, name=session.name, test_mass=mass)
            LOGGER.info("Session started: %s (%s, test mass %.3f kg)", session.id, clean_name, mass)
            await self._hub.broadcast(
                TestStartedEvent(sessionId=session.id, sessionName=session.name, testMass=mass)
            )
        return session

    async def stop(self) -> Session:
        async with self._lock:
            active = self._active
            if active is None:
                raise NoActiveSessionError("No active session to stop")
            try:
                await asyncio.to_thread(self._store.seal_session, active.id, utc_now_iso())
            except Exception as exc:
                raise PersistenceError(f"Could not seal session {active.id}: {exc}") from exc
            self._active = None
            flushed = asyncio.Event()
            self._schedule_summary(active, flushed)
            try:
                if self._ingestor is not None:
                    await self._ingestor.flush()
            finally:
                flushed.set()
            LOGGER.info("Session stopped: %s (%s)", active.id, active.name)
            await self._hub.broadcast(TestStoppedEvent(sessionId=active.id))
            sealed = await asyncio.to_thread(self._store.get_session, active.id)
        if sealed is None:
            raise NotFoundError(f"Session {active.id} not found")
        return sealed

    async def delete(self, session_id: str) -> None:
        async with self._lock:
            try:
                deleted = await asyncio.to_thread(self._store.delete_session, session_id)
            except Exception as exc:
                raise PersistenceError(f"Could not delete session {session_id}: {exc}") from exc
            if not deleted:
                raise NotFoundError(f"Session {session_id} not found")
            if self._active is not None and self._active.id == session_id:
                LOGGER.info("Deleted the active session %s; no session is active now", session_id)
                self._active = None
                if self._ingestor is not None:
                    self._ingestor.discard()
            LOGGER.info("Session deleted: %s", session_id)
            await self._hub.broadcast(SessionDeletedEvent(sessionId=session_id, success=True))

    # -- post-session summary -------------------------------------------------

    def _schedule_summary(self, active: ActiveSession, flushed: asyncio.Event) -> None:
        task = asyncio.get_running_loop().create_task(self._run_summary(active, flushed))
        self._summary_tasks.add(task)
        task.add_done_callback(self._summary_tasks.discard)

    async def _run_summary(self, active: ActiveSession, flushed: asyncio.Event) -> None:
        # The summary reads persisted samples, so it must not start before the flush.
        await flushed.wait()
        if self._summary_grace_s > 0:
            await asyncio.sleep(self._summary_grace_s)
        try:
            summary = await asyncio.to_thread(
                self._compute_and_store, active.id, active.test_mass
            )
        except Exception:
            LOGGER.warning("Summary for session %s failed", active.id, exc_info=True)
            return
        if summary is None:
            return
        await self._hub.broadcast(frequency_event(active.id, summary))

    def _beam_parameters(self, test_mass: float) -> BeamParameters:
        if self._beam_cfg is None:
            return BeamParameters().with_test_mass(test_mass)
        return beam_from_config(self._beam_cfg, test_mass)

    def _analyze(
        self,
        signal: list[float],
        timestamps: list[float],
        test_mass: float,
    ) -> tuple[SpectrumResult, float]:
        sampling_hz = estimate_sampling_hz(
            timestamps, default_interval_ms=self._default_interval_ms
        )
        try:
            spectrum = analyze_spectrum(
                signal,
                sampling_hz,
                beam=self._beam_parameters(test_mass),
                reconcile=self._reconcile,
                settings=self._settings,
            )
        except NumericDegenerateError as exc:
            LOGGER.info("No usable signal (%s); using an empty spectrum", exc)
            spectrum = fallback_spectrum(self._settings)
        return spectrum, sampling_hz

    def _summarize_samples(
        self, samples: list[Sample], test_mass: float
    ) -> tuple[ResonanceSummary, SpectrumResult, float]:
        signal = [s.signal_value for s in samples]
        spectrum, sampling_hz = self._analyze(
            signal, [s.timestamp for s in samples], test_mass
        )
        return summarize_resonance(signal, test_mass, spectrum), spectrum, sampling_hz

    def _compute_and_store(self, session_id: str, test_mass: float) -> ResonanceSummary | None:
        samples = self._store.list_samples(session_id)
        summary, spectrum, sampling_hz = self._summarize_samples(samples, test_mass)
        stored = self._store.store_analysis(
            session_id,
            natural_frequency=summary.natural_frequency,
            peak_amplitude=summary.peak_amplitude,
            mechanical_properties=summary.mechanical_properties,
        )
        if not stored:
            return None
        LOGGER.info(
            "Session %s: f_n=%.3f Hz Q=%.2f from %d samples at %.1f Hz (%s)",
            session_id,
            summary.natural_frequency,
            summary.mechanical_properties.q_factor,
            len(samples),
            sampling_hz,
            spectrum.method,
        )
        return summary

    async def wait_for_summaries(self, timeout_s: float | None = None) -> bool:
        """Wait for scheduled summaries; returns ``False`` if any is still running."""
        tasks = list(self._summary_tasks)
        if not tasks:
            return True
        _done, pending = await asyncio.wait(tasks, timeout=timeout_s)
        return not pending

    async def close(self, timeout_s: float = 5.0) -> None:
        if not await self.wait_for_summaries(timeout_s):
            LOGGER.warning(
                "Cancelling %d unfinished session summary task(s)", len(self._summary_tasks)
            )
            for task in list(self._summary_tasks):
                task.cancel()

    # -- queries --------------------------------------------------------------

    async def list_sessions(self) -> list[Session]:
        return await asyncio.to_thread(self._store.list_sessions)

    async def recent_sessions(self, limit: int) -> list[Session]:
        return await asyncio.to_thread(self._store.list_sessions, max(0, int(limit)))

    async def get_session(self, session_id: str) -> Session:
        session = await asyncio.to_thread(self._store.get_session, session_id)
        if session is None:
            raise NotFoundError(f"Session {session_id} not found")
        return session

    async def session_samples(self, session_id: str) -> list[Sample]:
        await self.get_session(session_id)
        return await asyncio.to_thread(self._store.list_samples, session_id)

    async def session_data(self, session_id: str) -> dict[str, Any]:
        """Session, its recent samples, and frequency data (analysed lazily if sealed)."""
        session = await self.get_session(session_id)
        if not session.is_active and not session.frequency_analysis_complete:
            LOGGER.info("Analysing sealed session %s on first read", session_id)
            await asyncio.to_thread(self._compute_and_store, session_id, session.test_mass)
            session = await self.get_session(session_id)

        recent = session.recent_samples
        signal = [_projection_signal(p) for p in recent]
        timestamps = [as_float_or_none(p.get("timestamp")) or 0.0 for p in recent]
        sampling_hz = estimate_sampling_hz(
            timestamps, default_interval_ms=self._default_interval_ms
        )
        frequency_data: dict[str, Any] = {
            "naturalFrequency": session.natural_frequency or 0.0,
            "peakAmplitude": session.peak_amplitude or 0.0,
            "mechanicalProperties": (
                session.mechanical_properties.to_dict()
                if session.mechanical_properties is not None
                else None
            ),
            "frequencyTimeSeries": frequency_time_series(signal, sampling_hz),
        }
        if len(recent) >= SPECTRUM_MIN_POINTS:
            spectrum, _ = await asyncio.to_thread(
                self._analyze, signal, timestamps, session.test_mass
            )
            frequency_data["frequencies"] = spectrum.frequencies
            frequency_data["magnitudes"] = spectrum.magnitudes
        return {"session": session, "data": recent, "frequencyData": frequency_data}

    async def resonance(self, session_id: str) -> dict[str, Any]:
        """Fresh analysis over every persisted sample of a session; nothing is stored."""
        session = await self.get_session(session_id)
        samples = await asyncio.to_thread(self._store.list_samples, session_id)
        summary, spectrum, sampling_hz = await asyncio.to_thread(
            self._summarize_samples, samples, session.test_mass
        )
        return {
            "sessionId": session_id,
            "sampleCount": len(samples),
            "samplingHz": sampling_hz,
            "naturalFrequency": summary.natural_frequency,
            "peakAmplitude": summary.peak_amplitude,
            "mechanicalProperties": summary.mechanical_properties.to_dict(),
            "spectrum": spectrum.to_dict(),
        }
