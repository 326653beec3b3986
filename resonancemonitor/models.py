"""Domain value types: samples, sessions, and spectrum results.

External JSON contracts (WebSocket events, HTTP responses) use camelCase
keys; the dataclasses use snake_case and convert in ``to_dict``.
"""

from __future__ import annotations

import math
from collections import deque
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .beam import BeamPrediction

RECENT_SAMPLES_CAPACITY = 100


def utc_now_iso() -> str:
    return datetime.now(UTC).isoformat()


def as_float_or_none(value: object) -> float | None:
    if value in (None, ""):
        return None
    try:
        out = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return None
    if math.isnan(out) or math.isinf(out):
        return None
    return out


@dataclass(frozen=True, slots=True)
class Sample:
    """One accelerometer reading attributed to a session.

    ``delta_z`` / ``raw_acceleration`` carry the physical signal;
    ``frequency`` / ``amplitude`` are optional per-sample results computed
    on the sending device.
    """

    session_id: str
    device_id: str
    timestamp: float
    delta_z: float
    raw_acceleration: float
    frequency: float | None = None
    amplitude: float | None = None
    received_at: str = field(default_factory=utc_now_iso)

    @property
    def signal_value(self) -> float:
        """Value fed to the spectral analyzer (raw, falling back to delta)."""
        if self.raw_acceleration:
            return self.raw_acceleration
        return self.delta_z

    def projection(self) -> dict[str, Any]:
        """Compact form kept in a session's recent-sample ring."""
        return {
            "timestamp": self.timestamp,
            "deltaZ": self.delta_z,
            "rawAcceleration": self.raw_acceleration,
            "receivedAt": self.received_at,
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            "sessionId": self.session_id,
            "deviceId": self.device_id,
            "timestamp": self.timestamp,
            "deltaZ": self.delta_z,
            "rawAcceleration": self.raw_acceleration,
            "frequency": self.frequency,
            "amplitude": self.amplitude,
            "receivedAt": self.received_at,
        }


class RecentSampleRing:
    """Bounded FIFO of sample projections; the oldest entry is evicted first."""

    __slots__ = ("_items",)

    def __init__(
        self,
        items: Iterable[dict[str, Any]] = (),
        capacity: int = RECENT_SAMPLES_CAPACITY,
    ) -> None:
        self._items: deque[dict[str, Any]] = deque(items, maxlen=max(1, int(capacity)))

    @property
    def capacity(self) -> int:
        return self._items.maxlen or RECENT_SAMPLES_CAPACITY

    def extend(self, items: Iterable[dict[str, Any]]) -> None:
        self._items.extend(items)

    def to_list(self) -> list[dict[str, Any]]:
        return list(self._items)

    def __len__(self) -> int:
        return len(self._items)


@dataclass(slots=True)
class MechanicalProperties:
    natural_period: float
    stiffness: float
    damping_coefficient: float
    q_factor: float
    rms: float
    crest_factor: float
    bandwidth: float
    resonance_magnification: float
    damping_ratio: float = 0.0
    log_decrement_damping_ratio: float = 0.0

    def to_dict(self) -> dict[str, float]:
        return {
            "naturalPeriod": self.natural_period,
            "stiffness": self.stiffness,
            "dampingCoefficient": self.damping_coefficient,
            "qFactor": self.q_factor,
            "rms": self.rms,
            "crestFactor": self.crest_factor,
            "bandwidth": self.bandwidth,
            "resonanceMagnification": self.resonance_magnification,
            "dampingRatio": self.damping_ratio,
            "logDecrementDampingRatio": self.log_decrement_damping_ratio,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> MechanicalProperties:
        def _f(key: str) -> float:
            value = as_float_or_none(data.get(key))
            return 0.0 if value is None else value

        return cls(
            natural_period=_f("naturalPeriod"),
            stiffness=_f("stiffness"),
            damping_coefficient=_f("dampingCoefficient"),
            q_factor=_f("qFactor"),
            rms=_f("rms"),
            crest_factor=_f("crestFactor"),
            bandwidth=_f("bandwidth"),
            resonance_magnification=_f("resonanceMagnification"),
            damping_ratio=_f("dampingRatio"),
            log_decrement_damping_ratio=_f("logDecrementDampingRatio"),
        )


@dataclass(slots=True)
class Session:
    id: str
    name: str
    start_time: str
    test_mass: float
    is_active: bool = True
    end_time: str | None = None
    created_at: str = field(default_factory=utc_now_iso)
    recent_samples: list[dict[str, Any]] = field(default_factory=list)
    natural_frequency: float | None = None
    peak_amplitude: float | None = None
    frequency_analysis_complete: bool = False
    mechanical_properties: MechanicalProperties | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "startTime": self.start_time,
            "endTime": self.end_time,
            "isActive": self.is_active,
            "testMass": self.test_mass,
            "createdAt": self.created_at,
            "recentSamples": list(self.recent_samples),
            "naturalFrequency": self.natural_frequency,
            "peakAmplitude": self.peak_amplitude,
            "frequencyAnalysisComplete": self.frequency_analysis_complete,
            "mechanicalProperties": (
                self.mechanical_properties.to_dict()
                if self.mechanical_properties is not None
                else None
            ),
        }


@dataclass(frozen=True, slots=True)
class ActiveSession:
    """Read-only view of the running session handed to the ingest path."""

    id: str
    name: str
    test_mass: float


@dataclass(slots=True)
class SpectrumResult:
    frequencies: list[float]
    magnitudes: list[float]
    dominant_frequency: float
    bandwidth: float
    q_factor: float
    peak_magnitude: float
    raw_dominant_frequency: float
    raw_peak_magnitude: float
    method: str = "fft"
    reconciled: bool = False
    theoretical: BeamPrediction | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "frequencies": list(self.frequencies),
            "magnitudes": list(self.magnitudes),
            "dominantFrequency": self.dominant_frequency,
            "bandwidth": self.bandwidth,
            "qFactor": self.q_factor,
            "peakMagnitude": self.peak_magnitude,
            "rawDominantFrequency": self.raw_dominant_frequency,
            "rawPeakMagnitude": self.raw_peak_magnitude,
            "method": self.method,
            "reconciled": self.reconciled,
            "theoretical": self.theoretical.to_dict() if self.theoretical is not None else None,
        }
