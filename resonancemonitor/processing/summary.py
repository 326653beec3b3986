"""Post-session resonance summary.

Turns a :class:`~resonancemonitor.models.SpectrumResult` and the session test
mass into the persisted mechanical properties of a single-degree-of-freedom
oscillator.
"""

from __future__ import annotations

import math
from collections.abc import Sequence
from dataclasses import dataclass

import numpy as np

from ..models import MechanicalProperties, SpectrumResult


@dataclass(frozen=True, slots=True)
class ResonanceSummary:
    natural_frequency: float
    peak_amplitude: float
    mechanical_properties: MechanicalProperties


def _rms(values: np.ndarray) -> float:
    if values.size == 0:
        return 0.0
    return float(np.sqrt(np.mean(np.square(values))))


LOG_DECREMENT_MIN_PEAK_FRACTION = 0.1


def log_decrement_damping_ratio(
    signal: Sequence[float] | np.ndarray,
    *,
    min_peak_fraction: float = LOG_DECREMENT_MIN_PEAK_FRACTION,
) -> float:
    """Damping ratio from the decay of successive positive peaks.

    Peaks are strict local maxima above ``min_peak_fraction`` of the largest
    absolute sample. The mean logarithmic decrement ``delta`` between
    neighbouring peaks gives ``zeta = delta / sqrt(4 pi^2 + delta^2)``,
    clamped to ``[0, 1]``. Fewer than two peaks yields 0.
    """
    values = np.asarray(signal, dtype=np.float64).ravel()
    if values.size < 3 or not np.all(np.isfinite(values)):
        return 0.0
    threshold = float(np.max(np.abs(values))) * min_peak_fraction
    inner = values[1:-1]
    is_peak = (inner > values[:-2]) & (inner > values[2:]) & (inner > threshold)
    peaks = inner[is_peak]
    if peaks.size < 2:
        return 0.0
    decrement = float(np.mean(np.log(peaks[:-1] / peaks[1:])))
    zeta = decrement / math.sqrt(4.0 * math.pi**2 + decrement**2)
    return min(1.0, max(0.0, zeta))


def summarize_resonance(
    signal: Sequence[float] | np.ndarray,
    test_mass: float,
    spectrum: SpectrumResult,
) -> ResonanceSummary:
    """Derive period, stiffness, damping and signal statistics.

    ``stiffness = m (2 pi f)^2``, ``zeta = 1 / (2 Q)`` and
    ``c = 2 zeta sqrt(k m)``.  A zero natural frequency yields zero period
    and stiffness instead of dividing by zero.  The peak amplitude is the
    largest absolute sample, independent of spectral windowing.
    """
    values = np.asarray(signal, dtype=np.float64).ravel()
    freq_hz = float(spectrum.dominant_frequency)
    q_factor = float(spectrum.q_factor)
    mass = float(test_mass)

    if freq_hz > 0 and math.isfinite(freq_hz):
        natural_period = 1.0 / freq_hz
        stiffness = mass * (2.0 * math.pi * freq_hz) ** 2
    else:
        natural_period = 0.0
        stiffness = 0.0
    damping_ratio = 1.0 / (2.0 * q_factor) if q_factor > 0 else 0.0
    damping_coefficient = (
        2.0 * damping_ratio * math.sqrt(stiffness * mass) if stiffness > 0 and mass > 0 else 0.0
    )

    rms = _rms(values)
    peak = float(np.max(np.abs(values))) if values.size else 0.0
    crest_factor = peak / rms if rms > 0 else 0.0

    return ResonanceSummary(
        natural_frequency=freq_hz,
        peak_amplitude=peak,
        mechanical_properties=MechanicalProperties(
            natural_period=natural_period,
            stiffness=stiffness,
            damping_coefficient=damping_coefficient,
            q_factor=q_factor,
            rms=rms,
            crest_factor=crest_factor,
            bandwidth=float(spectrum.bandwidth),
            resonance_magnification=q_factor,
            damping_ratio=damping_ratio,
            log_decrement_damping_ratio=log_decrement_damping_ratio(values),
        ),
    )
