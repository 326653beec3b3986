"""Pure spectral-analysis functions for the single-axis resonance signal.

All functions here are stateless: they take arrays (and scalar settings) and
return results without touching shared state, so they are safe to run from
worker threads and are tested in isolation.

Numeric contract: callers must not pass an empty signal (that raises
:class:`~resonancemonitor.errors.NumericDegenerateError`).  Non-finite
samples are *not* filtered; NaN propagates into magnitudes and frequencies.
Only ``q_factor`` is guaranteed to stay inside ``[q_min, q_max]``.
"""

from __future__ import annotations

import math
from collections.abc import Sequence
from dataclasses import dataclass

import numpy as np

from ..beam import BeamParameters, theoretical_frequency
from ..errors import NumericDegenerateError
from ..models import SpectrumResult

HALF_POWER_RATIO = 1.0 / math.sqrt(2.0)

_THEORY_BOOST_GAIN = 1.1
"""Reconciled bin is lifted to this multiple of the raw FFT peak."""

_THEORY_BOOST_DECAY = 0.5
"""Per-bin decay of the boost applied to neighbours of the reconciled bin."""

_TIME_SERIES_MIN_SAMPLES = 16
_TIME_SERIES_MAX_WINDOW = 32


@dataclass(frozen=True, slots=True)
class AnalyzerSettings:
    q_min: float = 1.0
    q_max: float = 100.0
    default_bandwidth_hz: float = 1.0
    coarse_bandwidth_hz: float = 0.5
    min_fft_samples: int = 8
    theory_boost_radius_bins: int = 3


DEFAULT_SETTINGS = AnalyzerSettings()


def next_power_of_two(n: int) -> int:
    if n <= 1:
        return 1
    return 1 << (int(n) - 1).bit_length()


def fft_radix2(values: np.ndarray) -> np.ndarray:
    """Iterative radix-2 Cooley–Tukey FFT.

    The butterflies of each stage are applied to all blocks at once, so the
    Python-level loop runs ``log2(N)`` times.  ``len(values)`` must be a
    power of two.
    """
    data = np.asarray(values, dtype=np.complex128).ravel()
    n = data.shape[0]
    if n == 0 or (n & (n - 1)) != 0:
        raise ValueError(f"fft_radix2 needs a power-of-two length, got {n}")
    levels = n.bit_length() - 1
    idx = np.arange(n)
    rev = np.zeros(n, dtype=np.intp)
    for bit in range(levels):
        rev |= ((idx >> bit) & 1) << (levels - 1 - bit)
    out = data[rev]
    size = 2
    while size <= n:
        half = size // 2
        twiddle = np.exp(-2j * np.pi * np.arange(half) / size)
        blocks = out.reshape(-1, size)
        even = blocks[:, :half]
        odd = blocks[:, half:] * twiddle
        out = np.concatenate((even + odd, even - odd), axis=1).reshape(n)
        size *= 2
    return out


def dominant_bin(magnitudes: np.ndarray) -> int:
    """Index of the largest non-DC bin; the first occurrence wins on ties."""
    if magnitudes.size <= 1:
        return 0
    return 1 + int(np.argmax(magnitudes[1:]))


def _interpolate_x(x0: float, x1: float, y0: float, y1: float, y: float) -> float:
    if y1 == y0:
        return x0
    return x0 + (x1 - x0) * (y - y0) / (y1 - y0)


def half_power_bandwidth(
    magnitudes: np.ndarray,
    frequencies: np.ndarray,
    peak_idx: int,
    *,
    default_hz: float,
) -> float:
    """Width of the band around *peak_idx* where magnitude stays >= peak/sqrt(2).

    Scans outward from the peak, then interpolates linearly between the last
    in-band and the first out-of-band bin on each side.  When one side never
    leaves the band (peak at a spectrum edge) *default_hz* is returned.
    """
    size = magnitudes.size
    if size < 3 or not 0 <= peak_idx < size:
        return default_hz
    peak = float(magnitudes[peak_idx])
    if not math.isfinite(peak) or peak <= 0:
        return default_hz
    threshold = peak * HALF_POWER_RATIO

    lower = peak_idx
    while lower > 0 and magnitudes[lower - 1] >= threshold:
        lower -= 1
    upper = peak_idx
    while upper < size - 1 and magnitudes[upper + 1] >= threshold:
        upper += 1
    if lower == 0 or upper == size - 1:
        return default_hz

    f_low = _interpolate_x(
        float(frequencies[lower - 1]),
        float(frequencies[lower]),
        float(magnitudes[lower - 1]),
        float(magnitudes[lower]),
        threshold,
    )
    f_high = _interpolate_x(
        float(frequencies[upper]),
        float(frequencies[upper + 1]),
        float(magnitudes[upper]),
        float(magnitudes[upper + 1]),
        threshold,
    )
    bandwidth = f_high - f_low
    if not math.isfinite(bandwidth) or bandwidth <= 0:
        return default_hz
    return bandwidth


def clamp_q(center_hz: float, bandwidth_hz: float, *, q_min: float, q_max: float) -> float:
    if bandwidth_hz <= 0 or not math.isfinite(bandwidth_hz):
        return q_min
    q = center_hz / bandwidth_hz
    if not math.isfinite(q):
        return q_min
    return min(max(q, q_min), q_max)


def _zero_crossings(values: np.ndarray) -> int:
    signs = np.sign(values - np.mean(values))
    signs = signs[signs != 0]
    if signs.size < 2:
        return 0
    return int(np.count_nonzero(signs[1:] != signs[:-1]))


def coarse_frequency_estimate(
    values: np.ndarray,
    sampling_hz: float,
    *,
    bandwidth_hz: float,
) -> tuple[float, float]:
    """Return ``(frequency_hz, peak_abs)`` from mean-crossings of a short signal."""
    peak = float(np.max(np.abs(values))) if values.size else 0.0
    if values.size < 2:
        return 0.0, peak
    elapsed_s = (values.size - 1) / sampling_hz
    crossings = _zero_crossings(values)
    if crossings == 0 or elapsed_s <= 0:
        return 0.0, peak
    return (crossings / 2.0) / elapsed_s, peak


def reconcile_with_theory(
    magnitudes: np.ndarray,
    frequencies: np.ndarray,
    theoretical_hz: float,
    *,
    radius_bins: int,
) -> tuple[np.ndarray, int] | None:
    """Reweight *magnitudes* so the bin nearest *theoretical_hz* becomes the peak.

    The target bin is lifted above the raw FFT peak and up to *radius_bins*
    neighbours receive a boost that halves with each bin of distance.
    Returns ``None`` when the prediction lies outside the analysed band.
    """
    if magnitudes.size < 2 or not math.isfinite(theoretical_hz) or theoretical_hz <= 0:
        return None
    if theoretical_hz > float(frequencies[-1]):
        return None
    target = int(np.argmin(np.abs(frequencies - theoretical_hz)))
    if target == 0:
        return None
    raw_peak = float(np.max(magnitudes[1:]))
    level = max(raw_peak * _THEORY_BOOST_GAIN, float(magnitudes[target]))
    boosted = magnitudes.copy()
    for offset in range(-radius_bins, radius_bins + 1):
        idx = target + offset
        if idx < 1 or idx >= boosted.size:
            continue
        boosted[idx] = max(float(boosted[idx]), level * _THEORY_BOOST_DECAY ** abs(offset))
    return boosted, target


def fallback_spectrum(settings: AnalyzerSettings = DEFAULT_SETTINGS) -> SpectrumResult:
    """Result used in place of an analysis that had no usable signal."""
    return SpectrumResult(
        frequencies=[],
        magnitudes=[],
        dominant_frequency=0.0,
        bandwidth=settings.default_bandwidth_hz,
        q_factor=settings.q_min,
        peak_magnitude=0.0,
        raw_dominant_frequency=0.0,
        raw_peak_magnitude=0.0,
        method="none",
    )


def analyze_spectrum(
    signal: Sequence[float] | np.ndarray,
    sampling_hz: float,
    *,
    beam: BeamParameters | None = None,
    reconcile: bool = False,
    settings: AnalyzerSettings = DEFAULT_SETTINGS,
) -> SpectrumResult:
    """Compute the magnitude spectrum, dominant frequency, bandwidth and Q.

    Parameters
    ----------
    signal:
        Time-ordered samples (at least one).
    sampling_hz:
        Sampling frequency of *signal*.
    beam:
        Optional cantilever parameters.  When given, the theoretical
        prediction is attached to the result.
    reconcile:
        When true (and *beam* is given) the spectrum is reweighted towards
        the theoretical natural frequency and that bin is reported as
        dominant.  ``raw_dominant_frequency`` always holds the literal FFT
        peak.
    settings:
        Q bounds, fallback bandwidths and the FFT threshold.
    """
    values = np.asarray(signal, dtype=np.float64).ravel()
    if values.size == 0:
        raise NumericDegenerateError("cannot analyse an empty signal")
    if not sampling_hz > 0:
        raise NumericDegenerateError(f"sampling frequency must be positive, got {sampling_hz!r}")
    theoretical = theoretical_frequency(beam) if beam is not None else None

    if values.size < settings.min_fft_samples:
        freq_hz, peak = coarse_frequency_estimate(
            values, sampling_hz, bandwidth_hz=settings.coarse_bandwidth_hz
        )
        return SpectrumResult(
            frequencies=[freq_hz],
            magnitudes=[peak],
            dominant_frequency=freq_hz,
            bandwidth=settings.coarse_bandwidth_hz,
            q_factor=clamp_q(
                freq_hz, settings.coarse_bandwidth_hz, q_min=settings.q_min, q_max=settings.q_max
            ),
            peak_magnitude=peak,
            raw_dominant_frequency=freq_hz,
            raw_peak_magnitude=peak,
            method="zero_crossing",
            theoretical=theoretical,
        )

    n_fft = next_power_of_two(values.size)
    padded = np.zeros(n_fft, dtype=np.float64)
    padded[: values.size] = values - np.mean(values)
    windowed = padded * np.hanning(n_fft)
    spectrum = fft_radix2(windowed)[: n_fft // 2 + 1]
    magnitudes = np.abs(spectrum) / (n_fft / 2.0)
    frequencies = np.arange(n_fft // 2 + 1, dtype=np.float64) * sampling_hz / n_fft

    raw_idx = dominant_bin(magnitudes)
    raw_peak = float(magnitudes[raw_idx])
    reported = magnitudes
    peak_idx = raw_idx
    reconciled = False
    if reconcile and theoretical is not None:
        outcome = reconcile_with_theory(
            magnitudes,
            frequencies,
            theoretical.natural_frequency,
            radius_bins=settings.theory_boost_radius_bins,
        )
        if outcome is not None:
            reported, peak_idx = outcome
            reconciled = True

    bandwidth = half_power_bandwidth(
        reported, frequencies, peak_idx, default_hz=settings.default_bandwidth_hz
    )
    dominant_hz = float(frequencies[peak_idx])
    return SpectrumResult(
        frequencies=frequencies.tolist(),
        magnitudes=reported.tolist(),
        dominant_frequency=dominant_hz,
        bandwidth=bandwidth,
        q_factor=clamp_q(dominant_hz, bandwidth, q_min=settings.q_min, q_max=settings.q_max),
        peak_magnitude=float(reported[peak_idx]),
        raw_dominant_frequency=float(frequencies[raw_idx]),
        raw_peak_magnitude=raw_peak,
        reconciled=reconciled,
        theoretical=theoretical,
    )


def frequency_time_series(
    signal: Sequence[float] | np.ndarray,
    sampling_hz: float,
) -> dict[str, list[float]]:
    """Coarse dominant frequency over sliding windows of the signal."""
    values = np.asarray(signal, dtype=np.float64).ravel()
    if values.size < _TIME_SERIES_MIN_SAMPLES or not sampling_hz > 0:
        return {"times": [], "frequencies": []}
    window = min(_TIME_SERIES_MAX_WINDOW, values.size // 2)
    hop = max(4, window // 4)
    times: list[float] = []
    freqs: list[float] = []
    for start in range(0, values.size - window, hop):
        freq_hz, _ = coarse_frequency_estimate(
            values[start : start + window], sampling_hz, bandwidth_hz=0.0
        )
        times.append(start / sampling_hz)
        freqs.append(freq_hz)
    return {"times": times, "frequencies": freqs}


def estimate_sampling_hz(
    timestamps_ms: Sequence[float],
    *,
    default_interval_ms: float = 50.0,
) -> float:
    """Sampling rate from the mean spacing of device timestamps (milliseconds)."""
    interval_ms = default_interval_ms
    if len(timestamps_ms) > 1:
        span = float(timestamps_ms[-1]) - float(timestamps_ms[0])
        mean_interval = span / (len(timestamps_ms) - 1)
        if math.isfinite(mean_interval) and mean_interval > 0:
            interval_ms = mean_interval
    return 1000.0 / interval_ms
