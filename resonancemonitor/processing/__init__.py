"""Signal processing package.

- :mod:`~resonancemonitor.processing.fft`: pure FFT / spectral-analysis functions.
- :mod:`~resonancemonitor.processing.summary`: mechanical properties derived
  from a spectrum and the test mass.
"""

from .fft import (
    AnalyzerSettings,
    analyze_spectrum,
    estimate_sampling_hz,
    fft_radix2,
    frequency_time_series,
)
from .summary import ResonanceSummary, log_decrement_damping_ratio, summarize_resonance

__all__ = [
    "AnalyzerSettings",
    "ResonanceSummary",
    "analyze_spectrum",
    "estimate_sampling_hz",
    "fft_radix2",
    "frequency_time_series",
    "log_decrement_damping_ratio",
    "summarize_resonance",
]
