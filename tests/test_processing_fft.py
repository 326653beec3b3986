"""Unit tests for resonancemonitor.processing.fft pure spectral functions.

The functions are stateless, so they are exercised directly with small,
deterministic synthetic signals.
"""

from __future__ import annotations

import math

import numpy as np
import pytest
from conftest import sine_wave

from resonancemonitor.beam import BeamParameters
from resonancemonitor.errors import NumericDegenerateError
from resonancemonitor.processing.fft import (
    AnalyzerSettings,
    analyze_spectrum,
    clamp_q,
    estimate_sampling_hz,
    fallback_spectrum,
    fft_radix2,
    frequency_time_series,
    half_power_bandwidth,
    next_power_of_two,
)


def _damped_sine(freq_hz: float, zeta: float, sample_rate_hz: float, n: int) -> list[float]:
    omega = 2.0 * math.pi * freq_hz
    omega_d = omega * math.sqrt(1.0 - zeta**2)
    return [
        math.exp(-zeta * omega * t) * math.sin(omega_d * t)
        for t in (i / sample_rate_hz for i in range(n))
    ]


class TestRadix2:
    def test_matches_numpy_fft(self) -> None:
        rng = np.random.default_rng(7)
        data = rng.normal(size=64) + 1j * rng.normal(size=64)
        np.testing.assert_allclose(fft_radix2(data), np.fft.fft(data), atol=1e-9)

    def test_real_input_matches_numpy(self) -> None:
        data = np.array(sine_wave(3.0, 32.0, 256))
        np.testing.assert_allclose(fft_radix2(data), np.fft.fft(data), atol=1e-9)

    def test_length_one_is_identity(self) -> None:
        np.testing.assert_allclose(fft_radix2(np.array([2.5])), np.array([2.5 + 0j]))

    @pytest.mark.parametrize("n", [0, 3, 12, 100])
    def test_rejects_non_power_of_two(self, n: int) -> None:
        with pytest.raises(ValueError, match="power-of-two"):
            fft_radix2(np.zeros(n))


@pytest.mark.parametrize(
    ("n", "expected"),
    [(0, 1), (1, 1), (2, 2), (5, 8), (8, 8), (100, 128), (1025, 2048)],
)
def test_next_power_of_two(n: int, expected: int) -> None:
    assert next_power_of_two(n) == expected


class TestAnalyzeSpectrum:
    @pytest.mark.parametrize(
        ("freq_hz", "sample_rate_hz", "n"),
        [(12.5, 100.0, 64), (7.3, 50.0, 100), (5.0, 100.0, 200), (30.0, 128.0, 256)],
    )
    def test_pure_sine_peak_within_one_bin(
        self, freq_hz: float, sample_rate_hz: float, n: int
    ) -> None:
        result = analyze_spectrum(sine_wave(freq_hz, sample_rate_hz, n), sample_rate_hz)
        bin_width = sample_rate_hz / next_power_of_two(n)
        assert result.method == "fft"
        assert abs(result.raw_dominant_frequency - freq_hz) <= bin_width
        assert result.dominant_frequency == result.raw_dominant_frequency
        assert result.reconciled is False

    def test_spectrum_shape_and_bin_frequencies(self) -> None:
        result = analyze_spectrum(sine_wave(5.0, 100.0, 100), 100.0)
        assert len(result.frequencies) == 128 // 2 + 1
        assert len(result.magnitudes) == len(result.frequencies)
        assert result.frequencies[0] == 0.0
        assert result.frequencies[1] == pytest.approx(100.0 / 128)
        assert result.frequencies[-1] == pytest.approx(50.0)

    def test_dc_offset_is_not_reported_as_peak(self) -> None:
        signal = [9.81 + v for v in sine_wave(8.0, 64.0, 128, amplitude=0.2)]
        result = analyze_spectrum(signal, 64.0)
        assert result.dominant_frequency == pytest.approx(8.0, abs=64.0 / 128)

    def test_bandwidth_grows_with_damping(self) -> None:
        results = [
            analyze_spectrum(_damped_sine(5.0, zeta, 100.0, 1024), 100.0)
            for zeta in (0.01, 0.05, 0.15)
        ]
        bandwidths = [r.bandwidth for r in results]
        q_factors = [r.q_factor for r in results]
        assert bandwidths[0] <= bandwidths[1] <= bandwidths[2]
        assert bandwidths[0] < bandwidths[2]
        assert q_factors[0] >= q_factors[1] >= q_factors[2]

    def test_q_clamped_to_upper_bound_for_long_pure_tone(self) -> None:
        result = analyze_spectrum(sine_wave(5.0, 100.0, 8192), 100.0)
        assert result.q_factor == 100.0

    def test_q_respects_configured_bounds(self) -> None:
        settings = AnalyzerSettings(q_min=2.0, q_max=20.0)
        result = analyze_spectrum(sine_wave(5.0, 100.0, 8192), 100.0, settings=settings)
        assert result.q_factor == 20.0

    def test_short_signal_uses_zero_crossing_estimate(self) -> None:
        result = analyze_spectrum([1.0, -1.0, 1.0, -1.0, 1.0], 10.0)
        assert result.method == "zero_crossing"
        assert result.dominant_frequency == pytest.approx(5.0)
        assert result.frequencies == [pytest.approx(5.0)]
        assert result.magnitudes == [pytest.approx(1.0)]
        assert result.bandwidth == 0.5
        assert result.q_factor == pytest.approx(10.0)

    def test_single_sample_reports_zero_frequency(self) -> None:
        result = analyze_spectrum([3.0], 20.0)
        assert result.dominant_frequency == 0.0
        assert result.peak_magnitude == 3.0
        assert result.q_factor == 1.0

    def test_empty_signal_raises(self) -> None:
        with pytest.raises(NumericDegenerateError):
            analyze_spectrum([], 100.0)

    @pytest.mark.parametrize("sampling_hz", [0.0, -5.0, float("nan")])
    def test_non_positive_sampling_rate_raises(self, sampling_hz: float) -> None:
        with pytest.raises(NumericDegenerateError):
            analyze_spectrum([1.0, 2.0, 3.0], sampling_hz)

    def test_nan_input_propagates_but_q_stays_bounded(self) -> None:
        signal = sine_wave(5.0, 100.0, 64)
        signal[10] = float("nan")
        result = analyze_spectrum(signal, 100.0)
        assert any(math.isnan(m) for m in result.magnitudes)
        assert 1.0 <= result.q_factor <= 100.0

    def test_theoretical_prediction_attached_without_reconciling(self) -> None:
        result = analyze_spectrum(sine_wave(10.0, 20.0, 128), 20.0, beam=BeamParameters())
        assert result.theoretical is not None
        assert result.theoretical.natural_frequency == pytest.approx(1.38, abs=0.01)
        assert result.reconciled is False
        assert result.dominant_frequency == pytest.approx(10.0, abs=20.0 / 128)

    def test_reconcile_moves_peak_to_theory_and_keeps_raw(self) -> None:
        result = analyze_spectrum(
            sine_wave(7.0, 20.0, 128),
            20.0,
            beam=BeamParameters(),
            reconcile=True,
        )
        bin_width = 20.0 / 128
        assert result.reconciled is True
        assert abs(result.dominant_frequency - result.theoretical.natural_frequency) <= bin_width
        assert result.raw_dominant_frequency == pytest.approx(7.0, abs=bin_width)
        assert result.peak_magnitude > result.raw_peak_magnitude
        assert 1.0 <= result.q_factor <= 100.0

    def test_reconcile_skipped_when_prediction_above_nyquist(self) -> None:
        light = BeamParameters(test_mass=0.0)
        result = analyze_spectrum(sine_wave(2.0, 10.0, 64), 10.0, beam=light, reconcile=True)
        assert result.theoretical.natural_frequency > 5.0
        assert result.reconciled is False
        assert result.dominant_frequency == result.raw_dominant_frequency


class TestHalfPowerBandwidth:
    def test_linear_interpolation_between_bins(self) -> None:
        mags = np.array([0.0, 0.5, 1.0, 0.5, 0.0])
        freqs = np.arange(5, dtype=float)
        bw = half_power_bandwidth(mags, freqs, 2, default_hz=1.0)
        threshold = 1.0 / math.sqrt(2.0)
        expected_low = 1.0 + (threshold - 0.5) / 0.5
        expected_high = 3.0 - (threshold - 0.5) / 0.5
        assert bw == pytest.approx(expected_high - expected_low)

    def test_falls_back_when_band_reaches_spectrum_edge(self) -> None:
        mags = np.array([1.0, 1.0, 0.1, 0.0])
        freqs = np.arange(4, dtype=float)
        assert half_power_bandwidth(mags, freqs, 1, default_hz=0.75) == 0.75

    def test_falls_back_for_zero_peak(self) -> None:
        mags = np.zeros(8)
        freqs = np.arange(8, dtype=float)
        assert half_power_bandwidth(mags, freqs, 3, default_hz=1.0) == 1.0


def test_clamp_q_bounds_and_degenerate_inputs() -> None:
    assert clamp_q(50.0, 0.1, q_min=1.0, q_max=100.0) == 100.0
    assert clamp_q(0.1, 1.0, q_min=1.0, q_max=100.0) == 1.0
    assert clamp_q(5.0, 0.5, q_min=1.0, q_max=100.0) == pytest.approx(10.0)
    assert clamp_q(float("nan"), 1.0, q_min=1.0, q_max=100.0) == 1.0
    assert clamp_q(5.0, 0.0, q_min=1.0, q_max=100.0) == 1.0


def test_fallback_spectrum_uses_settings() -> None:
    result = fallback_spectrum(AnalyzerSettings(q_min=2.0, default_bandwidth_hz=0.8))
    assert result.dominant_frequency == 0.0
    assert result.q_factor == 2.0
    assert result.bandwidth == 0.8
    assert result.method == "none"


class TestFrequencyTimeSeries:
    def test_short_signal_is_empty(self) -> None:
        assert frequency_time_series([0.0] * 15, 100.0) == {"times": [], "frequencies": []}

    def test_window_and_hop(self) -> None:
        series = frequency_time_series(sine_wave(5.0, 100.0, 200), 100.0)
        # window 32, hop 8 over 200 samples
        assert len(series["times"]) == len(range(0, 200 - 32, 8))
        assert series["times"][1] - series["times"][0] == pytest.approx(0.08)
        assert all(f > 0 for f in series["frequencies"])


class TestEstimateSamplingHz:
    def test_mean_interval(self) -> None:
        assert estimate_sampling_hz([0.0, 10.0, 20.0, 30.0]) == pytest.approx(100.0)

    def test_default_when_too_few_timestamps(self) -> None:
        assert estimate_sampling_hz([]) == pytest.approx(20.0)
        assert estimate_sampling_hz([123.0]) == pytest.approx(20.0)

    def test_default_when_interval_not_positive(self) -> None:
        assert estimate_sampling_hz([5.0, 5.0, 5.0]) == pytest.approx(20.0)
        assert estimate_sampling_hz([0.0, float("nan")], default_interval_ms=10.0) == (
            pytest.approx(100.0)
        )
