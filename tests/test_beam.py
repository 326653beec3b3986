from __future__ import annotations

import math

import pytest

from resonancemonitor.beam import BeamParameters, beam_from_config, theoretical_frequency
from resonancemonitor.config import documented_default_config, load_config


def test_default_stainless_cantilever() -> None:
    pred = theoretical_frequency()
    assert pred.stiffness == pytest.approx(77.2, rel=1e-9)
    assert pred.beam_mass == pytest.approx(0.05)
    assert pred.effective_mass == pytest.approx(1.0 + 0.01 + 0.05 / 3.0)
    expected = math.sqrt(77.2 / (1.01 + 0.05 / 3.0)) / (2.0 * math.pi)
    assert pred.natural_frequency == pytest.approx(expected)
    assert pred.natural_period == pytest.approx(1.0 / expected)


def test_heavier_test_mass_lowers_frequency() -> None:
    light = theoretical_frequency(BeamParameters(test_mass=0.2))
    heavy = theoretical_frequency(BeamParameters(test_mass=2.0))
    assert heavy.natural_frequency < light.natural_frequency
    assert heavy.stiffness == pytest.approx(light.stiffness)


def test_non_positive_effective_mass_returns_zero() -> None:
    pred = theoretical_frequency(
        BeamParameters(test_mass=0.0, sensor_mass=0.0, tip_mass=0.0, density=0.0)
    )
    assert pred.effective_mass == 0.0
    assert pred.natural_frequency == 0.0
    assert pred.natural_period == 0.0

    negative = theoretical_frequency(BeamParameters(test_mass=-1.0))
    assert negative.natural_frequency == 0.0


def test_with_test_mass_keeps_other_parameters() -> None:
    base = BeamParameters(length=0.3, sensor_mass=0.02)
    swapped = base.with_test_mass(0.5)
    assert swapped.test_mass == 0.5
    assert swapped.length == 0.3
    assert swapped.sensor_mass == 0.02


def test_beam_from_config_uses_session_mass(tmp_path) -> None:
    cfg = load_config(tmp_path / "missing.yaml")
    params = beam_from_config(cfg.beam, 0.75)
    assert params.test_mass == 0.75
    assert params.youngs_modulus == documented_default_config()["beam"]["youngs_modulus"]
    assert theoretical_frequency(params).natural_frequency > 0
