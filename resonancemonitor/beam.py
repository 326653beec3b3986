"""First-mode cantilever beam model used to cross-check measured resonance.

The beam is clamped at one end and carries the test mass, an optional tip
fixture and the sensor at the free end.  The distributed beam mass enters
the effective mass with the classical one-third (Rayleigh) factor::

    I     = b d^3 / 12
    k     = 3 E I / L^3
    m_eff = m_test + m_tip + m_sensor + m_beam / 3
    f_n   = sqrt(k / m_eff) / (2 pi)

Defaults describe a 250 x 25 x 1 mm stainless-steel strip.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, replace
from typing import Any

DEFAULT_YOUNGS_MODULUS_PA = 193e9
DEFAULT_DENSITY_KG_M3 = 8000.0
DEFAULT_LENGTH_M = 0.25
DEFAULT_BREADTH_M = 0.025
DEFAULT_DEPTH_M = 0.001
DEFAULT_TEST_MASS_KG = 1.0
DEFAULT_TIP_MASS_KG = 0.0
DEFAULT_SENSOR_MASS_KG = 0.01


@dataclass(frozen=True, slots=True)
class BeamParameters:
    test_mass: float = DEFAULT_TEST_MASS_KG
    tip_mass: float = DEFAULT_TIP_MASS_KG
    sensor_mass: float = DEFAULT_SENSOR_MASS_KG
    youngs_modulus: float = DEFAULT_YOUNGS_MODULUS_PA
    breadth: float = DEFAULT_BREADTH_M
    depth: float = DEFAULT_DEPTH_M
    length: float = DEFAULT_LENGTH_M
    density: float = DEFAULT_DENSITY_KG_M3

    def with_test_mass(self, test_mass: float) -> BeamParameters:
        return replace(self, test_mass=float(test_mass))


@dataclass(frozen=True, slots=True)
class BeamPrediction:
    natural_frequency: float
    natural_period: float
    stiffness: float
    effective_mass: float
    beam_mass: float

    def to_dict(self) -> dict[str, float]:
        return {
            "naturalFrequency": self.natural_frequency,
            "naturalPeriod": self.natural_period,
            "stiffness": self.stiffness,
            "effectiveMass": self.effective_mass,
            "beamMass": self.beam_mass,
        }


def theoretical_frequency(params: BeamParameters | None = None) -> BeamPrediction:
    p = params or BeamParameters()
    second_moment = p.breadth * p.depth**3 / 12.0
    stiffness = 3.0 * p.youngs_modulus * second_moment / p.length**3 if p.length > 0 else 0.0
    beam_mass = p.density * p.breadth * p.depth * p.length
    effective_mass = p.test_mass + p.tip_mass + p.sensor_mass + beam_mass / 3.0
    if effective_mass <= 0 or stiffness <= 0:
        natural_frequency = 0.0
    else:
        natural_frequency = math.sqrt(stiffness / effective_mass) / (2.0 * math.pi)
    return BeamPrediction(
        natural_frequency=natural_frequency,
        natural_period=1.0 / natural_frequency if natural_frequency > 0 else 0.0,
        stiffness=stiffness,
        effective_mass=effective_mass,
        beam_mass=beam_mass,
    )


def beam_from_config(beam_cfg: Any, test_mass: float) -> BeamParameters:
    """Build parameters from a ``BeamConfig`` section plus a session's test mass."""
    return BeamParameters(
        test_mass=float(test_mass),
        tip_mass=float(beam_cfg.tip_mass),
        sensor_mass=float(beam_cfg.sensor_mass),
        youngs_modulus=float(beam_cfg.youngs_modulus),
        breadth=float(beam_cfg.breadth),
        depth=float(beam_cfg.depth),
        length=float(beam_cfg.length),
        density=float(beam_cfg.density),
    )
