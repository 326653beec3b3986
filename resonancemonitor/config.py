from __future__ import annotations

import logging
import math
from copy import deepcopy
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from . import beam as beam_defaults
from .processing.fft import AnalyzerSettings

PROJECT_DIR = Path(__file__).resolve().parents[1]
"""Repository root; ``config.yaml`` is looked up here by default."""

LOGGER = logging.getLogger(__name__)

DEFAULT_CONFIG: dict[str, Any] = {
    "server": {"host": "0.0.0.0", "port": 3000},
    "storage": {"db_path": "data/resonance.db"},
    "ingest": {
        "debounce_s": 1.0,
        "recent_samples_capacity": 100,
        "default_sample_interval_ms": 50.0,
    },
    "analysis": {
        "q_min": 1.0,
        "q_max": 100.0,
        "default_bandwidth_hz": 1.0,
        "coarse_bandwidth_hz": 0.5,
        "min_fft_samples": 8,
        "reconcile_with_theory": False,
        "summary_grace_s": 0.0,
        "theory_boost_radius_bins": 3,
    },
    "beam": {
        "tip_mass": beam_defaults.DEFAULT_TIP_MASS_KG,
        "sensor_mass": beam_defaults.DEFAULT_SENSOR_MASS_KG,
        "youngs_modulus": beam_defaults.DEFAULT_YOUNGS_MODULUS_PA,
        "breadth": beam_defaults.DEFAULT_BREADTH_M,
        "depth": beam_defaults.DEFAULT_DEPTH_M,
        "length": beam_defaults.DEFAULT_LENGTH_M,
        "density": beam_defaults.DEFAULT_DENSITY_KG_M3,
    },
}


def documented_default_config() -> dict[str, Any]:
    """Return runtime defaults in the shape documented by config.example.yaml."""
    return deepcopy(DEFAULT_CONFIG)


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _resolve_config_path(path_text: str, config_path: Path) -> Path:
    path = Path(path_text)
    if path.is_absolute():
        return path
    return config_path.resolve().parent / path


@dataclass(slots=True)
class ServerConfig:
    host: str
    port: int

    def __post_init__(self) -> None:
        if not isinstance(self.port, int) or not (1 <= self.port <= 65535):
            raise ValueError(f"ServerConfig.port must be 1-65535, got {self.port!r}")


@dataclass(slots=True)
class StorageConfig:
    db_path: Path


@dataclass(slots=True)
class IngestConfig:
    debounce_s: float
    recent_samples_capacity: int
    default_sample_interval_ms: float

    def __post_init__(self) -> None:
        if not math.isfinite(self.debounce_s) or self.debounce_s < 0.01:
            LOGGER.warning("ingest.debounce_s=%s is below minimum 0.01, clamped", self.debounce_s)
            object.__setattr__(self, "debounce_s", 0.01)
        if self.recent_samples_capacity < 1:
            LOGGER.warning(
                "ingest.recent_samples_capacity=%s is below minimum 1, clamped",
                self.recent_samples_capacity,
            )
            object.__setattr__(self, "recent_samples_capacity", 1)
        if (
            not math.isfinite(self.default_sample_interval_ms)
            or self.default_sample_interval_ms <= 0
        ):
            LOGGER.warning(
                "ingest.default_sample_interval_ms=%s is not positive, using 50",
                self.default_sample_interval_ms,
            )
            object.__setattr__(self, "default_sample_interval_ms", 50.0)


@dataclass(slots=True)
class AnalysisConfig:
    q_min: float
    q_max: float
    default_bandwidth_hz: float
    coarse_bandwidth_hz: float
    min_fft_samples: int
    reconcile_with_theory: bool
    summary_grace_s: float
    theory_boost_radius_bins: int

    def __post_init__(self) -> None:
        if not math.isfinite(self.q_min) or self.q_min <= 0:
            LOGGER.warning("analysis.q_min=%s must be positive, using 1.0", self.q_min)
            object.__setattr__(self, "q_min", 1.0)
        if not math.isfinite(self.q_max) or self.q_max < self.q_min:
            LOGGER.warning(
                "analysis.q_max=%s is below q_min=%s, clamped", self.q_max, self.q_min
            )
            object.__setattr__(self, "q_max", self.q_min)
        for name in ("default_bandwidth_hz", "coarse_bandwidth_hz"):
            val = getattr(self, name)
            if not math.isfinite(val) or val <= 0:
                LOGGER.warning("analysis.%s=%s must be positive, using 1.0", name, val)
                object.__setattr__(self, name, 1.0)
        if self.min_fft_samples < 2:
            LOGGER.warning(
                "analysis.min_fft_samples=%s is below minimum 2, clamped", self.min_fft_samples
            )
            object.__setattr__(self, "min_fft_samples", 2)
        if not math.isfinite(self.summary_grace_s) or self.summary_grace_s < 0:
            object.__setattr__(self, "summary_grace_s", 0.0)
        if self.theory_boost_radius_bins < 0:
            object.__setattr__(self, "theory_boost_radius_bins", 0)

    def analyzer_settings(self) -> AnalyzerSettings:
        return AnalyzerSettings(
            q_min=self.q_min,
            q_max=self.q_max,
            default_bandwidth_hz=self.default_bandwidth_hz,
            coarse_bandwidth_hz=self.coarse_bandwidth_hz,
            min_fft_samples=self.min_fft_samples,
            theory_boost_radius_bins=self.theory_boost_radius_bins,
        )


@dataclass(slots=True)
class BeamConfig:
    tip_mass: float
    sensor_mass: float
    youngs_modulus: float
    breadth: float
    depth: float
    length: float
    density: float

    def __post_init__(self) -> None:
        for name in ("youngs_modulus", "breadth", "depth", "length"):
            val = getattr(self, name)
            if not math.isfinite(val) or val <= 0:
                raise ValueError(f"beam.{name} must be positive, got {val!r}")
        for name in ("tip_mass", "sensor_mass", "density"):
            val = getattr(self, name)
            if not math.isfinite(val) or val < 0:
                LOGGER.warning("beam.%s=%s is negative, clamped to 0", name, val)
                object.__setattr__(self, name, 0.0)


@dataclass(slots=True)
class AppConfig:
    server: ServerConfig
    storage: StorageConfig
    ingest: IngestConfig
    analysis: AnalysisConfig
    beam: BeamConfig
    config_path: Path


def _read_config_file(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}
    with path.open("r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ValueError(f"{path} must contain a YAML object at the top level.")
        return data


def load_config(config_path: Path | None = None) -> AppConfig:
    path = config_path or (PROJECT_DIR / "config.yaml")
    path = path.resolve()
    merged = _deep_merge(DEFAULT_CONFIG, _read_config_file(path))

    server_port = int(merged["server"]["port"])
    if not 1 <= server_port <= 65535:
        raise ValueError(f"server.port must be 1-65535, got {server_port}")

    ingest = merged["ingest"]
    analysis = merged["analysis"]
    beam = merged["beam"]
    app_config = AppConfig(
        server=ServerConfig(host=str(merged["server"]["host"]), port=server_port),
        storage=StorageConfig(
            db_path=_resolve_config_path(str(merged["storage"]["db_path"]), path),
        ),
        ingest=IngestConfig(
            debounce_s=float(ingest["debounce_s"]),
            recent_samples_capacity=int(ingest["recent_samples_capacity"]),
            default_sample_interval_ms=float(ingest["default_sample_interval_ms"]),
        ),
        analysis=AnalysisConfig(
            q_min=float(analysis["q_min"]),
            q_max=float(analysis["q_max"]),
            default_bandwidth_hz=float(analysis["default_bandwidth_hz"]),
            coarse_bandwidth_hz=float(analysis["coarse_bandwidth_hz"]),
            min_fft_samples=int(analysis["min_fft_samples"]),
            reconcile_with_theory=bool(analysis["reconcile_with_theory"]),
            summary_grace_s=float(analysis["summary_grace_s"]),
            theory_boost_radius_bins=int(analysis["theory_boost_radius_bins"]),
        ),  # NOTE: AnalysisConfig.__post_init__ validates & clamps all fields
        beam=BeamConfig(**{key: float(beam[key]) for key in DEFAULT_CONFIG["beam"]}),
        config_path=path,
    )
    LOGGER.info(
        "Loaded config from %s (db=%s, debounce=%.2fs, reconcile_with_theory=%s)",
        path,
        app_config.storage.db_path,
        app_config.ingest.debounce_s,
        app_config.analysis.reconcile_with_theory,
    )
    return app_config
