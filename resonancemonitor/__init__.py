"""Resonance monitor: live accelerometer ingestion and resonance analysis."""

__version__ = "0.1.0"
