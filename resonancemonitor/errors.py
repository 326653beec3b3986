"""Exception taxonomy shared by the session, ingest and protocol layers.

Every error carries a human-readable message that is forwarded verbatim to
the requesting observer in failure events.
"""

from __future__ import annotations


class ResonanceMonitorError(Exception):
    """Base class for all domain errors."""


class ValidationError(ResonanceMonitorError):
    """Bad input shape, e.g. an empty session name."""


class ConflictError(ResonanceMonitorError):
    """A transition that conflicts with the current state."""


class DuplicateNameError(ConflictError):
    """The store rejected a session name that is already taken."""


class NoActiveSessionError(ResonanceMonitorError):
    """``stop`` was requested while no session is running."""


class NotFoundError(ResonanceMonitorError):
    """Unknown session id."""


class NumericDegenerateError(ResonanceMonitorError):
    """The analyzer was handed an empty or unusable signal."""


class PersistenceError(ResonanceMonitorError):
    """The persistence gateway failed a must-succeed write."""


class ProtocolError(ResonanceMonitorError, ValueError):
    """Malformed inbound WebSocket message."""
