"""Shared route helpers used across multiple route modules."""

from __future__ import annotations

import re

from fastapi import HTTPException

from ..errors import (
    ConflictError,
    NoActiveSessionError,
    NotFoundError,
    PersistenceError,
    ResonanceMonitorError,
    ValidationError,
)

_SAFE_FILENAME_RE = re.compile(r"[^a-zA-Z0-9._-]")

_STATUS_BY_ERROR: tuple[tuple[type[ResonanceMonitorError], int], ...] = (
    (NotFoundError, 404),
    (ValidationError, 400),
    (ConflictError, 409),
    (NoActiveSessionError, 409),
    (PersistenceError, 503),
)


def safe_filename(name: str) -> str:
    """Sanitize *name* for use in Content-Disposition headers."""
    return _SAFE_FILENAME_RE.sub("_", name)[:200] or "download"


def http_error(exc: ResonanceMonitorError) -> HTTPException:
    """Map a domain error to the matching HTTP status (500 when unmapped)."""
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return HTTPException(status_code=status_code, detail=str(exc))
    return HTTPException(status_code=500, detail=str(exc))
