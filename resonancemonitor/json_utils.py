"""JSON encoding in which NaN and infinities become ``null``."""

from __future__ import annotations

import json
import logging
import math
from typing import Any

import numpy as np

LOGGER = logging.getLogger(__name__)


def sanitize_for_json(obj: Any) -> tuple[Any, bool]:
    """Copy *obj* with non-finite floats replaced by ``None``.

    The flag in the result tells whether any replacement happened.
    """
    replaced = False

    def _clean(value: Any) -> Any:
        nonlocal replaced
        if isinstance(value, np.ndarray):
            value = value.tolist()
        elif isinstance(value, np.generic):
            value = value.item()
        if isinstance(value, float) and not math.isfinite(value):
            replaced = True
            return None
        if isinstance(value, dict):
            return {key: _clean(item) for key, item in value.items()}
        if isinstance(value, (list, tuple)):
            return [_clean(item) for item in value]
        return value

    return _clean(obj), replaced


def safe_json_dumps(value: Any) -> str:
    return json.dumps(sanitize_for_json(value)[0], allow_nan=False)


def safe_json_loads(value: str | None, *, context: str) -> Any | None:
    if not value:
        return None
    try:
        return json.loads(value)
    except json.JSONDecodeError:
        LOGGER.warning("Ignoring corrupt JSON in %s", context)
        return None
