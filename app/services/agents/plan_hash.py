"""Canonical plan serialisation and hashing.

The hash is the integrity anchor between confirm and apply, so two
plans that differ only in key order or number spelling (``1`` vs
``1.0``) must hash identically.
"""

from __future__ import annotations

import hashlib
import json
import math
from typing import Any


def _normalise(value: Any) -> Any:
    if isinstance(value, dict):
        return {str(k): _normalise(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_normalise(v) for v in value]
    if isinstance(value, bool) or value is None or isinstance(value, str):
        return value
    if isinstance(value, float):
        if not math.isfinite(value):
            raise ValueError("Plan contains a non-finite number")
        if value.is_integer():
            return int(value)
        return value
    if isinstance(value, int):
        return value
    raise TypeError(f"Unsupported plan value type: {type(value).__name__}")


def canonical_json(plan: dict) -> str:
    """Serialise *plan* with sorted keys, no whitespace and normalised numbers."""
    return json.dumps(
        _normalise(plan),
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        allow_nan=False,
    )


def compute_plan_hash(plan: dict) -> str:
    """SHA-256 hex digest of the canonical plan JSON.

    A ``planHash`` key inside *plan* is ignored so a stored plan can carry
    its own hash without changing it.
    """
    body = {k: v for k, v in plan.items() if k != "planHash"}
    return hashlib.sha256(canonical_json(body).encode("utf-8")).hexdigest()
