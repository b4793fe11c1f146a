"""Canonical JSON and content fingerprints for records and metadata."""

from __future__ import annotations

import hashlib
import json
import math
from datetime import date, datetime
from decimal import Decimal
from typing import Any


class CanonicalJsonTypeError(TypeError):
    """Raised when a value has no canonical JSON form."""


def _normalize(obj: Any, path: str = "$") -> Any:
    if isinstance(obj, dict):
        out = {}
        for key, value in obj.items():
            if not isinstance(key, str):
                raise CanonicalJsonTypeError(f"Unsupported key type at {path}: {type(key).__name__}")
            out[key] = _normalize(value, f"{path}.{key}")
        return out
    if isinstance(obj, (list, tuple)):
        return [_normalize(item, f"{path}[{idx}]") for idx, item in enumerate(obj)]
    if obj is None or isinstance(obj, (str, bool, int)):
        return obj
    if isinstance(obj, float):
        if not math.isfinite(obj):
            raise ValueError(f"Non-finite float at {path}: {obj!r}")
        return obj
    # Values coming back from psycopg2 rows.
    if isinstance(obj, Decimal):
        return str(obj)
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    raise CanonicalJsonTypeError(f"Unsupported type at {path}: {type(obj).__name__}")


def canonical_dumps(obj: Any) -> str:
    """Serialize to deterministic JSON.

    Dict keys are sorted recursively, list order is kept, non-ASCII is
    preserved and no whitespace is emitted.
    """
    return json.dumps(
        _normalize(obj),
        sort_keys=True,
        ensure_ascii=False,
        separators=(",", ":"),
        allow_nan=False,
    )


def fingerprint(obj: Any) -> str:
    """Return a sha256 fingerprint of the canonical form of obj."""
    data = canonical_dumps(obj).encode("utf-8")
    return f"sha256:{hashlib.sha256(data).hexdigest()}"
