"""Read-only record access that fails closed on missing keys."""

from __future__ import annotations

import copy
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Iterator, Mapping


class _Absent:
    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "ABSENT"

    def __copy__(self):
        return self

    def __deepcopy__(self, memo):
        return self


# Returned for keys a record does not carry. Distinct from a stored None.
ABSENT = _Absent()


def _coerce_like(template: Any, value: Any) -> Any:
    # Stores hand back Decimal and datetime; JSON clients send floats and strings.
    if isinstance(value, bool):
        return None
    if isinstance(template, (Decimal, int, float)) and not isinstance(template, bool):
        if isinstance(value, (datetime, date)):
            return None
        try:
            return Decimal(str(value).strip())
        except InvalidOperation:
            return None
    if isinstance(template, datetime):
        if isinstance(value, datetime):
            return value
        if isinstance(value, str):
            text = value.strip()
            if text.endswith("Z"):
                text = text[:-1] + "+00:00"
            try:
                return datetime.fromisoformat(text)
            except ValueError:
                return None
        return None
    if isinstance(template, date):
        if isinstance(value, datetime):
            return None
        if isinstance(value, date):
            return value
        if isinstance(value, str) and len(value.strip()) == 10:
            try:
                return date.fromisoformat(value.strip())
            except ValueError:
                return None
    return None


def same_value(a: Any, b: Any) -> bool:
    """Equality that treats a store-native value and its JSON form as the same.

    Decimal("12.50") matches 12.5 and "12.50"; a datetime matches its ISO
    string, with or without a trailing Z.
    """
    if a == b:
        return True
    if a is None or b is None or isinstance(a, bool) or isinstance(b, bool):
        return False
    for template in (a, b):
        left, right = _coerce_like(template, a), _coerce_like(template, b)
        if left is not None and right is not None:
            return left == right
    return False


class RecordMap(Mapping):
    """Immutable view over a record row.

    ``get`` returns ``ABSENT`` for a missing key instead of raising, so callers
    can tell "column not loaded" apart from "column is null".
    """

    __slots__ = ("_data",)

    def __init__(self, data: Mapping[str, Any] | None = None) -> None:
        self._data = copy.deepcopy(dict(data or {}))

    def __getitem__(self, key: str) -> Any:
        return self._data[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._data)

    def __len__(self) -> int:
        return len(self._data)

    def __repr__(self) -> str:
        return f"RecordMap({self._data!r})"

    def get(self, key: str, default: Any = ABSENT) -> Any:
        if key in self._data:
            return copy.deepcopy(self._data[key])
        return default

    def value(self, key: str, default: Any = None) -> Any:
        """Like get, but treats missing and null the same."""
        val = self.get(key)
        if val is ABSENT or val is None:
            return default
        return val

    def has(self, key: str) -> bool:
        return key in self._data

    @property
    def id(self) -> Any:
        return self.value("id")

    def with_value(self, key: str, value: Any) -> "RecordMap":
        data = dict(self._data)
        data[key] = copy.deepcopy(value)
        return RecordMap(data)

    def diff(self, other: Mapping[str, Any]) -> dict:
        """Keys whose values differ from other (keys missing in other count as changed)."""
        changed = {}
        for key, val in self._data.items():
            if key not in other or not same_value(other[key], val):
                changed[key] = copy.deepcopy(val)
        return changed

    def to_dict(self) -> dict:
        return copy.deepcopy(self._data)
