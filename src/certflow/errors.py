"""Store errors and human-readable messages for constraint violations."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Callable, Mapping


UNIQUE_VIOLATION = "23505"
NOT_NULL_VIOLATION = "23502"
FOREIGN_KEY_VIOLATION = "23503"
CHECK_VIOLATION = "23514"
UNDEFINED_TABLE = "42P01"
DUPLICATE_COLUMN = "42701"

_CONSTRAINT_CODES = {UNIQUE_VIOLATION, NOT_NULL_VIOLATION, FOREIGN_KEY_VIOLATION, CHECK_VIOLATION}

# Postgres detail text, e.g. 'Key (email)=(a@b.com) already exists.'
_KEY_DETAIL_RE = re.compile(r"Key \((?P<column>[^)]+)\)=\((?P<value>.*)\)")


@dataclass
class StoreError(Exception):
    message: str
    code: str | None = None
    table: str | None = None
    constraint: str | None = None
    column: str | None = None
    detail: str | None = None

    def __str__(self) -> str:  # pragma: no cover - simple formatting
        if self.code:
            return f"{self.message} (code={self.code})"
        return self.message

    @property
    def is_constraint_violation(self) -> bool:
        return self.code in _CONSTRAINT_CODES

    def to_detail(self) -> dict:
        return {
            "code": self.code,
            "table": self.table,
            "constraint": self.constraint,
            "column": self.column,
        }


def _column_from_constraint(constraint: str | None, table: str | None) -> str | None:
    # Postgres default names: <table>_<column>_key / _fkey / _check
    if not constraint:
        return None
    name = constraint
    for suffix in ("_key", "_fkey", "_check"):
        if name.endswith(suffix):
            name = name[: -len(suffix)]
            break
    else:
        return None
    if table and name.startswith(f"{table}_"):
        return name[len(table) + 1 :] or None
    return None


def violation_column(exc: StoreError) -> str | None:
    if exc.column:
        return exc.column
    if exc.detail:
        match = _KEY_DETAIL_RE.search(exc.detail)
        if match:
            return match.group("column")
    return _column_from_constraint(exc.constraint, exc.table)


def _default_label(column: str) -> str:
    text = column.replace("_", " ")
    return text[:1].upper() + text[1:]


def describe_store_error(
    exc: StoreError,
    values: Mapping[str, Any] | None = None,
    label_for: Callable[[str], str] | None = None,
) -> str:
    """Turn a store error into a message fit for the person editing the record.

    Constraint violations name the field and, where known, the offending value.
    Anything else falls back to the error message.
    """
    if not exc.is_constraint_violation:
        return exc.message or "The record could not be saved."
    column = violation_column(exc)
    label = (label_for or _default_label)(column) if column else "A field"
    value = None
    if values and column and values.get(column) not in (None, ""):
        value = values.get(column)
    elif exc.detail:
        match = _KEY_DETAIL_RE.search(exc.detail)
        if match:
            value = match.group("value")

    if exc.code == UNIQUE_VIOLATION:
        if value is not None:
            return f'A record with {label.lower()} "{value}" already exists.'
        return f"{label} must be unique; another record already uses this value."
    if exc.code == NOT_NULL_VIOLATION:
        return f"{label} is required."
    if exc.code == FOREIGN_KEY_VIOLATION:
        if value is not None:
            return f'{label} refers to a record that does not exist ("{value}").'
        return f"{label} refers to a record that does not exist."
    return f"{label} has a value that is not allowed."
