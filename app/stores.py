"""In-memory record store adapter used for local runs and tests."""

from __future__ import annotations

import copy
import threading
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List

from certflow.errors import (
    DUPLICATE_COLUMN,
    FOREIGN_KEY_VIOLATION,
    NOT_NULL_VIOLATION,
    UNDEFINED_TABLE,
    UNIQUE_VIOLATION,
    StoreError,
)
from field_meta import BASIC_COLUMNS, SYSTEM_COLUMNS


UNDEFINED_COLUMN = "42703"
UNDEFINED_FUNCTION = "42883"
NO_DATA_FOUND = "P0002"


def _now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _initcap(column: str) -> str:
    return " ".join(part[:1].upper() + part[1:].lower() for part in column.replace("_", " ").split(" "))


def _matches(row: dict, filters: dict | None) -> bool:
    for key, expected in (filters or {}).items():
        actual = row.get(key)
        if isinstance(expected, (list, tuple, set)):
            if actual is None or str(actual) not in {str(v) for v in expected}:
                return False
            continue
        if expected is None:
            if actual is not None:
                return False
            continue
        if actual is None or str(actual) != str(expected):
            return False
    return True


def _order_key(columns: Iterable[str]):
    def key(row: dict):
        parts = []
        for col in columns:
            val = row.get(col)
            parts.append((val is None, val if val is not None else 0))
        return parts
    return key


class MemoryRecordStore:
    """Tables held as dicts, with just enough Postgres behaviour to matter.

    Unique, not-null and foreign-key constraints raise StoreError with the
    same SQLSTATE codes and detail text the database would produce.
    """

    def __init__(self) -> None:
        self._tables: Dict[str, dict] = {}
        self._lock = threading.RLock()

    def create_table(
        self,
        name: str,
        columns: List[dict],
        unique: Iterable[str] = (),
        foreign_keys: Dict[str, str] | None = None,
    ) -> None:
        cols = []
        for col in columns:
            cols.append(
                {
                    "column_name": col["name"],
                    "data_type": col.get("data_type", "text"),
                    "is_nullable": "YES" if col.get("is_nullable", True) else "NO",
                    "column_default": col.get("default"),
                }
            )
        with self._lock:
            self._tables[name] = {
                "columns": cols,
                "unique": list(unique),
                "foreign_keys": dict(foreign_keys or {}),
                "rows": {},
            }

    def has_table(self, name: str) -> bool:
        return name in self._tables

    def _table(self, name: str) -> dict:
        table = self._tables.get(name)
        if table is None:
            raise StoreError(f'relation "{name}" does not exist', code=UNDEFINED_TABLE, table=name)
        return table

    def _column_names(self, table: dict) -> list[str]:
        return [c["column_name"] for c in table["columns"]]

    def _check_columns(self, name: str, table: dict, keys: Iterable[str]) -> None:
        known = set(self._column_names(table))
        for key in keys:
            if key not in known:
                raise StoreError(
                    f'column "{key}" of relation "{name}" does not exist',
                    code=UNDEFINED_COLUMN,
                    table=name,
                    column=key,
                )

    def _default(self, column: dict) -> Any:
        default = column.get("column_default")
        if default == "now()":
            return _now()
        if default == "gen_random_uuid()":
            return str(uuid.uuid4())
        return copy.deepcopy(default)

    def _check_constraints(self, name: str, table: dict, row: dict, record_id: str) -> None:
        for column in table["columns"]:
            col = column["column_name"]
            if column["is_nullable"] == "NO" and row.get(col) is None:
                raise StoreError(
                    f'null value in column "{col}" of relation "{name}" violates not-null constraint',
                    code=NOT_NULL_VIOLATION,
                    table=name,
                    column=col,
                )
        for col in table["unique"]:
            value = row.get(col)
            if value is None:
                continue
            for other_id, other in table["rows"].items():
                if other_id != record_id and other.get(col) == value:
                    raise StoreError(
                        f'duplicate key value violates unique constraint "{name}_{col}_key"',
                        code=UNIQUE_VIOLATION,
                        table=name,
                        constraint=f"{name}_{col}_key",
                        detail=f"Key ({col})=({value}) already exists.",
                    )
        for col, target in table["foreign_keys"].items():
            value = row.get(col)
            if value is None:
                continue
            if str(value) not in self._table(target)["rows"]:
                raise StoreError(
                    f'insert or update on table "{name}" violates foreign key constraint "{name}_{col}_fkey"',
                    code=FOREIGN_KEY_VIOLATION,
                    table=name,
                    constraint=f"{name}_{col}_fkey",
                    detail=f'Key ({col})=({value}) is not present in table "{target}".',
                )

    def select(self, object_type: str, filters: dict | None = None, order_by: List[str] | None = None) -> list[dict]:
        with self._lock:
            table = self._table(object_type)
            self._check_columns(object_type, table, (filters or {}).keys())
            rows = [copy.deepcopy(r) for r in table["rows"].values() if _matches(r, filters)]
        if order_by:
            rows.sort(key=_order_key(order_by))
        return rows

    def insert(self, object_type: str, row: dict) -> dict:
        with self._lock:
            table = self._table(object_type)
            self._check_columns(object_type, table, row.keys())
            record = {}
            for column in table["columns"]:
                col = column["column_name"]
                record[col] = copy.deepcopy(row[col]) if col in row else self._default(column)
            if "id" in record and record["id"] is None:
                record["id"] = str(uuid.uuid4())
            record_id = str(record.get("id"))
            if record_id in table["rows"]:
                raise StoreError(
                    f'duplicate key value violates unique constraint "{object_type}_pkey"',
                    code=UNIQUE_VIOLATION,
                    table=object_type,
                    constraint=f"{object_type}_pkey",
                    detail=f"Key (id)=({record_id}) already exists.",
                )
            self._check_constraints(object_type, table, record, record_id)
            table["rows"][record_id] = record
            return copy.deepcopy(record)

    def update(self, object_type: str, record_id: str, patch: dict) -> dict:
        with self._lock:
            table = self._table(object_type)
            self._check_columns(object_type, table, patch.keys())
            current = table["rows"].get(str(record_id))
            if current is None:
                raise StoreError("Record not found", code=NO_DATA_FOUND, table=object_type)
            record = copy.deepcopy(current)
            record.update(copy.deepcopy({k: v for k, v in patch.items() if k != "id"}))
            self._check_constraints(object_type, table, record, str(record_id))
            table["rows"][str(record_id)] = record
            return copy.deepcopy(record)

    def delete(self, object_type: str, record_id: str) -> None:
        with self._lock:
            table = self._table(object_type)
            if str(record_id) not in table["rows"]:
                raise StoreError("Record not found", code=NO_DATA_FOUND, table=object_type)
            del table["rows"][str(record_id)]

    def alter_schema(self, object_type: str, column: str, col_type: str, default: str | None = None) -> None:
        with self._lock:
            table = self._table(object_type)
            if column in self._column_names(table):
                raise StoreError(
                    f'column "{column}" of relation "{object_type}" already exists',
                    code=DUPLICATE_COLUMN,
                    table=object_type,
                    column=column,
                )
            column_def = {"column_name": column, "data_type": col_type, "is_nullable": "YES", "column_default": default}
            table["columns"].append(column_def)
            for row in table["rows"].values():
                row[column] = self._default(column_def)

    def rpc(self, name: str, args: dict | None = None) -> Any:
        args = args or {}
        if name == "get_table_columns":
            return self._get_table_columns(args.get("table_name_param"))
        if name == "sync_table_metadata":
            return self._sync_table_metadata(args.get("table_name_param"))
        raise StoreError(f"function {name} does not exist", code=UNDEFINED_FUNCTION)

    def _get_table_columns(self, table_name: str | None) -> list[dict]:
        with self._lock:
            table = self._tables.get(table_name or "")
            if table is None:
                return []
            return [copy.deepcopy(c) for c in table["columns"]]

    def _sync_table_metadata(self, table_name: str | None) -> dict:
        with self._lock:
            table = self._tables.get(table_name or "")
            if table is None:
                return {"success": False, "error": f'relation "{table_name}" does not exist'}
            meta = self._table("field_metadata")
            for row_id in [rid for rid, r in meta["rows"].items() if r.get("table_name") == table_name]:
                del meta["rows"][row_id]
            for order, column in enumerate(table["columns"]):
                col = column["column_name"]
                if col in SYSTEM_COLUMNS:
                    section, is_system = "system", True
                elif col in BASIC_COLUMNS:
                    section, is_system = "basic", False
                else:
                    section, is_system = "details", False
                ref_table = table["foreign_keys"].get(col)
                self.insert(
                    "field_metadata",
                    {
                        "table_name": table_name,
                        "api_name": col,
                        "display_label": _initcap(col),
                        "field_type": "reference" if ref_table else column["data_type"],
                        "is_required": column["is_nullable"] == "NO",
                        "is_nullable": column["is_nullable"] == "YES",
                        "default_value": column["column_default"],
                        "display_order": order,
                        "section": section,
                        "width": "half",
                        "is_visible": True,
                        "is_system_field": is_system,
                        "reference_table": ref_table,
                        "reference_display_field": "name" if ref_table else None,
                    },
                )
        return {"success": True, "message": "Metadata synced successfully"}
