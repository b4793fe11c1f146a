"""Record mutation: audit-column widening followed by the write itself."""

from __future__ import annotations

import copy
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List

from certflow.errors import StoreError, describe_store_error
from certflow.record_map import same_value
from field_meta import SYSTEM_COLUMNS
import workflow_machine


Issue = Dict[str, Any]

# (column, type, default) added on first write when missing.
AUDIT_COLUMNS = (
    ("created_at", "timestamptz", "now()"),
    ("updated_at", "timestamptz", "now()"),
    ("created_by", "uuid", None),
    ("updated_by", "uuid", None),
)
READONLY_COLUMNS = frozenset(SYSTEM_COLUMNS)

logger = logging.getLogger("certflow.writer")


def _now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _issue(code: str, message: str, path: str | None = None, detail: dict | None = None) -> Issue:
    return {"code": code, "message": message, "path": path, "detail": detail}


def _result(ok: bool, errors: List[Issue], warnings: List[Issue], record: dict | None = None) -> dict:
    return {"ok": ok, "errors": errors, "warnings": warnings, "record": record}


def ensure_columns(store, registry, object_type: str) -> dict:
    """Add missing audit columns. Never raises; failures become warnings."""
    warnings: List[Issue] = []
    added: List[str] = []
    try:
        columns = registry.columns(object_type, refresh=True)
    except StoreError as exc:
        logger.warning("columns_unavailable object=%s error=%s", object_type, exc)
        warnings.append(_issue("SCHEMA_COLUMNS_UNAVAILABLE", str(exc), "object_type"))
        return {"ok": True, "errors": [], "warnings": warnings, "added": added, "columns": None}

    for name, col_type, default in AUDIT_COLUMNS:
        if name in columns:
            continue
        try:
            store.alter_schema(object_type, name, col_type, default)
            added.append(name)
            logger.info("schema_widened object=%s column=%s type=%s", object_type, name, col_type)
        except StoreError as exc:
            logger.warning("schema_widen_failed object=%s column=%s error=%s", object_type, name, exc)
            warnings.append(_issue("SCHEMA_WIDEN_FAILED", f"Could not add column {name}", name, exc.to_detail()))

    if added:
        try:
            columns = registry.columns(object_type, refresh=True)
        except StoreError as exc:
            logger.warning("columns_unavailable object=%s error=%s", object_type, exc)
            columns = list(columns) + added
    return {"ok": True, "errors": [], "warnings": warnings, "added": added, "columns": columns}


def _filter_columns(values: dict, columns: Iterable[str] | None, object_type: str) -> dict:
    if columns is None:
        return copy.deepcopy(values)
    allowed = set(columns)
    kept = {}
    for key, val in values.items():
        if key in allowed:
            kept[key] = copy.deepcopy(val)
        else:
            logger.debug("write_column_omitted object=%s column=%s", object_type, key)
    return kept


def _stamp(row: dict, columns: Iterable[str] | None, stamps: dict) -> None:
    present = set(columns) if columns is not None else set()
    for key, val in stamps.items():
        if key in present:
            row[key] = val


def _store_failure(exc: StoreError, values: dict, label_for) -> dict:
    message = describe_store_error(exc, values, label_for)
    code = "RECORD_CONSTRAINT_VIOLATION" if exc.is_constraint_violation else "STORE_ERROR"
    detail = exc.to_detail()
    detail["retryable"] = not exc.is_constraint_violation
    return _result(False, [_issue(code, message, None, detail)], [])


def write_insert(store, object_type: str, values: dict, columns: list[str] | None, actor_id: str | None = None, label_for=None) -> dict:
    row = _filter_columns({k: v for k, v in values.items() if k not in READONLY_COLUMNS}, columns, object_type)
    now = _now()
    _stamp(row, columns, {"created_at": now, "updated_at": now, "created_by": actor_id, "updated_by": actor_id})
    try:
        record = store.insert(object_type, row)
    except StoreError as exc:
        logger.warning("record_insert_failed object=%s code=%s error=%s", object_type, exc.code, exc.message)
        return _store_failure(exc, row, label_for)
    return _result(True, [], [], record)


def write_update(store, object_type: str, record_id: str, values: dict, columns: list[str] | None, actor_id: str | None = None, label_for=None) -> dict:
    patch = _filter_columns({k: v for k, v in values.items() if k not in READONLY_COLUMNS}, columns, object_type)
    _stamp(patch, columns, {"updated_at": _now(), "updated_by": actor_id})
    try:
        record = store.update(object_type, record_id, patch)
    except StoreError as exc:
        logger.warning("record_update_failed object=%s id=%s code=%s error=%s", object_type, record_id, exc.code, exc.message)
        return _store_failure(exc, patch, label_for)
    return _result(True, [], [], record)


def _denied(message: str, path: str | None = None, detail: dict | None = None) -> dict:
    return _result(False, [_issue("PERMISSION_DENIED", message, path, detail)], [])


class RecordWriter:
    """Permission-checked create/update/delete over a record store."""

    def __init__(self, store, registry, permissions, workflow_objects: Iterable[str] = ("clients",)) -> None:
        self._store = store
        self._registry = registry
        self._permissions = permissions
        self._workflow_objects = frozenset(workflow_objects)

    def _label_for(self, object_type: str):
        return lambda column: self._registry.label_for(object_type, column)

    def _uneditable(self, profile_id: str | None, object_type: str, names: Iterable[str]) -> list[str]:
        return sorted(n for n in names if not self._permissions.can_field(profile_id, object_type, n, "edit"))

    def get(self, object_type: str, record_id: str) -> dict | None:
        rows = self._store.select(object_type, {"id": record_id})
        return rows[0] if rows else None

    def create(self, profile_id: str | None, object_type: str, values: dict, actor_id: str | None = None) -> dict:
        if not self._permissions.can_object(profile_id, object_type, "create"):
            return _denied(f"You do not have permission to create {object_type}", "object_type")
        widen = ensure_columns(self._store, self._registry, object_type)
        columns = widen["columns"]
        row = _filter_columns({k: v for k, v in values.items() if k not in READONLY_COLUMNS}, columns, object_type)
        blocked = self._uneditable(profile_id, object_type, [k for k, v in row.items() if v not in (None, "")])
        if blocked:
            return _denied("You do not have permission to set these fields", blocked[0], {"fields": blocked})
        if object_type in self._workflow_objects and "status" in row:
            issues = workflow_machine.check_generic_status_update(None, row.get("status"))
            if issues:
                return _result(False, issues, widen["warnings"])
        result = write_insert(self._store, object_type, row, columns, actor_id, self._label_for(object_type))
        result["warnings"] = widen["warnings"] + result["warnings"]
        if result["ok"]:
            logger.info("record_created object=%s id=%s", object_type, (result["record"] or {}).get("id"))
        return result

    def update(self, profile_id: str | None, object_type: str, record_id: str, snapshot: dict, actor_id: str | None = None) -> dict:
        """Save a whole edited snapshot. Last write wins."""
        return self._update(profile_id, object_type, record_id, snapshot, actor_id, workflow_step=False)

    def update_fields(
        self,
        profile_id: str | None,
        object_type: str,
        record_id: str,
        patch: dict,
        actor_id: str | None = None,
        workflow_step: bool = False,
    ) -> dict:
        current = self.get(object_type, record_id)
        if current is None:
            return _result(False, [_issue("RECORD_NOT_FOUND", "Record not found", "record_id")], [])
        merged = dict(current)
        merged.update(patch)
        return self._update(profile_id, object_type, record_id, merged, actor_id, workflow_step=workflow_step, current=current)

    def _update(
        self,
        profile_id: str | None,
        object_type: str,
        record_id: str,
        snapshot: dict,
        actor_id: str | None,
        workflow_step: bool,
        current: dict | None = None,
    ) -> dict:
        if not self._permissions.can_object(profile_id, object_type, "update"):
            return _denied(f"You do not have permission to edit {object_type}", "object_type")
        if current is None:
            current = self.get(object_type, record_id)
        if current is None:
            return _result(False, [_issue("RECORD_NOT_FOUND", "Record not found", "record_id")], [])

        widen = ensure_columns(self._store, self._registry, object_type)
        columns = widen["columns"]
        values = _filter_columns({k: v for k, v in snapshot.items() if k not in READONLY_COLUMNS}, columns, object_type)
        changed = [k for k, v in values.items() if k not in current or not same_value(current[k], v)]
        blocked = self._uneditable(profile_id, object_type, changed)
        if blocked:
            return _denied("You do not have permission to change these fields", blocked[0], {"fields": blocked})
        if object_type in self._workflow_objects and "status" in changed and not workflow_step:
            issues = workflow_machine.check_generic_status_update(current.get("status"), values.get("status"))
            if issues:
                return _result(False, issues, widen["warnings"])

        result = write_update(self._store, object_type, record_id, values, columns, actor_id, self._label_for(object_type))
        result["warnings"] = widen["warnings"] + result["warnings"]
        if result["ok"]:
            logger.info("record_updated object=%s id=%s changed=%s", object_type, record_id, ",".join(sorted(changed)))
        return result

    def delete(self, profile_id: str | None, object_type: str, record_id: str) -> dict:
        if not self._permissions.can_object(profile_id, object_type, "delete"):
            return _denied(f"You do not have permission to delete {object_type}", "object_type")
        try:
            self._store.delete(object_type, record_id)
        except StoreError as exc:
            logger.warning("record_delete_failed object=%s id=%s error=%s", object_type, record_id, exc)
            return _store_failure(exc, {}, self._label_for(object_type))
        return _result(True, [], [], {"id": record_id})
