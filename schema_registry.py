"""Schema registry: field descriptors and physical columns per object type."""

from __future__ import annotations

import logging
import threading
from typing import Any, Dict, List, Tuple

from certflow.errors import StoreError
from field_meta import FieldDescriptor, fallback_label


Issue = Dict[str, Any]

METADATA_TABLE = "field_metadata"

logger = logging.getLogger("certflow.schema")


def _issue(code: str, message: str, path: str | None = None, detail: dict | None = None) -> Issue:
    return {"code": code, "message": message, "path": path, "detail": detail}


def _sort_key(descriptor: FieldDescriptor) -> tuple:
    return (descriptor.display_order, descriptor.api_name)


class SchemaRegistry:
    """Caches descriptors per object type.

    Cached values are tuples of frozen descriptors; a refresh swaps the tuple
    under the lock so a reader never sees a half-replaced list.
    """

    def __init__(self, store) -> None:
        self._store = store
        self._lock = threading.Lock()
        self._descriptors: Dict[str, Tuple[FieldDescriptor, ...]] = {}
        self._columns: Dict[str, Tuple[str, ...]] = {}

    def _load(self, object_type: str) -> Tuple[FieldDescriptor, ...]:
        rows = self._store.select(METADATA_TABLE, {"table_name": object_type}, order_by=["display_order", "api_name"])
        descriptors: List[FieldDescriptor] = []
        for row in rows:
            try:
                descriptors.append(FieldDescriptor.from_row(row))
            except ValueError as exc:
                logger.warning("descriptor_row_invalid object=%s error=%s", object_type, exc)
        descriptors.sort(key=_sort_key)
        return tuple(descriptors)

    def _cached(self, object_type: str) -> Tuple[FieldDescriptor, ...]:
        with self._lock:
            cached = self._descriptors.get(object_type)
        if cached is not None:
            return cached
        loaded = self._load(object_type)
        with self._lock:
            self._descriptors[object_type] = loaded
        logger.info("descriptors_loaded object=%s count=%s", object_type, len(loaded))
        return loaded

    def descriptors(self, object_type: str, include_hidden: bool = False, strict: bool = False) -> list[FieldDescriptor]:
        """Ordered descriptors. A store failure yields [] unless strict, which re-raises."""
        try:
            items = self._cached(object_type)
        except StoreError as exc:
            if strict:
                raise
            logger.warning("descriptors_unavailable object=%s error=%s", object_type, exc)
            return []
        if include_hidden:
            return list(items)
        return [d for d in items if d.is_visible]

    def descriptor(self, object_type: str, api_name: str) -> FieldDescriptor | None:
        for item in self.descriptors(object_type, include_hidden=True):
            if item.api_name == api_name:
                return item
        return None

    def descriptor_by_id(self, object_type: str, descriptor_id: str) -> FieldDescriptor | None:
        for item in self.descriptors(object_type, include_hidden=True):
            if item.id is not None and item.id == str(descriptor_id):
                return item
        return None

    def columns(self, object_type: str, refresh: bool = False) -> list[str]:
        with self._lock:
            cached = None if refresh else self._columns.get(object_type)
        if cached is not None:
            return list(cached)
        rows = self._store.rpc("get_table_columns", {"table_name_param": object_type}) or []
        names = tuple(row["column_name"] for row in rows if row.get("column_name"))
        with self._lock:
            self._columns[object_type] = names
        return list(names)

    def label_for(self, object_type: str, column: str) -> str:
        item = self.descriptor(object_type, column)
        return item.display_label if item is not None else fallback_label(column)

    def labels(self, object_type: str, columns: list[str] | None = None) -> dict[str, str]:
        by_name = {d.api_name: d.display_label for d in self.descriptors(object_type, include_hidden=True)}
        if columns is None:
            try:
                columns = self.columns(object_type)
            except StoreError as exc:
                logger.warning("columns_unavailable object=%s error=%s", object_type, exc)
                columns = list(by_name.keys())
        return {col: by_name.get(col) or fallback_label(col) for col in columns}

    def resync(self, object_type: str) -> dict:
        """Generate descriptors from the physical schema if none exist yet."""
        errors: List[Issue] = []
        warnings: List[Issue] = []
        try:
            existing = self._load(object_type)
        except StoreError as exc:
            errors.append(_issue("SCHEMA_STORE_ERROR", str(exc), "object_type", exc.to_detail()))
            return {"ok": False, "errors": errors, "warnings": warnings, "synced": False, "count": 0}
        if existing:
            with self._lock:
                self._descriptors[object_type] = existing
            return {"ok": True, "errors": errors, "warnings": warnings, "synced": False, "count": len(existing)}

        try:
            result = self._store.rpc("sync_table_metadata", {"table_name_param": object_type}) or {}
        except StoreError as exc:
            errors.append(_issue("SCHEMA_SYNC_FAILED", str(exc), "object_type", exc.to_detail()))
            return {"ok": False, "errors": errors, "warnings": warnings, "synced": False, "count": 0}
        if isinstance(result, dict) and result.get("success") is False:
            errors.append(_issue("SCHEMA_SYNC_FAILED", result.get("error") or "sync failed", "object_type"))
            return {"ok": False, "errors": errors, "warnings": warnings, "synced": False, "count": 0}

        self.invalidate(object_type)
        count = len(self.descriptors(object_type, include_hidden=True))
        logger.info("descriptors_synced object=%s count=%s", object_type, count)
        return {"ok": True, "errors": errors, "warnings": warnings, "synced": True, "count": count}

    def refresh(self, object_type: str) -> dict:
        """Re-fetch descriptors, keeping the previous cache if the fetch fails."""
        try:
            loaded = self._load(object_type)
        except StoreError as exc:
            logger.warning("descriptors_refresh_failed object=%s error=%s", object_type, exc)
            return {
                "ok": False,
                "errors": [],
                "warnings": [_issue("SCHEMA_REFRESH_FAILED", str(exc), "object_type")],
                "count": None,
            }
        with self._lock:
            self._descriptors[object_type] = loaded
            self._columns.pop(object_type, None)
        return {"ok": True, "errors": [], "warnings": [], "count": len(loaded)}

    def invalidate(self, object_type: str | None = None) -> None:
        with self._lock:
            if object_type is None:
                self._descriptors.clear()
                self._columns.clear()
            else:
                self._descriptors.pop(object_type, None)
                self._columns.pop(object_type, None)
