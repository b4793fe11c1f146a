"""Record page composition: detail view, list view and lookup options."""

from __future__ import annotations

import logging
from typing import Any, Dict, List

from certflow.errors import StoreError
from certflow.record_map import ABSENT, RecordMap
from edit_session import EditSession
from field_meta import FieldDescriptor, FieldKind, fallback_label
import field_renderer
import workflow_machine


Issue = Dict[str, Any]

logger = logging.getLogger("certflow")


def _issue(code: str, message: str, path: str | None = None, detail: dict | None = None) -> Issue:
    return {"code": code, "message": message, "path": path, "detail": detail}


def _fail(code: str, message: str, path: str | None = None, detail: dict | None = None) -> dict:
    return {"ok": False, "errors": [_issue(code, message, path, detail)], "warnings": []}


def _store_fail(exc: StoreError) -> dict:
    detail = exc.to_detail()
    detail["retryable"] = True
    return _fail("STORE_ERROR", "Could not load data. Please try again.", None, detail)


def _raw_descriptor(object_type: str, column: str) -> FieldDescriptor:
    return FieldDescriptor(object_type=object_type, api_name=column, display_label=fallback_label(column))


def _load_descriptors(ctx, object_type: str, warnings: List[Issue], include_hidden: bool = False) -> list[FieldDescriptor]:
    try:
        return ctx.registry.descriptors(object_type, include_hidden=include_hidden, strict=True)
    except StoreError as exc:
        logger.warning("descriptors_unavailable object=%s error=%s", object_type, exc)
        detail = exc.to_detail()
        detail["retryable"] = True
        warnings.append(_issue("SCHEMA_UNAVAILABLE", "Field settings could not be loaded; showing raw columns.", "object_type", detail))
        return []


def resolve_references(store, descriptors: list[FieldDescriptor], rows: list[dict], warnings: List[Issue]) -> Dict[str, Dict[str, dict]]:
    """Fetch referenced records once per referenced object type."""
    wanted: Dict[str, set] = {}
    for descriptor in descriptors:
        if descriptor.kind is not FieldKind.REFERENCE or not descriptor.reference_table:
            continue
        for row in rows:
            value = row.get(descriptor.api_name)
            if value not in (None, ""):
                wanted.setdefault(descriptor.reference_table, set()).add(str(value))
    resolved: Dict[str, Dict[str, dict]] = {}
    for table, ids in wanted.items():
        try:
            found = store.select(table, {"id": sorted(ids)})
        except StoreError as exc:
            logger.warning("reference_lookup_failed table=%s error=%s", table, exc)
            warnings.append(_issue("REFERENCE_LOOKUP_FAILED", f"Could not resolve {table} references", table))
            continue
        resolved[table] = {str(r.get("id")): r for r in found}
    return resolved


def _candidates(store, descriptors: list[FieldDescriptor], warnings: List[Issue]) -> Dict[str, List[dict]]:
    out: Dict[str, List[dict]] = {}
    for descriptor in descriptors:
        table = descriptor.reference_table
        if descriptor.kind is not FieldKind.REFERENCE or not table or table in out:
            continue
        try:
            out[table] = store.select(table, None, order_by=[descriptor.display_field])
        except StoreError as exc:
            logger.warning("reference_candidates_failed table=%s error=%s", table, exc)
            warnings.append(_issue("REFERENCE_LOOKUP_FAILED", f"Could not load {table} options", table))
    return out


def _related_rows(ctx, profile_id: str | None, related: dict, record_id: Any, warnings: List[Issue]) -> list[dict] | None:
    child = related.get("child_table")
    if not child or not ctx.permissions.can_object(profile_id, child, "read"):
        return None
    try:
        rows = ctx.store.select(child, {related.get("foreign_key_field") or "id": record_id})
    except StoreError as exc:
        logger.warning("related_list_failed child=%s error=%s", child, exc)
        warnings.append(_issue("RELATED_LIST_FAILED", f"Could not load {child}", child))
        return None
    columns = related.get("display_columns") or ["name"]
    return [{"id": r.get("id"), **{c: r.get(c) for c in columns}} for r in rows]


def compose_record_page(
    ctx,
    profile_id: str | None,
    object_type: str,
    record_id: str,
    tab: str | None = None,
    editing: bool = False,
    locale: str = "en-US",
    session: EditSession | None = None,
) -> dict:
    """Build the detail view for one record.

    Each field is rendered read-only unless editing is on and the profile may
    both update the object and edit that field.
    """
    permissions = ctx.permissions
    if not permissions.can_object(profile_id, object_type, "read"):
        return _fail("PERMISSION_DENIED", f"You do not have permission to view {object_type}", "object_type")

    warnings: List[Issue] = []
    if session is None:
        try:
            rows = ctx.store.select(object_type, {"id": record_id})
        except StoreError as exc:
            return _store_fail(exc)
        if not rows:
            return _fail("RECORD_NOT_FOUND", "Record not found", "record_id")
        session = EditSession(ctx.writer, object_type, rows[0], profile_id)
    can_update = permissions.can_object(profile_id, object_type, "update")
    if editing and can_update and not session.editing:
        session.begin()
    record = session.snapshot if session.editing else session.committed

    descriptors = _load_descriptors(ctx, object_type, warnings)
    fallback_fields = None
    if not descriptors:
        try:
            columns = ctx.registry.columns(object_type)
        except StoreError:
            columns = list(record.keys())
        descriptors_for_render = [_raw_descriptor(object_type, c) for c in columns]
    else:
        descriptors_for_render = descriptors

    render_ctx = field_renderer.RenderContext(
        references=resolve_references(ctx.store, descriptors_for_render, [record.to_dict()], warnings),
        candidates=_candidates(ctx.store, descriptors_for_render, warnings) if session.editing else {},
        locale=locale,
    )
    access = permissions.field_access(profile_id, object_type, [d.api_name for d in descriptors_for_render])

    def render(descriptor: FieldDescriptor) -> dict | None:
        if not access.get(descriptor.api_name, {}).get("read"):
            return None
        value = record.get(descriptor.api_name)
        if value is ABSENT:
            value = None
        if session.editing and can_update and access[descriptor.api_name]["edit"] and not descriptor.is_system_field:
            return field_renderer.edit(descriptor, value, session.stage, render_ctx).to_dict()
        return field_renderer.present(descriptor, value, render_ctx)

    if not descriptors:
        fallback_fields = [f for f in (render(d) for d in descriptors_for_render) if f is not None]

    layout = ctx.layouts.sections(object_type, tab)
    sections = []
    for section in layout["sections"]:
        blocks = []
        for block in section.blocks:
            if block.block_type == "field":
                rendered = render(block.field)
                if rendered is None:
                    continue
                rendered["width"] = block.width
                blocks.append({"block_id": block.id, "block_type": "field", **rendered})
            else:
                rows = _related_rows(ctx, profile_id, block.related_list or {}, record.id, warnings)
                if rows is None:
                    continue
                blocks.append(
                    {
                        "block_id": block.id,
                        "block_type": "related_list",
                        "label": block.sort_label,
                        "child_table": block.related_list.get("child_table"),
                        "rows": rows,
                        "width": block.width,
                    }
                )
        if blocks:
            sections.append({"name": section.name, "label": section.label, "blocks": blocks})

    workflow = None
    if object_type in ctx.workflow_objects and access.get("status", {}).get("read", False):
        workflow = workflow_machine.progress(record.value("status"))
        workflow["can_change"] = can_update and access["status"]["edit"]

    return {
        "ok": True,
        "errors": [],
        "warnings": warnings,
        "record": record.to_dict(),
        "editing": session.editing,
        "tabs": ctx.layouts.tabs(object_type),
        "tab": tab,
        "layout_state": layout["state"],
        "hint": layout["hint"],
        "sections": sections,
        "fields": fallback_fields,
        "workflow": workflow,
        "affordances": {
            "can_edit": can_update,
            "can_create": permissions.can_object(profile_id, object_type, "create"),
            "can_delete": permissions.can_object(profile_id, object_type, "delete"),
        },
    }


def compose_record_list(ctx, profile_id: str | None, object_type: str, locale: str = "en-US") -> dict:
    if not ctx.permissions.can_object(profile_id, object_type, "read"):
        return _fail("PERMISSION_DENIED", f"You do not have permission to view {object_type}", "object_type")
    warnings: List[Issue] = []
    try:
        rows = ctx.store.select(object_type)
    except StoreError as exc:
        return _store_fail(exc)

    labels = ctx.registry.labels(object_type)
    by_name = {d.api_name: d for d in _load_descriptors(ctx, object_type, warnings, include_hidden=True)}
    access = ctx.permissions.field_access(profile_id, object_type, list(labels.keys()))
    columns = [c for c in labels if access[c]["read"] and (c not in by_name or by_name[c].is_visible)]
    descriptors = [by_name.get(c) or _raw_descriptor(object_type, c) for c in columns]
    render_ctx = field_renderer.RenderContext(
        references=resolve_references(ctx.store, descriptors, rows, warnings),
        locale=locale,
    )
    items = []
    for row in rows:
        record = RecordMap(row)
        cells = {}
        for descriptor in descriptors:
            value = record.value(descriptor.api_name)
            cells[descriptor.api_name] = field_renderer.present(descriptor, value, render_ctx)["display"]
        items.append({"id": record.id, "cells": cells})
    return {
        "ok": True,
        "errors": [],
        "warnings": warnings,
        "columns": [{"name": c, "label": labels[c]} for c in columns],
        "rows": items,
        "can_create": ctx.permissions.can_object(profile_id, object_type, "create"),
    }


def lookup_options(ctx, profile_id: str | None, object_type: str, query: str | None = None) -> dict:
    if not ctx.permissions.can_object(profile_id, object_type, "read"):
        return _fail("PERMISSION_DENIED", f"You do not have permission to view {object_type}", "object_type")
    try:
        rows = ctx.store.select(object_type, None, order_by=["name"])
    except StoreError as exc:
        return _store_fail(exc)
    secondary = field_renderer.LOOKUP_SECONDARY_FIELDS.get(object_type, "email")
    options = field_renderer.search_candidates(rows, query, "name", secondary)
    return {"ok": True, "errors": [], "warnings": [], "options": options}
