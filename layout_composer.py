"""Layout composer: groups layout blocks into ordered sections and tabs."""

from __future__ import annotations

import logging
import threading
from typing import Dict, Iterable, List, Tuple

from field_meta import LayoutBlock, Section, fallback_label


LAYOUT_TABLE = "layout_blocks"
RELATED_LIST_TABLE = "related_list_metadata"

DEFAULT_TABS: Dict[str, Tuple[str, ...]] = {
    "clients": ("information", "documents", "billing", "notes"),
    "channel_partners": ("information", "clients", "billing", "notes"),
}
_FALLBACK_TABS = ("information", "notes")

UNCONFIGURED_HINT = "No layout is configured for this view yet. Add layout blocks to show fields here."
EMPTY_HINT = "All layout blocks for this view are hidden."

logger = logging.getLogger("certflow.layout")


def default_tabs(object_type: str) -> tuple[str, ...]:
    return DEFAULT_TABS.get(object_type, _FALLBACK_TABS)


def group_sections(blocks: Iterable[LayoutBlock]) -> list[Section]:
    """Partition blocks by section and order both levels.

    Sections sort by the smallest display order among their blocks (ties by
    section name); blocks sort by display order, ties by label.
    """
    by_section: Dict[str, List[LayoutBlock]] = {}
    for block in blocks:
        by_section.setdefault(block.section, []).append(block)
    sections = []
    for name, members in by_section.items():
        if not members:
            continue
        members.sort(key=lambda b: (b.display_order, b.sort_label))
        sections.append(Section(name=name, blocks=tuple(members)))
    sections.sort(key=lambda s: (s.sort_key, s.name))
    return sections


class LayoutComposer:
    def __init__(self, store, registry) -> None:
        self._store = store
        self._registry = registry
        self._lock = threading.Lock()
        self._rows: Dict[tuple, Tuple[dict, ...]] = {}

    def _block_rows(self, object_type: str, tab: str | None) -> Tuple[dict, ...]:
        key = (object_type, tab)
        with self._lock:
            cached = self._rows.get(key)
        if cached is not None:
            return cached
        filters = {"table_name": object_type}
        if tab is not None:
            filters["tab_type"] = tab
        rows = tuple(self._store.select(LAYOUT_TABLE, filters, order_by=["display_order"]))
        with self._lock:
            self._rows[key] = rows
        return rows

    def _related_lists(self, object_type: str) -> Dict[str, dict]:
        rows = self._store.select(RELATED_LIST_TABLE, {"parent_table": object_type})
        return {str(row.get("id")): row for row in rows}

    def blocks(self, object_type: str, tab: str | None = None) -> list[LayoutBlock]:
        rows = [r for r in self._block_rows(object_type, tab) if r.get("is_visible", True)]
        related = None
        blocks: List[LayoutBlock] = []
        for row in rows:
            block_type = row.get("block_type") or "field"
            if block_type == "field":
                descriptor = None
                if row.get("field_id") is not None:
                    descriptor = self._registry.descriptor_by_id(object_type, str(row["field_id"]))
                if descriptor is None or not descriptor.is_visible:
                    logger.warning("layout_block_dropped object=%s block=%s field=%s", object_type, row.get("id"), row.get("field_id"))
                    continue
                blocks.append(LayoutBlock.from_row(row, descriptor=descriptor))
            elif block_type == "related_list":
                if related is None:
                    related = self._related_lists(object_type)
                meta = related.get(str(row.get("related_list_id")))
                if meta is None:
                    logger.warning("layout_block_dropped object=%s block=%s related_list=%s", object_type, row.get("id"), row.get("related_list_id"))
                    continue
                blocks.append(LayoutBlock.from_row(row, related_list=meta))
            else:
                logger.warning("layout_block_unknown_type object=%s block=%s type=%s", object_type, row.get("id"), block_type)
        return blocks

    def sections(self, object_type: str, tab: str | None = None) -> dict:
        rows = self._block_rows(object_type, tab)
        if not rows:
            return {"ok": True, "errors": [], "warnings": [], "state": "unconfigured", "hint": UNCONFIGURED_HINT, "sections": []}
        sections = group_sections(self.blocks(object_type, tab))
        if not sections:
            return {"ok": True, "errors": [], "warnings": [], "state": "empty", "hint": EMPTY_HINT, "sections": []}
        return {"ok": True, "errors": [], "warnings": [], "state": "ready", "hint": None, "sections": sections}

    def tabs(self, object_type: str) -> list[dict]:
        """Configured tabs, default tabs first in their usual order."""
        seen: List[str] = []
        for row in self._block_rows(object_type, None):
            tab = row.get("tab_type")
            if tab and row.get("is_visible", True) and tab not in seen:
                seen.append(tab)
        preferred = default_tabs(object_type)
        ordered = [t for t in preferred if t in seen] + [t for t in seen if t not in preferred]
        return [{"id": tab, "label": fallback_label(tab)} for tab in ordered]

    def invalidate(self, object_type: str | None = None) -> None:
        with self._lock:
            if object_type is None:
                self._rows.clear()
                return
            for key in [k for k in self._rows if k[0] == object_type]:
                self._rows.pop(key, None)
