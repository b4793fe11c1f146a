"""Field descriptors, layout blocks and the closed set of field kinds."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field as dc_field
from enum import Enum
from typing import Any, Dict, Optional, Tuple


SYSTEM_COLUMNS = ("id", "created_at", "updated_at", "created_by", "updated_by")
BASIC_COLUMNS = ("name", "email", "status")
WIDTHS = ("half", "full")


class FieldKind(str, Enum):
    TEXT = "text"
    NUMBER = "number"
    BOOLEAN = "boolean"
    DATE = "date"
    REFERENCE = "reference"

    @classmethod
    def parse(cls, field_type: str | None) -> "FieldKind":
        """Map a declared or physical type name onto a kind; unknown names are text."""
        key = (field_type or "").strip().lower()
        return _KIND_BY_TYPE.get(key, cls.TEXT)


_KIND_BY_TYPE: Dict[str, FieldKind] = {
    "text": FieldKind.TEXT,
    "varchar": FieldKind.TEXT,
    "character varying": FieldKind.TEXT,
    "char": FieldKind.TEXT,
    "uuid": FieldKind.TEXT,
    "email": FieldKind.TEXT,
    "number": FieldKind.NUMBER,
    "integer": FieldKind.NUMBER,
    "int": FieldKind.NUMBER,
    "int4": FieldKind.NUMBER,
    "int8": FieldKind.NUMBER,
    "bigint": FieldKind.NUMBER,
    "smallint": FieldKind.NUMBER,
    "decimal": FieldKind.NUMBER,
    "numeric": FieldKind.NUMBER,
    "real": FieldKind.NUMBER,
    "double precision": FieldKind.NUMBER,
    "float": FieldKind.NUMBER,
    "boolean": FieldKind.BOOLEAN,
    "bool": FieldKind.BOOLEAN,
    "date": FieldKind.DATE,
    "datetime": FieldKind.DATE,
    "timestamp": FieldKind.DATE,
    "timestamptz": FieldKind.DATE,
    "timestamp with time zone": FieldKind.DATE,
    "timestamp without time zone": FieldKind.DATE,
    "reference": FieldKind.REFERENCE,
}

_INTEGER_TYPES = {"integer", "int", "int4", "int8", "bigint", "smallint"}


def fallback_label(column: str) -> str:
    """Label for a column with no descriptor: underscores to spaces, first letter upper."""
    text = (column or "").replace("_", " ")
    return text[:1].upper() + text[1:]


def _as_bool(value: Any, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "t")
    return bool(value)


def _as_int(value: Any, default: int = 0) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


@dataclass(frozen=True)
class FieldDescriptor:
    object_type: str
    api_name: str
    display_label: str
    field_type: str = "text"
    is_required: bool = False
    is_nullable: bool = True
    default_value: Any = None
    display_order: int = 0
    section: str = "details"
    width: str = "half"
    is_visible: bool = True
    is_system_field: bool = False
    reference_table: Optional[str] = None
    reference_display_field: Optional[str] = None
    id: Optional[str] = None
    validation_rules: Tuple[Any, ...] = dc_field(default=(), compare=False)

    @property
    def kind(self) -> FieldKind:
        return FieldKind.parse(self.field_type)

    @property
    def has_time(self) -> bool:
        return self.kind is FieldKind.DATE and (self.field_type or "").strip().lower() != "date"

    @property
    def is_integer(self) -> bool:
        return (self.field_type or "").strip().lower() in _INTEGER_TYPES

    @property
    def display_field(self) -> str:
        return self.reference_display_field or "name"

    @classmethod
    def from_row(cls, row: dict) -> "FieldDescriptor":
        api_name = row.get("api_name") or row.get("column_name")
        if not isinstance(api_name, str) or not api_name:
            raise ValueError("field descriptor row has no api_name")
        width = row.get("width") if row.get("width") in WIDTHS else "half"
        rules = row.get("validation_rules")
        return cls(
            object_type=row.get("table_name") or "",
            api_name=api_name,
            display_label=row.get("display_label") or fallback_label(api_name),
            field_type=row.get("field_type") or "text",
            is_required=_as_bool(row.get("is_required"), False),
            is_nullable=_as_bool(row.get("is_nullable"), True),
            default_value=row.get("default_value"),
            display_order=_as_int(row.get("display_order")),
            section=row.get("section") or "details",
            width=width,
            is_visible=_as_bool(row.get("is_visible"), True),
            is_system_field=_as_bool(row.get("is_system_field"), False),
            reference_table=row.get("reference_table"),
            reference_display_field=row.get("reference_display_field"),
            id=str(row["id"]) if row.get("id") is not None else None,
            validation_rules=tuple(rules) if isinstance(rules, list) else (),
        )

    def to_dict(self) -> dict:
        data = asdict(self)
        data["validation_rules"] = list(self.validation_rules)
        data["kind"] = self.kind.value
        return data


@dataclass(frozen=True)
class LayoutBlock:
    id: str
    object_type: str
    block_type: str
    section: str = "details"
    display_order: int = 0
    label: Optional[str] = None
    tab: Optional[str] = None
    width: str = "half"
    is_visible: bool = True
    field_id: Optional[str] = None
    related_list_id: Optional[str] = None
    field: Optional[FieldDescriptor] = None
    related_list: Optional[dict] = dc_field(default=None, compare=False)

    @property
    def sort_label(self) -> str:
        if self.label:
            return self.label
        if self.field is not None:
            return self.field.display_label
        if self.related_list:
            return self.related_list.get("label") or ""
        return ""

    @classmethod
    def from_row(cls, row: dict, descriptor: FieldDescriptor | None = None, related_list: dict | None = None) -> "LayoutBlock":
        width = row.get("width")
        if width not in WIDTHS:
            width = descriptor.width if descriptor is not None else "half"
        return cls(
            id=str(row.get("id")),
            object_type=row.get("table_name") or "",
            block_type=row.get("block_type") or "field",
            section=row.get("section") or "details",
            display_order=_as_int(row.get("display_order")),
            label=row.get("label"),
            tab=row.get("tab_type"),
            width=width,
            is_visible=_as_bool(row.get("is_visible"), True),
            field_id=str(row["field_id"]) if row.get("field_id") is not None else None,
            related_list_id=str(row["related_list_id"]) if row.get("related_list_id") is not None else None,
            field=descriptor,
            related_list=related_list,
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "block_type": self.block_type,
            "section": self.section,
            "display_order": self.display_order,
            "label": self.sort_label,
            "tab": self.tab,
            "width": self.width,
            "field": self.field.to_dict() if self.field is not None else None,
            "related_list": dict(self.related_list) if self.related_list else None,
        }


@dataclass(frozen=True)
class Section:
    name: str
    blocks: Tuple[LayoutBlock, ...]

    @property
    def label(self) -> str:
        return fallback_label(self.name)

    @property
    def sort_key(self) -> int:
        return min(block.display_order for block in self.blocks)

    def to_dict(self) -> dict:
        return {"name": self.name, "label": self.label, "blocks": [b.to_dict() for b in self.blocks]}
