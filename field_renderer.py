"""Field rendering: read-only presentation and editable controls per field kind."""

from __future__ import annotations

from dataclasses import dataclass, field as dc_field
from datetime import date, datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from field_meta import FieldDescriptor, FieldKind
import workflow_machine


Issue = Dict[str, Any]
OnChange = Callable[[str, Any], None]

NULL_DISPLAY = "N/A"

ISO_STANDARDS = (
    "ISO 9001:2015",
    "ISO 14001:2015",
    "ISO 45001:2018",
    "ISO 27001:2013",
    "ISO 22000:2018",
    "ISO 13485:2016",
    "ISO 50001:2018",
)

# Secondary text searched by the reference type-ahead, per referenced object.
LOOKUP_SECONDARY_FIELDS = {"channel_partners": "country", "clients": "email", "users": "email"}

_MONTHS = (
    "January", "February", "March", "April", "May", "June",
    "July", "August", "September", "October", "November", "December",
)


def _issue(code: str, message: str, path: str | None = None, detail: dict | None = None) -> Issue:
    return {"code": code, "message": message, "path": path, "detail": detail}


def option_catalog(api_name: str, value: Any = None) -> list[dict] | None:
    """Closed option lists for text fields that are edited with a select."""
    if api_name == "status":
        return workflow_machine.status_options(value)
    if api_name == "iso_standard":
        options = [{"value": iso, "label": iso} for iso in ISO_STANDARDS]
        if isinstance(value, str) and value and value not in ISO_STANDARDS:
            options.append({"value": value, "label": value})
        return options
    return None


@dataclass
class RenderContext:
    """Inputs a renderer needs beyond the field itself.

    references maps object type -> record id -> record, for resolving
    reference labels. candidates maps object type -> records offered by the
    reference type-ahead.
    """

    references: Dict[str, Dict[str, dict]] = dc_field(default_factory=dict)
    candidates: Dict[str, List[dict]] = dc_field(default_factory=dict)
    locale: str = "en-US"


_DEFAULT_CONTEXT = RenderContext()


def parse_temporal(value: Any) -> date | datetime | None:
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return value
    if not isinstance(value, str) or not value.strip():
        return None
    text = value.strip()
    if len(text) == 10:
        try:
            return date.fromisoformat(text)
        except ValueError:
            return None
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(text.replace(" ", "T", 1))
    except ValueError:
        return None


def format_calendar_date(value: Any, locale: str = "en-US") -> str:
    parsed = parse_temporal(value)
    if parsed is None:
        return str(value)
    day = parsed.date() if isinstance(parsed, datetime) else parsed
    if locale == "en-US":
        return f"{_MONTHS[day.month - 1]} {day.day}, {day.year}"
    if locale in ("en-GB", "en-AU", "en-NZ", "en-IE"):
        return f"{day.day} {_MONTHS[day.month - 1]} {day.year}"
    return day.isoformat()


def date_input_value(value: Any) -> str:
    parsed = parse_temporal(value)
    if parsed is None:
        return ""
    day = parsed.date() if isinstance(parsed, datetime) else parsed
    return day.isoformat()


def merge_date(previous: Any, new_day: date, has_time: bool) -> str:
    """Apply a calendar-date edit to a stored value.

    Timestamps keep their existing time of day and offset; a timestamp with no
    prior value lands on midnight UTC.
    """
    if not has_time:
        return new_day.isoformat()
    prior = parse_temporal(previous)
    if isinstance(prior, datetime):
        return prior.replace(year=new_day.year, month=new_day.month, day=new_day.day).isoformat()
    return datetime(new_day.year, new_day.month, new_day.day, tzinfo=timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def reference_label(descriptor: FieldDescriptor, value: Any, context: RenderContext) -> str:
    records = context.references.get(descriptor.reference_table or "", {})
    target = records.get(str(value))
    if target is not None:
        label = target.get(descriptor.display_field)
        if label not in (None, ""):
            return str(label)
    return str(value)


def search_candidates(candidates: List[dict], query: str | None, display_field: str = "name", secondary_field: str | None = None) -> list[dict]:
    """Case-insensitive substring match on display name or secondary text."""
    needle = (query or "").strip().lower()
    matches = []
    for record in candidates:
        name = record.get(display_field)
        secondary = record.get(secondary_field) if secondary_field else None
        if needle:
            hay = [str(v).lower() for v in (name, secondary) if v not in (None, "")]
            if not any(needle in h for h in hay):
                continue
        matches.append(
            {
                "id": record.get("id"),
                "label": str(name) if name not in (None, "") else str(record.get("id")),
                "secondary": secondary,
            }
        )
    return matches


@dataclass
class EditableField:
    descriptor: FieldDescriptor
    control: str
    value: Any
    previous: Any
    on_change: OnChange
    options: Optional[List[dict]] = None
    context: RenderContext = dc_field(default_factory=RenderContext)

    @property
    def api_name(self) -> str:
        return self.descriptor.api_name

    def submit(self, raw: Any) -> dict:
        """Parse raw input for this control and hand the value to on_change."""
        parser = _PARSERS[self.control]
        parsed = parser(self, raw)
        if not parsed.get("ok"):
            return parsed
        self.on_change(self.api_name, parsed["value"])
        return parsed

    def search(self, query: str | None) -> list[dict]:
        if self.descriptor.kind is not FieldKind.REFERENCE:
            return []
        table = self.descriptor.reference_table or ""
        return search_candidates(
            self.context.candidates.get(table, []),
            query,
            self.descriptor.display_field,
            LOOKUP_SECONDARY_FIELDS.get(table, "email"),
        )

    def to_dict(self) -> dict:
        return {
            "field": self.api_name,
            "label": self.descriptor.display_label,
            "kind": self.descriptor.kind.value,
            "control": self.control,
            "value": self.value,
            "options": self.options,
            "required": self.descriptor.is_required,
            "width": self.descriptor.width,
            "mode": "edit",
        }


def _ok(value: Any) -> dict:
    return {"ok": True, "errors": [], "value": value}


def _fail(code: str, message: str, path: str) -> dict:
    return {"ok": False, "errors": [_issue(code, message, path)], "value": None}


def _parse_text(editable: EditableField, raw: Any) -> dict:
    if raw is None:
        return _ok(None)
    return _ok(str(raw))


def _parse_select(editable: EditableField, raw: Any) -> dict:
    if raw in (None, ""):
        return _ok(None)
    allowed = {opt["value"] for opt in editable.options or []}
    if raw not in allowed:
        return _fail("FIELD_OPTION_INVALID", "Value is not one of the allowed options", editable.api_name)
    return _ok(raw)


def _parse_number(editable: EditableField, raw: Any) -> dict:
    if raw is None or (isinstance(raw, str) and not raw.strip()):
        return _ok(None)
    if isinstance(raw, bool):
        return _fail("FIELD_NUMBER_INVALID", "Enter a number", editable.api_name)
    try:
        if editable.descriptor.is_integer:
            if isinstance(raw, float) and not raw.is_integer():
                raise ValueError(raw)
            return _ok(int(raw) if not isinstance(raw, str) else int(raw.strip()))
        return _ok(float(raw))
    except (TypeError, ValueError):
        return _fail("FIELD_NUMBER_INVALID", "Enter a number", editable.api_name)


def _parse_boolean(editable: EditableField, raw: Any) -> dict:
    if isinstance(raw, bool):
        return _ok(raw)
    if isinstance(raw, str) and raw.strip().lower() in ("true", "false"):
        return _ok(raw.strip().lower() == "true")
    return _fail("FIELD_BOOLEAN_INVALID", "Choose Yes or No", editable.api_name)


def _parse_date(editable: EditableField, raw: Any) -> dict:
    if raw is None or (isinstance(raw, str) and not raw.strip()):
        return _ok(None)
    try:
        new_day = date.fromisoformat(str(raw).strip()[:10])
    except ValueError:
        return _fail("FIELD_DATE_INVALID", "Enter a date as YYYY-MM-DD", editable.api_name)
    return _ok(merge_date(editable.previous, new_day, editable.descriptor.has_time))


def _parse_reference(editable: EditableField, raw: Any) -> dict:
    if raw in (None, ""):
        return _ok(None)
    key = str(raw)
    table = editable.descriptor.reference_table or ""
    if table in editable.context.candidates:
        ids = {str(r.get("id")) for r in editable.context.candidates[table]}
        if key not in ids:
            return _fail("FIELD_REFERENCE_UNKNOWN", "Choose an existing record", editable.api_name)
    return _ok(key)


_PARSERS = {
    "text": _parse_text,
    "select": _parse_select,
    "number": _parse_number,
    "boolean": _parse_boolean,
    "date": _parse_date,
    "typeahead": _parse_reference,
}


def _present_text(descriptor: FieldDescriptor, value: Any, context: RenderContext) -> str:
    if descriptor.api_name == "status":
        return workflow_machine.status_label(value) or str(value)
    return str(value)


def _present_number(descriptor: FieldDescriptor, value: Any, context: RenderContext) -> str:
    return str(value)


def _present_boolean(descriptor: FieldDescriptor, value: Any, context: RenderContext) -> str:
    return "Yes" if value else "No"


def _present_date(descriptor: FieldDescriptor, value: Any, context: RenderContext) -> str:
    return format_calendar_date(value, context.locale)


def _present_reference(descriptor: FieldDescriptor, value: Any, context: RenderContext) -> str:
    return reference_label(descriptor, value, context)


def _edit_text(descriptor: FieldDescriptor, value: Any, on_change: OnChange, context: RenderContext) -> EditableField:
    options = option_catalog(descriptor.api_name, value)
    if options is not None:
        return EditableField(descriptor, "select", value if value is not None else "", value, on_change, options, context)
    return EditableField(descriptor, "text", "" if value is None else str(value), value, on_change, None, context)


def _edit_number(descriptor: FieldDescriptor, value: Any, on_change: OnChange, context: RenderContext) -> EditableField:
    return EditableField(descriptor, "number", "" if value is None else str(value), value, on_change, None, context)


def _edit_boolean(descriptor: FieldDescriptor, value: Any, on_change: OnChange, context: RenderContext) -> EditableField:
    options = [{"value": "true", "label": "Yes"}, {"value": "false", "label": "No"}]
    return EditableField(descriptor, "boolean", "true" if value else "false", value, on_change, options, context)


def _edit_date(descriptor: FieldDescriptor, value: Any, on_change: OnChange, context: RenderContext) -> EditableField:
    return EditableField(descriptor, "date", date_input_value(value), value, on_change, None, context)


def _edit_reference(descriptor: FieldDescriptor, value: Any, on_change: OnChange, context: RenderContext) -> EditableField:
    editable = EditableField(descriptor, "typeahead", "" if value is None else str(value), value, on_change, None, context)
    editable.options = editable.search(None)
    return editable


# One presenter/editor pair per kind.
_HANDLERS = {
    FieldKind.TEXT: (_present_text, _edit_text),
    FieldKind.NUMBER: (_present_number, _edit_number),
    FieldKind.BOOLEAN: (_present_boolean, _edit_boolean),
    FieldKind.DATE: (_present_date, _edit_date),
    FieldKind.REFERENCE: (_present_reference, _edit_reference),
}


def _handlers(descriptor: FieldDescriptor):
    return _HANDLERS.get(descriptor.kind, _HANDLERS[FieldKind.TEXT])


def present(descriptor: FieldDescriptor, value: Any, context: RenderContext | None = None) -> dict:
    context = context or _DEFAULT_CONTEXT
    presenter, _ = _handlers(descriptor)
    display = NULL_DISPLAY if value is None else presenter(descriptor, value, context)
    return {
        "field": descriptor.api_name,
        "label": descriptor.display_label,
        "kind": descriptor.kind.value,
        "value": value,
        "display": display,
        "width": descriptor.width,
        "mode": "read",
    }


def edit(descriptor: FieldDescriptor, value: Any, on_change: OnChange, context: RenderContext | None = None) -> EditableField:
    context = context or _DEFAULT_CONTEXT
    _, editor = _handlers(descriptor)
    return editor(descriptor, value, on_change, context)
