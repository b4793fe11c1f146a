"""Catalog of validation rule definitions. Rules are stored, never evaluated."""

from __future__ import annotations

import re
from typing import Any, Dict, List


Issue = Dict[str, Any]

RULES_TABLE = "validation_rules"

VALIDATION_TYPES = (
    {"value": "required", "label": "Required Field", "description": "Field must have a value"},
    {"value": "min_length", "label": "Minimum Length", "description": "Text must be at least X characters"},
    {"value": "max_length", "label": "Maximum Length", "description": "Text cannot exceed X characters"},
    {"value": "min_value", "label": "Minimum Value", "description": "Number must be at least X"},
    {"value": "max_value", "label": "Maximum Value", "description": "Number cannot exceed X"},
    {"value": "regex", "label": "Pattern Match", "description": "Text must match a regular expression"},
    {"value": "email", "label": "Email Format", "description": "Must be a valid email address"},
    {"value": "url", "label": "URL Format", "description": "Must be a valid URL"},
    {"value": "unique", "label": "Unique Value", "description": "Value must be unique in the table"},
    {"value": "custom", "label": "Custom Rule", "description": "Custom validation logic"},
)
_TYPE_IDS = {t["value"] for t in VALIDATION_TYPES}
_VALUED_TYPES = {"min_length", "max_length", "min_value", "max_value", "regex", "custom"}
_NUMERIC_TYPES = {"min_length", "max_length", "min_value", "max_value"}

_MESSAGES = {
    "required": "{field} is required",
    "min_length": "{field} must be at least {value} characters",
    "max_length": "{field} cannot exceed {value} characters",
    "min_value": "{field} must be at least {value}",
    "max_value": "{field} cannot exceed {value}",
    "regex": "{field} format is invalid",
    "email": "{field} must be a valid email address",
    "url": "{field} must be a valid URL",
    "unique": "{field} must be unique",
    "custom": "{field} validation failed",
}


def _issue(code: str, message: str, path: str | None = None, detail: dict | None = None) -> Issue:
    return {"code": code, "message": message, "path": path, "detail": detail}


def needs_value(rule_type: str) -> bool:
    return isinstance(rule_type, str) and rule_type in _VALUED_TYPES


def default_message(rule_type: str, field: str, value: Any = None) -> str:
    template = _MESSAGES.get(rule_type, "{field} is invalid")
    return template.format(field=field, value="" if value is None else value)


def validate_rule_definition(rule: dict, known_fields: list[str] | None = None) -> list[Issue]:
    """Shape checks for a rule definition before it is stored."""
    errors: List[Issue] = []
    rule_type = rule.get("type")
    if not isinstance(rule_type, str) or rule_type not in _TYPE_IDS:
        errors.append(_issue("RULE_TYPE_INVALID", "Unknown validation rule type", "type", {"type": rule_type}))
    field = rule.get("field")
    if not isinstance(field, str) or not field.strip():
        errors.append(_issue("RULE_FIELD_REQUIRED", "Field and error message are required", "field"))
    elif known_fields is not None and field not in known_fields:
        errors.append(_issue("RULE_FIELD_UNKNOWN", "Field does not exist on this object", "field", {"field": field}))
    message = rule.get("message")
    if not isinstance(message, str) or not message.strip():
        errors.append(_issue("RULE_MESSAGE_REQUIRED", "Field and error message are required", "message"))
    if needs_value(rule_type):
        value = rule.get("value")
        if value in (None, ""):
            errors.append(_issue("RULE_VALUE_REQUIRED", "This rule type needs a value", "value"))
        elif rule_type in _NUMERIC_TYPES:
            try:
                float(value)
            except (TypeError, ValueError):
                errors.append(_issue("RULE_VALUE_INVALID", "Value must be a number", "value"))
        elif rule_type == "regex":
            try:
                re.compile(str(value))
            except re.error:
                errors.append(_issue("RULE_VALUE_INVALID", "Value must be a valid regular expression", "value"))
    return errors


def list_rules(store, object_type: str) -> list[dict]:
    return store.select(RULES_TABLE, {"table_name": object_type}, order_by=["field", "type"])


def add_rule(store, object_type: str, rule: dict, known_fields: list[str] | None = None) -> dict:
    """Store a rule definition. A blank message gets the type's default wording."""
    rule = dict(rule)
    field = rule.get("field")
    message = rule.get("message")
    if isinstance(rule.get("type"), str) and rule["type"] in _TYPE_IDS and isinstance(field, str) and field.strip():
        if not isinstance(message, str) or not message.strip():
            rule["message"] = default_message(rule["type"], field.strip(), rule.get("value"))
    errors = validate_rule_definition(rule, known_fields)
    if errors:
        return {"ok": False, "errors": errors, "warnings": [], "rule": None}
    row = {
        "table_name": object_type,
        "field": rule["field"].strip(),
        "type": rule["type"],
        "value": None if rule.get("value") in (None, "") else str(rule["value"]),
        "message": rule["message"].strip(),
        "enabled": bool(rule.get("enabled", True)),
    }
    return {"ok": True, "errors": [], "warnings": [], "rule": store.insert(RULES_TABLE, row)}


def toggle_rule(store, object_type: str, rule_id: str) -> dict:
    rows = store.select(RULES_TABLE, {"id": rule_id, "table_name": object_type})
    if not rows:
        return {"ok": False, "errors": [_issue("RULE_NOT_FOUND", "Validation rule not found", "rule_id")], "warnings": [], "rule": None}
    updated = store.update(RULES_TABLE, rule_id, {"enabled": not rows[0].get("enabled", True)})
    return {"ok": True, "errors": [], "warnings": [], "rule": updated}


def delete_rule(store, object_type: str, rule_id: str) -> dict:
    rows = store.select(RULES_TABLE, {"id": rule_id, "table_name": object_type})
    if not rows:
        return {"ok": False, "errors": [_issue("RULE_NOT_FOUND", "Validation rule not found", "rule_id")], "warnings": [], "rule": None}
    store.delete(RULES_TABLE, rule_id)
    return {"ok": True, "errors": [], "warnings": [], "rule": rows[0]}
