"""Client status workflow: stage chain, legacy vocabulary and click planning."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List


Issue = Dict[str, Any]


@dataclass(frozen=True)
class Stage:
    id: str
    label: str
    short_label: str


STAGES = (
    Stage("application_form_sent", "Application Form Sent", "Form Sent"),
    Stage("application_form_received", "Application Form Received", "Form Received"),
    Stage("draft_reviewed", "Draft Reviewed", "Draft Verified"),
    Stage("draft_approved", "Draft Approved", "Draft Approved"),
    Stage("certificate_sent", "Certificate Sent", "Cert. Sent"),
    Stage("closed_won", "Closed (Won)", "Closed"),
    Stage("closed_lost", "Closed (Lost)", "Closed (Lost)"),
)
STAGE_BY_ID = {stage.id: stage for stage in STAGES}

ORDINARY_CHAIN = (
    "application_form_sent",
    "application_form_received",
    "draft_reviewed",
    "draft_approved",
    "certificate_sent",
)
DECISION_FROM = "certificate_sent"
TERMINAL_STATES = ("closed_won", "closed_lost")
OUTCOMES = {"won": "closed_won", "lost": "closed_lost", "closed_won": "closed_won", "closed_lost": "closed_lost"}

# Timeline dots: the ordinary chain plus one decision point. A lost record
# sits on the same dot as a won one.
VISUAL_STAGES = ORDINARY_CHAIN + ("closed_won",)

# Older records carry this vocabulary. Reads map it; writes never rewrite it.
LEGACY_STATUS_MAP = {
    "draft_verified": "draft_reviewed",
    "certification_sent": "certificate_sent",
    "completed_won": "closed_won",
    "completed_lost": "closed_lost",
}

_LABEL_SPELLINGS = {
    "form sent": "application_form_sent",
    "form received": "application_form_received",
    "draft verified": "draft_reviewed",
    "cert. sent": "certificate_sent",
    "certification sent": "certificate_sent",
    "completed - won": "closed_won",
    "completed - lost": "closed_lost",
    "closed": "closed_won",
}


def _issue(code: str, message: str, path: str | None = None, detail: dict | None = None) -> Issue:
    return {"code": code, "message": message, "path": path, "detail": detail}


def canonical_status(value: Any) -> str | None:
    """Return the current-vocabulary stage id for a stored status, or None."""
    if not isinstance(value, str) or not value.strip():
        return None
    raw = value.strip()
    if raw in STAGE_BY_ID:
        return raw
    if raw in LEGACY_STATUS_MAP:
        return LEGACY_STATUS_MAP[raw]
    key = raw.lower()
    if key in STAGE_BY_ID:
        return key
    if key in LEGACY_STATUS_MAP:
        return LEGACY_STATUS_MAP[key]
    if key in _LABEL_SPELLINGS:
        return _LABEL_SPELLINGS[key]
    for stage in STAGES:
        if key == stage.label.lower():
            return stage.id
    return None


def is_legacy(value: Any) -> bool:
    return isinstance(value, str) and value not in STAGE_BY_ID and canonical_status(value) is not None


def status_label(value: Any) -> str | None:
    status = canonical_status(value)
    if status is None:
        return value if isinstance(value, str) and value else None
    return STAGE_BY_ID[status].label


def visual_index(value: Any) -> int:
    status = canonical_status(value)
    if status is None:
        return -1
    if status in TERMINAL_STATES:
        return len(VISUAL_STAGES) - 1
    return VISUAL_STAGES.index(status)


def progress(stored_status: Any) -> dict:
    current = canonical_status(stored_status)
    index = visual_index(stored_status)
    stages = []
    for idx, stage_id in enumerate(VISUAL_STAGES):
        stage = STAGE_BY_ID[stage_id]
        if stage_id == "closed_won" and current == "closed_lost":
            stage = STAGE_BY_ID["closed_lost"]
        stages.append(
            {
                "id": stage_id,
                "label": stage.label,
                "short_label": stage.short_label,
                "completed": index >= 0 and idx < index,
                "active": idx == index,
                "decision_point": stage_id == "closed_won",
            }
        )
    percent = 0.0
    if index > 0:
        percent = round(index / (len(VISUAL_STAGES) - 1) * 100, 2)
    return {
        "stored": stored_status,
        "current": current,
        "legacy": is_legacy(stored_status),
        "stages": stages,
        "percent": percent,
        "decision_available": current == DECISION_FROM,
        "outcome": {"closed_won": "won", "closed_lost": "lost"}.get(current or ""),
    }


def status_options(stored_status: Any = None) -> list[dict]:
    """Options for a plain status select.

    Only the ordinary chain is offered. A stored legacy or terminal value is
    kept as an extra option so editing another field never drops it.
    """
    options = [{"value": sid, "label": STAGE_BY_ID[sid].label} for sid in ORDINARY_CHAIN]
    if isinstance(stored_status, str) and stored_status and stored_status not in ORDINARY_CHAIN:
        options.append({"value": stored_status, "label": status_label(stored_status) or stored_status})
    return options


def _plan(set_status: str | None, open_decision: bool, current: str | None) -> dict:
    return {
        "current": current,
        "set_status": set_status,
        "open_decision": open_decision,
        "choices": list(TERMINAL_STATES) if open_decision else [],
    }


def plan_stage_click(stored_status: Any, stage_id: str) -> dict:
    """Decide what clicking a timeline stage does.

    The terminal states are never set by a click; the click only opens the
    two-choice decision, and only from certificate_sent.
    """
    errors: List[Issue] = []
    warnings: List[Issue] = []
    current = canonical_status(stored_status)
    target = canonical_status(stage_id)
    if target is None:
        errors.append(_issue("WORKFLOW_STAGE_UNKNOWN", "Unknown workflow stage", "stage", {"stage": stage_id}))
        return {"ok": False, "errors": errors, "warnings": warnings, "plan": None}

    if target in TERMINAL_STATES and current in TERMINAL_STATES:
        # Both outcomes share the active decision dot.
        return {"ok": True, "errors": errors, "warnings": warnings, "plan": _plan(None, False, current)}
    if target in TERMINAL_STATES or (target == DECISION_FROM and current == DECISION_FROM):
        if current != DECISION_FROM:
            errors.append(
                _issue(
                    "WORKFLOW_DECISION_UNAVAILABLE",
                    "A record can only be closed from Certificate Sent",
                    "stage",
                    {"stage": stage_id, "current": current},
                )
            )
            return {"ok": False, "errors": errors, "warnings": warnings, "plan": None}
        return {"ok": True, "errors": errors, "warnings": warnings, "plan": _plan(None, True, current)}

    if target == current:
        return {"ok": True, "errors": errors, "warnings": warnings, "plan": _plan(None, False, current)}
    if current is None and stored_status not in (None, ""):
        warnings.append(_issue("WORKFLOW_STATUS_UNRECOGNIZED", "Stored status is not a known stage", "status", {"status": stored_status}))
    return {"ok": True, "errors": errors, "warnings": warnings, "plan": _plan(target, False, current)}


def plan_decision(stored_status: Any, outcome: str) -> dict:
    errors: List[Issue] = []
    current = canonical_status(stored_status)
    terminal = OUTCOMES.get((outcome or "").strip().lower())
    if terminal is None:
        errors.append(_issue("WORKFLOW_OUTCOME_INVALID", "Outcome must be won or lost", "outcome", {"outcome": outcome}))
        return {"ok": False, "errors": errors, "warnings": [], "plan": None}
    if current != DECISION_FROM:
        errors.append(
            _issue(
                "WORKFLOW_DECISION_UNAVAILABLE",
                "A record can only be closed from Certificate Sent",
                "outcome",
                {"current": current},
            )
        )
        return {"ok": False, "errors": errors, "warnings": [], "plan": None}
    return {"ok": True, "errors": errors, "warnings": [], "plan": _plan(terminal, False, current)}


def check_generic_status_update(before: Any, after: Any) -> list[Issue]:
    """Issues for a status change arriving through a plain field save."""
    if after == before:
        return []
    if after in (None, ""):
        return []
    target = canonical_status(after)
    if target is None:
        return [_issue("WORKFLOW_STATUS_UNKNOWN", "Unknown status value", "status", {"status": after})]
    if target in TERMINAL_STATES and canonical_status(before) != target:
        return [
            _issue(
                "WORKFLOW_DECISION_REQUIRED",
                "Closing a record requires the won/lost decision",
                "status",
                {"status": after},
            )
        ]
    return []
