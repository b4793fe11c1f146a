"""Workflow runtime: applies timeline clicks and close decisions to a record."""

from __future__ import annotations

import logging
from typing import Any, Dict, List

import workflow_machine


Issue = Dict[str, Any]

logger = logging.getLogger("certflow.workflow")


def _issue(code: str, message: str, path: str | None = None, detail: dict | None = None) -> Issue:
    return {"code": code, "message": message, "path": path, "detail": detail}


def _result(ok: bool, errors: List[Issue], warnings: List[Issue], record: dict | None, plan: dict | None) -> dict:
    return {"ok": ok, "errors": errors, "warnings": warnings, "record": record, "plan": plan}


def _prepare(object_type: str, record_id: str, ctx: dict, deps: dict):
    writer = deps.get("writer")
    permissions = deps.get("permissions")
    if writer is None or permissions is None:
        return None, _result(False, [_issue("WORKFLOW_DEPS_MISSING", "Required deps missing", "$")], [], None, None)
    profile_id = ctx.get("profile_id")
    if not (
        permissions.can_object(profile_id, object_type, "update")
        and permissions.can_field(profile_id, object_type, "status", "edit")
    ):
        return None, _result(
            False,
            [_issue("PERMISSION_DENIED", "You do not have permission to change the status", "status")],
            [],
            None,
            None,
        )
    record = writer.get(object_type, record_id)
    if record is None:
        return None, _result(False, [_issue("RECORD_NOT_FOUND", "Record not found", "record_id")], [], None, None)
    return record, None


def _apply(object_type: str, record_id: str, record: dict, plan_result: dict, ctx: dict, deps: dict) -> dict:
    if not plan_result.get("ok"):
        return _result(False, plan_result.get("errors", []), plan_result.get("warnings", []), record, None)
    plan = plan_result["plan"]
    warnings = list(plan_result.get("warnings", []))
    if plan.get("set_status") is None:
        return _result(True, [], warnings, record, plan)

    write = deps["writer"].update_fields(
        ctx.get("profile_id"),
        object_type,
        record_id,
        {"status": plan["set_status"]},
        ctx.get("actor_id"),
        workflow_step=True,
    )
    if not write.get("ok"):
        return _result(False, write.get("errors", []), warnings + write.get("warnings", []), record, plan)
    logger.info(
        "status_changed object=%s id=%s from=%s to=%s",
        object_type,
        record_id,
        record.get("status"),
        plan["set_status"],
    )
    return _result(True, [], warnings + write.get("warnings", []), write.get("record"), plan)


def apply_stage_click(object_type: str, record_id: str, stage: str, ctx: dict, deps: dict) -> dict:
    record, failure = _prepare(object_type, record_id, ctx, deps)
    if failure is not None:
        return failure
    plan_result = workflow_machine.plan_stage_click(record.get("status"), stage)
    return _apply(object_type, record_id, record, plan_result, ctx, deps)


def apply_decision(object_type: str, record_id: str, outcome: str, ctx: dict, deps: dict) -> dict:
    record, failure = _prepare(object_type, record_id, ctx, deps)
    if failure is not None:
        return failure
    plan_result = workflow_machine.plan_decision(record.get("status"), outcome)
    return _apply(object_type, record_id, record, plan_result, ctx, deps)
