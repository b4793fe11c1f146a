"""FastAPI app for certification client records."""

from __future__ import annotations

import logging
import os
import sys
from pathlib import Path

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


def _load_env_file(path: Path) -> None:
    if not path.exists():
        return
    for line in path.read_text(encoding="utf-8").splitlines():
        line = line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        key = key.strip()
        value = value.strip().strip('"').strip("'")
        if key and key not in os.environ:
            os.environ[key] = value


_load_env_file(ROOT / "app" / ".env")

from app.auth import SupabaseAuthMiddleware, auth_disabled
from app.context import EngineContext, build_default_context
from certflow.errors import StoreError
from certflow.fingerprint import fingerprint
from edit_session import EditSession
import record_page
import validation_catalog
import workflow_runtime


app = FastAPI(title="certflow")
logger = logging.getLogger("certflow")
logging.basicConfig(level=logging.INFO)

USE_DB = os.getenv("USE_DB", "").strip() == "1"
SUPABASE_URL = os.getenv("SUPABASE_URL", "").strip()
SUPABASE_AUD = os.getenv("SUPABASE_JWT_AUDIENCE", "").strip() or None
DISABLE_AUTH = auth_disabled()
DEFAULT_LOCALE = os.getenv("CERTFLOW_LOCALE", "en-US").strip() or "en-US"
DEV_USER_ID = os.getenv("CERTFLOW_DEV_USER_ID", "00000000-0000-0000-0000-000000000001").strip()
# Object whose update permission marks a profile as a metadata administrator.
ADMIN_OBJECT = "field_metadata"

_LOCAL_CORS_REGEX = r"http://localhost:\d+|http://127\.0\.0\.1:\d+"
_CORS_ORIGINS = sorted(
    origin.strip().rstrip("/")
    for origin in os.getenv("CERTFLOW_CORS_ORIGINS", "").split(",")
    if origin.strip()
)
logger.info("auth_disabled=%s use_db=%s supabase_url=%s", DISABLE_AUTH, USE_DB, SUPABASE_URL)

_STATUS_BY_CODE = {
    "AUTH_REQUIRED": 401,
    "PERMISSION_DENIED": 403,
    "RECORD_NOT_FOUND": 404,
    "RULE_NOT_FOUND": 404,
    "RECORD_CONSTRAINT_VIOLATION": 409,
    "WORKFLOW_DECISION_UNAVAILABLE": 409,
    "WORKFLOW_DECISION_REQUIRED": 409,
    "SAVE_IN_PROGRESS": 409,
    "STORE_ERROR": 503,
    "SCHEMA_STORE_ERROR": 503,
}


def _error_response(code: str, message: str, path: str | None = None, detail: dict | None = None, status: int = 400) -> JSONResponse:
    body = {
        "ok": False,
        "errors": [{"code": code, "message": message, "path": path, "detail": detail}],
        "warnings": [],
    }
    return JSONResponse(jsonable_encoder(body), status_code=status)


def _ok_response(payload: dict, warnings: list | None = None, status: int = 200) -> JSONResponse:
    body = {"ok": True, **payload, "errors": [], "warnings": warnings or []}
    return JSONResponse(jsonable_encoder(body), status_code=status)


def _result_response(result: dict, keys: tuple[str, ...], status: int = 200) -> JSONResponse:
    if result.get("ok"):
        return _ok_response({k: result.get(k) for k in keys}, result.get("warnings"), status=status)
    errors = result.get("errors") or []
    code = errors[0].get("code") if errors else None
    body = {"ok": False, "errors": errors, "warnings": result.get("warnings") or []}
    return JSONResponse(jsonable_encoder(body), status_code=_STATUS_BY_CODE.get(code, 400))


@app.exception_handler(StoreError)
async def store_error_handler(request: Request, exc: StoreError):
    logger.warning("store_error path=%s code=%s error=%s", request.url.path, exc.code, exc.message)
    detail = exc.to_detail()
    detail["retryable"] = True
    return _error_response("STORE_ERROR", "Could not reach the data store. Please try again.", detail=detail, status=503)


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("unhandled_error path=%s", request.url.path)
    return _error_response("INTERNAL_ERROR", "Unexpected server error", detail={"error": str(exc)}, status=500)


app.add_middleware(
    CORSMiddleware,
    allow_origins=_CORS_ORIGINS,
    allow_origin_regex=_LOCAL_CORS_REGEX,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
if not DISABLE_AUTH:
    if not SUPABASE_URL:
        raise RuntimeError("SUPABASE_URL is required for auth")
    app.add_middleware(SupabaseAuthMiddleware, supabase_url=SUPABASE_URL, audience=SUPABASE_AUD)

app.state.engine = build_default_context(USE_DB)


def _engine(request: Request) -> EngineContext:
    return request.app.state.engine


def _resolve_actor(request: Request) -> dict | JSONResponse:
    user = getattr(request.state, "user", None)
    if (not user or not user.get("id")) and auth_disabled():
        user = {"id": request.headers.get("X-User-Id") or DEV_USER_ID, "email": None}
    if not user or not user.get("id"):
        return _error_response("AUTH_REQUIRED", "Authenticated user required", status=401)
    profile_id = _engine(request).permissions.profile_for_user(user["id"])
    if profile_id is None:
        logger.warning("actor_without_profile user=%s", user["id"])
    return {"user_id": user["id"], "email": user.get("email"), "profile_id": profile_id}


def _is_admin(request: Request, actor: dict) -> bool:
    return _engine(request).permissions.can_object(actor["profile_id"], ADMIN_OBJECT, "update")


def _flag(value: str | None) -> bool:
    return (value or "").strip().lower() in ("1", "true", "yes")


async def _safe_json(request: Request) -> dict:
    try:
        body = await request.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


@app.get("/health")
async def health() -> dict:
    return {"ok": True}


# ---------------------------------------------------------------- metadata


@app.get("/objects/{object_type}/descriptors")
async def get_descriptors(object_type: str, request: Request, all: str | None = None):
    actor = _resolve_actor(request)
    if isinstance(actor, JSONResponse):
        return actor
    ctx = _engine(request)
    include_hidden = _flag(all)
    if include_hidden and not _is_admin(request, actor):
        return _error_response("PERMISSION_DENIED", "Only administrators can list hidden fields", "all", status=403)
    if not ctx.permissions.can_object(actor["profile_id"], object_type, "read"):
        return _error_response("PERMISSION_DENIED", f"You do not have permission to view {object_type}", "object_type", status=403)
    items = [d.to_dict() for d in ctx.registry.descriptors(object_type, include_hidden=include_hidden)]
    return _ok_response(
        {
            "descriptors": items,
            "labels": ctx.registry.labels(object_type),
            "fingerprint": fingerprint(items),
        }
    )


@app.post("/objects/{object_type}/descriptors/sync")
async def sync_descriptors(object_type: str, request: Request):
    actor = _resolve_actor(request)
    if isinstance(actor, JSONResponse):
        return actor
    if not _is_admin(request, actor):
        return _error_response("PERMISSION_DENIED", "Only administrators can sync field metadata", "object_type", status=403)
    ctx = _engine(request)
    result = ctx.registry.resync(object_type)
    if result.get("ok") and result.get("synced"):
        ctx.layouts.invalidate(object_type)
    return _result_response(result, ("synced", "count"))


@app.post("/objects/{object_type}/descriptors/refresh")
async def refresh_descriptors(object_type: str, request: Request):
    actor = _resolve_actor(request)
    if isinstance(actor, JSONResponse):
        return actor
    ctx = _engine(request)
    result = ctx.registry.refresh(object_type)
    ctx.layouts.invalidate(object_type)
    items = [d.to_dict() for d in ctx.registry.descriptors(object_type)]
    # A failed refresh keeps the cached descriptors; report it as a warning only.
    return _ok_response({"refreshed": result["ok"], "count": len(items), "fingerprint": fingerprint(items)}, result["warnings"])


@app.get("/objects/{object_type}/layout")
async def get_layout(object_type: str, request: Request, tab: str | None = None):
    actor = _resolve_actor(request)
    if isinstance(actor, JSONResponse):
        return actor
    ctx = _engine(request)
    if not ctx.permissions.can_object(actor["profile_id"], object_type, "read"):
        return _error_response("PERMISSION_DENIED", f"You do not have permission to view {object_type}", "object_type", status=403)
    result = ctx.layouts.sections(object_type, tab)
    return _ok_response(
        {
            "state": result["state"],
            "hint": result["hint"],
            "sections": [s.to_dict() for s in result["sections"]],
        }
    )


@app.get("/objects/{object_type}/tabs")
async def get_tabs(object_type: str, request: Request):
    actor = _resolve_actor(request)
    if isinstance(actor, JSONResponse):
        return actor
    ctx = _engine(request)
    tabs = ctx.layouts.tabs(object_type)
    hint = None if tabs else "No tabs configured"
    return _ok_response({"tabs": tabs, "hint": hint})


@app.post("/admin/cache/invalidate")
async def invalidate_cache(request: Request):
    actor = _resolve_actor(request)
    if isinstance(actor, JSONResponse):
        return actor
    if not _is_admin(request, actor):
        return _error_response("PERMISSION_DENIED", "Only administrators can reset caches", status=403)
    body = await _safe_json(request)
    object_type = body.get("object_type") if isinstance(body.get("object_type"), str) else None
    _engine(request).invalidate(object_type)
    return _ok_response({"invalidated": object_type or "*"})


# ----------------------------------------------------------------- records


@app.get("/records/{object_type}")
async def list_records(object_type: str, request: Request):
    actor = _resolve_actor(request)
    if isinstance(actor, JSONResponse):
        return actor
    result = record_page.compose_record_list(_engine(request), actor["profile_id"], object_type, DEFAULT_LOCALE)
    return _result_response(result, ("columns", "rows", "can_create"))


@app.get("/records/{object_type}/{record_id}")
async def get_record(object_type: str, record_id: str, request: Request, tab: str | None = None, editing: str | None = None):
    actor = _resolve_actor(request)
    if isinstance(actor, JSONResponse):
        return actor
    result = record_page.compose_record_page(
        _engine(request),
        actor["profile_id"],
        object_type,
        record_id,
        tab=tab,
        editing=_flag(editing),
        locale=DEFAULT_LOCALE,
    )
    return _result_response(
        result,
        ("record", "editing", "tabs", "tab", "layout_state", "hint", "sections", "fields", "workflow", "affordances"),
    )


@app.post("/records/{object_type}")
async def create_record(object_type: str, request: Request):
    actor = _resolve_actor(request)
    if isinstance(actor, JSONResponse):
        return actor
    body = await _safe_json(request)
    values = body.get("values") if isinstance(body.get("values"), dict) else body
    result = _engine(request).writer.create(actor["profile_id"], object_type, values, actor["user_id"])
    return _result_response(result, ("record",), status=201)


@app.put("/records/{object_type}/{record_id}")
async def save_record(object_type: str, record_id: str, request: Request):
    actor = _resolve_actor(request)
    if isinstance(actor, JSONResponse):
        return actor
    body = await _safe_json(request)
    snapshot = body.get("record")
    if not isinstance(snapshot, dict):
        return _error_response("RECORD_REQUIRED", "record object required", "record", status=400)
    ctx = _engine(request)
    current = ctx.writer.get(object_type, record_id)
    if current is None:
        return _error_response("RECORD_NOT_FOUND", "Record not found", "record_id", status=404)
    session = EditSession(ctx.writer, object_type, current, actor["profile_id"], actor["user_id"])
    session.begin()
    for key, value in snapshot.items():
        if key != "id":
            session.stage(key, value)
    result = session.save()
    return _result_response(result, ("record",))


@app.delete("/records/{object_type}/{record_id}")
async def delete_record(object_type: str, record_id: str, request: Request):
    actor = _resolve_actor(request)
    if isinstance(actor, JSONResponse):
        return actor
    result = _engine(request).writer.delete(actor["profile_id"], object_type, record_id)
    return _result_response(result, ("record",))


@app.post("/records/{object_type}/{record_id}/status/click")
async def click_status(object_type: str, record_id: str, request: Request):
    actor = _resolve_actor(request)
    if isinstance(actor, JSONResponse):
        return actor
    ctx = _engine(request)
    if object_type not in ctx.workflow_objects:
        return _error_response("WORKFLOW_NOT_ENABLED", f"{object_type} has no status workflow", "object_type", status=400)
    body = await _safe_json(request)
    stage = body.get("stage")
    if not isinstance(stage, str) or not stage:
        return _error_response("STAGE_REQUIRED", "stage required", "stage", status=400)
    result = workflow_runtime.apply_stage_click(
        object_type,
        record_id,
        stage,
        {"profile_id": actor["profile_id"], "actor_id": actor["user_id"]},
        {"writer": ctx.writer, "permissions": ctx.permissions},
    )
    return _result_response(result, ("record", "plan"))


@app.post("/records/{object_type}/{record_id}/status/decide")
async def decide_status(object_type: str, record_id: str, request: Request):
    actor = _resolve_actor(request)
    if isinstance(actor, JSONResponse):
        return actor
    ctx = _engine(request)
    if object_type not in ctx.workflow_objects:
        return _error_response("WORKFLOW_NOT_ENABLED", f"{object_type} has no status workflow", "object_type", status=400)
    body = await _safe_json(request)
    result = workflow_runtime.apply_decision(
        object_type,
        record_id,
        str(body.get("outcome") or ""),
        {"profile_id": actor["profile_id"], "actor_id": actor["user_id"]},
        {"writer": ctx.writer, "permissions": ctx.permissions},
    )
    return _result_response(result, ("record", "plan"))


# ------------------------------------------------------------- permissions


@app.get("/permissions/check/object")
async def check_object_permission(request: Request, object: str, action: str):
    actor = _resolve_actor(request)
    if isinstance(actor, JSONResponse):
        return actor
    allowed = _engine(request).permissions.can_object(actor["profile_id"], object, action)
    return _ok_response({"allowed": allowed})


@app.get("/permissions/check/field")
async def check_field_permission(request: Request, object: str, field: str, action: str):
    actor = _resolve_actor(request)
    if isinstance(actor, JSONResponse):
        return actor
    allowed = _engine(request).permissions.can_field(actor["profile_id"], object, field, action)
    return _ok_response({"allowed": allowed})


@app.post("/lookup/{object_type}/options")
async def lookup_options(object_type: str, request: Request):
    actor = _resolve_actor(request)
    if isinstance(actor, JSONResponse):
        return actor
    body = await _safe_json(request)
    query = body.get("q") if isinstance(body.get("q"), str) else None
    result = record_page.lookup_options(_engine(request), actor["profile_id"], object_type, query)
    return _result_response(result, ("options",))


# -------------------------------------------------------- validation rules


@app.get("/validation-rules/{object_type}")
async def list_validation_rules(object_type: str, request: Request):
    actor = _resolve_actor(request)
    if isinstance(actor, JSONResponse):
        return actor
    rules = validation_catalog.list_rules(_engine(request).store, object_type)
    return _ok_response({"rules": rules, "types": list(validation_catalog.VALIDATION_TYPES)})


@app.post("/validation-rules/{object_type}")
async def add_validation_rule(object_type: str, request: Request):
    actor = _resolve_actor(request)
    if isinstance(actor, JSONResponse):
        return actor
    if not _is_admin(request, actor):
        return _error_response("PERMISSION_DENIED", "Only administrators can manage validation rules", status=403)
    ctx = _engine(request)
    body = await _safe_json(request)
    known = [d.api_name for d in ctx.registry.descriptors(object_type, include_hidden=True)] or None
    result = validation_catalog.add_rule(ctx.store, object_type, body, known)
    return _result_response(result, ("rule",), status=201)


@app.post("/validation-rules/{object_type}/{rule_id}/toggle")
async def toggle_validation_rule(object_type: str, rule_id: str, request: Request):
    actor = _resolve_actor(request)
    if isinstance(actor, JSONResponse):
        return actor
    if not _is_admin(request, actor):
        return _error_response("PERMISSION_DENIED", "Only administrators can manage validation rules", status=403)
    result = validation_catalog.toggle_rule(_engine(request).store, object_type, rule_id)
    return _result_response(result, ("rule",))


@app.delete("/validation-rules/{object_type}/{rule_id}")
async def delete_validation_rule(object_type: str, rule_id: str, request: Request):
    actor = _resolve_actor(request)
    if isinstance(actor, JSONResponse):
        return actor
    if not _is_admin(request, actor):
        return _error_response("PERMISSION_DENIED", "Only administrators can manage validation rules", status=403)
    result = validation_catalog.delete_rule(_engine(request).store, object_type, rule_id)
    return _result_response(result, ("rule",))
