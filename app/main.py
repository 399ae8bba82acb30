"""FastAPI app for the LifeOS dashboard backend."""

from __future__ import annotations

import os
import re
import sys
from pathlib import Path
from typing import Any, Dict

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
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

import contextvars
import logging
import time
from datetime import date, datetime

from app.auth import SupabaseAuthMiddleware, auth_disabled
from app.db import get_db_stats, reset_db_stats
from app.profiles import approve_user, ensure_profile, get_profile, is_admin, is_approved, list_profiles, make_admin
from app.stores import MemoryRowStore
from app.summaries import debt_overview, finance_overview, home_overview, poa_overview
from crud_engine import DEFAULT_LIST_LIMIT, CrudEngine
import debt_ledger
import objective_tracker
from event_bus import RECORDS_CHANGED, EventBus
import poa_tracker
from lifeos.catalog import DEBT_PAYMENTS, DEBTS, POA_ITEMS, POA_UPDATES, PROFILES, EntityKind, all_schemas, resolve_entity
from lifeos.errors import LifeOsError, NotFoundError, ReadError
from lifeos.fields import deployment_timezone, format_for_display, to_number


app = FastAPI(title="LifeOS")
logger = logging.getLogger("lifeos")
logging.basicConfig(level=logging.INFO)

_LOCAL_CORS_REGEX = re.compile(r"^http://(localhost|127\.0\.0\.1):\d+$")
_CORS_ORIGINS = {
    origin.strip().rstrip("/")
    for origin in os.getenv("LIFEOS_CORS_ORIGINS", "").split(",")
    if origin.strip()
}
REQ_SLOW_MS = float(os.getenv("LIFEOS_REQ_SLOW_MS", "800"))


@app.middleware("http")
async def local_cors_fallback_middleware(request: Request, call_next):
    origin = request.headers.get("origin")
    if request.method == "OPTIONS":
        response = JSONResponse({}, status_code=200)
    else:
        response = await call_next(request)
    normalized_origin = origin.rstrip("/") if isinstance(origin, str) else origin
    if normalized_origin and (normalized_origin in _CORS_ORIGINS or _LOCAL_CORS_REGEX.match(normalized_origin)):
        response.headers.setdefault("Access-Control-Allow-Origin", origin)
        response.headers.setdefault("Access-Control-Allow-Credentials", "true")
        response.headers.setdefault("Access-Control-Allow-Headers", "*")
        response.headers.setdefault("Access-Control-Allow-Methods", "*")
        response.headers.setdefault("Vary", "Origin")
    return response


@app.middleware("http")
async def timing_middleware(request: Request, call_next):
    reset_db_stats()
    start = time.perf_counter()
    response = await call_next(request)
    total_ms = (time.perf_counter() - start) * 1000
    db_stats = get_db_stats()
    logger.info(
        "%s %s %s total_ms=%.1f db_q=%s db_ms=%.1f",
        request.method,
        request.url.path,
        response.status_code,
        total_ms,
        db_stats.get("queries", 0),
        db_stats.get("total_ms", 0.0),
    )
    if total_ms >= REQ_SLOW_MS:
        logger.warning("slow_request method=%s path=%s total_ms=%.1f", request.method, request.url.path, total_ms)
    return response


USE_DB = os.getenv("USE_DB", "").strip() == "1"
STRICT_SELECT = os.getenv("LIFEOS_STRICT_SELECT", "").strip().lower() in ("1", "true", "yes")
SUPABASE_URL = os.getenv("SUPABASE_URL", "").strip()
SUPABASE_AUD = os.getenv("SUPABASE_JWT_AUDIENCE", "").strip() or None
DISABLE_AUTH = auth_disabled()
logger.info("auth_disabled=%s supabase_url=%s use_db=%s strict_select=%s", DISABLE_AUTH, SUPABASE_URL, USE_DB, STRICT_SELECT)

if USE_DB:
    from app.stores_db import DbRowStore

    row_store = DbRowStore()
else:
    row_store = MemoryRowStore()

event_bus = EventBus()
engine = CrudEngine(row_store, bus=event_bus, enforce_select_options=STRICT_SELECT)
debt_ledger.register_hooks(engine)

if not DISABLE_AUTH:
    if not SUPABASE_URL:
        raise RuntimeError("SUPABASE_URL is required for auth")
    app.add_middleware(SupabaseAuthMiddleware, supabase_url=SUPABASE_URL, audience=SUPABASE_AUD)


# Pages whose data depends on each collection; mutations mark them stale.
_PAGES_BY_STORAGE: Dict[str, tuple[str, ...]] = {
    "projects": ("/", "/projects"),
    "objectives": ("/", "/objectives"),
    "tasks": ("/", "/tasks"),
    "contacts": ("/", "/contacts"),
    "opportunities": ("/contacts",),
    "accounts": ("/finance",),
    "transactions": ("/", "/finance"),
    "events": ("/", "/agenda"),
    DEBTS.storage_name: ("/debts",),
    DEBT_PAYMENTS.storage_name: ("/debts",),
    POA_ITEMS.storage_name: ("/poa",),
    POA_UPDATES.storage_name: ("/poa",),
    PROFILES.storage_name: ("/admin/users",),
}
_STALE_PAGES: contextvars.ContextVar[list | None] = contextvars.ContextVar("lifeos_stale_pages", default=None)


def _mark_stale(event: dict) -> None:
    storage_name = event["payload"]["storage_name"]
    pages = _STALE_PAGES.get()
    if pages is None:
        pages = []
        _STALE_PAGES.set(pages)
    for page in _PAGES_BY_STORAGE.get(storage_name, ()):
        if page not in pages:
            pages.append(page)
    for kind, schema in all_schemas():
        if schema.storage_name == storage_name:
            admin_page = f"/admin?t={kind.value}"
            if admin_page not in pages:
                pages.append(admin_page)


event_bus.subscribe(RECORDS_CHANGED, _mark_stale)


def _take_stale_pages() -> list:
    pages = _STALE_PAGES.get() or []
    _STALE_PAGES.set(None)
    return pages


def _error_response(code: str, message: str, path: str | None = None, detail: dict | None = None, status: int = 400) -> JSONResponse:
    _take_stale_pages()
    body = {
        "ok": False,
        "errors": [{"code": code, "message": message, "path": path, "detail": detail}],
        "warnings": [],
    }
    return JSONResponse(jsonable_encoder(body), status_code=status)


def _ok_response(payload: dict, warnings: list | None = None, status: int = 200) -> JSONResponse:
    body = {"ok": True, **payload, "refresh": _take_stale_pages(), "errors": [], "warnings": warnings or []}
    return JSONResponse(jsonable_encoder(body), status_code=status)


_STATUS_BY_CODE = {
    "VALIDATION_FAILED": 400,
    "PERSIST_FAILED": 400,
    "ENTITY_NOT_FOUND": 404,
    "NOT_FOUND": 404,
    "READ_FAILED": 503,
}


@app.exception_handler(LifeOsError)
async def lifeos_error_handler(request: Request, exc: LifeOsError):
    status = _STATUS_BY_CODE.get(exc.code, 400)
    return _error_response(exc.code, str(exc), path=getattr(exc, "field", None), status=status)


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("unhandled_error path=%s", request.url.path)
    return _error_response("INTERNAL_ERROR", "Unexpected server error", detail={"error": str(exc)}, status=500)


def _raw_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (list, tuple)):
        return ", ".join(_raw_text(v) for v in value)
    return str(value)


async def _read_fields(request: Request) -> tuple[dict, dict]:
    """Return ``(fields, multi)`` from a JSON or form body.

    ``fields`` maps each key to its raw text; ``multi`` keeps every value of
    repeated form keys (checkbox groups).
    """
    content_type = request.headers.get("content-type", "")
    if content_type.startswith("application/json"):
        try:
            body = await request.json()
        except ValueError:
            body = None
        if not isinstance(body, dict):
            return {}, {}
        if isinstance(body.get("record"), dict):
            body = body["record"]
        fields = {key: _raw_text(value) for key, value in body.items()}
        multi = {key: list(value) for key, value in body.items() if isinstance(value, (list, tuple))}
        return fields, multi
    form = await request.form()
    fields = {key: _raw_text(value) for key, value in form.items()}
    multi = {key: [_raw_text(v) for v in form.getlist(key)] for key in form.keys()}
    return fields, multi


def _resolve_actor(request: Request) -> dict | JSONResponse:
    user = getattr(request.state, "user", None)
    if DISABLE_AUTH and not user:
        return {"user_id": "local-dev", "email": "dev@localhost", "role": "admin", "approved": True}
    if not isinstance(user, dict) or not user.get("id"):
        return _error_response("AUTH_REQUIRED", "Sign in required", status=401)
    profile = ensure_profile(engine, user)
    if not is_approved(profile):
        return _error_response("ACCOUNT_PENDING", "Account pending approval", status=403)
    return {
        "user_id": user.get("id"),
        "email": user.get("email"),
        "role": profile.get("role"),
        "approved": True,
        "full_name": profile.get("full_name"),
    }


def _require_admin(request: Request) -> dict | JSONResponse:
    actor = _resolve_actor(request)
    if isinstance(actor, JSONResponse):
        return actor
    if not is_admin(actor):
        return _error_response("FORBIDDEN", "Admin role required", status=403)
    return actor


def _display_row(kind: EntityKind, row: dict) -> dict:
    shown = {field.name: format_for_display(field.kind, row.get(field.name)) for field in kind.schema.fields}
    shown["id"] = row.get("id")
    return shown


def _parse_limit(value: str | None) -> int:
    number = to_number(value, float(DEFAULT_LIST_LIMIT))
    return int(number) if number > 0 else DEFAULT_LIST_LIMIT


def _parse_day(value: str | None) -> date | None:
    if not value:
        return None
    try:
        return date.fromisoformat(value.strip()[:10])
    except ValueError:
        return None


@app.get("/health")
async def health() -> dict:
    return {"ok": True}


@app.get("/me")
async def me(request: Request):
    actor = _resolve_actor(request)
    if isinstance(actor, JSONResponse):
        return actor
    return _ok_response({"actor": actor})


@app.get("/schemas")
async def list_schemas(request: Request):
    actor = _resolve_actor(request)
    if isinstance(actor, JSONResponse):
        return actor
    return _ok_response({"schemas": [{"entity": kind.value, **schema.to_dict()} for kind, schema in all_schemas()]})


@app.get("/schemas/{entity}")
async def get_schema(entity: str, request: Request):
    actor = _resolve_actor(request)
    if isinstance(actor, JSONResponse):
        return actor
    kind = resolve_entity(entity)
    return _ok_response({"schema": {"entity": kind.value, **kind.schema.to_dict()}})


@app.get("/records/{entity}")
async def list_records(entity: str, request: Request):
    actor = _resolve_actor(request)
    if isinstance(actor, JSONResponse):
        return actor
    kind = resolve_entity(entity)
    limit = _parse_limit(request.query_params.get("limit"))
    try:
        rows = engine.list(kind.schema, limit=limit)
    except ReadError as exc:
        # Degraded page: the list renders empty with the error inline.
        body = {
            "ok": False,
            "entity": kind.value,
            "records": [],
            "display": [],
            "errors": [{"code": exc.code, "message": str(exc), "path": kind.schema.storage_name, "detail": None}],
            "warnings": [],
        }
        return JSONResponse(jsonable_encoder(body), status_code=200)
    return _ok_response(
        {
            "entity": kind.value,
            "records": rows,
            "display": [_display_row(kind, row) for row in rows],
        }
    )


@app.get("/records/{entity}/{record_id}")
async def get_record(entity: str, record_id: str, request: Request):
    actor = _resolve_actor(request)
    if isinstance(actor, JSONResponse):
        return actor
    kind = resolve_entity(entity)
    row = engine.get(kind.schema, record_id)
    if row is None:
        raise NotFoundError("Record not found", storage_name=kind.schema.storage_name, key=record_id)
    return _ok_response({"entity": kind.value, "record": row, "display": _display_row(kind, row)})


@app.post("/records/{entity}")
async def create_record(entity: str, request: Request):
    actor = _resolve_actor(request)
    if isinstance(actor, JSONResponse):
        return actor
    kind = resolve_entity(entity)
    fields, _ = await _read_fields(request)
    record_id = engine.create(kind.schema, fields)
    return _ok_response({"entity": kind.value, "record_id": record_id}, status=201)


@app.put("/records/{entity}/{record_id}")
async def update_record(entity: str, record_id: str, request: Request):
    actor = _resolve_actor(request)
    if isinstance(actor, JSONResponse):
        return actor
    kind = resolve_entity(entity)
    fields, _ = await _read_fields(request)
    engine.update(kind.schema, record_id, fields)
    return _ok_response({"entity": kind.value, "record_id": record_id})


@app.delete("/records/{entity}/{record_id}")
async def delete_record(entity: str, record_id: str, request: Request):
    actor = _resolve_actor(request)
    if isinstance(actor, JSONResponse):
        return actor
    kind = resolve_entity(entity)
    if kind is EntityKind.DEBTS:
        debt_ledger.delete_debt(engine, record_id)
    else:
        engine.delete(kind.schema, record_id)
    return _ok_response({"entity": kind.value, "record_id": record_id})


@app.get("/overview")
async def home_dashboard(request: Request):
    actor = _resolve_actor(request)
    if isinstance(actor, JSONResponse):
        return actor
    overview = home_overview(
        tasks=engine.select_where(EntityKind.TASKS.schema, {}),
        objectives=engine.select_where(EntityKind.OBJECTIVES.schema, {}),
        transactions=engine.select_where(EntityKind.TRANSACTIONS.schema, {}),
        contacts=engine.list(EntityKind.CONTACTS.schema, limit=5),
        events=engine.select_where(EntityKind.EVENTS.schema, {}, order_by="start", descending=False),
    )
    return _ok_response({"overview": overview})


@app.post("/objectives/{objective_id}/progress")
async def objective_progress(objective_id: str, request: Request):
    actor = _resolve_actor(request)
    if isinstance(actor, JSONResponse):
        return actor
    fields, _ = await _read_fields(request)
    values = objective_tracker.update_progress(engine, objective_id, fields.get("progress"), fields.get("status"))
    return _ok_response({"record_id": objective_id, "patch": values})


@app.post("/debts")
async def create_debt(request: Request):
    actor = _resolve_actor(request)
    if isinstance(actor, JSONResponse):
        return actor
    fields, _ = await _read_fields(request)
    debt_id = debt_ledger.create_debt(engine, fields)
    if debt_id is None:
        return _ok_response({"record_id": None, "skipped": True})
    return _ok_response({"record_id": debt_id, "skipped": False}, status=201)


@app.post("/debts/{debt_id}/payments")
async def add_debt_payment(debt_id: str, request: Request):
    actor = _resolve_actor(request)
    if isinstance(actor, JSONResponse):
        return actor
    fields, _ = await _read_fields(request)
    payment_id = debt_ledger.add_payment(engine, debt_id, fields)
    if payment_id is None:
        return _ok_response({"record_id": None, "skipped": True})
    debt = engine.get(DEBTS, debt_id) or {}
    return _ok_response({"record_id": payment_id, "skipped": False, "status": debt.get("status")}, status=201)


@app.delete("/debts/{debt_id}/payments/{payment_id}")
async def delete_debt_payment(debt_id: str, payment_id: str, request: Request):
    actor = _resolve_actor(request)
    if isinstance(actor, JSONResponse):
        return actor
    debt_ledger.delete_payment(engine, payment_id, debt_id)
    debt = engine.get(DEBTS, debt_id) or {}
    return _ok_response({"record_id": payment_id, "status": debt.get("status")})


@app.post("/debts/{debt_id}/amount")
async def adjust_debt_amount(debt_id: str, request: Request):
    actor = _resolve_actor(request)
    if isinstance(actor, JSONResponse):
        return actor
    fields, _ = await _read_fields(request)
    changed = debt_ledger.adjust_amount(engine, debt_id, fields.get("amount"))
    debt = engine.get(DEBTS, debt_id) or {}
    return _ok_response({"record_id": debt_id, "skipped": not changed, "status": debt.get("status")})


@app.post("/debts/{debt_id}/status")
async def set_debt_status(debt_id: str, request: Request):
    actor = _resolve_actor(request)
    if isinstance(actor, JSONResponse):
        return actor
    fields, _ = await _read_fields(request)
    debt_ledger.set_status(engine, debt_id, fields.get("status"))
    return _ok_response({"record_id": debt_id})


@app.delete("/debts/{debt_id}")
async def delete_debt(debt_id: str, request: Request):
    actor = _resolve_actor(request)
    if isinstance(actor, JSONResponse):
        return actor
    debt_ledger.delete_debt(engine, debt_id)
    return _ok_response({"record_id": debt_id})


@app.get("/debts/overview")
async def debts_overview(request: Request):
    actor = _resolve_actor(request)
    if isinstance(actor, JSONResponse):
        return actor
    debts = engine.select_where(DEBTS, {})
    payments = engine.select_where(DEBT_PAYMENTS, {}, order_by="paid_at")
    return _ok_response({"overview": debt_overview(debts, payments)})


@app.post("/poa")
async def create_poa_item(request: Request):
    actor = _resolve_actor(request)
    if isinstance(actor, JSONResponse):
        return actor
    fields, multi = await _read_fields(request)
    item_id = poa_tracker.create_item(engine, fields, months=multi.get("months") or multi.get("planned_months"))
    if item_id is None:
        return _ok_response({"record_id": None, "skipped": True})
    return _ok_response({"record_id": item_id, "skipped": False}, status=201)


@app.post("/poa/{item_id}/quick-update")
async def poa_quick_update(item_id: str, request: Request):
    actor = _resolve_actor(request)
    if isinstance(actor, JSONResponse):
        return actor
    fields, _ = await _read_fields(request)
    result = poa_tracker.quick_update(
        engine,
        item_id,
        progress=fields.get("progress"),
        spend_delta=fields.get("spend_delta"),
        status=fields.get("status"),
        note=fields.get("note"),
    )
    return _ok_response({"record_id": item_id, **result})


@app.get("/poa/overview")
async def poa_dashboard(request: Request):
    actor = _resolve_actor(request)
    if isinstance(actor, JSONResponse):
        return actor
    now = datetime.now(deployment_timezone())
    year = int(to_number(request.query_params.get("year"), now.year) or now.year)
    items = engine.select_where(POA_ITEMS, {"year": year}, order_by="area", descending=False)
    overview = poa_overview(
        items,
        now.month,
        area=request.query_params.get("area") or None,
        status=request.query_params.get("status") or None,
    )
    return _ok_response({"year": year, "overview": overview})


@app.get("/finance/overview")
async def finance_dashboard(request: Request):
    actor = _resolve_actor(request)
    if isinstance(actor, JSONResponse):
        return actor
    params = request.query_params
    accounts = engine.select_where(EntityKind.ACCOUNTS.schema, {})
    transactions = engine.select_where(EntityKind.TRANSACTIONS.schema, {})
    overview = finance_overview(
        accounts,
        transactions,
        goal_from=_parse_day(params.get("goal_from")),
        goal_to=_parse_day(params.get("goal_to")),
        goal_target=to_number(params.get("goal_target"), 0.0),
        monthly_budget=to_number(params.get("budget"), 0.0),
    )
    return _ok_response({"overview": overview})


@app.get("/admin/users")
async def admin_list_users(request: Request):
    actor = _require_admin(request)
    if isinstance(actor, JSONResponse):
        return actor
    return _ok_response({"users": list_profiles(engine)})


@app.post("/admin/users/{user_id}/approve")
async def admin_approve_user(user_id: str, request: Request):
    actor = _require_admin(request)
    if isinstance(actor, JSONResponse):
        return actor
    if get_profile(engine, user_id) is None:
        raise NotFoundError("User not found", storage_name=PROFILES.storage_name, key=user_id)
    approve_user(engine, user_id)
    logger.info("user_approved user_id=%s by=%s", user_id, actor.get("user_id"))
    return _ok_response({"user_id": user_id})


@app.post("/admin/users/{user_id}/make-admin")
async def admin_make_admin(user_id: str, request: Request):
    actor = _require_admin(request)
    if isinstance(actor, JSONResponse):
        return actor
    if get_profile(engine, user_id) is None:
        raise NotFoundError("User not found", storage_name=PROFILES.storage_name, key=user_id)
    make_admin(engine, user_id)
    logger.info("user_promoted user_id=%s by=%s", user_id, actor.get("user_id"))
    return _ok_response({"user_id": user_id})
