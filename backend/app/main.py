from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from psycopg import errors as pg_errors
import time
import uuid
from datetime import datetime, timezone
from .config import settings
from .db import get_conn, open_pool, close_pools
from .inflight import InFlightGuard
from .invoice_numbers import LocalInvoiceSequence
from .jsonlog import json_log
from .routers.auth import router as auth_router
from .routers.products import router as products_router
from .routers.pos import router as pos_router

SERVICE_NAME = "kasir-backend"

app = FastAPI(title="Kasir Fotocopy & ATK API", version=settings.api_version)
STARTED_AT_UTC = datetime.now(timezone.utc)

# One guard and one preview sequence per process; handlers reach them via deps.py.
app.state.inflight = InFlightGuard()
app.state.local_invoices = LocalInvoiceSequence()


def _debug_errors() -> bool:
    return settings.env in {"local", "dev"}


def _request_id(req: Request) -> str:
    return getattr(req.state, "request_id", "") or req.headers.get("x-request-id") or "startup"


# Database errors a client can fix by changing its request.
_DB_ERRORS = (
    # malformed uuid in a path or body
    (pg_errors.InvalidTextRepresentation, 400, "invalid value"),
    (pg_errors.ForeignKeyViolation, 400, "invalid reference"),
    # duplicate product name, barcode or invoice number
    (pg_errors.UniqueViolation, 409, "conflict"),
    # e.g. products_stock_nonnegative
    (pg_errors.CheckViolation, 400, "constraint violation"),
)


def _db_error_handler(status_code: int, detail: str):
    def _handler(req: Request, exc: Exception):
        json_log("warning", "http.db_error", request_id=_request_id(req), path=req.url.path, detail=detail)
        content = {"detail": detail}
        if _debug_errors():
            content["error"] = str(exc)
        return JSONResponse(status_code=status_code, content=content)

    return _handler


for _exc_type, _status, _detail in _DB_ERRORS:
    app.add_exception_handler(_exc_type, _db_error_handler(_status, _detail))


@app.exception_handler(RequestValidationError)
def _request_validation_error(_req: Request, exc: Exception):
    content = {"detail": "validation failed"}
    if _debug_errors() and hasattr(exc, "errors"):
        content["errors"] = exc.errors()
    return JSONResponse(status_code=422, content=content)


@app.exception_handler(Exception)
def _unhandled_exception(req: Request, exc: Exception):
    rid = _request_id(req)
    json_log("error", "http.request.unhandled", request_id=rid, method=req.method, path=req.url.path, error=str(exc))
    content = {"detail": "internal error", "request_id": rid}
    if _debug_errors():
        content["error"] = str(exc)
    return JSONResponse(status_code=500, content=content)


@app.middleware("http")
async def _request_logging(request: Request, call_next):
    rid = (request.headers.get("X-Request-Id") or "").strip() or uuid.uuid4().hex
    request.state.request_id = rid
    started = time.monotonic()
    fields = {
        "request_id": rid,
        "method": request.method,
        "path": request.url.path,
        "client_ip": request.client.host if request.client else None,
    }
    try:
        response = await call_next(request)
    except Exception as exc:
        json_log("error", "http.request.error", duration_ms=int((time.monotonic() - started) * 1000), error=str(exc), **fields)
        raise

    response.headers["X-Request-Id"] = rid
    response.headers["X-Content-Type-Options"] = "nosniff"
    if fields["path"] != "/health":
        json_log(
            "info",
            "http.request",
            status_code=response.status_code,
            duration_ms=int((time.monotonic() - started) * 1000),
            **fields,
        )
    return response


# The cashier web app is served from a different origin.
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.include_router(auth_router)
app.include_router(products_router)
app.include_router(pos_router)


def _db_ping() -> None:
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute("SELECT 1 AS ok")
            cur.fetchone()


@app.on_event("startup")
def _startup():
    open_pool()
    try:
        _db_ping()
    except Exception as exc:
        # The API still starts; /health reports the outage.
        json_log("warning", "startup.db_probe_failed", env=settings.env, error=str(exc))
        return
    json_log("info", "startup.db_connected", env=settings.env, version=settings.api_version, store=settings.store_name)


@app.on_event("shutdown")
def _shutdown():
    close_pools()


@app.get("/health")
def health(req: Request):
    err = None
    try:
        _db_ping()
    except Exception as exc:
        err = str(exc)
    content = {
        "status": "degraded" if err else "ok",
        "db": "down" if err else "ok",
        "env": settings.env,
        "service": SERVICE_NAME,
        "version": settings.api_version,
        "started_at": STARTED_AT_UTC.isoformat(),
        "request_id": _request_id(req),
    }
    if err is None:
        return content
    if _debug_errors():
        content["error"] = err
    return JSONResponse(status_code=503, content=content)


@app.get("/meta")
def meta():
    return {
        "service": SERVICE_NAME,
        "version": settings.api_version,
        "env": settings.env,
        "store": settings.store_name,
        "timezone": settings.store_timezone,
        "business_hours": [settings.business_open_hour, settings.business_close_hour],
        "uptime_seconds": int((datetime.now(timezone.utc) - STARTED_AT_UTC).total_seconds()),
    }
