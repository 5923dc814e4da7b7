import time
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

import psycopg
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from psycopg import errors as pg_errors
from starlette.exceptions import HTTPException as StarletteHTTPException

from .config import Settings
from .db import Database
from .errors import AppError
from .logs import json_log
from .routers.organizations import router as organizations_router
from .routers.sales import router as sales_router
from .routers.stock import router as stock_router
from .routers.transfers import router as transfers_router
from .routers.users import router as users_router

SERVICE_NAME = "branchstock-backend"


def _current_request_id(req: Request) -> str:
    return getattr(req.state, "request_id", "") or req.headers.get("x-request-id") or "startup"


def _settings(req: Request) -> Settings:
    return req.app.state.settings


def _error_response(req: Request, status_code: int, message: str, exc: Optional[Exception] = None, **extra):
    content = {"error": message, "request_id": _current_request_id(req), **extra}
    if exc is not None and _settings(req).is_dev:
        content["detail"] = str(exc)
    return JSONResponse(status_code=status_code, content=content)


def _app_error(req: Request, exc: AppError):
    extra = {"field": exc.field} if exc.field else {}
    return _error_response(req, exc.status_code, exc.message, **extra)


def _http_error(req: Request, exc: StarletteHTTPException):
    return _error_response(req, exc.status_code, str(exc.detail))


# Map common DB constraint/cast errors to 4xx so clients get actionable responses
# instead of generic 500s.
def _invalid_text_representation(req: Request, exc: Exception):
    return _error_response(req, 400, "invalid value", exc)


def _foreign_key_violation(req: Request, exc: Exception):
    return _error_response(req, 400, "invalid reference", exc)


def _check_violation(req: Request, exc: Exception):
    return _error_response(req, 400, "constraint violation", exc)


def _unique_violation(req: Request, exc: Exception):
    return _error_response(req, 409, "Organization slug already exists" if "slug" in str(exc) else "conflict", exc)


def _store_error(req: Request, exc: Exception):
    json_log("error", "db.error", request_id=_current_request_id(req), path=req.url.path, error=str(exc))
    return _error_response(req, 500, str(exc) or "database error")


def _request_validation_error(req: Request, exc: RequestValidationError):
    errors = exc.errors()
    missing = sorted({str(e["loc"][-1]) for e in errors if e.get("type") == "missing"})
    message = f"Missing required fields: {', '.join(missing)}" if missing else "Invalid request"
    extra = {"errors": jsonable_encoder(errors)} if _settings(req).is_dev else {}
    return JSONResponse(
        status_code=400,
        content={"error": message, "request_id": _current_request_id(req), **extra},
    )


def _unhandled_exception(req: Request, exc: Exception):
    rid = _current_request_id(req)
    json_log(
        "error",
        "http.request.unhandled",
        request_id=rid,
        method=req.method,
        path=req.url.path,
        error=str(exc),
    )
    return JSONResponse(status_code=500, content={"error": str(exc) or "internal error", "request_id": rid})


_RESPONSE_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "Referrer-Policy": "strict-origin-when-cross-origin",
}


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

    def _elapsed_ms() -> int:
        return int((time.monotonic() - started) * 1000)

    try:
        response = await call_next(request)
    except Exception as exc:
        json_log("error", "http.request.error", duration_ms=_elapsed_ms(), error=str(exc), **fields)
        raise

    response.headers["X-Request-Id"] = rid
    response.headers.update(_RESPONSE_HEADERS)
    # Probes are polled constantly; keep them out of the request log.
    if not fields["path"].startswith("/health"):
        json_log("info", "http.request", status_code=response.status_code, duration_ms=_elapsed_ms(), **fields)
    return response


def create_app(settings: Optional[Settings] = None, db: Optional[Database] = None) -> FastAPI:
    settings = settings or Settings.from_env()
    db = db or Database(settings)
    started_at = datetime.now(timezone.utc)

    @asynccontextmanager
    async def lifespan(_app: FastAPI):
        db.open()
        try:
            db.ping()
            json_log("info", "startup.db_connected", env=settings.env, version=settings.api_version)
        except psycopg.Error as exc:
            json_log("warning", "startup.db_probe_failed", env=settings.env, error=str(exc))
        yield
        db.close()

    app = FastAPI(title="Branch Stock API", version=settings.api_version, lifespan=lifespan)
    app.state.settings = settings
    app.state.db = db

    app.add_exception_handler(AppError, _app_error)
    app.add_exception_handler(StarletteHTTPException, _http_error)
    app.add_exception_handler(pg_errors.InvalidTextRepresentation, _invalid_text_representation)
    app.add_exception_handler(pg_errors.ForeignKeyViolation, _foreign_key_violation)
    app.add_exception_handler(pg_errors.CheckViolation, _check_violation)
    app.add_exception_handler(pg_errors.UniqueViolation, _unique_violation)
    app.add_exception_handler(psycopg.Error, _store_error)
    app.add_exception_handler(RequestValidationError, _request_validation_error)
    app.add_exception_handler(Exception, _unhandled_exception)

    app.middleware("http")(_request_logging)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(organizations_router)
    app.include_router(sales_router)
    app.include_router(stock_router)
    app.include_router(transfers_router)
    app.include_router(users_router)

    def _service_info(req: Request) -> dict:
        return {
            "env": settings.env,
            "service": SERVICE_NAME,
            "version": settings.api_version,
            "request_id": _current_request_id(req),
        }

    def _db_probe(req: Request, ready_status: str, **extra):
        """Probe body with a database check; 503 when the database is unreachable."""
        try:
            db.ping()
            err = None
        except psycopg.Error as exc:
            err = str(exc)
        content = {
            "status": ready_status if err is None else "degraded",
            "db": "ok" if err is None else "down",
            **_service_info(req),
            **extra,
        }
        if err is None:
            return content
        if settings.is_dev:
            content["error"] = err
        return JSONResponse(status_code=503, content=content)

    @app.get("/health")
    def health(req: Request):
        return _db_probe(req, "ok", started_at=started_at.isoformat())

    @app.get("/health/live")
    def health_live(req: Request):
        return {"status": "ok", **_service_info(req)}

    @app.get("/health/ready")
    def health_ready(req: Request):
        return _db_probe(req, "ready")

    @app.get("/meta")
    def meta():
        return {
            "service": SERVICE_NAME,
            "version": settings.api_version,
            "env": settings.env,
            "uptime_seconds": int((datetime.now(timezone.utc) - started_at).total_seconds()),
            "started_at": started_at.isoformat(),
        }

    return app


app = create_app()
