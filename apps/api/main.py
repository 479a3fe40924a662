"""
medichat API - FastAPI application entry point.
"""
from __future__ import annotations

import logging
import os
import sys
import time
import uuid

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from apps.api.authz import access_enforcement_enabled
from packages.db.database import init_db
from packages.shared.errors import PipelineError


def _parse_csv_env(name: str, default: list[str]) -> list[str]:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    return [value.strip() for value in raw.split(",") if value.strip()]


def _parse_bool_env(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


# Configure structured logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)],
)
logger = logging.getLogger("medichat")

app = FastAPI(
    title="medichat API",
    description="Patient document parsing and daily health dashboards",
    version="0.1.0",
)

# Security/runtime settings
cors_allow_origins = _parse_csv_env(
    "CORS_ALLOW_ORIGINS",
    [
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ],
)
audit_logging_enabled = _parse_bool_env("AUDIT_LOGGING", True)
max_request_bytes = int(os.getenv("MAX_REQUEST_BYTES", str(26 * 1024 * 1024)))


def _validate_access_runtime() -> None:
    """Fail fast on unsafe settings when access enforcement is enabled."""
    if not access_enforcement_enabled():
        return

    if "*" in cors_allow_origins:
        raise RuntimeError("ACCESS_ENFORCEMENT=true does not allow wildcard CORS origins.")

    internal_token = os.getenv("API_INTERNAL_TOKEN", "").strip()
    if len(internal_token) < 24:
        raise RuntimeError("ACCESS_ENFORCEMENT=true requires API_INTERNAL_TOKEN >= 24 chars.")


app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_allow_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "OPTIONS"],
    allow_headers=["Content-Type", "X-User-Id", "X-Internal-Token", "X-Request-Id"],
)


@app.exception_handler(PipelineError)
async def pipeline_error_handler(request: Request, exc: PipelineError):
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "code": exc.code},
    )


@app.middleware("http")
async def request_audit_middleware(request: Request, call_next):
    started = time.perf_counter()
    request_id = request.headers.get("X-Request-Id") or uuid.uuid4().hex
    user_id = request.headers.get("X-User-Id", "anonymous")

    if request.url.path != "/health":
        content_length = request.headers.get("Content-Length")
        if content_length:
            try:
                if int(content_length) > max_request_bytes:
                    return JSONResponse(
                        status_code=413,
                        content={"detail": "Request entity too large", "code": "request_too_large"},
                        headers={"X-Request-Id": request_id},
                    )
            except ValueError:
                pass

    response = await call_next(request)
    response.headers["X-Request-Id"] = request_id
    response.headers.setdefault("X-Content-Type-Options", "nosniff")

    if audit_logging_enabled:
        duration_ms = int((time.perf_counter() - started) * 1000)
        logger.info(
            "request_audit request_id=%s method=%s path=%s status=%s duration_ms=%s user_id=%s",
            request_id,
            request.method,
            request.url.path,
            response.status_code,
            duration_ms,
            user_id,
        )

    return response


@app.on_event("startup")
def startup():
    """Initialize database tables on startup."""
    _validate_access_runtime()
    logger.info("Initializing database...")
    init_db()
    logger.info("Database initialized")


# Register routes
from apps.api.routes.dashboards import router as dashboards_router  # noqa: E402
from apps.api.routes.documents import router as docs_router  # noqa: E402
from apps.api.routes.patients import router as patients_router  # noqa: E402

app.include_router(docs_router)
app.include_router(patients_router)
app.include_router(dashboards_router)


@app.get("/health")
def health():
    return {"status": "ok", "version": "0.1.0"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("apps.api.main:app", host="0.0.0.0", port=8000, reload=True)
