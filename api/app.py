"""FastAPI application factory for the agent service."""

from __future__ import annotations

import json
import logging
import time
from contextlib import asynccontextmanager
from typing import Any
from uuid import uuid4

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from api.rate_limit import SlidingWindowLimiter
from api.routes import router
from config.settings import Settings
from core.errors import AgentServiceError, RateLimited
from world.orchestrator import Orchestrator

logger = logging.getLogger(__name__)

SENSITIVE_FIELDS = frozenset({
    "password", "token", "key", "secret", "private_key", "privatekey",
})

SECURITY_HEADERS = {
    "Content-Security-Policy": "default-src 'self'",
    "X-Content-Type-Options": "nosniff",
    "Strict-Transport-Security": "max-age=31536000; includeSubDomains",
    "X-Frame-Options": "DENY",
    "X-XSS-Protection": "1; mode=block",
    "Referrer-Policy": "same-origin",
}


def redact(payload: Any) -> Any:
    """Replace values of sensitive keys, recursively."""
    if isinstance(payload, dict):
        return {
            k: "[REDACTED]" if k.lower() in SENSITIVE_FIELDS else redact(v)
            for k, v in payload.items()
        }
    if isinstance(payload, list):
        return [redact(v) for v in payload]
    return payload


def _error_body(exc: AgentServiceError) -> dict:
    return {"success": False, "message": exc.message, "error": type(exc).__name__}


def create_app(
    settings: Settings | None = None,
    orchestrator: Orchestrator | None = None,
) -> FastAPI:
    settings = settings or (orchestrator.settings if orchestrator else Settings())
    orchestrator = orchestrator or Orchestrator(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await orchestrator.start()
        try:
            yield
        finally:
            await orchestrator.stop()

    app = FastAPI(title="Agent Service", lifespan=lifespan)
    app.state.settings = settings
    app.state.orchestrator = orchestrator
    app.state.standard_limiter = SlidingWindowLimiter(
        settings.RATE_LIMIT_MAX, settings.RATE_LIMIT_WINDOW,
    )
    app.state.sensitive_limiter = SlidingWindowLimiter(
        settings.SENSITIVE_RATE_LIMIT_MAX, settings.SENSITIVE_RATE_LIMIT_WINDOW,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID"],
    )

    @app.middleware("http")
    async def security_headers(request: Request, call_next):
        response = await call_next(request)
        for name, value in SECURITY_HEADERS.items():
            response.headers.setdefault(name, value)
        return response

    @app.middleware("http")
    async def request_logger(request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or str(uuid4())
        started = time.perf_counter()
        if logger.isEnabledFor(logging.DEBUG) and request.method in ("POST", "PATCH", "PUT"):
            raw = await request.body()
            try:
                body = redact(json.loads(raw)) if raw else None
            except ValueError:
                body = "<non-json body>"
            logger.debug("[%s] %s %s body=%s", request_id, request.method, request.url.path, body)

        response = await call_next(request)

        logger.info(
            "[%s] %s %s -> %d (%.1fms)",
            request_id, request.method, request.url.path,
            response.status_code, (time.perf_counter() - started) * 1000,
        )
        response.headers["X-Request-ID"] = request_id
        return response

    @app.exception_handler(AgentServiceError)
    async def service_error_handler(request: Request, exc: AgentServiceError):
        headers = None
        if isinstance(exc, RateLimited):
            headers = {"Retry-After": str(exc.retry_after)}
        if exc.status_code >= 500:
            logger.warning("%s on %s: %s", type(exc).__name__, request.url.path, exc.message)
        return JSONResponse(_error_body(exc), status_code=exc.status_code, headers=headers)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        details = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'][1:]) or 'body'}: {err['msg']}"
            for err in exc.errors()
        )
        return JSONResponse(
            {"success": False, "message": details or "Invalid request", "error": "InvalidInput"},
            status_code=400,
        )

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        message = (
            "An unexpected error occurred" if settings.is_production else str(exc)
        )
        return JSONResponse(
            {"success": False, "message": message, "error": "InternalError"},
            status_code=500,
        )

    app.include_router(router)
    return app
