"""Global error handlers producing the ``{"ok": false, ...}`` envelope."""

from __future__ import annotations

import asyncio
import logging

import asyncpg
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from carechat.api.request_id import get_request_id
from carechat.domain.messaging.exceptions import DependencyFailure, MessagingError, ValidationFailed
from carechat.infra.object_store import ObjectStoreError
from carechat.obs import metrics as obs_metrics

logger = logging.getLogger(__name__)


def _envelope(request: Request, exc: MessagingError) -> JSONResponse:
    payload = exc.to_payload()
    payload["request_id"] = get_request_id(request)
    return JSONResponse(status_code=exc.status_code, content=payload)


def _dependency_failure(request: Request, dependency: str, exc: Exception) -> JSONResponse:
    obs_metrics.inc_dependency_failure(dependency)
    logger.error(
        "dependency_failure",
        extra={"dependency": dependency, "path": request.url.path, "error_type": type(exc).__name__},
        exc_info=exc,
    )
    return _envelope(request, DependencyFailure())


def install_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(MessagingError)
    async def messaging_exc_handler(request: Request, exc: MessagingError):  # type: ignore[override]
        return _envelope(request, exc)

    @app.exception_handler(RequestValidationError)
    async def validation_exc_handler(request: Request, exc: RequestValidationError):  # type: ignore[override]
        error = ValidationFailed("validation_error", "Request body or parameters are invalid")
        payload = error.to_payload()
        payload["request_id"] = get_request_id(request)
        payload["errors"] = _safe_errors(exc)
        return JSONResponse(status_code=error.status_code, content=payload)

    @app.exception_handler(StarletteHTTPException)
    async def http_exc_handler(request: Request, exc: StarletteHTTPException):  # type: ignore[override]
        payload = {
            "ok": False,
            "error": "not_found" if exc.status_code == 404 else "http_error",
            "kind": "not_found" if exc.status_code == 404 else "http_error",
            "message": str(exc.detail),
            "request_id": get_request_id(request),
        }
        return JSONResponse(status_code=exc.status_code, content=payload, headers=getattr(exc, "headers", None))

    @app.exception_handler(asyncpg.PostgresError)
    async def postgres_exc_handler(request: Request, exc: asyncpg.PostgresError):  # type: ignore[override]
        return _dependency_failure(request, "postgres", exc)

    @app.exception_handler(asyncpg.InterfaceError)
    async def pool_exc_handler(request: Request, exc: asyncpg.InterfaceError):  # type: ignore[override]
        return _dependency_failure(request, "postgres", exc)

    @app.exception_handler(asyncio.TimeoutError)
    async def timeout_exc_handler(request: Request, exc: asyncio.TimeoutError):  # type: ignore[override]
        return _dependency_failure(request, "timeout", exc)

    @app.exception_handler(ObjectStoreError)
    async def object_store_exc_handler(request: Request, exc: ObjectStoreError):  # type: ignore[override]
        return _dependency_failure(request, "object_store", exc)

    @app.exception_handler(OSError)
    async def os_exc_handler(request: Request, exc: OSError):  # type: ignore[override]
        return _dependency_failure(request, "network", exc)

    @app.exception_handler(Exception)
    async def unhandled_exc_handler(request: Request, exc: Exception):  # type: ignore[override]
        logger.error(
            "unhandled_exception",
            extra={"path": request.url.path, "error_type": type(exc).__name__},
            exc_info=exc,
        )
        return _envelope(request, MessagingError())


def _safe_errors(exc: RequestValidationError) -> list[dict]:
    # Input values may carry message bodies; report locations and types only.
    return [
        {"loc": list(err.get("loc", ())), "type": err.get("type"), "msg": err.get("msg")}
        for err in exc.errors()
    ]
