import json
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Dict, List, Sequence

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator

from app.modules.deletion.api.v1.deletion import router as deletion_router
from app.shared.core.config import get_settings, reload_settings_from_environment
from app.shared.core.exceptions import DeletionServiceException
from app.shared.core.http import close_http_client, init_http_client
from app.shared.core.logging import setup_logging
from app.shared.db.session import get_engine, health_check

settings = get_settings()
setup_logging()
logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    global settings
    settings = reload_settings_from_environment()
    logger.info("app_starting", app_name=settings.APP_NAME, environment=settings.ENVIRONMENT)
    await init_http_client()

    yield

    logger.info("app_shutting_down")
    await close_http_client()
    await get_engine().dispose()
    logger.info("db_engine_disposed")


auditvault_app = FastAPI(
    title=settings.APP_NAME,
    version=settings.VERSION,
    lifespan=lifespan,
)
# Uvicorn looks for 'app' by default.
app: FastAPI = auditvault_app

__all__ = ["app", "auditvault_app", "lifespan"]


@auditvault_app.exception_handler(DeletionServiceException)
async def deletion_service_exception_handler(
    request: Request, exc: DeletionServiceException
) -> JSONResponse:
    """Render workflow errors in the standard error envelope."""
    log = logger.error if exc.status_code >= 500 else logger.info
    log(
        "request_failed",
        path=request.url.path,
        method=request.method,
        status_code=exc.status_code,
        error_code=exc.code,
        message=exc.message,
    )
    headers = {"Retry-After": "1"} if exc.status_code == 503 else None
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.code, "message": exc.message, "details": exc.details},
        headers=headers,
    )


@auditvault_app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Handle Pydantic validation errors."""

    def _json_safe(value: Any) -> Any:
        if isinstance(value, Exception):
            return str(value)
        try:
            json.dumps(value)
            return value
        except (TypeError, ValueError):
            return str(value)

    def _sanitize_errors(errors: Sequence[Any]) -> List[Dict[str, Any]]:
        sanitized = []
        for err in errors:
            clean = dict(err)
            if "ctx" in clean and isinstance(clean["ctx"], dict):
                clean["ctx"] = {k: _json_safe(v) for k, v in clean["ctx"].items()}
            if "input" in clean:
                clean["input"] = _json_safe(clean["input"])
            sanitized.append(clean)
        return sanitized

    return JSONResponse(
        status_code=422,
        content={
            "error": "invalid_argument",
            "message": "The request body or parameters are invalid.",
            "details": {"errors": _sanitize_errors(exc.errors())},
        },
    )


@auditvault_app.get("/health", tags=["Lifecycle"])
async def health() -> JSONResponse:
    database = await health_check()
    healthy = database.get("status") == "up"
    return JSONResponse(
        status_code=200 if healthy else 503,
        content={
            "status": "healthy" if healthy else "degraded",
            "app_name": settings.APP_NAME,
            "version": settings.VERSION,
            "database": database,
        },
    )


auditvault_app.include_router(deletion_router, prefix="/admin/v1")

Instrumentator().instrument(auditvault_app).expose(auditvault_app)
