"""FastAPI application factory for the query API."""

from __future__ import annotations

from typing import Any

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from fundwatch.api.routes import api
from fundwatch.exceptions import NotFoundError, StorageError, ValidationError
from fundwatch.logging import get_logger

logger = get_logger(__name__)


async def _validation_error_handler(request: Request, exc: Exception) -> JSONResponse:
    # Caller error, not a system fault: no warning-level log
    logger.debug("request_rejected", path=request.url.path, error=str(exc))
    return JSONResponse(status_code=400, content={"error": str(exc)})


async def _not_found_handler(request: Request, exc: Exception) -> JSONResponse:
    return JSONResponse(status_code=404, content={"error": str(exc)})


async def _storage_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error("request_storage_error", path=request.url.path, error=str(exc))
    return JSONResponse(status_code=503, content={"error": "Storage unavailable"})


def create_app(lifespan: Any = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        lifespan: Optional async context manager for application lifespan events.
                  Used by main.py to inject startup/shutdown logic.

    Returns:
        Configured FastAPI application with the /api routes and error mapping.
    """
    app = FastAPI(
        title="fundwatch",
        lifespan=lifespan,
    )

    app.add_exception_handler(ValidationError, _validation_error_handler)
    app.add_exception_handler(NotFoundError, _not_found_handler)
    app.add_exception_handler(StorageError, _storage_error_handler)

    app.include_router(api.router, prefix="/api")

    return app
