"""
FastAPI application entry point for the memories backend.
"""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from memoirs.config import get_settings
from memoirs.errors import BackendError, MemoirsError
from memoirs.results import BACKEND_ERRORS
from memoirs.routes import router

logger = logging.getLogger(__name__)

BACKEND_ERROR_MESSAGE = "Something went wrong on our side. Please try again."


async def handle_memoirs_error(request: Request, exc: MemoirsError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "code": exc.code},
    )


async def handle_backend_error(request: Request, exc: Exception) -> JSONResponse:
    """Database and storage failures that escaped the service layer."""
    logger.error(
        "%s %s backend failure: %s", request.method, request.url.path, exc, exc_info=exc
    )
    return JSONResponse(
        status_code=BackendError.status_code,
        content={"detail": BACKEND_ERROR_MESSAGE, "code": BackendError.code},
    )


def create_app() -> FastAPI:
    settings = get_settings()
    logging.basicConfig(level=settings.log_level.upper())
    app = FastAPI(title="Memoirs Backend (FastAPI)", version="0.1.0")
    app.add_exception_handler(MemoirsError, handle_memoirs_error)
    for error_type in BACKEND_ERRORS:
        if not issubclass(error_type, MemoirsError):
            app.add_exception_handler(error_type, handle_backend_error)
    app.include_router(router, prefix=settings.api_prefix)
    return app


app = create_app()
