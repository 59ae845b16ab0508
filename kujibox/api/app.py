"""FastAPI application factory."""

import logging
from collections.abc import Callable
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import DBAPIError
from sqlalchemy.orm import Session

from kujibox import config
from kujibox.api.routes import api_router
from kujibox.db.engine import get_sessionmaker, make_engine
from kujibox.errors import KujiError

logger = logging.getLogger(__name__)


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


async def _kuji_error_handler(request: Request, exc: KujiError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return _error(exc.status_code, exc.message)


async def _validation_error_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    errors = exc.errors()
    if errors:
        first = errors[0]
        where = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
        message = f"Invalid parameter {where}: {first.get('msg')}" if where else first.get("msg")
    else:
        message = "Invalid request"
    return _error(400, message)


async def _storage_error_handler(request: Request, exc: DBAPIError) -> JSONResponse:
    logger.error("Storage failure on %s %s: %s", request.method, request.url.path, exc)
    return _error(503, "Storage unavailable")


def create_app(session_factory: Optional[Callable[[], Session]] = None) -> FastAPI:
    """Build the API.

    ``session_factory`` defaults to a sessionmaker over ``DB_URL``. Run with
    ``uvicorn kujibox.api.app:create_app --factory``.
    """
    config.configure_logging()
    if session_factory is None:
        session_factory = get_sessionmaker(make_engine())

    app = FastAPI(title="kujibox", version="0.1.0")
    app.state.session_factory = session_factory
    app.add_exception_handler(KujiError, _kuji_error_handler)
    app.add_exception_handler(RequestValidationError, _validation_error_handler)
    app.add_exception_handler(DBAPIError, _storage_error_handler)
    app.include_router(api_router, prefix="/api")
    return app
