"""FastAPI application for the Courier operator API."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from courier.config import Settings
from courier.exceptions import (
    AuthenticationError,
    CourierError,
    NotFoundError,
    StorageError,
    ValidationError,
)
from courier.logging import configure_logging, get_logger
from courier.service import CourierService

from .router import router, set_service

logger = get_logger(__name__)

# Most specific first; anything else derived from CourierError is a 500
ERROR_STATUS: dict[type[CourierError], int] = {
    ValidationError: 400,
    AuthenticationError: 401,
    NotFoundError: 404,
    StorageError: 503,
    CourierError: 500,
}


def _status_for(exc: CourierError) -> int:
    for error_type, status_code in ERROR_STATUS.items():
        if isinstance(exc, error_type):
            return status_code
    return 500


async def courier_error_handler(request: Request, exc: CourierError) -> JSONResponse:
    """Render a CourierError as its to_dict() body with the mapped status."""
    status_code = _status_for(exc)
    log = logger.error if status_code >= 500 else logger.warning
    log(
        "Request failed",
        status_code=status_code,
        code=exc.code,
        error=exc.message,
        method=request.method,
        path=request.url.path,
    )
    headers = {"WWW-Authenticate": "Bearer"} if status_code == 401 else None
    return JSONResponse(status_code=status_code, content=exc.to_dict(), headers=headers)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Own the CourierService for the lifetime of the app.

    Background dispatches are drained and the store is closed on shutdown.
    """
    settings: Settings = app.state.settings
    configure_logging(level=settings.log_level, format=settings.log_format)

    service = CourierService.create(settings)
    await service.initialize()
    set_service(service)
    logger.info("Courier API started", env=settings.env, auth_enabled=settings.is_auth_enabled)

    try:
        yield
    finally:
        await service.close()
        set_service(None)
        logger.info("Courier API stopped")


def create_app(settings: Settings | None = None) -> FastAPI:
    """Build the operator API.

    Args:
        settings: Settings to run with. Read from the environment if None.

    Example:
        ```python
        from courier.api import create_app

        app = create_app()
        # uvicorn courier.api:app
        ```
    """
    from courier import __version__

    app = FastAPI(
        title="Courier",
        description="Outbound webhook delivery: signing, retries and circuit breaking.",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.settings = settings or Settings()

    for error_type in ERROR_STATUS:
        app.add_exception_handler(error_type, courier_error_handler)  # type: ignore[arg-type]

    app.include_router(router, prefix="/api/v1")
    return app


app = create_app()
