"""FastAPI application entry point."""

import logging
import os
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from affiliations.services.errors import (
    AlreadyFinalizedError,
    CatalogError,
    DataIntegrityError,
    DuplicateCodeError,
    InvalidOperationError,
    LifecycleError,
    NotFoundError,
    ProviderFailureError,
)
from app.routes import affiliations, catalog, health, observations, requests
from app.schemas.common import ErrorResponse
from config import BACKEND_ROOT, Settings, get_settings
from db.connection import reset_engine
from migrations.migrate import migrate

logger: logging.Logger = logging.getLogger(__name__)

# Most specific class first; the first match decides the status code.
ERROR_STATUS: list[tuple[type[Exception], int]] = [
    (NotFoundError, 404),
    (AlreadyFinalizedError, 409),
    (DuplicateCodeError, 409),
    (InvalidOperationError, 422),
    (DataIntegrityError, 500),
    (ProviderFailureError, 502),
    (LifecycleError, 400),
    (CatalogError, 400),
]


def status_for(exc: Exception) -> int:
    for exc_type, code in ERROR_STATUS:
        if isinstance(exc, exc_type):
            return code
    return 500


@asynccontextmanager
async def _lifespan(app: FastAPI) -> AsyncIterator[None]:
    db = get_settings().database
    logger.info("Starting on %s", db.describe())
    # Postgres schemas are provisioned outside the app; SQLite files are migrated in place.
    if not db.uses_postgres:
        migrate(db_path=db.sqlite_file.as_posix())
    try:
        yield
    finally:
        reset_engine()


def _error_body(exc: Exception) -> dict[str, object]:
    return ErrorResponse(error=str(exc), type=type(exc).__name__).model_dump()


def register_error_handlers(app: FastAPI) -> None:
    async def _on_domain_error(request: Request, exc: Exception) -> JSONResponse:
        code: int = status_for(exc)
        if code >= 500:
            logger.error("%s on %s: %s", type(exc).__name__, request.url.path, exc)
        else:
            logger.info("%s on %s: %s", type(exc).__name__, request.url.path, exc)
        return JSONResponse(
            status_code=code,
            content=_error_body(exc),
        )

    app.add_exception_handler(LifecycleError, _on_domain_error)
    app.add_exception_handler(CatalogError, _on_domain_error)

    @app.exception_handler(Exception)
    async def _on_error(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled: %s", exc)
        return JSONResponse(
            status_code=500,
            content=_error_body(exc),
        )


def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or get_settings()
    app: FastAPI = FastAPI(
        title="Affiliation Review Engine",
        version="0.1.0",
        debug=settings.debug,
        lifespan=_lifespan,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    register_error_handlers(app)

    for module in (health, affiliations, requests, observations, catalog):
        app.include_router(module.router)
    return app


app: FastAPI = create_app()


def start() -> None:
    """Run the API under uvicorn (the `affiliations-api` script)."""
    settings: Settings = get_settings()
    # Relative SQLite and data paths resolve against backend/.
    os.chdir(BACKEND_ROOT)
    uvicorn.run("app.main:app", host=settings.host, port=settings.port, reload=settings.reload)
