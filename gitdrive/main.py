"""FastAPI application entry point."""

from __future__ import annotations

import logging
import sys
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

import httpx
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from gitdrive.api.drive import router as drive_router
from gitdrive.api.health import router as health_router
from gitdrive.config import Settings
from gitdrive.exceptions import DriveError, status_for_error
from gitdrive.storage.session import SessionRegistry

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

logger = logging.getLogger(__name__)


def _configure_logging(debug: bool) -> None:
    """Configure application logging."""
    level = logging.DEBUG if debug else logging.INFO
    fmt = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"
    logging.basicConfig(
        level=level,
        format=fmt,
        stream=sys.stdout,
        force=True,
    )
    # Quiet noisy libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.INFO if debug else logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


def create_http_client(settings: Settings) -> httpx.AsyncClient:
    """Create the shared backend client with a timeout on every call."""
    return httpx.AsyncClient(
        base_url=settings.github_api_url,
        timeout=settings.request_timeout_seconds,
        headers={"User-Agent": "gitdrive/0.1.0"},
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None]:
    """Application lifespan: startup and shutdown."""
    settings: Settings = app.state.settings
    settings.validate_runtime_settings()
    _configure_logging(settings.debug)
    logger.info(
        "Starting GitDrive for %s/%s (debug=%s)",
        settings.repo_owner,
        settings.repo_name,
        settings.debug,
    )

    app.state.http_client = create_http_client(settings)

    yield

    try:
        await app.state.http_client.aclose()
    except Exception as exc:
        logger.error("Error during HTTP client shutdown: %s", exc, exc_info=True)

    logger.info("GitDrive stopped")


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    if settings is None:
        settings = Settings()

    docs_enabled = settings.debug or settings.expose_docs

    app = FastAPI(
        title="GitDrive",
        description="A file drive on top of a git repository",
        version="0.1.0",
        lifespan=lifespan,
        docs_url="/docs" if docs_enabled else None,
        redoc_url="/redoc" if docs_enabled else None,
        openapi_url="/openapi.json" if docs_enabled else None,
    )
    app.state.settings = settings
    app.state.sessions = SessionRegistry()

    cors_origins = (
        settings.cors_origins
        if settings.cors_origins
        else (["http://localhost:5173", "http://localhost:8000"] if settings.debug else [])
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(health_router)
    app.include_router(drive_router)

    @app.exception_handler(DriveError)
    async def drive_error_handler(request: Request, exc: DriveError) -> JSONResponse:
        status_code = status_for_error(exc)
        log = logger.error if status_code >= 500 else logger.warning
        log("%s in %s %s: %s", type(exc).__name__, request.method, request.url.path, exc)
        headers = {"WWW-Authenticate": "Bearer"} if status_code == 401 else None
        return JSONResponse(
            status_code=status_code,
            content={"detail": exc.message, "kind": exc.kind, "path": exc.path},
            headers=headers,
        )

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        errors = []
        for err in exc.errors():
            loc = err.get("loc", ())
            field = str(loc[-1]) if loc else "unknown"
            errors.append({"field": field, "message": err.get("msg", "Invalid value")})
        logger.warning(
            "RequestValidationError in %s %s: %s",
            request.method,
            request.url.path,
            errors,
        )
        return JSONResponse(status_code=422, content={"detail": errors})

    @app.exception_handler(IsADirectoryError)
    async def is_directory_handler(request: Request, exc: IsADirectoryError) -> JSONResponse:
        logger.warning("IsADirectoryError in %s %s: %s", request.method, request.url.path, exc)
        return JSONResponse(status_code=400, content={"detail": str(exc), "kind": "is_directory"})

    @app.exception_handler(NotADirectoryError)
    async def not_directory_handler(request: Request, exc: NotADirectoryError) -> JSONResponse:
        logger.warning("NotADirectoryError in %s %s: %s", request.method, request.url.path, exc)
        return JSONResponse(
            status_code=400, content={"detail": str(exc), "kind": "not_a_directory"}
        )

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError) -> JSONResponse:
        logger.warning("ValueError in %s %s: %s", request.method, request.url.path, exc)
        message = str(exc) or "Invalid value"
        return JSONResponse(
            status_code=422,
            content={"detail": message},
        )

    @app.exception_handler(RuntimeError)
    async def runtime_error_handler(request: Request, exc: RuntimeError) -> JSONResponse:
        if isinstance(exc, (NotImplementedError, RecursionError)):
            raise exc
        logger.error(
            "RuntimeError in %s %s: %s", request.method, request.url.path, exc, exc_info=exc
        )
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal processing error"},
        )

    return app


app = create_app()


def cli_entry() -> None:
    """CLI entry point for running the server."""
    import uvicorn

    settings: Settings = app.state.settings
    uvicorn.run(
        "gitdrive.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
    )
