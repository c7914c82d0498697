"""
FastAPI application for the Layout Foundry artifact service.
"""

from __future__ import annotations

import importlib.metadata
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import get_settings
from .db.base import init_database
from .errors import (
    AccessDeniedError,
    ConcurrentActivationConflict,
    ImageDecodeError,
    InvalidGeometryError,
    InvalidStatusTransitionError,
    LayoutFoundryError,
    NotFoundError,
    StorageUnavailableError,
    VersionLineageError,
)
from .logging_config import configure_logging
from .routes import router

logger = structlog.get_logger()

settings = get_settings()

APP_VERSION = importlib.metadata.version("layout-foundry")

# Status codes for domain errors. Anything not listed is a 500.
ERROR_STATUS = (
    (NotFoundError, 404),
    (InvalidStatusTransitionError, 409),
    (ConcurrentActivationConflict, 409),
    (VersionLineageError, 409),
    (InvalidGeometryError, 422),
    (ImageDecodeError, 422),
    (StorageUnavailableError, 503),
)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager."""
    configure_logging(settings)
    logger.info("starting", app=settings.app_name, environment=settings.environment)

    try:
        init_database()
        logger.info("database_initialized")
    except Exception as e:
        logger.error("startup_failed", error=str(e))
        raise

    yield

    logger.info("shutdown_complete")


app = FastAPI(
    title="Layout Foundry",
    description="Artifact lifecycle service for split design images and packaged modules",
    version=APP_VERSION,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(AccessDeniedError)
async def access_denied_handler(request: Request, exc: AccessDeniedError) -> JSONResponse:
    # Expired and tampered grants look the same from outside.
    logger.warning("access_denied", path=request.url.path, reason=exc.code)
    return JSONResponse(status_code=403, content={"detail": exc.public_message})


@app.exception_handler(LayoutFoundryError)
async def domain_error_handler(request: Request, exc: LayoutFoundryError) -> JSONResponse:
    status_code = next(
        (code for error_type, code in ERROR_STATUS if isinstance(exc, error_type)), 500
    )
    if status_code >= 500:
        logger.error(
            "request_failed",
            path=request.url.path,
            error=exc.code,
            message=exc.message,
        )
        detail = "Service unavailable" if status_code == 503 else "Internal error"
        return JSONResponse(
            status_code=status_code,
            content={"detail": detail, "error": exc.code},
        )
    return JSONResponse(
        status_code=status_code,
        content={"detail": exc.message, "error": exc.code},
    )


@app.get("/health", tags=["system"])
async def health() -> dict:
    """Basic health check endpoint."""
    return {"status": "ok"}


@app.get("/version", tags=["system"])
def version() -> dict[str, str]:
    """Return the version of the application."""
    return {"version": APP_VERSION}


app.include_router(router)
