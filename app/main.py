"""FastAPI application for the BNCC activity generator."""

import json
import logging
import os
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Dict, Union

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from slowapi.errors import RateLimitExceeded  # type: ignore[import-not-found]

from app.config import get_settings
from app.db.storage import create_activity_store
from app.middleware.logging import RequestLoggingMiddleware, configure_logging
from app.middleware.rate_limit import get_limiter, rate_limit_exceeded_handler
from app.middleware.request_id import RequestIDMiddleware
from app.routers import activities, documents
from app.services.model_backends import create_model_backend

VERSION = "1.0.0"
COMMIT_HASH = os.environ.get("COMMIT_HASH", "development")

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Validate configuration and pick the storage and model backends once."""
    try:
        settings = get_settings()
    except Exception as e:
        logger.error(f"Startup validation failed: {e}")
        raise

    configure_logging(settings.log_level)
    logger.info(f"Starting BNCC Activity Generator v{VERSION}")
    logger.info(f"Model backend: {settings.model_backend} ({settings.model_name})")
    logger.info(f"Storage backend: {settings.storage_backend}")

    # Tests may install their own capabilities before startup
    if getattr(app.state, "store", None) is None:
        app.state.store = create_activity_store(settings)
    if getattr(app.state, "model_backend", None) is None:
        app.state.model_backend = create_model_backend(settings)

    yield

    logger.info("Shutting down BNCC Activity Generator")


app = FastAPI(
    title="BNCC Activity Generator",
    description="Lesson plans aligned with BNCC and BNCC Computação, grounded on teacher-provided material",
    version=VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

# Add rate limiter to app state (required by slowapi)
app.state.limiter = get_limiter()
app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)

# Middleware added last runs first: request id, then logging, then CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Request-ID", "X-Generation-Stage", "X-Activity-Count", "Retry-After"],
)
app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(RequestIDMiddleware)


@app.get("/health", response_model=None)
async def health_check(request: Request) -> Union[Dict[str, Any], Response]:
    """
    Health check endpoint for the model backend and storage.

    Status Codes:
        200: All services healthy
        503: One or more services unavailable
    """
    timestamp = datetime.now(timezone.utc).isoformat()
    services: Dict[str, str] = {}
    overall_healthy = True

    backend = getattr(request.app.state, "model_backend", None)
    if backend is not None:
        services["model_backend"] = f"healthy: {backend.name}"
    else:
        services["model_backend"] = "unhealthy: not configured"
        overall_healthy = False

    store = getattr(request.app.state, "store", None)
    if store is None:
        services["storage"] = "unhealthy: not configured"
        overall_healthy = False
    elif await store.ping():
        services["storage"] = f"healthy: {store.name}"
    else:
        services["storage"] = f"unhealthy: {store.name} unreachable"
        overall_healthy = False

    response_data: Dict[str, Any] = {
        "status": "healthy" if overall_healthy else "unhealthy",
        "timestamp": timestamp,
        "services": services,
    }

    if not overall_healthy:
        return Response(
            content=json.dumps(response_data),
            status_code=503,
            media_type="application/json",
        )

    return response_data


@app.get("/version")
async def version_info() -> Dict[str, str]:
    return {
        "version": VERSION,
        "commit_hash": COMMIT_HASH,
    }


app.include_router(documents.router)
app.include_router(activities.router)
