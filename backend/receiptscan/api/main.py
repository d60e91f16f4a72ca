"""Entry point for the FastAPI application.

This module constructs the FastAPI app, includes the routers and sets up
startup and shutdown events.  When run with uvicorn it initialises the
database and loads configuration from ``receiptscan.core.config``::

    uvicorn receiptscan.api.main:app --reload
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import HTTPException, RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

from receiptscan.api.error_handlers import (
    generic_exception_handler,
    http_exception_handler,
    ingestion_exception_handler,
    validation_exception_handler,
)
from receiptscan.api.routes.receipts import router as receipts_router
from receiptscan.core.config import is_development, settings
from receiptscan.core.database import get_db_debug_info, init_db
from receiptscan.core.errors import IngestionError
from receiptscan.core.observability import init_sentry, sentry_set_tags

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifecycle."""
    # Startup
    logger.info("Starting up...")
    # Centralised Sentry init (idempotent)
    if init_sentry("api"):
        logger.info("Sentry SDK initialized (api)")
    await init_db()
    yield
    # Shutdown
    logger.info("Shutting down...")


# Create FastAPI app
app = FastAPI(
    title=f"{settings.PROJECT_NAME} API",
    version="1.0.0",
    lifespan=lifespan,
)


# Middleware to enrich Sentry scope with lightweight request info
@app.middleware("http")
async def sentry_context_middleware(request: Request, call_next):
    sentry_set_tags({"path": request.url.path, "method": request.method})
    return await call_next(request)


# In development allow all origins; otherwise use BACKEND_CORS_ORIGINS
allow_origins = ["*"] if is_development() else list(dict.fromkeys(settings.BACKEND_CORS_ORIGINS or []))

app.add_middleware(
    CORSMiddleware,
    allow_origins=allow_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Register custom exception handlers
app.add_exception_handler(IngestionError, ingestion_exception_handler)
app.add_exception_handler(StarletteHTTPException, http_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(Exception, generic_exception_handler)

# Include routers
app.include_router(receipts_router, prefix=settings.API_V1_STR)


@app.api_route("/health", methods=["GET", "HEAD"])
async def health_check():
    """Health check endpoint (supports GET & HEAD)."""
    return {"status": "healthy", "environment": settings.ENVIRONMENT}


@app.get("/debug/db", include_in_schema=False)
async def db_debug():
    """Return non-sensitive DB diagnostics (development only)."""
    if not is_development():
        raise HTTPException(status_code=404, detail="Not found")
    return get_db_debug_info()
