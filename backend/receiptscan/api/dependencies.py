"""Common dependencies for FastAPI routes.

This module defines shared dependency functions: database access, the
ingestion pipeline and the background task enqueuer.  Authentication
lives in ``receiptscan.core.security``.  Tests replace these via
``app.dependency_overrides``.
"""

from __future__ import annotations

from typing import AsyncGenerator, Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from receiptscan.core.database import get_db
from receiptscan.core.tasks import enqueue_processing
from receiptscan.services.ingestion_service import IngestionPipeline, build_default_pipeline


# -----------------------------------------------------------------------------
# Shared resources

_pipeline: Optional[IngestionPipeline] = None


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """Alias for `get_db` to be imported in routers."""
    async for session in get_db():
        yield session


def get_pipeline() -> IngestionPipeline:
    """Return the process-wide ingestion pipeline, building it on first use."""
    global _pipeline
    if _pipeline is None:
        _pipeline = build_default_pipeline()
    return _pipeline


def get_task_enqueuer() -> Callable[[str], Optional[str]]:
    """Callable that schedules background processing and returns the task id."""
    return enqueue_processing
