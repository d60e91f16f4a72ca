"""Content-hash deduplication guard.

The guard answers "has a live receipt with this content already been
stored?".  It is a fast path only: two concurrent uploads of the same
bytes can both pass it, and the partial unique index on
``receipts.content_hash`` decides which one wins.

The check fails closed.  If the lookup itself errors the upload is
aborted with ``DeduplicationCheckError`` instead of being treated as
"not a duplicate".
"""

from __future__ import annotations

import logging

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from receiptscan.core.errors import DeduplicationCheckError
from receiptscan.models.tables import Receipt


logger = logging.getLogger(__name__)


class DeduplicationGuard:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def exists(self, content_hash: str) -> bool:
        """True when a non-deleted receipt already has ``content_hash``."""
        query = select(func.count(Receipt.id)).where(
            Receipt.content_hash == content_hash,
            Receipt.deleted_at.is_(None),
        )
        try:
            async with self._session_factory() as session:
                count = (await session.execute(query)).scalar() or 0
        except SQLAlchemyError as exc:
            logger.error("[dedup] hash lookup failed: %s", exc)
            raise DeduplicationCheckError(
                "Could not verify whether this receipt was already uploaded"
            ) from exc
        return count > 0
