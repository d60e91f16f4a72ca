"""Receipt and expense persistence.

``PersistenceCoordinator`` owns every write the ingestion pipeline
makes.  A receipt and the expense derived from it are written in one
transaction (``persist_receipt_with_expense`` for direct ingestion,
``complete_pending_receipt`` for background processing), so a receipt never
exists in ``completed`` state without its expense.

Database failures are translated at this boundary:

* a unique violation on the content-hash index becomes
  ``DuplicateReceipt`` (a concurrent upload of the same bytes won);
* anything else becomes ``PersistenceError`` after rolling back.
"""

from __future__ import annotations

import datetime as dt
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from receiptscan.core.errors import DuplicateReceipt, IngestionError, PersistenceError
from receiptscan.models.enums import ReceiptStatus
from receiptscan.models.schemas import ExtractedReceipt
from receiptscan.models.tables import Category, Expense, Receipt
from receiptscan.utils.helpers import to_money, utcnow


logger = logging.getLogger(__name__)

CONTENT_HASH_INDEX = "uq_receipts_content_hash_live"


def is_content_hash_violation(exc: IntegrityError) -> bool:
    message = str(getattr(exc, "orig", exc))
    return CONTENT_HASH_INDEX in message or "receipts.content_hash" in message


def apply_extracted(receipt: Receipt, extracted: ExtractedReceipt) -> Receipt:
    """Copy extracted fields onto a receipt row."""
    receipt.merchant = extracted.merchant
    receipt.total_amount = to_money(extracted.total_amount)
    receipt.tax = to_money(extracted.tax)
    receipt.discounts = to_money(extracted.discounts)
    receipt.receipt_date = extracted.receipt_date
    receipt.transaction_date = extracted.transaction_date
    receipt.transaction_time = extracted.transaction_time
    receipt.items = extracted.items_blob()
    return receipt


def expense_for_receipt(receipt: Receipt, date: dt.datetime) -> Expense:
    """Build the expense derived from ``receipt`` (not yet linked by id)."""
    return Expense(
        owner_id=receipt.owner_id,
        category_id=receipt.category_id,
        amount=receipt.total_amount,
        date=date,
        description=f"Receipt from {receipt.merchant}",
        receipt_id=receipt.id,
    )


class PersistenceCoordinator:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    @asynccontextmanager
    async def _transaction(self, operation: str, content_hash: str = "") -> AsyncIterator[AsyncSession]:
        """Session with an open transaction; database errors are translated."""
        async with self._session_factory() as session:
            try:
                async with session.begin():
                    yield session
            except IngestionError:
                raise
            except IntegrityError as exc:
                if is_content_hash_violation(exc):
                    logger.info("[persist] %s lost the content-hash race", operation)
                    raise DuplicateReceipt(content_hash) from exc
                logger.error("[persist] %s integrity error: %s", operation, exc)
                raise PersistenceError(f"{operation} failed: integrity error", operation=operation) from exc
            except SQLAlchemyError as exc:
                logger.error("[persist] %s failed: %s", operation, exc)
                raise PersistenceError(f"{operation} failed", operation=operation) from exc

    async def category_exists(self, category_id: str) -> bool:
        query = select(func.count(Category.id)).where(
            Category.id == category_id,
            Category.deleted_at.is_(None),
        )
        try:
            async with self._session_factory() as session:
                count = (await session.execute(query)).scalar() or 0
        except SQLAlchemyError as exc:
            raise PersistenceError("category lookup failed", operation="category.exists") from exc
        return count > 0

    async def persist_receipt(self, receipt: Receipt) -> Receipt:
        async with self._transaction("persist.receipt", receipt.content_hash) as session:
            session.add(receipt)
        logger.info("[persist] receipt %s stored (status=%s)", receipt.id, receipt.status)
        return receipt

    async def persist_expense(self, expense: Expense) -> Expense:
        async with self._transaction("persist.expense") as session:
            session.add(expense)
        return expense

    async def persist_receipt_with_expense(self, receipt: Receipt, expense: Expense) -> Receipt:
        """Write ``receipt`` and its ``expense`` atomically."""
        async with self._transaction("persist.receipt_with_expense", receipt.content_hash) as session:
            session.add(receipt)
            await session.flush()
            expense.receipt_id = receipt.id
            session.add(expense)
        logger.info("[persist] receipt %s stored with expense %s", receipt.id, expense.id)
        return receipt

    async def get_receipt(self, receipt_id: str) -> Optional[Receipt]:
        try:
            async with self._session_factory() as session:
                return await session.get(Receipt, receipt_id)
        except SQLAlchemyError as exc:
            raise PersistenceError("receipt lookup failed", operation="receipt.get") from exc

    async def set_status(
        self,
        receipt_id: str,
        status: ReceiptStatus,
        *,
        error: Optional[str] = None,
        duration_ms: Optional[int] = None,
    ) -> Receipt:
        async with self._transaction("receipt.status") as session:
            receipt = await session.get(Receipt, receipt_id)
            if receipt is None:
                raise PersistenceError(f"Receipt {receipt_id} not found", operation="receipt.status")
            receipt.status = status
            receipt.task_error = error
            if duration_ms is not None:
                receipt.processing_duration_ms = duration_ms
        return receipt

    async def mark_processing(self, receipt_id: str) -> Receipt:
        return await self.set_status(receipt_id, ReceiptStatus.PROCESSING)

    async def mark_failed(self, receipt_id: str, error: str, duration_ms: Optional[int] = None) -> Receipt:
        logger.warning("[persist] receipt %s failed: %s", receipt_id, error)
        return await self.set_status(receipt_id, ReceiptStatus.FAILED, error=error, duration_ms=duration_ms)

    async def abandon_pending(self, receipt_id: str, error: str) -> Receipt:
        """Fail a receipt that was never queued and release its content hash."""
        async with self._transaction("receipt.abandon") as session:
            receipt = await session.get(Receipt, receipt_id)
            if receipt is None:
                raise PersistenceError(f"Receipt {receipt_id} not found", operation="receipt.abandon")
            receipt.status = ReceiptStatus.FAILED
            receipt.task_error = error
            receipt.deleted_at = utcnow()
        logger.warning("[persist] receipt %s abandoned: %s", receipt_id, error)
        return receipt

    async def complete_pending_receipt(
        self,
        receipt_id: str,
        extracted: ExtractedReceipt,
        expense_date: dt.datetime,
        duration_ms: Optional[int] = None,
    ) -> Receipt:
        """Fill a pending receipt with ``extracted`` and add its expense in one transaction."""
        async with self._transaction("receipt.complete") as session:
            receipt = await session.get(Receipt, receipt_id)
            if receipt is None:
                raise PersistenceError(f"Receipt {receipt_id} not found", operation="receipt.complete")
            apply_extracted(receipt, extracted)
            receipt.status = ReceiptStatus.COMPLETED
            receipt.task_error = None
            receipt.processing_duration_ms = duration_ms
            session.add(expense_for_receipt(receipt, expense_date))
        logger.info("[persist] receipt %s completed", receipt_id)
        return receipt

