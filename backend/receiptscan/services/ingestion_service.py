"""Receipt ingestion pipeline.

``IngestionPipeline`` turns uploaded image bytes into a persisted
``Receipt`` and the ``Expense`` derived from it.  Every ingestion moves
through the stages of :class:`IngestionStage`::

    received -> hash_checked -> classified -> analyzed -> extracted
             -> persisted -> done

Any ``IngestionError`` aborts the run; the last stage reached is written
to ``error.stage`` before the error propagates, and nothing is persisted
on the synchronous path.

Two entry points exist:

``ingest``
    Runs the whole pipeline in the caller's task and returns the
    completed receipt.

``accept`` / ``process``
    Background variant.  ``accept`` does the cheap checks and stores a
    ``pending`` receipt (which reserves its content hash); ``process``
    later runs classification, analysis and extraction and either
    completes the receipt together with its expense or marks it
    ``failed`` with the error recorded in ``task_error``.  Unexpected
    exceptions are recorded as ``unexpected: ...`` and re-raised, so a
    receipt never stays ``processing``.

Collaborators (session factory, classifier, analysis client, clock) are
injected, so the pipeline holds no global state and one instance can
serve concurrent requests.
"""

from __future__ import annotations

import datetime as dt
import logging
import time
import uuid
from typing import Callable, Optional, Union

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from receiptscan.core.errors import (
    DuplicateReceipt,
    IngestionError,
    InvalidCategory,
    InvalidReceiptImage,
    MissingFile,
    PersistenceError,
    ValidationError,
)
from receiptscan.core.observability import sentry_breadcrumb, sentry_set_tags
from receiptscan.models.enums import IngestionStage, ReceiptStatus
from receiptscan.models.schemas import ExtractedReceipt
from receiptscan.models.tables import Receipt
from receiptscan.services.analysis_service import AnalysisClient
from receiptscan.services.classification_service import ClassificationClient
from receiptscan.services.dedup_service import DeduplicationGuard
from receiptscan.services.extraction_service import extract_receipt_fields
from receiptscan.services.persistence_service import (
    PersistenceCoordinator,
    apply_extracted,
    expense_for_receipt,
)
from receiptscan.utils.helpers import combine_transaction_datetime, compute_content_hash, utcnow


logger = logging.getLogger(__name__)

ImageBytes = Union[bytes, bytearray, memoryview]


class _StageTracker:
    """Record stage transitions for one ingestion run."""

    def __init__(self, flow: str, ref: str = "") -> None:
        self.flow = flow
        self.ref = ref
        self.stage = IngestionStage.RECEIVED
        self._log(self.stage)

    def _log(self, stage: IngestionStage) -> None:
        logger.info("[ingest:%s] %s stage=%s", self.flow, self.ref or "-", stage.value)
        sentry_breadcrumb("ingestion", f"{self.flow}:{stage.value}", data={"ref": self.ref})

    def advance(self, stage: IngestionStage) -> None:
        self.stage = stage
        self._log(stage)

    def abort(self, exc: IngestionError) -> None:
        if exc.stage is None:
            exc.stage = self.stage.value
        logger.warning(
            "[ingest:%s] %s aborted after stage=%s code=%s: %s",
            self.flow,
            self.ref or "-",
            exc.stage,
            exc.code,
            exc.message,
        )
        sentry_breadcrumb(
            "ingestion",
            f"{self.flow}:{IngestionStage.ABORTED.value}",
            level="warning",
            data={"ref": self.ref, "stage": exc.stage, "code": exc.code},
        )


def _validated_image(image: Optional[ImageBytes]) -> bytes:
    if image is None:
        raise MissingFile("No receipt file was provided")
    if not isinstance(image, (bytes, bytearray, memoryview)):
        raise MissingFile(f"Receipt upload must be raw bytes, got {type(image).__name__}")
    data = bytes(image)
    if not data:
        raise MissingFile("The uploaded receipt file is empty")
    return data


def _validated_category_id(category_id: Optional[str]) -> str:
    if not category_id:
        raise InvalidCategory("category_id is required")
    try:
        return str(uuid.UUID(str(category_id)))
    except ValueError as exc:
        raise InvalidCategory(
            "category_id is not a valid UUID", context={"category_id": str(category_id)}
        ) from exc


def _validated_owner_id(owner_id: Optional[str]) -> str:
    if not owner_id or not str(owner_id).strip():
        raise ValidationError("owner_id is required")
    return str(owner_id)


class IngestionPipeline:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        classifier: ClassificationClient,
        analyzer: AnalysisClient,
        *,
        guard: Optional[DeduplicationGuard] = None,
        persistence: Optional[PersistenceCoordinator] = None,
        now: Callable[[], dt.datetime] = utcnow,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.classifier = classifier
        self.analyzer = analyzer
        self.guard = guard or DeduplicationGuard(session_factory)
        self.persistence = persistence or PersistenceCoordinator(session_factory)
        self._now = now
        self._clock = clock

    # ------------------------------------------------------------------
    # Shared steps

    async def _check_duplicate(self, image: bytes) -> str:
        content_hash = compute_content_hash(image)
        if await self.guard.exists(content_hash):
            raise DuplicateReceipt(content_hash)
        return content_hash

    async def _check_category(self, category_id: str) -> None:
        if not await self.persistence.category_exists(category_id):
            raise InvalidCategory(
                "Category does not exist", context={"category_id": category_id}
            )

    async def _recognise(self, image: bytes, tracker: _StageTracker, now: dt.datetime) -> ExtractedReceipt:
        """Classify, analyze and extract; no writes happen here."""
        verdict = await self.classifier.classify(image)
        if not verdict.is_receipt:
            raise InvalidReceiptImage(verdict.confidence)
        tracker.advance(IngestionStage.CLASSIFIED)

        payload = await self.analyzer.analyze(image)
        tracker.advance(IngestionStage.ANALYZED)

        extracted = extract_receipt_fields(payload, now=now)
        tracker.advance(IngestionStage.EXTRACTED)
        return extracted

    # ------------------------------------------------------------------
    # Synchronous ingestion

    async def ingest(self, owner_id: str, category_id: str, image: ImageBytes) -> Receipt:
        """Run the full pipeline and return the completed receipt.

        Raises an ``IngestionError`` subclass on any failure; in that case
        neither a receipt nor an expense has been written.
        """
        tracker = _StageTracker("sync")
        try:
            data = _validated_image(image)
            category_id = _validated_category_id(category_id)
            owner_id = _validated_owner_id(owner_id)

            content_hash = await self._check_duplicate(data)
            tracker.ref = content_hash[:12]
            tracker.advance(IngestionStage.HASH_CHECKED)

            now = self._now()
            extracted = await self._recognise(data, tracker, now)

            # Category is validated after analysis but before any write
            await self._check_category(category_id)
            expense_date = combine_transaction_datetime(
                extracted.transaction_date, extracted.transaction_time, now
            )

            receipt = Receipt(
                owner_id=owner_id,
                category_id=category_id,
                image=data,
                content_hash=content_hash,
                status=ReceiptStatus.COMPLETED,
                scanned_at=now,
            )
            apply_extracted(receipt, extracted)
            expense = expense_for_receipt(receipt, expense_date)
            await self.persistence.persist_receipt_with_expense(receipt, expense)
            tracker.advance(IngestionStage.PERSISTED)
        except IngestionError as exc:
            tracker.abort(exc)
            raise

        tracker.advance(IngestionStage.DONE)
        return receipt

    # ------------------------------------------------------------------
    # Background ingestion

    async def accept(self, owner_id: str, category_id: str, image: ImageBytes) -> Receipt:
        """Validate, dedupe and store a ``pending`` receipt for later processing."""
        tracker = _StageTracker("accept")
        try:
            data = _validated_image(image)
            category_id = _validated_category_id(category_id)
            owner_id = _validated_owner_id(owner_id)

            content_hash = await self._check_duplicate(data)
            tracker.ref = content_hash[:12]
            tracker.advance(IngestionStage.HASH_CHECKED)

            await self._check_category(category_id)
            receipt = Receipt(
                owner_id=owner_id,
                category_id=category_id,
                image=data,
                content_hash=content_hash,
                status=ReceiptStatus.PENDING,
                scanned_at=self._now(),
            )
            await self.persistence.persist_receipt(receipt)
        except IngestionError as exc:
            tracker.abort(exc)
            raise
        return receipt

    async def process(self, receipt_id: str) -> Receipt:
        """Complete a pending receipt, or mark it ``failed`` and re-raise."""
        receipt = await self.persistence.get_receipt(receipt_id)
        if receipt is None:
            raise PersistenceError(f"Receipt {receipt_id} not found", operation="receipt.get")
        if receipt.status == ReceiptStatus.COMPLETED:
            logger.info("[ingest:background] receipt %s already completed; skipping", receipt_id)
            return receipt

        sentry_set_tags({"receipt_id": receipt_id})
        tracker = _StageTracker("background", receipt_id)
        tracker.advance(IngestionStage.HASH_CHECKED)
        started = self._clock()
        await self.persistence.mark_processing(receipt_id)

        try:
            now = self._now()
            extracted = await self._recognise(bytes(receipt.image), tracker, now)
            expense_date = combine_transaction_datetime(
                extracted.transaction_date, extracted.transaction_time, now
            )
            completed = await self.persistence.complete_pending_receipt(
                receipt_id,
                extracted,
                expense_date,
                duration_ms=self._elapsed_ms(started),
            )
            tracker.advance(IngestionStage.PERSISTED)
        except IngestionError as exc:
            tracker.abort(exc)
            await self.persistence.mark_failed(
                receipt_id, f"{exc.code}: {exc.message}", duration_ms=self._elapsed_ms(started)
            )
            raise
        except Exception as exc:
            # Anything outside the taxonomy still ends the receipt's run
            logger.exception("[ingest:background] %s crashed after stage=%s", receipt_id, tracker.stage.value)
            await self.persistence.mark_failed(
                receipt_id, f"unexpected: {exc!r}", duration_ms=self._elapsed_ms(started)
            )
            raise

        tracker.advance(IngestionStage.DONE)
        return completed

    def _elapsed_ms(self, started: float) -> int:
        return int((self._clock() - started) * 1000)


def build_default_pipeline(session_factory: Optional[async_sessionmaker[AsyncSession]] = None) -> IngestionPipeline:
    """Pipeline wired to the configured database and external services."""
    if session_factory is None:
        from receiptscan.core.database import AsyncSessionLocal

        session_factory = AsyncSessionLocal
    return IngestionPipeline(session_factory, ClassificationClient(), AnalysisClient())


__all__ = ["IngestionPipeline", "build_default_pipeline"]
