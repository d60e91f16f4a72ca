"""API routes for receipt upload and retrieval."""

from __future__ import annotations

import logging
from typing import Callable, Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, Response, UploadFile, status
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from receiptscan.api.dependencies import get_db_session, get_pipeline, get_task_enqueuer
from receiptscan.core.config import settings
from receiptscan.core.errors import MissingFile, TaskEnqueueError, ValidationError
from receiptscan.core.observability import sentry_set_tags
from receiptscan.core.security import get_current_user_id
from receiptscan.models.schemas import APIResponse, ReceiptRead
from receiptscan.models.tables import Receipt
from receiptscan.services.ingestion_service import IngestionPipeline
from receiptscan.utils.helpers import utcnow

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/receipts", tags=["receipts"])


def _receipt_payload(receipt: Receipt) -> dict:
    return ReceiptRead.model_validate(receipt).model_dump(mode="json")


async def _owned_receipt(db: AsyncSession, receipt_id: str, user_id: str) -> Receipt:
    query = select(Receipt).where(
        Receipt.id == receipt_id,
        Receipt.owner_id == user_id,
        Receipt.deleted_at.is_(None),
    )
    receipt = (await db.execute(query)).scalar_one_or_none()
    if receipt is None:
        raise HTTPException(status_code=404, detail="Receipt not found")
    return receipt


@router.post("/upload", response_model=APIResponse, status_code=status.HTTP_201_CREATED)
async def upload_receipt(
    response: Response,
    receipt: Optional[UploadFile] = File(None),
    category_id: str = Form(""),
    background: bool = Query(False, description="Store the receipt and process it in a worker"),
    user_id: str = Depends(get_current_user_id),
    pipeline: IngestionPipeline = Depends(get_pipeline),
    enqueue: Callable[[str], Optional[str]] = Depends(get_task_enqueuer),
    db: AsyncSession = Depends(get_db_session),
) -> APIResponse:
    """Upload a receipt image.

    By default the full pipeline runs inline and the completed receipt is
    returned (201).  With ``?background=true`` a pending receipt is stored,
    processing is queued and 202 is returned.
    """
    if receipt is None:
        raise MissingFile("No receipt file was provided (form field 'receipt')")
    contents = await receipt.read()
    if len(contents) > settings.MAX_UPLOAD_SIZE:
        raise ValidationError(
            f"File too large. Maximum size is {settings.MAX_UPLOAD_SIZE // (1024 * 1024)}MB",
            context={"size": len(contents)},
        )
    sentry_set_tags({"user_id": user_id, "background": background})

    if not background:
        stored = await pipeline.ingest(user_id, category_id, contents)
        return APIResponse(
            status=status.HTTP_201_CREATED,
            message="Receipt uploaded successfully",
            data=_receipt_payload(stored),
        )

    stored = await pipeline.accept(user_id, category_id, contents)
    try:
        task_id = enqueue(stored.id)
    except Exception as exc:
        # The receipt would never be processed; fail it and free its hash
        logger.error("[api] could not enqueue receipt %s: %r", stored.id, exc)
        await pipeline.persistence.abandon_pending(stored.id, f"task_enqueue_failed: {exc!r}")
        raise TaskEnqueueError(
            "Could not queue the receipt for processing", context={"receipt_id": stored.id}
        ) from exc
    if task_id:
        await db.execute(update(Receipt).where(Receipt.id == stored.id).values(task_id=task_id))
        await db.commit()
        stored.task_id = task_id
    logger.info("[api] receipt %s accepted for background processing (task=%s)", stored.id, task_id)
    response.status_code = status.HTTP_202_ACCEPTED
    return APIResponse(
        status=status.HTTP_202_ACCEPTED,
        message="Receipt accepted for processing",
        data=_receipt_payload(stored),
    )


@router.get("", response_model=APIResponse)
async def list_receipts(
    db: AsyncSession = Depends(get_db_session),
    user_id: str = Depends(get_current_user_id),
    limit: int = Query(200, ge=1, le=1000),
    offset: int = Query(0, ge=0),
) -> APIResponse:
    """List the caller's receipts, newest first."""
    query = (
        select(Receipt)
        .where(Receipt.owner_id == user_id, Receipt.deleted_at.is_(None))
        .order_by(Receipt.created_at.desc())
        .offset(offset)
        .limit(limit)
    )
    receipts = (await db.execute(query)).scalars().all()
    return APIResponse(
        status=status.HTTP_200_OK,
        message="Receipts retrieved successfully",
        data=[_receipt_payload(r) for r in receipts],
    )


@router.get("/{receipt_id}", response_model=APIResponse)
async def get_receipt(
    receipt_id: str,
    db: AsyncSession = Depends(get_db_session),
    user_id: str = Depends(get_current_user_id),
) -> APIResponse:
    """Get a specific receipt by ID."""
    receipt = await _owned_receipt(db, receipt_id, user_id)
    return APIResponse(
        status=status.HTTP_200_OK,
        message="Receipt retrieved successfully",
        data=_receipt_payload(receipt),
    )


@router.delete("/{receipt_id}", response_model=APIResponse)
async def delete_receipt(
    receipt_id: str,
    db: AsyncSession = Depends(get_db_session),
    user_id: str = Depends(get_current_user_id),
) -> APIResponse:
    """Soft delete a receipt; its content may be uploaded again afterwards."""
    receipt = await _owned_receipt(db, receipt_id, user_id)
    receipt.deleted_at = utcnow()
    await db.commit()
    return APIResponse(status=status.HTTP_200_OK, message="Receipt deleted", data={"id": receipt_id})
