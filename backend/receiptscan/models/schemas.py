"""Pydantic schemas for domain values and API responses.

Pydantic models are used for validating and serialising data that
crosses the boundary of the API or of an external service.  This module
defines both the domain schemas produced by the ingestion pipeline
(``ExtractedReceipt``, ``ClassificationResult``) and the API facing
schemas used to return receipts and expenses.

Note that Pydantic schemas are intentionally separate from the ORM
models to avoid coupling and to allow for different shapes of data
being exposed through the API compared with what is stored in the
database.  In particular the raw image bytes are never serialised.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from .enums import ReceiptStatus


# ---------------------------------------------------------------------------
# Domain schemas


UNKNOWN_MERCHANT = "Unknown"


class LineItem(BaseModel):
    """Line item retained from the analysis result (name and line total)."""

    model_config = ConfigDict(populate_by_name=True)

    name: str
    total_price: float = Field(alias="totalPrice")

    def to_storage(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)


class ExtractedReceipt(BaseModel):
    """Typed fields pulled out of an analysis document."""

    merchant: str = UNKNOWN_MERCHANT
    total_amount: float = 0.0
    receipt_date: str = ""
    transaction_date: str = ""
    transaction_time: str = ""
    tax: float = 0.0
    discounts: float = 0.0
    items: List[LineItem] = Field(default_factory=list)

    def items_blob(self) -> List[Dict[str, Any]]:
        """Items in the shape stored on the receipt row, source order kept."""
        return [item.to_storage() for item in self.items]


class ClassificationResult(BaseModel):
    """Verdict from the receipt classifier."""

    is_receipt: bool
    confidence: float
    tag: Optional[str] = None


# ---------------------------------------------------------------------------
# API response schemas


class ExpenseRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    owner_id: str
    category_id: str
    amount: Decimal
    date: datetime
    description: Optional[str] = None
    receipt_id: Optional[str] = None
    created_at: datetime


class ReceiptRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    owner_id: str
    category_id: str
    content_hash: str
    status: ReceiptStatus
    merchant: str
    total_amount: Decimal
    tax: Decimal
    discounts: Decimal
    receipt_date: Optional[str] = None
    transaction_date: str = ""
    transaction_time: str = ""
    items: List[Dict[str, Any]] = Field(default_factory=list)
    scanned_at: datetime
    created_at: datetime
    updated_at: datetime
    task_id: Optional[str] = None
    task_error: Optional[str] = None


class APIResponse(BaseModel):
    """Standard response envelope used by every route."""

    status: int
    message: str
    data: Optional[Any] = None
    errors: Optional[Any] = None
