"""SQLAlchemy ORM models for the receipt ingestion service.

These models define the relational database schema used by the
application.  ``User`` and ``Category`` belong to the wider expense
tracker and are only read here (foreign-key existence checks); the
ingestion pipeline writes ``Receipt`` rows and the ``Expense`` rows
derived from them.

Identifiers are UUID strings generated client side so that a receipt
and its expense can be linked before the transaction commits.

If you extend or modify these models remember to call the ``init_db``
helper during development to recreate the tables.
"""

from __future__ import annotations

import uuid

from sqlalchemy import (
    Column,
    String,
    DateTime,
    Boolean,
    Enum,
    ForeignKey,
    Index,
    Integer,
    LargeBinary,
    Numeric,
    Text,
    JSON,
    text,
)
from sqlalchemy.orm import relationship

from receiptscan.core.database import Base
from receiptscan.utils.helpers import utcnow
from .enums import ReceiptStatus


def _new_id() -> str:
    return str(uuid.uuid4())


class User(Base):
    """User account owning receipts, categories and expenses."""

    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=_new_id)
    email = Column(String, unique=True, nullable=False)
    name = Column(String, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    # Relationships
    receipts = relationship("Receipt", back_populates="owner")
    expenses = relationship("Expense", back_populates="owner")


class Category(Base):
    """Spending category; ``user_id`` is null for default categories."""

    __tablename__ = "categories"

    id = Column(String(36), primary_key=True, default=_new_id)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=True)
    name = Column(String(50), nullable=False)
    description = Column(Text, nullable=True)
    color_code = Column(String(7), nullable=True)
    is_default = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)
    deleted_at = Column(DateTime, nullable=True, index=True)


class Receipt(Base):
    """Uploaded receipt image and the fields extracted from it."""

    __tablename__ = "receipts"

    id = Column(String(36), primary_key=True, default=_new_id)
    owner_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    category_id = Column(String(36), ForeignKey("categories.id"), nullable=False)
    image = Column(LargeBinary, nullable=False)
    content_hash = Column(String(64), nullable=False)
    status = Column(Enum(ReceiptStatus), default=ReceiptStatus.PENDING, nullable=False)

    # Extracted fields
    merchant = Column(String(255), nullable=False, default="Unknown")
    total_amount = Column(Numeric(10, 2), nullable=False, default=0)
    tax = Column(Numeric(10, 2), nullable=False, default=0)
    discounts = Column(Numeric(10, 2), nullable=False, default=0)
    receipt_date = Column(String(50), nullable=True)
    transaction_date = Column(String(50), nullable=False, default="")
    transaction_time = Column(String(50), nullable=False, default="")
    items = Column(JSON, nullable=False, default=list)

    scanned_at = Column(DateTime, default=utcnow, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)
    deleted_at = Column(DateTime, nullable=True, index=True)

    # Background processing bookkeeping
    task_id = Column(String, nullable=True, index=True)  # Dramatiq message ID
    task_error = Column(Text, nullable=True)
    processing_duration_ms = Column(Integer, nullable=True)

    # Live receipts must have distinct content; soft-deleted rows free the hash
    __table_args__ = (
        Index(
            "uq_receipts_content_hash_live",
            "content_hash",
            unique=True,
            sqlite_where=text("deleted_at IS NULL"),
            postgresql_where=text("deleted_at IS NULL"),
        ),
    )

    owner = relationship("User", back_populates="receipts")
    category = relationship("Category")
    expense = relationship("Expense", back_populates="receipt", uselist=False)


class Expense(Base):
    """Expense entry; ``receipt_id`` is set when derived from a receipt."""

    __tablename__ = "expenses"

    id = Column(String(36), primary_key=True, default=_new_id)
    owner_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    category_id = Column(String(36), ForeignKey("categories.id"), nullable=False)
    amount = Column(Numeric(10, 2), nullable=False)
    date = Column(DateTime, nullable=False)
    description = Column(Text, nullable=True)
    receipt_id = Column(String(36), ForeignKey("receipts.id"), nullable=True, unique=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    owner = relationship("User", back_populates="expenses")
    receipt = relationship("Receipt", back_populates="expense")
