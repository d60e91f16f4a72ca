"""Enumeration types used throughout the receipt ingestion service.

Enumerations make it easier to constrain the values that can be
stored in the database or passed through the API.  When modifying
these enums you should update any corresponding database columns or
Pydantic validators so that new values are accepted where appropriate.
"""

from enum import Enum


class ReceiptStatus(str, Enum):
    """Processing states for a receipt."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class AnalysisStatus(str, Enum):
    """Normalised state of a long-running analysis operation."""

    SUBMITTED = "submitted"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class IngestionStage(str, Enum):
    """Stages an upload passes through on its way to a persisted receipt."""

    RECEIVED = "received"
    HASH_CHECKED = "hash_checked"
    CLASSIFIED = "classified"
    ANALYZED = "analyzed"
    EXTRACTED = "extracted"
    PERSISTED = "persisted"
    DONE = "done"
    ABORTED = "aborted"
