"""Error taxonomy for receipt ingestion.

Every failure raised by the ingestion core derives from
``IngestionError`` and falls into one of three families:

``ValidationError``
    The caller can fix the input (missing file, unknown category,
    duplicate upload, not-a-receipt image, unparseable transaction
    date/time, an amount too large to store).

``InfrastructureError``
    An external dependency failed (classifier, analysis service,
    database, task broker).  ``operation`` names the call that failed.

``DataShapeError``
    The analysis service answered with a document whose structure we do
    not understand.

Each error carries a stable ``code`` that the API layer exposes and an
``http_status`` used by the exception handlers.  ``stage`` is filled in
by the pipeline with the last stage it completed before aborting.
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class IngestionError(Exception):
    code = "ingestion_error"
    http_status = 500

    def __init__(self, message: str, *, context: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.context: Dict[str, Any] = dict(context or {})
        self.stage: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"code": self.code, "message": self.message}
        if self.stage:
            data["stage"] = self.stage
        if self.context:
            data["context"] = self.context
        return data


# ---------------------------------------------------------------------------
# Validation errors


class ValidationError(IngestionError):
    code = "validation_error"
    http_status = 400


class MissingFile(ValidationError):
    code = "missing_file"


class InvalidCategory(ValidationError):
    code = "invalid_category"


class DuplicateReceipt(ValidationError):
    code = "duplicate_receipt"
    http_status = 409

    def __init__(self, content_hash: str) -> None:
        super().__init__(
            "A receipt with identical content has already been uploaded",
            context={"content_hash": content_hash},
        )
        self.content_hash = content_hash


class InvalidReceiptImage(ValidationError):
    code = "invalid_receipt_image"
    http_status = 422

    def __init__(self, confidence: float) -> None:
        super().__init__(
            "The uploaded image was not recognised as a receipt",
            context={"confidence": confidence},
        )
        self.confidence = confidence


class InvalidTransactionDateTime(ValidationError):
    code = "invalid_transaction_datetime"
    http_status = 422


class AmountOutOfRange(ValidationError):
    code = "amount_out_of_range"
    http_status = 422


# ---------------------------------------------------------------------------
# Infrastructure errors


class InfrastructureError(IngestionError):
    code = "infrastructure_error"
    http_status = 502
    operation = "unknown"

    def __init__(self, message: str, *, operation: Optional[str] = None, context: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message, context=context)
        if operation:
            self.operation = operation

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["operation"] = self.operation
        return data


class ClassificationServiceError(InfrastructureError):
    code = "classification_unavailable"
    operation = "classify"


class AnalysisServiceError(InfrastructureError):
    code = "analysis_unavailable"
    operation = "analyze"


class AnalysisFailed(AnalysisServiceError):
    code = "analysis_failed"
    operation = "analyze.poll"

    def __init__(self, payload: Dict[str, Any], raw: str = "") -> None:
        super().__init__(f"Receipt analysis failed: {raw or payload}", context={"payload": payload})
        self.payload = payload
        self.raw = raw


class AnalysisTimeout(AnalysisServiceError):
    code = "analysis_timeout"
    http_status = 504
    operation = "analyze.poll"


class DeduplicationCheckError(InfrastructureError):
    code = "dedup_check_failed"
    http_status = 503
    operation = "dedup.exists"


class PersistenceError(InfrastructureError):
    code = "persistence_failed"
    http_status = 503
    operation = "persist"


class TaskEnqueueError(InfrastructureError):
    code = "task_enqueue_failed"
    http_status = 503
    operation = "task.enqueue"


# ---------------------------------------------------------------------------
# Data shape errors


class DataShapeError(IngestionError):
    code = "data_shape_error"
    http_status = 502


class MalformedAnalysisResult(DataShapeError):
    code = "malformed_analysis_result"


__all__ = [
    "IngestionError",
    "ValidationError",
    "MissingFile",
    "InvalidCategory",
    "DuplicateReceipt",
    "InvalidReceiptImage",
    "InvalidTransactionDateTime",
    "AmountOutOfRange",
    "InfrastructureError",
    "ClassificationServiceError",
    "AnalysisServiceError",
    "AnalysisFailed",
    "AnalysisTimeout",
    "DeduplicationCheckError",
    "PersistenceError",
    "TaskEnqueueError",
    "DataShapeError",
    "MalformedAnalysisResult",
]
