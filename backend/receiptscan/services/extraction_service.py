"""Field extraction from receipt analysis documents.

The analysis service returns a loosely typed document: each recognised
field is a small mapping holding one or more *value variants*
(``valueString``, ``valueNumber``, ``valueDate``, ``valueTime``,
``valueArray``, ``valueObject``) plus the raw ``text`` it was read from.
Which variants are present differs from receipt to receipt, so every
field is resolved through an ordered list of variants and falls back to
a default when none of them is usable.

Only the envelope is mandatory: ``analyzeResult.documentResults[0].fields``
must exist.  A document without it raises ``MalformedAnalysisResult``;
missing individual fields never do.

``extract_receipt_fields`` is pure: it performs no I/O and the only
ambient input (the current time, used as the receipt date default) can
be injected.
"""

from __future__ import annotations

import datetime as dt
import json
import logging
import math
from typing import Any, List, Mapping, Optional

from receiptscan.core.errors import MalformedAnalysisResult
from receiptscan.models.schemas import ExtractedReceipt, LineItem, UNKNOWN_MERCHANT
from receiptscan.utils.helpers import utcnow


logger = logging.getLogger(__name__)

RECEIPT_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Keep logged payload fragments short
_MAX_FRAGMENT_CHARS = 500


def _fragment(value: Any) -> str:
    try:
        text = json.dumps(value, default=str)
    except (TypeError, ValueError):
        text = repr(value)
    return text[:_MAX_FRAGMENT_CHARS]


def _malformed(message: str, fragment: Any) -> MalformedAnalysisResult:
    logger.warning("[extraction] %s; fragment=%s", message, _fragment(fragment))
    return MalformedAnalysisResult(message, context={"fragment": _fragment(fragment)})


def document_fields(payload: Any) -> Mapping[str, Any]:
    """Return ``analyzeResult.documentResults[0].fields`` or raise."""
    if not isinstance(payload, Mapping):
        raise _malformed("analysis payload is not an object", payload)
    analyze_result = payload.get("analyzeResult")
    if not isinstance(analyze_result, Mapping):
        raise _malformed("failed to find analyzeResult in the response", payload)
    document_results = analyze_result.get("documentResults")
    if not isinstance(document_results, list) or not document_results:
        raise _malformed("failed to find documentResults in the response", analyze_result)
    first = document_results[0]
    if not isinstance(first, Mapping):
        raise _malformed("first document result is not an object", first)
    fields = first.get("fields")
    if not isinstance(fields, Mapping):
        raise _malformed("failed to find fields in documentResults", first)
    return fields


# ---------------------------------------------------------------------------
# Value variant readers


def _field(fields: Mapping[str, Any], name: str) -> Optional[Mapping[str, Any]]:
    value = fields.get(name)
    return value if isinstance(value, Mapping) else None


def _string(field: Optional[Mapping[str, Any]], *variants: str) -> Optional[str]:
    """First non-empty string among ``variants``."""
    if field is None:
        return None
    for key in variants:
        value = field.get(key)
        if isinstance(value, str) and value.strip():
            return value
    return None


def _finite(value: float) -> Optional[float]:
    return value if math.isfinite(value) else None


def _number(value: Any) -> Optional[float]:
    # bool is an int subclass; never treat True/False as an amount
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        try:
            return _finite(float(value))
        except OverflowError:
            return None
    return None


def _parse_float(value: Any) -> Optional[float]:
    if not isinstance(value, str):
        return None
    try:
        return _finite(float(value.strip()))
    except ValueError:
        return None


def _amount(field: Optional[Mapping[str, Any]], *string_variants: str) -> Optional[float]:
    """``valueNumber`` first, then the given string variants parsed as floats.

    Infinities and NaN are never amounts; such a variant is skipped.
    """
    if field is None:
        return None
    number = _number(field.get("valueNumber"))
    if number is not None:
        return number
    for key in string_variants:
        parsed = _parse_float(field.get(key))
        if parsed is not None:
            return parsed
    return None


# ---------------------------------------------------------------------------
# Per-field rules


def extract_merchant(fields: Mapping[str, Any]) -> str:
    merchant = _string(_field(fields, "MerchantName"), "valueString", "text")
    merchant = (merchant or "").strip()
    return merchant or UNKNOWN_MERCHANT


def extract_total(fields: Mapping[str, Any]) -> float:
    field = _field(fields, "Total")
    total = _number(field.get("valueNumber")) if field else None
    if total is None or total <= 0:
        return 0.0
    return total


def _default_zero(amount: Optional[float]) -> float:
    # Sign is kept: negative tax or discounts pass through unchanged
    return 0.0 if amount is None else amount


def extract_items(fields: Mapping[str, Any]) -> List[LineItem]:
    """Line items carrying both a name and a total price, in source order."""
    field = _field(fields, "Items")
    if field is None:
        return []
    entries = field.get("valueArray")
    if not isinstance(entries, list):
        logger.debug("[extraction] Items has no valueArray list; ignoring")
        return []

    items: List[LineItem] = []
    for entry in entries:
        if not isinstance(entry, Mapping):
            continue
        obj = entry.get("valueObject")
        if not isinstance(obj, Mapping):
            continue
        name = _string(_field(obj, "Name"), "valueString", "text")
        price = _amount(_field(obj, "TotalPrice"), "text", "valueString")
        if name is None or price is None:
            continue
        items.append(LineItem(name=name.strip(), total_price=price))
    return items


def extract_receipt_fields(payload: Any, now: Optional[dt.datetime] = None) -> ExtractedReceipt:
    """Turn an analysis payload into an :class:`ExtractedReceipt`.

    Raises ``MalformedAnalysisResult`` when the document envelope is
    missing; individual fields fall back to their defaults.
    """
    fields = document_fields(payload)
    now = now or utcnow()

    receipt_date = _string(_field(fields, "ReceiptDate"), "valueString") or now.strftime(RECEIPT_DATE_FORMAT)
    transaction_date = _string(_field(fields, "TransactionDate"), "valueDate", "valueString") or ""
    transaction_time = _string(_field(fields, "TransactionTime"), "valueTime", "valueString") or ""

    extracted = ExtractedReceipt(
        merchant=extract_merchant(fields),
        total_amount=extract_total(fields),
        receipt_date=receipt_date,
        transaction_date=transaction_date.strip(),
        transaction_time=transaction_time.strip(),
        tax=_default_zero(_amount(_field(fields, "Tax"), "valueString")),
        discounts=_default_zero(_amount(_field(fields, "Discounts"), "valueString")),
        items=extract_items(fields),
    )
    logger.debug(
        "[extraction] merchant=%s total=%s items=%d fields=%s",
        extracted.merchant,
        extracted.total_amount,
        len(extracted.items),
        sorted(fields.keys()),
    )
    return extracted


__all__ = ["extract_receipt_fields", "document_fields", "RECEIPT_DATE_FORMAT"]
