"""Miscellaneous helper functions."""

from __future__ import annotations

import datetime as dt
import hashlib
from decimal import ROUND_HALF_UP, Decimal

from receiptscan.core.errors import AmountOutOfRange, InvalidTransactionDateTime

# Largest value a Numeric(10, 2) column holds
MAX_MONEY = Decimal("99999999.99")


def utcnow() -> dt.datetime:
    """Current UTC time as a naive datetime (the storage convention)."""
    return dt.datetime.now(dt.timezone.utc).replace(tzinfo=None)


def to_money(value: float | int | Decimal | None) -> Decimal:
    """Round an amount to cents for a Numeric(10, 2) column.

    Non-finite amounts and amounts beyond ``MAX_MONEY`` raise
    :class:`AmountOutOfRange`.
    """
    if value is None:
        return Decimal("0.00")
    amount = Decimal(str(value))
    if not amount.is_finite() or abs(amount) > MAX_MONEY:
        raise AmountOutOfRange(
            "Amount cannot be stored as money",
            context={"amount": str(value), "max": str(MAX_MONEY)},
        )
    return amount.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def compute_content_hash(data: bytes) -> str:
    """Return the SHA-256 hex digest of an upload's raw bytes.

    Takes an immutable buffer rather than a file object so that hashing
    never moves a read cursor that another consumer relies on.
    """
    if not isinstance(data, (bytes, bytearray, memoryview)):
        raise TypeError(f"expected bytes, got {type(data).__name__}")
    return hashlib.sha256(bytes(data)).hexdigest()


def combine_transaction_datetime(
    transaction_date: str | None,
    transaction_time: str | None,
    now: dt.datetime,
) -> dt.datetime:
    """Combine a receipt's transaction date and time into one instant.

    - neither present: ``now``
    - date only: the date at midnight
    - date and time: ``YYYY-MM-DD`` combined with ``HH:MM:SS``

    A time without a date, or a value that does not parse, raises
    :class:`InvalidTransactionDateTime`.
    """
    date_str = (transaction_date or "").strip()
    time_str = (transaction_time or "").strip()

    if not date_str and not time_str:
        return now
    if not date_str:
        raise InvalidTransactionDateTime(
            "Transaction time present without a transaction date",
            context={"transaction_time": time_str},
        )

    try:
        day = dt.datetime.strptime(date_str, "%Y-%m-%d").date()
    except ValueError as exc:
        raise InvalidTransactionDateTime(
            "Invalid transaction date format, expected YYYY-MM-DD",
            context={"transaction_date": date_str},
        ) from exc

    if not time_str:
        return dt.datetime.combine(day, dt.time.min)

    try:
        clock = dt.datetime.strptime(time_str, "%H:%M:%S").time()
    except ValueError as exc:
        raise InvalidTransactionDateTime(
            "Invalid transaction time format, expected HH:MM:SS",
            context={"transaction_time": time_str},
        ) from exc
    return dt.datetime.combine(day, clock)
