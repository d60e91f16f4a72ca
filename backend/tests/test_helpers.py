import datetime as dt
from decimal import Decimal

import pytest

from receiptscan.core.errors import AmountOutOfRange, InvalidTransactionDateTime
from receiptscan.utils.helpers import MAX_MONEY, combine_transaction_datetime, compute_content_hash, to_money

NOW = dt.datetime(2024, 6, 1, 9, 0, 0)


def test_content_hash_is_sha256_hex():
    assert compute_content_hash(b"abc") == "ba7816bf8f01cfea414140de5dae2223b00361a396177a9cb410ff61f20015ad"


def test_content_hash_depends_only_on_bytes():
    data = b"\x89PNG fake image"
    assert compute_content_hash(data) == compute_content_hash(bytearray(data))
    assert compute_content_hash(data) == compute_content_hash(memoryview(data))
    assert compute_content_hash(data) != compute_content_hash(data + b"!")


def test_content_hash_rejects_non_bytes():
    with pytest.raises(TypeError):
        compute_content_hash("not bytes")  # type: ignore[arg-type]


def test_combine_date_and_time():
    assert combine_transaction_datetime("2024-03-15", "14:30:00", NOW) == dt.datetime(2024, 3, 15, 14, 30, 0)


def test_combine_date_only_is_midnight():
    assert combine_transaction_datetime("2024-03-15", "", NOW) == dt.datetime(2024, 3, 15, 0, 0, 0)


def test_combine_neither_is_now():
    assert combine_transaction_datetime("", None, NOW) == NOW


@pytest.mark.parametrize(
    "date_value,time_value",
    [
        ("", "14:30:00"),
        ("15/03/2024", ""),
        ("2024-03-15", "2:30 PM"),
    ],
)
def test_combine_invalid_values_raise(date_value, time_value):
    with pytest.raises(InvalidTransactionDateTime):
        combine_transaction_datetime(date_value, time_value, NOW)


def test_to_money_rounds_half_up_to_cents():
    assert to_money(2.675) == Decimal("2.68")
    assert to_money(10) == Decimal("10.00")
    assert to_money(None) == Decimal("0.00")


def test_to_money_accepts_the_column_maximum():
    assert to_money(MAX_MONEY) == Decimal("99999999.99")
    assert to_money(-12.5) == Decimal("-12.50")


@pytest.mark.parametrize("value", [1e30, 100_000_000, float("inf"), float("-inf"), float("nan")])
def test_to_money_rejects_amounts_that_cannot_be_stored(value):
    with pytest.raises(AmountOutOfRange) as excinfo:
        to_money(value)
    assert excinfo.value.http_status == 422
