import datetime as dt

import pytest

from receiptscan.core.errors import MalformedAnalysisResult
from receiptscan.services.extraction_service import extract_receipt_fields

from fakes import analysis_payload

NOW = dt.datetime(2024, 6, 1, 9, 0, 0)


def test_full_receipt_is_extracted():
    extracted = extract_receipt_fields(analysis_payload(), now=NOW)
    assert extracted.merchant == "Corner Cafe"
    assert extracted.total_amount == 23.5
    assert extracted.receipt_date == "2024-03-15"
    assert extracted.transaction_date == "2024-03-15"
    assert extracted.transaction_time == "14:30:00"
    assert extracted.tax == 1.88
    assert extracted.discounts == 0.0


def test_incomplete_items_are_dropped():
    extracted = extract_receipt_fields(analysis_payload(), now=NOW)
    assert extracted.items_blob() == [{"name": "Latte", "totalPrice": 4.5}]


def test_missing_fields_fall_back_to_defaults():
    extracted = extract_receipt_fields(analysis_payload({}), now=NOW)
    assert extracted.merchant == "Unknown"
    assert extracted.total_amount == 0.0
    assert extracted.receipt_date == "2024-06-01 09:00:00"
    assert extracted.transaction_date == ""
    assert extracted.transaction_time == ""
    assert extracted.items == []


@pytest.mark.parametrize("total", [0, -4.2, "12.00", True])
def test_total_must_be_a_positive_number(total):
    extracted = extract_receipt_fields(analysis_payload({"Total": {"valueNumber": total}}), now=NOW)
    assert extracted.total_amount == 0.0


def test_merchant_falls_back_to_text_and_is_trimmed():
    fields = {"MerchantName": {"valueString": "  ", "text": "  ACME Hardware "}}
    assert extract_receipt_fields(analysis_payload(fields), now=NOW).merchant == "ACME Hardware"


def test_item_values_fall_back_to_text():
    fields = {
        "Items": {
            "valueArray": [
                {"valueObject": {"Name": {"text": "Milk"}, "TotalPrice": {"text": "3.25"}}},
                {"valueObject": {"Name": {"valueString": "Eggs"}, "TotalPrice": {"text": "three"}}},
                "not an object",
            ]
        }
    }
    extracted = extract_receipt_fields(analysis_payload(fields), now=NOW)
    assert [(i.name, i.total_price) for i in extracted.items] == [("Milk", 3.25)]


def test_items_without_array_are_empty():
    fields = {"Items": {"valueArray": {"unexpected": "shape"}}}
    assert extract_receipt_fields(analysis_payload(fields), now=NOW).items == []


def test_tax_and_discounts_accept_strings():
    fields = {"Tax": {"valueString": "2.50"}, "Discounts": {"valueNumber": 1}}
    extracted = extract_receipt_fields(analysis_payload(fields), now=NOW)
    assert extracted.tax == 2.5
    assert extracted.discounts == 1.0


def test_transaction_values_fall_back_to_value_string():
    fields = {
        "TransactionDate": {"valueString": "2024-01-02"},
        "TransactionTime": {"valueString": "08:15:00"},
    }
    extracted = extract_receipt_fields(analysis_payload(fields), now=NOW)
    assert (extracted.transaction_date, extracted.transaction_time) == ("2024-01-02", "08:15:00")


@pytest.mark.parametrize(
    "payload",
    [
        {},
        {"status": "succeeded"},
        {"analyzeResult": {"documentResults": []}},
        {"analyzeResult": {"documentResults": [{"docType": "prebuilt:receipt"}]}},
        ["not", "a", "mapping"],
    ],
)
def test_malformed_documents_raise(payload):
    with pytest.raises(MalformedAnalysisResult) as excinfo:
        extract_receipt_fields(payload, now=NOW)
    assert "fragment" in excinfo.value.context


@pytest.mark.parametrize("text", ["inf", "-Infinity", "nan", "1e400"])
def test_non_finite_strings_are_not_amounts(text):
    fields = {
        "Tax": {"valueString": text},
        "Discounts": {"valueString": text},
        "Items": {
            "valueArray": [
                {"valueObject": {"Name": {"valueString": "Gum"}, "TotalPrice": {"text": text}}},
            ]
        },
    }
    extracted = extract_receipt_fields(analysis_payload(fields), now=NOW)
    assert extracted.tax == 0.0
    assert extracted.discounts == 0.0
    assert extracted.items == []


@pytest.mark.parametrize("number", [float("inf"), float("nan")])
def test_non_finite_numbers_fall_back_to_defaults(number):
    fields = {"Total": {"valueNumber": number}, "Tax": {"valueNumber": number, "valueString": "0.40"}}
    extracted = extract_receipt_fields(analysis_payload(fields), now=NOW)
    assert extracted.total_amount == 0.0
    assert extracted.tax == 0.4


def test_negative_tax_and_discounts_are_kept():
    fields = {"Tax": {"valueNumber": -0.5}, "Discounts": {"valueString": "-2.00"}}
    extracted = extract_receipt_fields(analysis_payload(fields), now=NOW)
    assert (extracted.tax, extracted.discounts) == (-0.5, -2.0)
