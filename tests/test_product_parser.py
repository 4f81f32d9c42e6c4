"""Tests for parsing sheet rows into candidates."""

from decimal import Decimal

import pytest

from bulkverify.ingest.column_mapper import ColumnMapping
from bulkverify.ingest.product_parser import is_valid_asin, parse_price, parse_products


MAPPING = ColumnMapping(asin="ASIN", title="Title", price="Price", vendor="Brand")


@pytest.mark.parametrize(
    "value,expected",
    [
        ("$12.50", Decimal("12.50")),
        ("1,299.99", Decimal("1299.99")),
        (" €9 ", Decimal("9")),
        (12.5, Decimal("12.5")),
        (7, Decimal("7")),
    ],
)
def test_parse_price(value, expected):
    assert parse_price(value) == expected


@pytest.mark.parametrize("value", [None, "", "abc", "NaN", True, "1e30", "1" * 30])
def test_parse_price_unparsable(value):
    assert parse_price(value) is None


def test_is_valid_asin():
    assert is_valid_asin("B00TEST123")
    assert not is_valid_asin("A00TEST123")
    assert not is_valid_asin("B00TEST12")
    assert not is_valid_asin("b00test123")


def test_parse_products_drops_rows_without_valid_asin():
    """Test that every row is either parsed or dropped with a reason."""
    rows = [
        {"ASIN": "B00TEST123", "Title": "Spatula", "Price": "$12.50"},
        {"ASIN": "", "Title": "No identifier"},
        {"ASIN": " b00test456 ", "Title": "Whisk", "Price": "8"},
        {"ASIN": "12345", "Title": "Bad identifier"},
        {"ASIN": 12345, "Title": "Numeric cell"},
        {"Title": "Missing cell"},
    ]

    result = parse_products(rows, MAPPING)

    assert result.success
    assert result.total_rows == len(rows)
    assert [p.asin for p in result.products] == ["B00TEST123", "B00TEST456"]
    assert [p.row_index for p in result.products] == [1, 3]
    assert [d.row_index for d in result.dropped_rows] == [2, 4, 5, 6]
    assert result.dropped_rows[0].reason == "Missing ASIN"
    assert result.dropped_rows[1].reason.startswith("Invalid ASIN")
    assert result.dropped_rows[2].reason == "Missing ASIN"


def test_parse_products_maps_fields():
    rows = [{"ASIN": "B00TEST123", "Title": "  Spatula  ", "Price": "$12.50", "Brand": "", "Extra": 1}]

    product = parse_products(rows, MAPPING).products[0]

    assert product.title == "Spatula"
    assert product.price == Decimal("12.50")
    assert product.vendor is None
    assert product.sku is None
    assert product.raw_data["Extra"] == 1


def test_unparsable_price_degrades_to_none():
    rows = [{"ASIN": "B00TEST123", "Price": "call for price"}]

    result = parse_products(rows, MAPPING)

    assert len(result.products) == 1
    assert result.products[0].price is None


def test_parse_without_price_column():
    rows = [{"ASIN": "B00TEST123", "Price": "9.99"}]

    result = parse_products(rows, ColumnMapping(asin="ASIN"))

    assert result.products[0].price is None


def test_parse_products_configuration_error():
    """Test that a mapping without an identifier fails before any row is read."""
    rows = [{"Title": "Spatula"}]

    result = parse_products(rows, ColumnMapping(title="Title"))

    assert not result.success
    assert result.error == "No ASIN column mapped"
    assert result.products == []
    assert result.dropped_rows == []
