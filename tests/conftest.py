"""Shared fixtures for the verification test suite."""

from decimal import Decimal

import pytest

from bulkverify.detect.rules import RuleSet
from bulkverify.ingest.keepa_client import EnrichmentRecord
from bulkverify.ingest.product_parser import ParsedProduct


@pytest.fixture
def lenient_rules():
    """Price band only; every other criterion disabled."""
    return RuleSet(
        min_price=Decimal("5"),
        max_price=Decimal("50"),
        min_reviews=0,
        min_rating=0,
        require_prime=False,
        max_sales_rank=None,
        excluded_title_words=(),
    )


@pytest.fixture
def strict_rules():
    """Sourcing defaults with a small brand list."""
    return RuleSet(
        min_price=Decimal("3"),
        max_price=Decimal("25"),
        min_reviews=500,
        min_rating=3.5,
        require_prime=True,
        max_sales_rank=100000,
        excluded_title_words=("apple", "sony", "refurbished"),
    )


@pytest.fixture
def make_product():
    """Factory for parsed candidates."""

    def _make(asin="B00TEST123", row_index=1, title="Silicone Kitchen Spatula", price="12.50"):
        return ParsedProduct(
            row_index=row_index,
            asin=asin,
            title=title,
            price=Decimal(price) if price is not None else None,
            raw_data={"ASIN": asin, "Title": title, "Price": price},
        )

    return _make


@pytest.fixture
def make_record():
    """Factory for enrichment records of a healthy listing."""

    def _make(asin="B00TEST123", **overrides):
        values = {
            "amazon_price": Decimal("15.00"),
            "rating": 4.5,
            "review_count": 1200,
            "is_prime": True,
            "sales_rank": 45000,
        }
        values.update(overrides)
        return EnrichmentRecord(asin=asin, **values)

    return _make
