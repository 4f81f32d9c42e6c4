"""Export formatters for verification results.

Provides:
- CSV (one row per result, fixed column order)
- JSON (one object per result)
"""

import csv
import io
import json
from decimal import Decimal
from typing import Iterable, List, Optional

from bulkverify.detect.engine import VerifiedProduct

REASON_DELIMITER = "; "

CSV_HEADERS = [
    "Row",
    "ASIN",
    "Title",
    "Status",
    "Amazon Price",
    "Your Retail",
    "Profit Margin",
    "Rating",
    "Reviews",
    "Prime",
    "BSR",
    "Price Stability",
    "In Catalog",
    "Fail Reasons",
    "Warnings",
]


def _fixed(value: Optional[Decimal | float], places: int) -> str:
    if value is None:
        return ""
    return f"{value:.{places}f}"


def _csv_row(result: VerifiedProduct) -> List[str]:
    return [
        str(result.row_index),
        result.asin,
        result.title or "",
        result.status.value.upper(),
        _fixed(result.amazon_price, 2),
        _fixed(result.suggested_retail, 2),
        _fixed(result.profit_margin, 1),
        _fixed(result.rating, 1),
        "" if result.review_count is None else str(result.review_count),
        "Yes" if result.is_prime else "No",
        "" if result.sales_rank is None else str(result.sales_rank),
        result.price_stability.value,
        "Yes" if result.is_existing else "No",
        REASON_DELIMITER.join(result.fail_reasons),
        REASON_DELIMITER.join(result.warning_reasons),
    ]


def format_csv(results: Iterable[VerifiedProduct]) -> str:
    """
    Format results as CSV.

    Values containing commas, quotes or newlines are quoted, with embedded
    quotes doubled.

    Args:
        results: Verified products

    Returns:
        CSV text with a header row and no trailing newline
    """
    buffer = io.StringIO()
    writer = csv.writer(buffer, quoting=csv.QUOTE_MINIMAL, lineterminator="\n")
    writer.writerow(CSV_HEADERS)
    for result in results:
        writer.writerow(_csv_row(result))
    return buffer.getvalue().rstrip("\n")


def format_json(results: Iterable[VerifiedProduct], indent: Optional[int] = 2) -> str:
    """
    Format results as a JSON array.

    Args:
        results: Verified products
        indent: JSON indentation (None for compact output)

    Returns:
        JSON text
    """
    # raw_data may hold spreadsheet dates or decimals
    return json.dumps([r.to_dict() for r in results], indent=indent, default=str)
