"""Parse uploaded spreadsheet rows into verification candidates."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any, List, Mapping, Optional, Sequence

from bulkverify.ingest.column_mapper import ColumnMapping, ColumnMappingError
from bulkverify import metrics

logger = logging.getLogger(__name__)

# Amazon ASIN: "B" followed by nine alphanumeric characters
ASIN_PATTERN = re.compile(r"^B[A-Z0-9]{9}$")

# Currency symbols, thousands separators and whitespace stripped before parsing
_PRICE_NOISE = re.compile(r"[$€£¥,\s]")
_CENT = Decimal("0.01")

__all__ = [
    "ASIN_PATTERN",
    "ColumnMappingError",
    "DroppedRow",
    "ParseResult",
    "ParsedProduct",
    "is_valid_asin",
    "parse_price",
    "parse_products",
]


@dataclass(frozen=True)
class ParsedProduct:
    """One spreadsheet row normalized into a candidate."""

    row_index: int  # 1-based position in the uploaded rows
    asin: str
    title: Optional[str] = None
    price: Optional[Decimal] = None
    vendor: Optional[str] = None
    category: Optional[str] = None
    sku: Optional[str] = None
    barcode: Optional[str] = None
    raw_data: Mapping[str, Any] = field(default_factory=dict, compare=False)


@dataclass(frozen=True)
class DroppedRow:
    """A row excluded before verification."""

    row_index: int
    reason: str


@dataclass
class ParseResult:
    """Candidates parsed from a sheet plus the rows that were dropped."""

    products: List[ParsedProduct] = field(default_factory=list)
    dropped_rows: List[DroppedRow] = field(default_factory=list)
    error: Optional[str] = None  # configuration error, parsing did not run

    @property
    def success(self) -> bool:
        return self.error is None

    @property
    def total_rows(self) -> int:
        return len(self.products) + len(self.dropped_rows)


def is_valid_asin(value: str) -> bool:
    """Check an already-normalized identifier against the ASIN grammar."""
    return bool(ASIN_PATTERN.match(value))


def parse_price(value: Any) -> Optional[Decimal]:
    """
    Parse a price cell.

    Args:
        value: Raw cell value ("$1,299.99", 12.5, "€9" ...); commas are
            treated as thousands separators

    Returns:
        Decimal price, or None if the cell is empty or unparsable
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float, Decimal)):
        text = str(value)
    else:
        text = _PRICE_NOISE.sub("", str(value))
    if not text:
        return None

    try:
        price = Decimal(text)
    except InvalidOperation:
        return None

    if not price.is_finite():
        return None

    try:
        price.quantize(_CENT)
    except InvalidOperation:
        # Too many digits to carry cents
        return None
    return price


def _cell_text(row: Mapping[str, Any], column: Optional[str]) -> Optional[str]:
    if not column:
        return None
    value = row.get(column)
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def parse_products(
    rows: Sequence[Mapping[str, Any]],
    mapping: ColumnMapping,
) -> ParseResult:
    """
    Parse rows into candidates using a column mapping.

    Rows whose identifier cell is missing, not a string, or not a valid ASIN
    are dropped (recorded in ``dropped_rows``, never classified). An
    unparsable price degrades to None.

    Args:
        rows: Row dicts keyed by header, in sheet order
        mapping: Column mapping (must bind ``asin``)

    Returns:
        ParseResult; ``error`` is set and no rows are parsed when the
        mapping has no identifier column
    """
    result = ParseResult()

    try:
        asin_column = mapping.require_identifier()
    except ColumnMappingError as exc:
        logger.error("Cannot parse products: %s", exc)
        result.error = str(exc)
        return result

    for position, row in enumerate(rows):
        row_index = position + 1
        raw_asin = row.get(asin_column)

        if not raw_asin or not isinstance(raw_asin, str):
            result.dropped_rows.append(DroppedRow(row_index, "Missing ASIN"))
            logger.debug("Row %s dropped: missing ASIN", row_index)
            continue

        asin = raw_asin.strip().upper()
        if not is_valid_asin(asin):
            result.dropped_rows.append(DroppedRow(row_index, f"Invalid ASIN {raw_asin!r}"))
            logger.debug("Row %s dropped: invalid ASIN %r", row_index, raw_asin)
            continue

        price = None
        if mapping.price:
            raw_price = row.get(mapping.price)
            price = parse_price(raw_price)
            if price is None and raw_price not in (None, ""):
                logger.debug("Row %s: unparsable price %r", row_index, raw_price)

        result.products.append(
            ParsedProduct(
                row_index=row_index,
                asin=asin,
                title=_cell_text(row, mapping.title),
                price=price,
                vendor=_cell_text(row, mapping.vendor),
                category=_cell_text(row, mapping.category),
                sku=_cell_text(row, mapping.sku),
                barcode=_cell_text(row, mapping.barcode),
                raw_data=dict(row),
            )
        )

    metrics.parsed_rows_total.labels(outcome="parsed").inc(len(result.products))
    metrics.parsed_rows_total.labels(outcome="dropped").inc(len(result.dropped_rows))

    if result.dropped_rows:
        logger.info(
            "Parsed %s products, dropped %s rows without a valid ASIN",
            len(result.products),
            len(result.dropped_rows),
        )

    return result
