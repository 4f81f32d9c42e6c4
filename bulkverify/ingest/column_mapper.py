"""Spreadsheet header detection for bulk verification uploads.

Uploaded sheets come from many tools (Shopify exports, supplier price lists,
hand-made research sheets), so there is no fixed schema. Each semantic field
has an ordered list of case-insensitive header patterns; headers are scanned
in input order and the first matching header claims the field.

Fields are tried in ``FIELD_ORDER`` for every header, and a header is consumed
by the first field it binds. A header named ``SKU`` therefore binds ``asin``
(whose patterns are tried first) and is never also bound to ``sku``.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, fields, replace
from typing import Dict, Iterable, List, Optional, Tuple

logger = logging.getLogger(__name__)

# Order in which fields claim a header
FIELD_ORDER: Tuple[str, ...] = (
    "asin",
    "title",
    "price",
    "vendor",
    "category",
    "sku",
    "barcode",
)

COLUMN_PATTERNS: Dict[str, List[re.Pattern]] = {
    field_name: [re.compile(p, re.IGNORECASE) for p in patterns]
    for field_name, patterns in {
        "asin": [
            r"^asin$",
            r"^amazon.*asin$",
            r"^product.*id$",
            r"^variant.*sku$",
            r"^sku$",
            r"^source.*product.*id$",
        ],
        "title": [
            r"^title$",
            r"^product.*title$",
            r"^name$",
            r"^product.*name$",
            r"^item.*name$",
        ],
        "price": [
            r"^price$",
            r"^cost$",
            r"^cost.*price$",
            r"^amazon.*price$",
            r"^variant.*price$",
            r"^unit.*price$",
        ],
        "vendor": [
            r"^vendor$",
            r"^brand$",
            r"^manufacturer$",
            r"^supplier$",
        ],
        "category": [
            r"^category$",
            r"^product.*type$",
            r"^type$",
            r"^department$",
        ],
        "sku": [
            r"^sku$",
            r"^variant.*sku$",
            r"^product.*sku$",
            r"^item.*sku$",
        ],
        "barcode": [
            r"^barcode$",
            r"^upc$",
            r"^ean$",
            r"^gtin$",
            r"^variant.*barcode$",
        ],
    }.items()
}


class ColumnMappingError(ValueError):
    """Raised when a mapping cannot be used for parsing."""

    pass


@dataclass(frozen=True)
class ColumnMapping:
    """Source header bound to each semantic field (None when unbound)."""

    asin: Optional[str] = None
    title: Optional[str] = None
    price: Optional[str] = None
    vendor: Optional[str] = None
    category: Optional[str] = None
    sku: Optional[str] = None
    barcode: Optional[str] = None

    def with_overrides(self, **overrides: Optional[str]) -> "ColumnMapping":
        """Return a copy with operator-chosen headers replacing detected ones."""
        known = {f.name for f in fields(self)}
        unknown = set(overrides) - known
        if unknown:
            raise ValueError(f"Unknown mapping fields: {', '.join(sorted(unknown))}")
        return replace(self, **overrides)

    def require_identifier(self) -> str:
        """Return the identifier header or raise if none is mapped."""
        if not self.asin:
            raise ColumnMappingError("No ASIN column mapped")
        return self.asin

    def bound_fields(self) -> Dict[str, str]:
        """Fields that have a header, in FIELD_ORDER."""
        return {
            name: getattr(self, name)
            for name in FIELD_ORDER
            if getattr(self, name) is not None
        }

    def to_dict(self) -> Dict[str, Optional[str]]:
        return {name: getattr(self, name) for name in FIELD_ORDER}


@dataclass(frozen=True)
class ColumnSuggestion:
    """A detected mapping presented to the operator for review."""

    field: str
    header: str
    confidence: str  # "high" or "medium"


def _matches(field_name: str, header: str) -> bool:
    return any(pattern.search(header) for pattern in COLUMN_PATTERNS[field_name])


def auto_detect_columns(headers: Iterable[str]) -> ColumnMapping:
    """
    Infer a column mapping from spreadsheet headers.

    Args:
        headers: Header strings in sheet order

    Returns:
        ColumnMapping with each field bound to at most one header
    """
    bound: Dict[str, str] = {}

    for header in headers:
        if header is None:
            continue
        normalized = str(header).strip()
        if not normalized:
            continue

        for field_name in FIELD_ORDER:
            if field_name in bound:
                continue
            if _matches(field_name, normalized):
                bound[field_name] = header
                break

    mapping = ColumnMapping(**bound)
    logger.debug("Detected column mapping: %s", mapping.bound_fields())
    return mapping


def get_suggested_mappings(headers: Iterable[str]) -> List[ColumnSuggestion]:
    """Detected mappings with a confidence tier for UI hinting."""
    detected = auto_detect_columns(headers)
    suggestions: List[ColumnSuggestion] = []

    for field_name, header in detected.bound_fields().items():
        exact = str(header).strip().lower() == field_name
        suggestions.append(
            ColumnSuggestion(
                field=field_name,
                header=header,
                confidence="high" if exact else "medium",
            )
        )

    return suggestions
