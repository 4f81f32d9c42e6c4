"""Candidate verification engine.

Each criterion is evaluated to a three-state outcome (satisfied, violated,
unknown). ``derive_status`` folds the outcomes into fail/warning reasons and
a status using ``SEVERITY_POLICY``: any fail reason makes the candidate
``fail``, otherwise any warning reason makes it ``warning``.
"""

import logging
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import AbstractSet, Iterable, List, Optional, Tuple, Union

from bulkverify.detect.rules import (
    Criterion,
    CriterionOutcome,
    CriterionState,
    RuleSet,
    Severity,
)
from bulkverify.ingest.keepa_client import EnrichmentRecord, PriceStability
from bulkverify.ingest.product_parser import ParsedProduct

logger = logging.getLogger(__name__)

_CENT = Decimal("0.01")


class VerificationStatus(str, Enum):
    """Classification of a verified candidate."""

    PASS = "pass"
    WARNING = "warning"
    FAIL = "fail"
    PENDING = "pending"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class VerificationResult:
    """Per-criterion pass flags."""

    meets_price: bool = False
    meets_reviews: bool = False
    meets_rating: bool = False
    meets_prime: bool = False
    meets_bsr: bool = False
    meets_brand: bool = False


@dataclass(frozen=True)
class VerifiedProduct:
    """A candidate with its verification outcome and the market data used."""

    product: ParsedProduct
    status: VerificationStatus
    verification_result: VerificationResult = field(default_factory=VerificationResult)
    fail_reasons: Tuple[str, ...] = ()
    warning_reasons: Tuple[str, ...] = ()
    # Enrichment data actually used
    amazon_price: Optional[Decimal] = None
    rating: Optional[float] = None
    review_count: Optional[int] = None
    is_prime: bool = False
    sales_rank: Optional[int] = None
    avg_price_30d: Optional[Decimal] = None
    avg_price_90d: Optional[Decimal] = None
    price_stability: PriceStability = PriceStability.UNKNOWN
    # Calculated
    suggested_retail: Optional[Decimal] = None
    profit_margin: Optional[Decimal] = None
    is_existing: bool = False

    @property
    def asin(self) -> str:
        return self.product.asin

    @property
    def row_index(self) -> int:
        return self.product.row_index

    @property
    def title(self) -> Optional[str]:
        return self.product.title

    def to_dict(self) -> dict:
        """Flat dictionary for JSON export and API responses."""
        p = self.product
        return {
            "row_index": p.row_index,
            "asin": p.asin,
            "title": p.title,
            "price": _as_float(p.price),
            "vendor": p.vendor,
            "category": p.category,
            "sku": p.sku,
            "barcode": p.barcode,
            "status": self.status.value,
            "verification_result": {
                "meets_price": self.verification_result.meets_price,
                "meets_reviews": self.verification_result.meets_reviews,
                "meets_rating": self.verification_result.meets_rating,
                "meets_prime": self.verification_result.meets_prime,
                "meets_bsr": self.verification_result.meets_bsr,
                "meets_brand": self.verification_result.meets_brand,
            },
            "fail_reasons": list(self.fail_reasons),
            "warning_reasons": list(self.warning_reasons),
            "amazon_price": _as_float(self.amazon_price),
            "rating": self.rating,
            "review_count": self.review_count,
            "is_prime": self.is_prime,
            "sales_rank": self.sales_rank,
            "avg_price_30d": _as_float(self.avg_price_30d),
            "avg_price_90d": _as_float(self.avg_price_90d),
            "price_stability": self.price_stability.value,
            "suggested_retail": _as_float(self.suggested_retail),
            "profit_margin": _as_float(self.profit_margin),
            "is_existing": self.is_existing,
            "raw_data": dict(p.raw_data),
        }


def _as_float(value: Optional[Decimal]) -> Optional[float]:
    return float(value) if value is not None else None


# ==========================================================================
# Criteria
# ==========================================================================

def check_price(price: Optional[Decimal], rules: RuleSet) -> CriterionOutcome:
    if price is None:
        return CriterionOutcome(Criterion.PRICE, CriterionState.UNKNOWN, "No price available")
    if price < rules.min_price:
        return CriterionOutcome(
            Criterion.PRICE,
            CriterionState.VIOLATED,
            f"Price ${price:.2f} below min ${rules.min_price:.2f}",
        )
    if price > rules.max_price:
        return CriterionOutcome(
            Criterion.PRICE,
            CriterionState.VIOLATED,
            f"Price ${price:.2f} above max ${rules.max_price:.2f}",
        )
    return CriterionOutcome(Criterion.PRICE, CriterionState.SATISFIED)


def check_reviews(review_count: Optional[int], rules: RuleSet) -> CriterionOutcome:
    # A minimum of 0 means reviews are not enforced, so missing data is irrelevant
    if rules.min_reviews <= 0:
        return CriterionOutcome(Criterion.REVIEWS, CriterionState.SATISFIED)
    if review_count is None:
        return CriterionOutcome(Criterion.REVIEWS, CriterionState.UNKNOWN, "No review data")
    if review_count < rules.min_reviews:
        return CriterionOutcome(
            Criterion.REVIEWS,
            CriterionState.VIOLATED,
            f"{review_count} reviews below min {rules.min_reviews}",
        )
    return CriterionOutcome(Criterion.REVIEWS, CriterionState.SATISFIED)


def check_rating(rating: Optional[float], rules: RuleSet) -> CriterionOutcome:
    if rules.min_rating <= 0:
        return CriterionOutcome(Criterion.RATING, CriterionState.SATISFIED)
    if rating is None:
        return CriterionOutcome(Criterion.RATING, CriterionState.UNKNOWN, "No rating data")
    if rating < rules.min_rating:
        return CriterionOutcome(
            Criterion.RATING,
            CriterionState.VIOLATED,
            f"Rating {rating:.1f} below min {rules.min_rating}",
        )
    return CriterionOutcome(Criterion.RATING, CriterionState.SATISFIED)


def check_prime(is_prime: bool, rules: RuleSet) -> CriterionOutcome:
    if rules.require_prime and not is_prime:
        return CriterionOutcome(Criterion.PRIME, CriterionState.VIOLATED, "Not Prime eligible")
    return CriterionOutcome(Criterion.PRIME, CriterionState.SATISFIED)


def check_sales_rank(sales_rank: Optional[int], rules: RuleSet) -> CriterionOutcome:
    if rules.max_sales_rank is None:
        return CriterionOutcome(Criterion.SALES_RANK, CriterionState.SATISFIED)
    if sales_rank is None:
        return CriterionOutcome(Criterion.SALES_RANK, CriterionState.UNKNOWN)
    if sales_rank > rules.max_sales_rank:
        return CriterionOutcome(
            Criterion.SALES_RANK,
            CriterionState.VIOLATED,
            f"BSR {sales_rank:,} above {rules.max_sales_rank:,}",
        )
    return CriterionOutcome(Criterion.SALES_RANK, CriterionState.SATISFIED)


def check_brand(title: Optional[str], rules: RuleSet) -> CriterionOutcome:
    if rules.is_excluded_brand(title):
        return CriterionOutcome(Criterion.BRAND, CriterionState.VIOLATED, "Contains excluded brand")
    return CriterionOutcome(Criterion.BRAND, CriterionState.SATISFIED)


def check_catalog(is_existing: bool) -> CriterionOutcome:
    if is_existing:
        return CriterionOutcome(Criterion.CATALOG, CriterionState.VIOLATED, "Already in catalog")
    return CriterionOutcome(Criterion.CATALOG, CriterionState.SATISFIED)


def derive_status(
    outcomes: Iterable[CriterionOutcome],
) -> Tuple[VerificationStatus, List[str], List[str]]:
    """
    Fold criterion outcomes into a status.

    Returns:
        Tuple of (status, fail_reasons, warning_reasons), reasons in
        evaluation order
    """
    fail_reasons: List[str] = []
    warning_reasons: List[str] = []

    for outcome in outcomes:
        severity = outcome.severity
        if severity == Severity.FAIL:
            fail_reasons.append(outcome.reason)
        elif severity == Severity.WARNING:
            warning_reasons.append(outcome.reason)

    if fail_reasons:
        status = VerificationStatus.FAIL
    elif warning_reasons:
        status = VerificationStatus.WARNING
    else:
        status = VerificationStatus.PASS
    return status, fail_reasons, warning_reasons


def calculate_pricing(
    price: Optional[Decimal],
    markup_multiplier: Decimal,
) -> Tuple[Optional[Decimal], Optional[Decimal]]:
    """
    Suggested retail price and profit margin percentage for a cost price.

    Both stay None when there is no price, or when the price is too large to
    price in cents; they are never defaulted to zero.
    """
    if price is None:
        return None, None
    try:
        retail = (price * markup_multiplier).quantize(_CENT)
    except InvalidOperation:
        logger.warning("Cannot price %s at markup %s", price, markup_multiplier)
        return None, None
    if retail <= 0:
        return retail, None
    margin = ((retail - price) / retail * 100).quantize(_CENT)
    return retail, margin


def verify_product(
    product: ParsedProduct,
    enrichment: Optional[EnrichmentRecord],
    existing_asins: AbstractSet[str],
    rules: RuleSet,
) -> VerifiedProduct:
    """
    Verify one candidate against the rule set.

    Args:
        product: Parsed candidate
        enrichment: Keepa data for the ASIN, or None when unavailable
        existing_asins: ASINs already in the catalog
        rules: Rule set to evaluate

    Returns:
        VerifiedProduct with status pass, warning or fail
    """
    is_existing = product.asin in existing_asins

    amazon_price = enrichment.amazon_price if enrichment else None
    price = amazon_price if amazon_price is not None else product.price
    rating = enrichment.rating if enrichment else None
    review_count = enrichment.review_count if enrichment else None
    is_prime = enrichment.is_prime if enrichment else False
    sales_rank = enrichment.sales_rank if enrichment else None

    price_check = check_price(price, rules)
    reviews_check = check_reviews(review_count, rules)
    rating_check = check_rating(rating, rules)
    prime_check = check_prime(is_prime, rules)
    rank_check = check_sales_rank(sales_rank, rules)
    brand_check = check_brand(product.title, rules)
    catalog_check = check_catalog(is_existing)

    status, fail_reasons, warning_reasons = derive_status(
        [
            price_check,
            reviews_check,
            rating_check,
            prime_check,
            rank_check,
            brand_check,
            catalog_check,
        ]
    )

    suggested_retail, profit_margin = calculate_pricing(price, rules.markup_multiplier)

    return VerifiedProduct(
        product=product,
        status=status,
        verification_result=VerificationResult(
            meets_price=price_check.state == CriterionState.SATISFIED,
            meets_reviews=reviews_check.state == CriterionState.SATISFIED,
            meets_rating=rating_check.state == CriterionState.SATISFIED,
            meets_prime=prime_check.state == CriterionState.SATISFIED,
            # Unknown rank is acceptable
            meets_bsr=rank_check.state != CriterionState.VIOLATED,
            meets_brand=brand_check.state == CriterionState.SATISFIED,
        ),
        fail_reasons=tuple(fail_reasons),
        warning_reasons=tuple(warning_reasons),
        amazon_price=price,
        rating=rating,
        review_count=review_count,
        is_prime=is_prime,
        sales_rank=sales_rank,
        avg_price_30d=enrichment.avg_price_30d if enrichment else None,
        avg_price_90d=enrichment.avg_price_90d if enrichment else None,
        price_stability=enrichment.price_stability if enrichment else PriceStability.UNKNOWN,
        suggested_retail=suggested_retail,
        profit_margin=profit_margin,
        is_existing=is_existing,
    )


def skipped_product(
    product: ParsedProduct,
    existing_asins: AbstractSet[str],
    reason: str,
) -> VerifiedProduct:
    """A candidate intentionally left unverified."""
    return VerifiedProduct(
        product=product,
        status=VerificationStatus.SKIPPED,
        warning_reasons=(reason,),
        is_existing=product.asin in existing_asins,
    )


def filter_by_status(
    results: Iterable[VerifiedProduct],
    status: Union[VerificationStatus, str],
) -> List[VerifiedProduct]:
    """Results with the given status; ``"all"`` returns everything."""
    if status == "all":
        return list(results)
    status = VerificationStatus(status)
    return [r for r in results if r.status == status]
