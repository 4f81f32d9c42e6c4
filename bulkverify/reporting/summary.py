"""Aggregate statistics and cost estimates for verification jobs."""

import math
from dataclasses import asdict, dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional, Sequence

from bulkverify.config import settings
from bulkverify.detect.engine import VerificationStatus, VerifiedProduct


@dataclass(frozen=True)
class VerificationSummary:
    """Counts over a set of verification results."""

    total: int
    passed: int
    warnings: int
    failed: int
    skipped: int
    existing: int
    pass_rate: int  # percent
    estimated_tokens: int
    estimated_time: str

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class CostEstimate:
    """Cost of cheap-bulk-then-deep-narrow enrichment versus deep for everyone."""

    keepa_tokens: int
    deep_enrichment_count: int
    deep_enrichment_cost: Decimal
    naive_cost: Decimal
    total_cost: Decimal
    processing_time: str
    strategy: str
    savings: Decimal
    savings_percent: int

    def to_dict(self) -> dict:
        data = asdict(self)
        for key in ("deep_enrichment_cost", "naive_cost", "total_cost", "savings"):
            data[key] = float(data[key])
        return data


def _round_half_up(value: Decimal) -> int:
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def _plural(count: int, unit: str) -> str:
    return f"{count} {unit}{'' if count == 1 else 's'}"


def summarize(
    results: Sequence[VerifiedProduct],
    products_per_minute: Optional[int] = None,
) -> VerificationSummary:
    """
    Summarize verification results.

    Args:
        results: Verified products (complete or partial job)
        products_per_minute: Enrichment throughput for the time estimate

    Returns:
        VerificationSummary
    """
    products_per_minute = products_per_minute or settings.keepa_products_per_minute

    total = len(results)
    passed = sum(1 for r in results if r.status == VerificationStatus.PASS)
    warnings = sum(1 for r in results if r.status == VerificationStatus.WARNING)
    failed = sum(1 for r in results if r.status == VerificationStatus.FAIL)
    skipped = sum(1 for r in results if r.status == VerificationStatus.SKIPPED)
    existing = sum(1 for r in results if r.is_existing)

    pass_rate = _round_half_up(Decimal(passed) / Decimal(total) * 100) if total else 0

    minutes = math.ceil(total / products_per_minute)
    if minutes < 60:
        estimated_time = _plural(minutes, "minute")
    else:
        estimated_time = _plural(math.ceil(minutes / 60), "hour")

    return VerificationSummary(
        total=total,
        passed=passed,
        warnings=warnings,
        failed=failed,
        skipped=skipped,
        existing=existing,
        pass_rate=pass_rate,
        estimated_tokens=total * settings.keepa_tokens_per_product,
        estimated_time=estimated_time,
    )


def estimate_cost(
    product_count: int,
    *,
    use_keepa: bool = True,
    use_deep_enrichment: bool = True,
    estimated_pass_rate: Optional[float] = None,
    deep_cost_per_product: Optional[float] = None,
) -> CostEstimate:
    """
    Estimate enrichment cost before running a job.

    The phased strategy runs the cheap Keepa check on everything and deep
    enrichment only on the share expected to pass; the naive strategy deep
    enriches every product. Advisory only.

    Args:
        product_count: Number of candidates
        use_keepa: Include the cheap bulk phase
        use_deep_enrichment: Include the deep enrichment phase
        estimated_pass_rate: Expected share (0-1) passing the cheap phase
        deep_cost_per_product: USD per deep lookup

    Returns:
        CostEstimate
    """
    if product_count < 0:
        raise ValueError("product_count must not be negative")
    if estimated_pass_rate is None:
        estimated_pass_rate = settings.default_estimated_pass_rate
    if not 0 <= estimated_pass_rate <= 1:
        raise ValueError("estimated_pass_rate must be between 0 and 1")
    if deep_cost_per_product is None:
        deep_cost_per_product = settings.deep_enrichment_cost_per_product
    unit_cost = Decimal(str(deep_cost_per_product))

    keepa_tokens = product_count * settings.keepa_tokens_per_product if use_keepa else 0

    # Without the cheap phase there is nothing to narrow the deep phase down
    if use_keepa:
        deep_count = math.ceil(Decimal(product_count) * Decimal(str(estimated_pass_rate)))
    else:
        deep_count = product_count
    if not use_deep_enrichment:
        deep_count = 0
    deep_cost = deep_count * unit_cost

    naive_cost = product_count * unit_cost
    savings = naive_cost - deep_cost
    savings_percent = _round_half_up(savings / naive_cost * 100) if naive_cost > 0 else 0

    keepa_minutes = math.ceil(product_count / settings.keepa_products_per_minute) if use_keepa else 0
    deep_minutes = math.ceil(deep_count / settings.deep_enrichment_products_per_minute)
    total_minutes = keepa_minutes + deep_minutes
    if total_minutes < 60:
        processing_time = f"~{_plural(total_minutes, 'minute')}"
    else:
        processing_time = f"~{total_minutes / 60:.1f} hours"

    if use_keepa and use_deep_enrichment:
        strategy = (
            f"Phase 1: Keepa verify ({keepa_tokens} tokens) -> "
            f"Phase 2: Enrich ~{deep_count} winners (~${deep_cost:.2f})"
        )
    elif use_keepa:
        strategy = f"Keepa only ({keepa_tokens} tokens)"
    elif use_deep_enrichment:
        strategy = f"Deep enrichment only (~${deep_cost:.2f})"
    else:
        strategy = "No enrichment"

    return CostEstimate(
        keepa_tokens=keepa_tokens,
        deep_enrichment_count=deep_count,
        deep_enrichment_cost=deep_cost,
        naive_cost=naive_cost,
        total_cost=deep_cost,
        processing_time=processing_time,
        strategy=strategy,
        savings=savings,
        savings_percent=savings_percent,
    )
