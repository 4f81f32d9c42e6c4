"""Keepa price/reputation client used to enrich verification candidates.

This is a boundary wrapper: it batches ASINs into one ``/product`` request,
decodes Keepa's integer-encoded values and reports failures as a
``BatchFetchResult`` instead of raising. It performs no retries.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, List, Optional, Sequence

import httpx

from bulkverify.config import settings
from bulkverify import metrics

logger = logging.getLogger(__name__)

# Keepa csv/stats indices
AMAZON_PRICE = 0
SALES_RANK = 3
RATING = 16
REVIEW_COUNT = 17

_CENT = Decimal("0.01")


class KeepaServiceError(RuntimeError):
    """Raised when a Keepa request fails."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class KeepaNotConfiguredError(KeepaServiceError):
    """Raised when no Keepa API key is configured."""

    def __init__(self):
        super().__init__("KEEPA_API_KEY not configured")


class PriceStability(str, Enum):
    """Price stability derived from recent average prices."""

    STABLE = "stable"
    VOLATILE = "volatile"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class EnrichmentRecord:
    """Market data for one ASIN."""

    asin: str
    amazon_price: Optional[Decimal] = None
    rating: Optional[float] = None
    review_count: Optional[int] = None
    is_prime: bool = False
    sales_rank: Optional[int] = None
    avg_price_30d: Optional[Decimal] = None
    avg_price_90d: Optional[Decimal] = None
    price_stability: PriceStability = PriceStability.UNKNOWN


@dataclass
class BatchFetchResult:
    """Outcome of one batch lookup: records on success, an error otherwise."""

    success: bool
    records: List[EnrichmentRecord] = field(default_factory=list)
    error: Optional[str] = None
    status_code: Optional[int] = None
    tokens_left: Optional[int] = None
    refill_in_ms: Optional[int] = None

    @classmethod
    def failure(cls, error: str, status_code: Optional[int] = None) -> "BatchFetchResult":
        return cls(success=False, error=error, status_code=status_code)


def keepa_price_to_decimal(value: Any) -> Optional[Decimal]:
    """Convert a Keepa price (integer cents, -1 = no offer) to dollars."""
    if value is None or isinstance(value, bool):
        return None
    try:
        cents = int(value)
    except (TypeError, ValueError):
        return None
    if cents < 0:
        return None
    return (Decimal(cents) / 100).quantize(_CENT)


def classify_price_stability(
    avg_30d: Optional[Decimal],
    avg_90d: Optional[Decimal],
    threshold: Optional[float] = None,
) -> PriceStability:
    """
    Classify a price as stable or volatile from its 30d and 90d averages.

    Args:
        avg_30d: 30-day average price
        avg_90d: 90-day average price
        threshold: Max relative deviation still considered stable

    Returns:
        PriceStability (UNKNOWN when either window is missing)
    """
    if avg_30d is None or avg_90d is None or avg_90d <= 0:
        return PriceStability.UNKNOWN
    if threshold is None:
        threshold = settings.price_volatility_threshold

    deviation = abs(avg_30d - avg_90d) / avg_90d
    if deviation > Decimal(str(threshold)):
        return PriceStability.VOLATILE
    return PriceStability.STABLE


def _stat_value(stats: dict, key: str, index: int) -> Optional[int]:
    values = stats.get(key)
    if not isinstance(values, list) or len(values) <= index:
        return None
    value = values[index]
    if value is None or value < 0:
        return None
    return int(value)


def _last_series_value(csv: Any, index: int) -> Optional[int]:
    """Last value of a Keepa [time, value, time, value, ...] series."""
    if not isinstance(csv, list) or len(csv) <= index:
        return None
    series = csv[index]
    if not series or len(series) < 2:
        return None
    value = series[-1]
    if value is None or value < 0:
        return None
    return int(value)


def parse_keepa_product(raw: dict, volatility_threshold: Optional[float] = None) -> EnrichmentRecord:
    """
    Decode one product object from a Keepa ``/product`` response.

    Current values come from ``stats.current`` and fall back to the last point
    of the ``csv`` history series when stats were not returned.
    """
    stats = raw.get("stats") or {}
    csv = raw.get("csv")

    def current(index: int) -> Optional[int]:
        value = _stat_value(stats, "current", index)
        if value is None:
            value = _last_series_value(csv, index)
        return value

    amazon_price = keepa_price_to_decimal(current(AMAZON_PRICE))
    raw_rating = current(RATING)
    avg_30d = keepa_price_to_decimal(_stat_value(stats, "avg30", AMAZON_PRICE))
    avg_90d = keepa_price_to_decimal(_stat_value(stats, "avg90", AMAZON_PRICE))

    return EnrichmentRecord(
        asin=str(raw.get("asin", "")).upper(),
        amazon_price=amazon_price,
        rating=raw_rating / 10 if raw_rating else None,
        review_count=current(REVIEW_COUNT),
        # Prime is assumed when Amazon itself currently has an offer
        is_prime=amazon_price is not None and amazon_price > 0,
        sales_rank=current(SALES_RANK) or None,
        avg_price_30d=avg_30d,
        avg_price_90d=avg_90d,
        price_stability=classify_price_stability(avg_30d, avg_90d, volatility_threshold),
    )


class KeepaClient:
    """
    Batch ASIN lookups against the Keepa product API.

    Usage:
        async with KeepaClient() as client:
            if client.is_configured():
                result = await client.fetch_batch(["B00TEST123", ...])
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        domain: Optional[int] = None,
        stats_days: Optional[int] = None,
        timeout: Optional[float] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.api_key = settings.keepa_api_key if api_key is None else api_key
        self.base_url = (base_url or settings.keepa_base_url).rstrip("/")
        self.domain = domain or settings.keepa_domain
        self.stats_days = stats_days or settings.keepa_stats_days
        self.timeout = timeout or settings.keepa_timeout_seconds
        self._client = http_client
        self._owns_client = http_client is None

    def is_configured(self) -> bool:
        """True when an API key is available."""
        return bool(self.api_key)

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def _request(self, asins: Sequence[str]) -> dict:
        """
        Perform one ``/product`` request.

        Raises:
            KeepaNotConfiguredError: If no API key is set
            KeepaServiceError: On HTTP, transport or service-level errors
        """
        if not self.is_configured():
            raise KeepaNotConfiguredError()

        params = {
            "key": self.api_key,
            "domain": self.domain,
            "asin": ",".join(asins),
            "stats": self.stats_days,
            "history": 0,
            "offers": 0,
        }

        try:
            resp = await self._get_client().get(f"{self.base_url}/product", params=params)
        except httpx.TimeoutException as e:
            raise KeepaServiceError("Keepa API request timed out") from e
        except httpx.HTTPError as e:
            raise KeepaServiceError(f"Keepa transport error: {type(e).__name__}") from e

        sc = resp.status_code
        if sc == 429:
            raise KeepaServiceError("Keepa rate limit exceeded (429)", status_code=sc)
        if not 200 <= sc < 300:
            raise KeepaServiceError(f"Keepa API error: {sc} {resp.reason_phrase}", status_code=sc)

        try:
            data = resp.json()
        except ValueError as e:
            raise KeepaServiceError("Keepa API returned invalid JSON", status_code=sc) from e

        if not isinstance(data, dict):
            raise KeepaServiceError("Keepa API returned an unexpected payload", status_code=sc)

        error = data.get("error")
        if error:
            if isinstance(error, dict):
                message = f"{error.get('type', 'error')} - {error.get('message', '')}"
            else:
                message = str(error)
            raise KeepaServiceError(f"Keepa API error: {message}", status_code=sc)

        return data

    async def fetch_batch(self, asins: Sequence[str]) -> BatchFetchResult:
        """
        Look up a batch of ASINs.

        ASINs missing from the response simply have no record; that is not
        an error.

        Args:
            asins: ASINs to look up (duplicates are requested once)

        Returns:
            BatchFetchResult with decoded records, or success=False and the
            error message when the request failed
        """
        unique_asins = list(dict.fromkeys(asins))
        if not unique_asins:
            return BatchFetchResult(success=True)

        start = time.monotonic()
        try:
            data = await self._request(unique_asins)
        except KeepaServiceError as e:
            metrics.enrichment_batches_total.labels(status="error").inc()
            logger.warning(f"Keepa batch of {len(unique_asins)} ASINs failed: {e}")
            return BatchFetchResult.failure(str(e), status_code=e.status_code)
        finally:
            metrics.enrichment_batch_duration_seconds.observe(time.monotonic() - start)

        records: List[EnrichmentRecord] = []
        for raw in data.get("products") or []:
            if not isinstance(raw, dict) or not raw.get("asin"):
                continue
            records.append(parse_keepa_product(raw))

        metrics.enrichment_batches_total.labels(status="success").inc()
        logger.debug(
            f"Keepa returned {len(records)}/{len(unique_asins)} products "
            f"(tokens left: {data.get('tokensLeft')})"
        )

        return BatchFetchResult(
            success=True,
            records=records,
            status_code=200,
            tokens_left=data.get("tokensLeft"),
            refill_in_ms=data.get("refillIn"),
        )

    async def close(self):
        """Close the underlying HTTP client if this instance created it."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
        self._client = None

    async def __aenter__(self) -> "KeepaClient":
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()


# Global Keepa client instance
keepa_client = KeepaClient()
