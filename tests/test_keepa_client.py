"""Tests for the Keepa enrichment client."""

from decimal import Decimal

import httpx
import pytest

from bulkverify.ingest.keepa_client import (
    KeepaClient,
    PriceStability,
    classify_price_stability,
    keepa_price_to_decimal,
    parse_keepa_product,
)


def _stats_series(**values):
    """Keepa stats array (18 slots, -1 = no data) with the given indices set."""
    series = [-1] * 18
    for index, value in values.items():
        series[int(index.lstrip("i"))] = value
    return series


def _keepa_product(asin, price=1999, rank=45000, rating=45, reviews=1200, avg30=2000, avg90=1900):
    return {
        "asin": asin,
        "stats": {
            "current": _stats_series(i0=price, i3=rank, i16=rating, i17=reviews),
            "avg30": _stats_series(i0=avg30),
            "avg90": _stats_series(i0=avg90),
        },
    }


def _client(handler, api_key="test-key"):
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return KeepaClient(api_key=api_key, base_url="https://keepa.test", http_client=http_client)


def test_keepa_price_to_decimal():
    assert keepa_price_to_decimal(1999) == Decimal("19.99")
    assert keepa_price_to_decimal(0) == Decimal("0.00")
    assert keepa_price_to_decimal(-1) is None
    assert keepa_price_to_decimal(None) is None


def test_classify_price_stability():
    assert classify_price_stability(Decimal("20"), Decimal("19"), 0.15) == PriceStability.STABLE
    assert classify_price_stability(Decimal("10"), Decimal("20"), 0.15) == PriceStability.VOLATILE
    assert classify_price_stability(None, Decimal("20"), 0.15) == PriceStability.UNKNOWN
    assert classify_price_stability(Decimal("20"), Decimal("0"), 0.15) == PriceStability.UNKNOWN


def test_parse_keepa_product_from_stats():
    record = parse_keepa_product(_keepa_product("b00test123"), volatility_threshold=0.15)

    assert record.asin == "B00TEST123"
    assert record.amazon_price == Decimal("19.99")
    assert record.rating == 4.5
    assert record.review_count == 1200
    assert record.sales_rank == 45000
    assert record.is_prime is True
    assert record.avg_price_30d == Decimal("20.00")
    assert record.avg_price_90d == Decimal("19.00")
    assert record.price_stability == PriceStability.STABLE


def test_parse_keepa_product_csv_fallback():
    """Without stats the last point of each history series is used."""
    raw = {"asin": "B00TEST123", "csv": [[100, 1600, 200, 1500], None, None, [100, 8000]]}

    record = parse_keepa_product(raw)

    assert record.amazon_price == Decimal("15.00")
    assert record.sales_rank == 8000
    assert record.rating is None
    assert record.review_count is None
    assert record.price_stability == PriceStability.UNKNOWN


def test_parse_keepa_product_without_amazon_offer():
    record = parse_keepa_product(_keepa_product("B00TEST123", price=-1))

    assert record.amazon_price is None
    assert record.is_prime is False


@pytest.mark.asyncio
async def test_fetch_batch_success():
    """Test a batch request decodes every returned product."""
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["params"] = dict(request.url.params)
        body = {
            "products": [_keepa_product("B00TEST123"), _keepa_product("B00TEST456", rating=38)],
            "tokensLeft": 1198,
            "refillIn": 5000,
        }
        return httpx.Response(200, json=body)

    client = _client(handler)
    result = await client.fetch_batch(["B00TEST123", "B00TEST456", "B00TEST123"])

    assert result.success
    assert result.tokens_left == 1198
    assert result.refill_in_ms == 5000
    assert [r.asin for r in result.records] == ["B00TEST123", "B00TEST456"]
    assert result.records[1].rating == 3.8
    assert seen["path"] == "/product"
    assert seen["params"]["asin"] == "B00TEST123,B00TEST456"
    assert seen["params"]["key"] == "test-key"
    assert seen["params"]["stats"] == "90"


@pytest.mark.asyncio
async def test_fetch_batch_missing_asin_is_not_an_error():
    def handler(request):
        return httpx.Response(200, json={"products": [_keepa_product("B00TEST123")]})

    result = await _client(handler).fetch_batch(["B00TEST123", "B00TEST456"])

    assert result.success
    assert [r.asin for r in result.records] == ["B00TEST123"]


@pytest.mark.asyncio
async def test_fetch_batch_empty_makes_no_request():
    def handler(request):
        raise AssertionError("no request expected")

    result = await _client(handler).fetch_batch([])

    assert result.success
    assert result.records == []


@pytest.mark.asyncio
async def test_fetch_batch_http_error():
    def handler(request):
        return httpx.Response(500, text="Internal Server Error")

    result = await _client(handler).fetch_batch(["B00TEST123"])

    assert not result.success
    assert result.status_code == 500
    assert "500" in result.error
    assert result.records == []


@pytest.mark.asyncio
async def test_fetch_batch_rate_limited():
    def handler(request):
        return httpx.Response(429, json={"tokensLeft": -5})

    result = await _client(handler).fetch_batch(["B00TEST123"])

    assert not result.success
    assert result.status_code == 429
    assert "rate limit" in result.error


@pytest.mark.asyncio
async def test_fetch_batch_service_error_in_body():
    def handler(request):
        return httpx.Response(200, json={"error": {"type": "invalidKey", "message": "Invalid key"}})

    result = await _client(handler).fetch_batch(["B00TEST123"])

    assert not result.success
    assert "invalidKey" in result.error


@pytest.mark.asyncio
async def test_fetch_batch_invalid_json():
    def handler(request):
        return httpx.Response(200, content=b"<html>oops</html>")

    result = await _client(handler).fetch_batch(["B00TEST123"])

    assert not result.success
    assert "invalid JSON" in result.error


@pytest.mark.asyncio
async def test_fetch_batch_transport_error():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    result = await _client(handler).fetch_batch(["B00TEST123"])

    assert not result.success
    assert "ConnectError" in result.error


@pytest.mark.asyncio
async def test_fetch_batch_not_configured():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(200, json={"products": []})

    client = _client(handler, api_key="")
    result = await client.fetch_batch(["B00TEST123"])

    assert not client.is_configured()
    assert not result.success
    assert "not configured" in result.error
    assert calls == []
