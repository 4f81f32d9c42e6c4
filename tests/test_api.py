"""Tests for the verification HTTP API."""

import csv
import io
import json

import pytest
from fastapi.testclient import TestClient

from bulkverify.api.deps import get_enrichment_client, get_pacer, get_rule_set
from bulkverify.ingest.keepa_client import KeepaClient
from bulkverify.ingest.pacing import BatchPacer
from bulkverify.main import app
from bulkverify.notify.formatters import CSV_HEADERS


SHEET = {
    "headers": ["ASIN", "Title", "Price"],
    "rows": [
        {"ASIN": "B00TEST123", "Title": "Silicone Spatula", "Price": "$12.50"},
        {"ASIN": "B00TEST456", "Title": "Bamboo Ladle", "Price": "$2.00"},
        {"ASIN": "", "Title": "Blank row", "Price": ""},
    ],
    "existing_asins": ["b00test123"],
    "file_name": "research.csv",
}


@pytest.fixture
def client(lenient_rules):
    """Create test client with an unconfigured Keepa client and no pacing."""

    async def get_test_enrichment_client():
        return KeepaClient(api_key="")

    async def get_test_rule_set():
        return lenient_rules

    async def get_test_pacer():
        return BatchPacer()

    app.dependency_overrides[get_enrichment_client] = get_test_enrichment_client
    app.dependency_overrides[get_rule_set] = get_test_rule_set
    app.dependency_overrides[get_pacer] = get_test_pacer

    yield TestClient(app)

    app.dependency_overrides.clear()


def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_detect_columns(client):
    response = client.post("/api/verify/columns", json={"headers": ["SKU", "Product Name", "Cost"]})

    assert response.status_code == 200
    data = response.json()
    assert data["mapping"]["asin"] == "SKU"
    assert data["mapping"]["sku"] is None
    assert {s["field"]: s["confidence"] for s in data["suggestions"]} == {
        "asin": "medium",
        "title": "medium",
        "price": "medium",
    }


def test_run_verification(client):
    response = client.post("/api/verify", json=SHEET)

    assert response.status_code == 200
    data = response.json()
    assert data["job"]["status"] == "completed"
    assert data["job"]["file_name"] == "research.csv"
    assert data["dropped_rows"] == [{"row_index": 3, "reason": "Missing ASIN"}]
    assert data["summary"]["total"] == 2
    assert data["summary"]["existing"] == 1

    first, second = data["results"]
    assert first["status"] == "warning"
    assert first["warning_reasons"] == ["Already in catalog"]
    assert second["status"] == "fail"
    assert second["fail_reasons"] == ["Price $2.00 below min $5.00"]


def test_run_verification_without_identifier_column(client):
    response = client.post(
        "/api/verify",
        json={"headers": ["Title"], "rows": [{"Title": "Spatula"}]},
    )

    assert response.status_code == 422
    assert response.json()["detail"] == "No ASIN column mapped"


def test_run_verification_with_mapping_override(client):
    response = client.post(
        "/api/verify",
        json={
            "headers": ["Item Code", "Cost"],
            "rows": [{"Item Code": "B00TEST123", "Cost": "9.99"}],
            "mapping": {"asin": "Item Code"},
        },
    )

    assert response.status_code == 200
    assert response.json()["results"][0]["status"] == "pass"


def test_run_verification_rejects_unknown_mapping_field(client):
    response = client.post("/api/verify", json={**SHEET, "mapping": {"colour": "Color"}})

    assert response.status_code == 422


def test_run_verification_with_rule_overrides(client):
    response = client.post("/api/verify", json={**SHEET, "rules": {"min_price": 1}})

    assert response.status_code == 200
    assert response.json()["results"][1]["status"] == "pass"


def test_run_verification_rejects_invalid_rules(client):
    response = client.post("/api/verify", json={**SHEET, "rules": {"min_price": 90}})

    assert response.status_code == 422
    assert "min_price must be <= max_price" in response.json()["detail"]


def test_get_job(client):
    job_id = client.post("/api/verify", json=SHEET).json()["job"]["id"]

    response = client.get(f"/api/verify/jobs/{job_id}")

    assert response.status_code == 200
    assert response.json()["summary"]["failed"] == 1


def test_get_unknown_job(client):
    assert client.get("/api/verify/jobs/missing").status_code == 404


def test_export_csv(client):
    job_id = client.post("/api/verify", json=SHEET).json()["job"]["id"]

    response = client.post("/api/verify/export?format=csv", json={"job_id": job_id})

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/csv")
    assert f"verification-{job_id}.csv" in response.headers["content-disposition"]
    rows = list(csv.reader(io.StringIO(response.text)))
    assert rows[0] == CSV_HEADERS
    assert [row[1] for row in rows[1:]] == ["B00TEST123", "B00TEST456"]


def test_export_json_filtered_by_status(client):
    job_id = client.post("/api/verify", json=SHEET).json()["job"]["id"]

    response = client.post(
        "/api/verify/export?format=json",
        json={"job_id": job_id, "status": "fail"},
    )

    assert response.status_code == 200
    data = json.loads(response.text)
    assert [item["asin"] for item in data] == ["B00TEST456"]


def test_export_rejects_unknown_status(client):
    job_id = client.post("/api/verify", json=SHEET).json()["job"]["id"]

    response = client.post("/api/verify/export", json={"job_id": job_id, "status": "maybe"})

    assert response.status_code == 422


def test_export_unknown_job(client):
    response = client.post("/api/verify/export", json={"job_id": "missing"})

    assert response.status_code == 404


def test_estimate(client):
    response = client.post("/api/verify/estimate", json={"product_count": 1000})

    assert response.status_code == 200
    data = response.json()
    assert data["keepa_tokens"] == 1000
    assert data["deep_enrichment_count"] == 400
    assert data["savings_percent"] == 60


def test_estimate_validates_input(client):
    assert client.post("/api/verify/estimate", json={"product_count": -5}).status_code == 422
    assert (
        client.post(
            "/api/verify/estimate",
            json={"product_count": 10, "estimated_pass_rate": 2},
        ).status_code
        == 422
    )


def test_run_verification_accepts_numeric_string_sales_rank(client):
    response = client.post("/api/verify", json={**SHEET, "rules": {"max_sales_rank": "50000"}})

    assert response.status_code == 200


def test_run_verification_rejects_non_numeric_sales_rank(client):
    response = client.post("/api/verify", json={**SHEET, "rules": {"max_sales_rank": "lots"}})

    assert response.status_code == 422
    assert response.json()["detail"].startswith("Invalid rules")
