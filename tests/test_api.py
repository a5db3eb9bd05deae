import asyncio
import json
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from apps.api import main
from apps.api.routers import transactions as transactions_router

from tests.factories import make_transaction


@pytest.fixture
def client(pipeline):
    main.app.state.pipeline = pipeline
    with TestClient(main.app) as test_client:
        yield test_client
    main.app.state.pipeline = None


@pytest.fixture
def headers(owner_id):
    return {"X-User-Id": str(owner_id)}


def _seed(pipeline, *txns):
    return asyncio.run(pipeline.transactions.add_many(list(txns)))


def test_missing_owner_is_unauthorized(client):
    response = client.get("/api/v1/reports/summary", params={"taxYear": 2024})
    assert response.status_code == 401


def test_classify_streams_ndjson(client, pipeline, headers, owner_id):
    [a, b] = _seed(pipeline, make_transaction(owner_id), make_transaction(owner_id, vendor="Office Depot"))

    response = client.post("/api/v1/transactions/classify",
                           json={"transactionIds": [str(a.id), str(b.id)]},
                           headers=headers)

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("application/x-ndjson")
    events = [json.loads(line) for line in response.text.splitlines() if line]
    assert [e["type"] for e in events].count("progress") == 2
    assert events[-1] == {"type": "done", "total": 2, "successful": 2, "cachedCount": 0}
    success = next(e for e in events if e["type"] == "success" and e["id"] == str(a.id))
    assert success["category"] == "Meals"
    assert success["isMeal"] is True


def test_classify_rejects_bad_ids_before_streaming(client, headers):
    response = client.post("/api/v1/transactions/classify",
                           json={"transactionIds": ["nope"]},
                           headers=headers)
    assert response.status_code == 400
    assert "Invalid transaction id" in response.json()["detail"]


def test_similar_and_auto_sort(client, pipeline, headers, owner_id):
    [a, b] = _seed(pipeline,
                   make_transaction(owner_id, vendor="AMAZON.COM*AB12"),
                   make_transaction(owner_id, vendor="Amazon.com*CD34"))

    similar = client.get("/api/v1/transactions/similar",
                         params={"vendor": "amazon", "taxYear": 2024, "excludeId": str(a.id)},
                         headers=headers)
    assert similar.status_code == 200
    assert [t["id"] for t in similar.json()] == [str(b.id)]

    sorted_response = client.post("/api/v1/transactions/auto-sort", json={
        "vendorNormalized": "amazon",
        "quickLabel": "Office supplies",
        "category": "Supplies",
        "taxYear": 2024,
    }, headers=headers)
    assert sorted_response.status_code == 200
    assert sorted_response.json()["updatedCount"] == 2

    again = client.get("/api/v1/transactions/similar", params={"vendor": "amazon", "taxYear": 2024}, headers=headers)
    assert again.json() == []


def test_similar_only_searches_pending(client, headers):
    response = client.get("/api/v1/transactions/similar",
                          params={"vendor": "amazon", "taxYear": 2024, "status": "completed"},
                          headers=headers)
    assert response.status_code == 400


def test_patch_marks_personal(client, pipeline, headers, owner_id):
    [txn] = _seed(pipeline, make_transaction(owner_id))
    response = client.patch(f"/api/v1/transactions/{txn.id}", json={"status": "personal"}, headers=headers)
    assert response.status_code == 200
    assert response.json()["status"] == "personal"
    assert Decimal(str(response.json()["deduction_percent"])) == 0
    assert Decimal(str(response.json()["effective_deduction_percent"])) == 0


def test_responses_show_halved_meal_percent(client, pipeline, headers, owner_id):
    [a, b] = _seed(pipeline,
                   make_transaction(owner_id, is_meal=True),
                   make_transaction(owner_id, vendor="Starbucks #99", is_meal=True))

    patched = client.patch(f"/api/v1/transactions/{a.id}", json={"notes": "client"}, headers=headers)
    assert Decimal(str(patched.json()["effective_deduction_percent"])) == 50
    assert Decimal(str(patched.json()["deduction_percent"])) == 100

    similar = client.get("/api/v1/transactions/similar",
                         params={"vendor": "starbucks", "taxYear": 2024, "excludeId": str(a.id)},
                         headers=headers)
    [row] = similar.json()
    assert row["id"] == str(b.id)
    assert Decimal(str(row["effective_deduction_percent"])) == 50


def test_patch_unknown_transaction_is_404(client, headers, other_owner_id, pipeline):
    [theirs] = _seed(pipeline, make_transaction(other_owner_id))
    response = client.patch(f"/api/v1/transactions/{theirs.id}", json={"notes": "x"}, headers=headers)
    assert response.status_code == 404


def test_import_then_summary(client, headers):
    imported = client.post("/api/v1/transactions/import", json={"rows": [
        {"date": "2024-02-03", "vendor": "STARBUCKS #4521", "amount": "-6.75"},
    ]}, headers=headers)
    assert imported.status_code == 201
    assert imported.json()["imported"] == 1

    summary = client.get("/api/v1/reports/summary", params={"taxYear": 2024, "quarter": 1}, headers=headers)
    assert summary.status_code == 200
    body = summary.json()
    assert body["quarter"] == 1
    assert body["grossIncome"] == 0
    assert "selfEmploymentTax" in body


def test_summary_validates_quarter(client, headers):
    response = client.get("/api/v1/reports/summary", params={"taxYear": 2024, "quarter": 7}, headers=headers)
    assert response.status_code == 422


def test_missing_wage_base_is_sanitized_500(client, headers):
    response = client.get("/api/v1/reports/summary", params={"taxYear": 2031}, headers=headers)
    assert response.status_code == 500
    assert "wage base" not in response.text
    assert response.json()["request_id"] == response.headers["x-request-id"]


def test_tax_year_settings_round_trip(client, headers):
    put = client.put("/api/v1/reports/tax-year-settings", json={"taxYear": 2024, "taxRate": 0.32}, headers=headers)
    assert put.status_code == 200
    get = client.get("/api/v1/reports/tax-year-settings", params={"taxYear": 2024}, headers=headers)
    assert Decimal(str(get.json()["taxRate"])) == Decimal("0.32")


def test_home_office_calculator_saves_once(client, headers):
    for _ in range(2):
        response = client.post("/api/v1/deductions/calculate/home-office",
                               json={"taxYear": 2024, "squareFeet": 200, "save": True},
                               headers=headers)
        assert response.status_code == 200

    listed = client.get("/api/v1/deductions", params={"taxYear": 2024}, headers=headers).json()
    assert len(listed) == 1
    assert Decimal(str(listed[0]["amount"])) == Decimal("1000")

    deleted = client.delete("/api/v1/deductions", params={"type": "home_office", "taxYear": 2024}, headers=headers)
    assert deleted.json() == {"deleted": 1}


def test_retry_is_queued(client, headers, monkeypatch, owner_id):
    calls = []

    def fake_queue(owner_id=None, limit=100):
        calls.append((owner_id, limit))
        return "task-123"

    monkeypatch.setattr(transactions_router, "queue_classification_retry", fake_queue)
    response = client.post("/api/v1/transactions/classify/retry", json={"limit": 50}, headers=headers)

    assert response.status_code == 202
    assert response.json() == {"taskId": "task-123", "status": "queued"}
    assert calls == [(str(owner_id), 50)]


def test_root_and_request_id(client):
    response = client.get("/", headers={"X-Request-Id": "abc123"})
    assert response.status_code == 200
    assert response.headers["x-request-id"] == "abc123"
