"""HTTP surface: status mapping and callback acknowledgement."""
from unittest.mock import MagicMock, patch

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.exc import OperationalError

from wordledger.db.session import get_db
from wordledger.main import create_app
from wordledger.models.callback_record import CallbackRecord
from wordledger.models.payment import Payment
from wordledger.services.aggregator.client import CheckoutResult
from wordledger.services.callbacks.reconciler import CallbackReconciler
from wordledger.services.circuit_breaker import get_circuit_breaker
from wordledger.services.errors import AggregatorError, StoreUnavailable
from wordledger.services.payments.service import PaymentService


class FakeAggregator:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.calls = []

    def initiate_checkout(self, phone, amount):
        self.calls.append((phone, amount))
        if self.fail:
            raise AggregatorError("Payment initiation failed")
        return CheckoutResult(reference="REF1", checkout_request_id="ws_CO_1")

    def get_payment_url(self) -> str:
        return "https://pay.test/link"

    def close(self) -> None:
        pass


@pytest.fixture
def aggregator():
    return FakeAggregator()


@pytest.fixture
def client(engine, aggregator):
    app = create_app(engine=engine, aggregator=aggregator, configure_logs=False)
    with TestClient(app) as c:
        yield c


def _initiate(client, amount=2500, user_id="U"):
    return client.post(
        "/payments/initiate",
        json={"user_id": user_id, "phone": "0712345678", "amount": amount},
    )


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}
    assert client.get("/ready").json() == {
        "status": "ready",
        "checks": {"database": "ok", "redis": "skipped"},
        "aggregator": "ok",
    }


def test_ready_reports_open_aggregator_breaker(client):
    breaker = get_circuit_breaker("aggregator")
    breaker.open()
    try:
        resp = client.get("/ready")
    finally:
        breaker.close()
    assert resp.status_code == 200
    assert resp.json()["aggregator"] == "degraded"


def test_ready_is_503_when_store_is_down(client):
    broken = MagicMock()
    broken.execute.side_effect = OperationalError("SELECT 1", {}, Exception("connection refused"))
    client.app.dependency_overrides[get_db] = lambda: broken
    try:
        resp = client.get("/ready")
    finally:
        client.app.dependency_overrides.clear()
    assert resp.status_code == 503
    assert resp.json()["status"] == "not_ready"
    assert resp.json()["checks"] == {}


def test_plans(client):
    resp = client.get("/payments/plans")
    assert resp.status_code == 200
    assert [p["amount"] for p in resp.json()] == [1500, 2500, 4000]


def test_initiate_payment(client, aggregator):
    resp = _initiate(client)
    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "processing"
    assert body["reference"] == "REF1"
    assert body["words_granted"] == 60000
    assert body["payment_url"] == "https://pay.test/link"
    assert aggregator.calls[0][0] == "0712345678"


def test_initiate_rejects_non_tier_amount(client, aggregator):
    resp = _initiate(client, amount=2000)
    assert resp.status_code == 400
    assert resp.json()["error"] == "invalid_amount"
    assert resp.json()["allowed"] == [1500, 2500, 4000]
    assert aggregator.calls == []


def test_initiate_aggregator_failure_marks_failed(client, aggregator):
    aggregator.fail = True
    body = _initiate(client).json()
    assert body["status"] == "failed"
    assert body["error"] == "Payment initiation failed"
    payment = client.get(f"/payments/{body['payment_id']}").json()
    assert payment["status"] == "failed"
    assert payment["error_message"] == "Payment initiation failed"


def test_callback_completes_and_credits(client):
    payment_id = _initiate(client).json()["payment_id"]
    resp = client.post("/payments/callback", json={"reference": "REF1", "status": "success"})
    assert resp.status_code == 200
    assert resp.json()["matched"] is True
    assert resp.json()["payment_id"] == payment_id

    balance = client.get("/words/U/balance").json()
    assert balance == {"user_id": "U", "remaining": 60000, "purchased": 60000, "used": 0}

    # duplicate delivery
    client.post("/payments/callback", json={"reference": "REF1", "status": "success"})
    assert client.get("/words/U/balance").json()["remaining"] == 60000


def test_callback_form_encoded_and_query(client):
    _initiate(client)
    resp = client.post(
        "/payments/callback",
        data={"CheckoutRequestID": "ws_CO_1", "ResultCode": "0"},
    )
    assert resp.json()["matched"] is True

    resp = client.get("/payments/callback", params={"reference": "REF1", "status": "success"})
    assert resp.status_code == 200


def test_unmatched_callback_still_200(client):
    resp = client.post("/payments/callback", json={"reference": "NOPE", "status": "success"})
    assert resp.status_code == 200
    assert resp.json()["matched"] is False
    assert resp.json()["success"] is True


def test_callback_store_failure_is_503(client):
    with patch.object(CallbackReconciler, "handle_callback", side_effect=StoreUnavailable("Failed to process callback")):
        resp = client.post("/payments/callback", json={"reference": "REF1", "status": "success"})
    assert resp.status_code == 503
    assert resp.json()["error"] == "store_unavailable"


def test_use_words_insufficient_is_402(client):
    resp = client.post("/words/U/use", json={"words": 10})
    assert resp.status_code == 402
    assert resp.json() == {
        "error": "insufficient_balance",
        "message": "Insufficient word balance",
        "available": 0,
        "requested": 10,
    }


def test_use_words_after_purchase(client):
    _initiate(client, amount=1500)
    client.post("/payments/callback", json={"reference": "REF1", "status": "success"})
    resp = client.post("/words/U/use", json={"words": 1000})
    assert resp.json() == {"ok": True, "remaining": 29000}
    check = client.get("/words/U/check/30000").json()
    assert check["sufficient"] is False
    assert check["available"] == 29000


def test_use_words_rejects_non_positive(client):
    assert client.post("/words/U/use", json={"words": 0}).status_code == 422


def test_payment_lookups(client):
    payment_id = _initiate(client).json()["payment_id"]
    assert client.get("/payments/status/REF1").json()["id"] == payment_id
    assert [p["id"] for p in client.get("/payments/user/U").json()] == [payment_id]
    assert client.get("/payments/stats", params={"user_id": "U"}).json()["processing_count"] == 1


def test_unknown_payment_is_404(client):
    resp = client.get("/payments/does-not-exist")
    assert resp.status_code == 404
    assert resp.json()["error"] == "payment_not_found"
    assert client.get("/payments/status/NOPE").status_code == 404


def test_metrics_endpoint(client):
    resp = client.get("/metrics")
    assert resp.status_code == 200
    assert "payments_created_total" in resp.text


def test_callback_audit_row_survives_store_failure(client):
    _initiate(client)
    boom = OperationalError("UPDATE payments", {}, Exception("database is locked"))
    with patch.object(PaymentService, "mark_terminal", side_effect=boom):
        resp = client.post("/payments/callback", json={"reference": "REF1", "status": "success"})
    assert resp.status_code == 503

    db = client.app.state.session_factory()
    try:
        records = db.query(CallbackRecord).all()
        assert len(records) == 1
        assert records[0].reference == "REF1"
        assert records[0].processed is False
        assert db.query(Payment).one().status == "processing"
    finally:
        db.close()

    # aggregator retry after the store recovers
    resp = client.post("/payments/callback", json={"reference": "REF1", "status": "success"})
    assert resp.json()["matched"] is True
    assert client.get("/words/U/balance").json()["remaining"] == 60000


def test_payment_url(client):
    assert client.get("/payments/url").json() == {"url": "https://pay.test/link"}


def test_add_words(client):
    resp = client.post("/words/U/add", json={"words": 500})
    assert resp.status_code == 200
    assert resp.json() == {
        "message": "Added 500 words successfully",
        "balance": {"user_id": "U", "remaining": 500, "purchased": 500, "used": 0},
    }
    assert client.post("/words/U/add", json={"words": 0}).status_code == 422


def test_usage_stats(client):
    _initiate(client, amount=1500)
    client.post("/payments/callback", json={"reference": "REF1", "status": "success"})
    client.post("/words/U/use", json={"words": 7500})

    body = client.get("/words/U/stats").json()
    assert body["user_id"] == "U"
    assert body["balance"] == {"remaining": 22500, "purchased": 30000, "used": 7500, "usage_percentage": 25.0}
    assert body["payments"]["count"] == 1
    assert float(body["payments"]["total_spent"]) == 1500
    assert body["payments"]["total_purchased"] == 30000


def test_usage_stats_for_new_user(client):
    body = client.get("/words/nobody/stats").json()
    assert body["balance"]["usage_percentage"] == 0.0
    assert body["payments"]["count"] == 0
