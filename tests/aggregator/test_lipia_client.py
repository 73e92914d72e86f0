import json

import httpx
import pybreaker
import pytest

from wordledger.services.aggregator.client import LipiaClient
from wordledger.services.errors import AggregatorError


def _client(handler, **kwargs) -> LipiaClient:
    return LipiaClient(
        base_url="https://lipia.test/api",
        api_key=kwargs.pop("api_key", None),
        timeout=5,
        transport=httpx.MockTransport(handler),
        breaker=kwargs.pop("breaker", None) or pybreaker.CircuitBreaker(fail_max=5, reset_timeout=30),
    )


def test_initiate_checkout_success():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["body"] = json.loads(request.content)
        seen["auth"] = request.headers.get("Authorization")
        return httpx.Response(
            200,
            json={"message": "ok", "data": {"reference": "REF1", "CheckoutRequestID": "ws_CO_1"}},
        )

    result = _client(handler, api_key="secret").initiate_checkout("+254 712 345 678", "2500.00")
    assert result.reference == "REF1"
    assert result.checkout_request_id == "ws_CO_1"
    assert seen["path"] == "/api/request/stk"
    assert seen["body"] == {"phone": "0712345678", "amount": "2500"}
    assert seen["auth"] == "Bearer secret"


def test_no_auth_header_without_key():
    def handler(request: httpx.Request) -> httpx.Response:
        assert "Authorization" not in request.headers
        return httpx.Response(200, json={"data": {"reference": "R"}})

    assert _client(handler).initiate_checkout("0712345678", 1500).reference == "R"


def test_rejection_is_aggregator_error():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(400, json={"message": "Invalid phone number"})

    with pytest.raises(AggregatorError) as exc_info:
        _client(handler).initiate_checkout("0712345678", 1500)
    assert exc_info.value.message == "Invalid phone number"
    assert exc_info.value.detail == {"status_code": 400}


def test_missing_correlation_ids():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"message": "queued", "data": {}})

    with pytest.raises(AggregatorError):
        _client(handler).initiate_checkout("0712345678", 1500)


def test_server_error_counts_towards_breaker():
    breaker = pybreaker.CircuitBreaker(fail_max=2, reset_timeout=60)

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503, text="unavailable")

    client = _client(handler, breaker=breaker)
    for _ in range(2):
        with pytest.raises(AggregatorError):
            client.initiate_checkout("0712345678", 1500)
    assert breaker.current_state == pybreaker.STATE_OPEN

    with pytest.raises(AggregatorError) as exc_info:
        client.initiate_checkout("0712345678", 1500)
    assert exc_info.value.message == "Payment provider temporarily unavailable"


def test_client_error_does_not_trip_breaker():
    breaker = pybreaker.CircuitBreaker(fail_max=1, reset_timeout=60)

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(422, json={"message": "bad amount"})

    client = _client(handler, breaker=breaker)
    with pytest.raises(AggregatorError):
        client.initiate_checkout("0712345678", 1500)
    assert breaker.current_state == pybreaker.STATE_CLOSED


def test_transport_error():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(AggregatorError) as exc_info:
        _client(handler).initiate_checkout("0712345678", 1500)
    assert "connection refused" in exc_info.value.detail["reason"]


def test_close_is_idempotent():
    client = _client(lambda request: httpx.Response(200, json={}))
    _ = client.client
    client.close()
    client.close()
