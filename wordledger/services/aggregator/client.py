"""
Lipia Online client (M-Pesa STK push aggregator) using httpx sync client.
The ledger only stores what comes back: reference and CheckoutRequestID.
"""
import logging
import time
from dataclasses import dataclass
from decimal import Decimal

import httpx
import pybreaker

from wordledger.core.config import settings
from wordledger.services.circuit_breaker import get_circuit_breaker
from wordledger.services.errors import AggregatorError
from wordledger.utils.metrics import (
    aggregator_request_duration_seconds,
    aggregator_requests_total,
)
from wordledger.utils.phone import normalize_phone


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CheckoutResult:
    reference: str | None
    checkout_request_id: str | None


class LipiaClient:
    """
    Sync Lipia client. Transport errors and 5xx responses count towards the
    "aggregator" circuit breaker; 4xx responses do not.
    """

    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        timeout: float | None = None,
        transport: httpx.BaseTransport | None = None,
        breaker: pybreaker.CircuitBreaker | None = None,
    ) -> None:
        self._base_url = (base_url or settings.lipia_api_base).rstrip("/")
        self._api_key = api_key if api_key is not None else settings.lipia_api_key
        self._timeout = timeout or settings.lipia_timeout
        self._transport = transport
        self._breaker = breaker or get_circuit_breaker("aggregator")
        self._client: httpx.Client | None = None

    @property
    def client(self) -> httpx.Client:
        """Lazy initialization of httpx client."""
        if self._client is None:
            headers = {"Accept": "application/json"}
            if self._api_key:
                headers["Authorization"] = f"Bearer {self._api_key}"
            self._client = httpx.Client(
                base_url=self._base_url,
                timeout=self._timeout,
                headers=headers,
                transport=self._transport,
            )
        return self._client

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None

    def _post(self, path: str, body: dict) -> httpx.Response:
        resp = self.client.post(path, json=body)
        if resp.status_code >= 500:
            resp.raise_for_status()
        return resp

    def initiate_checkout(self, phone: str, amount) -> CheckoutResult:
        """Start an STK push. Raises AggregatorError when no correlation id comes back."""
        formatted_phone = normalize_phone(phone)
        amount_str = str(int(Decimal(str(amount))))
        start = time.time()
        try:
            resp = self._breaker.call(
                self._post,
                "/request/stk",
                {"phone": formatted_phone, "amount": amount_str},
            )
        except pybreaker.CircuitBreakerError:
            aggregator_requests_total.labels(status="circuit_open").inc()
            logger.warning("aggregator_circuit_open")
            raise AggregatorError("Payment provider temporarily unavailable") from None
        except httpx.HTTPError as e:
            aggregator_requests_total.labels(status="error").inc()
            aggregator_request_duration_seconds.observe(time.time() - start)
            logger.error("aggregator_request_failed", extra={"error": str(e)})
            raise AggregatorError("Payment initiation failed", {"reason": str(e)}) from e

        aggregator_request_duration_seconds.observe(time.time() - start)
        try:
            body = resp.json()
        except ValueError:
            body = {}

        if resp.status_code >= 400:
            aggregator_requests_total.labels(status="rejected").inc()
            message = body.get("message") if isinstance(body, dict) else None
            logger.warning(
                "aggregator_rejected",
                extra={"status_code": resp.status_code, "error": message},
            )
            raise AggregatorError(message or "Payment initiation failed", {"status_code": resp.status_code})

        data = body.get("data") if isinstance(body, dict) else None
        if not isinstance(data, dict):
            data = body if isinstance(body, dict) else {}
        reference = data.get("reference")
        checkout_request_id = data.get("CheckoutRequestID") or data.get("checkoutRequestId")
        if not reference and not checkout_request_id:
            aggregator_requests_total.labels(status="invalid").inc()
            logger.warning("aggregator_missing_reference", extra={"error": str(body)[:500]})
            message = body.get("message") if isinstance(body, dict) else None
            raise AggregatorError(message or "Payment initiation failed")

        aggregator_requests_total.labels(status="success").inc()
        logger.info(
            "aggregator_checkout_started",
            extra={"reference": reference, "checkout_request_id": checkout_request_id},
        )
        return CheckoutResult(reference=reference, checkout_request_id=checkout_request_id)

    def get_payment_url(self) -> str:
        return settings.lipia_payment_url
