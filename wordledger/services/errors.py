"""
Ledger error taxonomy. Each error carries a stable code and the HTTP status
the API layer maps it to.
"""
from typing import Any


class LedgerError(Exception):
    code = "ledger_error"
    http_status = 500

    def __init__(self, message: str, detail: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.detail = detail or {}

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.code, "message": self.message, **self.detail}


class InvalidAmount(LedgerError):
    """Purchase amount is not one of the plan tiers."""
    code = "invalid_amount"
    http_status = 400

    def __init__(self, amount: Any, allowed: list[int] | None = None):
        super().__init__(
            f"Unsupported payment amount: {amount}",
            {"amount": str(amount), "allowed": allowed or []},
        )
        self.amount = amount


class InsufficientBalance(LedgerError):
    code = "insufficient_balance"
    http_status = 402

    def __init__(self, available: int, requested: int):
        super().__init__(
            "Insufficient word balance",
            {"available": available, "requested": requested},
        )
        self.available = available
        self.requested = requested


class PaymentNotFound(LedgerError):
    code = "payment_not_found"
    http_status = 404

    def __init__(self, key: str):
        super().__init__(f"Payment not found: {key}", {"key": key})
        self.key = key


class StoreUnavailable(LedgerError):
    """Transient database failure; the caller may retry."""
    code = "store_unavailable"
    http_status = 503


class AggregatorError(LedgerError):
    """Checkout could not be started with the payment aggregator."""
    code = "aggregator_error"
    http_status = 502


class InvalidPhone(LedgerError):
    code = "invalid_phone"
    http_status = 400

    def __init__(self, phone: str):
        super().__init__(f"Invalid phone number: {phone}", {"phone": phone})
