"""
CallbackReconciler: matches aggregator callbacks to payment intents.

Match order, first hit wins:
1. reference
2. checkout request id
3. phone + amount, most recent pending payment (best-effort: ambiguous when
   a user has two pending payments for the same amount)

Every callback is written to payment_callbacks for audit and that row is
committed before matching, so it survives a store failure later on. Audit
writes are non-fatal; payment and balance writes propagate as StoreUnavailable
and are left uncommitted for the caller.
An unmatched callback is a result, not an error.
"""
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from wordledger.models.callback_record import CallbackRecord
from wordledger.models.payment import STATUS_COMPLETED, STATUS_FAILED, Payment
from wordledger.services.errors import InvalidAmount, StoreUnavailable
from wordledger.services.payments.service import PaymentService
from wordledger.services.plans.catalog import to_decimal
from wordledger.utils.metrics import callbacks_received_total
from wordledger.utils.phone import normalize_phone

logger = logging.getLogger(__name__)

MATCH_REFERENCE = "reference"
MATCH_CHECKOUT = "checkout_request_id"
MATCH_PHONE_AMOUNT = "phone_amount"
MATCH_NONE = "none"

_CHECKOUT_KEYS = ("CheckoutRequestID", "checkoutRequestId", "checkout_request_id", "checkoutRequestID")
_PHONE_KEYS = ("phone", "phoneNumber", "phone_number", "PhoneNumber")
_MESSAGE_KEYS = ("message", "ResultDesc", "resultDesc", "error")


@dataclass(frozen=True)
class CallbackFields:
    reference: str | None
    checkout_request_id: str | None
    phone: str | None
    amount: Decimal | None
    outcome: str  # completed / failed
    message: str | None


@dataclass
class CallbackResult:
    matched: bool
    match: str
    payment: Payment | None = None
    applied: bool = False
    callback_id: str | None = None


def _first(sources: list[dict], keys: tuple[str, ...]) -> Any:
    for source in sources:
        for key in keys:
            value = source.get(key)
            if value not in (None, ""):
                return value
    return None


def _clean_str(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def derive_outcome(status: Any, result_code: Any = None) -> str:
    """Status "success" (any case) or ResultCode 0 -> completed; anything else -> failed."""
    if isinstance(status, str) and status.strip().lower() == "success":
        return STATUS_COMPLETED
    if status is None and result_code is not None and str(result_code).strip() == "0":
        return STATUS_COMPLETED
    return STATUS_FAILED


def extract_fields(payload: Any) -> CallbackFields:
    """Pull correlation ids and outcome from an untrusted payload of any shape."""
    if not isinstance(payload, dict):
        return CallbackFields(None, None, None, None, STATUS_FAILED, None)
    sources = [payload]
    nested = payload.get("data")
    if isinstance(nested, dict):
        sources.append(nested)

    phone = None
    raw_phone = _first(sources, _PHONE_KEYS)
    if raw_phone is not None:
        try:
            phone = normalize_phone(str(raw_phone))
        except ValueError:
            phone = None

    amount = None
    raw_amount = _first(sources, ("amount", "Amount"))
    if raw_amount is not None:
        try:
            amount = to_decimal(raw_amount)
        except InvalidAmount:
            amount = None

    return CallbackFields(
        reference=_clean_str(_first(sources, ("reference", "Reference"))),
        checkout_request_id=_clean_str(_first(sources, _CHECKOUT_KEYS)),
        phone=phone,
        amount=amount,
        outcome=derive_outcome(
            _first(sources, ("status", "Status")),
            _first(sources, ("ResultCode", "resultCode")),
        ),
        message=_clean_str(_first(sources, _MESSAGE_KEYS)),
    )


class CallbackReconciler:
    def __init__(self, db: Session, payments: PaymentService | None = None):
        self.db = db
        self.payments = payments or PaymentService(db)

    # ------------------------------------------------------------------
    # Audit (non-fatal)
    # ------------------------------------------------------------------

    def _record(self, payload: Any, fields: CallbackFields) -> CallbackRecord | None:
        """Write and commit the audit row before matching so it outlives a failed match."""
        try:
            with self.db.begin_nested():
                record = CallbackRecord(
                    payload=payload if isinstance(payload, dict) else {"raw": payload},
                    reference=fields.reference,
                    checkout_request_id=fields.checkout_request_id,
                    status=fields.outcome,
                    processed=False,
                )
                self.db.add(record)
        except SQLAlchemyError as e:
            logger.error(
                "callback_audit_failed",
                extra={"reference": fields.reference, "error": str(e)},
            )
            return None

        try:
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(
                "callback_audit_commit_failed",
                extra={"reference": fields.reference, "error": str(e)},
            )
            return None
        return record

    def _link(self, record: CallbackRecord | None, payment_id: str) -> None:
        if record is None:
            return
        try:
            with self.db.begin_nested():
                self.db.execute(
                    update(CallbackRecord)
                    .where(CallbackRecord.id == record.id, CallbackRecord.payment_id.is_(None))
                    .values(payment_id=payment_id, processed=True)
                    .execution_options(synchronize_session=False)
                )
        except SQLAlchemyError as e:
            logger.error(
                "callback_audit_link_failed",
                extra={"callback_id": record.id, "payment_id": payment_id, "error": str(e)},
            )

    # ------------------------------------------------------------------
    # Matching
    # ------------------------------------------------------------------

    def find_payment(self, fields: CallbackFields) -> tuple[Payment | None, str]:
        if fields.reference:
            payment = self.payments.get_by_reference(fields.reference)
            if payment is not None:
                return payment, MATCH_REFERENCE
        if fields.checkout_request_id:
            payment = self.payments.get_by_checkout_request_id(fields.checkout_request_id)
            if payment is not None:
                return payment, MATCH_CHECKOUT
        if fields.phone and fields.amount is not None:
            payment = self.payments.find_latest_pending(fields.phone, fields.amount)
            if payment is not None:
                return payment, MATCH_PHONE_AMOUNT
        return None, MATCH_NONE

    def handle_callback(self, payload: Any) -> CallbackResult:
        fields = extract_fields(payload)
        record = self._record(payload, fields)
        callback_id = record.id if record is not None else None

        try:
            payment, match = self.find_payment(fields)
            if payment is None:
                callbacks_received_total.labels(match=MATCH_NONE).inc()
                logger.warning(
                    "callback_unmatched",
                    extra={
                        "callback_id": callback_id,
                        "reference": fields.reference,
                        "checkout_request_id": fields.checkout_request_id,
                        "amount": str(fields.amount) if fields.amount is not None else None,
                    },
                )
                return CallbackResult(matched=False, match=MATCH_NONE, callback_id=callback_id)

            transition = self.payments.mark_terminal(
                payment.id,
                fields.outcome,
                error_message=fields.message,
                reference=fields.reference,
                checkout_request_id=fields.checkout_request_id,
            )
        except SQLAlchemyError as e:
            logger.exception(
                "callback_store_error",
                extra={"callback_id": callback_id, "reference": fields.reference},
            )
            raise StoreUnavailable("Failed to process callback") from e

        self._link(record, transition.payment.id)
        callbacks_received_total.labels(match=match).inc()
        logger.info(
            "callback_matched",
            extra={
                "callback_id": callback_id,
                "payment_id": transition.payment.id,
                "match": match,
                "status": transition.payment.status,
            },
        )
        return CallbackResult(
            matched=True,
            match=match,
            payment=transition.payment,
            applied=transition.applied,
            callback_id=callback_id,
        )
