"""
PaymentService: state machine for M-Pesa payment intents.

Responsibilities:
- Creating pending payments for catalog tiers
- Attaching aggregator correlation ids (pending -> processing)
- The single, idempotent path to completed/failed (credits the balance once)
- Expiry sweep and reporting queries
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from sqlalchemy import case, func, update
from sqlalchemy.orm import Session

from wordledger.models.payment import (
    STATUS_CANCELLED,
    STATUS_COMPLETED,
    STATUS_FAILED,
    STATUS_PENDING,
    STATUS_PROCESSING,
    TERMINAL_STATUSES,
    Payment,
)
from wordledger.services.balance.service import BalanceService
from wordledger.services.errors import InvalidPhone, PaymentNotFound
from wordledger.services.plans.catalog import require_tier, to_decimal
from wordledger.utils.metrics import payments_created_total, payments_terminal_total
from wordledger.utils.phone import normalize_phone

logger = logging.getLogger(__name__)

DEFAULT_FAILURE_MESSAGE = "Payment failed"


@dataclass
class TerminalTransition:
    payment: Payment
    applied: bool  # False when the payment was already completed/failed


class PaymentService:
    def __init__(self, db: Session, balance: BalanceService | None = None):
        self.db = db
        self.balance = balance or BalanceService(db)

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def create_payment(self, user_id: str, phone: str, amount) -> Payment:
        """Insert a pending payment. Raises InvalidAmount for non-tier amounts."""
        plan = require_tier(amount)
        try:
            phone = normalize_phone(phone)
        except ValueError:
            raise InvalidPhone(phone) from None
        payment = Payment(
            user_id=user_id,
            phone=phone,
            amount=to_decimal(plan.amount),
            words_granted=plan.words,
            status=STATUS_PENDING,
        )
        self.db.add(payment)
        self.db.flush()
        payments_created_total.labels(plan=plan.name).inc()
        logger.info(
            "payment_created",
            extra={
                "payment_id": payment.id,
                "user_id": user_id,
                "amount": plan.amount,
                "words": plan.words,
                "plan": plan.name,
            },
        )
        return payment

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def find_payment(self, payment_id: str) -> Payment | None:
        return self.db.query(Payment).filter(Payment.id == payment_id).one_or_none()

    def get_payment(self, payment_id: str) -> Payment:
        payment = self.find_payment(payment_id)
        if payment is None:
            raise PaymentNotFound(payment_id)
        return payment

    def get_by_reference(self, reference: str) -> Payment | None:
        return (
            self.db.query(Payment)
            .filter(Payment.reference == reference)
            .order_by(Payment.created_at.desc())
            .first()
        )

    def get_by_checkout_request_id(self, checkout_request_id: str) -> Payment | None:
        return (
            self.db.query(Payment)
            .filter(Payment.checkout_request_id == checkout_request_id)
            .order_by(Payment.created_at.desc())
            .first()
        )

    def find_latest_pending(self, phone: str, amount) -> Payment | None:
        """Most recently created pending payment for phone+amount (best-effort match)."""
        return (
            self.db.query(Payment)
            .filter(
                Payment.phone == normalize_phone(phone),
                Payment.amount == to_decimal(amount),
                Payment.status == STATUS_PENDING,
            )
            .order_by(Payment.created_at.desc())
            .first()
        )

    def resolve(self, key: str) -> Payment | None:
        """Payment by id, then reference, then checkout request id."""
        return (
            self.find_payment(key)
            or self.get_by_reference(key)
            or self.get_by_checkout_request_id(key)
        )

    def list_for_user(self, user_id: str, limit: int | None = None, offset: int = 0) -> list[Payment]:
        query = (
            self.db.query(Payment)
            .filter(Payment.user_id == user_id)
            .order_by(Payment.created_at.desc())
            .offset(offset)
        )
        if limit is not None:
            query = query.limit(limit)
        return query.all()

    def pending_older_than(self, minutes: int) -> list[Payment]:
        cutoff = datetime.now(timezone.utc) - timedelta(minutes=minutes)
        return (
            self.db.query(Payment)
            .filter(Payment.status == STATUS_PENDING, Payment.created_at < cutoff)
            .order_by(Payment.created_at)
            .all()
        )

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def attach_provider_reference(
        self,
        payment_id: str,
        reference: str | None,
        checkout_request_id: str | None,
    ) -> Payment:
        """pending -> processing with correlation ids. No-op once past pending."""
        payment = self.get_payment(payment_id)
        result = self.db.execute(
            update(Payment)
            .where(Payment.id == payment.id, Payment.status == STATUS_PENDING)
            .values(
                reference=reference,
                checkout_request_id=checkout_request_id,
                status=STATUS_PROCESSING,
                updated_at=datetime.now(timezone.utc),
            )
            .execution_options(synchronize_session=False)
        )
        self.db.refresh(payment)
        if result.rowcount == 0:
            logger.warning(
                "payment_reference_ignored",
                extra={"payment_id": payment.id, "status": payment.status, "reference": reference},
            )
            return payment
        logger.info(
            "payment_processing",
            extra={
                "payment_id": payment.id,
                "reference": reference,
                "checkout_request_id": checkout_request_id,
            },
        )
        return payment

    def mark_terminal(
        self,
        key: str,
        outcome: str,
        error_message: str | None = None,
        reference: str | None = None,
        checkout_request_id: str | None = None,
    ) -> TerminalTransition:
        """
        The only way into completed/failed. Idempotent: a payment that is
        already terminal is returned untouched with applied=False, so a
        duplicate callback never credits twice. On an applied completion the
        balance is credited in the same transaction.

        key may be a payment id, reference or checkout request id.
        reference/checkout_request_id fill the columns only where still null.
        """
        if outcome not in TERMINAL_STATUSES:
            raise ValueError(f"outcome must be one of {TERMINAL_STATUSES}, got {outcome!r}")
        payment = self.resolve(key)
        if payment is None:
            raise PaymentNotFound(key)

        now = datetime.now(timezone.utc)
        values = {"status": outcome, "updated_at": now}
        if outcome == STATUS_COMPLETED:
            values["payment_date"] = now
            values["error_message"] = None
        else:
            values["error_message"] = error_message or DEFAULT_FAILURE_MESSAGE
        if reference:
            values["reference"] = func.coalesce(Payment.reference, reference)
        if checkout_request_id:
            values["checkout_request_id"] = func.coalesce(Payment.checkout_request_id, checkout_request_id)

        result = self.db.execute(
            update(Payment)
            .where(Payment.id == payment.id, Payment.status.notin_(TERMINAL_STATUSES))
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        self.db.refresh(payment)

        if result.rowcount == 0:
            logger.info(
                "payment_already_terminal",
                extra={"payment_id": payment.id, "status": payment.status},
            )
            return TerminalTransition(payment=payment, applied=False)

        if outcome == STATUS_COMPLETED:
            self.balance.credit(payment.user_id, payment.words_granted)

        payments_terminal_total.labels(status=outcome).inc()
        logger.info(
            "payment_terminal",
            extra={
                "payment_id": payment.id,
                "user_id": payment.user_id,
                "status": outcome,
                "words": payment.words_granted if outcome == STATUS_COMPLETED else 0,
                "error": payment.error_message,
            },
        )
        return TerminalTransition(payment=payment, applied=True)

    def expire_stale_pending(self, minutes: int) -> int:
        """Cancel pending payments that never got a reference within `minutes`."""
        cutoff = datetime.now(timezone.utc) - timedelta(minutes=minutes)
        result = self.db.execute(
            update(Payment)
            .where(Payment.status == STATUS_PENDING, Payment.created_at < cutoff)
            .values(status=STATUS_CANCELLED, updated_at=datetime.now(timezone.utc))
            .execution_options(synchronize_session=False)
        )
        self.db.flush()
        count = result.rowcount or 0
        if count:
            payments_terminal_total.labels(status=STATUS_CANCELLED).inc(count)
            logger.info("pending_payments_expired", extra={"count": count})
        return count

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    def stats(
        self,
        user_id: str | None = None,
        from_date: datetime | None = None,
        to_date: datetime | None = None,
    ) -> dict:
        def count_status(status: str):
            return func.coalesce(func.sum(case((Payment.status == status, 1), else_=0)), 0)

        query = self.db.query(
            func.count(Payment.id),
            count_status(STATUS_COMPLETED),
            count_status(STATUS_FAILED),
            count_status(STATUS_PENDING),
            count_status(STATUS_PROCESSING),
            count_status(STATUS_CANCELLED),
            func.coalesce(
                func.sum(case((Payment.status == STATUS_COMPLETED, Payment.amount), else_=0)), 0
            ),
            func.coalesce(
                func.sum(case((Payment.status == STATUS_COMPLETED, Payment.words_granted), else_=0)), 0
            ),
        )
        filters = []
        if user_id:
            filters.append(Payment.user_id == user_id)
        if from_date:
            filters.append(Payment.created_at >= from_date)
        if to_date:
            filters.append(Payment.created_at <= to_date)
        if filters:
            query = query.filter(*filters)
        row = query.one()
        return {
            "total_count": int(row[0]),
            "completed_count": int(row[1]),
            "failed_count": int(row[2]),
            "pending_count": int(row[3]),
            "processing_count": int(row[4]),
            "cancelled_count": int(row[5]),
            "total_amount": to_decimal(row[6]),
            "total_words": int(row[7]),
        }
