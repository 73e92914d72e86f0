import logging
from dataclasses import dataclass

from sqlalchemy.orm import Session

from wordledger.models.payment import STATUS_FAILED
from wordledger.services.aggregator.client import LipiaClient
from wordledger.services.balance.service import BalanceService
from wordledger.services.errors import AggregatorError, LedgerError
from wordledger.services.payments.service import PaymentService

logger = logging.getLogger(__name__)


@dataclass
class PurchaseResult:
    payment_id: str
    status: str
    words_granted: int
    reference: str | None = None
    checkout_request_id: str | None = None
    error: str | None = None


class PurchaseService:
    """
    Caller-facing operations: purchase initiation and word consumption.
    Commits at the operation boundary; the pending payment is committed
    before the aggregator is called so a callback can never beat the row.
    """

    def __init__(self, db: Session, aggregator: LipiaClient | None = None):
        self.db = db
        self.balance = BalanceService(db)
        self.payments = PaymentService(db, balance=self.balance)
        self._aggregator = aggregator

    @property
    def aggregator(self) -> LipiaClient:
        if self._aggregator is None:
            self._aggregator = LipiaClient()
        return self._aggregator

    def initiate_purchase(self, user_id: str, phone: str, amount) -> PurchaseResult:
        payment = self.payments.create_payment(user_id, phone, amount)
        self.db.commit()

        try:
            checkout = self.aggregator.initiate_checkout(payment.phone, payment.amount)
        except AggregatorError as e:
            transition = self.payments.mark_terminal(payment.id, STATUS_FAILED, error_message=e.message)
            self.db.commit()
            logger.warning(
                "purchase_checkout_failed",
                extra={"payment_id": payment.id, "user_id": user_id, "error": e.message},
            )
            return PurchaseResult(
                payment_id=payment.id,
                status=transition.payment.status,
                words_granted=payment.words_granted,
                error=e.message,
            )

        payment = self.payments.attach_provider_reference(
            payment.id, checkout.reference, checkout.checkout_request_id
        )
        self.db.commit()
        return PurchaseResult(
            payment_id=payment.id,
            status=payment.status,
            words_granted=payment.words_granted,
            reference=payment.reference,
            checkout_request_id=payment.checkout_request_id,
        )

    def consume_words(self, user_id: str, words: int) -> dict:
        """Raises InsufficientBalance; the balance is left untouched in that case."""
        try:
            balance = self.balance.debit(user_id, words)
        except LedgerError:
            self.db.rollback()
            raise
        self.db.commit()
        return {"ok": True, "remaining": balance.remaining_words}

    def add_words(self, user_id: str, words: int) -> dict:
        """Manual credit outside the payment flow (support and testing)."""
        if words <= 0:
            raise ValueError("words must be positive")
        self.balance.credit(user_id, words)
        self.db.commit()
        logger.info("words_added_manually", extra={"user_id": user_id, "words": words})
        return self.balance.get_balance(user_id)

    def usage_stats(self, user_id: str) -> dict:
        balance = self.balance.get_balance(user_id)
        self.db.commit()
        payments = self.payments.stats(user_id=user_id)
        usage = 0.0
        if balance["purchased"] > 0:
            usage = round(balance["used"] / balance["purchased"] * 100, 2)
        return {
            "balance": {**balance, "usage_percentage": usage},
            "payments": {
                "count": payments["completed_count"],
                "total_spent": payments["total_amount"],
                "total_purchased": payments["total_words"],
            },
        }
