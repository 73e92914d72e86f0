import logging
from datetime import datetime, timezone

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from wordledger.models.user_word_balance import UserWordBalance
from wordledger.services.errors import InsufficientBalance
from wordledger.utils.metrics import (
    balance_rejected_total,
    words_credited_total,
    words_debited_total,
)

logger = logging.getLogger(__name__)


class BalanceService:
    """
    Per-user word balance. Every mutation is one UPDATE that moves
    remaining_words together with its purchased/used counter.
    Callers own the transaction (flush only, no commit).
    """

    def __init__(self, db: Session):
        self.db = db

    def _get(self, user_id: str, fresh: bool = False) -> UserWordBalance | None:
        query = self.db.query(UserWordBalance).filter(UserWordBalance.user_id == user_id)
        if fresh:
            query = query.populate_existing()
        return query.one_or_none()

    def get_or_create(self, user_id: str) -> UserWordBalance:
        balance = self._get(user_id)
        if balance is not None:
            return balance
        try:
            with self.db.begin_nested():
                balance = UserWordBalance(
                    user_id=user_id,
                    remaining_words=0,
                    total_words_purchased=0,
                    total_words_used=0,
                )
                self.db.add(balance)
        except IntegrityError:
            # Another worker created the row first
            logger.info("balance_create_race", extra={"user_id": user_id})
            balance = self._get(user_id, fresh=True)
        return balance

    def credit(self, user_id: str, words: int) -> UserWordBalance:
        if words < 0:
            raise ValueError("words must be non-negative")
        self.get_or_create(user_id)
        self.db.execute(
            update(UserWordBalance)
            .where(UserWordBalance.user_id == user_id)
            .values(
                remaining_words=UserWordBalance.remaining_words + words,
                total_words_purchased=UserWordBalance.total_words_purchased + words,
                updated_at=datetime.now(timezone.utc),
            )
            .execution_options(synchronize_session=False)
        )
        balance = self._get(user_id, fresh=True)
        words_credited_total.inc(words)
        logger.info(
            "balance_credited",
            extra={"user_id": user_id, "words": words, "available": balance.remaining_words},
        )
        return balance

    def debit(self, user_id: str, words: int) -> UserWordBalance:
        """Atomically deduct words. Raises InsufficientBalance, never goes below 0."""
        if words <= 0:
            raise ValueError("words must be positive")
        self.get_or_create(user_id)
        result = self.db.execute(
            update(UserWordBalance)
            .where(
                UserWordBalance.user_id == user_id,
                UserWordBalance.remaining_words >= words,
            )
            .values(
                remaining_words=UserWordBalance.remaining_words - words,
                total_words_used=UserWordBalance.total_words_used + words,
                updated_at=datetime.now(timezone.utc),
            )
            .execution_options(synchronize_session=False)
        )
        balance = self._get(user_id, fresh=True)
        if result.rowcount == 0:
            balance_rejected_total.inc()
            logger.info(
                "balance_debit_rejected",
                extra={"user_id": user_id, "available": balance.remaining_words, "requested": words},
            )
            raise InsufficientBalance(available=balance.remaining_words, requested=words)
        words_debited_total.inc(words)
        logger.info(
            "balance_debited",
            extra={"user_id": user_id, "words": words, "available": balance.remaining_words},
        )
        return balance

    def has_sufficient(self, user_id: str, words: int) -> bool:
        return self.get_or_create(user_id).remaining_words >= words

    def get_balance(self, user_id: str) -> dict:
        balance = self.get_or_create(user_id)
        return {
            "remaining": balance.remaining_words,
            "purchased": balance.total_words_purchased,
            "used": balance.total_words_used,
        }
