from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import CheckConstraint, Column, DateTime, Integer, String

from wordledger.db.base import Base


class UserWordBalance(Base):
    __tablename__ = "user_word_balances"
    __table_args__ = (
        CheckConstraint("remaining_words >= 0", name="ck_balance_remaining_non_negative"),
    )

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    user_id = Column(String, unique=True, nullable=False, index=True)
    # remaining_words == total_words_purchased - total_words_used, updated together
    remaining_words = Column(Integer, nullable=False, default=0)
    total_words_purchased = Column(Integer, nullable=False, default=0)
    total_words_used = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )
