"""
One M-Pesa purchase attempt.
words_granted is fixed at creation; payment_date is set only on completion.
"""
from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import Column, DateTime, Index, Integer, Numeric, String, Text

from wordledger.db.base import Base

STATUS_PENDING = "pending"
STATUS_PROCESSING = "processing"
STATUS_COMPLETED = "completed"
STATUS_FAILED = "failed"
STATUS_CANCELLED = "cancelled"

TERMINAL_STATUSES = (STATUS_COMPLETED, STATUS_FAILED)


class Payment(Base):
    __tablename__ = "payments"
    __table_args__ = (Index("ix_payments_phone_amount_status", "phone", "amount", "status"),)

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    user_id = Column(String, nullable=False, index=True)
    phone = Column(String, nullable=False)                    # normalized 0XXXXXXXXX
    amount = Column(Numeric(12, 2), nullable=False)           # KES
    words_granted = Column(Integer, nullable=False)
    status = Column(String, nullable=False, default=STATUS_PENDING)
    reference = Column(String, nullable=True, index=True)
    checkout_request_id = Column(String, nullable=True, index=True)
    error_message = Column(Text, nullable=True)
    payment_date = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES
