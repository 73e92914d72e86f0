from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import JSON, Boolean, Column, DateTime, ForeignKey, String
from sqlalchemy.dialects.postgresql import JSONB

from wordledger.db.base import Base


class CallbackRecord(Base):
    """Audit trail of aggregator callbacks. Not authoritative for balances."""

    __tablename__ = "payment_callbacks"

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    payload = Column(JSON().with_variant(JSONB(), "postgresql"), nullable=False, default=dict)
    reference = Column(String, nullable=True, index=True)
    checkout_request_id = Column(String, nullable=True, index=True)
    status = Column(String, nullable=False)  # completed / failed, derived from payload
    processed = Column(Boolean, nullable=False, default=False)
    payment_id = Column(String, ForeignKey("payments.id"), nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
