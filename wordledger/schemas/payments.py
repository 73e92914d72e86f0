from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, Field


class PlanOut(BaseModel):
    name: str
    amount: int
    words: int


class InitiatePaymentIn(BaseModel):
    user_id: str = Field(..., min_length=1)
    phone: str = Field(..., min_length=1)
    amount: Decimal


class InitiatePaymentOut(BaseModel):
    payment_id: str
    status: str
    words_granted: int
    reference: str | None
    checkout_request_id: str | None
    error: str | None = None
    payment_url: str | None = None


class PaymentOut(BaseModel):
    id: str
    user_id: str
    phone: str
    amount: Decimal
    words_granted: int
    status: str
    reference: str | None
    checkout_request_id: str | None
    error_message: str | None
    payment_date: datetime | None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class CallbackAck(BaseModel):
    success: bool = True
    matched: bool
    message: str
    payment_id: str | None = None


class PaymentStatsOut(BaseModel):
    total_count: int
    completed_count: int
    failed_count: int
    pending_count: int
    processing_count: int
    cancelled_count: int
    total_amount: Decimal
    total_words: int


class PaymentUrlOut(BaseModel):
    url: str
