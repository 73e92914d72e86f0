from decimal import Decimal

from pydantic import BaseModel, Field


class BalanceOut(BaseModel):
    user_id: str
    remaining: int
    purchased: int
    used: int


class UseWordsIn(BaseModel):
    words: int = Field(..., gt=0)


class UseWordsOut(BaseModel):
    ok: bool
    remaining: int


class CheckBalanceOut(BaseModel):
    user_id: str
    required: int
    available: int
    sufficient: bool


class AddWordsIn(BaseModel):
    words: int = Field(..., gt=0)


class AddWordsOut(BaseModel):
    message: str
    balance: BalanceOut


class UsageBalanceOut(BaseModel):
    remaining: int
    purchased: int
    used: int
    usage_percentage: float


class UsagePaymentsOut(BaseModel):
    count: int
    total_spent: Decimal
    total_purchased: int


class UsageStatsOut(BaseModel):
    user_id: str
    balance: UsageBalanceOut
    payments: UsagePaymentsOut
