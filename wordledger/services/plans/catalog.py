"""
Plan catalog: fixed KES amounts and the words each one grants.

require_tier() is strict and is what purchases go through. words_for_amount()
is lenient (nearest lower-or-equal tier, 0 below the smallest) for callers
holding free-form amounts.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation

from wordledger.services.errors import InvalidAmount

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Plan:
    name: str
    amount: int  # KES
    words: int


PLANS: tuple[Plan, ...] = (
    Plan(name="basic", amount=1500, words=30000),
    Plan(name="standard", amount=2500, words=60000),
    Plan(name="premium", amount=4000, words=100000),
)

_BY_AMOUNT = {p.amount: p for p in PLANS}
_BY_NAME = {p.name: p for p in PLANS}


def to_decimal(amount) -> Decimal:
    """Parse an amount from int/float/str. Raises InvalidAmount on garbage."""
    if isinstance(amount, bool):
        raise InvalidAmount(amount, allowed_amounts())
    try:
        value = Decimal(str(amount).strip())
    except (InvalidOperation, ValueError):
        raise InvalidAmount(amount, allowed_amounts()) from None
    if not value.is_finite():
        raise InvalidAmount(amount, allowed_amounts())
    return value


def allowed_amounts() -> list[int]:
    return [p.amount for p in PLANS]


def list_plans() -> list[Plan]:
    return list(PLANS)


def get_plan(name: str) -> Plan | None:
    return _BY_NAME.get(name)


def require_tier(amount) -> Plan:
    value = to_decimal(amount)
    if value != value.to_integral_value():
        raise InvalidAmount(amount, allowed_amounts())
    plan = _BY_AMOUNT.get(int(value))
    if plan is None:
        raise InvalidAmount(amount, allowed_amounts())
    return plan


def words_for_amount(amount) -> int:
    value = to_decimal(amount)
    exact = _BY_AMOUNT.get(int(value)) if value == value.to_integral_value() else None
    if exact is not None:
        return exact.words
    logger.warning("non_tier_amount", extra={"amount": str(value)})
    result = 0
    for plan in sorted(PLANS, key=lambda p: p.amount):
        if value >= plan.amount:
            result = plan.words
    return result
