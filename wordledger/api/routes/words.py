from fastapi import APIRouter, Depends, Path
from sqlalchemy.orm import Session

from wordledger.db.session import get_db
from wordledger.schemas.words import (
    AddWordsIn,
    AddWordsOut,
    BalanceOut,
    CheckBalanceOut,
    UsageStatsOut,
    UseWordsIn,
    UseWordsOut,
)
from wordledger.services.balance.service import BalanceService
from wordledger.services.purchases.service import PurchaseService


router = APIRouter(prefix="/words", tags=["words"])


@router.get("/{user_id}/balance", response_model=BalanceOut)
def get_balance(user_id: str, db: Session = Depends(get_db)) -> BalanceOut:
    balance = BalanceService(db).get_balance(user_id)
    db.commit()
    return BalanceOut(user_id=user_id, **balance)


@router.get("/{user_id}/check/{required_words}", response_model=CheckBalanceOut)
def check_balance(
    user_id: str,
    required_words: int = Path(..., gt=0),
    db: Session = Depends(get_db),
) -> CheckBalanceOut:
    service = BalanceService(db)
    sufficient = service.has_sufficient(user_id, required_words)
    available = service.get_balance(user_id)["remaining"]
    db.commit()
    return CheckBalanceOut(
        user_id=user_id,
        required=required_words,
        available=available,
        sufficient=sufficient,
    )


@router.post("/{user_id}/use", response_model=UseWordsOut)
def use_words(
    user_id: str,
    body: UseWordsIn,
    db: Session = Depends(get_db),
) -> UseWordsOut:
    result = PurchaseService(db).consume_words(user_id, body.words)
    return UseWordsOut(**result)


@router.post("/{user_id}/add", response_model=AddWordsOut)
def add_words(
    user_id: str,
    body: AddWordsIn,
    db: Session = Depends(get_db),
) -> AddWordsOut:
    balance = PurchaseService(db).add_words(user_id, body.words)
    return AddWordsOut(
        message=f"Added {body.words} words successfully",
        balance=BalanceOut(user_id=user_id, **balance),
    )


@router.get("/{user_id}/stats", response_model=UsageStatsOut)
def usage_stats(user_id: str, db: Session = Depends(get_db)) -> UsageStatsOut:
    return UsageStatsOut(user_id=user_id, **PurchaseService(db).usage_stats(user_id))
