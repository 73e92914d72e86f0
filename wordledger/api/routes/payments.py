"""
Payment routes: plans, purchase initiation, aggregator callback, history.
Authentication is handled in front of this service; user ids arrive as-is.
"""
from datetime import datetime

from fastapi import APIRouter, Depends, Query, Request
from starlette.concurrency import run_in_threadpool
from sqlalchemy.orm import Session

from wordledger.api.deps import get_aggregator
from wordledger.core.config import settings
from wordledger.db.session import get_db
from wordledger.schemas.payments import (
    CallbackAck,
    InitiatePaymentIn,
    InitiatePaymentOut,
    PaymentOut,
    PaymentStatsOut,
    PaymentUrlOut,
    PlanOut,
)
from wordledger.services.aggregator.client import LipiaClient
from wordledger.services.callbacks.reconciler import CallbackReconciler
from wordledger.services.errors import PaymentNotFound
from wordledger.services.payments.service import PaymentService
from wordledger.services.plans.catalog import list_plans
from wordledger.services.purchases.service import PurchaseService

router = APIRouter(prefix="/payments", tags=["payments"])


@router.get("/plans", response_model=list[PlanOut])
def get_plans() -> list[PlanOut]:
    return [PlanOut(name=p.name, amount=p.amount, words=p.words) for p in list_plans()]


@router.get("/url", response_model=PaymentUrlOut)
def payment_url(aggregator: LipiaClient = Depends(get_aggregator)) -> PaymentUrlOut:
    return PaymentUrlOut(url=aggregator.get_payment_url())


@router.post("/initiate", response_model=InitiatePaymentOut)
def initiate_payment(
    body: InitiatePaymentIn,
    db: Session = Depends(get_db),
    aggregator: LipiaClient = Depends(get_aggregator),
) -> InitiatePaymentOut:
    service = PurchaseService(db, aggregator=aggregator)
    result = service.initiate_purchase(body.user_id, body.phone, body.amount)
    return InitiatePaymentOut(
        payment_id=result.payment_id,
        status=result.status,
        words_granted=result.words_granted,
        reference=result.reference,
        checkout_request_id=result.checkout_request_id,
        error=result.error,
        payment_url=aggregator.get_payment_url(),
    )


async def _read_payload(request: Request) -> dict:
    if request.method == "GET":
        return dict(request.query_params)
    content_type = request.headers.get("content-type", "")
    if "application/x-www-form-urlencoded" in content_type or "multipart/form-data" in content_type:
        form = await request.form()
        return {k: v for k, v in form.items() if isinstance(v, str)}
    raw = await request.body()
    if not raw:
        return {}
    try:
        payload = await request.json()
    except ValueError:
        return {"raw": raw.decode("utf-8", errors="replace")}
    return payload if isinstance(payload, dict) else {"raw": payload}


def _reconcile(db: Session, payload: dict):
    result = CallbackReconciler(db).handle_callback(payload)
    db.commit()
    return result


@router.api_route("/callback", methods=["GET", "POST"], response_model=CallbackAck)
async def payment_callback(request: Request, db: Session = Depends(get_db)) -> CallbackAck:
    """
    Aggregator callback. Always 200 for business outcomes (matched or not);
    503 only when the store fails, so the aggregator retries.
    """
    payload = await _read_payload(request)
    result = await run_in_threadpool(_reconcile, db, payload)
    if not result.matched:
        return CallbackAck(matched=False, message="Callback received, but payment not found")
    return CallbackAck(
        matched=True,
        message="Callback processed successfully",
        payment_id=result.payment.id,
    )


@router.get("/stats", response_model=PaymentStatsOut)
def payment_stats(
    user_id: str | None = None,
    from_date: datetime | None = None,
    to_date: datetime | None = None,
    db: Session = Depends(get_db),
) -> PaymentStatsOut:
    return PaymentStatsOut(**PaymentService(db).stats(user_id, from_date, to_date))


@router.get("/status/{reference}", response_model=PaymentOut)
def payment_status(reference: str, db: Session = Depends(get_db)) -> PaymentOut:
    payment = PaymentService(db).get_by_reference(reference)
    if payment is None:
        raise PaymentNotFound(reference)
    return PaymentOut.model_validate(payment)


@router.get("/user/{user_id}", response_model=list[PaymentOut])
def user_payments(
    user_id: str,
    limit: int = Query(default=settings.payment_history_page_size, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
) -> list[PaymentOut]:
    payments = PaymentService(db).list_for_user(user_id, limit=limit, offset=offset)
    return [PaymentOut.model_validate(p) for p in payments]


@router.get("/{payment_id}", response_model=PaymentOut)
def get_payment(payment_id: str, db: Session = Depends(get_db)) -> PaymentOut:
    return PaymentOut.model_validate(PaymentService(db).get_payment(payment_id))
