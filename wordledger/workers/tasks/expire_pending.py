"""
Celery beat task: cancel pending payments that never reached the aggregator.
"""
import logging

from wordledger.core.celery_app import celery_app
from wordledger.core.config import settings
from wordledger.db.session import build_engine, build_session_factory
from wordledger.services.payments.service import PaymentService

logger = logging.getLogger(__name__)

_session_factory = None


def _get_session_factory():
    global _session_factory
    if _session_factory is None:
        _session_factory = build_session_factory(build_engine())
    return _session_factory


def run_expiry(db, minutes: int | None = None) -> dict:
    minutes = minutes or settings.pending_expiry_minutes
    cancelled = PaymentService(db).expire_stale_pending(minutes)
    db.commit()
    logger.info("expire_stale_pending_done", extra={"count": cancelled})
    return {"cancelled": cancelled}


@celery_app.task(
    name="wordledger.workers.tasks.expire_pending.expire_stale_pending",
    time_limit=60,
    soft_time_limit=55,
)
def expire_stale_pending(minutes: int | None = None) -> dict:
    db = _get_session_factory()()
    try:
        return run_expiry(db, minutes)
    except Exception:
        db.rollback()
        logger.exception("expire_stale_pending_error")
        return {"cancelled": 0, "error": "exception"}
    finally:
        db.close()
