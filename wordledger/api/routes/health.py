from fastapi import APIRouter, Depends, Response
import pybreaker
import redis
from sqlalchemy import text
from sqlalchemy.orm import Session

from wordledger.core.config import settings
from wordledger.db.session import get_db
from wordledger.services.circuit_breaker import get_circuit_breaker


router = APIRouter()


@router.get("/health")
def health() -> dict:
    """Liveness probe - always returns 200 if app is running."""
    return {"status": "ok"}


@router.get("/ready")
def readiness(response: Response, db: Session = Depends(get_db)) -> dict:
    """
    Readiness probe - 503 when the ledger store (or Redis, if configured) is down.
    An open aggregator breaker is reported but does not fail readiness:
    callbacks and balance reads keep working without the aggregator.
    """
    checks = {}
    try:
        # Check database
        db.execute(text("SELECT 1"))
        checks["database"] = "ok"

        # Check Redis (breaker state store)
        if settings.redis_url:
            redis_client = redis.Redis.from_url(settings.redis_url, decode_responses=True)
            redis_client.ping()
            checks["redis"] = "ok"
        else:
            checks["redis"] = "skipped"
    except Exception as e:
        response.status_code = 503
        return {"status": "not_ready", "checks": checks, "error": str(e)}

    aggregator = get_circuit_breaker("aggregator").current_state
    return {
        "status": "ready",
        "checks": checks,
        "aggregator": "degraded" if aggregator == pybreaker.STATE_OPEN else "ok",
    }
