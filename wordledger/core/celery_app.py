"""
Celery application: broker and result backend from settings.
Tasks are in wordledger.workers.tasks.
"""
from celery import Celery
from celery.schedules import crontab

from wordledger.core.config import settings

celery_app = Celery(
    "wordledger",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
    include=[
        "wordledger.workers.tasks.expire_pending",
    ],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    task_track_started=True,
    task_time_limit=300,
    result_expires=86400,
    beat_schedule={
        "expire-stale-pending-payments": {
            "task": "wordledger.workers.tasks.expire_pending.expire_stale_pending",
            "schedule": crontab(minute="*/10"),
        },
    },
)
