# homeledger/celery_app.py
from celery import Celery
from celery.schedules import crontab

from homeledger.config import settings

celery_app = Celery(
    "homeledger",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=["homeledger.tasks"],
)

celery_app.conf.task_routes = {
    "homeledger.tasks.process_document_task": {"queue": settings.celery_queue},
    "homeledger.tasks.suggest_maintenance_task": {"queue": settings.celery_queue},
}

celery_app.conf.beat_schedule = {
    "check-maintenance-reminders": {
        "task": "homeledger.tasks.check_maintenance_reminders",
        "schedule": crontab(hour=9, minute=0),
    },
}

celery_app.conf.update(
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    task_soft_time_limit=60 * 10,
    timezone="UTC",
)
