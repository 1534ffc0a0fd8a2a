# meterflow/core/celery_app.py
from celery import Celery
from celery.schedules import crontab
from meterflow.config import settings

celery_app = Celery(
    "meterflow",
    broker=settings.REDIS_URL,
    backend=settings.REDIS_URL,
)

celery_app.conf.update(
    task_time_limit=60*30,          # 30 min hard limit
    task_soft_time_limit=60*25,
    worker_max_tasks_per_child=100,
    worker_prefetch_multiplier=1,
    result_expires=3600,
    task_track_started=True,
    include=["meterflow.workers.export_tasks"],
)

celery_app.conf.beat_schedule = {
    "retry-failed-invoice-exports": {
        "task": "retry_failed_exports",
        "schedule": crontab(minute=f"*/{settings.EXPORT_RETRY_INTERVAL_MINUTES}"),
    },
    "sync-missing-billing-cycles": {
        "task": "sync_missing_billing_cycles",
        "schedule": crontab(minute=0, hour=2),
    },
}
