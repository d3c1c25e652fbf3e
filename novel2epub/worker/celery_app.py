from celery import Celery, signals

from novel2epub.core.config import is_test_env, settings
from novel2epub.core.logging import configure_logging

BROKER_URL = settings.celery_broker_url
RESULT_BACKEND = settings.celery_result_backend or BROKER_URL

# IMPORTANT: the variable name MUST be `celery_app`
celery_app = Celery(
    "novel2epub",
    broker=BROKER_URL,
    backend=RESULT_BACKEND,
)

# Ensure tasks are discovered
celery_app.autodiscover_tasks(["novel2epub.worker"])

celery_app.conf.update(
    task_track_started=True,
    result_extended=True,
    enable_utc=True,
    timezone="UTC",
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    # a task is acknowledged only after it finishes; a lost worker means redelivery
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    worker_prefetch_multiplier=1,
    task_time_limit=settings.task_time_limit_sec,
    task_always_eager=is_test_env(),
    beat_schedule={
        "reconcile-job-status": {
            "task": "reconcile.job_status",
            "schedule": float(settings.reconcile_interval_sec),
        },
    },
)


@signals.worker_process_init.connect
def _init_worker_process(**_kwargs) -> None:
    configure_logging(settings.log_level)


__all__ = ["celery_app"]
