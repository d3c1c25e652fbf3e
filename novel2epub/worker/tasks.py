import logging

from celery import Task

from novel2epub.bootstrap import get_container
from novel2epub.core.config import settings
from novel2epub.core.errors import Novel2EpubError
from novel2epub.services.work_queue import Backoff
from novel2epub.worker.celery_app import celery_app

logger = logging.getLogger(__name__)


def _is_final_attempt(task: Task, attempts: int) -> bool:
    return task.request.retries >= max(1, attempts) - 1


def _retry(task: Task, exc: Novel2EpubError, what: str, attempts: int, backoff: dict | None):
    retries = task.request.retries
    countdown = Backoff.from_dict(backoff).delay_for(retries)
    logger.warning("%s attempt %d/%d failed (%s); retrying in %.1fs", what, retries + 1, attempts, exc, countdown)
    return task.retry(exc=exc, countdown=countdown, max_retries=attempts - 1)


@celery_app.task(name="epub.process_job", bind=True)
def process_epub_job(self, job_id: str, novel_id: str, attempts: int = 3, backoff: dict | None = None) -> dict:
    final_attempt = _is_final_attempt(self, attempts)
    container = get_container()
    try:
        outcome = container.processor.process(job_id, novel_id, final_attempt=final_attempt)
    except Novel2EpubError as e:
        if e.retryable and not final_attempt:
            raise _retry(self, e, f"Job {job_id}", attempts, backoff)
        raise
    return {"ok": True, "job_id": job_id, "outcome": outcome.value}


@celery_app.task(name="preview.fetch_novel", bind=True, soft_time_limit=settings.preview_time_limit_sec)
def preview_novel(self, novel_id: str, attempts: int = 2, backoff: dict | None = None) -> dict:
    final_attempt = _is_final_attempt(self, attempts)
    try:
        preview = get_container().preview.process(novel_id, final_attempt=final_attempt)
    except Novel2EpubError as e:
        if e.retryable and not final_attempt:
            raise _retry(self, e, f"Preview of novel {novel_id}", attempts, backoff)
        raise
    return {"ok": True, "novel_id": novel_id, "status": preview.status, "title": preview.title}


@celery_app.task(name="kindle.process_delivery")
def process_delivery(delivery_id: str, attempts: int = 1, backoff: dict | None = None) -> dict:
    # retries are new delivery records, so there is no self.retry here
    delivery = get_container().delivery_processor.process(delivery_id)
    return {"ok": True, "delivery_id": delivery.id, "status": delivery.status}


@celery_app.task(name="reconcile.job_status")
def reconcile_job_status() -> dict:
    report = get_container().reconciliation.run()
    return {"ok": True, **report.as_dict()}
