"""State transitions for EpubJob.

QUEUED -> PROCESSING -> COMPLETED | FAILED. Terminal states are never left.
``started_at`` and ``completed_at`` are set once; the functions mutate the
record in place and the caller persists it with ``JobStore.save``.
"""

from __future__ import annotations

from datetime import datetime

from novel2epub.core.clock import utcnow
from novel2epub.core.errors import InvalidStateError
from novel2epub.models.job import TERMINAL_STATUSES, EpubJob, JobStatus


def is_terminal(status: str | JobStatus | None) -> bool:
    if status is None:
        return False
    try:
        return JobStatus(status) in TERMINAL_STATUSES
    except ValueError:
        return False


def mark_processing(job: EpubJob, now: datetime | None = None) -> EpubJob:
    if is_terminal(job.status):
        raise InvalidStateError(f"Job {job.id} is {job.status}; cannot start processing")
    job.status = JobStatus.PROCESSING.value
    # redelivery keeps the first start time
    if job.started_at is None:
        job.started_at = now or utcnow()
    return job


def mark_completed(job: EpubJob, public_url: str, now: datetime | None = None) -> EpubJob:
    if not (public_url or "").strip():
        raise InvalidStateError(f"Job {job.id} cannot complete without a public URL")
    if job.status == JobStatus.FAILED.value:
        raise InvalidStateError(f"Job {job.id} already failed")
    if job.status == JobStatus.QUEUED.value:
        raise InvalidStateError(f"Job {job.id} was never started")

    now = now or utcnow()
    job.status = JobStatus.COMPLETED.value
    job.public_url = public_url
    job.error_message = None
    if job.started_at is None:
        job.started_at = now
    if job.completed_at is None:
        job.completed_at = now
    return job


def mark_failed(job: EpubJob, error_message: str, now: datetime | None = None) -> EpubJob:
    if not (error_message or "").strip():
        raise InvalidStateError(f"Job {job.id} cannot fail without an error message")
    if job.status == JobStatus.COMPLETED.value:
        raise InvalidStateError(f"Job {job.id} already completed")

    now = now or utcnow()
    job.status = JobStatus.FAILED.value
    job.error_message = error_message
    if job.started_at is None:
        job.started_at = now
    if job.completed_at is None:
        job.completed_at = now
    return job


def record_attempt_error(job: EpubJob, error_message: str) -> EpubJob:
    """Keep the job PROCESSING but remember why the last attempt failed."""
    if job.status != JobStatus.PROCESSING.value:
        raise InvalidStateError(f"Job {job.id} is {job.status}; only PROCESSING jobs record attempt errors")
    job.error_message = error_message
    return job
