"""Caller-facing operations on conversion jobs.

Reads prefer the Status Cache and fall back to the Job Store. Writes go to the
Job Store first; the cache is seeded or refreshed afterwards.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta

from novel2epub.core.clock import utcnow
from novel2epub.core.errors import ValidationError
from novel2epub.ingestion.registry import StrategyRegistry
from novel2epub.models.job import EpubJob, JobStatus
from novel2epub.models.novel import Novel
from novel2epub.services import job_state
from novel2epub.services.jobs import JobStore
from novel2epub.services.novels import NovelStore
from novel2epub.services.pagination import Page
from novel2epub.services.status_cache import StatusCache, StatusCacheEntry
from novel2epub.services.work_queue import Backoff, EnqueueOptions, WorkQueue

logger = logging.getLogger(__name__)

EPUB_QUEUE = "epub"


@dataclass(frozen=True)
class JobStatusSnapshot:
    job_id: str
    status: str
    started_at: datetime | None = None
    completed_at: datetime | None = None
    public_url: str | None = None
    error_message: str | None = None
    user_id: str | None = None
    source: str = "store"  # store|cache

    @classmethod
    def from_job(cls, job: EpubJob) -> JobStatusSnapshot:
        return cls(
            job_id=job.id,
            status=job.status,
            started_at=job.started_at,
            completed_at=job.completed_at,
            public_url=job.public_url,
            error_message=job.error_message,
            user_id=job.user_id,
            source="store",
        )

    @classmethod
    def from_entry(cls, entry: StatusCacheEntry) -> JobStatusSnapshot:
        return cls(
            job_id=entry.job_id,
            status=entry.status,
            started_at=entry.started_at,
            completed_at=entry.completed_at,
            public_url=entry.public_url,
            error_message=entry.error_message,
            user_id=entry.user_id,
            source="cache",
        )


@dataclass(frozen=True)
class DownloadLink:
    job_id: str
    ready: bool
    status: str
    public_url: str | None = None


def validate_job_id(job_id: str) -> str:
    try:
        return str(uuid.UUID(str(job_id)))
    except ValueError:
        raise ValidationError(f"Invalid job id: {job_id!r}") from None


def _normalize_user(user_id: str | None) -> str | None:
    user_id = (user_id or "").strip()
    return user_id or None


class ConversionService:
    def __init__(
        self,
        jobs: JobStore,
        novels: NovelStore,
        cache: StatusCache,
        queue: WorkQueue,
        registry: StrategyRegistry,
        *,
        attempts: int = 3,
        backoff: Backoff | None = None,
        stale_after: timedelta = timedelta(seconds=120),
    ):
        self._jobs = jobs
        self._novels = novels
        self._cache = cache
        self._queue = queue
        self._registry = registry
        self._attempts = attempts
        self._backoff = backoff or Backoff()
        self._stale_after = stale_after

    def register_novel(self, source: str, source_id: str) -> Novel:
        source = (source or "").strip().lower()
        # raises UnsupportedSourceError for unknown sites
        self._registry.get(source)
        return self._novels.upsert(source, source_id)

    def submit(self, novel_id: str, user_id: str | None = None) -> str:
        novel = self._novels.get(novel_id)
        # reject unknown sites before any job exists
        self._registry.get(novel.source)
        job = self._jobs.create(novel.id, _normalize_user(user_id))
        self._cache.write_job(job)

        try:
            self._queue.enqueue(
                EPUB_QUEUE,
                {"job_id": job.id, "novel_id": novel.id},
                EnqueueOptions(attempts=self._attempts, backoff=self._backoff, idempotency_key=job.id),
            )
        except Exception as exc:
            logger.exception("Could not enqueue job %s", job.id)
            job_state.mark_failed(job, f"Could not enqueue job: {exc}", utcnow())
            job = self._jobs.save(job)
            self._cache.write_job(job)
            raise

        logger.info("Submitted job %s for novel %s (user=%s)", job.id, novel.id, job.user_id)
        return job.id

    def get_status(self, job_id: str) -> JobStatusSnapshot:
        job_id = validate_job_id(job_id)
        entry = self._cache.read(job_id)
        if entry is not None:
            stale = utcnow() - entry.updated_at > self._stale_after
            if job_state.is_terminal(entry.status) or not stale:
                return JobStatusSnapshot.from_entry(entry)
            logger.debug("Cached status for job %s is stale; re-reading store", job_id)

        job = self._jobs.get(job_id)
        self._cache.write_job(job)
        return JobStatusSnapshot.from_job(job)

    def get_download_link(self, job_id: str) -> DownloadLink:
        snapshot = self.get_status(job_id)
        if snapshot.status == JobStatus.COMPLETED.value and snapshot.public_url:
            return DownloadLink(job_id=snapshot.job_id, ready=True, status=snapshot.status, public_url=snapshot.public_url)
        return DownloadLink(job_id=snapshot.job_id, ready=False, status=snapshot.status)

    def get_user_jobs(self, user_id: str, page: int = 1, limit: int = 10) -> Page[EpubJob]:
        return self._jobs.find_by_user(user_id, page, limit)
