"""Drives one conversion job from QUEUED to a terminal state.

Every transition is written to the Job Store first and the Status Cache
second. The move to PROCESSING and the terminal write both happen under
``job:<id>`` after re-reading the job, so a redelivered task cannot reopen
or overwrite a result another worker already recorded. On the final attempt
a lock that cannot be acquired still ends the job as FAILED.
"""

from __future__ import annotations

import enum
import logging
import os

from novel2epub.core.clock import utcnow
from novel2epub.core.errors import (
    GenerationError,
    LockTimeoutError,
    Novel2EpubError,
    UploadError,
    UpstreamFetchError,
)
from novel2epub.ingestion.base import ChapterContent, IngestionStrategy, NovelIndex
from novel2epub.ingestion.registry import StrategyRegistry, build_novel_url
from novel2epub.models.job import JobStatus
from novel2epub.ports import EPUB_CONTENT_TYPE, Artifact, ArtifactGenerator, BlobStorage
from novel2epub.services import job_state
from novel2epub.services.jobs import JobStore
from novel2epub.services.locks import DistributedLock
from novel2epub.services.novels import NovelStore
from novel2epub.services.status_cache import StatusCache

logger = logging.getLogger(__name__)


class ProcessOutcome(str, enum.Enum):
    COMPLETED = "completed"
    SKIPPED = "skipped"  # already terminal on entry
    ALREADY_FINALIZED = "already_finalized"  # another worker finished it meanwhile


def job_lock_key(job_id: str) -> str:
    return f"job:{job_id}"


def _summarize(exc: BaseException) -> str:
    message = str(exc).strip()
    return message or exc.__class__.__name__


class JobProcessor:
    def __init__(
        self,
        jobs: JobStore,
        novels: NovelStore,
        cache: StatusCache,
        lock: DistributedLock,
        registry: StrategyRegistry,
        generator: ArtifactGenerator,
        storage: BlobStorage,
    ):
        self._jobs = jobs
        self._novels = novels
        self._cache = cache
        self._lock = lock
        self._registry = registry
        self._generator = generator
        self._storage = storage

    def process(self, job_id: str, novel_id: str, final_attempt: bool = True) -> ProcessOutcome:
        try:
            return self._run(job_id, novel_id, final_attempt)
        except LockTimeoutError as exc:
            if final_attempt:
                # no retry follows; a stuck lock must not leave the job open
                self._fail_without_lock(job_id, _summarize(exc))
            raise

    def _run(self, job_id: str, novel_id: str, final_attempt: bool) -> ProcessOutcome:
        job = self._jobs.get(job_id)
        if job_state.is_terminal(job.status):
            logger.info("Job %s already %s; skipping", job_id, job.status)
            return ProcessOutcome.SKIPPED

        if not self._start(job_id):
            return ProcessOutcome.SKIPPED
        logger.info("Job %s processing novel %s", job_id, novel_id)

        try:
            public_url = self._convert(novel_id)
        except LockTimeoutError:
            raise
        except Exception as exc:
            self._handle_failure(job_id, exc, final_attempt)
            raise

        return self._finalize(job_id, public_url)

    def _start(self, job_id: str) -> bool:
        with self._lock.hold(job_lock_key(job_id)):
            job = self._jobs.get(job_id)
            if job_state.is_terminal(job.status):
                logger.info("Job %s was finalized as %s before it started here", job_id, job.status)
                return False
            job_state.mark_processing(job, utcnow())
            job = self._jobs.save(job)
            self._cache.write_job(job)
        return True

    def _convert(self, novel_id: str) -> str:
        novel = self._novels.get(novel_id)
        novel_url = build_novel_url(novel.source, novel.source_id)
        strategy = self._registry.get(novel.source)

        index = strategy.fetch_novel_index(novel_url)
        self._novels.update_metadata(
            novel_id, title=index.title, author=index.author, description=index.description
        )
        chapters = self._fetch_chapters(strategy, index)

        try:
            artifact = self._generator.generate(index.title, index.author, index.description, chapters)
        except GenerationError:
            raise
        except Exception as exc:
            raise GenerationError(f"EPUB generation failed: {_summarize(exc)}") from exc

        return self._upload(artifact)

    def _fetch_chapters(self, strategy: IngestionStrategy, index: NovelIndex) -> list[ChapterContent]:
        total = len(index.chapters)
        chapters: list[ChapterContent] = []
        for position, chapter in enumerate(index.chapters, start=1):
            try:
                html = strategy.fetch_chapter_content(chapter.url)
            except Exception as exc:
                raise UpstreamFetchError(
                    f"Failed to fetch chapter {position}/{total} ({chapter.title}): {_summarize(exc)}",
                    url=chapter.url,
                ) from exc
            chapters.append(ChapterContent(group_title=chapter.group_title, title=chapter.title, html=html))
            logger.debug("Fetched chapter %d/%d", position, total)
        return chapters

    def _upload(self, artifact: Artifact) -> str:
        try:
            return self._storage.upload(artifact.local_path, artifact.file_name, EPUB_CONTENT_TYPE)
        except UploadError:
            raise
        except Exception as exc:
            raise UploadError(f"Upload of {artifact.file_name} failed: {_summarize(exc)}") from exc
        finally:
            try:
                os.remove(artifact.local_path)
            except FileNotFoundError:
                pass

    def _finalize(self, job_id: str, public_url: str) -> ProcessOutcome:
        with self._lock.hold(job_lock_key(job_id)):
            job = self._jobs.get(job_id)
            if job_state.is_terminal(job.status):
                logger.info("Job %s was finalized elsewhere as %s", job_id, job.status)
                return ProcessOutcome.ALREADY_FINALIZED
            job_state.mark_completed(job, public_url, utcnow())
            job = self._jobs.save(job)
            self._cache.write_job(job)
        logger.info("Job %s completed: %s", job_id, public_url)
        return ProcessOutcome.COMPLETED

    def _handle_failure(self, job_id: str, exc: Exception, final_attempt: bool) -> None:
        message = _summarize(exc)
        retryable = isinstance(exc, Novel2EpubError) and exc.retryable
        if retryable and not final_attempt:
            job = self._jobs.get(job_id)
            if job.status == JobStatus.PROCESSING.value:
                job_state.record_attempt_error(job, message)
                self._jobs.save(job)
            logger.warning("Job %s attempt failed, will retry: %s", job_id, message)
            return

        try:
            with self._lock.hold(job_lock_key(job_id)):
                self._fail(job_id, message)
        except LockTimeoutError:
            logger.warning("Lock for job %s not acquired; recording failure without it", job_id)
            self._fail_without_lock(job_id, message)

    def _fail(self, job_id: str, message: str) -> None:
        job = self._jobs.get(job_id)
        if job_state.is_terminal(job.status):
            return
        job_state.mark_failed(job, message, utcnow())
        job = self._jobs.save(job)
        self._cache.write_job(job)
        logger.error("Job %s failed: %s", job_id, message)

    def _fail_without_lock(self, job_id: str, message: str) -> None:
        job = self._jobs.fail_if_active(job_id, message, utcnow())
        if job is None:
            logger.info("Job %s ended elsewhere; nothing to fail", job_id)
            return
        self._cache.write_job(job)
        logger.error("Job %s failed: %s", job_id, message)
