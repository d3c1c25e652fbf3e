"""Novel previews: fetch only the index page and cache what it says about the novel.

A preview runs on its own queue. Its progress lives in a Status Cache under
the ``preview`` namespace, keyed by novel id, and the fetched title, author and
description ride in the entry's payload. A COMPLETED entry doubles as the
preview cache until its TTL runs out; a FAILED one is replaced on the next
request.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from novel2epub.core.clock import utcnow
from novel2epub.core.errors import Novel2EpubError, NotFoundError
from novel2epub.ingestion.registry import StrategyRegistry, build_novel_url
from novel2epub.models.job import JobStatus
from novel2epub.models.novel import Novel
from novel2epub.services.novels import NovelStore
from novel2epub.services.status_cache import StatusCache, StatusCacheEntry
from novel2epub.services.work_queue import Backoff, EnqueueOptions, WorkQueue

logger = logging.getLogger(__name__)

PREVIEW_QUEUE = "preview"
PREVIEW_NAMESPACE = "preview"


@dataclass(frozen=True)
class NovelPreview:
    novel_id: str
    status: str
    source: str
    source_id: str
    title: str | None = None
    author: str | None = None
    description: str | None = None
    chapter_count: int | None = None
    error_message: str | None = None
    origin: str = "cache"  # cache|store

    @classmethod
    def from_entry(cls, novel: Novel, entry: StatusCacheEntry) -> NovelPreview:
        payload = entry.payload or {}
        return cls(
            novel_id=novel.id,
            status=entry.status,
            source=novel.source,
            source_id=novel.source_id,
            title=payload.get("title"),
            author=payload.get("author"),
            description=payload.get("description"),
            chapter_count=payload.get("chapter_count"),
            error_message=entry.error_message,
            origin="cache",
        )

    @classmethod
    def from_novel(cls, novel: Novel) -> NovelPreview:
        return cls(
            novel_id=novel.id,
            status=JobStatus.COMPLETED.value,
            source=novel.source,
            source_id=novel.source_id,
            title=novel.title,
            author=novel.author,
            description=novel.description,
            origin="store",
        )


class PreviewService:
    def __init__(
        self,
        novels: NovelStore,
        cache: StatusCache,
        queue: WorkQueue,
        registry: StrategyRegistry,
        *,
        attempts: int = 2,
        backoff: Backoff | None = None,
    ):
        self._novels = novels
        self._cache = cache
        self._queue = queue
        self._registry = registry
        self._attempts = attempts
        self._backoff = backoff or Backoff(type="exponential", delay=0.5)

    def request_preview(self, novel_id: str) -> NovelPreview:
        """Queue a preview unless a fresh or in-flight one already exists."""
        novel = self._novels.get(novel_id)
        self._registry.get(novel.source)

        entry = self._cache.read(novel.id)
        if entry is not None and entry.status != JobStatus.FAILED.value:
            logger.info("Preview for novel %s already %s", novel.id, entry.status)
            return NovelPreview.from_entry(novel, entry)
        if entry is not None:
            self._cache.remove(novel.id)

        self._cache.write(novel.id, {"status": JobStatus.QUEUED.value})
        try:
            task_id = self._queue.enqueue(
                PREVIEW_QUEUE,
                {"novel_id": novel.id},
                EnqueueOptions(attempts=self._attempts, backoff=self._backoff),
            )
        except Exception as exc:
            logger.exception("Could not enqueue preview for novel %s", novel.id)
            self._cache.write(
                novel.id,
                {
                    "status": JobStatus.FAILED.value,
                    "error_message": f"Could not enqueue preview: {exc}",
                    "completed_at": utcnow(),
                },
            )
            raise

        logger.info("Queued preview %s for novel %s", task_id, novel.id)
        return self.get_preview(novel.id)

    def get_preview(self, novel_id: str) -> NovelPreview:
        novel = self._novels.get(novel_id)
        entry = self._cache.read(novel.id)
        if entry is not None:
            return NovelPreview.from_entry(novel, entry)
        # the cached preview expired, but an earlier fetch left the metadata on the row
        if novel.title:
            return NovelPreview.from_novel(novel)
        raise NotFoundError(f"No preview for novel {novel_id}")

    def process(self, novel_id: str, final_attempt: bool = True) -> NovelPreview:
        novel = self._novels.get(novel_id)
        self._cache.write(novel.id, {"status": JobStatus.PROCESSING.value, "started_at": utcnow()})

        try:
            strategy = self._registry.get(novel.source)
            index = strategy.fetch_novel_index(build_novel_url(novel.source, novel.source_id))
        except Exception as exc:
            message = str(exc).strip() or exc.__class__.__name__
            retryable = isinstance(exc, Novel2EpubError) and exc.retryable
            if retryable and not final_attempt:
                logger.warning("Preview of novel %s failed, will retry: %s", novel.id, message)
            else:
                self._cache.write(
                    novel.id,
                    {"status": JobStatus.FAILED.value, "error_message": message, "completed_at": utcnow()},
                )
                logger.error("Preview of novel %s failed: %s", novel.id, message)
            raise

        novel = self._novels.update_metadata(
            novel.id, title=index.title, author=index.author, description=index.description
        )
        self._cache.write(
            novel.id,
            {
                "status": JobStatus.COMPLETED.value,
                "completed_at": utcnow(),
                "payload": {
                    "novel_id": novel.id,
                    "title": novel.title,
                    "author": novel.author,
                    "description": novel.description,
                    "source": novel.source,
                    "source_id": novel.source_id,
                    "chapter_count": len(index.chapters),
                },
            },
        )
        logger.info("Previewed novel %s: %s", novel.id, novel.title)
        return self.get_preview(novel.id)
