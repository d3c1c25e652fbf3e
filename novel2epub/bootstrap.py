"""Process bootstrap: builds every collaborator once and shares it by reference.

The API process and each worker process own one ``Container``. Tests build
their own with fake ports and install it with ``set_container``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta

import redis
from celery import Task
from sqlalchemy.orm import Session, sessionmaker

from novel2epub import models  # noqa: F401  registers every table on Base.metadata
from novel2epub.adapters.downloader import HttpFileDownloader
from novel2epub.adapters.email import SmtpEmailTransport
from novel2epub.adapters.epub_generator import EbookLibGenerator
from novel2epub.adapters.storage import LocalBlobStorage
from novel2epub.core.config import Settings, settings as default_settings
from novel2epub.ingestion.http import HtmlFetcher
from novel2epub.ingestion.registry import StrategyRegistry, build_default_registry
from novel2epub.models.job import JobStatus
from novel2epub.ports import ArtifactGenerator, BlobStorage, EmailTransport, FileDownloader
from novel2epub.services.consistency import ConsistencyChecker
from novel2epub.services.conversion import EPUB_QUEUE, ConversionService
from novel2epub.services.deliveries import DeliveryStore
from novel2epub.services.jobs import JobStore
from novel2epub.services.kindle import KINDLE_DELIVERY_QUEUE, DeliveryProcessor, KindleDeliveryService
from novel2epub.services.locks import DistributedLock
from novel2epub.services.novels import NovelStore
from novel2epub.services.preview import PREVIEW_NAMESPACE, PREVIEW_QUEUE, PreviewService
from novel2epub.services.processor import JobProcessor
from novel2epub.services.reconciliation import ReconciliationService
from novel2epub.services.status_cache import StatusCache
from novel2epub.services.work_queue import Backoff, WorkQueue

logger = logging.getLogger(__name__)


@dataclass
class Container:
    settings: Settings
    redis: redis.Redis
    jobs: JobStore
    novels: NovelStore
    deliveries: DeliveryStore
    cache: StatusCache
    lock: DistributedLock
    queue: WorkQueue
    registry: StrategyRegistry
    conversion: ConversionService
    kindle: KindleDeliveryService
    processor: JobProcessor
    delivery_processor: DeliveryProcessor
    reconciliation: ReconciliationService
    preview: PreviewService
    consistency: ConsistencyChecker


def _default_tasks() -> dict[str, Task]:
    # imported lazily: the task module resolves the container at call time
    from novel2epub.worker.tasks import preview_novel, process_delivery, process_epub_job

    return {EPUB_QUEUE: process_epub_job, KINDLE_DELIVERY_QUEUE: process_delivery, PREVIEW_QUEUE: preview_novel}


def build_container(
    cfg: Settings | None = None,
    *,
    session_factory: sessionmaker[Session] | None = None,
    redis_client: redis.Redis | None = None,
    tasks: dict[str, Task] | None = None,
    registry: StrategyRegistry | None = None,
    generator: ArtifactGenerator | None = None,
    storage: BlobStorage | None = None,
    transport: EmailTransport | None = None,
    downloader: FileDownloader | None = None,
) -> Container:
    cfg = cfg or default_settings

    if session_factory is None:
        from novel2epub.db.session import SessionLocal

        session_factory = SessionLocal
    if redis_client is None:
        redis_client = redis.Redis.from_url(cfg.redis_url, decode_responses=True)
    if registry is None:
        fetcher = HtmlFetcher(
            max_retries=cfg.crawler_max_retries,
            retry_delay_sec=cfg.crawler_retry_delay_sec,
            timeout_sec=cfg.crawler_timeout_sec,
        )
        registry = build_default_registry(fetcher)

    generator = generator or EbookLibGenerator(cfg.artifact_dir)
    storage = storage or LocalBlobStorage(cfg.storage_dir, cfg.public_base_url)
    transport = transport or SmtpEmailTransport(
        host=cfg.smtp_host,
        port=cfg.smtp_port,
        sender=cfg.email_from,
        username=cfg.smtp_username,
        password=cfg.smtp_password,
        use_tls=cfg.smtp_use_tls,
    )
    downloader = downloader or HttpFileDownloader()

    jobs = JobStore(session_factory)
    novels = NovelStore(session_factory)
    deliveries = DeliveryStore(session_factory)
    cache = StatusCache(
        redis_client,
        ttl_by_status={
            JobStatus.QUEUED.value: cfg.cache_ttl_queued,
            JobStatus.PROCESSING.value: cfg.cache_ttl_processing,
            JobStatus.COMPLETED.value: cfg.cache_ttl_completed,
            JobStatus.FAILED.value: cfg.cache_ttl_failed,
        },
    )
    lock = DistributedLock(redis_client, default_ttl_ms=cfg.lock_ttl_ms, default_wait_ms=cfg.lock_wait_ms)
    queue = WorkQueue(
        redis_client,
        tasks if tasks is not None else _default_tasks(),
        idempotency_ttl_sec=cfg.queue_idempotency_ttl_sec,
    )

    preview_cache = StatusCache(
        redis_client,
        namespace=PREVIEW_NAMESPACE,
        ttl_by_status={
            JobStatus.QUEUED.value: cfg.preview_pending_ttl_sec,
            JobStatus.PROCESSING.value: cfg.preview_pending_ttl_sec,
            JobStatus.COMPLETED.value: cfg.preview_ttl_sec,
            JobStatus.FAILED.value: cfg.preview_pending_ttl_sec,
        },
    )

    recent_window = (
        timedelta(hours=cfg.reconcile_recent_window_hours) if cfg.reconcile_recent_window_hours > 0 else None
    )

    return Container(
        settings=cfg,
        redis=redis_client,
        jobs=jobs,
        novels=novels,
        deliveries=deliveries,
        cache=cache,
        lock=lock,
        queue=queue,
        registry=registry,
        conversion=ConversionService(
            jobs,
            novels,
            cache,
            queue,
            registry,
            attempts=cfg.queue_attempts,
            backoff=Backoff(type=cfg.queue_backoff_type, delay=cfg.queue_backoff_sec),
            stale_after=timedelta(seconds=cfg.status_stale_after_sec),
        ),
        kindle=KindleDeliveryService(jobs, deliveries, queue),
        processor=JobProcessor(jobs, novels, cache, lock, registry, generator, storage),
        delivery_processor=DeliveryProcessor(deliveries, jobs, downloader, transport),
        reconciliation=ReconciliationService(
            jobs,
            cache,
            recent_window=recent_window,
            user_repair_window=timedelta(days=cfg.reconcile_user_repair_days),
            cache_retention=timedelta(days=cfg.reconcile_cache_retention_days),
            cleanup_window=timedelta(hours=cfg.reconcile_cleanup_window_hours),
        ),
        preview=PreviewService(
            novels,
            preview_cache,
            queue,
            registry,
            attempts=cfg.preview_attempts,
            backoff=Backoff(type="exponential", delay=cfg.preview_backoff_sec),
        ),
        consistency=ConsistencyChecker(jobs, cache, window=timedelta(days=cfg.consistency_window_days)),
    )


_container: Container | None = None


def get_container() -> Container:
    global _container
    if _container is None:
        _container = build_container()
        logger.info("Built service container (env=%s)", _container.settings.env)
    return _container


def set_container(container: Container | None) -> None:
    global _container
    _container = container
