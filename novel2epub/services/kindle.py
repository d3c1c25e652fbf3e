"""Kindle delivery: a second, smaller state machine gated on job completion.

PENDING -> PROCESSING -> COMPLETED | FAILED, strictly forward. A failed
delivery is never retried in place; the user asks again and gets a new record,
which is why delivery tasks are enqueued with a single attempt.
"""

from __future__ import annotations

import logging
import re

from novel2epub.core.clock import utcnow
from novel2epub.core.errors import InvalidStateError, NotFoundError, TransportError, ValidationError
from novel2epub.models.delivery import DELIVERY_TERMINAL_STATUSES, DeliveryStatus, KindleDelivery
from novel2epub.models.job import JobStatus
from novel2epub.ports import EmailTransport, FileDownloader
from novel2epub.services.deliveries import DeliveryStore
from novel2epub.services.jobs import JobStore
from novel2epub.services.pagination import Page
from novel2epub.services.work_queue import EnqueueOptions, WorkQueue

logger = logging.getLogger(__name__)

KINDLE_DELIVERY_QUEUE = "kindle-delivery"

_KINDLE_EMAIL_RE = re.compile(r"^[^\s@]+@kindle(\.amazon)?\.com$", re.IGNORECASE)


def is_kindle_email(address: str | None) -> bool:
    return bool(address) and _KINDLE_EMAIL_RE.match(address.strip()) is not None


def _is_delivery_terminal(status: str) -> bool:
    try:
        return DeliveryStatus(status) in DELIVERY_TERMINAL_STATUSES
    except ValueError:
        return False


class KindleDeliveryService:
    def __init__(self, jobs: JobStore, deliveries: DeliveryStore, queue: WorkQueue):
        self._jobs = jobs
        self._deliveries = deliveries
        self._queue = queue

    def send_to_kindle(self, job_id: str, user_id: str | None, to_email: str | None) -> KindleDelivery:
        if not (user_id or "").strip():
            raise ValidationError("A user is required for Kindle delivery")
        if not is_kindle_email(to_email):
            raise ValidationError(f"Not a Kindle address: {to_email!r}")

        job = self._jobs.find_by_id(job_id)
        if job is None:
            raise NotFoundError(f"Job {job_id} not found")
        # the durable record decides; a cached COMPLETED is not enough
        if job.status != JobStatus.COMPLETED.value:
            raise InvalidStateError(f"Job {job_id} is {job.status}; only completed jobs can be delivered")

        delivery = self._deliveries.create(job_id=job.id, user_id=user_id.strip(), to_email=to_email.strip())
        try:
            self._queue.enqueue(
                KINDLE_DELIVERY_QUEUE,
                {"delivery_id": delivery.id},
                EnqueueOptions(attempts=1, idempotency_key=delivery.id),
            )
        except Exception as exc:
            delivery.status = DeliveryStatus.FAILED.value
            delivery.error_message = f"Could not enqueue delivery: {exc}"
            self._deliveries.save(delivery)
            raise
        logger.info("Queued Kindle delivery %s for job %s", delivery.id, job_id)
        return delivery

    def get_delivery(self, delivery_id: str) -> KindleDelivery:
        return self._deliveries.get(delivery_id)

    def get_delivery_history(self, user_id: str, page: int = 1, limit: int = 10) -> Page[KindleDelivery]:
        return self._deliveries.find_by_user(user_id, page, limit)


class DeliveryProcessor:
    def __init__(
        self,
        deliveries: DeliveryStore,
        jobs: JobStore,
        downloader: FileDownloader,
        transport: EmailTransport,
    ):
        self._deliveries = deliveries
        self._jobs = jobs
        self._downloader = downloader
        self._transport = transport

    def process(self, delivery_id: str) -> KindleDelivery:
        delivery = self._deliveries.get(delivery_id)
        if _is_delivery_terminal(delivery.status):
            logger.info("Delivery %s already %s; skipping", delivery_id, delivery.status)
            return delivery

        delivery.status = DeliveryStatus.PROCESSING.value
        delivery = self._deliveries.save(delivery)

        try:
            job = self._jobs.get(delivery.job_id)
            if job.status != JobStatus.COMPLETED.value or not job.public_url:
                raise InvalidStateError(f"Job {job.id} has no completed EPUB to deliver")
            data = self._downloader.download(job.public_url)
            file_name = job.public_url.rstrip("/").rsplit("/", 1)[-1] or f"{job.id}.epub"
            result = self._transport.send(delivery.to_email, None, data, file_name)
            if not result.success:
                raise TransportError(f"Email transport rejected delivery {delivery_id}")
        except Exception as exc:
            delivery.status = DeliveryStatus.FAILED.value
            delivery.error_message = str(exc) or exc.__class__.__name__
            self._deliveries.save(delivery)
            logger.error("Kindle delivery %s failed: %s", delivery_id, delivery.error_message)
            raise

        delivery.status = DeliveryStatus.COMPLETED.value
        delivery.sent_at = utcnow()
        delivery = self._deliveries.save(delivery)
        logger.info("Kindle delivery %s sent to %s (message %s)", delivery_id, delivery.to_email, result.id)
        return delivery
