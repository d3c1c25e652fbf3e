"""Redis projection of job status.

Entries live under ``queue:<namespace>:job:<job_id>:status`` as JSON with a
per-status TTL. Once an entry is COMPLETED or FAILED it is protected: a write
carrying QUEUED or PROCESSING is rejected, so a slow out-of-order PROCESSING
update cannot hide a finished result from readers.
"""

from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass, field, fields
from datetime import datetime
from typing import Any

import redis

from novel2epub.core.clock import utcnow
from novel2epub.models.job import EpubJob, JobStatus
from novel2epub.services.job_state import is_terminal

logger = logging.getLogger(__name__)

_DATETIME_FIELDS = ("started_at", "completed_at", "updated_at")
# Set-once mirrors of the job timestamps.
_SET_ONCE_FIELDS = ("started_at", "completed_at")
# A None never erases these once the entry is terminal.
_TERMINAL_STICKY_FIELDS = ("public_url", "error_message")

DEFAULT_TTL_BY_STATUS = {
    JobStatus.QUEUED.value: 60 * 60,
    JobStatus.PROCESSING.value: 60 * 60,
    JobStatus.COMPLETED.value: 24 * 60 * 60,
    JobStatus.FAILED.value: 7 * 24 * 60 * 60,
}


@dataclass
class StatusCacheEntry:
    job_id: str
    status: str
    updated_at: datetime
    started_at: datetime | None = None
    completed_at: datetime | None = None
    public_url: str | None = None
    error_message: str | None = None
    user_id: str | None = None
    payload: dict[str, Any] = field(default_factory=dict)

    def to_json(self) -> str:
        data = asdict(self)
        for name in _DATETIME_FIELDS:
            value = data.get(name)
            data[name] = value.isoformat() if value else None
        return json.dumps(data, ensure_ascii=False)

    @classmethod
    def from_json(cls, raw: str) -> StatusCacheEntry:
        data = json.loads(raw)
        for name in _DATETIME_FIELDS:
            value = data.get(name)
            data[name] = datetime.fromisoformat(value) if value else None
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})


_UPDATABLE_FIELDS = frozenset(f.name for f in fields(StatusCacheEntry)) - {"job_id", "updated_at"}


class StatusCache:
    def __init__(
        self,
        client: redis.Redis,
        namespace: str = "epub",
        ttl_by_status: dict[str, int] | None = None,
    ):
        self._redis = client
        self._namespace = namespace
        self._ttl_by_status = {**DEFAULT_TTL_BY_STATUS, **(ttl_by_status or {})}

    def key(self, job_id: str) -> str:
        return f"queue:{self._namespace}:job:{job_id}:status"

    @staticmethod
    def is_terminal(status: str | JobStatus | None) -> bool:
        return is_terminal(status)

    def ttl_for(self, status: str) -> int:
        return self._ttl_by_status.get(status, 60 * 60)

    def read(self, job_id: str) -> StatusCacheEntry | None:
        return self._decode(job_id, self._redis.get(self.key(job_id)))

    def batch_read(self, job_ids: list[str]) -> dict[str, StatusCacheEntry]:
        if not job_ids:
            return {}
        raw_values = self._redis.mget([self.key(job_id) for job_id in job_ids])
        result: dict[str, StatusCacheEntry] = {}
        for job_id, raw in zip(job_ids, raw_values):
            entry = self._decode(job_id, raw)
            if entry is not None:
                result[job_id] = entry
        return result

    def remove(self, job_id: str) -> None:
        deleted = self._redis.delete(self.key(job_id))
        if deleted:
            logger.info("Removed cached status for job %s", job_id)

    def write(self, job_id: str, update: dict[str, Any], ttl: int | None = None) -> bool:
        """Merge ``update`` into the cached entry.

        Returns False when the write was rejected by terminal-state protection.
        The read-merge-write runs under WATCH so concurrent writers retry
        instead of interleaving.
        """
        update = self._normalize(update)
        key = self.key(job_id)

        def _txn(pipe: redis.client.Pipeline) -> bool:
            current = self._decode(job_id, pipe.get(key))
            merged = self._merge(job_id, current, update)
            if merged is None:
                return False
            pipe.multi()
            pipe.set(key, merged.to_json(), ex=ttl or self.ttl_for(merged.status))
            return True

        written = self._redis.transaction(_txn, key, value_from_callable=True)
        if written:
            logger.debug("Cached status for job %s: %s", job_id, update.get("status"))
        return written

    def write_job(self, job: EpubJob, ttl: int | None = None) -> bool:
        return self.write(
            job.id,
            {
                "status": job.status,
                "started_at": job.started_at,
                "completed_at": job.completed_at,
                "public_url": job.public_url,
                "error_message": job.error_message,
                "user_id": job.user_id,
            },
            ttl=ttl,
        )

    def sweep_expired(self) -> int:
        """Drop entries that lost their TTL and count entries that expired mid-scan."""
        count = 0
        for key in self._redis.scan_iter(match=self.key("*")):
            ttl = self._redis.ttl(key)
            if ttl == -2:
                count += 1
            elif ttl == -1:
                self._redis.delete(key)
                count += 1
        if count:
            logger.info("Swept %d expired status entries from %s", count, self._namespace)
        return count

    def _normalize(self, update: dict[str, Any]) -> dict[str, Any]:
        unknown = set(update) - _UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown status cache fields: {sorted(unknown)}")
        normalized = dict(update)
        if normalized.get("status") is not None:
            normalized["status"] = JobStatus(normalized["status"]).value
        return normalized

    def _merge(
        self,
        job_id: str,
        current: StatusCacheEntry | None,
        update: dict[str, Any],
    ) -> StatusCacheEntry | None:
        incoming = update.get("status")
        if current is not None and is_terminal(current.status) and incoming and not is_terminal(incoming):
            logger.warning(
                "Rejected status regression for job %s (%s -> %s)", job_id, current.status, incoming
            )
            return None

        entry = current or StatusCacheEntry(
            job_id=job_id,
            status=incoming or JobStatus.QUEUED.value,
            updated_at=utcnow(),
        )
        terminal = is_terminal(entry.status)
        for name, value in update.items():
            existing = getattr(entry, name)
            if name == "payload":
                entry.payload = {**entry.payload, **(value or {})}
                continue
            if name in _SET_ONCE_FIELDS and existing is not None:
                continue
            if value is None and existing is not None:
                if name == "user_id":
                    continue
                if terminal and name in _TERMINAL_STICKY_FIELDS:
                    continue
            setattr(entry, name, value)
        entry.updated_at = utcnow()
        return entry

    def _decode(self, job_id: str, raw: str | bytes | None) -> StatusCacheEntry | None:
        if raw is None:
            return None
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")
        try:
            return StatusCacheEntry.from_json(raw)
        except (ValueError, TypeError) as exc:
            logger.warning("Unreadable cached status for job %s: %s", job_id, exc)
            return None
