"""Celery-backed work queue with idempotent submission.

Queue names map to Celery task objects (use task.apply_async, not
celery_app.send_task, so eager mode works in tests). The idempotency key is
claimed in Redis before publishing; a duplicate enqueue returns the task id
that already owns the key.
"""

from __future__ import annotations

import enum
import logging
import uuid
from dataclasses import asdict, dataclass, field
from typing import Any

import redis
from celery import Task
from celery.result import AsyncResult

logger = logging.getLogger(__name__)


class TaskState(str, enum.Enum):
    WAITING = "waiting"
    ACTIVE = "active"
    DELAYED = "delayed"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


# Celery state -> queue-level state
_CELERY_STATES = {
    "PENDING": TaskState.WAITING,
    "RECEIVED": TaskState.WAITING,
    "STARTED": TaskState.ACTIVE,
    "RETRY": TaskState.DELAYED,
    "SUCCESS": TaskState.COMPLETED,
    "FAILURE": TaskState.FAILED,
    "REVOKED": TaskState.CANCELLED,
}


@dataclass(frozen=True)
class Backoff:
    type: str = "exponential"  # exponential|fixed
    delay: float = 5.0

    def delay_for(self, retries: int) -> float:
        if self.type == "fixed":
            return self.delay
        return self.delay * (2 ** max(0, retries))

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> Backoff:
        if not data:
            return cls()
        return cls(type=str(data.get("type") or "exponential"), delay=float(data.get("delay") or 0.0))


@dataclass(frozen=True)
class EnqueueOptions:
    attempts: int = 3
    backoff: Backoff = field(default_factory=Backoff)
    idempotency_key: str | None = None
    countdown: float = 0


class WorkQueue:
    def __init__(self, client: redis.Redis, tasks: dict[str, Task], idempotency_ttl_sec: int = 24 * 60 * 60):
        self._redis = client
        self._tasks = dict(tasks)
        self._idempotency_ttl_sec = idempotency_ttl_sec

    def _task(self, queue_name: str) -> Task:
        task = self._tasks.get(queue_name)
        if task is None:
            raise ValueError(f"Unknown queue: {queue_name}")
        return task

    def _idempotency_key(self, queue_name: str, key: str) -> str:
        return f"queue:{queue_name}:idempotency:{key}"

    def enqueue(self, queue_name: str, payload: dict[str, Any], options: EnqueueOptions | None = None) -> str:
        options = options or EnqueueOptions()
        task = self._task(queue_name)
        task_id = options.idempotency_key or str(uuid.uuid4())

        if options.idempotency_key:
            claim_key = self._idempotency_key(queue_name, options.idempotency_key)
            claimed = self._redis.set(claim_key, task_id, nx=True, ex=self._idempotency_ttl_sec)
            if not claimed:
                existing = self._redis.get(claim_key)
                if isinstance(existing, bytes):
                    existing = existing.decode("utf-8")
                logger.info("Duplicate enqueue on %s collapsed into task %s", queue_name, existing or task_id)
                return existing or task_id

        kwargs = {
            **(payload or {}),
            "attempts": max(1, int(options.attempts)),
            "backoff": asdict(options.backoff),
        }
        try:
            result = task.apply_async(kwargs=kwargs, task_id=task_id, countdown=options.countdown or None)
        except Exception:
            if options.idempotency_key:
                self._redis.delete(self._idempotency_key(queue_name, options.idempotency_key))
            raise
        logger.info("Enqueued %s task %s", queue_name, result.id)
        return result.id

    def status(self, queue_name: str, task_id: str) -> TaskState:
        task = self._task(queue_name)
        state = AsyncResult(task_id, app=task.app).state
        return _CELERY_STATES.get(state, TaskState.WAITING)

    def cancel(self, queue_name: str, task_id: str) -> None:
        """Revoke a task that has not started; a running task is left alone."""
        task = self._task(queue_name)
        task.app.control.revoke(task_id, terminate=False)
        self._redis.delete(self._idempotency_key(queue_name, task_id))
        logger.info("Cancelled %s task %s", queue_name, task_id)
