from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session, sessionmaker

from novel2epub.core.errors import NotFoundError
from novel2epub.models.job import ACTIVE_STATUSES, TERMINAL_STATUSES, EpubJob, JobStatus, new_id
from novel2epub.services.pagination import Page, normalize_page


def _values(statuses: Iterable[str | JobStatus]) -> list[str]:
    return [JobStatus(s).value for s in statuses]


class JobStore:
    """Durable record of conversion jobs.

    Writes are whole-record overwrites; the state machine in ``job_state`` is
    responsible for the set-once fields.
    """

    def __init__(self, session_factory: sessionmaker[Session]):
        self._session_factory = session_factory

    def create(self, novel_id: str, user_id: str | None = None) -> EpubJob:
        job = EpubJob(id=new_id(), novel_id=novel_id, user_id=user_id, status=JobStatus.QUEUED.value)
        with self._session_factory() as db:
            db.add(job)
            db.commit()
            db.refresh(job)
        return job

    def find_by_id(self, job_id: str) -> EpubJob | None:
        with self._session_factory() as db:
            return db.get(EpubJob, job_id)

    def get(self, job_id: str) -> EpubJob:
        job = self.find_by_id(job_id)
        if job is None:
            raise NotFoundError(f"Job {job_id} not found")
        return job

    def save(self, job: EpubJob) -> EpubJob:
        with self._session_factory() as db:
            merged = db.merge(job)
            db.commit()
            db.refresh(merged)
            return merged

    def fail_if_active(self, job_id: str, error_message: str, now: datetime) -> EpubJob | None:
        """Move a QUEUED/PROCESSING job to FAILED in one conditional UPDATE.

        For callers that could not take the job lock. Returns None when the job
        had already ended, so a result recorded meanwhile is never overwritten.
        """
        with self._session_factory() as db:
            result = db.execute(
                update(EpubJob)
                .where(EpubJob.id == job_id, EpubJob.status.in_(_values(ACTIVE_STATUSES)))
                .values(
                    status=JobStatus.FAILED.value,
                    error_message=error_message,
                    started_at=func.coalesce(EpubJob.started_at, now),
                    completed_at=func.coalesce(EpubJob.completed_at, now),
                )
            )
            db.commit()
            if result.rowcount == 0:
                return None
            return db.get(EpubJob, job_id)

    def find_by_status(self, statuses: Iterable[str | JobStatus]) -> list[EpubJob]:
        with self._session_factory() as db:
            stmt = select(EpubJob).where(EpubJob.status.in_(_values(statuses))).order_by(EpubJob.created_at)
            return list(db.scalars(stmt).all())

    def find_recent_active_jobs(self, since: datetime) -> list[EpubJob]:
        with self._session_factory() as db:
            stmt = (
                select(EpubJob)
                .where(EpubJob.status.in_(_values(ACTIVE_STATUSES)))
                .where(EpubJob.created_at >= since)
                .order_by(EpubJob.created_at)
            )
            return list(db.scalars(stmt).all())

    def find_terminal_with_null_user(self, since: datetime) -> list[EpubJob]:
        with self._session_factory() as db:
            stmt = (
                select(EpubJob)
                .where(EpubJob.status.in_(_values(TERMINAL_STATUSES)))
                .where(EpubJob.user_id.is_(None))
                .where(EpubJob.completed_at >= since)
                .order_by(EpubJob.completed_at)
            )
            return list(db.scalars(stmt).all())

    def find_terminal_completed_between(self, start: datetime, end: datetime) -> list[EpubJob]:
        """Terminal jobs with ``start <= completed_at < end``."""
        with self._session_factory() as db:
            stmt = (
                select(EpubJob)
                .where(EpubJob.status.in_(_values(TERMINAL_STATUSES)))
                .where(EpubJob.completed_at >= start)
                .where(EpubJob.completed_at < end)
                .order_by(EpubJob.completed_at)
            )
            return list(db.scalars(stmt).all())

    def find_by_user(self, user_id: str, page: int = 1, limit: int = 10) -> Page[EpubJob]:
        page, limit = normalize_page(page, limit)
        with self._session_factory() as db:
            total = db.scalar(select(func.count()).select_from(EpubJob).where(EpubJob.user_id == user_id)) or 0
            stmt = (
                select(EpubJob)
                .where(EpubJob.user_id == user_id)
                .order_by(EpubJob.created_at.desc())
                .offset((page - 1) * limit)
                .limit(limit)
            )
            items = list(db.scalars(stmt).all())
        return Page(items=items, total=total, page=page, limit=limit)
