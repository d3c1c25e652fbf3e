"""Periodic pass that repairs divergence between the Job Store and the Status Cache.

The Job Store is authoritative for status. The cache is only trusted for the
owning-user association, which it never drops, so it can restore a ``user_id``
lost from a job row. Nothing here raises: per-job failures are logged and
counted in the report.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from novel2epub.core.clock import utcnow
from novel2epub.models.job import ACTIVE_STATUSES, EpubJob
from novel2epub.services.job_state import is_terminal
from novel2epub.services.jobs import JobStore
from novel2epub.services.status_cache import StatusCache, StatusCacheEntry

logger = logging.getLogger(__name__)


class DiagnosticKind(str, enum.Enum):
    USER_ID_LOST = "USER_ID_LOST"
    TERMINAL_CACHE_AHEAD = "TERMINAL_CACHE_AHEAD"
    USER_ID_UNRECOVERABLE = "USER_ID_UNRECOVERABLE"


@dataclass(frozen=True)
class Diagnostic:
    kind: DiagnosticKind
    job_id: str
    detail: str = ""


@dataclass
class ReconciliationReport:
    checked: int = 0
    reseeded: int = 0
    status_fixed: int = 0
    users_repaired: int = 0
    cache_removed: int = 0
    swept: int = 0
    errors: int = 0
    diagnostics: list[Diagnostic] = field(default_factory=list)

    def as_dict(self) -> dict:
        return {
            "checked": self.checked,
            "reseeded": self.reseeded,
            "status_fixed": self.status_fixed,
            "users_repaired": self.users_repaired,
            "cache_removed": self.cache_removed,
            "swept": self.swept,
            "errors": self.errors,
            "diagnostics": [
                {"kind": d.kind.value, "job_id": d.job_id, "detail": d.detail} for d in self.diagnostics
            ],
        }


class ReconciliationService:
    def __init__(
        self,
        jobs: JobStore,
        cache: StatusCache,
        recent_window: timedelta | None = None,
        user_repair_window: timedelta = timedelta(days=7),
        cache_retention: timedelta = timedelta(days=7),
        cleanup_window: timedelta = timedelta(days=1),
    ):
        self._jobs = jobs
        self._cache = cache
        self._recent_window = recent_window
        self._user_repair_window = user_repair_window
        self._cache_retention = cache_retention
        self._cleanup_window = cleanup_window

    def run(self, now: datetime | None = None) -> ReconciliationReport:
        now = now or utcnow()
        report = ReconciliationReport()

        self._reconcile_active(now, report)
        self._repair_users(now, report)
        self._clean_cache(now, report)

        logger.info(
            "Reconciliation: checked=%d reseeded=%d fixed=%d users_repaired=%d removed=%d swept=%d errors=%d diagnostics=%d",
            report.checked,
            report.reseeded,
            report.status_fixed,
            report.users_repaired,
            report.cache_removed,
            report.swept,
            report.errors,
            len(report.diagnostics),
        )
        return report

    def _diagnose(self, report: ReconciliationReport, kind: DiagnosticKind, job_id: str, detail: str) -> None:
        report.diagnostics.append(Diagnostic(kind=kind, job_id=job_id, detail=detail))
        logger.warning("%s job=%s %s", kind.value, job_id, detail)

    def _reconcile_active(self, now: datetime, report: ReconciliationReport) -> None:
        try:
            if self._recent_window is None:
                active = self._jobs.find_by_status(ACTIVE_STATUSES)
            else:
                active = self._jobs.find_recent_active_jobs(now - self._recent_window)
            cached = self._cache.batch_read([job.id for job in active])
        except Exception:
            logger.exception("Could not load active jobs for reconciliation")
            report.errors += 1
            return

        for job in active:
            report.checked += 1
            try:
                self._reconcile_job(job, cached.get(job.id), report)
            except Exception:
                logger.exception("Reconciliation failed for job %s", job.id)
                report.errors += 1

    def _reconcile_job(self, job: EpubJob, entry: StatusCacheEntry | None, report: ReconciliationReport) -> None:
        if entry is None:
            current = self._jobs.find_by_id(job.id)
            if current is not None and self._cache.write_job(current):
                report.reseeded += 1
                logger.info("Reseeded cached status for job %s (%s)", current.id, current.status)
            return

        if job.user_id and entry.user_id is None:
            self._diagnose(
                report, DiagnosticKind.USER_ID_LOST, job.id, f"store user_id={job.user_id}, cache user_id=None"
            )

        if entry.status == job.status:
            return
        if is_terminal(entry.status) and not is_terminal(job.status):
            self._diagnose(
                report,
                DiagnosticKind.TERMINAL_CACHE_AHEAD,
                job.id,
                f"cache={entry.status} store={job.status}",
            )
            return

        # the batch copy may predate a worker transition
        current = self._jobs.find_by_id(job.id)
        if current is None or current.status == entry.status:
            return
        if self._cache.write_job(current):
            report.status_fixed += 1
            logger.info("Corrected cached status for job %s: %s -> %s", current.id, entry.status, current.status)

    def _repair_users(self, now: datetime, report: ReconciliationReport) -> None:
        try:
            orphans = self._jobs.find_terminal_with_null_user(now - self._user_repair_window)
            cached = self._cache.batch_read([job.id for job in orphans])
        except Exception:
            logger.exception("Could not load jobs missing a user")
            report.errors += 1
            return

        for job in orphans:
            try:
                entry = cached.get(job.id)
                if entry is None or not entry.user_id:
                    self._diagnose(
                        report,
                        DiagnosticKind.USER_ID_UNRECOVERABLE,
                        job.id,
                        "no cached user association" if entry is None else "cached entry has no user_id",
                    )
                    continue
                job.user_id = entry.user_id
                self._jobs.save(job)
                report.users_repaired += 1
                logger.info("Restored user_id for job %s from the status cache", job.id)
            except Exception:
                logger.exception("User repair failed for job %s", job.id)
                report.errors += 1

    def _clean_cache(self, now: datetime, report: ReconciliationReport) -> None:
        # only jobs that crossed the retention cutoff recently; older entries have expired by TTL
        cutoff = now - self._cache_retention
        try:
            for job in self._jobs.find_terminal_completed_between(cutoff - self._cleanup_window, cutoff):
                if self._cache.read(job.id) is not None:
                    self._cache.remove(job.id)
                    report.cache_removed += 1
            report.swept = self._cache.sweep_expired()
        except Exception:
            logger.exception("Status cache cleanup failed")
            report.errors += 1
