"""Read-only comparison of the Job Store and the Status Cache.

Unlike reconciliation this writes nothing. It grades what it finds so a health
endpoint can report ``healthy``, ``degraded`` or ``unhealthy``.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from novel2epub.core.clock import utcnow
from novel2epub.models.job import EpubJob
from novel2epub.services.job_state import is_terminal
from novel2epub.services.jobs import JobStore
from novel2epub.services.status_cache import StatusCache, StatusCacheEntry

logger = logging.getLogger(__name__)

# more HIGH issues than this makes the system unhealthy
MAX_HIGH_ISSUES = 5


class IssueKind(str, enum.Enum):
    MISSING_CACHE = "MISSING_CACHE"
    STATUS_MISMATCH = "STATUS_MISMATCH"
    USER_ID_MISMATCH = "USER_ID_MISMATCH"


class Severity(str, enum.Enum):
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class HealthStatus(str, enum.Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


@dataclass(frozen=True)
class ConsistencyIssue:
    kind: IssueKind
    job_id: str
    severity: Severity
    detail: str
    store_value: str | None = None
    cache_value: str | None = None


@dataclass
class ConsistencyReport:
    checked_at: datetime
    total_jobs: int = 0
    missing_cache: int = 0
    status_mismatches: int = 0
    user_id_mismatches: int = 0
    issues: list[ConsistencyIssue] = field(default_factory=list)

    @property
    def inconsistent_jobs(self) -> int:
        return len({issue.job_id for issue in self.issues})

    @property
    def status(self) -> HealthStatus:
        if not self.issues:
            return HealthStatus.HEALTHY
        critical = sum(1 for i in self.issues if i.severity is Severity.CRITICAL)
        high = sum(1 for i in self.issues if i.severity is Severity.HIGH)
        if critical or high > MAX_HIGH_ISSUES:
            return HealthStatus.UNHEALTHY
        return HealthStatus.DEGRADED


def status_mismatch_severity(store_status: str, cache_status: str) -> Severity:
    # a reader would see a result the store does not have
    if is_terminal(cache_status) and not is_terminal(store_status):
        return Severity.CRITICAL
    # a reader would keep polling a job that already ended
    if is_terminal(store_status) and not is_terminal(cache_status):
        return Severity.HIGH
    return Severity.MEDIUM


class ConsistencyChecker:
    def __init__(self, jobs: JobStore, cache: StatusCache, window: timedelta = timedelta(days=7)):
        self._jobs = jobs
        self._cache = cache
        self._window = window

    def check(self, now: datetime | None = None) -> ConsistencyReport:
        now = now or utcnow()
        report = ConsistencyReport(checked_at=now)

        jobs = self._jobs.find_recent_active_jobs(now - self._window)
        cached = self._cache.batch_read([job.id for job in jobs])
        report.total_jobs = len(jobs)
        for job in jobs:
            self._compare(job, cached.get(job.id), report)

        logger.info(
            "Consistency check: %d jobs, %d inconsistent, status=%s",
            report.total_jobs,
            report.inconsistent_jobs,
            report.status.value,
        )
        return report

    def _compare(self, job: EpubJob, entry: StatusCacheEntry | None, report: ConsistencyReport) -> None:
        if entry is None:
            report.missing_cache += 1
            report.issues.append(
                ConsistencyIssue(
                    kind=IssueKind.MISSING_CACHE,
                    job_id=job.id,
                    severity=Severity.MEDIUM,
                    detail="job exists in the store but has no cached status",
                    store_value=job.status,
                )
            )
            return

        if entry.status != job.status:
            report.status_mismatches += 1
            report.issues.append(
                ConsistencyIssue(
                    kind=IssueKind.STATUS_MISMATCH,
                    job_id=job.id,
                    severity=status_mismatch_severity(job.status, entry.status),
                    detail=f"store={job.status} cache={entry.status}",
                    store_value=job.status,
                    cache_value=entry.status,
                )
            )

        if entry.user_id != job.user_id:
            report.user_id_mismatches += 1
            lost = job.user_id is not None and entry.user_id is None
            report.issues.append(
                ConsistencyIssue(
                    kind=IssueKind.USER_ID_MISMATCH,
                    job_id=job.id,
                    severity=Severity.CRITICAL if lost else Severity.HIGH,
                    detail=f"store user_id={job.user_id} cache user_id={entry.user_id}",
                    store_value=job.user_id,
                    cache_value=entry.user_id,
                )
            )
