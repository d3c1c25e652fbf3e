from datetime import timedelta

import pytest

from novel2epub.core.clock import utcnow
from novel2epub.models.job import JobStatus
from novel2epub.services import job_state
from novel2epub.services.reconciliation import DiagnosticKind, ReconciliationService


@pytest.fixture
def reconciler(container):
    return ReconciliationService(container.jobs, container.cache)


def _kinds(report):
    return [d.kind for d in report.diagnostics]


def _processing(container, novel, user_id=None):
    job = container.jobs.create(novel.id, user_id)
    job_state.mark_processing(job)
    return container.jobs.save(job)


def test_stale_cache_status_converges_to_store(container, novel, reconciler):
    job = _processing(container, novel)
    container.cache.write(job.id, {"status": "QUEUED"})

    report = reconciler.run()

    assert container.cache.read(job.id).status == JobStatus.PROCESSING.value
    assert report.checked == 1
    assert report.status_fixed == 1
    assert report.diagnostics == []


def test_terminal_cache_is_not_downgraded(container, novel, reconciler):
    job = _processing(container, novel)
    container.cache.write(job.id, {"status": "COMPLETED", "public_url": "https://x/y.epub"})

    report = reconciler.run()

    entry = container.cache.read(job.id)
    assert entry.status == JobStatus.COMPLETED.value
    assert entry.public_url == "https://x/y.epub"
    assert _kinds(report) == [DiagnosticKind.TERMINAL_CACHE_AHEAD]


def test_missing_cache_entry_is_reseeded(container, novel, reconciler):
    job = container.jobs.create(novel.id, "U1")

    report = reconciler.run()

    entry = container.cache.read(job.id)
    assert entry.status == JobStatus.QUEUED.value
    assert entry.user_id == "U1"
    assert report.reseeded == 1


def test_user_loss_in_cache_is_reported_not_repaired(container, novel, reconciler, redis_client):
    job = _processing(container, novel, "U1")
    # simulate an entry written by a path that dropped the owner
    container.cache.write(job.id, {"status": "PROCESSING"})

    report = reconciler.run()

    assert _kinds(report) == [DiagnosticKind.USER_ID_LOST]
    assert container.cache.read(job.id).user_id is None
    assert container.jobs.get(job.id).user_id == "U1"


def _completed_without_user(container, novel):
    job = _processing(container, novel)
    job_state.mark_completed(job, "https://files.test/a.epub")
    return container.jobs.save(job)


def test_null_user_is_recovered_from_cache(container, novel, reconciler):
    job = _completed_without_user(container, novel)
    container.cache.write(job.id, {"status": "COMPLETED", "user_id": "U1"})

    report = reconciler.run()

    assert container.jobs.get(job.id).user_id == "U1"
    assert report.users_repaired == 1


def test_null_user_without_cache_entry_stays_null(container, novel, reconciler):
    job = _completed_without_user(container, novel)

    report = reconciler.run()

    assert container.jobs.get(job.id).user_id is None
    assert _kinds(report) == [DiagnosticKind.USER_ID_UNRECOVERABLE]


def test_null_user_outside_repair_window_is_ignored(container, novel, reconciler):
    job = _completed_without_user(container, novel)
    container.cache.write(job.id, {"status": "COMPLETED", "user_id": "U1"})

    report = reconciler.run(now=utcnow() + timedelta(days=8))

    assert container.jobs.get(job.id).user_id is None
    assert report.users_repaired == 0


def test_old_terminal_entries_are_removed(container, novel, reconciler):
    job = _completed_without_user(container, novel)
    container.cache.write(job.id, {"status": "COMPLETED", "user_id": "U1"})

    report = reconciler.run(now=utcnow() + timedelta(days=7, hours=12))

    assert container.cache.read(job.id) is None
    assert report.cache_removed == 1


def test_one_bad_job_does_not_stop_the_pass(container, novel, reconciler, monkeypatch):
    broken = _processing(container, novel)
    healthy = _processing(container, novel)
    container.cache.write(broken.id, {"status": "QUEUED"})
    container.cache.write(healthy.id, {"status": "QUEUED"})

    original = container.cache.write_job

    def flaky_write_job(job, ttl=None):
        if job.id == broken.id:
            raise ConnectionError("redis went away")
        return original(job, ttl)

    monkeypatch.setattr(container.cache, "write_job", flaky_write_job)

    report = reconciler.run()

    assert report.errors == 1
    assert report.status_fixed == 1
    assert container.cache.read(healthy.id).status == JobStatus.PROCESSING.value


def test_run_never_raises(container, reconciler, monkeypatch):
    def boom(*args, **kwargs):
        raise RuntimeError("database down")

    monkeypatch.setattr(container.jobs, "find_by_status", boom)
    monkeypatch.setattr(container.jobs, "find_terminal_with_null_user", boom)
    monkeypatch.setattr(container.jobs, "find_terminal_completed_between", boom)

    report = reconciler.run()
    assert report.errors == 3


def _completed_at(container, novel, when):
    job = _processing(container, novel, "U1")
    job_state.mark_completed(job, "https://files.test/a.epub", now=when)
    job = container.jobs.save(job)
    container.cache.write_job(job)
    return job


def test_cleanup_only_loads_jobs_just_past_retention(container, novel, reconciler, monkeypatch):
    now = utcnow()
    recent = _completed_at(container, novel, now - timedelta(days=7, hours=6))
    ancient = _completed_at(container, novel, now - timedelta(days=90))
    fresh = _completed_at(container, novel, now - timedelta(days=1))

    loaded = []
    real_query = container.jobs.find_terminal_completed_between

    def recording_query(start, end):
        jobs = real_query(start, end)
        loaded.extend(job.id for job in jobs)
        return jobs

    def no_full_scan(statuses):
        assert set(statuses).isdisjoint({JobStatus.COMPLETED, JobStatus.FAILED, "COMPLETED", "FAILED"})
        return []

    monkeypatch.setattr(container.jobs, "find_terminal_completed_between", recording_query)
    monkeypatch.setattr(container.jobs, "find_by_status", no_full_scan)

    report = reconciler.run(now=now)

    assert loaded == [recent.id]
    assert report.cache_removed == 1
    assert report.errors == 0
    assert container.cache.read(recent.id) is None
    # outside the window: left for the cache TTL to expire
    assert container.cache.read(ancient.id) is not None
    assert container.cache.read(fresh.id) is not None


def test_completed_between_bounds_are_half_open(container, novel):
    now = utcnow()
    at_start = _completed_at(container, novel, now - timedelta(days=2))
    _completed_at(container, novel, now - timedelta(days=1))
    _completed_at(container, novel, now - timedelta(days=30))
    container.jobs.create(novel.id, "U1")

    found = container.jobs.find_terminal_completed_between(now - timedelta(days=2), now - timedelta(days=1))

    assert [job.id for job in found] == [at_start.id]


def test_correction_uses_the_current_store_row(container, novel, reconciler, monkeypatch):
    job = container.jobs.create(novel.id, "U1")
    container.cache.write_job(job)
    batch = container.jobs.find_by_status([JobStatus.QUEUED, JobStatus.PROCESSING])

    # a worker starts the job after the batch was loaded
    started = container.jobs.get(job.id)
    job_state.mark_processing(started)
    started = container.jobs.save(started)
    container.cache.write_job(started)

    monkeypatch.setattr(container.jobs, "find_by_status", lambda statuses: batch)

    report = reconciler.run()

    assert batch[0].status == JobStatus.QUEUED.value
    assert container.cache.read(job.id).status == JobStatus.PROCESSING.value
    assert report.status_fixed == 0
