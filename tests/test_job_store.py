from datetime import timedelta

import pytest

from novel2epub.core.clock import utcnow
from novel2epub.core.errors import NotFoundError, ValidationError
from novel2epub.models.job import JobStatus
from novel2epub.services import job_state
from novel2epub.services.jobs import JobStore
from novel2epub.services.novels import NovelStore


@pytest.fixture
def novels(session_factory):
    return NovelStore(session_factory)


@pytest.fixture
def jobs(session_factory):
    return JobStore(session_factory)


@pytest.fixture
def novel_id(novels):
    return novels.upsert("narou", "n0001aa").id


def test_create_and_find(jobs, novel_id):
    job = jobs.create(novel_id, user_id="U1")
    assert job.status == JobStatus.QUEUED.value
    assert len(job.id) == 36

    found = jobs.find_by_id(job.id)
    assert found is not None
    assert found.user_id == "U1"
    assert found.created_at is not None


def test_get_missing_raises(jobs):
    with pytest.raises(NotFoundError):
        jobs.get("00000000-0000-0000-0000-000000000000")


def test_save_is_whole_record(jobs, novel_id):
    job = jobs.create(novel_id)
    job_state.mark_processing(job)
    jobs.save(job)

    stored = jobs.get(job.id)
    assert stored.status == JobStatus.PROCESSING.value
    assert stored.started_at is not None


def test_find_by_status_and_recent_active(jobs, novel_id):
    queued = jobs.create(novel_id)
    running = jobs.create(novel_id)
    job_state.mark_processing(running)
    jobs.save(running)
    done = jobs.create(novel_id)
    job_state.mark_processing(done)
    job_state.mark_completed(done, "https://files.test/x.epub")
    jobs.save(done)

    active_ids = {j.id for j in jobs.find_by_status({JobStatus.QUEUED, JobStatus.PROCESSING})}
    assert active_ids == {queued.id, running.id}

    recent = {j.id for j in jobs.find_recent_active_jobs(utcnow() - timedelta(hours=1))}
    assert recent == {queued.id, running.id}
    assert jobs.find_recent_active_jobs(utcnow() + timedelta(hours=1)) == []


def test_find_terminal_with_null_user(jobs, novel_id):
    orphan = jobs.create(novel_id)
    job_state.mark_processing(orphan)
    job_state.mark_failed(orphan, "boom")
    jobs.save(orphan)
    owned = jobs.create(novel_id, user_id="U1")
    job_state.mark_processing(owned)
    job_state.mark_failed(owned, "boom")
    jobs.save(owned)

    found = jobs.find_terminal_with_null_user(utcnow() - timedelta(days=7))
    assert [j.id for j in found] == [orphan.id]


def test_find_by_user_paginates(jobs, novel_id):
    for _ in range(5):
        jobs.create(novel_id, user_id="U1")
    jobs.create(novel_id, user_id="U2")

    page = jobs.find_by_user("U1", page=2, limit=2)
    assert page.total == 5
    assert page.total_pages == 3
    assert len(page.items) == 2
    assert all(j.user_id == "U1" for j in page.items)


def test_novel_upsert_is_keyed_by_source(novels):
    first = novels.upsert("Narou", "n0001aa")
    again = novels.upsert("narou", " n0001aa ")
    assert first.id == again.id
    assert first.source == "narou"

    with pytest.raises(ValidationError):
        novels.upsert("", "n0001aa")


def test_novel_metadata_update(novels):
    novel = novels.upsert("kakuyomu", "1177354054886293774")
    updated = novels.update_metadata(novel.id, title="Title", author="Someone", description=None)
    assert updated.title == "Title"
    assert updated.author == "Someone"
    assert updated.description is None


def test_fail_if_active_fails_running_job(jobs, novel_id):
    job = jobs.create(novel_id)
    job_state.mark_processing(job)
    jobs.save(job)
    now = utcnow()

    failed = jobs.fail_if_active(job.id, "lock stuck", now)

    assert failed is not None
    assert failed.status == JobStatus.FAILED.value
    assert failed.error_message == "lock stuck"
    assert failed.started_at == job.started_at
    assert failed.completed_at == now


def test_fail_if_active_leaves_finished_job_alone(jobs, novel_id):
    job = jobs.create(novel_id)
    job_state.mark_processing(job)
    job_state.mark_completed(job, "https://files.test/x.epub")
    jobs.save(job)

    assert jobs.fail_if_active(job.id, "lock stuck", utcnow()) is None

    stored = jobs.get(job.id)
    assert stored.status == JobStatus.COMPLETED.value
    assert stored.public_url == "https://files.test/x.epub"
    assert stored.error_message is None
