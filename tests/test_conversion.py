from datetime import timedelta

import pytest

from conftest import FakeTask
from novel2epub.core.clock import utcnow
from novel2epub.core.errors import NotFoundError, ValidationError
from novel2epub.models.job import JobStatus
from novel2epub.services import job_state


def test_submit_seeds_cache_and_enqueues_once(container, novel, fakes):
    job_id = container.conversion.submit(novel.id, "U1")

    entry = container.cache.read(job_id)
    assert entry.status == JobStatus.QUEUED.value
    assert entry.user_id == "U1"

    calls = fakes.tasks["epub"].calls
    assert len(calls) == 1
    assert calls[0]["task_id"] == job_id
    assert calls[0]["kwargs"]["job_id"] == job_id
    assert calls[0]["kwargs"]["novel_id"] == novel.id
    assert calls[0]["kwargs"]["attempts"] == container.settings.queue_attempts


def test_submit_blank_user_is_anonymous(container, novel):
    job_id = container.conversion.submit(novel.id, "   ")
    assert container.jobs.get(job_id).user_id is None


def test_submit_unknown_novel(container):
    with pytest.raises(NotFoundError):
        container.conversion.submit("missing-novel")


def test_submit_marks_job_failed_when_enqueue_fails(container, novel):
    container.queue._tasks["epub"] = FakeTask(fail=True)

    with pytest.raises(ConnectionError):
        container.conversion.submit(novel.id, "U1")

    [job] = container.jobs.find_by_user("U1").items
    assert job.status == JobStatus.FAILED.value
    assert "enqueue" in job.error_message
    assert container.cache.read(job.id).status == JobStatus.FAILED.value


def test_get_status_prefers_cache(container, novel):
    job_id = container.conversion.submit(novel.id)
    snap = container.conversion.get_status(job_id)
    assert snap.source == "cache"
    assert snap.status == JobStatus.QUEUED.value


def test_get_status_falls_back_to_store_and_reseeds(container, novel):
    job_id = container.conversion.submit(novel.id)
    container.cache.remove(job_id)

    snap = container.conversion.get_status(job_id)

    assert snap.source == "store"
    assert container.cache.read(job_id) is not None


def test_stale_non_terminal_cache_is_refreshed_from_store(container, novel, monkeypatch):
    job_id = container.conversion.submit(novel.id)
    job = container.jobs.get(job_id)
    job_state.mark_processing(job)
    container.jobs.save(job)

    later = utcnow() + timedelta(minutes=10)
    monkeypatch.setattr("novel2epub.services.conversion.utcnow", lambda: later)

    snap = container.conversion.get_status(job_id)

    assert snap.source == "store"
    assert snap.status == JobStatus.PROCESSING.value
    assert container.cache.read(job_id).status == JobStatus.PROCESSING.value


def test_invalid_job_id(container):
    with pytest.raises(ValidationError):
        container.conversion.get_status("not-a-uuid")


def test_download_link_only_when_completed(container, novel):
    job_id = container.conversion.submit(novel.id)
    link = container.conversion.get_download_link(job_id)
    assert link.ready is False
    assert link.public_url is None

    container.processor.process(job_id, novel.id)

    link = container.conversion.get_download_link(job_id)
    assert link.ready is True
    assert link.public_url.startswith("https://files.test/")


def test_register_novel(container):
    novel = container.conversion.register_novel("Kakuyomu", "1177354054886293774")
    assert novel.source == "kakuyomu"
    assert container.conversion.register_novel("kakuyomu", "1177354054886293774").id == novel.id
