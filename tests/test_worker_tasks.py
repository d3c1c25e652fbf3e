import pytest

from novel2epub.bootstrap import set_container
from novel2epub.core.errors import UnsupportedSourceError, UpstreamFetchError
from novel2epub.models.job import JobStatus
from novel2epub.models.novel import Novel
from novel2epub.worker.tasks import preview_novel, process_delivery, process_epub_job, reconcile_job_status


@pytest.fixture(autouse=True)
def installed(container):
    set_container(container)
    try:
        yield container
    finally:
        set_container(None)


def _run(job_id, novel_id, attempts=3):
    return process_epub_job.apply(
        kwargs={
            "job_id": job_id,
            "novel_id": novel_id,
            "attempts": attempts,
            "backoff": {"type": "exponential", "delay": 0.01},
        }
    )


def test_process_job_task_completes(container, novel):
    job_id = container.conversion.submit(novel.id, "U1")

    result = _run(job_id, novel.id)

    assert result.successful()
    assert result.result["outcome"] == "completed"
    assert container.jobs.get(job_id).status == JobStatus.COMPLETED.value


def test_retryable_failure_uses_every_attempt_then_fails(container, novel, strategies):
    strategies["narou"].fail_on = {2}
    job_id = container.conversion.submit(novel.id)

    result = _run(job_id, novel.id, attempts=3)

    assert result.failed()
    assert isinstance(result.result, UpstreamFetchError)
    assert len(strategies["narou"].index_calls) == 3
    job = container.jobs.get(job_id)
    assert job.status == JobStatus.FAILED.value
    assert "chapter 2/3" in job.error_message


def test_non_retryable_failure_is_not_retried(container, session_factory):
    with session_factory() as db:
        novel = Novel(source="legacy", source_id="x1")
        db.add(novel)
        db.commit()
        db.refresh(novel)
    job = container.jobs.create(novel.id)

    result = _run(job.id, novel.id)

    assert result.failed()
    assert isinstance(result.result, UnsupportedSourceError)
    assert container.jobs.get(job.id).status == JobStatus.FAILED.value


def test_delivery_task(container, novel, fakes):
    job_id = container.conversion.submit(novel.id, "U1")
    container.processor.process(job_id, novel.id)
    delivery = container.kindle.send_to_kindle(job_id, "U1", "me@kindle.com")

    result = process_delivery.apply(kwargs={"delivery_id": delivery.id, "attempts": 1, "backoff": {}})

    assert result.successful()
    assert result.result["status"] == "COMPLETED"
    assert len(fakes.transport.sent) == 1


def test_reconcile_task_reports(container, novel):
    container.jobs.create(novel.id, "U1")

    result = reconcile_job_status.apply()

    assert result.successful()
    assert result.result["ok"] is True
    assert result.result["reseeded"] == 1


def _preview(novel_id, attempts=2):
    return preview_novel.apply(
        kwargs={"novel_id": novel_id, "attempts": attempts, "backoff": {"type": "exponential", "delay": 0.01}}
    )


def test_preview_task_caches_metadata(container, novel):
    container.preview.request_preview(novel.id)

    result = _preview(novel.id)

    assert result.successful()
    assert result.result == {"ok": True, "novel_id": novel.id, "status": "COMPLETED", "title": "Test Novel"}
    assert container.novels.get(novel.id).author == "Author"


def test_preview_task_retries_then_fails(container, novel, strategies):
    strategies["narou"].fail_index = True
    container.preview.request_preview(novel.id)

    result = _preview(novel.id, attempts=2)

    assert result.failed()
    assert isinstance(result.result, UpstreamFetchError)
    assert len(strategies["narou"].index_calls) == 2
    assert container.preview.get_preview(novel.id).status == JobStatus.FAILED.value
