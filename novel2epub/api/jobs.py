from datetime import datetime

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from novel2epub.bootstrap import Container, get_container

router = APIRouter(prefix="/jobs", tags=["jobs"])


class JobCreateRequest(BaseModel):
    novel_id: str
    user_id: str | None = None


class JobCreateResponse(BaseModel):
    ok: bool
    job_id: str


@router.post("", response_model=JobCreateResponse, status_code=202)
def create_job(req: JobCreateRequest, container: Container = Depends(get_container)) -> JobCreateResponse:
    job_id = container.conversion.submit(req.novel_id, req.user_id)
    return JobCreateResponse(ok=True, job_id=job_id)


class JobStatusResponse(BaseModel):
    ok: bool
    job_id: str
    status: str
    started_at: datetime | None
    completed_at: datetime | None
    public_url: str | None
    error_message: str | None


@router.get("/{job_id}", response_model=JobStatusResponse)
def get_job_status(job_id: str, container: Container = Depends(get_container)) -> JobStatusResponse:
    snap = container.conversion.get_status(job_id)
    return JobStatusResponse(
        ok=True,
        job_id=snap.job_id,
        status=snap.status,
        started_at=snap.started_at,
        completed_at=snap.completed_at,
        public_url=snap.public_url,
        error_message=snap.error_message,
    )


class DownloadLinkResponse(BaseModel):
    ok: bool
    job_id: str
    ready: bool
    status: str
    public_url: str | None


@router.get("/{job_id}/download", response_model=DownloadLinkResponse)
def get_download_link(job_id: str, container: Container = Depends(get_container)) -> DownloadLinkResponse:
    link = container.conversion.get_download_link(job_id)
    return DownloadLinkResponse(
        ok=True, job_id=link.job_id, ready=link.ready, status=link.status, public_url=link.public_url
    )
