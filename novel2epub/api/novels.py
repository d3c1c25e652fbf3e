from dataclasses import asdict

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from novel2epub.bootstrap import Container, get_container
from novel2epub.services.preview import NovelPreview

router = APIRouter(prefix="/novels", tags=["novels"])


class NovelCreateRequest(BaseModel):
    source: str  # narou|kakuyomu
    source_id: str


class NovelResponse(BaseModel):
    ok: bool
    novel_id: str
    source: str
    source_id: str
    title: str | None
    author: str | None


@router.post("", response_model=NovelResponse)
def register_novel(req: NovelCreateRequest, container: Container = Depends(get_container)) -> NovelResponse:
    novel = container.conversion.register_novel(req.source, req.source_id)
    return NovelResponse(
        ok=True,
        novel_id=novel.id,
        source=novel.source,
        source_id=novel.source_id,
        title=novel.title,
        author=novel.author,
    )


class NovelPreviewResponse(BaseModel):
    ok: bool
    novel_id: str
    status: str  # QUEUED|PROCESSING|COMPLETED|FAILED
    source: str
    source_id: str
    title: str | None = None
    author: str | None = None
    description: str | None = None
    chapter_count: int | None = None
    error_message: str | None = None
    origin: str  # cache|store

    @classmethod
    def from_preview(cls, preview: NovelPreview) -> "NovelPreviewResponse":
        return cls(ok=True, **asdict(preview))


@router.post("/{novel_id}/preview", response_model=NovelPreviewResponse, status_code=202)
def request_preview(novel_id: str, container: Container = Depends(get_container)) -> NovelPreviewResponse:
    return NovelPreviewResponse.from_preview(container.preview.request_preview(novel_id))


@router.get("/{novel_id}/preview", response_model=NovelPreviewResponse)
def get_preview(novel_id: str, container: Container = Depends(get_container)) -> NovelPreviewResponse:
    return NovelPreviewResponse.from_preview(container.preview.get_preview(novel_id))
