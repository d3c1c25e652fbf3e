from datetime import datetime

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from novel2epub.api.deliveries import DeliveryResponse
from novel2epub.bootstrap import Container, get_container

router = APIRouter(prefix="/users", tags=["users"])


class UserJobItem(BaseModel):
    job_id: str
    novel_id: str
    status: str
    created_at: datetime
    completed_at: datetime | None
    public_url: str | None
    error_message: str | None


class UserJobsResponse(BaseModel):
    ok: bool
    items: list[UserJobItem]
    total: int
    page: int
    limit: int
    total_pages: int


@router.get("/{user_id}/jobs", response_model=UserJobsResponse)
def list_user_jobs(
    user_id: str,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    container: Container = Depends(get_container),
) -> UserJobsResponse:
    result = container.conversion.get_user_jobs(user_id, page, limit)
    return UserJobsResponse(
        ok=True,
        items=[
            UserJobItem(
                job_id=j.id,
                novel_id=j.novel_id,
                status=j.status,
                created_at=j.created_at,
                completed_at=j.completed_at,
                public_url=j.public_url,
                error_message=j.error_message,
            )
            for j in result.items
        ],
        total=result.total,
        page=result.page,
        limit=result.limit,
        total_pages=result.total_pages,
    )


class UserDeliveriesResponse(BaseModel):
    ok: bool
    items: list[DeliveryResponse]
    total: int
    page: int
    limit: int
    total_pages: int


@router.get("/{user_id}/deliveries", response_model=UserDeliveriesResponse)
def list_user_deliveries(
    user_id: str,
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    container: Container = Depends(get_container),
) -> UserDeliveriesResponse:
    result = container.kindle.get_delivery_history(user_id, page, limit)
    return UserDeliveriesResponse(
        ok=True,
        items=[DeliveryResponse.from_record(d) for d in result.items],
        total=result.total,
        page=result.page,
        limit=result.limit,
        total_pages=result.total_pages,
    )
