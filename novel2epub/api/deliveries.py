from datetime import datetime

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from novel2epub.bootstrap import Container, get_container
from novel2epub.models.delivery import KindleDelivery

router = APIRouter(prefix="/deliveries", tags=["deliveries"])


class DeliveryCreateRequest(BaseModel):
    job_id: str
    user_id: str
    to_email: str


class DeliveryResponse(BaseModel):
    ok: bool
    delivery_id: str
    job_id: str
    user_id: str
    to_email: str
    status: str
    error_message: str | None
    sent_at: datetime | None
    created_at: datetime

    @classmethod
    def from_record(cls, delivery: KindleDelivery) -> "DeliveryResponse":
        return cls(
            ok=True,
            delivery_id=delivery.id,
            job_id=delivery.job_id,
            user_id=delivery.user_id,
            to_email=delivery.to_email,
            status=delivery.status,
            error_message=delivery.error_message,
            sent_at=delivery.sent_at,
            created_at=delivery.created_at,
        )


@router.post("", response_model=DeliveryResponse, status_code=202)
def send_to_kindle(req: DeliveryCreateRequest, container: Container = Depends(get_container)) -> DeliveryResponse:
    delivery = container.kindle.send_to_kindle(req.job_id, req.user_id, req.to_email)
    return DeliveryResponse.from_record(delivery)


@router.get("/{delivery_id}", response_model=DeliveryResponse)
def get_delivery(delivery_id: str, container: Container = Depends(get_container)) -> DeliveryResponse:
    return DeliveryResponse.from_record(container.kindle.get_delivery(delivery_id))
