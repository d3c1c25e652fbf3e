from __future__ import annotations

from sqlalchemy import func, select
from sqlalchemy.orm import Session, sessionmaker

from novel2epub.core.clock import utcnow
from novel2epub.core.errors import NotFoundError
from novel2epub.models.delivery import DeliveryStatus, KindleDelivery
from novel2epub.models.job import new_id
from novel2epub.services.pagination import Page, normalize_page


class DeliveryStore:
    def __init__(self, session_factory: sessionmaker[Session]):
        self._session_factory = session_factory

    def create(self, job_id: str, user_id: str, to_email: str) -> KindleDelivery:
        now = utcnow()
        delivery = KindleDelivery(
            id=new_id(),
            job_id=job_id,
            user_id=user_id,
            to_email=to_email,
            status=DeliveryStatus.PENDING.value,
            created_at=now,
            updated_at=now,
        )
        with self._session_factory() as db:
            db.add(delivery)
            db.commit()
            db.refresh(delivery)
        return delivery

    def find_by_id(self, delivery_id: str) -> KindleDelivery | None:
        with self._session_factory() as db:
            return db.get(KindleDelivery, delivery_id)

    def get(self, delivery_id: str) -> KindleDelivery:
        delivery = self.find_by_id(delivery_id)
        if delivery is None:
            raise NotFoundError(f"Delivery {delivery_id} not found")
        return delivery

    def save(self, delivery: KindleDelivery) -> KindleDelivery:
        delivery.updated_at = utcnow()
        with self._session_factory() as db:
            merged = db.merge(delivery)
            db.commit()
            db.refresh(merged)
            return merged

    def find_by_user(self, user_id: str, page: int = 1, limit: int = 10) -> Page[KindleDelivery]:
        page, limit = normalize_page(page, limit)
        with self._session_factory() as db:
            total = (
                db.scalar(select(func.count()).select_from(KindleDelivery).where(KindleDelivery.user_id == user_id))
                or 0
            )
            stmt = (
                select(KindleDelivery)
                .where(KindleDelivery.user_id == user_id)
                .order_by(KindleDelivery.created_at.desc())
                .offset((page - 1) * limit)
                .limit(limit)
            )
            items = list(db.scalars(stmt).all())
        return Page(items=items, total=total, page=page, limit=limit)
