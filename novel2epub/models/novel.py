from datetime import datetime

from sqlalchemy import DateTime, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from novel2epub.core.clock import utcnow
from novel2epub.db.base import Base
from novel2epub.models.job import new_id


class Novel(Base):
    __tablename__ = "novels"
    __table_args__ = (UniqueConstraint("source", "source_id", name="uq_novels_source_source_id"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)

    # source
    source: Mapped[str] = mapped_column(String(32), nullable=False)  # narou|kakuyomu
    source_id: Mapped[str] = mapped_column(String(64), nullable=False)

    # display/meta, filled in once the index has been fetched
    title: Mapped[str | None] = mapped_column(String(512), nullable=True)
    author: Mapped[str | None] = mapped_column(String(256), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)
