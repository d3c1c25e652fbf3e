import enum
import uuid
from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from novel2epub.core.clock import utcnow
from novel2epub.db.base import Base


class JobStatus(str, enum.Enum):
    QUEUED = "QUEUED"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED})
ACTIVE_STATUSES = frozenset({JobStatus.QUEUED, JobStatus.PROCESSING})


def new_id() -> str:
    return str(uuid.uuid4())


class EpubJob(Base):
    __tablename__ = "epub_jobs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    novel_id: Mapped[str] = mapped_column(ForeignKey("novels.id"), nullable=False, index=True)
    user_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)

    status: Mapped[str] = mapped_column(String(32), nullable=False, default=JobStatus.QUEUED.value, index=True)  # QUEUED|PROCESSING|COMPLETED|FAILED

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    started_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True, index=True)

    public_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    def __repr__(self) -> str:
        return f"EpubJob(id={self.id!r}, status={self.status!r}, user_id={self.user_id!r})"
