from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from novel2epub.core.clock import utcnow
from novel2epub.core.errors import NotFoundError, ValidationError
from novel2epub.models.novel import Novel


class NovelStore:
    def __init__(self, session_factory: sessionmaker[Session]):
        self._session_factory = session_factory

    def find_by_id(self, novel_id: str) -> Novel | None:
        with self._session_factory() as db:
            return db.get(Novel, novel_id)

    def get(self, novel_id: str) -> Novel:
        novel = self.find_by_id(novel_id)
        if novel is None:
            raise NotFoundError(f"Novel {novel_id} not found")
        return novel

    def upsert(self, source: str, source_id: str) -> Novel:
        """Return the novel registered for (source, source_id), creating it if needed."""
        source = (source or "").strip().lower()
        source_id = (source_id or "").strip()
        if not source or not source_id:
            raise ValidationError("source and source_id are required")

        with self._session_factory() as db:
            existing = db.scalars(
                select(Novel).where(Novel.source == source, Novel.source_id == source_id)
            ).first()
            if existing:
                return existing
            novel = Novel(source=source, source_id=source_id)
            db.add(novel)
            db.commit()
            db.refresh(novel)
            return novel

    def update_metadata(self, novel_id: str, *, title: str | None, author: str | None, description: str | None) -> Novel:
        with self._session_factory() as db:
            novel = db.get(Novel, novel_id)
            if novel is None:
                raise NotFoundError(f"Novel {novel_id} not found")
            novel.title = title or novel.title
            novel.author = author or novel.author
            novel.description = description or novel.description
            novel.updated_at = utcnow()
            db.commit()
            db.refresh(novel)
            return novel
