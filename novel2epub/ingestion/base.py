from __future__ import annotations

from dataclasses import dataclass, field
from typing import Protocol


@dataclass(frozen=True)
class ChapterIndex:
    group_title: str | None  # chapter-group heading, None when the work has none
    title: str
    url: str


@dataclass
class NovelIndex:
    title: str
    author: str
    description: str
    chapters: list[ChapterIndex] = field(default_factory=list)


@dataclass(frozen=True)
class ChapterContent:
    group_title: str | None
    title: str
    html: str


class IngestionStrategy(Protocol):
    source: str

    def fetch_novel_index(self, url: str) -> NovelIndex: ...

    def fetch_chapter_content(self, url: str) -> str: ...
