"""Narrow ports to the collaborators the job lifecycle depends on."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

from novel2epub.ingestion.base import ChapterContent

EPUB_CONTENT_TYPE = "application/epub+zip"


@dataclass(frozen=True)
class Artifact:
    local_path: str
    file_name: str


@dataclass(frozen=True)
class SendResult:
    id: str
    success: bool


class ArtifactGenerator(Protocol):
    def generate(self, title: str, author: str, description: str, chapters: list[ChapterContent]) -> Artifact: ...


class BlobStorage(Protocol):
    def upload(self, local_path: str, file_name: str, content_type: str) -> str: ...

    def delete(self, file_name: str) -> None: ...


class EmailTransport(Protocol):
    def send(self, to: str, subject: str | None, attachment: bytes, filename: str) -> SendResult: ...


class FileDownloader(Protocol):
    def download(self, url: str) -> bytes: ...
