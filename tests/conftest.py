import os

# must be set before novel2epub.core.config is imported
os.environ.setdefault("ENV", "test")
os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///:memory:")

import uuid  # noqa: E402
from dataclasses import dataclass, field  # noqa: E402
from pathlib import Path  # noqa: E402
from types import SimpleNamespace  # noqa: E402

import fakeredis  # noqa: E402
import pytest  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from novel2epub import models  # noqa: F401,E402
from novel2epub.bootstrap import build_container  # noqa: E402
from novel2epub.core.errors import TransportError, UploadError, UpstreamFetchError  # noqa: E402
from novel2epub.db.base import Base  # noqa: E402
from novel2epub.db.session import make_session_factory  # noqa: E402
from novel2epub.ingestion.base import ChapterIndex, NovelIndex  # noqa: E402
from novel2epub.ingestion.registry import StrategyRegistry  # noqa: E402
from novel2epub.ports import Artifact, SendResult  # noqa: E402


class FakeControl:
    def __init__(self):
        self.revoked: list[tuple[str, bool]] = []

    def revoke(self, task_id, terminate=False):
        self.revoked.append((task_id, terminate))


class FakeTask:
    """Stands in for a Celery task: records apply_async calls instead of publishing."""

    def __init__(self, fail: bool = False):
        self.calls: list[dict] = []
        self.fail = fail
        self.app = SimpleNamespace(control=FakeControl())

    def apply_async(self, kwargs=None, task_id=None, countdown=None):
        if self.fail:
            raise ConnectionError("broker unavailable")
        self.calls.append({"kwargs": kwargs, "task_id": task_id, "countdown": countdown})
        return SimpleNamespace(id=task_id)


class FakeStrategy:
    def __init__(self, source: str, chapters: int = 3, fail_on: set[int] | None = None):
        self.source = source
        self.chapter_count = chapters
        self.fail_on = fail_on or set()
        self.fail_index = False
        self.index_calls: list[str] = []
        self.chapter_calls: list[str] = []

    def fetch_novel_index(self, url: str) -> NovelIndex:
        self.index_calls.append(url)
        if self.fail_index:
            raise UpstreamFetchError(f"Failed to fetch {url} after 3 attempts: 503", url=url)
        return NovelIndex(
            title="Test Novel",
            author="Author",
            description="A story",
            chapters=[
                ChapterIndex(group_title="Part 1", title=f"Chapter {i}", url=f"{url.rstrip('/')}/ch/{i}")
                for i in range(1, self.chapter_count + 1)
            ],
        )

    def fetch_chapter_content(self, url: str) -> str:
        self.chapter_calls.append(url)
        number = int(url.rsplit("/", 1)[-1])
        if number in self.fail_on:
            raise UpstreamFetchError(f"Failed to fetch {url} after 3 attempts: 503", url=url)
        return f"<p>Body {number}</p>"


class FakeGenerator:
    def __init__(self, output_dir: Path):
        self.output_dir = output_dir
        self.calls: list[dict] = []
        self.fail = False
        self.before_return = None

    def generate(self, title, author, description, chapters):
        if self.fail:
            raise RuntimeError("zip writer exploded")
        self.calls.append({"title": title, "chapters": list(chapters)})
        file_name = f"{uuid.uuid4().hex}.epub"
        path = self.output_dir / file_name
        path.write_bytes(b"PK-fake-epub")
        if self.before_return is not None:
            self.before_return()
        return Artifact(local_path=str(path), file_name=file_name)


class FakeStorage:
    def __init__(self):
        self.uploads: list[tuple[str, str]] = []
        self.fail = False

    def upload(self, local_path, file_name, content_type):
        if self.fail:
            raise UploadError("bucket unavailable")
        self.uploads.append((file_name, content_type))
        return f"https://files.test/{file_name}"

    def delete(self, file_name):
        pass


@dataclass
class FakeTransport:
    sent: list[dict] = field(default_factory=list)
    fail: bool = False

    def send(self, to, subject, attachment, filename):
        if self.fail:
            raise TransportError("SMTP 550 mailbox unavailable")
        self.sent.append({"to": to, "filename": filename, "size": len(attachment)})
        return SendResult(id=f"<{uuid.uuid4().hex}@test>", success=True)


class FakeDownloader:
    def __init__(self):
        self.urls: list[str] = []

    def download(self, url):
        self.urls.append(url)
        return b"PK-fake-epub"


@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite+pysqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    try:
        yield make_session_factory(engine)
    finally:
        Base.metadata.drop_all(engine)
        engine.dispose()


@pytest.fixture
def redis_client():
    client = fakeredis.FakeRedis(decode_responses=True)
    try:
        yield client
    finally:
        client.flushall()


@pytest.fixture
def strategies():
    return {"narou": FakeStrategy("narou"), "kakuyomu": FakeStrategy("kakuyomu")}


@pytest.fixture
def fakes(tmp_path, strategies):
    return SimpleNamespace(
        tasks={"epub": FakeTask(), "kindle-delivery": FakeTask(), "preview": FakeTask()},
        registry=StrategyRegistry(strategies.values()),
        generator=FakeGenerator(tmp_path),
        storage=FakeStorage(),
        transport=FakeTransport(),
        downloader=FakeDownloader(),
    )


@pytest.fixture
def container(session_factory, redis_client, fakes):
    return build_container(
        session_factory=session_factory,
        redis_client=redis_client,
        tasks=fakes.tasks,
        registry=fakes.registry,
        generator=fakes.generator,
        storage=fakes.storage,
        transport=fakes.transport,
        downloader=fakes.downloader,
    )


@pytest.fixture
def novel(container):
    return container.novels.upsert("narou", "n1234ab")
