from __future__ import annotations

import html
import logging
import uuid
from itertools import groupby
from pathlib import Path

from ebooklib import epub

from novel2epub.ingestion.base import ChapterContent
from novel2epub.ports import Artifact

logger = logging.getLogger(__name__)

STYLE = """
body { font-family: serif; line-height: 1.8; }
h1.group-title { font-size: 1.4em; margin: 2em 0 1em; }
h2.chapter-title { font-size: 1.2em; margin: 1.5em 0 1em; }
hr { margin: 1.5em 0; }
"""


class EbookLibGenerator:
    """Build EPUB3 files with ebooklib, grouping chapters under their group headings."""

    def __init__(self, output_dir: str, language: str = "ja"):
        self._output_dir = Path(output_dir)
        self._language = language

    def generate(self, title: str, author: str, description: str, chapters: list[ChapterContent]) -> Artifact:
        self._output_dir.mkdir(parents=True, exist_ok=True)
        book_id = uuid.uuid4().hex

        book = epub.EpubBook()
        book.set_identifier(f"novel2epub-{book_id}")
        book.set_title(title or "Untitled")
        book.set_language(self._language)
        if author:
            book.add_author(author)
        if description:
            book.add_metadata("DC", "description", description)

        css = epub.EpubItem(uid="style", file_name="style/main.css", media_type="text/css", content=STYLE)
        book.add_item(css)

        spine: list = ["nav"]
        toc: list = []
        index = 0
        for group_title, group in groupby(chapters, key=lambda c: c.group_title):
            items = []
            for position, chapter in enumerate(group):
                index += 1
                heading = ""
                if group_title and position == 0:
                    heading = f'<h1 class="group-title">{html.escape(group_title)}</h1>'
                page = epub.EpubHtml(
                    title=chapter.title or f"Chapter {index}",
                    file_name=f"chapter_{index:04d}.xhtml",
                    lang=self._language,
                )
                page.content = (
                    f"<html><head><title>{html.escape(chapter.title)}</title></head><body>"
                    f"{heading}<h2 class=\"chapter-title\">{html.escape(chapter.title)}</h2>"
                    f"{chapter.html}</body></html>"
                )
                page.add_item(css)
                book.add_item(page)
                spine.append(page)
                items.append(page)
            if group_title:
                toc.append((epub.Section(group_title), items))
            else:
                toc.extend(items)

        book.toc = toc
        book.spine = spine
        book.add_item(epub.EpubNcx())
        book.add_item(epub.EpubNav())

        file_name = f"{book_id}.epub"
        output_path = self._output_dir / file_name
        epub.write_epub(str(output_path), book, {})
        logger.info("Generated EPUB %s (%d chapters)", output_path, index)
        return Artifact(local_path=str(output_path), file_name=file_name)
