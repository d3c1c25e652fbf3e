"""Strategy for ncode.syosetu.com ("Shousetsuka ni Narou")."""

from __future__ import annotations

import logging
import re
from urllib.parse import urljoin

from bs4 import BeautifulSoup, Tag

from novel2epub.ingestion.base import ChapterIndex, NovelIndex
from novel2epub.ingestion.http import HtmlFetcher
from novel2epub.ingestion.images import fix_image_urls

logger = logging.getLogger(__name__)

BASE_URL = "https://ncode.syosetu.com/"
_PAGE_RE = re.compile(r"[?&]p=(\d+)")


def _text(node: Tag | None) -> str:
    return node.get_text(strip=True) if node is not None else ""


def parse_chapter_list(
    soup: BeautifulSoup, current_group: str | None = None
) -> tuple[list[ChapterIndex], str | None]:
    """Extract episode links from one table-of-contents page.

    A group heading may sit on an earlier page than the episodes under it, so
    the last heading seen is returned and fed into the next page.
    """
    chapters: list[ChapterIndex] = []
    eplist = soup.select_one(".p-eplist")
    if eplist is None:
        return chapters, current_group

    for el in eplist.find_all(recursive=False):
        classes = el.get("class") or []
        if "p-eplist__chapter-title" in classes:
            current_group = el.get_text(strip=True)
        elif "p-eplist__sublist" in classes:
            link = el.select_one("a.p-eplist__subtitle")
            if link is None:
                continue
            href = link.get("href") or ""
            chapters.append(
                ChapterIndex(
                    group_title=current_group,
                    title=link.get_text(strip=True),
                    url=urljoin(BASE_URL, href) if href else "",
                )
            )
    return chapters, current_group


def parse_max_page(soup: BeautifulSoup) -> int:
    last = soup.select_one(".c-pager__item.c-pager__item--last")
    if last is None:
        return 1
    match = _PAGE_RE.search(last.get("href") or "")
    return int(match.group(1)) if match else 1


class NarouStrategy:
    source = "narou"

    def __init__(self, fetcher: HtmlFetcher):
        self._fetcher = fetcher

    def fetch_novel_index(self, url: str) -> NovelIndex:
        base_url = url.split("?", 1)[0]
        first = self._fetcher.get_soup(f"{base_url}?p=1")

        title = _text(first.select_one(".p-novel__title"))
        author = _text(first.select_one(".p-novel__author > a"))
        description = _text(first.select_one(".p-novel__summary"))

        # short stories have no summary and carry their body on the index page
        if not description:
            return NovelIndex(
                title=title,
                author=author,
                description=description,
                chapters=[ChapterIndex(group_title=None, title=title, url=base_url)],
            )

        max_page = parse_max_page(first)
        chapters: list[ChapterIndex] = []
        group: str | None = None
        for page in range(1, max_page + 1):
            soup = first if page == 1 else self._fetcher.get_soup(f"{base_url}?p={page}")
            page_chapters, group = parse_chapter_list(soup, group)
            chapters.extend(page_chapters)

        logger.info("Indexed narou novel %s: %d chapters over %d pages", base_url, len(chapters), max_page)
        return NovelIndex(title=title, author=author, description=description, chapters=chapters)

    def fetch_chapter_content(self, url: str) -> str:
        soup = self._fetcher.get_soup(url)
        body = soup.select_one(".p-novel__body")
        if body is None:
            return ""

        parts: list[str] = []
        for el in body.find_all(recursive=False):
            classes = el.get("class") or []
            html = str(el)
            if "p-novel__text--afterword" in classes:
                html = "<hr>" + html
            if "p-novel__text--preface" in classes:
                html = html + "<hr>"
            parts.append(html)
        return fix_image_urls("".join(parts), self._fetcher)
