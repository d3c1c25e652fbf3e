"""Strategy for kakuyomu.jp.

Kakuyomu renders its table of contents from the Apollo cache embedded in the
``__NEXT_DATA__`` script; entries reference each other through ``__ref`` keys.
"""

from __future__ import annotations

import json
import logging
from typing import Any
from urllib.parse import urlparse

from novel2epub.core.errors import UpstreamFetchError
from novel2epub.ingestion.base import ChapterIndex, NovelIndex
from novel2epub.ingestion.http import HtmlFetcher
from novel2epub.ingestion.images import fix_image_urls

logger = logging.getLogger(__name__)

ApolloState = dict[str, Any]


def deref(state: ApolloState, ref: Any) -> Any:
    key = ref.get("__ref") if isinstance(ref, dict) else ref
    return state.get(key) if isinstance(key, str) else None


def build_episode_url(work_id: str, episode_id: str) -> str:
    return f"https://kakuyomu.jp/works/{work_id}/episodes/{episode_id}"


def extract_work_id(url: str) -> str | None:
    # /works/1177354054886293774
    parts = urlparse(url).path.split("/")
    return parts[2] if len(parts) > 2 and parts[2] else None


def parse_chapter_list(state: ApolloState, work: dict[str, Any]) -> list[ChapterIndex]:
    toc_refs = work.get("tableOfContents") or [{"episodeUnions": [work.get("firstPublicEpisodeUnion")]}]

    chapters: list[ChapterIndex] = []
    for toc_ref in toc_refs:
        toc_node = deref(state, toc_ref) or (toc_ref if isinstance(toc_ref, dict) else None)
        if not toc_node:
            continue
        chapter_meta = deref(state, toc_node.get("chapter")) or {}
        group_title = chapter_meta.get("title")
        for ep_ref in toc_node.get("episodeUnions") or []:
            episode = deref(state, ep_ref)
            if not episode:
                continue
            chapters.append(
                ChapterIndex(
                    group_title=group_title,
                    title=episode.get("title") or "",
                    url=build_episode_url(work["id"], episode["id"]),
                )
            )
    return chapters


class KakuyomuStrategy:
    source = "kakuyomu"

    def __init__(self, fetcher: HtmlFetcher):
        self._fetcher = fetcher

    def fetch_novel_index(self, url: str) -> NovelIndex:
        soup = self._fetcher.get_soup(url)
        script = soup.select_one("script#__NEXT_DATA__")
        if script is None or not script.string:
            raise UpstreamFetchError(f"__NEXT_DATA__ not found on {url}; page blocked or not server-rendered", url=url)

        try:
            state: ApolloState = json.loads(script.string)["props"]["pageProps"]["__APOLLO_STATE__"]
        except (ValueError, KeyError, TypeError) as exc:
            raise UpstreamFetchError(f"Unreadable Apollo state on {url}: {exc}", url=url) from exc

        work_id = extract_work_id(url)
        work = state.get(f"Work:{work_id}")
        if not work:
            raise UpstreamFetchError(f"Work {work_id} not found on {url}", url=url)

        author = deref(state, work.get("author")) or {}
        chapters = parse_chapter_list(state, work)
        logger.info("Indexed kakuyomu work %s: %d chapters", work_id, len(chapters))
        return NovelIndex(
            title=work.get("title") or "",
            author=author.get("activityName") or author.get("name") or "Unknown",
            description=f"{work.get('catchphrase') or ''}{work.get('introduction') or ''}",
            chapters=chapters,
        )

    def fetch_chapter_content(self, url: str) -> str:
        soup = self._fetcher.get_soup(url)
        body = soup.select_one(".widget-episodeBody")
        if body is None:
            return ""
        html = "".join(str(el) for el in body.find_all(recursive=False))
        return fix_image_urls(html, self._fetcher)
