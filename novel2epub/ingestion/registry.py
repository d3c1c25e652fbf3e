from __future__ import annotations

from collections.abc import Iterable

from novel2epub.core.errors import UnsupportedSourceError
from novel2epub.ingestion.base import IngestionStrategy
from novel2epub.ingestion.http import HtmlFetcher
from novel2epub.ingestion.kakuyomu import KakuyomuStrategy
from novel2epub.ingestion.narou import NarouStrategy

NAROU = "narou"
KAKUYOMU = "kakuyomu"


def build_novel_url(source: str, source_id: str) -> str:
    if source == NAROU:
        return f"https://ncode.syosetu.com/{source_id}/"
    if source == KAKUYOMU:
        return f"https://kakuyomu.jp/works/{source_id}"
    raise UnsupportedSourceError(source)


class StrategyRegistry:
    """Source tag -> strategy table, fixed once built."""

    def __init__(self, strategies: Iterable[IngestionStrategy]):
        self._strategies = {s.source: s for s in strategies}

    @property
    def sources(self) -> list[str]:
        return sorted(self._strategies)

    def supports(self, source: str | None) -> bool:
        return source in self._strategies

    def get(self, source: str | None) -> IngestionStrategy:
        strategy = self._strategies.get(source or "")
        if strategy is None:
            raise UnsupportedSourceError(source)
        return strategy


def build_default_registry(fetcher: HtmlFetcher) -> StrategyRegistry:
    return StrategyRegistry([NarouStrategy(fetcher), KakuyomuStrategy(fetcher)])
