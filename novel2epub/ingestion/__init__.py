from novel2epub.ingestion.base import ChapterContent, ChapterIndex, IngestionStrategy, NovelIndex
from novel2epub.ingestion.registry import StrategyRegistry, build_default_registry, build_novel_url

__all__ = [
    "ChapterContent",
    "ChapterIndex",
    "IngestionStrategy",
    "NovelIndex",
    "StrategyRegistry",
    "build_default_registry",
    "build_novel_url",
]
