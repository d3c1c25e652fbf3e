from dataclasses import dataclass, field
from typing import Generic, TypeVar

T = TypeVar("T")

MAX_LIMIT = 100


@dataclass
class Page(Generic[T]):
    items: list[T] = field(default_factory=list)
    total: int = 0
    page: int = 1
    limit: int = 10

    @property
    def total_pages(self) -> int:
        if self.limit <= 0:
            return 0
        return (self.total + self.limit - 1) // self.limit


def normalize_page(page: int, limit: int) -> tuple[int, int]:
    page = max(1, int(page or 1))
    limit = min(MAX_LIMIT, max(1, int(limit or 10)))
    return page, limit
