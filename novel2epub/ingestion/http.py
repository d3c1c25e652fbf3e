from __future__ import annotations

import logging
import time
from collections.abc import Callable

import httpx
from bs4 import BeautifulSoup

from novel2epub.core.errors import UpstreamFetchError

logger = logging.getLogger(__name__)

DEFAULT_HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
        "AppleWebKit/537.36 (KHTML, like Gecko) "
        "Chrome/114.0.5735.199 Safari/537.36"
    ),
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
}


class HtmlFetcher:
    """GET pages with a bounded number of attempts and a fixed delay between them."""

    def __init__(
        self,
        client: httpx.Client | None = None,
        *,
        max_retries: int = 3,
        retry_delay_sec: float = 0.5,
        timeout_sec: float = 10.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._client = client or httpx.Client(headers=DEFAULT_HEADERS, timeout=timeout_sec, follow_redirects=True)
        self._max_retries = max(1, max_retries)
        self._retry_delay_sec = retry_delay_sec
        self._sleep = sleep

    def get_text(self, url: str) -> str:
        last_error: Exception | None = None
        for attempt in range(1, self._max_retries + 1):
            try:
                response = self._client.get(url)
                response.raise_for_status()
                return response.text
            except httpx.HTTPError as exc:
                last_error = exc
                if attempt < self._max_retries:
                    logger.warning("GET %s failed (%s), retry %d/%d", url, exc, attempt, self._max_retries)
                    self._sleep(self._retry_delay_sec)

        raise UpstreamFetchError(
            f"Failed to fetch {url} after {self._max_retries} attempts: {last_error}", url=url
        ) from last_error

    def get_soup(self, url: str) -> BeautifulSoup:
        return BeautifulSoup(self.get_text(url), "html.parser")

    def resolve_redirect(self, url: str) -> str:
        """Return the Location of a redirecting URL, or the URL itself."""
        try:
            response = self._client.head(url, follow_redirects=False)
        except httpx.HTTPError as exc:
            logger.debug("HEAD %s failed: %s", url, exc)
            return url
        return response.headers.get("location") or url

    def close(self) -> None:
        self._client.close()
