from __future__ import annotations

import httpx

from novel2epub.core.errors import TransportError


class HttpFileDownloader:
    def __init__(self, client: httpx.Client | None = None, timeout_sec: float = 60.0):
        self._client = client or httpx.Client(timeout=timeout_sec, follow_redirects=True)

    def download(self, url: str) -> bytes:
        try:
            response = self._client.get(url)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise TransportError(f"Could not download {url}: {exc}") from exc
        return response.content
