from __future__ import annotations

from bs4 import BeautifulSoup

from novel2epub.ingestion.http import HtmlFetcher

# narou serves full-size illustrations behind a redirect
_REDIRECTING_IMAGE_MARKER = "/userpageimage/viewimagebig/"


def fix_image_urls(html: str, fetcher: HtmlFetcher) -> str:
    """Make protocol-relative image URLs absolute and resolve redirecting ones.

    Redirects are resolved once per call; nothing is remembered between chapters.
    """
    soup = BeautifulSoup(html, "html.parser")
    resolved: dict[str, str] = {}
    for img in soup.find_all("img"):
        src = img.get("src")
        if not src:
            continue
        if src.startswith("//"):
            src = "https:" + src
        if _REDIRECTING_IMAGE_MARKER in src:
            if src not in resolved:
                resolved[src] = fetcher.resolve_redirect(src)
            src = resolved[src]
        img["src"] = src
    return str(soup)
