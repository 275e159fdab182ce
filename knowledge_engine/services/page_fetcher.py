"""Page fetching and content extraction for the crawler.

- PageFetcher: Protocol for fetching a single URL
- HttpxPageFetcher: httpx implementation with bounded timeout and crawler User-Agent
- extract_page: strip non-content markup, pull title, plain text and links
"""

import hashlib
import re
from typing import List, Protocol

import httpx
import logfire
from bs4 import BeautifulSoup

from knowledge_engine.constants import (
    DEFAULT_CRAWLER_TIMEOUT_SECONDS,
    DEFAULT_CRAWLER_USER_AGENT,
)
from knowledge_engine.exceptions import PageFetchError
from knowledge_engine.models.crawl_models import ExtractedPage, FetchedPage
from knowledge_engine.services.url_normalizer import resolve_link, same_origin

# Elements that never hold page content worth embedding
NON_CONTENT_TAGS = (
    "script",
    "style",
    "nav",
    "header",
    "footer",
    "noscript",
    "iframe",
    "svg",
)


class PageFetcher(Protocol):
    """Protocol for fetching page content."""

    async def fetch(self, url: str) -> FetchedPage:
        """Fetch one URL.

        Args:
            url: The (normalized) URL to fetch

        Returns:
            FetchedPage with status code, content type and body

        Raises:
            PageFetchError: On non-2xx status, timeout or transport error
        """
        ...


class HttpxPageFetcher:
    """Fetch pages using httpx."""

    def __init__(
        self,
        timeout: float = DEFAULT_CRAWLER_TIMEOUT_SECONDS,
        user_agent: str = DEFAULT_CRAWLER_USER_AGENT,
        client: httpx.AsyncClient | None = None,
    ):
        """Initialize the page fetcher.

        Args:
            timeout: HTTP timeout in seconds
            user_agent: Descriptive crawler User-Agent
            client: Optional shared client (one is created per request otherwise)
        """
        self._timeout = timeout
        self._headers = {
            "User-Agent": user_agent,
            "Accept": "text/html,application/xhtml+xml",
        }
        self._client = client

    async def fetch(self, url: str) -> FetchedPage:
        try:
            if self._client is not None:
                response = await self._client.get(
                    url,
                    headers=self._headers,
                    timeout=self._timeout,
                    follow_redirects=True,
                )
            else:
                async with httpx.AsyncClient(
                    timeout=self._timeout,
                    follow_redirects=True,
                    headers=self._headers,
                ) as client:
                    response = await client.get(url)
        except httpx.TimeoutException as e:
            raise PageFetchError(url, f"Timeout after {self._timeout}s") from e
        except httpx.HTTPError as e:
            raise PageFetchError(url, str(e) or type(e).__name__) from e

        if not response.is_success:
            raise PageFetchError(
                url, f"HTTP {response.status_code} {response.reason_phrase}".strip()
            )

        content_type = response.headers.get("content-type", "")
        logfire.debug(
            "Page fetched",
            url=url,
            status_code=response.status_code,
            content_type=content_type,
            content_length=len(response.content),
        )
        return FetchedPage(
            url=url,
            status_code=response.status_code,
            content_type=content_type,
            html=response.text,
        )


def _extract_same_origin_links(soup: BeautifulSoup, current_url: str) -> List[str]:
    """Return normalized same-origin URLs from <a href>, deduped, in document order."""
    seen: set[str] = set()
    out: List[str] = []
    for a in soup.find_all("a", href=True):
        resolved = resolve_link(a["href"] or "", current_url)
        if resolved is None or not same_origin(resolved, current_url):
            continue
        if resolved not in seen:
            seen.add(resolved)
            out.append(resolved)
    return out


def extract_page(html: str, url: str) -> ExtractedPage:
    """
    Parse HTML into title, collapsed plain text and same-origin links.

    Non-content elements (nav, header, footer, ...) are removed first, so
    links that only appear in site navigation are not followed. The title
    is the first non-empty of <title> or the first <h1>. Text may be empty;
    callers decide what to do with empty pages.
    """
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup(list(NON_CONTENT_TAGS)):
        tag.decompose()

    links = _extract_same_origin_links(soup, url)

    title: str | None = None
    if soup.title is not None:
        title = soup.title.get_text().strip() or None
    if title is None:
        h1 = soup.find("h1")
        if h1 is not None:
            title = h1.get_text().strip() or None

    root = soup.body if soup.body is not None else soup
    text = root.get_text(" ")
    text = re.sub(r"\s+", " ", text).strip()

    content_hash = hashlib.sha256(text.encode()).hexdigest()
    return ExtractedPage(
        url=url,
        title=title,
        text=text,
        content_hash=content_hash,
        links=links,
    )
