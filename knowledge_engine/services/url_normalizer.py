"""URL canonicalization for crawl dedup and page keys."""

from urllib.parse import urljoin, urlsplit, urlunsplit

from knowledge_engine.exceptions import InvalidURLError

_ALLOWED_SCHEMES = ("http", "https")
_DEFAULT_PORTS = {"http": 80, "https": 443}

# Extensions we skip when crawling (binary or non-page resources)
NON_HTML_EXTENSIONS = frozenset(
    (
        ".pdf",
        ".jpg",
        ".jpeg",
        ".png",
        ".gif",
        ".webp",
        ".svg",
        ".ico",
        ".zip",
        ".tar",
        ".gz",
        ".css",
        ".js",
        ".json",
        ".xml",
        ".rss",
        ".mp3",
        ".mp4",
        ".webm",
        ".woff",
        ".woff2",
        ".ttf",
        ".eot",
    )
)


def _origin(url: str) -> tuple[str, str, int | None]:
    try:
        parts = urlsplit(url)
        host = parts.hostname
        port = parts.port
    except ValueError as e:
        raise InvalidURLError(f"Malformed URL: {url!r}") from e
    scheme = parts.scheme.lower()
    if scheme not in _ALLOWED_SCHEMES or not host:
        raise InvalidURLError(f"Not an absolute http(s) URL: {url!r}")
    if port is None:
        port = _DEFAULT_PORTS[scheme]
    return scheme, host, port


def normalize_url(url: str) -> str:
    """
    Canonicalize an absolute http(s) URL.

    Lowercases scheme and host, drops default ports, user info and the
    fragment, and strips trailing slashes from non-root paths. The root path
    is always "/". Query strings are kept as-is.

    Raises:
        InvalidURLError: If the URL is not an absolute http(s) URL
    """
    if not url or not url.strip():
        raise InvalidURLError("URL is empty")
    raw = url.strip()
    scheme, host, port = _origin(raw)
    parts = urlsplit(raw)

    if ":" in host:
        host = f"[{host}]"  # IPv6 literal
    netloc = host if port == _DEFAULT_PORTS[scheme] else f"{host}:{port}"
    path = parts.path.rstrip("/") or "/"
    return urlunsplit((scheme, netloc, path, parts.query, ""))


def same_origin(url_a: str, url_b: str) -> bool:
    """True if both URLs share scheme, host and effective port."""
    try:
        return _origin(url_a) == _origin(url_b)
    except InvalidURLError:
        return False


def resolve_link(href: str, base_url: str) -> str | None:
    """
    Resolve an <a href> against the page it was found on.

    Returns the normalized absolute URL, or None when the link is empty,
    malformed, not http(s) (mailto:, tel:, javascript:, ...) or points to a
    non-HTML resource. Never raises.
    """
    if not href or not href.strip():
        return None
    try:
        absolute = urljoin(base_url, href.strip())
        normalized = normalize_url(absolute)
    except (InvalidURLError, ValueError):
        return None
    path_lower = urlsplit(normalized).path.lower()
    if any(path_lower.endswith(ext) for ext in NON_HTML_EXTENSIONS):
        return None
    return normalized
