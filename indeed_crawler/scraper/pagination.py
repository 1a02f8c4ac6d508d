"""Indeed Crawler — Search URLs & Pagination.

Builds the seed search URL, computes offset-paginated listing URLs and
normalizes URLs into the key used by the visited set.

Two pagination strategies exist; a run picks one at start and never
mixes them:
  OFFSET    → page N is the seed URL with start = N * page_size
  NEXT_LINK → follow the "next page" link found on the listing page
"""

from __future__ import annotations

from enum import Enum
from urllib.parse import parse_qsl, urlencode, urljoin, urlsplit, urlunsplit

from indeed_crawler.config import SearchRequest

OFFSET_PARAM = "start"
DEFAULT_PAGE_SIZE = 10

# Country codes whose Indeed host differs from the code itself
_COUNTRY_HOSTS = {
    "us": "www.indeed.com",
    "gb": "uk.indeed.com",
}
_DEFAULT_PORTS = {"http": 80, "https": 443}


class PaginationMode(str, Enum):
    OFFSET = "offset"
    NEXT_LINK = "next_link"


def base_url_for_country(country: str) -> str:
    """Return the Indeed origin for a two-letter country code.

    Args:
        country: Country code, e.g. "us", "ca", "gb".

    Returns:
        Origin URL without a trailing slash.
    """
    code = (country or "us").lower()
    host = _COUNTRY_HOSTS.get(code, f"{code}.indeed.com")
    return f"https://{host}"


def build_search_url(base_url: str, request: SearchRequest) -> str:
    """Build the first listing page URL: <base>/jobs?q=...&l=...

    Args:
        base_url: Site origin (see base_url_for_country).
        request: The crawl's search request.

    Returns:
        Absolute search URL.
    """
    query = urlencode({"q": request.query_term, "l": request.location})
    return f"{base_url.rstrip('/')}/jobs?{query}"


def offset_page_url(
    seed_url: str, page_index: int, page_size: int = DEFAULT_PAGE_SIZE
) -> str:
    """Return the listing URL for a 0-based page index.

    Sets start = page_index * page_size on a copy of the seed query,
    replacing any existing start value. Index 0 yields the seed without
    a start parameter.

    Args:
        seed_url: The run's first listing URL.
        page_index: 0-based page number.
        page_size: Results per listing page.

    Returns:
        Absolute URL of the requested page.
    """
    if page_index < 0:
        raise ValueError(f"page_index must be >= 0, got {page_index}")

    parts = urlsplit(seed_url)
    params = [(k, v) for k, v in parse_qsl(parts.query, keep_blank_values=True) if k != OFFSET_PARAM]
    if page_index > 0:
        params.append((OFFSET_PARAM, str(page_index * page_size)))
    return urlunsplit((parts.scheme, parts.netloc, parts.path, urlencode(params), ""))


def origin_of(url: str) -> str:
    """scheme://host[:port] of a URL."""
    parts = urlsplit(url)
    return f"{parts.scheme}://{parts.netloc}"


def absolutize(href: str, page_url: str) -> str:
    """Resolve a possibly relative href against the page's origin.

    Root-relative and path-relative hrefs both resolve against the page
    URL; protocol-relative hrefs pick up the page's scheme.
    """
    return urljoin(page_url, href.strip())


def normalize_url(url: str) -> str:
    """Normalize an absolute URL into the visited-set key.

    Lowercases scheme and host, drops default ports and fragments,
    sorts query parameters and gives empty paths a "/".
    """
    parts = urlsplit(url.strip())
    scheme = parts.scheme.lower()
    host = (parts.hostname or "").lower()
    port = parts.port
    netloc = host if port is None or _DEFAULT_PORTS.get(scheme) == port else f"{host}:{port}"
    path = parts.path or "/"
    query = urlencode(sorted(parse_qsl(parts.query, keep_blank_values=True)))
    return urlunsplit((scheme, netloc, path, query, ""))
