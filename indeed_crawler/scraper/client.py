"""Indeed Crawler — Async HTTP Fetcher.

The crawl loop talks to the network through the Fetcher protocol:
fetch(url, hints) returns the status code, body and final URL of any
HTTP response, or raises TransportError when no response was obtained.
Deciding what a 403 or a challenge page means is left to the caller.

HttpFetcher is the plain-HTTP implementation, built on httpx.AsyncClient
with:
  - One client per proxy, so rotating identity switches egress
  - Browser-like headers with the identity's User-Agent
  - Exponential backoff retry on timeouts, connection errors and 5xx
  - Request counting for run telemetry
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Mapping, Optional, Protocol

import httpx

from indeed_crawler.config import CrawlerConfig
from indeed_crawler.errors import TransportError
from indeed_crawler.scraper.identity import Identity
from indeed_crawler.utils.logger import get_logger
from indeed_crawler.utils.resilience import retry_async

logger = get_logger(__name__)

RENDER_HTTP = "http"
RENDER_BROWSER = "browser"

# ── Browser-like headers common to all requests ──────────
_COMMON_HEADERS = {
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.5",
    "Accept-Encoding": "gzip, deflate, br",
    "Connection": "keep-alive",
    "Upgrade-Insecure-Requests": "1",
    "Sec-Fetch-Dest": "document",
    "Sec-Fetch-Mode": "navigate",
    "Sec-Fetch-Site": "none",
    "Sec-Fetch-User": "?1",
    "Cache-Control": "max-age=0",
    "DNT": "1",
}


@dataclass(frozen=True)
class FetchHints:
    """Delivery hints for one fetch."""

    headers: Mapping[str, str] = field(default_factory=dict)
    identity: Optional[Identity] = None
    render_mode: str = RENDER_HTTP


@dataclass(frozen=True)
class FetchResult:
    """An HTTP response as seen by the crawl loop."""

    status_code: int
    body: str
    final_url: str

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300


class Fetcher(Protocol):
    """Transport collaborator used by the crawler."""

    async def fetch(self, url: str, hints: FetchHints) -> FetchResult: ...

    async def close(self) -> None: ...


class _ServerError(Exception):
    """5xx response, raised internally so the retry decorator sees it."""

    def __init__(self, response: httpx.Response) -> None:
        self.response = response
        super().__init__(f"Server error {response.status_code}")


class HttpFetcher:
    """Plain-HTTP Fetcher backed by httpx.

    Attributes:
        config: Crawler configuration (timeouts, retries).
        total_requests: Responses received this session.
    """

    def __init__(
        self,
        config: CrawlerConfig,
        retry_base_delay: float = 3.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        """Initialize the fetcher.

        Args:
            config: CrawlerConfig loaded from settings.yaml.
            retry_base_delay: First retry delay, doubled per attempt.
            sleep: Awaitable sleep used between retries.
            transport: Optional httpx transport (tests use MockTransport).
        """
        self.config = config
        self.total_requests: int = 0
        self._retry_base_delay = retry_base_delay
        self._sleep = sleep
        self._transport = transport
        self._clients: dict[Optional[str], httpx.AsyncClient] = {}

    def _get_client(self, identity: Optional[Identity]) -> httpx.AsyncClient:
        """Lazily create the httpx.AsyncClient for an identity's proxy."""
        proxy = identity.proxy_url if identity else None
        client = self._clients.get(proxy)
        if client is None:
            kwargs = {}
            if self._transport is not None:
                kwargs["transport"] = self._transport
            elif proxy:
                kwargs["proxy"] = proxy
            client = httpx.AsyncClient(
                headers=_COMMON_HEADERS,
                follow_redirects=True,
                timeout=httpx.Timeout(self.config.timeout_seconds),
                **kwargs,
            )
            self._clients[proxy] = client
            logger.debug("Created HTTP client (%s)", identity.describe() if identity else "direct")
        return client

    async def fetch(self, url: str, hints: FetchHints) -> FetchResult:
        """Fetch a URL and return the response, whatever its status.

        Args:
            url: Absolute URL.
            hints: Headers, identity and render mode for this request.

        Returns:
            FetchResult with status code, decoded body and final URL.

        Raises:
            TransportError: On timeout or connection failure after all retries.
            ValueError: If a render mode other than plain HTTP is requested.
        """
        if hints.render_mode != RENDER_HTTP:
            raise ValueError(f"HttpFetcher cannot render pages (render_mode={hints.render_mode!r})")

        client = self._get_client(hints.identity)
        headers = dict(hints.headers)
        if hints.identity is not None:
            headers["User-Agent"] = hints.identity.user_agent

        send = retry_async(
            max_attempts=self.config.max_retries,
            base_delay=self._retry_base_delay,
            exceptions=(httpx.TimeoutException, httpx.TransportError, _ServerError),
            sleep=self._sleep,
        )(self._send)

        try:
            response = await send(client, url, headers)
        except _ServerError as e:
            response = e.response
        except httpx.TimeoutException as e:
            raise TransportError(url, "Timeout") from e
        except httpx.HTTPError as e:
            raise TransportError(url, f"{type(e).__name__}: {e}") from e

        self.total_requests += 1
        logger.debug("GET %s → %d (%d bytes)", url, response.status_code, len(response.content))
        return FetchResult(
            status_code=response.status_code,
            body=response.text,
            final_url=str(response.url),
        )

    async def _send(
        self, client: httpx.AsyncClient, url: str, headers: dict[str, str]
    ) -> httpx.Response:
        response = await client.get(url, headers=headers)
        if response.status_code >= 500:
            logger.warning("Server error %d for %s", response.status_code, url)
            raise _ServerError(response)
        return response

    async def close(self) -> None:
        """Close every underlying httpx client."""
        for client in self._clients.values():
            await client.aclose()
        if self._clients:
            logger.debug("HTTP clients closed (total requests: %d)", self.total_requests)
        self._clients.clear()

    async def __aenter__(self) -> "HttpFetcher":
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.close()
