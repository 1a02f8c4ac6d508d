"""Shared fakes and fixtures for the crawler tests."""

from __future__ import annotations

import random
from collections import deque
from typing import Callable, Optional, Union

import pytest

from indeed_crawler.config import CrawlerConfig, SearchRequest
from indeed_crawler.database.models import CompanyDetails, Record
from indeed_crawler.errors import StorageError, TransportError
from indeed_crawler.scraper.client import FetchHints, FetchResult
from indeed_crawler.scraper.crawler import Crawler
from indeed_crawler.scraper.extraction import ExtractionStrategy
from indeed_crawler.scraper.identity import IdentityPool
from indeed_crawler.scraper.pacing import PacingController
from indeed_crawler.scraper.pagination import build_search_url, normalize_url
from indeed_crawler.utils.events import EventLog

from pages import BASE

Response = Union[str, FetchResult, Exception]


class FakeFetcher:
    """Scripted Fetcher.

    Each URL maps to one response or a list of responses served in
    order; the last one repeats. Strings are served as 200 pages,
    exceptions are raised. Unknown URLs get a 404.
    """

    def __init__(self, pages: dict[str, Union[Response, list[Response]]]) -> None:
        self._pages: dict[str, deque[Response]] = {}
        for url, responses in pages.items():
            if not isinstance(responses, list):
                responses = [responses]
            self._pages[normalize_url(url)] = deque(responses)
        self.calls: list[str] = []
        self.hints: list[FetchHints] = []
        self.on_fetch: Optional[Callable[[str], None]] = None
        self.closed = False

    async def fetch(self, url: str, hints: FetchHints) -> FetchResult:
        self.calls.append(url)
        self.hints.append(hints)
        if self.on_fetch is not None:
            self.on_fetch(url)

        queue = self._pages.get(normalize_url(url))
        if not queue:
            return FetchResult(status_code=404, body="Not Found", final_url=url)
        response = queue.popleft() if len(queue) > 1 else queue[0]

        if isinstance(response, Exception):
            raise response
        if isinstance(response, FetchResult):
            return response
        return FetchResult(status_code=200, body=response, final_url=url)

    async def close(self) -> None:
        self.closed = True

    def call_keys(self) -> list[str]:
        return [normalize_url(u) for u in self.calls]


class ListSink:
    """In-memory Sink.

    Attributes:
        existing: Dedup keys treated as stored by an earlier run.
        fail_appends: Number of upcoming appends that raise StorageError
            (-1 = all of them).
    """

    def __init__(self, existing: Optional[set[str]] = None, fail_appends: int = 0) -> None:
        self.records: list[Record] = []
        self.companies: list[CompanyDetails] = []
        self.existing = set(existing or ())
        self.fail_appends = fail_appends

    async def append(self, record: Record) -> None:
        if self.fail_appends:
            if self.fail_appends > 0:
                self.fail_appends -= 1
            raise StorageError(f"disk full while storing {record.url}")
        self.records.append(record)

    async def append_company(self, company: CompanyDetails) -> None:
        self.companies.append(company)

    async def contains(self, record: Record) -> bool:
        return record.dedup_key in self.existing

    @property
    def urls(self) -> list[str]:
        return [r.url for r in self.records]


def transport_error(url: str) -> TransportError:
    return TransportError(url, "Timeout")


@pytest.fixture
def sleeps() -> list[float]:
    return []


@pytest.fixture
def pacing(sleeps) -> PacingController:
    """Real delay ranges with a sleep that only records."""

    async def _sleep(delay: float) -> None:
        sleeps.append(delay)

    return PacingController(
        listing_range=(5.0, 10.0),
        detail_range=(2.0, 5.0),
        backoff_multiplier=2.5,
        sleep=_sleep,
        rng=random.Random(3),
    )


@pytest.fixture
def identities() -> IdentityPool:
    return IdentityPool(
        ["ua-chrome", "ua-firefox", "ua-safari"],
        ["http://proxy-1:8080", "http://proxy-2:8080"],
        rng=random.Random(1),
    )


@pytest.fixture
def events() -> EventLog:
    return EventLog()


@pytest.fixture
def search() -> SearchRequest:
    return SearchRequest(query_term="python developer", location="Remote")


@pytest.fixture
def seed_url(search) -> str:
    return build_search_url(BASE, search)


@pytest.fixture
def make_crawler(pacing, identities, events):
    """Build a Crawler around a fake fetcher and sink."""

    def _make(
        fetcher: FakeFetcher,
        sink: ListSink,
        max_consecutive_storage_failures: int = 5,
        extraction: Optional[ExtractionStrategy] = None,
        **config_kwargs,
    ) -> Crawler:
        config = CrawlerConfig(base_url=BASE, **config_kwargs)
        return Crawler(
            config,
            fetcher,
            sink,
            pacing=pacing,
            extraction=extraction,
            identities=identities,
            events=events,
            max_consecutive_storage_failures=max_consecutive_storage_failures,
        )

    return _make
