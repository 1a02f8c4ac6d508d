"""Indeed Crawler — Scraper Package.

Paginated crawl of Indeed search results. Components:
  - Crawler: Listing → detail crawl loop with budgets and cancellation
  - HttpFetcher: Async HTTP transport with retry and identity rotation
  - ChallengeDetector: OK / CHALLENGED / EMPTY page classification
  - ExtractionStrategy: Profile-based selectolax extraction
  - PacingController: Randomized per-page-kind delays
"""

from indeed_crawler.scraper.challenge import ChallengeDetector, Verdict
from indeed_crawler.scraper.client import FetchHints, FetchResult, HttpFetcher
from indeed_crawler.scraper.crawler import Crawler
from indeed_crawler.scraper.extraction import ExtractionStrategy
from indeed_crawler.scraper.identity import Identity, IdentityPool
from indeed_crawler.scraper.pacing import PacingController
from indeed_crawler.scraper.pagination import PaginationMode
from indeed_crawler.scraper.state import FrontierEntry, PageKind, RunStatus, RunSummary

__all__ = [
    "ChallengeDetector",
    "Crawler",
    "ExtractionStrategy",
    "FetchHints",
    "FetchResult",
    "FrontierEntry",
    "HttpFetcher",
    "Identity",
    "IdentityPool",
    "PacingController",
    "PageKind",
    "PaginationMode",
    "RunStatus",
    "RunSummary",
    "Verdict",
]
