"""Indeed Crawler — Challenge Detector.

Classifies a fetched page before extraction:
  OK         → real content, go ahead and extract
  CHALLENGED → bot-mitigation interstitial or "automated traffic" page
  EMPTY      → (near) zero content or the page kind's root container
               is missing

The detector only classifies. The retry/backoff/rotate policy lives in
the crawl loop.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional, Sequence

from selectolax.parser import HTMLParser

from indeed_crawler.config import CrawlerConfig
from indeed_crawler.scraper.client import FetchResult
from indeed_crawler.scraper.state import PageKind
from indeed_crawler.utils.logger import get_logger

logger = get_logger(__name__)

# ── Body markers (matched case-insensitively) ─────────────
DEFAULT_CHALLENGE_MARKERS = (
    "just a moment...",
    "attention required! | cloudflare",
    "cf-challenge",
    "challenge-form",
    "challenges.cloudflare.com",
    "cf-turnstile",
    "hcaptcha.com",
    "g-recaptcha",
    "verify you are human",
    "additional verification required",
    "security check to access",
    "unusual traffic",
    "automated queries",
    "request looks automated",
)

# ── Final-URL markers ─────────────────────────────────────
_URL_MARKERS = ("__cf_chl", "/cdn-cgi/challenge", "challenges.cloudflare.com", "/captcha")

# Status codes that only ever mean "slow down, you look like a bot"
_CHALLENGE_STATUSES = frozenset({429})

# ── Expected root containers per page kind ────────────────
ROOT_SELECTORS: dict[PageKind, tuple[str, ...]] = {
    PageKind.LISTING: (
        "#mosaic-provider-jobcards",
        ".jobsearch-LeftPane",
        "#resultsCol",
        "#jobsearch-Main",
        "main",
    ),
    PageKind.DETAIL: (
        "#jobDescriptionText",
        ".jobsearch-JobInfoHeader-title",
        "[data-testid='jobsearch-ViewJobLayout']",
        ".jobsearch-ViewJobLayout",
        "h1",
    ),
    PageKind.COMPANY: (
        "[data-testid='companyDescription']",
        "[data-tn-element='companyWebsite']",
        "main",
        "h1",
    ),
}


class Verdict(str, Enum):
    OK = "ok"
    CHALLENGED = "challenged"
    EMPTY = "empty"


class ChallengeDetector:
    """Classifies fetched pages as OK, CHALLENGED or EMPTY.

    Attributes:
        markers: Lower-cased substrings that flag a challenge page.
        min_content_length: Bodies shorter than this (stripped) are EMPTY.
    """

    def __init__(
        self,
        markers: Optional[Sequence[str]] = None,
        min_content_length: int = 512,
        root_selectors: Optional[dict[PageKind, tuple[str, ...]]] = None,
    ) -> None:
        self.markers = tuple(m.lower() for m in (markers or DEFAULT_CHALLENGE_MARKERS))
        self.min_content_length = min_content_length
        self._root_selectors = root_selectors if root_selectors is not None else ROOT_SELECTORS

    @classmethod
    def from_config(cls, config: CrawlerConfig) -> "ChallengeDetector":
        return cls(
            markers=config.challenge_markers or None,
            min_content_length=config.min_content_length,
        )

    def classify(self, result: FetchResult, kind: PageKind) -> Verdict:
        """Classify a fetch result for a page kind.

        Args:
            result: The fetched response.
            kind: What kind of page was requested.

        Returns:
            The Verdict.
        """
        marker = self.challenge_reason(result)
        if marker:
            logger.warning("Challenge detected (%s) on %s", marker, result.final_url)
            return Verdict.CHALLENGED

        body = result.body.strip()
        if len(body) < self.min_content_length:
            logger.warning(
                "Empty page (%d bytes < %d) on %s",
                len(body), self.min_content_length, result.final_url,
            )
            return Verdict.EMPTY

        selectors = self._root_selectors.get(kind, ())
        if selectors:
            tree = HTMLParser(body)
            if not any(tree.css_first(sel) is not None for sel in selectors):
                logger.warning("No %s root container on %s", kind.value, result.final_url)
                return Verdict.EMPTY

        return Verdict.OK

    def challenge_reason(self, result: FetchResult) -> str:
        """Return the first challenge indicator found, or "".

        Checks the status code, the final URL and the body markers.
        """
        if result.status_code in _CHALLENGE_STATUSES:
            return f"status:{result.status_code}"

        final_url = result.final_url.lower()
        for marker in _URL_MARKERS:
            if marker in final_url:
                return f"url:{marker}"

        body = result.body.lower()
        for marker in self.markers:
            if marker in body:
                return f"body:{marker}"
        return ""
