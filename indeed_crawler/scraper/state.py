"""Indeed Crawler — Crawl State Types.

Frontier entries, the per-run mutable state owned by the crawl loop,
and the summary returned when a run ends.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping, Optional


class PageKind(str, Enum):
    """Kinds of pages the crawler visits."""
    LISTING = "listing"
    DETAIL = "detail"
    COMPANY = "company"


class RunStatus(str, Enum):
    """How a crawl run ended."""
    DONE = "done"
    ABORTED = "aborted"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class FrontierEntry:
    """A discovered, not yet visited URL.

    Attributes:
        url: Absolute URL to fetch.
        kind: Which handler processes the page.
        depth: Listing page index the entry was discovered from.
        user_data: Opaque bag carried to the handler (e.g. listing card
            fields to be merged into the detail record).
    """

    url: str
    kind: PageKind
    depth: int = 0
    user_data: Mapping[str, Any] = field(default_factory=dict)


@dataclass
class CrawlState:
    """Mutable state of one crawl run. Owned by the crawl loop only."""

    visited_urls: set[str] = field(default_factory=set)
    items_saved: int = 0
    pages_visited: int = 0
    companies_saved: int = 0
    skipped_duplicates: int = 0
    challenge_retries: int = 0
    identity_rotations: int = 0
    current_delay_window: Optional[tuple[float, float]] = None
    errors: list[str] = field(default_factory=list)

    def mark_visited(self, key: str) -> bool:
        """Add a normalized URL to the visited set.

        Returns:
            False if the URL was already visited.
        """
        if key in self.visited_urls:
            return False
        self.visited_urls.add(key)
        return True


@dataclass(frozen=True)
class RunSummary:
    """What a crawl run reports back instead of raising."""

    status: RunStatus
    items_saved: int
    pages_visited: int
    errors: tuple[str, ...] = ()
    companies_saved: int = 0
    skipped_duplicates: int = 0
    challenge_retries: int = 0
    identity_rotations: int = 0
    duration_seconds: float = 0.0

    @classmethod
    def from_state(
        cls, status: RunStatus, state: CrawlState, duration_seconds: float
    ) -> "RunSummary":
        return cls(
            status=status,
            items_saved=state.items_saved,
            pages_visited=state.pages_visited,
            errors=tuple(state.errors),
            companies_saved=state.companies_saved,
            skipped_duplicates=state.skipped_duplicates,
            challenge_retries=state.challenge_retries,
            identity_rotations=state.identity_rotations,
            duration_seconds=round(duration_seconds, 1),
        )

    def to_dict(self) -> dict[str, Any]:
        """Plain dict for logging and JSON output."""
        return {
            "status": self.status.value,
            "items_saved": self.items_saved,
            "pages_visited": self.pages_visited,
            "errors": list(self.errors),
            "companies_saved": self.companies_saved,
            "skipped_duplicates": self.skipped_duplicates,
            "challenge_retries": self.challenge_retries,
            "identity_rotations": self.identity_rotations,
            "duration_seconds": self.duration_seconds,
        }
