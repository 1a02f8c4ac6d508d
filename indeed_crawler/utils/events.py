"""Indeed Crawler — Structured Crawl Events.

Every stage of the crawl loop reports a CrawlEvent {stage, url, outcome}
to an EventLog instead of formatting log lines ad hoc. The log keeps a
bounded in-memory history (deque) that tests and the run summary can
query, and mirrors each event to the module logger at DEBUG.

Usage:
    events = EventLog()
    events.emit("fetch", url, "ok", status=200)
    events.count(stage="challenge", outcome="retry")
"""

from __future__ import annotations

import time
from collections import Counter, deque
from dataclasses import dataclass, field
from typing import Any, Optional

from indeed_crawler.utils.logger import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class CrawlEvent:
    """One thing that happened to one URL."""
    stage: str
    url: str
    outcome: str
    detail: dict[str, Any] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.monotonic)


class EventLog:
    """Bounded history of crawl events with simple aggregate queries.

    Attributes:
        counts: Running (stage, outcome) counters, never truncated.
    """

    def __init__(self, max_history: int = 5000) -> None:
        self._events: deque[CrawlEvent] = deque(maxlen=max_history)
        self.counts: Counter[tuple[str, str]] = Counter()

    def emit(self, stage: str, url: str, outcome: str, **detail: Any) -> CrawlEvent:
        """Record an event.

        Args:
            stage: Loop stage (listing, detail, company, fetch, challenge,
                   extract, persist, run).
            url: The URL the event is about ("" for run-level events).
            outcome: Short result label (ok, error, retry, skipped...).
            **detail: Extra structured context.

        Returns:
            The recorded CrawlEvent.
        """
        event = CrawlEvent(stage=stage, url=url, outcome=outcome, detail=detail)
        self._events.append(event)
        self.counts[(stage, outcome)] += 1
        logger.debug("event %s/%s %s %s", stage, outcome, url, detail or "")
        return event

    @property
    def events(self) -> list[CrawlEvent]:
        return list(self._events)

    def filter(
        self, stage: Optional[str] = None, outcome: Optional[str] = None
    ) -> list[CrawlEvent]:
        """Return retained events matching the given stage and/or outcome."""
        return [
            e for e in self._events
            if (stage is None or e.stage == stage)
            and (outcome is None or e.outcome == outcome)
        ]

    def count(self, stage: Optional[str] = None, outcome: Optional[str] = None) -> int:
        """Count all events ever emitted matching stage and/or outcome."""
        return sum(
            n for (s, o), n in self.counts.items()
            if (stage is None or s == stage) and (outcome is None or o == outcome)
        )

    def __len__(self) -> int:
        return len(self._events)
