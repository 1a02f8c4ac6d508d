"""Indeed Crawler — Crawl Loop.

Walks Indeed search results one listing page at a time:

  listing page → detail links (+ card summaries) → detail pages → records
              → next listing page (offset or next-link, fixed per run)

All detail pages of listing page N are visited before page N+1 is
fetched. Only one fetch is ever in flight.

Failure handling:
  - Listing page fetch, classification or extraction failure → run ABORTED
  - Detail or company page failure (fetch or extraction) → logged, sweep
    continues
  - StorageError                            → counted; the run is
    ABORTED once the sink breaker opens (N consecutive failures)
  - cancel()                                → CANCELLED at the next
    listing/detail/company fetch boundary

run() reports a RunSummary and never raises for any of the above.
"""

from __future__ import annotations

import time
from collections import deque
from typing import Optional

from indeed_crawler.config import CrawlerConfig, SearchRequest
from indeed_crawler.database.models import Record
from indeed_crawler.database.sink import Sink
from indeed_crawler.errors import (
    ChallengeError,
    EmptyPageError,
    ExtractionError,
    StorageError,
    TransportError,
)
from indeed_crawler.scraper.challenge import ChallengeDetector, Verdict
from indeed_crawler.scraper.client import RENDER_HTTP, Fetcher, FetchHints, FetchResult
from indeed_crawler.scraper.extraction import ExtractionStrategy, ListingExtraction
from indeed_crawler.scraper.identity import IdentityPool
from indeed_crawler.scraper.pacing import PacingController
from indeed_crawler.scraper.pagination import (
    PaginationMode,
    base_url_for_country,
    build_search_url,
    normalize_url,
    offset_page_url,
)
from indeed_crawler.scraper.state import CrawlState, FrontierEntry, PageKind, RunStatus, RunSummary
from indeed_crawler.utils.events import EventLog
from indeed_crawler.utils.logger import get_logger
from indeed_crawler.utils.resilience import CircuitBreaker, CircuitOpenError

logger = get_logger(__name__)


class _RunCancelled(Exception):
    """Internal signal: cancel() was honoured at a loop boundary."""


class Crawler:
    """Paginated crawl of one Indeed search.

    Attributes:
        config: Crawler configuration.
        pagination_mode: How the next listing page is found.
        events: Structured event log for this crawler.
    """

    def __init__(
        self,
        config: CrawlerConfig,
        fetcher: Fetcher,
        sink: Sink,
        pacing: Optional[PacingController] = None,
        detector: Optional[ChallengeDetector] = None,
        extraction: Optional[ExtractionStrategy] = None,
        identities: Optional[IdentityPool] = None,
        events: Optional[EventLog] = None,
        max_consecutive_storage_failures: int = 5,
        render_mode: str = RENDER_HTTP,
    ) -> None:
        """Initialize the crawler.

        Args:
            config: CrawlerConfig loaded from settings.yaml.
            fetcher: Transport used for every page.
            sink: Record store.
            pacing: Delay controller (built from config if omitted).
            detector: Challenge detector (built from config if omitted).
            extraction: Extraction strategy (default profiles if omitted).
            identities: Egress identity pool (built from config if omitted).
            events: Event log (a fresh one if omitted).
            max_consecutive_storage_failures: Sink failures in a row that
                abort the run.
            render_mode: Render hint passed to the fetcher.
        """
        self.config = config
        self.pagination_mode = PaginationMode(config.pagination_mode)
        self.events = events if events is not None else EventLog()
        self._fetcher = fetcher
        self._sink = sink
        self._pacing = pacing or PacingController.from_config(config)
        self._detector = detector or ChallengeDetector.from_config(config)
        self._extraction = extraction or ExtractionStrategy()
        self._identities = identities or IdentityPool.from_config(config)
        self._max_storage_failures = max_consecutive_storage_failures
        self._render_mode = render_mode
        self._cancel_requested = False

    # ── Cancellation ─────────────────────────────────────

    def cancel(self) -> None:
        """Ask the running crawl to stop at the next fetch boundary."""
        if not self._cancel_requested:
            logger.info("Cancellation requested")
        self._cancel_requested = True

    def _check_cancelled(self, url: str) -> None:
        if self._cancel_requested:
            self.events.emit("run", url, "cancelled")
            raise _RunCancelled()

    # ── Run ──────────────────────────────────────────────

    async def run(self, request: SearchRequest) -> RunSummary:
        """Crawl one search request to completion.

        Args:
            request: What to search for and the item/page budgets.

        Returns:
            RunSummary with status DONE, ABORTED or CANCELLED.
        """
        start_time = time.monotonic()
        state = CrawlState()
        breaker = CircuitBreaker("sink", failure_threshold=self._max_storage_failures)
        base_url = self.config.base_url or base_url_for_country(request.country)
        seed_url = build_search_url(base_url, request)
        page_limit = min(request.max_pages, self.config.page_ceiling)

        logger.info(
            "═══ Crawl Starting: '%s' in '%s' (items ≤ %d, pages ≤ %d, %s) ═══",
            request.query_term, request.location or "anywhere",
            request.max_items, page_limit, self.pagination_mode.value,
        )
        self.events.emit("run", seed_url, "started", mode=self.pagination_mode.value)

        status = RunStatus.DONE
        try:
            await self._crawl(request, state, breaker, seed_url, page_limit)
        except _RunCancelled:
            status = RunStatus.CANCELLED
        except (TransportError, ExtractionError) as e:
            status = RunStatus.ABORTED
            self._record_error(state, "listing", e.url, e)
        except CircuitOpenError as e:
            status = RunStatus.ABORTED
            state.errors.append(str(e))
            self.events.emit("persist", "", "aborted", failures=e.failures)
            logger.error("Aborting run: %s", e)

        summary = RunSummary.from_state(status, state, time.monotonic() - start_time)
        self.events.emit("run", seed_url, status.value, **{
            k: v for k, v in summary.to_dict().items() if k not in ("status", "errors")
        })

        logger.info("═══ Crawl %s ═══", status.value.upper())
        logger.info(
            "  Items: %d | Pages: %d | Companies: %d | Duplicates: %d | "
            "Challenges: %d | Errors: %d | Time: %.1fs",
            summary.items_saved, summary.pages_visited, summary.companies_saved,
            summary.skipped_duplicates, summary.challenge_retries,
            len(summary.errors), summary.duration_seconds,
        )
        return summary

    async def _crawl(
        self,
        request: SearchRequest,
        state: CrawlState,
        breaker: CircuitBreaker,
        seed_url: str,
        page_limit: int,
    ) -> None:
        frontier: deque[FrontierEntry] = deque(
            [FrontierEntry(url=seed_url, kind=PageKind.LISTING, depth=0)]
        )

        while frontier:
            entry = frontier.popleft()
            self._check_cancelled(entry.url)

            if state.items_saved >= request.max_items:
                logger.info("Item budget reached (%d)", request.max_items)
                break
            if state.pages_visited >= page_limit:
                logger.info("Page limit reached (%d)", page_limit)
                break
            if not state.mark_visited(normalize_url(entry.url)):
                self.events.emit("listing", entry.url, "skipped", reason="visited")
                break

            # ── Listing page ─────────────────────────────
            logger.info("── Listing page %d: %s", entry.depth + 1, entry.url)
            result = await self._fetch_page(entry, state)
            state.pages_visited += 1

            try:
                listing = self._extraction.extract_listing(result.body, result.final_url or entry.url)
            except Exception as e:
                raise ExtractionError(entry.url, f"{type(e).__name__}: {e}") from e
            self.events.emit(
                "listing", entry.url, "ok",
                profile=listing.profile,
                links=len(listing.detail_links),
                next_page=listing.next_page_url is not None,
            )

            # ── Detail sweep ─────────────────────────────
            await self._sweep_details(entry, listing, request, state, breaker)

            next_entry = self._next_listing(entry, listing, request, state, seed_url, page_limit)
            if next_entry is not None:
                frontier.append(next_entry)

    def _next_listing(
        self,
        entry: FrontierEntry,
        listing: ListingExtraction,
        request: SearchRequest,
        state: CrawlState,
        seed_url: str,
        page_limit: int,
    ) -> Optional[FrontierEntry]:
        """Decide the next listing page, or None when the crawl is done."""
        if state.items_saved >= request.max_items or state.pages_visited >= page_limit:
            return None

        if self.pagination_mode is PaginationMode.OFFSET:
            if not listing.detail_links:
                logger.info("No results on %s, end of offset pagination", entry.url)
                return None
            next_url = offset_page_url(seed_url, entry.depth + 1, self.config.page_size)
        else:
            next_url = listing.next_page_url
            if not next_url:
                logger.info("No next page link on %s", entry.url)
                return None

        if normalize_url(next_url) in state.visited_urls:
            self.events.emit("pagination", next_url, "cycle", page=entry.depth + 2)
            logger.warning("Next page %s was already visited, stopping", next_url)
            return None

        self.events.emit("pagination", next_url, "queued", page=entry.depth + 2)
        return FrontierEntry(url=next_url, kind=PageKind.LISTING, depth=entry.depth + 1)

    # ── Detail pages ─────────────────────────────────────

    async def _sweep_details(
        self,
        listing_entry: FrontierEntry,
        listing: ListingExtraction,
        request: SearchRequest,
        state: CrawlState,
        breaker: CircuitBreaker,
    ) -> None:
        details: deque[FrontierEntry] = deque()
        for link in listing.detail_links:
            key = normalize_url(link)
            if key in state.visited_urls:
                self.events.emit("detail", link, "skipped", reason="visited")
                continue
            details.append(FrontierEntry(
                url=link,
                kind=PageKind.DETAIL,
                depth=listing_entry.depth,
                user_data={"card": listing.cards.get(key, {}), "referer": listing_entry.url},
            ))

        total = len(details)
        position = 0
        while details:
            if state.items_saved >= request.max_items:
                self.events.emit("detail", "", "budget_reached", remaining=len(details))
                logger.info("Item budget reached, %d links left unvisited", len(details))
                return

            entry = details.popleft()
            position += 1
            self._check_cancelled(entry.url)
            if not state.mark_visited(normalize_url(entry.url)):
                self.events.emit("detail", entry.url, "skipped", reason="visited")
                continue

            logger.info("  [%d/%d] %s", position, total, entry.url)
            await self._process_detail(entry, request, state, breaker)

    async def _process_detail(
        self,
        entry: FrontierEntry,
        request: SearchRequest,
        state: CrawlState,
        breaker: CircuitBreaker,
    ) -> None:
        try:
            result = await self._fetch_page(entry, state)
        except TransportError as e:
            self._record_error(state, "detail", entry.url, e)
            return

        try:
            record = self._extraction.extract_detail(
                result.body, entry.url, entry.user_data, request.query_term,
            )
        except Exception as e:
            self._record_error(
                state, "detail", entry.url, ExtractionError(entry.url, f"{type(e).__name__}: {e}"),
            )
            return
        if record is None:
            self.events.emit("extract", entry.url, "no_title")
            return
        self.events.emit("extract", entry.url, "ok", title=record.title)

        if request.save_only_unique_items:
            try:
                exists = await breaker.call(self._sink.contains, record)
            except StorageError as e:
                self._on_storage_error(state, breaker, entry.url, e)
                return
            if exists:
                state.skipped_duplicates += 1
                self.events.emit("persist", entry.url, "duplicate", key=record.dedup_key)
                logger.info("  Already stored, skipping: %s", record.dedup_key)
                return

        try:
            await breaker.call(self._sink.append, record)
        except StorageError as e:
            self._on_storage_error(state, breaker, entry.url, e)
            return

        state.items_saved += 1
        self.events.emit("persist", entry.url, "ok", items_saved=state.items_saved)
        logger.info(
            "  ✅ %s | %s | %s",
            record.title[:50], record.company or "N/A", record.location or "N/A",
        )

        if (
            request.parse_company_details
            and record.company_url
            and state.items_saved < request.max_items
        ):
            await self._process_company(entry, record, state, breaker)

    # ── Company pages ────────────────────────────────────

    async def _process_company(
        self,
        detail_entry: FrontierEntry,
        record: Record,
        state: CrawlState,
        breaker: CircuitBreaker,
    ) -> None:
        company_url = record.company_url or ""
        if not state.mark_visited(normalize_url(company_url)):
            self.events.emit("company", company_url, "skipped", reason="visited")
            return
        self._check_cancelled(company_url)

        entry = FrontierEntry(
            url=company_url,
            kind=PageKind.COMPANY,
            depth=detail_entry.depth,
            user_data={"company_name": record.company, "referer": detail_entry.url},
        )
        try:
            result = await self._fetch_page(entry, state)
        except TransportError as e:
            self._record_error(state, "company", company_url, e)
            return

        try:
            company = self._extraction.extract_company(result.body, company_url, entry.user_data)
        except Exception as e:
            self._record_error(
                state, "company", company_url, ExtractionError(company_url, f"{type(e).__name__}: {e}"),
            )
            return
        try:
            await breaker.call(self._sink.append_company, company)
        except StorageError as e:
            self._on_storage_error(state, breaker, company_url, e)
            return

        state.companies_saved += 1
        self.events.emit("company", company_url, "ok", name=company.name)

    # ── Fetch + challenge policy ─────────────────────────

    async def _fetch_page(self, entry: FrontierEntry, state: CrawlState) -> FetchResult:
        """Pace, fetch and classify one page.

        A CHALLENGED page is retried exactly once, after a backoff wait
        and with a rotated identity. Anything but a clean 2xx page raises.

        Raises:
            ChallengeError: Still challenged after the retry.
            EmptyPageError: Empty body or missing root container.
            TransportError: Network failure or non-2xx status.
        """
        kind = entry.kind
        state.current_delay_window = self._pacing.window_for(kind)
        await self._pacing.wait(kind)

        result = await self._fetch_once(entry)
        verdict = self._detector.classify(result, kind)

        if verdict is Verdict.CHALLENGED:
            state.challenge_retries += 1
            self.events.emit(
                "challenge", entry.url, "retry",
                reason=self._detector.challenge_reason(result),
            )
            await self._pacing.backoff(kind)
            identity = self._identities.next_identity()
            state.identity_rotations += 1
            self.events.emit("identity", entry.url, "rotated", session=identity.session_id)

            result = await self._fetch_once(entry)
            verdict = self._detector.classify(result, kind)
            if verdict is Verdict.CHALLENGED:
                self.events.emit("challenge", entry.url, "failed")
                raise ChallengeError(entry.url)
            self.events.emit("challenge", entry.url, "recovered", verdict=verdict.value)

        if verdict is Verdict.EMPTY:
            self.events.emit("classify", entry.url, "empty", status=result.status_code)
            raise EmptyPageError(entry.url)

        if not result.ok:
            self.events.emit("classify", entry.url, "http_error", status=result.status_code)
            raise TransportError(entry.url, "Unexpected response", status_code=result.status_code)

        return result

    async def _fetch_once(self, entry: FrontierEntry) -> FetchResult:
        headers = {}
        referer = entry.user_data.get("referer")
        if referer:
            headers["Referer"] = referer
        hints = FetchHints(
            headers=headers,
            identity=self._identities.current(),
            render_mode=self._render_mode,
        )
        try:
            result = await self._fetcher.fetch(entry.url, hints)
        except TransportError as e:
            self.events.emit("fetch", entry.url, "error", kind=entry.kind.value, reason=e.reason)
            raise
        self.events.emit("fetch", entry.url, "ok", kind=entry.kind.value, status=result.status_code)
        return result

    # ── Error bookkeeping ────────────────────────────────

    def _record_error(self, state: CrawlState, stage: str, url: str, error: Exception) -> None:
        state.errors.append(f"{stage}: {error}")
        self.events.emit(stage, url, "error", error=type(error).__name__, message=str(error))
        if stage == "listing":
            logger.error("Listing page failed, aborting run: %s", error)
        else:
            logger.warning("  ❌ %s failed: %s", stage.capitalize(), error)

    def _on_storage_error(
        self, state: CrawlState, breaker: CircuitBreaker, url: str, error: StorageError
    ) -> None:
        self._record_error(state, "persist", url, error)
        if breaker.is_open:
            raise CircuitOpenError(breaker.name, breaker.consecutive_failures) from error
