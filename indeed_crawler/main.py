"""Indeed Crawler — Main Entry Point.

Ties the components together for one crawl run:
  config → database → fetcher + crawler → run → summary

SIGINT/SIGTERM request cancellation; the crawl stops at the next fetch
boundary and still reports what it saved.

Usage:
    python -m indeed_crawler.main --query "data engineer" --location Berlin
    python scripts/run.py
"""

from __future__ import annotations

import argparse
import asyncio
import json
import signal
import sys
from pathlib import Path
from typing import Optional, Sequence

from indeed_crawler.config import PROJECT_ROOT, AppConfig, load_config
from indeed_crawler.database.db import Database
from indeed_crawler.database.sink import RecordSink
from indeed_crawler.errors import ConfigError
from indeed_crawler.scraper.client import HttpFetcher
from indeed_crawler.scraper.crawler import Crawler
from indeed_crawler.scraper.state import RunStatus, RunSummary
from indeed_crawler.utils.logger import get_logger, set_console_level

logger = get_logger(__name__)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_CONFIG = 2


class IndeedCrawlerApp:
    """Application wrapper around a single crawl run.

    Attributes:
        config: Full application configuration.
        db: Active database instance (while running).
    """

    def __init__(self, config: AppConfig) -> None:
        self.config = config
        self.db: Optional[Database] = None
        self._crawler: Optional[Crawler] = None
        self._cancel_requested = False

    async def run(self) -> RunSummary:
        """Open storage and transport, crawl once, close everything.

        Returns:
            The crawl's RunSummary.
        """
        if self.config.search is None:
            raise ConfigError("No search input: set the 'search' section or pass --query")

        db_path = Path(self.config.storage.database_path)
        if not db_path.is_absolute():
            db_path = PROJECT_ROOT / db_path

        # ── 1. Database ──────────────────────────────────
        logger.info("═══ Initializing database ═══")
        self.db = Database(str(db_path))
        await self.db.initialize()

        try:
            # ── 2. Crawl ─────────────────────────────────
            async with HttpFetcher(self.config.crawler) as fetcher:
                self._crawler = Crawler(
                    self.config.crawler,
                    fetcher,
                    RecordSink(self.db),
                    max_consecutive_storage_failures=self.config.storage.max_consecutive_failures,
                )
                if self._cancel_requested:
                    self._crawler.cancel()
                return await self._crawler.run(self.config.search)
        finally:
            await self.shutdown()

    def cancel(self) -> None:
        """Ask the running crawl to stop."""
        self._cancel_requested = True
        if self._crawler is not None:
            self._crawler.cancel()

    async def shutdown(self) -> None:
        """Close the database."""
        if self.db is not None:
            await self.db.close()
            self.db = None
        logger.info("Shutdown complete")


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    """Parse command-line overrides for the search section."""
    parser = argparse.ArgumentParser(
        prog="indeed-crawler",
        description="Crawl Indeed search results into a local SQLite store.",
    )
    parser.add_argument("--query", help="Job title or keywords (overrides search.position)")
    parser.add_argument("--location", help="Location text (overrides search.location)")
    parser.add_argument("--country", help="Two-letter country code, e.g. us, gb, de")
    parser.add_argument("--max-items", type=int, help="Maximum records to save")
    parser.add_argument("--max-pages", type=int, help="Maximum listing pages (ceiling 10)")
    parser.add_argument(
        "--company-details", action="store_true", default=None,
        help="Also crawl the company page of each saved job",
    )
    parser.add_argument(
        "--unique-only", action="store_true", default=None,
        help="Skip jobs already present in the database",
    )
    parser.add_argument("--settings", type=Path, help="Path to settings.yaml")
    parser.add_argument("--json", action="store_true", help="Print the run summary as JSON")
    return parser.parse_args(argv)


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Application entry point.

    Returns:
        Process exit code: 0 when the run finished (DONE or CANCELLED),
        1 when it was ABORTED, 2 on configuration errors.
    """
    args = parse_args(argv)

    try:
        config = load_config(
            settings_path=args.settings,
            search_overrides={
                "query_term": args.query,
                "location": args.location,
                "country": args.country,
                "max_items": args.max_items,
                "max_pages": args.max_pages,
                "parse_company_details": args.company_details,
                "save_only_unique_items": args.unique_only,
            },
        )
    except ConfigError as e:
        logger.error("Configuration error: %s", e)
        return EXIT_CONFIG

    set_console_level(config.log_level)
    app = IndeedCrawlerApp(config)

    def _signal_handler(sig, frame):
        logger.info("Signal %s received, stopping after the current page...", sig)
        app.cancel()

    signal.signal(signal.SIGINT, _signal_handler)
    signal.signal(signal.SIGTERM, _signal_handler)

    try:
        summary = asyncio.run(app.run())
    except ConfigError as e:
        logger.error("Configuration error: %s", e)
        return EXIT_CONFIG

    if args.json:
        print(json.dumps(summary.to_dict(), indent=2, ensure_ascii=False))
    return EXIT_FAILED if summary.status is RunStatus.ABORTED else EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
