"""Indeed Crawler — Record Sink.

Append-only store the crawler writes to. Wraps the query layer and
turns any database failure into a StorageError so the crawl loop can
count it without knowing about SQLite.
"""

from __future__ import annotations

from typing import Protocol

import aiosqlite

from indeed_crawler.database import queries
from indeed_crawler.database.db import Database
from indeed_crawler.database.models import CompanyDetails, Record
from indeed_crawler.errors import StorageError
from indeed_crawler.utils.logger import get_logger

logger = get_logger(__name__)


class Sink(Protocol):
    """What the crawler needs from a record store."""

    async def append(self, record: Record) -> None: ...

    async def append_company(self, company: CompanyDetails) -> None: ...

    async def contains(self, record: Record) -> bool: ...


class RecordSink:
    """SQLite-backed append-only sink.

    Attributes:
        db: Active Database instance.
        appended: Number of records written through this sink.
    """

    def __init__(self, db: Database) -> None:
        self.db = db
        self.appended = 0

    async def append(self, record: Record) -> None:
        """Persist one record.

        Raises:
            StorageError: If the write failed.
        """
        try:
            await queries.insert_record(self.db, record)
        except (aiosqlite.Error, OSError) as e:
            raise StorageError(f"Failed to store {record.url}: {e}") from e
        self.appended += 1

    async def append_company(self, company: CompanyDetails) -> None:
        """Persist (or refresh) one company overview.

        Raises:
            StorageError: If the write failed.
        """
        try:
            await queries.upsert_company(self.db, company)
        except (aiosqlite.Error, OSError) as e:
            raise StorageError(f"Failed to store company {company.url}: {e}") from e

    async def contains(self, record: Record) -> bool:
        """Whether a record with the same dedup key was stored before.

        Raises:
            StorageError: If the lookup failed.
        """
        try:
            return await queries.record_exists(self.db, record.dedup_key)
        except (aiosqlite.Error, OSError) as e:
            raise StorageError(f"Failed to look up {record.dedup_key}: {e}") from e
