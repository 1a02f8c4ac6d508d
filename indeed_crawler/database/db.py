"""Indeed Crawler — SQLite Connection Manager.

Provides async SQLite database connection management using aiosqlite.
Handles database initialization, schema creation, indexes, and
connection lifecycle.
"""

from __future__ import annotations

from pathlib import Path

import aiosqlite

from indeed_crawler.utils.logger import get_logger

logger = get_logger(__name__)

# ── Schema Definitions ────────────────────────────────────
SCHEMA_SQL = """
-- ═══ Records Table ═══
-- One row per extracted job, in discovery order (id).
CREATE TABLE IF NOT EXISTS records (
    id             INTEGER PRIMARY KEY AUTOINCREMENT,
    dedup_key      TEXT    NOT NULL,
    url            TEXT    NOT NULL,
    title          TEXT    NOT NULL,
    company        TEXT    DEFAULT '',
    location       TEXT    DEFAULT '',
    description    TEXT    DEFAULT '',
    salary         TEXT,
    job_type       TEXT,
    posted_date    TEXT,
    remote         INTEGER,
    apply_url      TEXT,
    company_url    TEXT,
    company_rating REAL,
    job_key        TEXT,
    search_query   TEXT    DEFAULT '',
    scraped_at     TEXT    NOT NULL
);

-- ═══ Companies Table ═══
-- Company overview pages, one row per company URL.
CREATE TABLE IF NOT EXISTS companies (
    id           INTEGER PRIMARY KEY AUTOINCREMENT,
    url          TEXT    UNIQUE NOT NULL,
    name         TEXT    DEFAULT '',
    website      TEXT,
    size         TEXT,
    founded      TEXT,
    industry     TEXT,
    headquarters TEXT,
    description  TEXT,
    scraped_at   TEXT    NOT NULL
);

-- ═══ Performance Indexes ═══
CREATE INDEX IF NOT EXISTS idx_records_dedup_key ON records(dedup_key);
CREATE INDEX IF NOT EXISTS idx_records_query     ON records(search_query);
CREATE INDEX IF NOT EXISTS idx_records_company   ON records(company);
"""


class Database:
    """Async SQLite database connection manager.

    Manages the database lifecycle including initialization, schema
    creation, and a persistent connection with WAL mode enabled.

    Attributes:
        db_path: Resolved absolute path to the SQLite database file.
    """

    def __init__(self, db_path: str) -> None:
        """Initialize the database manager.

        Args:
            db_path: Relative or absolute path to the SQLite database file.
                     Parent directories will be created if they don't exist.
        """
        self.db_path = Path(db_path).resolve()
        self._connection: aiosqlite.Connection | None = None
        logger.debug("Database manager initialized with path: %s", self.db_path)

    async def initialize(self) -> None:
        """Open the connection, set pragmas and create the schema."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        logger.info("Connecting to database: %s", self.db_path)
        self._connection = await aiosqlite.connect(str(self.db_path))

        await self._connection.execute("PRAGMA journal_mode=WAL")
        self._connection.row_factory = aiosqlite.Row

        await self._connection.executescript(SCHEMA_SQL)
        await self._connection.commit()

        logger.info("Database initialized — all tables ready")

    async def get_connection(self) -> aiosqlite.Connection:
        """Get the active database connection, initializing if necessary.

        Returns:
            The active aiosqlite connection.
        """
        if self._connection is None:
            await self.initialize()
        return self._connection

    async def close(self) -> None:
        """Close the database connection. Safe to call more than once."""
        if self._connection is not None:
            await self._connection.close()
            self._connection = None
            logger.info("Database connection closed")

    async def __aenter__(self) -> "Database":
        """Async context manager entry — initializes the database.

        Returns:
            The Database instance with an active connection.
        """
        await self.initialize()
        return self

    async def __aexit__(self, *args: object) -> None:
        """Async context manager exit — closes the database connection."""
        await self.close()
