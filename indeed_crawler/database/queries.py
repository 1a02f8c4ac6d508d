"""Indeed Crawler — Database Query Operations.

All async database read/write operations. Every function:
  - Uses parameterized queries (? placeholders, never f-strings for values)
  - Handles connection via the Database instance
  - Commits after writes
  - Returns clean dataclasses or dictionaries
  - Logs operations at DEBUG level
"""

from __future__ import annotations

from typing import Any, Optional

from indeed_crawler.database.db import Database
from indeed_crawler.database.models import CompanyDetails, Record
from indeed_crawler.utils.logger import get_logger

logger = get_logger(__name__)

_RECORD_COLUMNS = (
    "dedup_key", "url", "title", "company", "location", "description",
    "salary", "job_type", "posted_date", "remote", "apply_url",
    "company_url", "company_rating", "job_key", "search_query", "scraped_at",
)

_COMPANY_COLUMNS = (
    "url", "name", "website", "size", "founded", "industry",
    "headquarters", "description", "scraped_at",
)


def _row_to_dict(row: Any) -> dict[str, Any]:
    """Convert an aiosqlite Row to a plain dictionary."""
    return dict(row)


# ═══════════════════════════════════════════════════════════
# Record Operations
# ═══════════════════════════════════════════════════════════


async def insert_record(db: Database, record: Record) -> int:
    """Append a job record.

    Args:
        db: Active database instance.
        record: Record built by the extraction strategy.

    Returns:
        The autoincrement row id (discovery order).
    """
    conn = await db.get_connection()
    d = record.to_db_dict()
    placeholders = ", ".join("?" for _ in _RECORD_COLUMNS)
    cursor = await conn.execute(
        f"INSERT INTO records ({', '.join(_RECORD_COLUMNS)}) VALUES ({placeholders})",
        tuple(d[col] for col in _RECORD_COLUMNS),
    )
    await conn.commit()
    logger.debug("Inserted record #%d: %s — %s", cursor.lastrowid, record.dedup_key, record.title[:40])
    return cursor.lastrowid


async def record_exists(db: Database, dedup_key: str) -> bool:
    """Check whether a record with the given dedup key is stored.

    Args:
        db: Active database instance.
        dedup_key: Job key, or URL when the job key is unknown.

    Returns:
        True if at least one matching record exists.
    """
    conn = await db.get_connection()
    cursor = await conn.execute(
        "SELECT 1 FROM records WHERE dedup_key = ? LIMIT 1",
        (dedup_key,),
    )
    row = await cursor.fetchone()
    logger.debug("record_exists(%s) = %s", dedup_key, row is not None)
    return row is not None


async def get_records(
    db: Database,
    search_query: Optional[str] = None,
    limit: Optional[int] = None,
) -> list[Record]:
    """Read records back in discovery order.

    Args:
        db: Active database instance.
        search_query: Only records found by this query term.
        limit: Maximum number of records to return.

    Returns:
        List of Record instances.
    """
    conn = await db.get_connection()
    sql = "SELECT * FROM records"
    params: list[Any] = []
    if search_query is not None:
        sql += " WHERE search_query = ?"
        params.append(search_query)
    sql += " ORDER BY id ASC"
    if limit is not None:
        sql += " LIMIT ?"
        params.append(limit)

    cursor = await conn.execute(sql, params)
    rows = await cursor.fetchall()
    return [Record.from_db_row(_row_to_dict(row)) for row in rows]


async def count_records(db: Database) -> int:
    """Return the total number of stored records."""
    conn = await db.get_connection()
    cursor = await conn.execute("SELECT COUNT(*) AS cnt FROM records")
    row = await cursor.fetchone()
    return row["cnt"] if row else 0


# ═══════════════════════════════════════════════════════════
# Company Operations
# ═══════════════════════════════════════════════════════════


async def upsert_company(db: Database, company: CompanyDetails) -> None:
    """Insert or refresh a company overview keyed by URL."""
    conn = await db.get_connection()
    d = company.to_db_dict()
    updates = ", ".join(f"{col} = excluded.{col}" for col in _COMPANY_COLUMNS if col != "url")
    placeholders = ", ".join("?" for _ in _COMPANY_COLUMNS)
    await conn.execute(
        f"""
        INSERT INTO companies ({', '.join(_COMPANY_COLUMNS)}) VALUES ({placeholders})
        ON CONFLICT(url) DO UPDATE SET {updates}
        """,
        tuple(d[col] for col in _COMPANY_COLUMNS),
    )
    await conn.commit()
    logger.debug("Upserted company: %s (%s)", company.name, company.url)


async def get_company(db: Database, url: str) -> Optional[CompanyDetails]:
    """Retrieve a company by its page URL, or None."""
    conn = await db.get_connection()
    cursor = await conn.execute("SELECT * FROM companies WHERE url = ?", (url,))
    row = await cursor.fetchone()
    if row is None:
        logger.debug("get_company(%s) → not found", url)
        return None
    return CompanyDetails.from_db_row(_row_to_dict(row))
