"""Indeed Crawler — Database Package.

SQLite persistence for extracted records:
  - Database: aiosqlite connection manager and schema
  - queries: parameterized read/write operations
  - RecordSink: append-only sink used by the crawler
"""

from indeed_crawler.database.db import Database
from indeed_crawler.database.models import CompanyDetails, Record
from indeed_crawler.database.sink import RecordSink, Sink

__all__ = [
    "Database",
    "CompanyDetails",
    "Record",
    "RecordSink",
    "Sink",
]
