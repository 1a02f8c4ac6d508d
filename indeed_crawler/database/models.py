"""Indeed Crawler — Data Models.

Dataclasses for the items the crawler persists: job records extracted
from detail pages and company details from company pages.

Each dataclass includes:
  - to_db_dict(): converts to a dict suitable for SQLite insertion
  - from_db_row(row): classmethod to reconstruct from a DB row dict

The two are exact inverses: optional fields stay None, `remote` keeps
its three states (True / False / unknown).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional


def _utc_now() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat()


def _opt_bool(value: Any) -> Optional[bool]:
    return None if value is None else bool(value)


@dataclass(frozen=True)
class Record:
    """A structured job listing extracted from a detail page.

    Only `url` and `title` are guaranteed; every other field is
    best-effort and falls back to "" or None when no rule matched.

    Attributes:
        url: Canonical detail-page URL.
        title: Job title (never empty for a persisted record).
        company: Employer name.
        location: Location text as shown on the page.
        description: Full job description text.
        salary: Salary text, if shown.
        job_type: Employment type (e.g. "Full-time").
        posted_date: Relative or absolute posting date text.
        remote: True/False when the page says so, None when unknown.
        apply_url: External apply link, if any.
        company_url: Company overview page on the job site.
        company_rating: Company star rating.
        job_key: Site-specific job identifier (the `jk` parameter).
        search_query: Query term of the run that found this record.
        scraped_at: UTC ISO timestamp of extraction.
    """

    url: str
    title: str
    company: str = ""
    location: str = ""
    description: str = ""
    salary: Optional[str] = None
    job_type: Optional[str] = None
    posted_date: Optional[str] = None
    remote: Optional[bool] = None
    apply_url: Optional[str] = None
    company_url: Optional[str] = None
    company_rating: Optional[float] = None
    job_key: Optional[str] = None
    search_query: str = ""
    scraped_at: str = field(default_factory=_utc_now)

    @property
    def dedup_key(self) -> str:
        """Identity used for cross-run uniqueness (job key, else URL)."""
        return self.job_key or self.url

    def to_db_dict(self) -> dict[str, Any]:
        """Convert to a dictionary for SQLite insertion.

        Returns:
            Dict with column names as keys, `remote` as nullable int.
        """
        return {
            "dedup_key": self.dedup_key,
            "url": self.url,
            "title": self.title,
            "company": self.company,
            "location": self.location,
            "description": self.description,
            "salary": self.salary,
            "job_type": self.job_type,
            "posted_date": self.posted_date,
            "remote": None if self.remote is None else int(self.remote),
            "apply_url": self.apply_url,
            "company_url": self.company_url,
            "company_rating": self.company_rating,
            "job_key": self.job_key,
            "search_query": self.search_query,
            "scraped_at": self.scraped_at,
        }

    @classmethod
    def from_db_row(cls, row: dict[str, Any]) -> "Record":
        """Construct a Record from a database row dictionary.

        Args:
            row: Dictionary with column names as keys.

        Returns:
            A Record instance.
        """
        return cls(
            url=row["url"],
            title=row["title"],
            company=row.get("company", ""),
            location=row.get("location", ""),
            description=row.get("description", ""),
            salary=row.get("salary"),
            job_type=row.get("job_type"),
            posted_date=row.get("posted_date"),
            remote=_opt_bool(row.get("remote")),
            apply_url=row.get("apply_url"),
            company_url=row.get("company_url"),
            company_rating=row.get("company_rating"),
            job_key=row.get("job_key"),
            search_query=row.get("search_query", ""),
            scraped_at=row["scraped_at"],
        )


@dataclass(frozen=True)
class CompanyDetails:
    """Company overview extracted from a company page.

    Attributes:
        url: Company page URL (unique key).
        name: Company name.
        website: Company's own website.
        size: Employee count bucket.
        founded: Founding year text.
        industry: Industry label.
        headquarters: Headquarters location.
        description: About-the-company text.
    """

    url: str
    name: str = ""
    website: Optional[str] = None
    size: Optional[str] = None
    founded: Optional[str] = None
    industry: Optional[str] = None
    headquarters: Optional[str] = None
    description: Optional[str] = None
    scraped_at: str = field(default_factory=_utc_now)

    def to_db_dict(self) -> dict[str, Any]:
        """Convert to a dictionary for SQLite insertion."""
        return {
            "url": self.url,
            "name": self.name,
            "website": self.website,
            "size": self.size,
            "founded": self.founded,
            "industry": self.industry,
            "headquarters": self.headquarters,
            "description": self.description,
            "scraped_at": self.scraped_at,
        }

    @classmethod
    def from_db_row(cls, row: dict[str, Any]) -> "CompanyDetails":
        """Construct CompanyDetails from a database row dictionary."""
        return cls(
            url=row["url"],
            name=row.get("name", ""),
            website=row.get("website"),
            size=row.get("size"),
            founded=row.get("founded"),
            industry=row.get("industry"),
            headquarters=row.get("headquarters"),
            description=row.get("description"),
            scraped_at=row["scraped_at"],
        )
