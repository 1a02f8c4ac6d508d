"""Indeed Crawler — Extraction Strategy.

Maps raw page HTML to structured data using selectolax (HTMLParser).

Every field has an ordered chain of FieldRules; the first rule that
yields a non-empty value wins and a field no rule matches is simply
empty. Extraction never raises for missing markup, and hrefs that
do not parse as URLs are skipped.

Pages come in more than one layout, so rules are grouped into
profiles. The strategy probes each profile's marker selectors in
priority order and applies exactly one profile per page:

  Listing: mosaic (current results list) → card (older SERP cards)
  Detail:  rich (full view-job page)     → card (compact embedded view)

If no marker matches, the first profile is used.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional, Sequence, Union
from urllib.parse import parse_qs, urlsplit

from selectolax.parser import HTMLParser, Node

from indeed_crawler.database.models import CompanyDetails, Record
from indeed_crawler.scraper.pagination import absolutize, normalize_url, origin_of
from indeed_crawler.utils.logger import get_logger

logger = get_logger(__name__)

Scope = Union[HTMLParser, Node]

_WHITESPACE = re.compile(r"[ \t\r\f\v]+")
_BLANK_LINES = re.compile(r"\n\s*\n+")


# ═══════════════════════════════════════════════════════════
# Rules
# ═══════════════════════════════════════════════════════════


@dataclass(frozen=True)
class FieldRule:
    """One way of locating a field.

    Attributes:
        selector: CSS selector, evaluated with css_first.
        attr: Read this attribute instead of the node's text.
        pattern: Regex applied to the value; group 1 if present, else
            the whole match. No match means the rule yields nothing.
        multiline: Keep line breaks (descriptions).
    """

    selector: str
    attr: Optional[str] = None
    pattern: Optional[str] = None
    multiline: bool = False

    def apply(self, scope: Scope) -> str:
        node = scope.css_first(self.selector)
        if node is None:
            return ""
        if self.attr:
            value = (node.attributes.get(self.attr) or "").strip()
        else:
            value = _node_text(node, self.multiline)
        if value and self.pattern:
            match = re.search(self.pattern, value, re.IGNORECASE)
            if match is None:
                return ""
            value = (match.group(1) if match.groups() else match.group(0)).strip()
        return value


@dataclass(frozen=True)
class LinkRule:
    """One way of locating detail-page links on a listing page.

    Attributes:
        selector: CSS selector, evaluated with css (all matches).
        attr: Attribute holding the link or key.
        template: If set, the attribute value is a key formatted into
            this path (e.g. "/viewjob?jk={}").
    """

    selector: str
    attr: str = "href"
    template: Optional[str] = None

    def hrefs(self, scope: Scope) -> list[str]:
        values = []
        for node in scope.css(self.selector):
            value = (node.attributes.get(self.attr) or "").strip()
            if not value or value.startswith(("#", "javascript:")):
                continue
            values.append(self.template.format(value) if self.template else value)
        return values


def _node_text(node: Node, multiline: bool = False) -> str:
    """Stripped text of a node; whitespace collapsed unless multiline."""
    if multiline:
        text = node.text(separator="\n", strip=True)
        text = _WHITESPACE.sub(" ", text)
        return _BLANK_LINES.sub("\n\n", text).strip()
    return " ".join(node.text(separator=" ", strip=True).split())


def first_match(scope: Scope, rules: Sequence[FieldRule]) -> str:
    """Return the first non-empty value produced by a rule chain.

    Args:
        scope: Parsed document or a node inside it.
        rules: Rules in priority order.

    Returns:
        The winning value, or "" if every rule came up empty.
    """
    for rule in rules:
        value = rule.apply(scope)
        if value:
            return value
    return ""


def _has_marker(tree: HTMLParser, markers: Sequence[str]) -> bool:
    return any(tree.css_first(m) is not None for m in markers)


def _or_none(value: str) -> Optional[str]:
    return value or None


def _resolve(href: str, page_url: str) -> Optional[str]:
    """Absolute URL for an href, or None if it cannot be parsed."""
    try:
        url = absolutize(href, page_url)
        normalize_url(url)
    except ValueError:
        logger.debug("Skipping unparseable href %r on %s", href, page_url)
        return None
    return url


# ═══════════════════════════════════════════════════════════
# Profiles
# ═══════════════════════════════════════════════════════════


@dataclass(frozen=True)
class ListingProfile:
    """Rules for one search-results layout."""

    name: str
    markers: tuple[str, ...]
    link_rules: tuple[LinkRule, ...]
    next_page_rules: tuple[FieldRule, ...]
    card_selector: str
    card_link_rules: tuple[LinkRule, ...]
    card_fields: Mapping[str, tuple[FieldRule, ...]] = field(default_factory=dict)


@dataclass(frozen=True)
class DetailProfile:
    """Rules for one job-detail layout."""

    name: str
    markers: tuple[str, ...]
    fields: Mapping[str, tuple[FieldRule, ...]]


_NEXT_PAGE_RULES = (
    FieldRule("a[data-testid='pagination-page-next']", attr="href"),
    FieldRule("a[aria-label='Next Page']", attr="href"),
    FieldRule("a[aria-label='Next']", attr="href"),
    FieldRule("link[rel='next']", attr="href"),
)

LISTING_PROFILES: tuple[ListingProfile, ...] = (
    ListingProfile(
        name="mosaic",
        markers=("#mosaic-provider-jobcards",),
        link_rules=(
            LinkRule("#mosaic-provider-jobcards a[data-jk]", attr="data-jk", template="/viewjob?jk={}"),
            LinkRule("#mosaic-provider-jobcards a.jcs-JobTitle"),
            LinkRule("#mosaic-provider-jobcards h2.jobTitle a"),
        ),
        next_page_rules=_NEXT_PAGE_RULES,
        card_selector="#mosaic-provider-jobcards .job_seen_beacon",
        card_link_rules=(
            LinkRule("a[data-jk]", attr="data-jk", template="/viewjob?jk={}"),
            LinkRule("a.jcs-JobTitle"),
            LinkRule("h2.jobTitle a"),
        ),
        card_fields={
            "title": (
                FieldRule("h2.jobTitle span[title]", attr="title"),
                FieldRule("h2.jobTitle span"),
                FieldRule("a.jcs-JobTitle"),
            ),
            "company": (
                FieldRule("[data-testid='company-name']"),
                FieldRule(".companyName"),
            ),
            "location": (
                FieldRule("[data-testid='text-location']"),
                FieldRule(".companyLocation"),
            ),
            "salary": (
                FieldRule(".salary-snippet-container"),
                FieldRule("[data-testid='attribute_snippet_testid']", pattern=r"(\$[\d,.]+.*)"),
            ),
        },
    ),
    ListingProfile(
        name="card",
        markers=(".jobsearch-SerpJobCard", ".job_seen_beacon", ".tapItem"),
        link_rules=(
            LinkRule("a.jcs-JobTitle"),
            LinkRule(".jobsearch-SerpJobCard a.jobtitle"),
            LinkRule("a.tapItem"),
            LinkRule("a[href*='/rc/clk']"),
        ),
        next_page_rules=_NEXT_PAGE_RULES,
        card_selector=".job_seen_beacon, .jobsearch-SerpJobCard",
        card_link_rules=(
            LinkRule("a.jcs-JobTitle"),
            LinkRule("a.jobtitle"),
            LinkRule("a[href*='/rc/clk']"),
        ),
        card_fields={
            "title": (
                FieldRule(".jobTitle"),
                FieldRule(".jobtitle"),
            ),
            "company": (
                FieldRule(".companyName"),
                FieldRule(".company"),
            ),
            "location": (
                FieldRule(".companyLocation"),
                FieldRule(".location"),
            ),
            "salary": (
                FieldRule(".salary-snippet"),
                FieldRule(".salaryText"),
            ),
        },
    ),
)

_DESCRIPTION_RULES = (
    FieldRule("#jobDescriptionText", multiline=True),
    FieldRule(".jobsearch-jobDescriptionText", multiline=True),
)
_JOB_TYPE_PATTERN = r"(full[- ]time|part[- ]time|contract|temporary|internship|permanent|freelance)"

DETAIL_PROFILES: tuple[DetailProfile, ...] = (
    DetailProfile(
        name="rich",
        markers=(
            ".jobsearch-JobInfoHeader-title",
            "[data-testid='jobsearch-JobInfoHeader-title']",
        ),
        fields={
            "title": (
                FieldRule("h1.jobsearch-JobInfoHeader-title span"),
                FieldRule(".jobsearch-JobInfoHeader-title"),
                FieldRule("[data-testid='jobsearch-JobInfoHeader-title']"),
                FieldRule("h1"),
            ),
            "company": (
                FieldRule("div[data-company-name='true'] a"),
                FieldRule("div[data-company-name='true']"),
                FieldRule("[data-testid='inlineHeader-companyName']"),
                FieldRule(".jobsearch-CompanyInfoContainer a"),
            ),
            "location": (
                FieldRule("div[data-testid='job-location']"),
                FieldRule("[data-testid='inlineHeader-companyLocation']"),
                FieldRule("[data-testid='jobsearch-JobInfoHeader-companyLocation']"),
            ),
            "salary": (
                FieldRule("div[data-testid='job-salary']"),
                FieldRule("#salaryInfoAndJobType span"),
            ),
            "description": _DESCRIPTION_RULES,
            "job_type": (
                FieldRule(".jobsearch-JobMetadataHeader-item", pattern=_JOB_TYPE_PATTERN),
                FieldRule("#salaryInfoAndJobType", pattern=_JOB_TYPE_PATTERN),
                FieldRule("#jobDetailsSection", pattern=_JOB_TYPE_PATTERN),
            ),
            "posted_date": (
                FieldRule("[data-testid='myJobsStateDate']"),
                FieldRule(
                    ".jobsearch-JobMetadataFooter",
                    pattern=r"(just posted|today|\d+\+?\s+days?\s+ago|posted\s+\d+\+?\s+days?\s+ago)",
                ),
            ),
            "apply_url": (
                FieldRule("#applyButtonLinkContainer a", attr="href"),
                FieldRule("a[data-testid='apply-button']", attr="href"),
            ),
            "company_url": (
                FieldRule("div[data-company-name='true'] a", attr="href"),
                FieldRule(".jobsearch-CompanyInfoContainer a", attr="href"),
            ),
            "company_rating": (
                FieldRule(
                    "[data-testid='inlineHeader-companyReviewLink']",
                    attr="aria-label", pattern=r"([\d.]+)\s+out of",
                ),
                FieldRule(".icl-Ratings-starsCountWrapper", attr="aria-label", pattern=r"([\d.]+)"),
            ),
        },
    ),
    DetailProfile(
        name="card",
        markers=(
            "[data-testid='jobsearch-ViewJobLayout']",
            ".jobsearch-ViewJobLayout--embedded",
            ".jobsearch-JobComponent",
        ),
        fields={
            "title": (
                FieldRule("[data-testid='simpler-jobTitle']"),
                FieldRule("h2.jobsearch-JobInfoHeader-title"),
                FieldRule(".jobsearch-JobComponent h1"),
                FieldRule("h1"),
                FieldRule("h2"),
            ),
            "company": (
                FieldRule("[data-testid='inlineHeader-companyName']"),
                FieldRule(".jobsearch-CompanyInfoWithoutHeaderImage a"),
                FieldRule(".companyName"),
            ),
            "location": (
                FieldRule("[data-testid='inlineHeader-companyLocation']"),
                FieldRule("[data-testid='job-location']"),
                FieldRule(".companyLocation"),
            ),
            "salary": (
                FieldRule("[data-testid='job-salary']"),
                FieldRule("#salaryInfoAndJobType span"),
            ),
            "description": _DESCRIPTION_RULES,
            "job_type": (
                FieldRule("#salaryInfoAndJobType", pattern=_JOB_TYPE_PATTERN),
                FieldRule("[data-testid='jobsearch-OtherJobDetailsContainer']", pattern=_JOB_TYPE_PATTERN),
            ),
            "posted_date": (
                FieldRule("[data-testid='myJobsStateDate']"),
            ),
            "apply_url": (
                FieldRule("#applyButtonLinkContainer a", attr="href"),
            ),
            "company_url": (
                FieldRule("[data-testid='inlineHeader-companyName'] a", attr="href"),
                FieldRule(".jobsearch-CompanyInfoWithoutHeaderImage a", attr="href"),
            ),
            "company_rating": (
                FieldRule(
                    "[data-testid='inlineHeader-companyReviewLink']",
                    attr="aria-label", pattern=r"([\d.]+)\s+out of",
                ),
            ),
        },
    ),
)

COMPANY_FIELDS: Mapping[str, tuple[FieldRule, ...]] = {
    "name": (
        FieldRule("[data-testid='companyName']"),
        FieldRule("[itemprop='name']"),
        FieldRule("h1"),
    ),
    "website": (
        FieldRule("a[data-tn-element='companyWebsite']", attr="href"),
        FieldRule("[data-testid='companyInfo-companyWebsite'] a", attr="href"),
    ),
    "size": (
        FieldRule("[data-testid='companySize']"),
        FieldRule("[data-testid='companyInfo-employee'] span"),
    ),
    "founded": (
        FieldRule("[data-testid='companyFounded']"),
        FieldRule("[data-testid='companyInfo-founded'] span"),
    ),
    "industry": (
        FieldRule("[data-testid='companyIndustry']"),
        FieldRule("[data-testid='companyInfo-industry'] span"),
    ),
    "headquarters": (
        FieldRule("[data-testid='companyHeadquarters']"),
        FieldRule("[data-testid='companyInfo-headquartersLocation'] span"),
    ),
    "description": (
        FieldRule("[data-testid='companyDescription']", multiline=True),
        FieldRule("[data-testid='less-text']", multiline=True),
    ),
}


# ═══════════════════════════════════════════════════════════
# Results
# ═══════════════════════════════════════════════════════════


@dataclass(frozen=True)
class ListingExtraction:
    """What a listing page yielded.

    Attributes:
        profile: Name of the profile that was applied.
        detail_links: Absolute, de-duplicated detail URLs in page order.
        next_page_url: Absolute next-page URL, if the page exposes one.
        cards: Card summary fields keyed by normalized detail URL.
    """

    profile: str
    detail_links: list[str]
    next_page_url: Optional[str]
    cards: dict[str, dict[str, str]] = field(default_factory=dict)


# ═══════════════════════════════════════════════════════════
# Strategy
# ═══════════════════════════════════════════════════════════


def job_key_of(url: str) -> Optional[str]:
    """The `jk` query parameter of a job URL, if any."""
    values = parse_qs(urlsplit(url).query).get("jk")
    return values[0] if values and values[0] else None


def _parse_rating(raw: str) -> Optional[float]:
    if not raw:
        return None
    match = re.search(r"\d+(?:\.\d+)?", raw)
    if match is None:
        return None
    try:
        return float(match.group(0))
    except ValueError:
        return None


def _infer_remote(*texts: str) -> Optional[bool]:
    """True for remote/hybrid roles, False for explicit on-site, else None."""
    blob = " ".join(t for t in texts if t).lower()
    if not blob:
        return None
    if "remote" in blob:
        return True
    if any(word in blob for word in ("on-site", "onsite", "in-person", "in person")):
        return False
    return None


class ExtractionStrategy:
    """Profile-based extraction for listing, detail and company pages."""

    def __init__(
        self,
        listing_profiles: Sequence[ListingProfile] = LISTING_PROFILES,
        detail_profiles: Sequence[DetailProfile] = DETAIL_PROFILES,
        company_fields: Mapping[str, tuple[FieldRule, ...]] = COMPANY_FIELDS,
    ) -> None:
        if not listing_profiles or not detail_profiles:
            raise ValueError("At least one listing and one detail profile are required")
        self.listing_profiles = tuple(listing_profiles)
        self.detail_profiles = tuple(detail_profiles)
        self.company_fields = company_fields

    # ── Profile selection ────────────────────────────────

    def select_listing_profile(self, tree: HTMLParser) -> ListingProfile:
        for profile in self.listing_profiles:
            if _has_marker(tree, profile.markers):
                return profile
        logger.debug("No listing profile marker matched, using '%s'", self.listing_profiles[0].name)
        return self.listing_profiles[0]

    def select_detail_profile(self, tree: HTMLParser) -> DetailProfile:
        for profile in self.detail_profiles:
            if _has_marker(tree, profile.markers):
                return profile
        logger.debug("No detail profile marker matched, using '%s'", self.detail_profiles[0].name)
        return self.detail_profiles[0]

    # ── Listing pages ────────────────────────────────────

    def extract_listing(self, html: str, page_url: str) -> ListingExtraction:
        """Extract detail links, next-page link and card summaries.

        Link rules are tried in order until one yields at least one
        link. Links are resolved against the page URL, canonicalized to
        /viewjob?jk=... when they carry a job key, and de-duplicated.

        Args:
            html: Listing page HTML.
            page_url: URL the page was fetched from.

        Returns:
            A ListingExtraction (empty lists when nothing matched).
        """
        tree = HTMLParser(html)
        profile = self.select_listing_profile(tree)

        detail_links: list[str] = []
        for rule in profile.link_rules:
            detail_links = self._unique_links(rule.hrefs(tree), page_url)
            if detail_links:
                break

        next_href = first_match(tree, profile.next_page_rules)
        next_page_url = _resolve(next_href, page_url) if next_href else None

        cards: dict[str, dict[str, str]] = {}
        for card in tree.css(profile.card_selector):
            link = ""
            for rule in profile.card_link_rules:
                resolved = [u for u in (_resolve(h, page_url) for h in rule.hrefs(card)) if u]
                if resolved:
                    link = self._canonical_job_url(resolved[0])
                    break
            if not link:
                continue
            summary = {
                name: value
                for name, rules in profile.card_fields.items()
                if (value := first_match(card, rules))
            }
            cards.setdefault(normalize_url(link), summary)

        if not detail_links:
            logger.warning("Listing %s (%s profile): no detail links found", page_url, profile.name)
        else:
            logger.info(
                "Listing %s (%s profile): %d links, next page: %s",
                page_url, profile.name, len(detail_links), "yes" if next_page_url else "no",
            )

        return ListingExtraction(
            profile=profile.name,
            detail_links=detail_links,
            next_page_url=next_page_url,
            cards=cards,
        )

    def _unique_links(self, hrefs: Sequence[str], page_url: str) -> list[str]:
        seen: set[str] = set()
        links: list[str] = []
        for href in hrefs:
            resolved = _resolve(href, page_url)
            if resolved is None:
                continue
            url = self._canonical_job_url(resolved)
            key = normalize_url(url)
            if key not in seen:
                seen.add(key)
                links.append(url)
        return links

    @staticmethod
    def _canonical_job_url(url: str) -> str:
        job_key = job_key_of(url)
        if job_key is None:
            return url
        return f"{origin_of(url)}/viewjob?jk={job_key}"

    # ── Detail pages ─────────────────────────────────────

    def extract_detail(
        self,
        html: str,
        url: str,
        user_data: Optional[Mapping[str, Any]] = None,
        search_query: str = "",
    ) -> Optional[Record]:
        """Build a Record from a detail page.

        Card fields carried in user_data["card"] fill gaps the detail
        page leaves, except the title: a page without its own title
        yields no record.

        Args:
            html: Detail page HTML.
            url: Detail page URL (the record's url).
            user_data: Frontier entry data, may hold the listing card.
            search_query: Query term of the current run.

        Returns:
            A Record, or None if no title was found.
        """
        tree = HTMLParser(html)
        profile = self.select_detail_profile(tree)
        values = {name: first_match(tree, rules) for name, rules in profile.fields.items()}

        title = values.get("title", "")
        if not title:
            logger.warning("No title on %s (%s profile), skipping", url, profile.name)
            return None

        card: Mapping[str, str] = (user_data or {}).get("card", {})

        def pick(name: str) -> str:
            return values.get(name) or card.get(name, "")

        company_url = values.get("company_url", "")
        apply_url = values.get("apply_url", "")
        location = pick("location")
        job_type = pick("job_type")

        record = Record(
            url=url,
            title=title,
            company=pick("company"),
            location=location,
            description=pick("description"),
            salary=_or_none(pick("salary")),
            job_type=_or_none(job_type),
            posted_date=_or_none(pick("posted_date")),
            remote=_infer_remote(location, job_type, title),
            apply_url=_resolve(apply_url, url) if apply_url else None,
            company_url=_resolve(company_url, url) if company_url else None,
            company_rating=_parse_rating(values.get("company_rating", "")),
            job_key=job_key_of(url),
            search_query=search_query,
        )

        filled = sum(bool(v) for v in values.values())
        logger.info(
            "Parsed detail %s (%s profile): %s (%d/%d fields)",
            url, profile.name, title[:40], filled, len(values),
        )
        return record

    # ── Company pages ────────────────────────────────────

    def extract_company(
        self, html: str, url: str, user_data: Optional[Mapping[str, Any]] = None
    ) -> CompanyDetails:
        """Build CompanyDetails from a company overview page.

        Args:
            html: Company page HTML.
            url: Company page URL.
            user_data: May hold "company_name" from the job record.

        Returns:
            CompanyDetails; fields not found are None.
        """
        tree = HTMLParser(html)
        values = {name: first_match(tree, rules) for name, rules in self.company_fields.items()}
        website = values.get("website", "")
        return CompanyDetails(
            url=url,
            name=values.get("name") or (user_data or {}).get("company_name", ""),
            website=_resolve(website, url) if website else None,
            size=_or_none(values.get("size", "")),
            founded=_or_none(values.get("founded", "")),
            industry=_or_none(values.get("industry", "")),
            headquarters=_or_none(values.get("headquarters", "")),
            description=_or_none(values.get("description", "")),
        )
