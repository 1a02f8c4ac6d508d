"""Tests for the crawl loop: ordering, budgets, dedup, challenge policy, failures."""

from __future__ import annotations

import asyncio
from dataclasses import replace

import pytest

from conftest import FakeFetcher, ListSink, transport_error
from indeed_crawler.scraper.client import FetchResult
from indeed_crawler.scraper.extraction import ExtractionStrategy
from indeed_crawler.scraper.pagination import normalize_url, offset_page_url
from indeed_crawler.scraper.state import RunStatus
from pages import (
    challenge_page,
    company_page,
    compact_detail_page,
    detail_page,
    empty_page,
    job_url,
    legacy_listing_page,
    listing_page,
    untitled_detail_page,
)


def _details(*keys: str) -> dict[str, str]:
    return {job_url(k): detail_page(title=f"Title {k}") for k in keys}


def _page(seed_url: str, index: int) -> str:
    return offset_page_url(seed_url, index)


def _href(url: str) -> str:
    return url.replace("https://www.indeed.com", "")


# ── Happy path & ordering ─────────────────────────────────


def test_breadth_first_order_across_pages(make_crawler, search, seed_url):
    page2 = _page(seed_url, 1)
    fetcher = FakeFetcher({
        seed_url: listing_page(["a1", "a2"], next_href=_href(page2)),
        page2: listing_page(["b1"]),
        **_details("a1", "a2", "b1"),
    })
    sink = ListSink()

    summary = asyncio.run(make_crawler(fetcher, sink).run(search))

    assert summary.status is RunStatus.DONE
    assert summary.items_saved == 3
    assert summary.pages_visited == 2
    assert summary.errors == ()
    assert fetcher.call_keys() == [
        normalize_url(u) for u in (seed_url, job_url("a1"), job_url("a2"), page2, job_url("b1"))
    ]
    assert sink.urls == [job_url("a1"), job_url("a2"), job_url("b1")]


def test_listing_card_fields_fill_detail_gaps(make_crawler, search, seed_url):
    bare_detail = detail_page(title="Title a1").replace(
        "<div data-testid=\"job-location\">Remote</div>", ""
    )
    fetcher = FakeFetcher({seed_url: listing_page(["a1"]), job_url("a1"): bare_detail})
    sink = ListSink()

    asyncio.run(make_crawler(fetcher, sink).run(search))

    record = sink.records[0]
    assert record.title == "Title a1"
    assert record.location == "Austin, TX"
    assert record.job_key == "a1"
    assert record.search_query == "python developer"


def test_detail_requests_send_listing_referer(make_crawler, search, seed_url):
    fetcher = FakeFetcher({seed_url: listing_page(["a1"]), **_details("a1")})

    asyncio.run(make_crawler(fetcher, ListSink()).run(search))

    assert "Referer" not in fetcher.hints[0].headers
    assert fetcher.hints[1].headers["Referer"] == seed_url


# ── Dedup ─────────────────────────────────────────────────


def test_repeated_links_are_fetched_once(make_crawler, search, seed_url):
    fetcher = FakeFetcher({
        seed_url: listing_page(["A", "B", "A", "C"]),
        **_details("A", "B", "C"),
    })
    sink = ListSink()

    summary = asyncio.run(make_crawler(fetcher, sink).run(search))

    assert summary.items_saved == 3
    detail_calls = fetcher.calls[1:]
    assert detail_calls == [job_url("A"), job_url("B"), job_url("C")]


def test_links_seen_on_an_earlier_page_are_not_refetched(make_crawler, search, seed_url, events):
    page2 = _page(seed_url, 1)
    fetcher = FakeFetcher({
        seed_url: listing_page(["a1", "a2"], next_href=_href(page2)),
        page2: listing_page(["a2", "b1"]),
        **_details("a1", "a2", "b1"),
    })

    summary = asyncio.run(make_crawler(fetcher, ListSink()).run(search))

    keys = fetcher.call_keys()
    assert len(keys) == len(set(keys))
    assert summary.items_saved == 3
    assert events.count(stage="detail", outcome="skipped") == 1


def test_next_link_pointing_back_stops_the_run(make_crawler, search, seed_url, events):
    page2 = _page(seed_url, 1)
    fetcher = FakeFetcher({
        seed_url: listing_page(["a1"], next_href=_href(page2)),
        page2: listing_page(["b1"], next_href=_href(seed_url)),
        **_details("a1", "b1"),
    })

    summary = asyncio.run(make_crawler(fetcher, ListSink()).run(search))

    assert summary.status is RunStatus.DONE
    assert summary.pages_visited == 2
    assert fetcher.call_keys().count(normalize_url(seed_url)) == 1
    assert events.count(stage="pagination", outcome="cycle") == 1


# ── Budgets ───────────────────────────────────────────────


def test_item_budget_leaves_remaining_links_unfetched(make_crawler, search, seed_url):
    page2 = _page(seed_url, 1)
    fetcher = FakeFetcher({
        seed_url: listing_page(["j1", "j2", "j3", "j4", "j5"], next_href=_href(page2)),
        page2: listing_page(["k1"]),
        **_details("j1", "j2", "j3", "j4", "j5", "k1"),
    })
    sink = ListSink()

    summary = asyncio.run(make_crawler(fetcher, sink).run(replace(search, max_items=3)))

    assert summary.status is RunStatus.DONE
    assert summary.items_saved == 3
    assert len(sink.records) == 3
    assert job_url("j4") not in fetcher.calls
    assert job_url("j5") not in fetcher.calls
    assert page2 not in fetcher.calls


def _endless_listing(seed_url: str, pages: int) -> dict[str, str]:
    site = {}
    for i in range(pages):
        next_href = _href(_page(seed_url, i + 1))
        site[_page(seed_url, i)] = listing_page([f"p{i}"], next_href=next_href)
        site[job_url(f"p{i}")] = detail_page(title=f"Job p{i}")
    return site


@pytest.mark.parametrize("max_pages, max_items", [(1, 50), (3, 50), (5, 2), (10, 50)])
def test_budgets_bound_every_run(make_crawler, search, seed_url, max_pages, max_items):
    fetcher = FakeFetcher(_endless_listing(seed_url, 15))
    request = replace(search, max_pages=max_pages, max_items=max_items)

    summary = asyncio.run(make_crawler(fetcher, ListSink()).run(request))

    assert summary.pages_visited <= min(max_pages, 10)
    assert summary.items_saved <= max_items
    assert summary.items_saved == min(max_pages, max_items)


def test_page_ceiling_applies_below_max_pages(make_crawler, search, seed_url):
    fetcher = FakeFetcher(_endless_listing(seed_url, 15))

    summary = asyncio.run(
        make_crawler(fetcher, ListSink(), page_ceiling=4).run(replace(search, max_pages=10))
    )

    assert summary.pages_visited == 4


# ── Pagination modes ──────────────────────────────────────


def test_offset_mode_ignores_next_links(make_crawler, search, seed_url):
    page2, page3 = _page(seed_url, 1), _page(seed_url, 2)
    decoy = "https://www.indeed.com/jobs?q=something+else"
    fetcher = FakeFetcher({
        seed_url: listing_page(["a1"], next_href=decoy),
        page2: listing_page(["b1"], next_href=decoy),
        page3: listing_page([]),
        **_details("a1", "b1"),
    })

    summary = asyncio.run(
        make_crawler(fetcher, ListSink(), pagination_mode="offset").run(search)
    )

    assert summary.status is RunStatus.DONE
    assert summary.pages_visited == 3
    assert summary.items_saved == 2
    assert decoy not in fetcher.calls
    assert page3.endswith("start=20")
    assert fetcher.calls[-1] == page3


def test_next_link_mode_without_next_link_is_done(make_crawler, search, seed_url):
    fetcher = FakeFetcher({seed_url: listing_page(["a1"]), **_details("a1")})

    summary = asyncio.run(make_crawler(fetcher, ListSink()).run(search))

    assert summary.status is RunStatus.DONE
    assert summary.pages_visited == 1


# ── Extraction gaps ───────────────────────────────────────


def test_detail_without_title_is_not_persisted(make_crawler, search, seed_url, events):
    fetcher = FakeFetcher({
        seed_url: listing_page(["a1", "a2", "a3"]),
        job_url("a1"): untitled_detail_page(),
        job_url("a2"): detail_page(title="Kept"),
        job_url("a3"): compact_detail_page(title="Compact"),
    })
    sink = ListSink()

    summary = asyncio.run(make_crawler(fetcher, sink).run(search))

    assert [r.title for r in sink.records] == ["Kept", "Compact"]
    assert job_url("a1") not in sink.urls
    assert summary.errors == ()
    assert events.count(stage="extract", outcome="no_title") == 1


# ── Challenge policy ──────────────────────────────────────


def test_challenged_listing_is_retried_once_with_new_identity(
    make_crawler, search, seed_url, identities, events, sleeps
):
    fetcher = FakeFetcher({
        seed_url: [challenge_page(), listing_page(["a1"])],
        **_details("a1"),
    })

    summary = asyncio.run(make_crawler(fetcher, ListSink()).run(search))

    assert summary.status is RunStatus.DONE
    assert summary.items_saved == 1
    assert summary.challenge_retries == 1
    assert summary.identity_rotations == 1
    assert identities.rotations == 1
    assert fetcher.calls[:2] == [seed_url, seed_url]
    assert fetcher.hints[0].identity != fetcher.hints[1].identity
    assert fetcher.hints[0].identity.user_agent != fetcher.hints[1].identity.user_agent
    assert events.count(stage="challenge", outcome="retry") == 1
    # listing wait, then backoff of 2.5 × a listing draw
    assert 12.5 <= sleeps[1] <= 25.0


def test_listing_challenged_twice_aborts(make_crawler, search, seed_url, events):
    fetcher = FakeFetcher({seed_url: challenge_page()})

    summary = asyncio.run(make_crawler(fetcher, ListSink()).run(search))

    assert summary.status is RunStatus.ABORTED
    assert summary.items_saved == 0
    assert fetcher.calls == [seed_url, seed_url]
    assert summary.challenge_retries == 1
    assert "Challenge" in summary.errors[0]
    assert events.count(stage="challenge", outcome="failed") == 1


def test_detail_challenged_twice_is_skipped(make_crawler, search, seed_url):
    fetcher = FakeFetcher({
        seed_url: listing_page(["a1", "a2"]),
        job_url("a1"): challenge_page(),
        job_url("a2"): detail_page(),
    })
    sink = ListSink()

    summary = asyncio.run(make_crawler(fetcher, sink).run(search))

    assert summary.status is RunStatus.DONE
    assert sink.urls == [job_url("a2")]
    assert fetcher.calls.count(job_url("a1")) == 2
    assert len(summary.errors) == 1


def test_empty_listing_aborts_without_retry(make_crawler, search, seed_url, identities):
    fetcher = FakeFetcher({seed_url: empty_page()})

    summary = asyncio.run(make_crawler(fetcher, ListSink()).run(search))

    assert summary.status is RunStatus.ABORTED
    assert fetcher.calls == [seed_url]
    assert identities.rotations == 0


# ── Failures ──────────────────────────────────────────────


def test_listing_failure_keeps_already_saved_records(make_crawler, search, seed_url):
    page2 = _page(seed_url, 1)
    fetcher = FakeFetcher({
        seed_url: listing_page(["a1"], next_href=_href(page2)),
        page2: transport_error(page2),
        **_details("a1"),
    })
    sink = ListSink()

    summary = asyncio.run(make_crawler(fetcher, sink).run(search))

    assert summary.status is RunStatus.ABORTED
    assert summary.items_saved == 1
    assert sink.urls == [job_url("a1")]
    assert len(summary.errors) == 1


def test_detail_failures_do_not_stop_the_sweep(make_crawler, search, seed_url):
    fetcher = FakeFetcher({
        seed_url: listing_page(["a1", "a2", "a3"]),
        job_url("a1"): transport_error(job_url("a1")),
        job_url("a2"): FetchResult(status_code=404, body=detail_page(), final_url=job_url("a2")),
        job_url("a3"): detail_page(),
    })
    sink = ListSink()

    summary = asyncio.run(make_crawler(fetcher, sink).run(search))

    assert summary.status is RunStatus.DONE
    assert sink.urls == [job_url("a3")]
    assert len(summary.errors) == 2
    assert fetcher.calls.count(job_url("a1")) == 1
    assert fetcher.calls.count(job_url("a2")) == 1


def test_single_storage_failure_is_counted_and_skipped(make_crawler, search, seed_url):
    fetcher = FakeFetcher({seed_url: listing_page(["a1", "a2"]), **_details("a1", "a2")})
    sink = ListSink(fail_appends=1)

    summary = asyncio.run(make_crawler(fetcher, sink).run(search))

    assert summary.status is RunStatus.DONE
    assert summary.items_saved == 1
    assert sink.urls == [job_url("a2")]
    assert len(summary.errors) == 1


def test_consecutive_storage_failures_abort_the_run(make_crawler, search, seed_url, events):
    keys = ["s1", "s2", "s3", "s4", "s5"]
    fetcher = FakeFetcher({seed_url: listing_page(keys), **_details(*keys)})
    sink = ListSink(fail_appends=-1)

    summary = asyncio.run(
        make_crawler(fetcher, sink, max_consecutive_storage_failures=3).run(search)
    )

    assert summary.status is RunStatus.ABORTED
    assert summary.items_saved == 0
    assert fetcher.calls == [seed_url, job_url("s1"), job_url("s2"), job_url("s3")]
    assert events.count(stage="persist", outcome="aborted") == 1


class _FailingExtraction(ExtractionStrategy):
    """Raises while parsing the pages whose URL contains `poison`."""

    def __init__(self, poison: str) -> None:
        super().__init__()
        self.poison = poison

    def extract_listing(self, html, page_url):
        if self.poison in page_url:
            raise RuntimeError("listing markup changed")
        return super().extract_listing(html, page_url)

    def extract_detail(self, html, url, user_data=None, search_query=""):
        if self.poison in url:
            raise RuntimeError("detail markup changed")
        return super().extract_detail(html, url, user_data, search_query)


def test_detail_extraction_error_is_recorded_and_sweep_continues(
    make_crawler, search, seed_url, events
):
    fetcher = FakeFetcher({seed_url: listing_page(["a1", "a2"]), **_details("a1", "a2")})
    sink = ListSink()
    crawler = make_crawler(fetcher, sink, extraction=_FailingExtraction("jk=a1"))

    summary = asyncio.run(crawler.run(search))

    assert summary.status is RunStatus.DONE
    assert sink.urls == [job_url("a2")]
    assert len(summary.errors) == 1
    assert summary.errors[0].startswith("detail:")
    assert "detail markup changed" in summary.errors[0]
    assert events.count(stage="detail", outcome="error") == 1


def test_listing_extraction_error_aborts_with_summary(make_crawler, search, seed_url):
    fetcher = FakeFetcher({seed_url: listing_page(["a1"]), **_details("a1")})
    crawler = make_crawler(fetcher, ListSink(), extraction=_FailingExtraction("/jobs?"))

    summary = asyncio.run(crawler.run(search))

    assert summary.status is RunStatus.ABORTED
    assert summary.pages_visited == 1
    assert summary.items_saved == 0
    assert summary.errors[0].startswith("listing:")
    assert fetcher.call_keys() == [normalize_url(seed_url)]


def test_unparseable_apply_link_does_not_stop_the_sweep(make_crawler, search, seed_url):
    broken = detail_page(title="Title a1").replace(
        "https://careers.acme.example/apply/42", "http://[oops"
    )
    fetcher = FakeFetcher({
        seed_url: listing_page(["a1", "a2"]),
        job_url("a1"): broken,
        **_details("a2"),
    })
    sink = ListSink()

    summary = asyncio.run(make_crawler(fetcher, sink).run(search))

    assert summary.status is RunStatus.DONE
    assert summary.errors == ()
    assert sink.urls == [job_url("a1"), job_url("a2")]
    assert sink.records[0].apply_url is None
    assert sink.records[1].apply_url == "https://careers.acme.example/apply/42"


def test_unparseable_listing_links_are_skipped(make_crawler, search, seed_url):
    html = legacy_listing_page(["a1", "a2"]).replace(
        "/rc/clk?jk=a1", "https://www.indeed.com:bad/rc/clk?jk=a1"
    )
    fetcher = FakeFetcher({seed_url: html, **_details("a1", "a2")})
    sink = ListSink()

    summary = asyncio.run(make_crawler(fetcher, sink).run(search))

    assert summary.status is RunStatus.DONE
    assert sink.urls == [job_url("a2")]
    assert fetcher.call_keys() == [normalize_url(seed_url), normalize_url(job_url("a2"))]


# ── Cancellation ──────────────────────────────────────────


def test_cancel_is_honoured_before_the_next_fetch(make_crawler, search, seed_url):
    fetcher = FakeFetcher({seed_url: listing_page(["a1", "a2", "a3"]), **_details("a1", "a2", "a3")})
    sink = ListSink()
    crawler = make_crawler(fetcher, sink)

    def _cancel_on_first_detail(url: str) -> None:
        if url == job_url("a1"):
            crawler.cancel()

    fetcher.on_fetch = _cancel_on_first_detail
    summary = asyncio.run(crawler.run(search))

    assert summary.status is RunStatus.CANCELLED
    assert sink.urls == [job_url("a1")]
    assert fetcher.calls == [seed_url, job_url("a1")]


def test_cancel_before_start_fetches_nothing(make_crawler, search):
    fetcher = FakeFetcher({})
    crawler = make_crawler(fetcher, ListSink())
    crawler.cancel()

    summary = asyncio.run(crawler.run(search))

    assert summary.status is RunStatus.CANCELLED
    assert fetcher.calls == []


# ── Optional features ─────────────────────────────────────


def test_unique_only_skips_records_already_stored(make_crawler, search, seed_url):
    fetcher = FakeFetcher({seed_url: listing_page(["a1", "a2", "a3"]), **_details("a1", "a2", "a3")})
    sink = ListSink(existing={"a1"})
    request = replace(search, save_only_unique_items=True, max_items=2)

    summary = asyncio.run(make_crawler(fetcher, sink).run(request))

    assert summary.items_saved == 2
    assert summary.skipped_duplicates == 1
    assert sink.urls == [job_url("a2"), job_url("a3")]


def test_duplicates_are_saved_when_unique_only_is_off(make_crawler, search, seed_url):
    fetcher = FakeFetcher({seed_url: listing_page(["a1"]), **_details("a1")})
    sink = ListSink(existing={"a1"})

    summary = asyncio.run(make_crawler(fetcher, sink).run(search))

    assert summary.items_saved == 1
    assert summary.skipped_duplicates == 0


def test_company_details_are_stored_once_per_company(make_crawler, search, seed_url):
    company_url = "https://www.indeed.com/cmp/Acme-Corp"
    fetcher = FakeFetcher({
        seed_url: listing_page(["a1", "a2"]),
        **_details("a1", "a2"),
        company_url: company_page(),
    })
    sink = ListSink()
    request = replace(search, parse_company_details=True)

    summary = asyncio.run(make_crawler(fetcher, sink).run(request))

    assert summary.items_saved == 2
    assert summary.companies_saved == 1
    assert fetcher.calls.count(company_url) == 1
    assert fetcher.calls.index(company_url) == 2
    company = sink.companies[0]
    assert company.url == company_url
    assert company.website == "https://acme.example"
    assert company.industry == "Manufacturing"


def test_company_pages_are_skipped_by_default(make_crawler, search, seed_url):
    fetcher = FakeFetcher({seed_url: listing_page(["a1"]), **_details("a1")})
    sink = ListSink()

    summary = asyncio.run(make_crawler(fetcher, sink).run(search))

    assert summary.companies_saved == 0
    assert all("/cmp/" not in u for u in fetcher.calls)


def test_company_page_is_not_fetched_once_item_budget_is_spent(make_crawler, search, seed_url):
    company_url = "https://www.indeed.com/cmp/Acme-Corp"
    fetcher = FakeFetcher({
        seed_url: listing_page(["a1", "a2"]),
        **_details("a1", "a2"),
        company_url: company_page(),
    })
    sink = ListSink()
    request = replace(search, parse_company_details=True, max_items=1)

    summary = asyncio.run(make_crawler(fetcher, sink).run(request))

    assert summary.items_saved == 1
    assert summary.companies_saved == 0
    assert fetcher.call_keys() == [normalize_url(seed_url), normalize_url(job_url("a1"))]


# ── Events ────────────────────────────────────────────────


def test_run_emits_structured_events(make_crawler, search, seed_url, events):
    fetcher = FakeFetcher({seed_url: listing_page(["a1", "a2"]), **_details("a1", "a2")})

    summary = asyncio.run(make_crawler(fetcher, ListSink()).run(search))

    assert events.count(stage="fetch", outcome="ok") == 3
    assert events.count(stage="persist", outcome="ok") == summary.items_saved
    assert events.count(stage="listing", outcome="ok") == 1
    final = events.filter(stage="run")[-1]
    assert final.outcome == "done"
    assert final.detail["items_saved"] == 2
