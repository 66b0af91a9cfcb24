"""
Unit tests for the page-based extraction strategies.
"""

import json
import random

import httpx
import pytest

from core.anti_detection import AntiDetection
from core.cancellation import CancellationToken
from core.domain_limits import RateLimiter
from core.net import HTTPClient
from pipeline.base import FetchOptions, page_urls, parse_date
from pipeline.data_island import DataIslandStrategy, find_data_islands
from pipeline.heuristics import HtmlParsingStrategy, looks_like_job_title
from pipeline.jsonld import JSONLDStrategy
from pipeline.models import StrategyKind

from conftest import make_target, mock_transport


def ld_script(data) -> str:
    return f'<script type="application/ld+json">{json.dumps(data)}</script>'


POSTING = {
    "@type": "JobPosting",
    "title": "Senior Backend Engineer",
    "description": "<p>Build APIs</p>",
    "datePosted": "2025-02-20",
    "employmentType": "FULL_TIME",
    "url": "/jobs/backend",
    "jobLocation": {
        "@type": "Place",
        "address": {"addressLocality": "Austin", "addressRegion": "TX", "addressCountry": "US"},
    },
}


class TestJSONLD:
    """Test Schema.org JobPosting extraction."""

    def test_single_posting(self, target):
        records = JSONLDStrategy().parse(f"<html><head>{ld_script(POSTING)}</head></html>", target)

        assert len(records) == 1
        record = records[0]
        assert record.title == "Senior Backend Engineer"
        assert record.city == "Austin"
        assert record.state == "TX"
        assert record.location_raw == "Austin, TX, US"
        assert record.external_url == "https://careers.acme.com/jobs/backend"
        assert record.posted_date.year == 2025
        assert record.method == StrategyKind.JSON_LD

    def test_graph_and_item_list(self, target):
        graph = {"@context": "https://schema.org", "@graph": [{"@type": "Organization", "name": "Acme"}, POSTING]}
        item_list = {
            "@type": "ItemList",
            "itemListElement": [{"@type": "ListItem", "item": dict(POSTING, title="Data Engineer")}],
        }
        html = ld_script(graph) + ld_script(item_list)
        titles = [r.title for r in JSONLDStrategy().parse(html, target)]
        assert titles == ["Senior Backend Engineer", "Data Engineer"]

    def test_hourly_salary(self, target):
        posting = dict(POSTING, baseSalary={
            "@type": "MonetaryAmount",
            "currency": "EUR",
            "value": {"@type": "QuantitativeValue", "minValue": 40, "maxValue": 60, "unitText": "HOUR"},
        })
        salary = JSONLDStrategy().parse(ld_script(posting), target)[0].salary
        assert salary.min == 40
        assert salary.max == 60
        assert salary.period == 'hourly'
        assert salary.currency == 'EUR'

    def test_telecommute_without_location(self, target):
        posting = {k: v for k, v in POSTING.items() if k != 'jobLocation'}
        posting['jobLocationType'] = 'TELECOMMUTE'
        record = JSONLDStrategy().parse(ld_script(posting), target)[0]
        assert record.is_remote is True
        assert record.location_raw == 'Remote'

    def test_malformed_block_skipped(self, target):
        html = '<script type="application/ld+json">{"@type": "JobPosting", "title": </script>' + ld_script(POSTING)
        records = JSONLDStrategy().parse(html, target)
        assert len(records) == 1

    def test_no_structured_data(self, target):
        assert JSONLDStrategy().parse("<html><body><h1>Careers</h1></body></html>", target) == []


class TestDataIsland:
    """Test embedded JSON extraction."""

    def test_next_data(self, target):
        payload = {"props": {"pageProps": {"jobs": [
            {"id": 17, "title": "Backend Engineer", "location": {"name": "Berlin"}, "url": "/jobs/17"},
        ]}}}
        html = f'<script id="__NEXT_DATA__" type="application/json">{json.dumps(payload)}</script>'
        records = DataIslandStrategy().parse(html, target)

        # the nested "jobs" array is part of the blob already decoded
        assert len(records) == 1
        assert records[0].title == "Backend Engineer"
        assert records[0].location_raw == "Berlin"
        assert records[0].external_url == "https://careers.acme.com/jobs/17"
        assert records[0].external_id == "17"
        assert records[0].method == StrategyKind.DATA_ISLAND

    def test_window_state_with_trailing_script(self, target):
        state = {"careers": {"openings": [
            {"title": "Product Designer", "location": "Remote", "description": "<b>Design</b> things"},
            {"title": "QA Engineer", "location": "London", "team": "Quality"},
        ]}}
        html = f"<script>window.__INITIAL_STATE__ = {json.dumps(state)}; window.analytics = init();</script>"
        records = DataIslandStrategy().parse(html, target)

        assert [r.title for r in records] == ["Product Designer", "QA Engineer"]
        assert records[0].description == "Design things"
        assert records[1].team == "Quality"

    def test_inline_array(self, target):
        html = '<script>var config = {"positions": [{"title": "Data Analyst", "department": {"name": "Finance"}}]};</script>'
        records = DataIslandStrategy().parse(html, target)
        assert len(records) == 1
        assert records[0].department == "Finance"

    def test_objects_without_job_fields_ignored(self, target):
        html = '<script>window.__DATA__ = {"nav": [{"title": "Home"}, {"title": "About"}]};</script>'
        assert DataIslandStrategy().parse(html, target) == []

    def test_undecodable_island_skipped(self):
        assert list(find_data_islands('<script>window.__DATA__ = {broken</script>')) == []


class TestHtmlParsing:
    """Test the heuristic HTML tier."""

    def test_custom_selectors(self):
        target = make_target(selectors={'job_container': '.opening', 'title': '.name', 'location': '.loc'})
        html = """
        <ul>
          <li class="opening"><span class="name">Account Executive</span><span class="loc">Remote - US</span>
              <a href="https://jobs.acme.com/7">Apply</a></li>
          <li class="opening"><span class="name">N/A</span></li>
        </ul>
        """
        records = HtmlParsingStrategy().parse(html, target)

        assert len(records) == 1
        assert records[0].title == "Account Executive"
        assert records[0].is_remote is True
        assert records[0].external_url == "https://jobs.acme.com/7"

    def test_generic_job_cards(self, target):
        html = """
        <div class="job-card">
          <h3 class="job-title">Senior Backend Engineer</h3>
          <span class="job-location">Berlin, Germany</span>
          <a href="/jobs/1">View role</a>
        </div>
        <div class="job-card">
          <h3 class="job-title">Product Manager</h3>
          <span class="job-location">Austin, TX</span>
          <a href="/jobs/2">View role</a>
        </div>
        """
        records = HtmlParsingStrategy().parse(html, target)

        assert [r.title for r in records] == ["Senior Backend Engineer", "Product Manager"]
        assert records[0].location_raw == "Berlin, Germany"
        assert records[1].external_url == "https://careers.acme.com/jobs/2"

    def test_pattern_fallback(self, target):
        html = "<html><body><p>We are hiring a Data Scientist and a Product Designer.</p></body></html>"
        records = HtmlParsingStrategy().parse(html, target)

        assert [r.title for r in records] == ["Data Scientist", "Product Designer"]
        assert records[0].description == "Data Scientist position at Acme"
        assert records[0].external_url == target.url

    def test_title_patterns(self):
        assert looks_like_job_title("Staff Software Engineer") is True
        assert looks_like_job_title("Our Story") is False


class TestPagination:
    def test_page_urls(self):
        target = make_target(
            url="https://careers.acme.com/jobs?dept=eng",
            pagination={'type': 'url_param', 'param': 'p', 'max_pages': 3},
        )
        assert list(page_urls(target)) == [
            "https://careers.acme.com/jobs?dept=eng",
            "https://careers.acme.com/jobs?dept=eng&p=2",
            "https://careers.acme.com/jobs?dept=eng&p=3",
        ]

    def test_no_pagination(self, target):
        assert list(page_urls(target)) == [target.url]

    @pytest.mark.asyncio
    async def test_stops_at_first_empty_page(self):
        def listing(request):
            page = int(request.url.params.get('page', '1'))
            body = ld_script(dict(POSTING, title=f"Engineer {page}")) if page <= 2 else "<html></html>"
            return httpx.Response(200, text=body)

        calls = []
        http = HTTPClient(transport=mock_transport({'careers.acme.com': listing}, calls))
        target = make_target(pagination={'type': 'url_param', 'max_pages': 5})
        records = await JSONLDStrategy().extract(target, FetchOptions(http=http, token=CancellationToken()))

        assert [r.title for r in records] == ["Engineer 1", "Engineer 2"]
        assert len(calls) == 3

    @pytest.mark.asyncio
    async def test_stops_when_page_repeats(self):
        calls = []
        http = HTTPClient(transport=mock_transport({'careers.acme.com': lambda request: httpx.Response(200, text=ld_script(POSTING))}, calls))
        target = make_target(pagination={'type': 'url_param', 'max_pages': 5})
        records = await JSONLDStrategy().extract(target, FetchOptions(http=http, token=CancellationToken()))

        assert [r.title for r in records] == ["Senior Backend Engineer"]
        assert len(calls) == 2

    @pytest.mark.asyncio
    async def test_pages_are_paced(self, fake_clock):
        def listing(request):
            page = int(request.url.params.get('page', '1'))
            return httpx.Response(200, text=ld_script(dict(POSTING, title=f"Engineer {page}")))

        anti = AntiDetection(rng=random.Random(7))
        expected = [AntiDetection(rng=random.Random(7)).get_random_delay() for _ in range(2)]
        limiter = RateLimiter(requests_per_minute=60, burst_size=2, clock=fake_clock, sleep=fake_clock.sleep)
        delays = []

        async def record_sleep(seconds):
            delays.append(seconds)

        options = FetchOptions(
            http=HTTPClient(transport=mock_transport({'careers.acme.com': listing})),
            token=CancellationToken(),
            anti_detection=anti,
            rate_limiter=limiter,
            sleep=record_sleep,
        )
        target = make_target(pagination={'type': 'url_param', 'max_pages': 3})
        records = await JSONLDStrategy().extract(target, options)

        assert len(records) == 3
        assert delays == expected
        assert all(1.0 <= d <= 10.0 for d in delays)
        assert limiter.get_status(target.domain)['available'] == 0


def test_parse_date_formats():
    assert parse_date("2025-02-20T10:00:00Z").year == 2025
    assert parse_date(1740000000000).year == 2025
    assert parse_date(1740000000).year == 2025
    assert parse_date("not a date") is None
    assert parse_date(None) is None
