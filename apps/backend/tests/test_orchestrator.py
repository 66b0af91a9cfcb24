"""
Integration tests for the scraper engine: fallback, abandonment, cancellation
and batching, with all HTTP served by a mock transport.
"""

import json
import asyncio

import httpx
import pytest

from core.cancellation import CancellationToken
from core.domain_limits import RateLimiter
from core.net import HTTPClient
from core.scraper_config import ScraperConfig
from crawler_v2.orchestrator import ScraperEngine
from pipeline.base import ExtractionStrategy
from pipeline.heuristics import HtmlParsingStrategy
from pipeline.models import StrategyKind, AtsType
from pipeline.monitoring import MetricsCollector
from pipeline.registry import StrategyRegistry

from conftest import make_target, mock_transport, html_response, json_response

JOB_CARDS_HTML = """
<html><body>
  <div class="job-card"><h3>Senior Backend Engineer</h3><span class="location">Berlin, Germany</span>
    <a href="/jobs/1">View</a></div>
  <div class="job-card"><h3>Product Manager</h3><span class="location">Remote</span>
    <a href="/jobs/2">View</a></div>
</body></html>
"""

JSONLD_HTML = (
    '<html><head><script type="application/ld+json">'
    + json.dumps({"@type": "JobPosting", "title": "Data Engineer", "jobLocation": "Austin, TX", "url": "/jobs/de"})
    + '</script></head><body></body></html>'
)

GREENHOUSE_PAYLOAD = {"jobs": [
    {"id": i, "title": title, "location": {"name": "Remote"}, "content": "",
     "absolute_url": f"https://boards.greenhouse.io/acme/jobs/{i}"}
    for i, title in enumerate(["Backend Engineer", "Frontend Engineer", "Data Scientist"], start=1)
]}


def make_engine(routes=None, calls=None, registry=None, **config) -> ScraperEngine:
    config.setdefault('enable_ai', False)
    config.setdefault('batch_pause', 0)
    return ScraperEngine(
        config=ScraperConfig(**config),
        rate_limiter=RateLimiter(requests_per_minute=6000, burst_size=100),
        http=HTTPClient(transport=mock_transport(routes or {}, calls)),
        registry=registry,
        metrics=MetricsCollector(),
    )


def registry_with(*strategies) -> StrategyRegistry:
    registry = StrategyRegistry()
    for strategy in strategies:
        registry.register(strategy)
    return registry


class EmptyStrategy(ExtractionStrategy):
    kind = StrategyKind.JSON_LD

    async def extract(self, target, options):
        return []


class CancellingStrategy(ExtractionStrategy):
    """Trips the run token mid-attempt, the way a run deadline would"""
    kind = StrategyKind.JSON_LD

    def __init__(self):
        super().__init__()
        self.run_token = None

    async def extract(self, target, options):
        self.run_token.cancel('run deadline')
        return []


class SleepingStrategy(ExtractionStrategy):
    kind = StrategyKind.JSON_LD

    async def extract(self, target, options):
        await options.token.sleep(5)
        return []


class ExplodingStrategy(ExtractionStrategy):
    kind = StrategyKind.JSON_LD

    async def extract(self, target, options):
        raise RuntimeError("something odd happened")


class TestStrategyFallback:
    """Test the tier order and error policy."""

    @pytest.mark.asyncio
    async def test_falls_back_when_a_tier_finds_nothing(self, target):
        engine = make_engine({'careers.acme.com': html_response(JOB_CARDS_HTML)})
        outcome = await engine.scrape_target(target)

        assert outcome.success is True
        assert outcome.method == StrategyKind.HTML_PARSING
        assert [a.strategy for a in outcome.attempts] == [StrategyKind.JSON_LD, StrategyKind.HTML_PARSING]
        assert outcome.attempts[0].job_count == 0
        assert outcome.requests_made == 2
        assert [j.title for j in outcome.jobs] == ["Senior Backend Engineer", "Product Manager"]
        assert all(len(j.id) == 16 for j in outcome.jobs)
        assert outcome.jobs[0].source.type == 'career_page'
        assert outcome.jobs[0].source.scrape_method == StrategyKind.HTML_PARSING
        assert outcome.jobs[0].external_url == "https://careers.acme.com/jobs/1"

    @pytest.mark.asyncio
    async def test_blocked_abandons_target(self):
        calls = []
        engine = make_engine({
            'boards-api.greenhouse.io': json_response({}, status=403),
            'careers.acme.com': html_response(JSONLD_HTML),
        }, calls)
        target = make_target(ats={'type': 'greenhouse', 'board_id': 'acme'}, strategies=['api', 'json_ld'])
        outcome = await engine.scrape_target(target)

        assert outcome.success is False
        assert outcome.error.kind == 'blocked'
        assert len(outcome.attempts) == 1
        assert [c.url.host for c in calls] == ['boards-api.greenhouse.io']

    @pytest.mark.asyncio
    async def test_rate_limited_flag(self):
        engine = make_engine({'boards-api.greenhouse.io': json_response({}, status=429)})
        target = make_target(ats={'type': 'greenhouse', 'board_id': 'acme'}, strategies=['api', 'json_ld'])
        outcome = await engine.scrape_target(target)

        assert outcome.rate_limited is True
        assert outcome.error.kind == 'rate_limit'
        assert len(outcome.attempts) == 1

    @pytest.mark.asyncio
    async def test_greenhouse_end_to_end(self):
        engine = make_engine({'boards-api.greenhouse.io': json_response(GREENHOUSE_PAYLOAD)})
        target = make_target(ats={'type': 'greenhouse', 'board_id': 'acme'}, strategies=['api'])
        outcome = await engine.scrape_target(target)

        assert outcome.success is True
        assert len(outcome.jobs) == 3
        assert len({j.id for j in outcome.jobs}) == 3
        for job in outcome.jobs:
            assert len(job.id) == 16
            assert job.source.type == 'ats_api'
            assert job.source.ats == AtsType.GREENHOUSE
            assert job.source.scrape_method == StrategyKind.API
            assert job.is_remote is True
        assert outcome.jobs[0].external_id == "greenhouse_acme_1"

    @pytest.mark.asyncio
    async def test_cdn_not_found_falls_through(self):
        engine = make_engine({
            'boards-api.greenhouse.io': lambda request: httpx.Response(404, text='Not Found', headers={'cf-ray': '8a1b-IAD'}),
            'careers.acme.com': html_response(JSONLD_HTML),
        })
        target = make_target(ats={'type': 'greenhouse', 'board_id': 'acme'}, strategies=['api', 'json_ld'])

        outcome = await engine.scrape_target(target)

        assert outcome.success is True
        assert outcome.method == StrategyKind.JSON_LD
        assert [a.strategy for a in outcome.attempts] == [StrategyKind.API, StrategyKind.JSON_LD]
        assert outcome.attempts[0].error.kind == 'network'

    @pytest.mark.asyncio
    async def test_parse_error_moves_to_next_tier(self):
        engine = make_engine({
            'boards-api.greenhouse.io': json_response({"unexpected": True}),
            'careers.acme.com': html_response(JSONLD_HTML),
        })
        target = make_target(ats={'type': 'greenhouse', 'board_id': 'acme'}, strategies=['api', 'json_ld'])
        outcome = await engine.scrape_target(target)

        assert outcome.success is True
        assert outcome.method == StrategyKind.JSON_LD
        assert outcome.attempts[0].error.kind == 'parse'
        assert outcome.jobs[0].title == "Data Engineer"

    @pytest.mark.asyncio
    async def test_unexpected_exception_moves_to_next_tier(self, target):
        engine = make_engine(
            {'careers.acme.com': html_response(JOB_CARDS_HTML)},
            registry=registry_with(ExplodingStrategy(), HtmlParsingStrategy()),
        )
        outcome = await engine.scrape_target(target)

        assert outcome.success is True
        assert outcome.attempts[0].error.kind == 'unknown'
        assert outcome.attempts[0].error.strategy == 'json_ld'

    @pytest.mark.asyncio
    async def test_unregistered_strategy_is_configuration_error(self):
        engine = make_engine(registry=registry_with(EmptyStrategy()))
        target = make_target(strategies=['ai_extraction', 'json_ld'])
        outcome = await engine.scrape_target(target)

        assert outcome.attempts[0].error.kind == 'configuration'
        assert outcome.attempts[1].strategy == StrategyKind.JSON_LD
        assert outcome.success is False
        assert outcome.error.kind == 'configuration'

    @pytest.mark.asyncio
    async def test_all_empty_has_no_error(self):
        engine = make_engine(registry=registry_with(EmptyStrategy()))
        outcome = await engine.scrape_target(make_target(strategies=['json_ld']))

        assert outcome.success is False
        assert outcome.error is None
        assert outcome.jobs == []

    @pytest.mark.asyncio
    async def test_inactive_target(self):
        calls = []
        engine = make_engine({}, calls)
        outcome = await engine.scrape_target(make_target(is_active=False))

        assert outcome.success is False
        assert outcome.error.kind == 'configuration'
        assert outcome.attempts == []
        assert calls == []


class TestCancellation:
    @pytest.mark.asyncio
    async def test_no_new_batch_after_run_token_trips(self):
        stub = CancellingStrategy()
        engine = make_engine(registry=registry_with(stub), batch_size=2)
        token = CancellationToken.with_deadline(30)
        stub.run_token = token

        targets = [make_target(id=f"t{i}", name=f"T{i}") for i in range(4)]
        outcomes = await engine.scrape_all(targets, token)

        assert len(outcomes) == 2
        assert all(o.cancelled for o in outcomes)
        assert all(o.error.kind == 'timeout' for o in outcomes)
        assert outcomes[0].attempts[-1].skipped is True

    @pytest.mark.asyncio
    async def test_cancel_target(self):
        engine = make_engine(registry=registry_with(SleepingStrategy()))
        task = asyncio.create_task(engine.scrape_target(make_target(strategies=['json_ld'])))
        await asyncio.sleep(0.05)

        assert engine.get_queue_stats()['running'] == 1
        assert engine.cancel_target('acme') is True
        outcome = await asyncio.wait_for(task, timeout=2)

        assert outcome.cancelled is True
        assert outcome.error.kind == 'timeout'
        assert 'cancelled' in outcome.error.message
        assert engine.cancel_target('acme') is False
        assert engine.get_queue_stats()['running'] == 0

    @pytest.mark.asyncio
    async def test_target_timeout(self):
        engine = make_engine(registry=registry_with(SleepingStrategy()), total_timeout=0.05)
        outcome = await engine.scrape_target(make_target(strategies=['json_ld']))

        assert outcome.cancelled is True
        assert outcome.error.kind == 'timeout'


class TestScrapeAll:
    @pytest.mark.asyncio
    async def test_invalid_target_dict_fails_alone(self):
        engine = make_engine(registry=registry_with(EmptyStrategy()))
        good = {'id': 'acme', 'name': 'Acme', 'url': 'https://careers.acme.com/jobs', 'strategies': ['json_ld']}

        outcomes = await engine.scrape_all([{'id': 'broken'}, good])

        assert [o.target_id for o in outcomes] == ['broken', 'acme']
        broken = outcomes[0]
        assert broken.success is False
        assert broken.target_name == 'broken'
        assert broken.error.kind == 'configuration'
        assert 'strategies' in broken.error.message
        assert outcomes[1].attempts[0].strategy == StrategyKind.JSON_LD
        assert engine.get_queue_stats()['failed'] == 2

    @pytest.mark.asyncio
    async def test_non_dict_target_gets_positional_id(self):
        engine = make_engine(registry=registry_with(EmptyStrategy()))
        outcomes = await engine.scrape_all([None])
        assert outcomes[0].target_id == 'target-0'
        assert outcomes[0].error.kind == 'configuration'

    @pytest.mark.asyncio
    async def test_camel_case_ats_binding(self):
        engine = make_engine({'boards-api.greenhouse.io': json_response(GREENHOUSE_PAYLOAD)})
        target = {'id': 'acme', 'name': 'Acme', 'url': 'https://careers.acme.com/jobs',
                  'ats': {'type': 'greenhouse', 'boardId': 'acme'}, 'strategies': ['api']}

        outcomes = await engine.scrape_all([target])

        assert outcomes[0].success is True
        assert outcomes[0].jobs[0].source.ats == AtsType.GREENHOUSE

    @pytest.mark.asyncio
    async def test_priority_order_and_dicts(self):
        engine = make_engine(registry=registry_with(EmptyStrategy()))
        targets = [
            {'id': 'low', 'name': 'Low', 'url': 'https://low.example.com/jobs', 'strategies': ['json_ld'], 'priority': 'low'},
            {'id': 'high', 'name': 'High', 'url': 'https://high.example.com/jobs', 'strategies': ['json_ld'], 'priority': 'high'},
            {'id': 'mid', 'name': 'Mid', 'url': 'https://mid.example.com/jobs', 'strategies': ['json_ld']},
        ]
        outcomes = await engine.scrape_all(targets)
        assert [o.target_id for o in outcomes] == ['high', 'mid', 'low']

    @pytest.mark.asyncio
    async def test_stats_and_metrics(self):
        engine = make_engine({'careers.acme.com': html_response(JOB_CARDS_HTML)})
        targets = [make_target(), make_target(id='gone', name='Gone', is_active=False)]
        outcomes = await engine.scrape_all(targets)

        assert [o.success for o in outcomes] == [True, False]
        stats = engine.get_queue_stats()
        assert stats['completed'] == 1
        assert stats['failed'] == 1
        assert stats['running'] == 0

        metrics = engine.get_metrics()
        assert metrics['total_jobs_scraped'] == 2
        assert metrics['success_rate'] == 0.5
        assert metrics['top_sources'] == [{'source': 'Acme', 'count': 2}]
        assert metrics['errors_by_type'] == {'configuration': 1}
