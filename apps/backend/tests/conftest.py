"""
Shared fixtures for the scraper test suite.
"""

import json
from datetime import datetime, timezone, timedelta
from typing import Callable, Dict

import httpx
import pytest

from core.normalize import NormalizationPipeline, calculate_job_hash
from pipeline.models import TargetConfig, RawJobRecord, StrategyKind, JobSource

NOW = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)


def make_target(**overrides) -> TargetConfig:
    data = {
        'id': 'acme',
        'name': 'Acme',
        'url': 'https://careers.acme.com/jobs',
        'strategies': ['json_ld', 'html_parsing'],
    }
    data.update(overrides)
    return TargetConfig.model_validate(data)


def make_job(title='Senior Software Engineer', company='Acme', location='San Francisco, CA',
             url=None, posted=None, method=StrategyKind.HTML_PARSING, employment_type=None):
    """A normalized, hashed and tagged job as the engine would emit it"""
    target = make_target(id=company.lower().replace(' ', '-'), name=company)
    raw = RawJobRecord(
        title=title,
        location_raw=location,
        employment_type=employment_type,
        external_url=url,
        posted_date=posted or NOW,
        method=method,
    )
    job = NormalizationPipeline().normalize(raw, target, now=NOW)
    job.id = calculate_job_hash(job)
    job.source = JobSource(type='career_page', company=company, url=target.url, scrape_method=method)
    return job


def mock_transport(routes: Dict[str, Callable[[httpx.Request], httpx.Response]], calls=None) -> httpx.MockTransport:
    """
    MockTransport dispatching on host (or host + path when that key exists).

    Unknown hosts answer 404. Every request is appended to `calls` when given.
    """
    def handler(request: httpx.Request) -> httpx.Response:
        if calls is not None:
            calls.append(request)
        key = f"{request.url.host}{request.url.path}"
        route = routes.get(key) or routes.get(request.url.host)
        if route is None:
            return httpx.Response(404, text='not found')
        return route(request)

    return httpx.MockTransport(handler)


def html_response(body: str, status: int = 200, headers=None):
    return lambda request: httpx.Response(status, text=body, headers=headers or {'content-type': 'text/html'})


def json_response(data, status: int = 200, headers=None):
    return lambda request: httpx.Response(
        status, text=json.dumps(data), headers=headers or {'content-type': 'application/json'},
    )


class FakeClock:
    """Monotonic clock that only moves when the limiter sleeps"""

    def __init__(self, start: float = 1000.0):
        self.now = start
        self.sleeps = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float):
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def target():
    return make_target()


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def days_ago():
    return lambda n: NOW - timedelta(days=n)
