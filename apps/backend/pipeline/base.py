"""
Base interface for extraction strategies.
"""
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Dict, Optional, Any, Iterator, Callable, Awaitable
from urllib.parse import urljoin, urlparse, urlencode, parse_qsl, urlunparse

from bs4 import BeautifulSoup
from dateutil import parser as date_parser

from core.anti_detection import AntiDetection
from core.cancellation import CancellationToken
from core.domain_limits import RateLimiter
from core.net import HTTPClient
from .models import StrategyKind, TargetConfig, RawJobRecord

logger = logging.getLogger(__name__)


@dataclass
class FetchOptions:
    """Per-attempt fetch context handed to a strategy by the engine"""
    http: HTTPClient
    token: CancellationToken
    headers: Dict[str, str] = field(default_factory=dict)
    # Pacing between sequential pages of one target; unset means no pause
    anti_detection: Optional[AntiDetection] = None
    rate_limiter: Optional[RateLimiter] = None
    sleep: Optional[Callable[[float], Awaitable[None]]] = None

    async def pace(self, domain: str):
        """Wait before another request to `domain` within the same attempt"""
        if self.anti_detection is not None:
            delay = self.anti_detection.get_random_delay()
            if self.sleep is not None:
                self.token.raise_if_cancelled()
                await self.sleep(delay)
            else:
                await self.token.sleep(delay)
        if self.rate_limiter is not None:
            await self.rate_limiter.acquire(domain, self.token)


class ExtractionStrategy(ABC):
    """
    Base class for extraction strategies.

    A strategy either returns a list of raw records (possibly empty) or
    raises ScrapeError. It never retries; the engine falls back to the next
    strategy instead.
    """

    kind: StrategyKind

    def __init__(self):
        self.name = self.kind.value
        self.logger = logging.getLogger(f"{__name__}.{self.name}")

    @abstractmethod
    async def extract(self, target: TargetConfig, options: FetchOptions) -> List[RawJobRecord]:
        """
        Extract job listings for a target.

        Args:
            target: Target configuration
            options: Headers, HTTP client and cancellation token for this attempt

        Returns:
            Raw job records, possibly empty
        """

    def get_soup(self, html: str) -> BeautifulSoup:
        """Helper to create BeautifulSoup instance"""
        return BeautifulSoup(html, 'html.parser')

    def __repr__(self):
        return f"<{self.__class__.__name__}(kind={self.name})>"


class HtmlStrategy(ExtractionStrategy):
    """Strategy that works on the target's fetched HTML"""

    @abstractmethod
    def parse(self, html: str, target: TargetConfig, page_url: Optional[str] = None) -> List[RawJobRecord]:
        """Extract records from already fetched (or browser rendered) HTML"""

    async def extract(self, target: TargetConfig, options: FetchOptions) -> List[RawJobRecord]:
        jobs: List[RawJobRecord] = []
        seen = set()
        for index, page_url in enumerate(page_urls(target)):
            if index > 0:
                await options.pace(target.domain)
            html = await options.http.fetch_text(page_url, headers=options.headers, token=options.token)
            page_jobs = self.parse(html, target, page_url)
            self.logger.info(f"Extracted {len(page_jobs)} jobs via {self.name} from {page_url}")

            new_jobs = [job for job in page_jobs if (job.external_url, job.title) not in seen]
            seen.update((job.external_url, job.title) for job in page_jobs)
            if not new_jobs:
                if page_jobs:
                    self.logger.info(f"No new jobs on {page_url}, stopping pagination")
                break
            jobs.extend(new_jobs)
        return jobs


def page_urls(target: TargetConfig) -> Iterator[str]:
    """Career page URLs to visit, following url_param pagination"""
    yield target.url
    pagination = target.pagination
    if pagination.type != 'url_param':
        return
    parsed = urlparse(target.url)
    base_query = [(k, v) for k, v in parse_qsl(parsed.query, keep_blank_values=True) if k != pagination.param]
    for page in range(2, pagination.max_pages + 1):
        query = urlencode(base_query + [(pagination.param, str(page))])
        yield urlunparse(parsed._replace(query=query))


def parse_date(value: Any) -> Optional[datetime]:
    """Parse ISO strings, loose date strings or epoch (s or ms) into aware UTC"""
    if value is None or value == '':
        return None
    try:
        if isinstance(value, (int, float)):
            seconds = value / 1000.0 if value > 1e11 else float(value)
            return datetime.fromtimestamp(seconds, tz=timezone.utc)
        parsed = date_parser.parse(str(value))
    except (ValueError, OverflowError, OSError) as e:
        logger.debug(f"Unparseable date {value!r}: {e}")
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def absolute_url(href: Optional[str], base_url: str) -> Optional[str]:
    if not href:
        return None
    href = href.strip()
    if href.startswith(('javascript:', 'mailto:', '#')):
        return None
    return urljoin(base_url, href)


def first_text(data: Dict, *keys: str) -> Optional[str]:
    """First non-empty string value among keys"""
    for key in keys:
        value = data.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None
