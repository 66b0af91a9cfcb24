"""
AI extraction strategy.

Uses an LLM (OpenRouter) as the last resort when a career page has no
structured data and heuristic parsing finds nothing. The page is stripped
down to content markup before it is sent, and the model must answer with a
fixed JSON shape.
"""

import os
import re
import json
import logging
from typing import Dict, List, Optional, Any

from bs4 import BeautifulSoup, Comment
from pydantic import ValidationError

from core.errors import ScrapeError, ErrorKind
from .base import ExtractionStrategy, FetchOptions, absolute_url
from .models import StrategyKind, TargetConfig, RawJobRecord, SalaryInfo

logger = logging.getLogger(__name__)

OPENROUTER_URL = "https://openrouter.ai/api/v1/chat/completions"
DEFAULT_MODEL = "anthropic/claude-3-haiku"
MAX_HTML_CHARS = 25000
MAX_JOBS = 20

DROP_TAGS = ['script', 'style', 'svg', 'noscript', 'head', 'nav', 'footer', 'iframe']

SYSTEM_PROMPT = """You are a precise job listing extractor. Extract all job postings from the provided HTML.

Rules:
1. Only extract actual job postings, not navigation links or other content
2. If a field is not found, omit it or use null
3. Be precise with job titles - don't make them up
4. Use specific job URLs when available, otherwise null
5. Maximum 20 jobs

Return only valid JSON in this exact format:
{
  "jobs": [
    {
      "title": "Job Title",
      "location": "City, State/Country or Remote",
      "description": "Brief 2-3 sentence description",
      "requirements": ["requirement 1"],
      "responsibilities": ["responsibility 1"],
      "skills": ["skill1"],
      "employmentType": "full-time|part-time|contract|internship",
      "salary": {"min": 100000, "max": 150000, "currency": "USD", "period": "yearly"},
      "externalUrl": "https://...",
      "department": "Engineering",
      "team": "Platform"
    }
  ],
  "confidence": 0.85,
  "totalFound": 5
}"""

VALID_PERIODS = {'hourly', 'daily', 'weekly', 'monthly', 'yearly'}


def clean_html_for_ai(html: str, max_chars: int = MAX_HTML_CHARS) -> str:
    """
    Reduce a page to bare content markup for the model.

    Drops scripts, styles, svg, head and page chrome, removes comments and
    every attribute except link targets, collapses whitespace and truncates.
    """
    soup = BeautifulSoup(html, 'html.parser')
    for tag in soup(DROP_TAGS):
        tag.decompose()
    for comment in soup.find_all(string=lambda text: isinstance(text, Comment)):
        comment.extract()
    for tag in soup.find_all(True):
        href = tag.get('href') if tag.name == 'a' else None
        tag.attrs = {'href': href} if href else {}

    cleaned = str(soup)
    cleaned = re.sub(r'>\s+<', '><', cleaned)
    cleaned = re.sub(r'\s+', ' ', cleaned).strip()
    if len(cleaned) > max_chars:
        cleaned = cleaned[:max_chars] + '\n...[truncated]'
    return cleaned


def strip_code_fences(content: str) -> str:
    content = content.strip()
    if content.startswith('```'):
        lines = content.split('\n')
        content = '\n'.join(lines[1:-1]) if len(lines) > 2 else content.strip('`')
    return content.strip()


class AIExtractionStrategy(ExtractionStrategy):
    """LLM-backed extraction; every failure is final for this strategy."""

    kind = StrategyKind.AI_EXTRACTION

    def __init__(
        self,
        enabled: bool = True,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        max_calls: Optional[int] = None,
    ):
        super().__init__()
        self.enabled = enabled
        self.api_key = api_key or os.getenv('OPENROUTER_API_KEY')
        self.model = model or os.getenv('AI_EXTRACTION_MODEL', DEFAULT_MODEL)
        self.max_calls = max_calls if max_calls is not None else int(os.getenv('AI_EXTRACTION_MAX_CALLS', '2000'))
        self.call_count = 0

    def _fail(self, kind: ErrorKind, message: str, status_code: Optional[int] = None) -> ScrapeError:
        return ScrapeError(kind, message, status_code=status_code, strategy=self.name, retryable=False)

    async def extract(self, target: TargetConfig, options: FetchOptions) -> List[RawJobRecord]:
        if not self.enabled:
            raise self._fail(ErrorKind.CONFIGURATION, "AI extraction is disabled")
        if not self.api_key:
            raise self._fail(ErrorKind.CONFIGURATION, "AI extraction requires OPENROUTER_API_KEY")
        if self.call_count >= self.max_calls:
            raise self._fail(ErrorKind.CONFIGURATION, f"AI extraction limit reached ({self.max_calls} calls)")

        try:
            html = await options.http.fetch_text(target.url, headers=options.headers, token=options.token)
        except ScrapeError as e:
            raise self._fail(e.kind, e.message, e.status_code)

        cleaned = clean_html_for_ai(html)
        self.logger.info(
            f"Extracting jobs with AI for {target.name}",
            extra={'context': {'target': target.id, 'html_length': len(cleaned), 'model': self.model}},
        )

        response = await self._call_ai(cleaned, target, options)
        records = self._parse_ai_response(response, target)

        self.logger.info(
            f"AI extracted {len(records)} jobs for {target.name}",
            extra={'context': {'confidence': response.get('confidence'), 'total_found': response.get('totalFound')}},
        )
        return records

    async def _call_ai(self, html: str, target: TargetConfig, options: FetchOptions) -> Dict:
        """Call OpenRouter and return the decoded JSON answer."""
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        payload = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": f"Extract job listings from {target.name}'s careers page:\n\n{html}"},
            ],
            "temperature": 0.1,
            "max_tokens": 4000,
        }

        self.call_count += 1
        try:
            data = await options.http.fetch_json(
                OPENROUTER_URL, headers=headers, token=options.token, method="POST", json_data=payload,
            )
        except ScrapeError as e:
            # provider throttling or refusal says nothing about the target site
            kind = ErrorKind.NETWORK if e.kind in (ErrorKind.BLOCKED, ErrorKind.RATE_LIMIT) else e.kind
            raise self._fail(kind, f"AI provider call failed: {e.message}", e.status_code)

        try:
            content = data['choices'][0]['message']['content']
        except (KeyError, IndexError, TypeError):
            raise self._fail(ErrorKind.PARSE, "Empty response from AI provider")
        if not content:
            raise self._fail(ErrorKind.PARSE, "Empty response from AI provider")

        try:
            parsed = json.loads(strip_code_fences(content))
        except json.JSONDecodeError as e:
            raise self._fail(ErrorKind.PARSE, f"AI response is not valid JSON: {e}")

        if not isinstance(parsed, dict) or not isinstance(parsed.get('jobs'), list):
            raise self._fail(ErrorKind.PARSE, "Invalid AI response structure: missing jobs list")
        return parsed

    def _parse_ai_response(self, response: Dict, target: TargetConfig) -> List[RawJobRecord]:
        records = []
        for job in response['jobs'][:MAX_JOBS]:
            if not isinstance(job, dict) or not str(job.get('title') or '').strip():
                continue
            try:
                records.append(self._to_record(job, target))
            except (ValidationError, TypeError, ValueError) as e:
                logger.warning(f"Dropping malformed AI job for {target.name}: {e}")
        return records

    def _to_record(self, job: Dict, target: TargetConfig) -> RawJobRecord:
        location = str(job.get('location') or 'Remote')
        return RawJobRecord(
            title=str(job['title']).strip(),
            location_raw=location,
            is_remote=job.get('workType') == 'remote' or 'remote' in location.lower(),
            description=str(job.get('description') or ''),
            requirements=_string_list(job.get('requirements')),
            responsibilities=_string_list(job.get('responsibilities')),
            skills=_string_list(job.get('skills')),
            employment_type=job.get('employmentType'),
            salary=_salary(job.get('salary')),
            department=job.get('department'),
            team=job.get('team'),
            external_url=absolute_url(job.get('externalUrl'), target.url) or target.url,
            method=StrategyKind.AI_EXTRACTION,
        )


def _string_list(value: Any) -> List[str]:
    if not isinstance(value, list):
        return []
    return [str(v).strip() for v in value if str(v).strip()]


def _salary(value: Any) -> Optional[SalaryInfo]:
    if not isinstance(value, dict) or (value.get('min') is None and value.get('max') is None):
        return None
    period = str(value.get('period') or 'yearly').lower()
    return SalaryInfo(
        min=value.get('min'),
        max=value.get('max'),
        currency=value.get('currency') or 'USD',
        period=period if period in VALID_PERIODS else 'yearly',
    )
