"""
Data island strategy.

Many career sites are single-page apps that ship their job list as a JSON
blob embedded in the page (Next.js __NEXT_DATA__, window.__INITIAL_STATE__,
Nuxt state, inline `jobs = [...]` arrays). This strategy finds those blobs
and walks them for objects that look like job postings.
"""

import re
import json
import logging
from typing import Dict, List, Optional, Any, Iterator

from pydantic import ValidationError

from .base import HtmlStrategy, parse_date, absolute_url, first_text
from .ats_api import strip_html
from .models import StrategyKind, TargetConfig, RawJobRecord

logger = logging.getLogger(__name__)

MAX_DEPTH = 25

DATA_ISLAND_PATTERNS = [
    re.compile(r'<script[^>]*id=["\']__NEXT_DATA__["\'][^>]*>', re.IGNORECASE),
    re.compile(r'window\.(?:__INITIAL_STATE__|__DATA__|__JOBS__|__APP_STATE__|__NUXT__)\s*=\s*', re.IGNORECASE),
    re.compile(r'\b(?:var|const|let)\s+jobs\s*=\s*'),
    re.compile(r'"(?:jobs|positions|openings|listings|careers|vacancies|opportunities)"\s*:\s*(?=\[)'),
]

TITLE_FIELDS = ('title', 'name', 'position', 'role', 'jobTitle', 'job_title', 'displayName')
JOB_FIELDS = (
    'description', 'location', 'department', 'team', 'requirements', 'responsibilities',
    'url', 'applyUrl', 'externalUrl', 'postedDate', 'createdAt', 'id',
)
URL_FIELDS = ('url', 'applyUrl', 'externalUrl', 'absolute_url', 'hostedUrl', 'jobUrl', 'link')
DATE_FIELDS = ('postedDate', 'datePosted', 'publishedAt', 'createdAt', 'created_at', 'updatedAt')

_decoder = json.JSONDecoder()


def find_data_islands(html: str) -> Iterator[Any]:
    """
    Yield every JSON value that follows a known data island marker.

    Decoding uses raw_decode so trailing script text after the value is
    ignored. Markers inside a blob that was already decoded are skipped.
    """
    decoded_spans = []
    for pattern in DATA_ISLAND_PATTERNS:
        for match in pattern.finditer(html):
            if any(begin <= match.start() < end for begin, end in decoded_spans):
                continue
            start = match.end()
            while start < len(html) and html[start].isspace():
                start += 1
            if start >= len(html) or html[start] not in '{[':
                continue
            try:
                value, end = _decoder.raw_decode(html, start)
            except json.JSONDecodeError as e:
                logger.debug(f"Skipping undecodable data island at offset {start}: {e}")
                continue
            decoded_spans.append((start, end))
            yield value


def looks_like_job(obj: Dict) -> bool:
    has_title = any(isinstance(obj.get(key), str) and obj[key].strip() for key in TITLE_FIELDS)
    return has_title and any(key in obj for key in JOB_FIELDS)


def walk_jobs(value: Any, seen: set, depth: int = 0) -> Iterator[Dict]:
    """Depth-first walk yielding job-shaped dicts, each object at most once"""
    if depth > MAX_DEPTH or not isinstance(value, (dict, list)):
        return
    if id(value) in seen:
        return
    seen.add(id(value))

    if isinstance(value, dict):
        if looks_like_job(value):
            yield value
            return
        children = value.values()
    else:
        children = value

    for child in children:
        yield from walk_jobs(child, seen, depth + 1)


def _location_text(value: Any) -> Optional[str]:
    if isinstance(value, str):
        return value.strip() or None
    if isinstance(value, dict):
        named = first_text(value, 'name', 'label', 'displayName', 'text')
        if named:
            return named
        parts = [value.get(k) for k in ('city', 'region', 'state', 'country')]
        joined = ', '.join(str(p) for p in parts if p)
        return joined or None
    if isinstance(value, list) and value:
        return _location_text(value[0])
    return None


def _text_list(value: Any) -> List[str]:
    if isinstance(value, list):
        return [strip_html(str(v)) for v in value if str(v).strip()]
    if isinstance(value, str) and value.strip():
        return [line.strip() for line in strip_html(value).split('. ') if line.strip()]
    return []


def _label(value: Any) -> Optional[str]:
    if isinstance(value, dict):
        return first_text(value, 'name', 'label')
    return value if isinstance(value, str) and value.strip() else None


class DataIslandStrategy(HtmlStrategy):
    """Extracts job records from JSON embedded in page scripts"""

    kind = StrategyKind.DATA_ISLAND

    def parse(self, html: str, target: TargetConfig, page_url: Optional[str] = None) -> List[RawJobRecord]:
        base_url = page_url or target.url
        seen: set = set()
        records = []
        for island in find_data_islands(html):
            for obj in walk_jobs(island, seen):
                try:
                    records.append(self._to_record(obj, base_url))
                except (ValidationError, TypeError, ValueError) as e:
                    logger.debug(f"Skipping job-like object on {base_url}: {e}")
        logger.debug(f"Found {len(records)} job objects in data islands for {target.name}")
        return records

    def _to_record(self, obj: Dict, base_url: str) -> RawJobRecord:
        title = first_text(obj, *TITLE_FIELDS)
        location = _location_text(obj.get('location')) or _location_text(obj.get('locations'))
        description = obj.get('description') or obj.get('descriptionPlain') or ''
        url = None
        for key in URL_FIELDS:
            if isinstance(obj.get(key), str):
                url = absolute_url(obj[key], base_url)
                if url:
                    break
        posted = None
        for key in DATE_FIELDS:
            if obj.get(key):
                posted = parse_date(obj[key])
                if posted:
                    break

        external_id = obj.get('id') or obj.get('jobId') or obj.get('requisitionId')
        return RawJobRecord(
            title=title,
            location_raw=location or 'Remote',
            is_remote=obj.get('isRemote') if isinstance(obj.get('isRemote'), bool) else None,
            description=strip_html(description) if isinstance(description, str) else '',
            requirements=_text_list(obj.get('requirements')),
            responsibilities=_text_list(obj.get('responsibilities')),
            employment_type=_label(obj.get('employmentType') or obj.get('type') or obj.get('commitment')),
            department=_label(obj.get('department')),
            team=_label(obj.get('team')),
            external_url=url,
            application_url=absolute_url(obj.get('applyUrl'), base_url) if isinstance(obj.get('applyUrl'), str) else None,
            external_id=str(external_id) if external_id is not None else None,
            posted_date=posted,
            method=StrategyKind.DATA_ISLAND,
        )
