"""
ATS API strategy.

Pulls postings straight from applicant tracking system JSON endpoints. This is
the fastest and most reliable strategy when a target declares its ATS board.
"""

import re
import logging
import html as html_lib
from typing import Dict, List, Any, Callable, Optional

from pydantic import ValidationError

from core.errors import ScrapeError, ErrorKind
from .base import ExtractionStrategy, FetchOptions, parse_date, first_text
from .models import StrategyKind, AtsType, TargetConfig, RawJobRecord

logger = logging.getLogger(__name__)

ATS_ENDPOINTS: Dict[AtsType, Callable[[str], str]] = {
    AtsType.GREENHOUSE: lambda board: f"https://boards-api.greenhouse.io/v1/boards/{board}/jobs?content=true",
    AtsType.LEVER: lambda board: f"https://api.lever.co/v0/postings/{board}?mode=json",
    AtsType.ASHBY: lambda board: f"https://api.ashbyhq.com/posting-api/job-board/{board}",
    AtsType.SMARTRECRUITERS: lambda board: f"https://api.smartrecruiters.com/v1/companies/{board}/postings",
}

REQUIREMENT_PATTERNS = [
    re.compile(r'\d+\+?\s*years?\s+of\s+(?:[a-z-]+\s+){0,3}experience', re.IGNORECASE),
    re.compile(r"\b(?:bachelor'?s?|master'?s?|phd|ph\.d\.?)(?:\s+degree)?(?:\s+in\s+[a-z ]{3,40})?", re.IGNORECASE),
    re.compile(r'\b(?:proficiency|experience)\s+with\s+[a-z0-9+#./ -]{2,40}', re.IGNORECASE),
]


def strip_html(text: Optional[str]) -> str:
    if not text:
        return ''
    text = html_lib.unescape(text)
    text = re.sub(r'<[^>]*>', ' ', text)
    text = text.replace('\xa0', ' ')
    return re.sub(r'\s+', ' ', text).strip()


def extract_requirements(text: str) -> List[str]:
    """Pull requirement phrases (experience, degree, tooling) out of plain text"""
    requirements = []
    for pattern in REQUIREMENT_PATTERNS:
        match = pattern.search(text or '')
        if match:
            requirements.append(match.group(0).strip())
    return requirements


def _first_name(items: Any) -> Optional[str]:
    if isinstance(items, list) and items and isinstance(items[0], dict):
        return first_text(items[0], 'name')
    return None


def _greenhouse_record(job: Dict, target: TargetConfig) -> RawJobRecord:
    description = strip_html(job.get('content'))
    return RawJobRecord(
        title=job['title'],
        location_raw=(job.get('location') or {}).get('name') or 'Remote',
        description=description,
        requirements=extract_requirements(description),
        department=_first_name(job.get('departments')),
        external_url=job.get('absolute_url') or target.url,
        external_id=f"greenhouse_{target.ats.board_id}_{job['id']}",
        posted_date=parse_date(job.get('updated_at') or job.get('created_at')),
        method=StrategyKind.API,
        ats=AtsType.GREENHOUSE,
    )


def _lever_record(job: Dict, target: TargetConfig) -> RawJobRecord:
    categories = job.get('categories') or {}
    description = job.get('descriptionPlain') or strip_html(job.get('description'))
    return RawJobRecord(
        title=job['text'],
        location_raw=categories.get('location') or 'Remote',
        description=description,
        requirements=extract_requirements(description),
        employment_type=categories.get('commitment'),
        team=categories.get('team'),
        department=categories.get('department'),
        external_url=job.get('hostedUrl') or job.get('applyUrl') or target.url,
        application_url=job.get('applyUrl'),
        external_id=f"lever_{target.ats.board_id}_{job['id']}",
        posted_date=parse_date(job.get('createdAt')),
        method=StrategyKind.API,
        ats=AtsType.LEVER,
    )


def _ashby_record(job: Dict, target: TargetConfig) -> RawJobRecord:
    description = job.get('descriptionPlain') or strip_html(job.get('descriptionHtml') or job.get('description'))
    return RawJobRecord(
        title=job['title'],
        location_raw=job.get('location') or 'Remote',
        is_remote=bool(job.get('isRemote')),
        description=description,
        requirements=extract_requirements(description),
        employment_type=job.get('employmentType'),
        department=job.get('department'),
        team=job.get('team'),
        external_url=job.get('jobUrl') or job.get('applyUrl') or target.url,
        application_url=job.get('applyUrl'),
        external_id=f"ashby_{target.ats.board_id}_{job.get('id') or job['title']}",
        posted_date=parse_date(job.get('publishedAt') or job.get('createdAt')),
        method=StrategyKind.API,
        ats=AtsType.ASHBY,
    )


def _smartrecruiters_record(job: Dict, target: TargetConfig) -> RawJobRecord:
    loc = job.get('location') or {}
    city = loc.get('city')
    location = f"{city}, {loc.get('country') or ''}".strip(', ') if city else 'Remote'
    sections = (job.get('jobAd') or {}).get('sections') or {}
    description = strip_html((sections.get('jobDescription') or {}).get('text') or job.get('jobDescription'))
    return RawJobRecord(
        title=job['name'],
        location_raw=location,
        city=city,
        state=loc.get('region'),
        country=loc.get('country'),
        is_remote=bool(loc.get('remote')),
        description=description,
        requirements=extract_requirements(description),
        employment_type=(job.get('typeOfEmployment') or {}).get('label'),
        department=(job.get('department') or {}).get('label'),
        external_url=job.get('applyUrl') or job.get('ref') or target.url,
        application_url=job.get('applyUrl'),
        external_id=f"smartrecruiters_{target.ats.board_id}_{job['id']}",
        posted_date=parse_date(job.get('releasedDate')),
        method=StrategyKind.API,
        ats=AtsType.SMARTRECRUITERS,
    )


# ats -> (key holding the postings list or None for a bare list, record builder)
ATS_PARSERS: Dict[AtsType, tuple] = {
    AtsType.GREENHOUSE: ('jobs', _greenhouse_record),
    AtsType.LEVER: (None, _lever_record),
    AtsType.ASHBY: ('jobs', _ashby_record),
    AtsType.SMARTRECRUITERS: ('content', _smartrecruiters_record),
}


def parse_ats_response(ats: AtsType, data: Any, target: TargetConfig) -> List[RawJobRecord]:
    """
    Convert an ATS payload into raw records.

    A payload of the wrong shape raises a parse error; a single malformed
    posting is skipped with a warning.
    """
    key, build = ATS_PARSERS[ats]
    if key:
        postings = data.get(key) if isinstance(data, dict) else None
    else:
        postings = data
    if not isinstance(postings, list):
        expected = f"'{key}' list" if key else "list of postings"
        raise ScrapeError(ErrorKind.PARSE, f"{ats.value} response has no {expected}")

    records = []
    for posting in postings:
        try:
            records.append(build(posting, target))
        except (KeyError, TypeError, AttributeError, ValidationError) as e:
            logger.warning(f"Failed to parse {ats.value} posting for {target.name}: {e!r}")
    return records


class AtsApiStrategy(ExtractionStrategy):
    """Fetch postings from a known ATS job-board API"""

    kind = StrategyKind.API

    async def extract(self, target: TargetConfig, options: FetchOptions) -> List[RawJobRecord]:
        if target.ats is None:
            raise ScrapeError(ErrorKind.CONFIGURATION, f"API strategy requires ATS configuration for {target.id}")

        ats = target.ats.type
        endpoint = ATS_ENDPOINTS[ats](target.ats.board_id)
        self.logger.info(
            f"Fetching jobs from {ats.value} API for {target.name}",
            extra={'context': {'target': target.id, 'ats': ats.value, 'endpoint': endpoint}},
        )

        data = await options.http.fetch_json(endpoint, headers=options.headers, token=options.token)
        records = parse_ats_response(ats, data, target)

        self.logger.info(f"Fetched {len(records)} jobs from {ats.value} for {target.name}")
        return records
