"""
JSON-LD strategy.

Extracts job postings from structured JSON-LD data (Schema.org JobPosting).
Depends on a markup convention rather than page layout, so it survives
redesigns well.
"""

import json
import logging
from typing import Dict, List, Optional, Any

from pydantic import ValidationError

from .base import HtmlStrategy, parse_date, absolute_url
from .models import StrategyKind, TargetConfig, RawJobRecord, SalaryInfo

logger = logging.getLogger(__name__)

UNIT_TO_PERIOD = {
    'HOUR': 'hourly',
    'DAY': 'daily',
    'WEEK': 'weekly',
    'MONTH': 'monthly',
    'YEAR': 'yearly',
}


class JSONLDStrategy(HtmlStrategy):
    """Extracts job records from JSON-LD structured data."""

    kind = StrategyKind.JSON_LD

    def parse(self, html: str, target: TargetConfig, page_url: Optional[str] = None) -> List[RawJobRecord]:
        """
        Extract job postings from every JSON-LD block on the page.

        Returns:
            List of RawJobRecord, one per JobPosting found
        """
        soup = self.get_soup(html)
        base_url = page_url or target.url
        records = []

        scripts = soup.find_all('script', type='application/ld+json')
        logger.debug(f"Found {len(scripts)} JSON-LD blocks for {target.name}")

        for script in scripts:
            try:
                data = json.loads(script.string or '')
            except (json.JSONDecodeError, TypeError) as e:
                logger.debug(f"Failed to parse JSON-LD: {e}")
                continue

            for item in self._flatten_jsonld(data):
                if not self._is_job_posting(item):
                    continue
                try:
                    record = self._to_record(item, base_url)
                except (ValidationError, TypeError, ValueError, AttributeError) as e:
                    logger.warning(f"Failed to parse JobPosting for {target.name}: {e}")
                    continue
                if record:
                    records.append(record)

        return records

    def _flatten_jsonld(self, data: Any) -> List[Dict]:
        """Flatten JSON-LD structure to list of items."""
        items = []

        if isinstance(data, dict):
            if self._is_job_posting(data):
                items.append(data)
            elif '@graph' in data and isinstance(data['@graph'], list):
                items.extend([item for item in data['@graph'] if isinstance(item, dict)])
            elif 'itemListElement' in data and isinstance(data['itemListElement'], list):
                for element in data['itemListElement']:
                    if isinstance(element, dict):
                        items.append(element.get('item', element))
        elif isinstance(data, list):
            for item in data:
                items.extend(self._flatten_jsonld(item))

        return [item for item in items if isinstance(item, dict)]

    def _is_job_posting(self, item: Dict) -> bool:
        """Check if JSON-LD item is a JobPosting."""
        item_type = item.get('@type', '')
        if isinstance(item_type, str):
            return 'JobPosting' in item_type
        elif isinstance(item_type, list):
            return any('JobPosting' in str(t) for t in item_type)
        return False

    def _to_record(self, posting: Dict, base_url: str) -> Optional[RawJobRecord]:
        title = str(posting.get('title') or '').strip()
        if not title:
            return None

        location = self._parse_location(posting.get('jobLocation'))
        remote_type = str(posting.get('jobLocationType') or '').upper()
        if remote_type == 'TELECOMMUTE':
            location['is_remote'] = True
            if not location['location_raw'] or location['location_raw'] == 'Remote':
                location['location_raw'] = 'Remote'

        url = absolute_url(posting.get('url'), base_url)
        identifier = posting.get('identifier')
        if isinstance(identifier, dict):
            identifier = identifier.get('value')

        return RawJobRecord(
            title=title,
            description=str(posting.get('description') or ''),
            requirements=self._parse_requirements(posting),
            responsibilities=self._split_text(posting.get('responsibilities')),
            skills=self._parse_skills(posting.get('skills')),
            employment_type=self._join(posting.get('employmentType')),
            salary=self._parse_salary(posting.get('baseSalary')),
            external_url=url,
            application_url=url if posting.get('directApply') else None,
            external_id=str(identifier) if identifier else None,
            posted_date=parse_date(posting.get('datePosted')),
            expires_at=parse_date(posting.get('validThrough')),
            method=StrategyKind.JSON_LD,
            **location,
        )

    def _parse_location(self, job_location: Any) -> Dict:
        if isinstance(job_location, list):
            job_location = job_location[0] if job_location else None
        if isinstance(job_location, str):
            return {'location_raw': job_location}
        if not isinstance(job_location, dict):
            return {'location_raw': 'Remote', 'is_remote': True}

        address = job_location.get('address')
        if isinstance(address, str):
            return {'location_raw': address}
        if not isinstance(address, dict):
            return {'location_raw': str(job_location.get('name') or 'Remote')}

        country = address.get('addressCountry')
        if isinstance(country, dict):
            country = country.get('name')
        city = address.get('addressLocality')
        region = address.get('addressRegion')
        parts = [p for p in (city, region, country) if p]
        raw = job_location.get('name') or ', '.join(str(p) for p in parts) or 'Remote'
        return {
            'location_raw': str(raw),
            'city': city,
            'state': region,
            'country': country,
        }

    def _parse_salary(self, base_salary: Any) -> Optional[SalaryInfo]:
        if not isinstance(base_salary, dict):
            return None
        value = base_salary.get('value')
        currency = base_salary.get('currency') or 'USD'
        if isinstance(value, (int, float)):
            return SalaryInfo(min=value, max=value, currency=currency)
        if not isinstance(value, dict):
            return None

        single = value.get('value')
        low = value.get('minValue', single)
        high = value.get('maxValue', single)
        if low is None and high is None:
            return None
        period = UNIT_TO_PERIOD.get(str(value.get('unitText') or 'YEAR').upper(), 'yearly')
        return SalaryInfo(
            min=float(low) if low is not None else None,
            max=float(high) if high is not None else None,
            currency=currency,
            period=period,
        )

    def _parse_requirements(self, posting: Dict) -> List[str]:
        requirements = []
        for key in ('qualifications', 'experienceRequirements', 'educationRequirements'):
            value = posting.get(key)
            if isinstance(value, dict):
                value = value.get('description') or value.get('credentialCategory')
            requirements.extend(self._split_text(value))
        return requirements

    def _parse_skills(self, skills: Any) -> List[str]:
        if isinstance(skills, list):
            return [str(s).strip() for s in skills if str(s).strip()]
        if isinstance(skills, str):
            return [s.strip() for s in skills.split(',') if s.strip()]
        return []

    def _split_text(self, value: Any) -> List[str]:
        if isinstance(value, list):
            return [str(v).strip() for v in value if str(v).strip()]
        if isinstance(value, str) and value.strip():
            return [line.strip() for line in value.splitlines() if line.strip()]
        return []

    def _join(self, value: Any) -> Optional[str]:
        if isinstance(value, list):
            return ' '.join(str(v) for v in value)
        return str(value) if value else None
