"""
Normalization pipeline for scraped jobs.

Maps raw strategy output into the canonical job schema:
- Title synonyms collapsed to one canonical lowercase title
- Location parsed into city/state/country with a remote flag
- Work type, employment type and experience level inferred from text
- Salary ranges annualized
- Skills matched against a fixed taxonomy
- Descriptions stripped of markup and bounded in length
"""

import re
import hashlib
import logging
from datetime import datetime, timezone
from typing import Optional, List, Dict, Tuple

from pipeline.models import (
    RawJobRecord,
    TargetConfig,
    NormalizedJob,
    JobLocation,
    SalaryInfo,
    SkillCategory,
)

logger = logging.getLogger(__name__)

MAX_DESCRIPTION_LENGTH = 5000

# Checked in order; the first phrase found in the title wins
TITLE_SYNONYMS: List[Tuple[str, str]] = [
    ('software engineer', 'software engineer'),
    ('software developer', 'software engineer'),
    ('sw engineer', 'software engineer'),
    ('swe', 'software engineer'),
    ('frontend engineer', 'frontend engineer'),
    ('front-end engineer', 'frontend engineer'),
    ('fe engineer', 'frontend engineer'),
    ('backend engineer', 'backend engineer'),
    ('back-end engineer', 'backend engineer'),
    ('be engineer', 'backend engineer'),
    ('full stack', 'fullstack engineer'),
    ('fullstack', 'fullstack engineer'),
    ('full-stack', 'fullstack engineer'),
    ('devops', 'devops engineer'),
    ('data scientist', 'data scientist'),
    ('machine learning engineer', 'ml engineer'),
    ('ml engineer', 'ml engineer'),
    ('product manager', 'product manager'),
    ('pm', 'product manager'),
    ('engineering manager', 'engineering manager'),
    ('tech lead', 'tech lead'),
    ('staff engineer', 'staff engineer'),
    ('principal engineer', 'principal engineer'),
]

EXPERIENCE_PATTERNS = [
    ('entry', [r'\bentry[\s-]level\b', r'\bjunior\b', r'\bjr\b\.?', r'\b0-2\s*years?\b', r'\b1\s*year\b']),
    ('mid', [r'\bmid[\s-]level\b', r'\bintermediate\b', r'\b2-5\s*years\b', r'\b3\s*years\b', r'\b4\s*years\b']),
    ('senior', [r'\bsenior\b', r'\bsr\b\.?', r'\b5\+?\s*years\b', r'\b5-8\s*years\b']),
    ('staff', [r'\bstaff\b', r'\blead\b', r'\b8\+\s*years\b', r'\bprincipal\b']),
    ('executive', [r'\bdirector\b', r'\bvp\b', r'\bhead of\b', r'\bcto\b', r'\bcio\b']),
]

WORK_TYPE_PATTERNS = [
    ('remote', [r'\bremote\b', r'\bwork from home\b', r'\bwfh\b', r'\bdistributed\b']),
    ('hybrid', [r'\bhybrid\b', r'\bflexible\b']),
    ('onsite', [r'\bon[\s-]?site\b', r'\boffice\b', r'\bin[\s-]person\b']),
]

EMPLOYMENT_TYPE_PATTERNS = [
    ('contract', [r'\bcontract(?:or)?\b', r'\bfreelance\b']),
    ('part-time', [r'\bpart[\s-]?time\b']),
    ('internship', [r'\bintern(?:ship)?\b']),
    ('full-time', [r'\bfull[\s-]?time\b']),
]

SALARY_MULTIPLIERS = {
    'hourly': 2080,
    'daily': 260,
    'weekly': 52,
    'monthly': 12,
    'yearly': 1,
}

SKILL_CATEGORIES: Dict[str, List[str]] = {
    'languages': ['javascript', 'typescript', 'python', 'java', 'go', 'rust', 'c++', 'c#', 'ruby', 'php', 'swift', 'kotlin'],
    'frontend': ['react', 'vue', 'angular', 'svelte', 'next.js', 'nuxt', 'html', 'css', 'tailwind'],
    'backend': ['node.js', 'django', 'flask', 'spring', 'express', 'fastapi', 'rails'],
    'databases': ['postgresql', 'mysql', 'mongodb', 'redis', 'dynamodb', 'cassandra', 'elasticsearch'],
    'cloud': ['aws', 'gcp', 'azure', 'docker', 'kubernetes', 'terraform', 'pulumi'],
    'ai_ml': ['tensorflow', 'pytorch', 'scikit-learn', 'pandas', 'numpy', 'ml', 'ai', 'llm'],
    'mobile': ['ios', 'android', 'react native', 'flutter', 'swift', 'kotlin'],
    'devops': ['ci/cd', 'jenkins', 'github actions', 'gitlab', 'ansible', 'chef', 'puppet'],
}

REMOTE_PATTERN = re.compile(r'\b(?:remote|distributed|work from home|wfh|anywhere)\b', re.IGNORECASE)
CITY_STATE_PATTERN = re.compile(r"^\s*([A-Za-z][A-Za-z .'-]*?)\s*,\s*([A-Za-z]{2})\b")

HTML_ENTITIES = [
    ('&nbsp;', ' '),
    ('&amp;', '&'),
    ('&lt;', '<'),
    ('&gt;', '>'),
    ('&quot;', '"'),
    ('&#39;', "'"),
]


def _phrase_pattern(phrase: str) -> re.Pattern:
    # Word-bounded, but tolerant of symbols inside the phrase (c++, node.js, ci/cd)
    return re.compile(r'(?<![a-z0-9])' + re.escape(phrase) + r'(?![a-z0-9])')


def _title_pattern(phrase: str) -> re.Pattern:
    # Same as _phrase_pattern, also matching the plural ("Frontend Engineers")
    return re.compile(r'(?<![a-z0-9])' + re.escape(phrase) + r's?(?![a-z0-9])')


_TITLE_MATCHERS = [(_title_pattern(s), canonical) for s, canonical in TITLE_SYNONYMS]
_SKILL_MATCHERS = [
    (category, [_phrase_pattern(k) for k in keywords])
    for category, keywords in SKILL_CATEGORIES.items()
]


def _compile(table):
    return [(label, [re.compile(p, re.IGNORECASE) for p in patterns]) for label, patterns in table]


_EXPERIENCE = _compile(EXPERIENCE_PATTERNS)
_WORK_TYPE = _compile(WORK_TYPE_PATTERNS)
_EMPLOYMENT = _compile(EMPLOYMENT_TYPE_PATTERNS)


def _first_match(table, text: str) -> Optional[str]:
    for label, patterns in table:
        for pattern in patterns:
            if pattern.search(text):
                return label
    return None


def normalize_title(title: str) -> str:
    """Collapse known synonyms to one canonical lowercase title."""
    lower_title = (title or '').lower().strip()
    for pattern, canonical in _TITLE_MATCHERS:
        if pattern.search(lower_title):
            return canonical
    return lower_title


def normalize_location(raw: RawJobRecord) -> JobLocation:
    """Parse free-text location into structured parts plus a dedup key."""
    raw_text = (raw.location_raw or '').strip() or 'Remote'
    city = raw.city
    state = raw.state
    country = raw.country or ''
    country_code = ''

    is_remote = bool(raw.is_remote) or bool(REMOTE_PATTERN.search(raw_text))
    if is_remote and not country:
        country = 'Global'
        country_code = 'GL'

    if not city:
        match = CITY_STATE_PATTERN.match(raw_text)
        if match and not REMOTE_PATTERN.fullmatch(match.group(1).strip()):
            city = match.group(1).strip()
            state = state or match.group(2).upper()
            parts = [p.strip() for p in raw_text.split(',')]
            if len(parts) >= 3 and parts[2] and country in ('', 'Global'):
                country = parts[2]
                country_code = ''

    parts = [p for p in (city, state, country) if p]
    normalized = ', '.join(parts).lower() if parts else raw_text.lower()

    return JobLocation(
        raw=raw_text,
        city=city,
        state=state,
        country=country,
        country_code=country_code,
        is_remote=is_remote,
        normalized=normalized,
    )


def detect_work_type(title: str, description: str, location: str, is_remote: bool = False) -> str:
    """remote / hybrid / onsite; hybrid when nothing matches."""
    text = f"{title} {description} {location}".lower()
    found = _first_match(_WORK_TYPE, text)
    if found:
        return found
    return 'remote' if is_remote else 'hybrid'


def detect_employment_type(title: str, description: str, hint: Optional[str] = None) -> str:
    """contract / part-time / internship / full-time; full-time by default."""
    if hint:
        from_hint = _first_match(_EMPLOYMENT, hint)
        if from_hint:
            return from_hint
    found = _first_match(_EMPLOYMENT, f"{title} {description}".lower())
    return found or 'full-time'


def detect_experience_level(title: str, description: str) -> str:
    """entry / mid / senior / staff / executive; mid by default."""
    found = _first_match(_EXPERIENCE, f"{title} {description}".lower())
    return found or 'mid'


def normalize_salary(salary: Optional[SalaryInfo]) -> SalaryInfo:
    """Annualize disclosed salary bounds using fixed pay-period multipliers."""
    if salary is None:
        return SalaryInfo()

    multiplier = SALARY_MULTIPLIERS.get(salary.period, 1)
    normalized = salary.model_copy()
    if salary.min is not None:
        normalized.normalized_min = round(salary.min * multiplier)
    if salary.max is not None:
        normalized.normalized_max = round(salary.max * multiplier)
    normalized.is_disclosed = salary.min is not None or salary.max is not None
    return normalized


def normalize_skills(skills: List[str]) -> Tuple[List[str], List[SkillCategory]]:
    """
    Keep only skills found in the taxonomy, grouped by category.

    Each skill lands in the first category that matches it.
    """
    kept: List[str] = []
    seen = set()
    categories: Dict[str, List[str]] = {}

    for skill in skills or []:
        cleaned = (skill or '').strip()
        lower_skill = cleaned.lower()
        if not lower_skill or lower_skill in seen:
            continue

        for category, patterns in _SKILL_MATCHERS:
            if any(p.search(lower_skill) for p in patterns):
                seen.add(lower_skill)
                kept.append(cleaned)
                categories.setdefault(category, []).append(cleaned)
                break

    return kept, [SkillCategory(category=c, skills=s) for c, s in categories.items()]


def clean_description(description: Optional[str], max_length: int = MAX_DESCRIPTION_LENGTH) -> str:
    """Strip tags, decode common entities, collapse whitespace, truncate."""
    if not description:
        return ''
    text = re.sub(r'<[^>]*>', ' ', description)
    for entity, char in HTML_ENTITIES:
        text = text.replace(entity, char)
    text = re.sub(r'\s+', ' ', text).strip()
    return text[:max_length]


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def calculate_job_hash(job: NormalizedJob) -> str:
    """
    Stable content id.

    Same (normalized title, company, normalized location, employment type)
    always gives the same id, so re-scraping is idempotent.
    """
    hash_input = f"{job.normalized_title}|{job.company}|{job.location.normalized}|{job.employment_type}"
    return hashlib.sha256(hash_input.encode('utf-8')).hexdigest()[:16]


class NormalizationPipeline:
    """Turns RawJobRecord into NormalizedJob. Holds no mutable state."""

    def __init__(self, max_description_length: int = MAX_DESCRIPTION_LENGTH):
        self.max_description_length = max_description_length

    def normalize(self, raw: RawJobRecord, target: TargetConfig, now: Optional[datetime] = None) -> NormalizedJob:
        """
        Normalize one raw record.

        Args:
            raw: Strategy output
            target: Target the record was scraped from (company identity, fallback URL)
            now: Timestamp used for scraped_at/updated_at (and posted_date when missing)

        Returns:
            NormalizedJob without id or source; the engine assigns both
        """
        now = now or datetime.now(timezone.utc)
        title = (raw.title or '').strip()
        if not title:
            raise ValueError("job record has no title")

        location = normalize_location(raw)
        description = clean_description(raw.description, self.max_description_length)
        work_type = detect_work_type(title, description, location.raw, location.is_remote)
        skills, skill_categories = normalize_skills(raw.skills)

        return NormalizedJob(
            title=title,
            normalized_title=normalize_title(title),
            company=target.name,
            company_id=target.id,
            location=location,
            description=description,
            requirements=[r.strip() for r in raw.requirements if r and r.strip()],
            responsibilities=[r.strip() for r in raw.responsibilities if r and r.strip()],
            skills=skills,
            skill_categories=skill_categories,
            work_type=work_type,
            employment_type=detect_employment_type(title, description, raw.employment_type),
            experience_level=detect_experience_level(title, description),
            salary=normalize_salary(raw.salary),
            external_url=raw.external_url or target.url,
            application_url=raw.application_url,
            external_id=raw.external_id,
            department=raw.department,
            team=raw.team,
            is_remote=work_type == 'remote' or location.is_remote,
            posted_date=_as_utc(raw.posted_date) or now,
            expires_at=_as_utc(raw.expires_at),
            scraped_at=now,
            updated_at=now,
        )
