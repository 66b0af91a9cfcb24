"""
Data model for the scraper pipeline.

TargetConfig -> (strategy) -> RawJobRecord -> (normalize) -> NormalizedJob
"""

from enum import Enum
from datetime import datetime
from typing import Optional, List, Literal
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field, field_validator


class StrategyKind(str, Enum):
    API = "api"
    JSON_LD = "json_ld"
    DATA_ISLAND = "data_island"
    HTML_PARSING = "html_parsing"
    AI_EXTRACTION = "ai_extraction"
    BROWSER_AUTOMATION = "browser_automation"


class AtsType(str, Enum):
    GREENHOUSE = "greenhouse"
    LEVER = "lever"
    ASHBY = "ashby"
    SMARTRECRUITERS = "smartrecruiters"


SalaryPeriod = Literal['hourly', 'daily', 'weekly', 'monthly', 'yearly']
WorkType = Literal['remote', 'hybrid', 'onsite']
EmploymentType = Literal['full-time', 'part-time', 'contract', 'internship']
ExperienceLevel = Literal['entry', 'mid', 'senior', 'staff', 'executive']


# ---------------------------------------------------------------------------
# Target configuration
# ---------------------------------------------------------------------------

class AtsBinding(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    type: AtsType
    board_id: str = Field(..., min_length=1, alias='boardId', description="Board/company slug at the ATS")


class SelectorHints(BaseModel):
    model_config = ConfigDict(frozen=True)

    job_container: Optional[str] = None
    title: Optional[str] = None
    location: Optional[str] = None
    description: Optional[str] = None
    external_url: Optional[str] = None
    posted_date: Optional[str] = None


class PaginationPolicy(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal['url_param', 'cursor', 'infinite_scroll', 'none'] = 'none'
    param: str = 'page'
    max_pages: int = Field(1, ge=1, le=50)


class TargetConfig(BaseModel):
    """One employer career page to scrape. Immutable per invocation."""
    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    url: str = Field(..., description="Career page entry URL")
    ats: Optional[AtsBinding] = None
    strategies: List[StrategyKind] = Field(..., min_length=1, description="Strategies to try, in order")
    selectors: Optional[SelectorHints] = None
    pagination: PaginationPolicy = Field(default_factory=PaginationPolicy)
    priority: Literal['high', 'medium', 'low'] = 'medium'
    is_active: bool = True

    @field_validator('url')
    @classmethod
    def _check_url(cls, value: str) -> str:
        parsed = urlparse(value)
        if parsed.scheme not in ('http', 'https') or not parsed.hostname:
            raise ValueError(f"career page url must be absolute http(s): {value!r}")
        return value

    @property
    def domain(self) -> str:
        return (urlparse(self.url).hostname or '').lower()


# ---------------------------------------------------------------------------
# Job records
# ---------------------------------------------------------------------------

class SalaryInfo(BaseModel):
    min: Optional[float] = None
    max: Optional[float] = None
    currency: str = 'USD'
    period: SalaryPeriod = 'yearly'
    normalized_min: Optional[int] = None
    normalized_max: Optional[int] = None
    is_disclosed: bool = False


class RawJobRecord(BaseModel):
    """What a strategy hands to normalization."""
    title: str
    location_raw: str = 'Remote'
    city: Optional[str] = None
    state: Optional[str] = None
    country: Optional[str] = None
    is_remote: Optional[bool] = None
    description: str = ''
    requirements: List[str] = Field(default_factory=list)
    responsibilities: List[str] = Field(default_factory=list)
    skills: List[str] = Field(default_factory=list)
    employment_type: Optional[str] = None
    salary: Optional[SalaryInfo] = None
    department: Optional[str] = None
    team: Optional[str] = None
    external_url: Optional[str] = None
    application_url: Optional[str] = None
    external_id: Optional[str] = None
    posted_date: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    method: StrategyKind
    ats: Optional[AtsType] = None


class JobLocation(BaseModel):
    raw: str
    city: Optional[str] = None
    state: Optional[str] = None
    country: str = ''
    country_code: str = ''
    is_remote: bool = False
    normalized: str = ''


class SkillCategory(BaseModel):
    category: str
    skills: List[str]


class JobSource(BaseModel):
    type: Literal['ats_api', 'career_page']
    company: str
    url: str
    ats: Optional[AtsType] = None
    scrape_method: StrategyKind


class NormalizedJob(BaseModel):
    id: str = ''
    title: str
    normalized_title: str
    company: str
    company_id: Optional[str] = None
    location: JobLocation
    description: str = ''
    requirements: List[str] = Field(default_factory=list)
    responsibilities: List[str] = Field(default_factory=list)
    skills: List[str] = Field(default_factory=list)
    skill_categories: List[SkillCategory] = Field(default_factory=list)
    work_type: WorkType = 'hybrid'
    employment_type: EmploymentType = 'full-time'
    experience_level: ExperienceLevel = 'mid'
    salary: SalaryInfo = Field(default_factory=SalaryInfo)
    external_url: str = ''
    application_url: Optional[str] = None
    external_id: Optional[str] = None
    department: Optional[str] = None
    team: Optional[str] = None
    source: Optional[JobSource] = None
    is_remote: bool = False
    posted_date: datetime
    expires_at: Optional[datetime] = None
    scraped_at: datetime
    updated_at: datetime


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------

DuplicateReason = Literal['exact_match', 'url_match', 'fuzzy_match']


class DuplicateGroup(BaseModel):
    """Duplicates folded into one canonical; scores and reasons are per duplicate"""
    canonical: NormalizedJob
    duplicates: List[NormalizedJob] = Field(default_factory=list)
    confidence: float = Field(..., description="Lowest score in the group")
    scores: List[float] = Field(default_factory=list)
    reasons: List[DuplicateReason] = Field(default_factory=list)
    reason: DuplicateReason = Field(..., description="Weakest match reason in the group")


class ErrorInfo(BaseModel):
    kind: str
    message: str
    retryable: bool
    status_code: Optional[int] = None
    strategy: Optional[str] = None
    timestamp: datetime


class StrategyAttempt(BaseModel):
    strategy: StrategyKind
    job_count: int = 0
    duration_ms: int = 0
    error: Optional[ErrorInfo] = None
    skipped: bool = False


class ScrapeOutcome(BaseModel):
    target_id: str
    target_name: str
    success: bool
    jobs: List[NormalizedJob] = Field(default_factory=list)
    method: Optional[StrategyKind] = None
    error: Optional[ErrorInfo] = None
    duration_ms: int = 0
    started_at: datetime
    attempts: List[StrategyAttempt] = Field(default_factory=list)
    requests_made: int = 0
    rate_limited: bool = False
    cancelled: bool = False
