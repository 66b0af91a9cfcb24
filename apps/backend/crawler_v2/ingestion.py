"""
Ingestion handoff.

The scraper never writes to the job store itself. A run scrapes, dedupes,
converts jobs to IngestionRecord and hands them to an IngestionSink.
"""

import os
import time
import logging
from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Iterable, Union

from pydantic import BaseModel, Field
from tenacity import AsyncRetrying, stop_after_attempt, wait_exponential, retry_if_exception_type

from core.cancellation import CancellationToken
from core.dedupe import DeduplicationEngine
from pipeline.models import NormalizedJob, TargetConfig
from .orchestrator import ScraperEngine

logger = logging.getLogger(__name__)

DEFAULT_DEADLINE_SECONDS = 55.0
DELIVERY_ATTEMPTS = 3


class IngestionUnavailable(Exception):
    """The sink is temporarily unable to accept records; delivery is retried."""


class IngestionRecord(BaseModel):
    title: str
    company: str
    location: str
    description: str = ''
    requirements: List[str] = Field(default_factory=list)
    skills: List[str] = Field(default_factory=list)
    work_type: str
    salary_min: Optional[int] = None
    salary_max: Optional[int] = None
    source: str
    external_id: Optional[str] = None
    external_url: str
    posted_date: str


class IngestionStats(BaseModel):
    inserted: int = 0
    duplicates: int = 0
    errors: int = 0


class ScrapeRunResult(BaseModel):
    success: bool
    companies_attempted: int = 0
    companies_scraped: int = 0
    total_jobs_found: int = 0
    unique_jobs: int = 0
    duplicates: int = 0
    jobs_ingested: int = 0
    errors: List[str] = Field(default_factory=list)
    duration_ms: int = 0
    metrics: Dict = Field(default_factory=dict)


def to_ingestion_record(job: NormalizedJob) -> IngestionRecord:
    """Flatten a normalized job into the store's ingestion shape"""
    if job.source is not None:
        source = job.source.ats.value if job.source.ats else job.source.type
    else:
        source = 'career_page'
    return IngestionRecord(
        title=job.title,
        company=job.company,
        location=job.location.raw,
        description=job.description,
        requirements=job.requirements,
        skills=job.skills,
        work_type=job.work_type,
        salary_min=job.salary.normalized_min,
        salary_max=job.salary.normalized_max,
        source=source,
        external_id=job.external_id or job.id,
        external_url=job.external_url,
        posted_date=job.posted_date.isoformat(),
    )


class IngestionSink(ABC):
    """Receiver of a run's unique jobs"""

    @abstractmethod
    async def ingest(self, records: List[IngestionRecord]) -> IngestionStats:
        """
        Store records.

        Raises:
            IngestionUnavailable: transient failure, safe to retry the whole batch
        """


class JsonlSink(IngestionSink):
    """Appends records to a JSON-lines file, one record per line"""

    def __init__(self, path: str):
        self.path = path

    async def ingest(self, records: List[IngestionRecord]) -> IngestionStats:
        directory = os.path.dirname(self.path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        try:
            with open(self.path, 'a', encoding='utf-8') as f:
                for record in records:
                    f.write(record.model_dump_json() + '\n')
        except OSError as e:
            raise IngestionUnavailable(f"Cannot write {self.path}: {e}") from e
        logger.info(f"Wrote {len(records)} records to {self.path}")
        return IngestionStats(inserted=len(records))


class ScraperService:
    """One scheduled run: scrape -> dedupe -> hand off"""

    def __init__(
        self,
        engine: Optional[ScraperEngine] = None,
        dedup: Optional[DeduplicationEngine] = None,
        sink: Optional[IngestionSink] = None,
        retry_backoff: float = 1.0,
    ):
        self.engine = engine or ScraperEngine()
        self.dedup = dedup or DeduplicationEngine()
        self.sink = sink
        self.retry_backoff = retry_backoff

    async def _deliver(self, records: List[IngestionRecord]) -> IngestionStats:
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(DELIVERY_ATTEMPTS),
            wait=wait_exponential(multiplier=self.retry_backoff, max=10),
            retry=retry_if_exception_type(IngestionUnavailable),
            reraise=True,
        ):
            with attempt:
                if attempt.retry_state.attempt_number > 1:
                    logger.warning(f"Retrying ingestion (attempt {attempt.retry_state.attempt_number})")
                return await self.sink.ingest(records)

    async def run(
        self,
        targets: Iterable[Union[TargetConfig, Dict]],
        deadline_seconds: float = DEFAULT_DEADLINE_SECONDS,
    ) -> ScrapeRunResult:
        """
        Scrape all targets within the deadline and ingest the unique jobs.

        Args:
            targets: Target configurations
            deadline_seconds: Wall-clock limit for the scraping phase

        Returns:
            ScrapeRunResult with counts, errors and a metrics snapshot
        """
        start_time = time.time()
        targets = list(targets)
        token = CancellationToken.with_deadline(deadline_seconds)

        logger.info(f"Starting scrape run for {len(targets)} targets (deadline {deadline_seconds}s)")
        outcomes = await self.engine.scrape_all(targets, token)

        all_jobs = [job for outcome in outcomes for job in outcome.jobs]
        dedup_result = self.dedup.deduplicate(all_jobs)
        errors = [f"{o.target_name}: {o.error.kind}: {o.error.message}" for o in outcomes if o.error is not None]
        skipped = len(targets) - len(outcomes)
        if skipped > 0:
            errors.append(f"Deadline reached before {skipped} targets were started")

        delivered = True
        stats = IngestionStats()
        records = [to_ingestion_record(job) for job in dedup_result.unique]
        if records and self.sink is not None:
            try:
                stats = await self._deliver(records)
            except IngestionUnavailable as e:
                logger.error(f"Ingestion failed after {DELIVERY_ATTEMPTS} attempts: {e}")
                errors.append(f"ingestion: {e}")
                delivered = False

        companies_scraped = sum(1 for o in outcomes if o.success)
        result = ScrapeRunResult(
            success=delivered and (companies_scraped > 0 or not targets),
            companies_attempted=len(outcomes),
            companies_scraped=companies_scraped,
            total_jobs_found=len(all_jobs),
            unique_jobs=len(dedup_result.unique),
            duplicates=dedup_result.duplicate_count,
            jobs_ingested=stats.inserted,
            errors=errors,
            duration_ms=int((time.time() - start_time) * 1000),
            metrics=self.engine.get_metrics(),
        )
        logger.info(
            f"Scrape run finished: {result.companies_scraped}/{result.companies_attempted} companies, "
            f"{result.unique_jobs} unique jobs, {result.duplicates} duplicates, {result.jobs_ingested} ingested"
        )
        return result
