"""
Scraper engine - coordinates scraping of multiple career pages.

For each target the configured strategies are tried in order until one
returns jobs. Targets run in batches with bounded concurrency, and every
suspending call is bounded by a CancellationToken.
"""

import time
import asyncio
import logging
from datetime import datetime, timezone
from typing import Dict, List, Optional, Iterable, Tuple, Union

from pydantic import ValidationError

from core.anti_detection import AntiDetection
from core.cancellation import CancellationToken
from core.domain_limits import RateLimiter
from core.errors import ScrapeError, ErrorKind, classify_error
from core.net import HTTPClient
from core.normalize import NormalizationPipeline, calculate_job_hash
from core.scraper_config import ScraperConfig
from pipeline.base import FetchOptions
from pipeline.models import (
    StrategyKind, TargetConfig, RawJobRecord, NormalizedJob, JobSource,
    ErrorInfo, StrategyAttempt, ScrapeOutcome,
)
from pipeline.monitoring import MetricsCollector
from pipeline.registry import StrategyRegistry, build_default_registry

logger = logging.getLogger(__name__)

PRIORITY_ORDER = {'high': 0, 'medium': 1, 'low': 2}


def _elapsed_ms(start_time: float) -> int:
    return int((time.time() - start_time) * 1000)


def _priority_rank(entry) -> int:
    priority = entry.priority if isinstance(entry, TargetConfig) else (
        entry.get('priority') if isinstance(entry, dict) else None)
    if not isinstance(priority, str):
        priority = 'medium'
    return PRIORITY_ORDER.get(priority, PRIORITY_ORDER['medium'])


def _entry_identity(entry, index: int) -> Tuple[str, str]:
    if isinstance(entry, TargetConfig):
        return entry.id, entry.name
    raw = entry if isinstance(entry, dict) else {}
    target_id = str(raw.get('id') or f"target-{index}")
    return target_id, str(raw.get('name') or target_id)


class ScraperEngine:
    """
    Multi-strategy scraper:
    1. Picks strategies per target in configured order
    2. Rate limits and disguises every attempt
    3. Normalizes, hashes and tags the winning strategy's records
    """

    def __init__(
        self,
        config: Optional[ScraperConfig] = None,
        rate_limiter: Optional[RateLimiter] = None,
        anti_detection: Optional[AntiDetection] = None,
        normalizer: Optional[NormalizationPipeline] = None,
        registry: Optional[StrategyRegistry] = None,
        metrics: Optional[MetricsCollector] = None,
        http: Optional[HTTPClient] = None,
    ):
        self.config = config or ScraperConfig()
        self.rate_limiter = rate_limiter or RateLimiter(
            requests_per_minute=self.config.global_requests_per_minute,
            burst_size=self.config.burst_size,
        )
        self.anti_detection = anti_detection or AntiDetection()
        self.normalizer = normalizer or NormalizationPipeline()
        self.registry = registry or build_default_registry(self.config, anti_detection=self.anti_detection)
        self.metrics = metrics or MetricsCollector()
        self.http = http or HTTPClient(anti_detection=self.anti_detection, timeout=self.config.request_timeout)

        # target id -> token of the in-flight scrape
        self._active: Dict[str, CancellationToken] = {}
        self._completed = 0
        self._failed = 0
        self._total_processing_ms = 0

    async def scrape_target(self, target: TargetConfig, token: Optional[CancellationToken] = None) -> ScrapeOutcome:
        """
        Scrape a single target using its strategies in order.

        Args:
            target: Target configuration
            token: Caller's cancellation token (run deadline)

        Returns:
            ScrapeOutcome; failures are reported in the outcome, never raised
        """
        started_at = datetime.now(timezone.utc)
        start_time = time.time()

        if not target.is_active:
            error = ScrapeError(ErrorKind.CONFIGURATION, f"Target {target.id} is inactive")
            outcome = ScrapeOutcome(
                target_id=target.id,
                target_name=target.name,
                success=False,
                error=ErrorInfo(**error.to_dict()),
                started_at=started_at,
            )
            self._record(outcome)
            return outcome

        if token is not None:
            target_token = token.with_timeout(self.config.total_timeout)
        else:
            target_token = CancellationToken.with_deadline(self.config.total_timeout)
        self._active[target.id] = target_token
        self.metrics.target_started()
        http = self.http.fork()

        attempts: List[StrategyAttempt] = []
        last_error: Optional[ScrapeError] = None
        records: List[RawJobRecord] = []
        method: Optional[StrategyKind] = None
        cancelled = False

        logger.info(f"Starting scrape for {target.name}", extra={'context': {'target': target.id}})

        try:
            for kind in target.strategies:
                if target_token.cancelled:
                    cancelled = True
                    last_error = ScrapeError(ErrorKind.TIMEOUT, target_token.cancel_message(), strategy=kind.value)
                    attempts.append(StrategyAttempt(strategy=kind, skipped=True))
                    break

                attempt_start = time.time()
                try:
                    strategy = self.registry.get(kind)
                    await self.rate_limiter.acquire(target.domain, target_token)
                    options = FetchOptions(
                        http=http,
                        token=target_token.with_timeout(self.config.request_timeout),
                        headers=self.anti_detection.get_headers(target.url),
                        anti_detection=self.anti_detection,
                        rate_limiter=self.rate_limiter,
                    )
                    found = await strategy.extract(target, options)
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    error = classify_error(e, strategy=kind.value)
                    if error.kind == ErrorKind.UNKNOWN:
                        logger.error(f"Unexpected error in {kind.value} for {target.name}: {e}", exc_info=True)
                    else:
                        logger.warning(
                            f"Strategy {kind.value} failed for {target.name}: {error.kind.value}: {error.message}",
                            extra={'context': {'target': target.id, 'strategy': kind.value, 'kind': error.kind.value}},
                        )
                    last_error = error
                    attempt = StrategyAttempt(
                        strategy=kind,
                        duration_ms=_elapsed_ms(attempt_start),
                        error=ErrorInfo(**error.to_dict()),
                    )
                    attempts.append(attempt)
                    self.metrics.record_attempt(attempt)

                    if target_token.cancelled:
                        cancelled = True
                        break
                    if error.abandons_target:
                        logger.warning(f"Abandoning {target.name} after {error.kind.value} on {kind.value}")
                        break
                    continue

                attempt = StrategyAttempt(strategy=kind, job_count=len(found), duration_ms=_elapsed_ms(attempt_start))
                attempts.append(attempt)
                self.metrics.record_attempt(attempt)

                if found:
                    records = found
                    method = kind
                    logger.info(
                        f"Successfully scraped {target.name} using {kind.value}",
                        extra={'context': {'target': target.id, 'job_count': len(found), 'method': kind.value}},
                    )
                    break
                logger.info(f"Strategy {kind.value} found no jobs for {target.name}, trying next")

            jobs = self._process_records(records, target, method) if method else []
            if method and not jobs:
                last_error = ScrapeError(ErrorKind.PARSE, f"All {len(records)} records from {method.value} failed normalization",
                                         strategy=method.value)

            success = bool(jobs)
            outcome = ScrapeOutcome(
                target_id=target.id,
                target_name=target.name,
                success=success,
                jobs=jobs,
                method=method if success else None,
                error=None if success or last_error is None else ErrorInfo(**last_error.to_dict()),
                duration_ms=_elapsed_ms(start_time),
                started_at=started_at,
                attempts=attempts,
                requests_made=http.requests_made,
                rate_limited=any(a.error is not None and a.error.kind == ErrorKind.RATE_LIMIT.value for a in attempts),
                cancelled=cancelled,
            )
        finally:
            self._active.pop(target.id, None)
            self.http.absorb(http)
            self.metrics.target_finished()

        self._record(outcome)
        return outcome

    def _process_records(self, records: List[RawJobRecord], target: TargetConfig,
                         method: StrategyKind) -> List[NormalizedJob]:
        """Normalize, hash and tag records; bad records are dropped"""
        now = datetime.now(timezone.utc)
        jobs = []
        for raw in records:
            try:
                job = self.normalizer.normalize(raw, target, now=now)
            except ValueError as e:
                logger.warning(f"Failed to process job from {target.name}: {e}")
                continue
            job.id = calculate_job_hash(job)
            job.source = JobSource(
                type='ats_api' if method == StrategyKind.API else 'career_page',
                company=target.name,
                url=target.url,
                ats=raw.ats or (target.ats.type if target.ats else None),
                scrape_method=method,
            )
            jobs.append(job)
        return jobs

    def _record(self, outcome: ScrapeOutcome):
        self.metrics.record_outcome(outcome)
        self._total_processing_ms += outcome.duration_ms
        if outcome.success:
            self._completed += 1
        else:
            self._failed += 1

    def _failure_outcome(self, target_id: str, target_name: str, error: BaseException) -> ScrapeOutcome:
        classified = error if isinstance(error, ScrapeError) else classify_error(error)
        outcome = ScrapeOutcome(
            target_id=target_id,
            target_name=target_name,
            success=False,
            error=ErrorInfo(**classified.to_dict()),
            started_at=datetime.now(timezone.utc),
            cancelled=isinstance(error, asyncio.CancelledError),
        )
        self._record(outcome)
        return outcome

    def _invalid_target_outcome(self, entry, index: int, error: ValidationError) -> ScrapeOutcome:
        target_id, target_name = _entry_identity(entry, index)
        problems = "; ".join(
            f"{'.'.join(str(p) for p in e['loc']) or 'target'}: {e['msg']}" for e in error.errors()
        )
        logger.warning(f"Invalid target config {target_id}: {problems}")
        return self._failure_outcome(
            target_id, target_name,
            ScrapeError(ErrorKind.CONFIGURATION, f"Invalid target config: {problems}"),
        )

    async def _scrape_limited(self, entry: Union[TargetConfig, Dict], index: int,
                              token: Optional[CancellationToken], semaphore: asyncio.Semaphore) -> ScrapeOutcome:
        if isinstance(entry, TargetConfig):
            target = entry
        else:
            try:
                target = TargetConfig.model_validate(entry)
            except ValidationError as e:
                return self._invalid_target_outcome(entry, index, e)
        async with semaphore:
            return await self.scrape_target(target, token)

    async def scrape_all(
        self,
        targets: Iterable[Union[TargetConfig, Dict]],
        token: Optional[CancellationToken] = None,
    ) -> List[ScrapeOutcome]:
        """
        Scrape many targets in batches.

        Args:
            targets: TargetConfig objects or plain dicts; a malformed dict
                becomes a configuration failure outcome for that target only
            token: Run-level cancellation token; no new batch starts once it trips

        Returns:
            One outcome per target that was started
        """
        entries = list(enumerate(targets))
        if self.config.sort_by_priority:
            entries.sort(key=lambda item: _priority_rank(item[1]))

        semaphore = asyncio.Semaphore(self.config.max_concurrent)
        batch_size = max(1, self.config.batch_size)
        outcomes: List[ScrapeOutcome] = []

        for i in range(0, len(entries), batch_size):
            if token is not None and token.cancelled:
                logger.warning(f"Run cancelled, skipping {len(entries) - i} remaining targets")
                break

            batch = entries[i:i + batch_size]
            logger.info(f"Processing batch {i // batch_size + 1} ({len(batch)} of {len(entries)} targets)")

            results = await asyncio.gather(
                *(self._scrape_limited(entry, index, token, semaphore) for index, entry in batch),
                return_exceptions=True,
            )
            for (index, entry), result in zip(batch, results):
                if isinstance(result, BaseException):
                    target_id, target_name = _entry_identity(entry, index)
                    logger.error(f"Batch scrape failed for {target_name}: {result!r}")
                    outcomes.append(self._failure_outcome(target_id, target_name, result))
                else:
                    outcomes.append(result)

            if i + batch_size < len(entries) and self.config.batch_pause > 0:
                try:
                    if token is not None:
                        await token.sleep(self.config.batch_pause)
                    else:
                        await asyncio.sleep(self.config.batch_pause)
                except ScrapeError:
                    logger.warning(f"Run cancelled during batch pause, skipping {len(entries) - i - batch_size} targets")
                    break

        return outcomes


    def cancel_target(self, target_id: str) -> bool:
        """Cancel an in-flight scrape; False when the target is not running"""
        token = self._active.get(target_id)
        if token is None:
            return False
        token.cancel(f"target {target_id} cancelled")
        logger.info(f"Cancelled scrape for {target_id}")
        return True

    def get_metrics(self) -> Dict:
        return self.metrics.snapshot()

    def get_queue_stats(self) -> Dict:
        finished = self._completed + self._failed
        return {
            'running': len(self._active),
            'completed': self._completed,
            'failed': self._failed,
            'average_processing_time_ms': self._total_processing_ms / finished if finished else 0.0,
        }
