"""
Monitoring hooks for scrape runs.

Keeps an in-memory window of recent outcomes for the metrics snapshot and,
optionally, mirrors them into Prometheus collectors on a private registry.
"""

import logging
from collections import defaultdict, deque, Counter as TallyCounter
from datetime import datetime, timezone
from typing import Dict, Optional

from prometheus_client import CollectorRegistry, Counter, Histogram

from .models import ScrapeOutcome, StrategyAttempt

logger = logging.getLogger(__name__)

OUTCOME_WINDOW = 100
TOP_SOURCES = 10


class MetricsCollector:
    """Collects scrape metrics."""

    def __init__(self, enable_prometheus: bool = False, registry: Optional[CollectorRegistry] = None,
                 window: int = OUTCOME_WINDOW):
        self.enable_prometheus = enable_prometheus
        self.counters = defaultdict(int)
        self.outcomes = deque(maxlen=window)
        self.active_targets = 0
        self.registry = None

        if enable_prometheus:
            self.registry = registry or CollectorRegistry()
            self.prom_targets = Counter(
                'scraper_targets_total',
                'Scraped targets by result',
                ['status'],
                registry=self.registry,
            )
            self.prom_jobs = Counter(
                'scraper_jobs_total',
                'Jobs extracted by strategy',
                ['strategy'],
                registry=self.registry,
            )
            self.prom_errors = Counter(
                'scraper_errors_total',
                'Strategy errors by kind',
                ['kind', 'strategy'],
                registry=self.registry,
            )
            self.prom_duration = Histogram(
                'scraper_target_duration_seconds',
                'Wall time to scrape one target',
                registry=self.registry,
            )

    def target_started(self):
        self.active_targets += 1

    def target_finished(self):
        self.active_targets = max(0, self.active_targets - 1)

    def record_attempt(self, attempt: StrategyAttempt):
        """Record a single strategy attempt."""
        if attempt.skipped:
            self.counters['attempt:skipped'] += 1
            return
        status = 'failure' if attempt.error else 'success'
        self.counters[f"attempt:{attempt.strategy.value}:{status}"] += 1
        if attempt.error and self.enable_prometheus:
            self.prom_errors.labels(kind=attempt.error.kind, strategy=attempt.strategy.value).inc()

    def record_outcome(self, outcome: ScrapeOutcome):
        """Record a finished target."""
        self.outcomes.append(outcome)
        status = 'success' if outcome.success else 'failure'
        self.counters[f"target:{status}"] += 1
        self.counters['jobs'] += len(outcome.jobs)

        if self.enable_prometheus:
            self.prom_targets.labels(status=status).inc()
            self.prom_duration.observe(outcome.duration_ms / 1000.0)
            if outcome.method is not None:
                self.prom_jobs.labels(strategy=outcome.method.value).inc(len(outcome.jobs))

    def snapshot(self) -> Dict:
        """
        Aggregate view over the most recent outcomes.

        Returns:
            Dict with timestamp, total_jobs_scraped, success_rate,
            average_latency_ms, errors_by_type, top_sources,
            companies_scraped and active_targets
        """
        outcomes = list(self.outcomes)
        total = len(outcomes)
        successes = sum(1 for o in outcomes if o.success)

        errors_by_type = TallyCounter()
        sources = TallyCounter()
        for outcome in outcomes:
            if outcome.error is not None:
                errors_by_type[outcome.error.kind] += 1
            if outcome.success:
                sources[outcome.target_name] += len(outcome.jobs)

        return {
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'total_jobs_scraped': sum(len(o.jobs) for o in outcomes),
            'success_rate': successes / total if total else 0.0,
            'average_latency_ms': sum(o.duration_ms for o in outcomes) / total if total else 0.0,
            'errors_by_type': dict(errors_by_type),
            'top_sources': [{'source': name, 'count': count} for name, count in sources.most_common(TOP_SOURCES)],
            'companies_scraped': successes,
            'active_targets': self.active_targets,
        }

    def get_stats(self) -> Dict:
        """Get raw counters."""
        return {
            'counters': dict(self.counters),
            'window_size': len(self.outcomes),
            'active_targets': self.active_targets,
        }

    def reset(self):
        self.counters.clear()
        self.outcomes.clear()
        self.active_targets = 0
