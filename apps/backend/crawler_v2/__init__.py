"""
Scraper engine v2 - multi-strategy career page scraping.

Strategy fallback per target, batched concurrency, cancellation and an
ingestion handoff for scheduled runs.
"""

from .orchestrator import ScraperEngine
from .ingestion import ScraperService, IngestionSink, JsonlSink

__all__ = ['ScraperEngine', 'ScraperService', 'IngestionSink', 'JsonlSink']
