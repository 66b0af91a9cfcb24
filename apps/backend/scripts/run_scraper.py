"""
Run one scrape pass over a targets file.

Meant to be called by a periodic scheduler (cron, a serverless timer). Reads
target configurations from a JSON file, scrapes within the deadline, dedupes
and writes the unique jobs to a JSON-lines file.

Usage:
    python scripts/run_scraper.py --targets targets.json --output jobs.jsonl
"""

import os
import sys
import json
import asyncio
import logging
import argparse
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from dotenv import load_dotenv

from core.scraper_config import ScraperConfig, DedupConfig
from core.dedupe import DeduplicationEngine
from crawler_v2.orchestrator import ScraperEngine
from crawler_v2.ingestion import ScraperService, JsonlSink, DEFAULT_DEADLINE_SECONDS

logger = logging.getLogger(__name__)


def load_targets(path: str):
    with open(path, encoding='utf-8') as f:
        data = json.load(f)
    if isinstance(data, dict):
        data = data.get('targets', [])
    return data


async def main(args) -> int:
    overrides = {}
    if args.no_ai:
        overrides['enable_ai'] = False
    if args.browser:
        overrides['enable_browser'] = True

    config = ScraperConfig.from_env(**overrides)
    engine = ScraperEngine(config=config)
    service = ScraperService(
        engine=engine,
        dedup=DeduplicationEngine(DedupConfig.from_env()),
        sink=JsonlSink(args.output) if args.output else None,
    )

    targets = load_targets(args.targets)
    result = await service.run(targets, deadline_seconds=args.deadline)

    print("=" * 60)
    print(f"Companies scraped: {result.companies_scraped}/{result.companies_attempted}")
    print(f"Jobs found: {result.total_jobs_found} ({result.unique_jobs} unique, {result.duplicates} duplicates)")
    print(f"Jobs ingested: {result.jobs_ingested}")
    print(f"Duration: {result.duration_ms}ms")
    if result.errors:
        print(f"Errors ({len(result.errors)}):")
        for error in result.errors:
            print(f"  - {error}")
    print("=" * 60)
    return 0 if result.success else 1


if __name__ == '__main__':
    parser = argparse.ArgumentParser(description='Scrape career pages listed in a targets file')
    parser.add_argument('--targets', required=True, help='JSON file with a list of target configurations')
    parser.add_argument('--deadline', type=float, default=DEFAULT_DEADLINE_SECONDS, help='Run deadline in seconds')
    parser.add_argument('--output', help='Append unique jobs to this JSON-lines file')
    parser.add_argument('--no-ai', action='store_true', help='Disable AI extraction')
    parser.add_argument('--browser', action='store_true', help='Enable browser automation')
    parser.add_argument('--log-level', default=os.getenv('LOG_LEVEL', 'INFO'), help='Logging level')
    args = parser.parse_args()

    load_dotenv()
    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.INFO),
        format='%(asctime)s %(levelname)s %(name)s: %(message)s',
    )

    sys.exit(asyncio.run(main(args)))
