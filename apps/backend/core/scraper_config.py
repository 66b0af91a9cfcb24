"""
Scraper configuration.

Defaults can be overridden through environment variables (a .env file is
loaded by the CLI entry point).
"""

import os
import logging
from dataclasses import dataclass, asdict
from typing import Dict

logger = logging.getLogger(__name__)


def _env_bool(name: str, default: bool) -> bool:
    return os.getenv(name, 'true' if default else 'false').lower() == 'true'


def _env_int(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)))


def _env_float(name: str, default: float) -> float:
    return float(os.getenv(name, str(default)))


@dataclass(frozen=True)
class ScraperConfig:
    """Engine limits and feature flags."""
    max_concurrent: int = 10
    batch_size: int = 5
    request_timeout: float = 30.0
    total_timeout: float = 120.0
    batch_pause: float = 1.0
    enable_ai: bool = True
    enable_browser: bool = False
    global_requests_per_minute: int = 60
    burst_size: int = 10
    sort_by_priority: bool = True

    @classmethod
    def from_env(cls, **overrides) -> 'ScraperConfig':
        values = dict(
            max_concurrent=_env_int('SCRAPER_MAX_CONCURRENT', cls.max_concurrent),
            batch_size=_env_int('SCRAPER_BATCH_SIZE', cls.batch_size),
            request_timeout=_env_float('SCRAPER_REQUEST_TIMEOUT', cls.request_timeout),
            total_timeout=_env_float('SCRAPER_TOTAL_TIMEOUT', cls.total_timeout),
            batch_pause=_env_float('SCRAPER_BATCH_PAUSE', cls.batch_pause),
            enable_ai=_env_bool('SCRAPER_ENABLE_AI', cls.enable_ai),
            enable_browser=_env_bool('SCRAPER_ENABLE_BROWSER', cls.enable_browser),
            global_requests_per_minute=_env_int('SCRAPER_GLOBAL_RPM', cls.global_requests_per_minute),
            burst_size=_env_int('SCRAPER_BURST_SIZE', cls.burst_size),
        )
        values.update(overrides)
        config = cls(**values)
        logger.info(
            f"ScraperConfig: batch={config.batch_size}, concurrent={config.max_concurrent}, "
            f"timeout={config.request_timeout}s, ai={config.enable_ai}, browser={config.enable_browser}"
        )
        return config

    def to_dict(self) -> Dict:
        return asdict(self)


@dataclass(frozen=True)
class DedupConfig:
    """
    Fuzzy deduplication knobs.

    The 0.85 threshold and 168h window are starting points, not tuned values.
    """
    fuzzy_threshold: float = 0.85
    time_window_hours: float = 168.0
    max_index_size: int = 10000

    @classmethod
    def from_env(cls, **overrides) -> 'DedupConfig':
        values = dict(
            fuzzy_threshold=_env_float('DEDUP_FUZZY_THRESHOLD', cls.fuzzy_threshold),
            time_window_hours=_env_float('DEDUP_TIME_WINDOW_HOURS', cls.time_window_hours),
            max_index_size=_env_int('DEDUP_MAX_INDEX_SIZE', cls.max_index_size),
        )
        values.update(overrides)
        return cls(**values)
