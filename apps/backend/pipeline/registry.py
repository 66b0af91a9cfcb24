"""
Strategy registry: lookup table from StrategyKind to strategy instance.
"""
import logging
from typing import List, Dict, Optional

from core.anti_detection import AntiDetection
from core.errors import ScrapeError, ErrorKind
from core.scraper_config import ScraperConfig
from .base import ExtractionStrategy
from .models import StrategyKind
from .ats_api import AtsApiStrategy
from .jsonld import JSONLDStrategy
from .data_island import DataIslandStrategy
from .heuristics import HtmlParsingStrategy
from .ai_fallback import AIExtractionStrategy
from .browser import BrowserAutomationStrategy

logger = logging.getLogger(__name__)


class StrategyRegistry:
    """Registry for extraction strategies"""

    def __init__(self):
        self._strategies: Dict[StrategyKind, ExtractionStrategy] = {}

    def register(self, strategy: ExtractionStrategy):
        """Register a strategy under its kind"""
        if strategy.kind in self._strategies:
            logger.warning(f"Strategy {strategy.name} already registered, replacing")
        self._strategies[strategy.kind] = strategy
        logger.debug(f"Registered strategy: {strategy.name} ({strategy.__class__.__name__})")

    def get(self, kind: StrategyKind) -> ExtractionStrategy:
        strategy = self._strategies.get(kind)
        if strategy is None:
            raise ScrapeError(ErrorKind.CONFIGURATION, f"No strategy registered for {StrategyKind(kind).value}")
        return strategy

    def __contains__(self, kind) -> bool:
        return kind in self._strategies

    def list_strategies(self) -> List[Dict]:
        """List all registered strategies"""
        return [
            {'kind': kind.value, 'class': strategy.__class__.__name__}
            for kind, strategy in self._strategies.items()
        ]


def build_default_registry(
    config: Optional[ScraperConfig] = None,
    anti_detection: Optional[AntiDetection] = None,
    ai_api_key: Optional[str] = None,
) -> StrategyRegistry:
    """
    Registry wired with all six strategies.

    Args:
        config: Feature flags for the AI and browser tiers
        anti_detection: Shared with the browser strategy for fingerprints
        ai_api_key: Overrides OPENROUTER_API_KEY

    Returns:
        Populated StrategyRegistry
    """
    config = config or ScraperConfig()
    json_ld = JSONLDStrategy()
    data_island = DataIslandStrategy()
    html_parsing = HtmlParsingStrategy()

    registry = StrategyRegistry()
    registry.register(AtsApiStrategy())
    registry.register(json_ld)
    registry.register(data_island)
    registry.register(html_parsing)
    registry.register(AIExtractionStrategy(enabled=config.enable_ai, api_key=ai_api_key))
    registry.register(BrowserAutomationStrategy(
        parsers=[json_ld, data_island, html_parsing],
        enabled=config.enable_browser,
        anti_detection=anti_detection,
        timeout_ms=int(config.request_timeout * 1000),
    ))
    return registry
