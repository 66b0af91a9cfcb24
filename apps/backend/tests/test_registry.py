"""
Tests for the strategy registry and the browser tier's non-rendering paths.
"""

import json

import pytest

from core.cancellation import CancellationToken
from core.errors import ScrapeError, ErrorKind
from core.net import HTTPClient
from core.scraper_config import ScraperConfig
from pipeline.base import FetchOptions
from pipeline.browser import BrowserAutomationStrategy
from pipeline.data_island import DataIslandStrategy
from pipeline.heuristics import HtmlParsingStrategy
from pipeline.jsonld import JSONLDStrategy
from pipeline.models import StrategyKind
from pipeline.registry import StrategyRegistry, build_default_registry


def options() -> FetchOptions:
    return FetchOptions(http=HTTPClient(), token=CancellationToken())


class TestRegistry:
    def test_default_registry_has_every_tier(self):
        registry = build_default_registry(ScraperConfig(enable_ai=False))
        for kind in StrategyKind:
            assert kind in registry
        assert len(registry.list_strategies()) == 6

    def test_missing_strategy(self):
        with pytest.raises(ScrapeError) as exc_info:
            StrategyRegistry().get(StrategyKind.API)
        assert exc_info.value.kind == ErrorKind.CONFIGURATION

    def test_register_replaces(self):
        registry = StrategyRegistry()
        first, second = JSONLDStrategy(), JSONLDStrategy()
        registry.register(first)
        registry.register(second)
        assert registry.get(StrategyKind.JSON_LD) is second

    @pytest.mark.asyncio
    async def test_feature_flags_respected(self, target):
        registry = build_default_registry(ScraperConfig(enable_ai=False, enable_browser=False), ai_api_key='k')
        for kind in (StrategyKind.AI_EXTRACTION, StrategyKind.BROWSER_AUTOMATION):
            with pytest.raises(ScrapeError) as exc_info:
                await registry.get(kind).extract(target, options())
            assert exc_info.value.kind == ErrorKind.CONFIGURATION


class TestBrowserParsing:
    """The rendered DOM goes through the HTML parsers in order."""

    def strategy(self) -> BrowserAutomationStrategy:
        return BrowserAutomationStrategy(
            parsers=[JSONLDStrategy(), DataIslandStrategy(), HtmlParsingStrategy()],
            enabled=True,
        )

    def test_first_parser_with_results_wins(self, target):
        state = {"jobs": [{"title": "Site Reliability Engineer", "location": "Remote"}]}
        html = f"<div id='app'></div><script>window.__APP_STATE__ = {json.dumps(state)};</script>"
        records = self.strategy().parse_rendered(html, target)

        assert [r.title for r in records] == ["Site Reliability Engineer"]
        assert records[0].method == StrategyKind.BROWSER_AUTOMATION

    def test_nothing_found(self, target):
        assert self.strategy().parse_rendered("<html><body>Loading</body></html>", target) == []
