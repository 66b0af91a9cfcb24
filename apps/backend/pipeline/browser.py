"""
Browser automation strategy using Playwright for JavaScript-heavy sites.

The most expensive tier, off unless enabled. The page is rendered in headless
chromium and the final DOM is handed to the HTML strategies' parsers.
"""

import logging
from typing import List, Optional, Sequence

from playwright.async_api import async_playwright, Error as PlaywrightError, TimeoutError as PlaywrightTimeoutError

from core.anti_detection import AntiDetection
from core.errors import ScrapeError, ErrorKind
from .base import ExtractionStrategy, FetchOptions, HtmlStrategy
from .models import StrategyKind, TargetConfig, RawJobRecord

logger = logging.getLogger(__name__)

BROWSER_ARGS = [
    '--no-sandbox',
    '--disable-setuid-sandbox',
    '--disable-dev-shm-usage',
    '--disable-gpu',
]

SETTLE_MS = 2000
SELECTOR_TIMEOUT_MS = 10000

SCROLL_TO_BOTTOM_JS = """
async () => {
  await new Promise((resolve) => {
    let total = 0;
    const timer = setInterval(() => {
      window.scrollBy(0, 400);
      total += 400;
      if (total >= document.body.scrollHeight) {
        clearInterval(timer);
        resolve();
      }
    }, 100);
  });
}
"""


class BrowserAutomationStrategy(ExtractionStrategy):
    """Render with headless chromium, then parse with the HTML strategies"""

    kind = StrategyKind.BROWSER_AUTOMATION

    def __init__(
        self,
        parsers: Sequence[HtmlStrategy],
        enabled: bool = False,
        anti_detection: Optional[AntiDetection] = None,
        timeout_ms: int = 30000,
    ):
        """
        Args:
            parsers: HTML strategies tried in order on the rendered DOM
            enabled: Browser rendering is off unless explicitly enabled
            anti_detection: Source of the viewport fingerprint
            timeout_ms: Navigation timeout
        """
        super().__init__()
        self.parsers = list(parsers)
        self.enabled = enabled
        self.anti_detection = anti_detection or AntiDetection()
        self.timeout_ms = timeout_ms

    async def extract(self, target: TargetConfig, options: FetchOptions) -> List[RawJobRecord]:
        if not self.enabled:
            raise ScrapeError(ErrorKind.CONFIGURATION, "Browser automation is disabled", strategy=self.name)

        try:
            html = await options.token.guard(self.render(target, options))
        except PlaywrightTimeoutError as e:
            raise ScrapeError(ErrorKind.TIMEOUT, f"Browser timeout for {target.url}: {e}", strategy=self.name)
        except PlaywrightError as e:
            raise ScrapeError(ErrorKind.NETWORK, f"Browser failed for {target.url}: {e}", strategy=self.name)

        return self.parse_rendered(html, target)

    def parse_rendered(self, html: str, target: TargetConfig) -> List[RawJobRecord]:
        """Run parsers in order; the first non-empty result is relabelled as browser output"""
        for parser in self.parsers:
            records = parser.parse(html, target)
            if records:
                logger.info(f"Browser scrape for {target.name}: {len(records)} jobs via {parser.name} parser")
                return [record.model_copy(update={'method': self.kind}) for record in records]
        logger.info(f"Browser scrape for {target.name} found no jobs")
        return []

    async def render(self, target: TargetConfig, options: FetchOptions) -> str:
        """
        Fetch the fully rendered DOM of the target's career page.

        Returns:
            Rendered HTML content
        """
        fingerprint = self.anti_detection.get_browser_fingerprint()
        headers = dict(options.headers)
        user_agent = headers.pop('User-Agent', None)

        async with async_playwright() as p:
            browser = await p.chromium.launch(headless=True, args=BROWSER_ARGS)
            try:
                context = await browser.new_context(
                    viewport={'width': fingerprint['screen']['width'], 'height': fingerprint['screen']['height']},
                    user_agent=user_agent,
                    locale=fingerprint['languages'][0],
                    timezone_id=fingerprint['timezone'],
                )
                page = await context.new_page()
                await page.set_extra_http_headers(headers)

                logger.info(f"Starting browser scrape for {target.name}")
                await page.goto(target.url, wait_until='networkidle', timeout=self.timeout_ms)

                wait_selector = target.selectors.job_container if target.selectors else None
                if wait_selector:
                    try:
                        await page.wait_for_selector(wait_selector, timeout=SELECTOR_TIMEOUT_MS)
                    except PlaywrightTimeoutError as e:
                        logger.warning(f"Selector {wait_selector} not found on {target.url}: {e}")
                else:
                    await page.wait_for_timeout(SETTLE_MS)

                if target.pagination.type == 'infinite_scroll':
                    for _ in range(target.pagination.max_pages):
                        await page.evaluate(SCROLL_TO_BOTTOM_JS)
                        await page.wait_for_timeout(500)

                return await page.content()
            finally:
                await browser.close()
