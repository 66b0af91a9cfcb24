"""
Browser-like request fingerprints and bot-block detection.
"""
import random
import logging
from typing import Dict, List, Optional, Mapping
from urllib.parse import urlparse

logger = logging.getLogger(__name__)

USER_AGENTS = [
    'Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36',
    'Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36',
    'Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36',
    'Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/119.0.0.0 Safari/537.36',
    'Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/119.0.0.0 Safari/537.36 Edg/119.0.0.0',
    'Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/17.1 Safari/605.1.15',
]

ACCEPT_HEADERS = [
    'text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,*/*;q=0.8',
    'text/html,application/xhtml+xml,application/xml;q=0.9,image/avif,image/webp,*/*;q=0.8',
    'text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8',
]

ACCEPT_LANGUAGES = [
    'en-US,en;q=0.9',
    'en-US,en;q=0.8',
    'en-GB,en;q=0.9,en-US;q=0.8',
]

SCREEN_RESOLUTIONS = [
    {'width': 1920, 'height': 1080},
    {'width': 2560, 'height': 1440},
    {'width': 1440, 'height': 900},
    {'width': 1680, 'height': 1050},
    {'width': 1366, 'height': 768},
]

# Headers set by CDN and anti-bot front ends on every response they serve
BOT_PROTECTION_HEADERS = ('x-protected-by', 'cf-ray')

# Statuses a protection front end answers with when it challenges a client
CHALLENGE_STATUSES = (403, 503)

# Body text of challenge and captcha interstitials
CHALLENGE_MARKERS = (
    'captcha',
    'unusual traffic',
    'please verify you are a human',
    'security check',
    'checking your browser',
    'attention required',
)

DELAY_MEAN_SECONDS = 3.5
DELAY_STDDEV_SECONDS = 1.0
DELAY_MIN_SECONDS = 1.0
DELAY_MAX_SECONDS = 10.0


class AntiDetection:
    """Rotates user agents and headers to look like an ordinary browser"""

    def __init__(
        self,
        proxies: Optional[List[Dict]] = None,
        referer_probability: float = 0.7,
        rng: Optional[random.Random] = None,
    ):
        """
        Args:
            proxies: Proxy dicts ({host, port, username?, password?}) used round-robin
            referer_probability: Chance of adding a search-engine Referer
            rng: Random source (seeded in tests)
        """
        self.proxies = proxies or []
        self.referer_probability = referer_probability
        self.rng = rng or random.Random()
        self._proxy_index = 0

    def get_headers(self, url: str) -> Dict[str, str]:
        """Randomized, browser-plausible request headers for `url`"""
        headers = {
            'User-Agent': self.rng.choice(USER_AGENTS),
            'Accept': self.rng.choice(ACCEPT_HEADERS),
            'Accept-Language': self.rng.choice(ACCEPT_LANGUAGES),
            'Accept-Encoding': 'gzip, deflate, br',
            'Connection': 'keep-alive',
            'Upgrade-Insecure-Requests': '1',
            'Sec-Fetch-Dest': 'document',
            'Sec-Fetch-Mode': 'navigate',
            'Sec-Fetch-Site': 'none',
            'Sec-Fetch-User': '?1',
            'Cache-Control': 'max-age=0',
            'DNT': '1',
        }

        if self.rng.random() < self.referer_probability:
            domain = urlparse(url).hostname
            if domain:
                headers['Referer'] = f"https://www.google.com/search?q={domain}+careers"

        return headers

    def get_random_delay(self) -> float:
        """Human-ish pause in seconds between requests to the same origin"""
        delay = self.rng.gauss(DELAY_MEAN_SECONDS, DELAY_STDDEV_SECONDS)
        return max(DELAY_MIN_SECONDS, min(DELAY_MAX_SECONDS, delay))

    def is_bot_detected(
        self,
        status_code: int,
        headers: Optional[Mapping[str, str]] = None,
        body: str = '',
    ) -> bool:
        """
        Check if a response looks like an anti-bot block.

        A CDN header alone is not a block: Cloudflare stamps cf-ray on every
        response it fronts, 404s included. It only counts together with a
        challenge status, a cf-mitigated header or a challenge page body.
        """
        if status_code in (403, 429):
            return True

        lowered = {k.lower(): v for k, v in (headers or {}).items()}
        if 'cf-mitigated' in lowered:
            return True
        if not any(h in lowered for h in BOT_PROTECTION_HEADERS):
            return False

        if status_code in CHALLENGE_STATUSES:
            return True
        text = body.lower()
        return any(marker in text for marker in CHALLENGE_MARKERS)

    def get_next_proxy(self) -> Optional[Dict]:
        """Next proxy in rotation, None when no proxies are configured"""
        if not self.proxies:
            return None
        proxy = self.proxies[self._proxy_index]
        self._proxy_index = (self._proxy_index + 1) % len(self.proxies)
        return proxy

    def get_browser_fingerprint(self) -> Dict:
        return {
            'screen': dict(self.rng.choice(SCREEN_RESOLUTIONS)),
            'color_depth': 24,
            'timezone': 'America/New_York',
            'languages': ['en-US', 'en'],
            'platform': 'MacIntel',
            'hardware_concurrency': 8,
            'device_memory': 8,
        }
