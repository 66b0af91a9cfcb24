"""
Per-domain and global rate limiting using the token bucket algorithm
"""
import time
import asyncio
import logging
from typing import Dict, Optional, Callable, Awaitable

from core.cancellation import CancellationToken

logger = logging.getLogger(__name__)


class TokenBucket:
    """Simple token bucket for rate limiting"""

    def __init__(self, capacity: float, refill_rate: float, clock: Callable[[], float] = time.monotonic):
        """
        Args:
            capacity: Initial tokens and max capacity (burst size)
            refill_rate: Tokens added per second
            clock: Monotonic time source
        """
        self.capacity = float(capacity)
        self.tokens = float(capacity)
        self.refill_rate = refill_rate
        self._clock = clock
        self.last_refill = clock()

    def _projected(self, now: float) -> float:
        elapsed = max(0.0, now - self.last_refill)
        return min(self.capacity, self.tokens + elapsed * self.refill_rate)

    def _refill(self):
        """Refill tokens based on time elapsed"""
        now = self._clock()
        self.tokens = self._projected(now)
        self.last_refill = now

    def consume(self, tokens: float = 1.0) -> bool:
        """Try to consume tokens. Returns True if successful."""
        self._refill()
        if self.tokens >= tokens:
            self.tokens = max(0.0, self.tokens - tokens)
            return True
        return False

    def wait_time(self, tokens: float = 1.0) -> float:
        """Calculate wait time needed to consume tokens"""
        self._refill()
        if self.tokens >= tokens:
            return 0.0
        needed = tokens - self.tokens
        return needed / self.refill_rate

    def peek(self) -> float:
        """Current token count without mutating the bucket"""
        return self._projected(self._clock())


class RateLimiter:
    """
    Global plus per-domain token buckets.

    A request is admitted only when both its domain bucket and the global
    bucket hold a whole token; both are then decremented together.
    """

    def __init__(
        self,
        requests_per_minute: int = 60,
        burst_size: int = 10,
        domain_requests_per_minute: Optional[int] = None,
        domain_burst_size: Optional[int] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ):
        """
        Args:
            requests_per_minute: Global refill rate
            burst_size: Global bucket capacity
            domain_requests_per_minute: Per-domain refill rate (defaults to global)
            domain_burst_size: Per-domain capacity (defaults to global)
            clock: Monotonic time source
            sleep: Coroutine used to wait when no cancellation token is given
        """
        self.requests_per_minute = max(1, requests_per_minute)
        self.burst_size = max(1, burst_size)
        self.domain_requests_per_minute = max(1, domain_requests_per_minute or self.requests_per_minute)
        self.domain_burst_size = max(1, domain_burst_size or self.burst_size)
        self._clock = clock
        self._sleep = sleep or asyncio.sleep
        self.global_bucket = self._new_global_bucket()
        # Domain -> TokenBucket
        self.buckets: Dict[str, TokenBucket] = {}

    def _new_global_bucket(self) -> TokenBucket:
        return TokenBucket(self.burst_size, self.requests_per_minute / 60.0, self._clock)

    def _get_bucket(self, domain: str) -> TokenBucket:
        bucket = self.buckets.get(domain)
        if bucket is None:
            bucket = TokenBucket(self.domain_burst_size, self.domain_requests_per_minute / 60.0, self._clock)
            self.buckets[domain] = bucket
            logger.debug(f"[domain_limits] Created bucket for {domain}: capacity={bucket.capacity}, rate={bucket.refill_rate:.3f}/s")
        return bucket

    def _try_acquire(self, domain: str) -> float:
        """Admit or return the seconds to wait. No suspension point inside."""
        bucket = self._get_bucket(domain)
        global_wait = self.global_bucket.wait_time(1.0)
        domain_wait = bucket.wait_time(1.0)
        if global_wait == 0.0 and domain_wait == 0.0:
            self.global_bucket.consume(1.0)
            bucket.consume(1.0)
            return 0.0
        return max(global_wait, domain_wait)

    async def acquire(self, domain: str, token: Optional[CancellationToken] = None):
        """Wait until a request to `domain` is allowed, then take the slot"""
        while True:
            wait_time = self._try_acquire(domain)
            if wait_time <= 0.0:
                return

            logger.debug(f"[domain_limits] Waiting {wait_time:.2f}s for token bucket - {domain}")
            if token is not None:
                await token.sleep(wait_time)
            else:
                await self._sleep(wait_time)

    def get_status(self, domain: str) -> Dict:
        """Current headroom for `domain`; does not mutate any bucket"""
        bucket = self.buckets.get(domain)
        available = bucket.peek() if bucket else float(self.domain_burst_size)
        rate = self.domain_requests_per_minute / 60.0
        capacity = float(self.domain_burst_size)
        return {
            'domain': domain,
            'available': int(available),
            'global_available': int(self.global_bucket.peek()),
            'reset_in': max(0.0, (capacity - available) / rate),
        }

    def clear(self):
        """Drop all domain buckets and refill the global bucket"""
        self.buckets.clear()
        self.global_bucket = self._new_global_bucket()
