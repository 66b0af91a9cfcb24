"""
Error taxonomy for scrape failures.

Every failure inside a strategy is turned into a ScrapeError with a kind that
drives the engine's fallback policy:
- network / timeout / unknown: move on to the next strategy tier
- rate_limit: retryable later, but stop hammering this target now
- blocked: give up on the target for this pass
- parse / configuration: this strategy cannot work, try the next one
"""

import json
import asyncio
import logging
from enum import Enum
from datetime import datetime, timezone
from typing import Optional, Dict

import httpx
from pydantic import ValidationError

logger = logging.getLogger(__name__)


class ErrorKind(str, Enum):
    NETWORK = "network"
    TIMEOUT = "timeout"
    RATE_LIMIT = "rate_limit"
    BLOCKED = "blocked"
    PARSE = "parse"
    CONFIGURATION = "configuration"
    UNKNOWN = "unknown"


# kind -> (retryable, abandons remaining strategies for the target)
RETRY_POLICY: Dict[ErrorKind, tuple] = {
    ErrorKind.NETWORK: (True, False),
    ErrorKind.TIMEOUT: (True, False),
    ErrorKind.RATE_LIMIT: (True, True),
    ErrorKind.BLOCKED: (False, True),
    ErrorKind.PARSE: (False, False),
    ErrorKind.CONFIGURATION: (False, False),
    ErrorKind.UNKNOWN: (True, False),
}


class ScrapeError(Exception):
    """Typed failure raised by strategies and the HTTP layer."""

    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        status_code: Optional[int] = None,
        retry_after: Optional[float] = None,
        strategy: Optional[str] = None,
        retryable: Optional[bool] = None,
    ):
        super().__init__(message)
        self.kind = ErrorKind(kind)
        self.message = message
        self.status_code = status_code
        self.retry_after = retry_after
        self.strategy = strategy
        self._retryable = retryable
        self.timestamp = datetime.now(timezone.utc)

    @property
    def retryable(self) -> bool:
        if self._retryable is not None:
            return self._retryable
        return RETRY_POLICY[self.kind][0]

    @property
    def abandons_target(self) -> bool:
        """True when no further strategy should be tried for this target."""
        return RETRY_POLICY[self.kind][1]

    def to_dict(self) -> Dict:
        return {
            'kind': self.kind.value,
            'message': self.message,
            'retryable': self.retryable,
            'status_code': self.status_code,
            'strategy': self.strategy,
            'timestamp': self.timestamp,
        }

    def __repr__(self):
        return f"ScrapeError(kind={self.kind.value}, message={self.message!r})"


def error_from_status(status_code: int, url: str, retry_after: Optional[float] = None) -> ScrapeError:
    """Map a non-2xx HTTP status to a typed error."""
    if status_code == 429:
        return ScrapeError(
            ErrorKind.RATE_LIMIT,
            f"HTTP 429 rate limited by {url}",
            status_code=status_code,
            retry_after=retry_after,
        )
    if status_code == 403:
        return ScrapeError(ErrorKind.BLOCKED, f"HTTP 403 blocked by {url}", status_code=status_code)
    return ScrapeError(ErrorKind.NETWORK, f"HTTP {status_code} from {url}", status_code=status_code)


def _classify_message(message: str) -> ErrorKind:
    """Fallback classification for transports that expose no typed status."""
    lowered = message.lower()
    if "rate limit" in lowered or "429" in lowered:
        return ErrorKind.RATE_LIMIT
    if "blocked" in lowered or "403" in lowered or "captcha" in lowered:
        return ErrorKind.BLOCKED
    if "timeout" in lowered or "timed out" in lowered:
        return ErrorKind.TIMEOUT
    if "parse" in lowered or "json" in lowered:
        return ErrorKind.PARSE
    if "network" in lowered or "fetch" in lowered or "connection" in lowered:
        return ErrorKind.NETWORK
    return ErrorKind.UNKNOWN


def classify_error(error: BaseException, strategy: Optional[str] = None) -> ScrapeError:
    """
    Turn any exception into a ScrapeError.

    Typed signals (ScrapeError, httpx exceptions, decode errors) win; message
    inspection is only used when nothing typed is available.
    """
    if isinstance(error, ScrapeError):
        if strategy and not error.strategy:
            error.strategy = strategy
        return error

    message = str(error) or error.__class__.__name__

    if isinstance(error, (httpx.TimeoutException, asyncio.TimeoutError)):
        kind = ErrorKind.TIMEOUT
    elif isinstance(error, httpx.HTTPStatusError):
        classified = error_from_status(error.response.status_code, str(error.request.url))
        classified.strategy = strategy
        return classified
    elif isinstance(error, httpx.TransportError):
        kind = ErrorKind.NETWORK
    elif isinstance(error, (json.JSONDecodeError, ValidationError)):
        kind = ErrorKind.PARSE
    else:
        kind = _classify_message(message)
        logger.debug(f"Classified untyped {error.__class__.__name__} as {kind.value}: {message}")

    return ScrapeError(kind, message, strategy=strategy)
