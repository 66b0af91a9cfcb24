"""
HTTP client for extraction strategies.

Fetches with browser-like headers, a response size cap, cancellation through
a CancellationToken, and typed ScrapeErrors instead of raw transport errors.
No internal retries: fallback happens one level up, across strategies.
"""
import json
import time
import logging
from dataclasses import dataclass, field
from email.utils import parsedate_to_datetime
from typing import Optional, Dict, Any

import httpx

from core.anti_detection import AntiDetection
from core.cancellation import CancellationToken
from core.errors import ScrapeError, ErrorKind, error_from_status

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0
MAX_RESPONSE_BYTES = 5 * 1024 * 1024
# Bytes of an error body inspected for challenge pages
ERROR_PREVIEW_BYTES = 16 * 1024


@dataclass
class FetchResponse:
    url: str
    status_code: int
    headers: Dict[str, str] = field(default_factory=dict)
    body: bytes = b''
    encoding: str = 'utf-8'
    elapsed_ms: int = 0

    @property
    def text(self) -> str:
        return self.body.decode(self.encoding or 'utf-8', errors='replace')

    def json(self) -> Any:
        try:
            return json.loads(self.text)
        except json.JSONDecodeError as e:
            raise ScrapeError(ErrorKind.PARSE, f"Invalid JSON from {self.url}: {e}", status_code=self.status_code)


def parse_retry_after(headers: Dict[str, str]) -> Optional[float]:
    """Retry-After as seconds; accepts delta-seconds or an HTTP date"""
    retry_after = headers.get("Retry-After") or headers.get("retry-after")
    if not retry_after:
        return None
    try:
        return max(0.0, float(int(retry_after)))
    except ValueError:
        pass
    try:
        retry_date = parsedate_to_datetime(retry_after)
        return max(0.0, retry_date.timestamp() - time.time())
    except (TypeError, ValueError):
        logger.warning(f"[net] Could not parse Retry-After header: {retry_after}")
        return None


class HTTPClient:
    """Async HTTP fetches with size limits, bot detection and typed failures"""

    def __init__(
        self,
        anti_detection: Optional[AntiDetection] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = DEFAULT_TIMEOUT,
        max_bytes: int = MAX_RESPONSE_BYTES,
    ):
        """
        Args:
            anti_detection: Used to recognise anti-bot responses
            transport: Custom httpx transport (tests pass httpx.MockTransport)
            timeout: Upper bound for one request in seconds
            max_bytes: Response bodies larger than this are rejected
        """
        self.anti_detection = anti_detection or AntiDetection()
        self.transport = transport
        self.timeout = timeout
        self.max_bytes = max_bytes
        self.requests_made = 0
        self.bytes_downloaded = 0

    def fork(self) -> 'HTTPClient':
        """Client with the same settings and its own request counters"""
        return HTTPClient(
            anti_detection=self.anti_detection,
            transport=self.transport,
            timeout=self.timeout,
            max_bytes=self.max_bytes,
        )

    def absorb(self, other: 'HTTPClient'):
        """Fold a forked client's counters back into this one"""
        self.requests_made += other.requests_made
        self.bytes_downloaded += other.bytes_downloaded

    def _effective_timeout(self, token: Optional[CancellationToken]) -> float:
        remaining = token.remaining() if token is not None else None
        if remaining is None:
            return self.timeout
        return max(0.001, min(self.timeout, remaining))

    def _raise_for_status(self, url: str, status_code: int, headers: Dict[str, str], body: str = ''):
        if 200 <= status_code < 300:
            return
        if status_code != 429 and self.anti_detection.is_bot_detected(status_code, headers, body):
            raise ScrapeError(ErrorKind.BLOCKED, f"Blocked by anti-bot protection at {url} (HTTP {status_code})", status_code=status_code)
        raise error_from_status(status_code, url, retry_after=parse_retry_after(headers))

    async def _request(
        self,
        url: str,
        method: str,
        headers: Dict[str, str],
        params: Optional[Dict[str, Any]],
        json_data: Optional[Any],
        timeout: float,
        max_bytes: int,
    ) -> FetchResponse:
        start_time = time.time()
        async with httpx.AsyncClient(timeout=httpx.Timeout(timeout), follow_redirects=True, transport=self.transport) as client:
            async with client.stream(method, url, headers=headers, params=params, json=json_data) as response:
                response_headers = dict(response.headers)
                if not 200 <= response.status_code < 300:
                    preview = b''
                    async for chunk in response.aiter_bytes():
                        preview += chunk
                        if len(preview) >= ERROR_PREVIEW_BYTES:
                            break
                    text = preview[:ERROR_PREVIEW_BYTES].decode(response.encoding or 'utf-8', errors='replace')
                    self._raise_for_status(url, response.status_code, response_headers, text)

                declared = response.headers.get('content-length')
                if declared and declared.isdigit() and int(declared) > max_bytes:
                    raise ScrapeError(ErrorKind.PARSE, f"Response too large: {declared} bytes from {url}")

                chunks = []
                size = 0
                async for chunk in response.aiter_bytes():
                    size += len(chunk)
                    if size > max_bytes:
                        raise ScrapeError(ErrorKind.PARSE, f"Response body too large: over {max_bytes} bytes from {url}")
                    chunks.append(chunk)

                elapsed_ms = int((time.time() - start_time) * 1000)
                self.bytes_downloaded += size
                logger.info(f"[net] {method} {response.status_code} {url} ({size} bytes, {elapsed_ms}ms)")

                return FetchResponse(
                    url=str(response.url),
                    status_code=response.status_code,
                    headers=response_headers,
                    body=b''.join(chunks),
                    encoding=response.encoding or 'utf-8',
                    elapsed_ms=elapsed_ms,
                )

    async def fetch(
        self,
        url: str,
        headers: Optional[Dict[str, str]] = None,
        token: Optional[CancellationToken] = None,
        method: str = "GET",
        params: Optional[Dict[str, Any]] = None,
        json_data: Optional[Any] = None,
        max_bytes: Optional[int] = None,
    ) -> FetchResponse:
        """
        Fetch URL once.

        Args:
            url: URL to fetch
            headers: Request headers (usually from AntiDetection.get_headers)
            token: Cancellation token; the request is aborted when it trips
            method: HTTP method
            params: Query parameters
            json_data: JSON body for POST
            max_bytes: Override for the response size cap

        Returns:
            FetchResponse with a 2xx status

        Raises:
            ScrapeError: typed failure (timeout, network, rate_limit, blocked, parse)
        """
        if token is not None:
            token.raise_if_cancelled()

        self.requests_made += 1
        request = self._request(
            url,
            method.upper(),
            headers or {},
            params,
            json_data,
            self._effective_timeout(token),
            max_bytes or self.max_bytes,
        )

        try:
            if token is not None:
                return await token.guard(request)
            return await request
        except ScrapeError as e:
            logger.warning(f"[net] {method} {url} failed: {e.kind.value}: {e.message}")
            raise
        except httpx.TimeoutException as e:
            logger.error(f"[net] Timeout fetching {url}: {e}")
            raise ScrapeError(ErrorKind.TIMEOUT, f"Request timeout fetching {url}: {e}")
        except httpx.TransportError as e:
            logger.error(f"[net] Connection error fetching {url}: {e}")
            raise ScrapeError(ErrorKind.NETWORK, f"Network error fetching {url}: {e}")

    async def fetch_text(self, url: str, headers: Optional[Dict[str, str]] = None,
                         token: Optional[CancellationToken] = None, **kwargs) -> str:
        response = await self.fetch(url, headers=headers, token=token, **kwargs)
        return response.text

    async def fetch_json(self, url: str, headers: Optional[Dict[str, str]] = None,
                         token: Optional[CancellationToken] = None, **kwargs) -> Any:
        request_headers = dict(headers or {})
        request_headers['Accept'] = 'application/json'
        response = await self.fetch(url, headers=request_headers, token=token, **kwargs)
        return response.json()
