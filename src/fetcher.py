"""
Rate-limited HTTP fetching for the remote catalog.

Every outbound request goes through ``RateLimitedFetcher.fetch``:
- 429 responses are retried with exponential backoff (5s, 10s, 20s, ...)
- connection errors and timeouts are retried after a fixed short delay
- both share one retry cap; nothing is retried forever
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict

import aiohttp

from config import (
    MAX_RETRIES,
    BACKOFF_BASE_SECONDS,
    NETWORK_RETRY_DELAY,
    REQUEST_TIMEOUT,
    REQUEST_HEADERS,
    FILE_ENCODING,
)

logger = logging.getLogger(__name__)

TOO_MANY_REQUESTS = 429

SleepFunc = Callable[[float], Awaitable[None]]


@dataclass
class FetchResponse:
    """A fully read HTTP response."""
    url: str
    status: int
    body: bytes = b""
    headers: Dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    def text(self, encoding: str = FILE_ENCODING) -> str:
        return self.body.decode(encoding, errors="replace")


def create_session(timeout: float = REQUEST_TIMEOUT) -> aiohttp.ClientSession:
    """Create the shared client session with browser-like headers."""
    client_timeout = aiohttp.ClientTimeout(total=timeout, connect=10)
    connector = aiohttp.TCPConnector(limit=4, enable_cleanup_closed=True)
    return aiohttp.ClientSession(
        headers=REQUEST_HEADERS,
        timeout=client_timeout,
        connector=connector,
        cookie_jar=aiohttp.DummyCookieJar(),
    )


class RateLimitedFetcher:
    """
    Wraps ``session.get`` with bounded retries.

    On 429 the n-th retry waits ``backoff_base * 2**n`` seconds; after
    ``max_retries`` retries the last 429 response is returned as-is so the
    caller can treat it as a failed fetch. On network failure the request is
    retried after ``network_retry_delay`` seconds and the error is re-raised
    once the cap is reached.
    """

    def __init__(
        self,
        session: aiohttp.ClientSession,
        max_retries: int = MAX_RETRIES,
        backoff_base: float = BACKOFF_BASE_SECONDS,
        network_retry_delay: float = NETWORK_RETRY_DELAY,
        sleep: SleepFunc = asyncio.sleep,
    ):
        self._session = session
        self.max_retries = max_retries
        self.backoff_base = backoff_base
        self.network_retry_delay = network_retry_delay
        self._sleep = sleep

        self.rate_limit_hits = 0
        self.network_errors = 0

    def backoff_delay(self, attempt: int) -> float:
        """Delay before retry number ``attempt + 1`` after a 429."""
        return self.backoff_base * (2 ** attempt)

    async def _get(self, url: str, options: dict) -> FetchResponse:
        async with self._session.get(url, **options) as response:
            body = await response.read()
            return FetchResponse(
                url=url,
                status=response.status,
                body=body,
                headers=dict(response.headers),
            )

    async def fetch(self, url: str, **options) -> FetchResponse:
        """
        GET ``url``, retrying on rate limiting and network failure.

        Raises:
            aiohttp.ClientError / asyncio.TimeoutError: after the last
            network-level failure.
        """
        attempt = 0
        while True:
            try:
                response = await self._get(url, options)
            except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
                self.network_errors += 1
                if attempt >= self.max_retries:
                    logger.warning("Giving up on %s after %d retries: %s", url, attempt, exc)
                    raise
                logger.debug("Network error on %s (%s), retry %d", url, exc, attempt + 1)
                await self._sleep(self.network_retry_delay)
                attempt += 1
                continue

            if response.status != TOO_MANY_REQUESTS:
                return response

            self.rate_limit_hits += 1
            if attempt >= self.max_retries:
                logger.warning("Still rate limited on %s after %d retries", url, attempt)
                return response

            wait = self.backoff_delay(attempt)
            logger.warning("RATE LIMIT (429) on %s. Waiting %.0fs...", url, wait)
            await self._sleep(wait)
            attempt += 1
