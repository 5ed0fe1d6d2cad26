"""Per-source rate limiting and retry with exponential backoff."""

import asyncio
import random
import time
from collections import defaultdict
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar

import httpx
import structlog

logger = structlog.get_logger()

T = TypeVar("T")


class SourceHTTPError(Exception):
    """Non-2xx response from a job source."""

    def __init__(self, status_code: int, message: str = ""):
        self.status_code = status_code
        super().__init__(message or f"HTTP {status_code}")


def raise_for_status(response: httpx.Response, source: str) -> None:
    """Raise SourceHTTPError for any non-2xx response."""
    if response.is_success:
        return
    detail = response.text[:200] if response.text else response.reason_phrase
    raise SourceHTTPError(
        response.status_code,
        f"{source} returned {response.status_code}: {detail}",
    )


def is_transient(error: BaseException) -> bool:
    """Network errors, 5xx and 429 are worth retrying; other 4xx are not."""
    if isinstance(error, httpx.TransportError):
        return True
    if isinstance(error, SourceHTTPError):
        return error.status_code == 429 or error.status_code >= 500
    return False


@dataclass(frozen=True)
class RateLimitConfig:
    max_requests: int  # per window
    window_seconds: float
    min_delay_seconds: float = 0.0


class RateLimiter:
    """
    Sliding-window rate limiter keyed by source name.

    Each bucket allows max_requests per window and enforces a minimum
    delay between consecutive requests.
    """

    def __init__(self, config: RateLimitConfig):
        self.config = config
        self._requests: dict[str, list[tuple[float, int]]] = defaultdict(list)
        self._locks: dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    def _clean_old_requests(self, bucket: str) -> None:
        cutoff = time.monotonic() - self.config.window_seconds
        self._requests[bucket] = [r for r in self._requests[bucket] if r[0] > cutoff]

    def can_make_request(self, bucket: str) -> bool:
        return self.get_request_count(bucket) < self.config.max_requests

    def get_wait_time(self, bucket: str) -> float:
        """Seconds to wait before the next request to bucket is allowed."""
        self._clean_old_requests(bucket)
        records = self._requests[bucket]
        if not records:
            return 0.0

        now = time.monotonic()
        total = sum(count for _, count in records)

        if total < self.config.max_requests:
            if self.config.min_delay_seconds:
                since_last = now - max(ts for ts, _ in records)
                if since_last < self.config.min_delay_seconds:
                    return self.config.min_delay_seconds - since_last
            return 0.0

        oldest = min(ts for ts, _ in records)
        return max(0.0, oldest + self.config.window_seconds - now)

    def record_request(self, bucket: str, count: int = 1) -> None:
        self._requests[bucket].append((time.monotonic(), count))

    async def wait_for_slot(self, bucket: str) -> None:
        """Wait until a request can be made, then claim the slot."""
        async with self._locks[bucket]:
            wait_time = self.get_wait_time(bucket)
            while wait_time > 0:
                logger.debug("Rate limiting", source=bucket, wait_time=f"{wait_time:.2f}s")
                await asyncio.sleep(wait_time)
                wait_time = self.get_wait_time(bucket)
            self.record_request(bucket)

    async def execute(self, bucket: str, fn: Callable[[], Awaitable[T]]) -> T:
        """Execute fn once a slot is available for bucket."""
        await self.wait_for_slot(bucket)
        return await fn()

    def get_request_count(self, bucket: str) -> int:
        self._clean_old_requests(bucket)
        return sum(count for _, count in self._requests[bucket])

    def reset(self, bucket: str) -> None:
        self._requests.pop(bucket, None)

    def reset_all(self) -> None:
        self._requests.clear()


@dataclass(frozen=True)
class RetryConfig:
    max_attempts: int
    initial_delay: float  # seconds
    max_delay: float
    backoff_multiplier: float = 2.0
    jitter_factor: float = 0.0  # 0-1


async def with_retry(
    fn: Callable[[], Awaitable[T]],
    config: RetryConfig,
    source: Optional[str] = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Call fn, retrying transient failures with exponential backoff.

    Permanent failures (4xx other than 429, bad payloads) are raised on
    the first attempt.
    """
    delay = config.initial_delay

    for attempt in range(1, config.max_attempts + 1):
        try:
            return await fn()
        except Exception as e:
            if not is_transient(e) or attempt == config.max_attempts:
                raise

            jitter = delay * config.jitter_factor * random.random()
            actual_delay = min(delay + jitter, config.max_delay)
            logger.warning(
                "Source request failed, retrying",
                source=source,
                attempt=attempt,
                max_attempts=config.max_attempts,
                error=str(e),
                retry_in=f"{actual_delay:.2f}s",
            )
            await sleep(actual_delay)
            delay *= config.backoff_multiplier

    raise RuntimeError("max_attempts must be at least 1")


RETRY_CONFIGS: dict[str, RetryConfig] = {
    # Quick retries for transient errors
    "quick": RetryConfig(max_attempts=3, initial_delay=0.1, max_delay=1.0, jitter_factor=0.1),
    # Standard retries for API calls
    "standard": RetryConfig(max_attempts=3, initial_delay=1.0, max_delay=10.0, jitter_factor=0.2),
    # Aggressive retries for critical operations
    "aggressive": RetryConfig(max_attempts=5, initial_delay=0.5, max_delay=30.0, jitter_factor=0.3),
}

RATE_LIMIT_CONFIGS: dict[str, RateLimitConfig] = {
    # RemoteOK - be respectful to their free API
    "remoteok": RateLimitConfig(max_requests=30, window_seconds=60, min_delay_seconds=1.0),
    # WTTJ Algolia - generous limits
    "wttj": RateLimitConfig(max_requests=100, window_seconds=60, min_delay_seconds=0.1),
    # JobSpy scrapes Indeed behind the scenes, keep it slow
    "jobspy": RateLimitConfig(max_requests=20, window_seconds=60, min_delay_seconds=2.0),
    "mock": RateLimitConfig(max_requests=1000, window_seconds=60),
    "default": RateLimitConfig(max_requests=60, window_seconds=60, min_delay_seconds=0.5),
}
