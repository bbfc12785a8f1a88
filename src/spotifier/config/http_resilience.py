"""Settings for the retrying, rate-limited and cached catalog HTTP client."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path  # noqa: TC003
from typing import Final

import httpx

ShouldCacheHook = Callable[[object], bool]

# the catalog is only ever read
READ_METHODS: Final[frozenset[str]] = frozenset({"GET", "HEAD"})
RETRY_STATUSES: Final[frozenset[int]] = frozenset({429, 500, 502, 503, 504})
RETRY_EXCEPTIONS: Final[tuple[type[httpx.HTTPError], ...]] = (
    httpx.TimeoutException,
    httpx.NetworkError,
    httpx.RemoteProtocolError,
)


@dataclass(slots=True, frozen=True)
class RetryPolicy:
    """Transport-level retries, applied before a failure reaches the engines."""

    total: int = 3
    backoff_factor: float = 0.5
    backoff_jitter: float = 1.0
    max_backoff_wait: float = 30.0
    respect_retry_after_header: bool = True
    retry_statuses: frozenset[int] = RETRY_STATUSES
    retry_exceptions: tuple[type[httpx.HTTPError], ...] = RETRY_EXCEPTIONS


@dataclass(slots=True, frozen=True)
class RateLimit:
    max_calls: int
    per_seconds: float = 1.0


@dataclass(slots=True, frozen=True)
class CacheConfig:
    """Response cache; kept in memory unless ``path`` names an SQLite file."""

    path: Path | None = None
    ttl_seconds: float | None = None
    should_cache: ShouldCacheHook | None = None


@dataclass(slots=True, frozen=True)
class ResilienceConfig:
    name: str
    base_url: str | None = None
    timeout_seconds: float = 30.0
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    ratelimit: RateLimit | None = None
    cache: CacheConfig | None = None
    # innermost transport, wrapped by the retry transport
    transport: httpx.AsyncBaseTransport | None = None
