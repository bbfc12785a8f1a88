"""httpx client with retries, rate limiting and optional response caching."""

from __future__ import annotations

import json
from logging import getLogger
from typing import TYPE_CHECKING, Any

import httpx
from aiolimiter import AsyncLimiter
from hishel import AsyncSqliteStorage, FilterPolicy
from hishel import Response as HishelCacheResponse
from hishel._policies import BaseFilter
from hishel.httpx import AsyncCacheClient
from httpx_retries import Retry, RetryTransport

from spotifier.config.http_resilience import READ_METHODS

if TYPE_CHECKING:
    from collections.abc import Mapping
    from types import TracebackType

    from spotifier.config.http_resilience import (
        CacheConfig,
        ResilienceConfig,
        RetryPolicy,
        ShouldCacheHook,
    )

log = getLogger(__name__)


def build_retry(policy: RetryPolicy) -> Retry:
    return Retry(
        total=policy.total,
        allowed_methods=READ_METHODS,
        status_forcelist=policy.retry_statuses,
        retry_on_exceptions=policy.retry_exceptions,
        backoff_factor=policy.backoff_factor,
        backoff_jitter=policy.backoff_jitter,
        max_backoff_wait=policy.max_backoff_wait,
        respect_retry_after_header=policy.respect_retry_after_header,
    )


def build_http_client(config: ResilienceConfig) -> httpx.AsyncClient:
    """Build the underlying client; a configured cache wraps it in hishel."""

    options: dict[str, Any] = {
        "timeout": config.timeout_seconds,
        "transport": RetryTransport(transport=config.transport, retry=build_retry(config.retry)),
    }
    if config.base_url is not None:
        options["base_url"] = config.base_url
    if config.cache is None:
        return httpx.AsyncClient(**options)

    log.debug("Caching %s responses in %s", config.name, config.cache.path or "memory")
    return AsyncCacheClient(**options, **_cache_options(config.cache))


def _cache_options(cache: CacheConfig) -> dict[str, Any]:
    storage = AsyncSqliteStorage(
        database_path=str(cache.path) if cache.path is not None else ":memory:",
        default_ttl=cache.ttl_seconds,
        refresh_ttl_on_access=True,
    )
    policy = (
        FilterPolicy(response_filters=[_PayloadFilter(cache.should_cache)])
        if cache.should_cache is not None
        else None
    )
    return {"storage": storage, "policy": policy}


class _PayloadFilter(BaseFilter[HishelCacheResponse]):
    """Let a JSON predicate decide whether a response body is stored."""

    def __init__(self, predicate: ShouldCacheHook) -> None:
        self._predicate = predicate

    def needs_body(self) -> bool:
        return True

    def apply(self, item: HishelCacheResponse, body: bytes | None) -> bool:  # noqa: ARG002
        if body is None:
            return True
        try:
            payload = json.loads(body)
        except (UnicodeDecodeError, json.JSONDecodeError):
            return True
        return bool(self._predicate(payload))


class ResilientClient:
    """Rate-limited GET requests over a retrying, optionally caching client."""

    def __init__(self, config: ResilienceConfig) -> None:
        self.config = config
        self._client = build_http_client(config)
        self._limiter = (
            AsyncLimiter(config.ratelimit.max_calls, config.ratelimit.per_seconds)
            if config.ratelimit is not None
            else None
        )

    async def __aenter__(self) -> ResilientClient:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def get(
        self,
        url: str,
        *,
        params: Mapping[str, str | int] | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> httpx.Response:
        if self._limiter is None:
            return await self._client.get(url, params=params, headers=headers)
        async with self._limiter:
            return await self._client.get(url, params=params, headers=headers)
