"""Spotify configuration values."""

from __future__ import annotations

from dataclasses import dataclass, field

from .env import require_env_vars
from .http_resilience import CacheConfig, RateLimit, ResilienceConfig, RetryPolicy, ShouldCacheHook

SPOTIFY_API_BASE_URL = "https://api.spotify.com/v1/"
SPOTIFY_TIMEOUT_SECONDS = 15.0
# artist pages change rarely; a day covers one scan cycle
SPOTIFY_CACHE_TTL_SECONDS = 24 * 60 * 60.0

DEFAULT_SPOTIFY_SCOPES = (
    "user-library-read",
    "user-read-email",
)


def default_spotify_resilience(
    *, cache_predicate: ShouldCacheHook | None = None
) -> ResilienceConfig:
    return ResilienceConfig(
        name="spotify",
        base_url=SPOTIFY_API_BASE_URL,
        timeout_seconds=SPOTIFY_TIMEOUT_SECONDS,
        retry=RetryPolicy(total=3),
        ratelimit=RateLimit(max_calls=10, per_seconds=1.0),
        cache=CacheConfig(ttl_seconds=SPOTIFY_CACHE_TTL_SECONDS, should_cache=cache_predicate),
    )


@dataclass(frozen=True)
class SpotifyConfig:
    client_id: str
    client_secret: str
    redirect_uri: str
    scope: tuple[str, ...] = DEFAULT_SPOTIFY_SCOPES
    resilience: ResilienceConfig = field(default_factory=default_spotify_resilience)


def get_spotify_config(
    *,
    resilience: ResilienceConfig | None = None,
    cache_predicate: ShouldCacheHook | None = None,
) -> SpotifyConfig:
    values = require_env_vars(
        ("SPOTIFY_CLIENT_ID", "SPOTIFY_CLIENT_SECRET", "SPOTIFY_REDIRECT_URI")
    )
    return SpotifyConfig(
        client_id=values["SPOTIFY_CLIENT_ID"],
        client_secret=values["SPOTIFY_CLIENT_SECRET"],
        redirect_uri=values["SPOTIFY_REDIRECT_URI"],
        resilience=resilience or default_spotify_resilience(cache_predicate=cache_predicate),
    )
