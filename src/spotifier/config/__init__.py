"""Application configuration helpers."""

from __future__ import annotations

from .env import env_float, env_int, require_env_vars
from .errors import ConfigurationError, MissingConfigurationError
from .http_resilience import CacheConfig, RateLimit, ResilienceConfig, RetryPolicy
from .logging import configure_logging
from .mail import MailConfig, get_mail_config
from .spotify import (
    DEFAULT_SPOTIFY_SCOPES,
    SpotifyConfig,
    default_spotify_resilience,
    get_spotify_config,
)
from .storage import DatabaseConfig, StorageConfig, get_database_config, get_storage_config
from .sync import SyncConfig, get_sync_config

__all__ = [
    "DEFAULT_SPOTIFY_SCOPES",
    "CacheConfig",
    "ConfigurationError",
    "DatabaseConfig",
    "MailConfig",
    "MissingConfigurationError",
    "RateLimit",
    "ResilienceConfig",
    "RetryPolicy",
    "SpotifyConfig",
    "StorageConfig",
    "SyncConfig",
    "configure_logging",
    "default_spotify_resilience",
    "env_float",
    "env_int",
    "get_database_config",
    "get_mail_config",
    "get_spotify_config",
    "get_storage_config",
    "get_sync_config",
    "require_env_vars",
]
