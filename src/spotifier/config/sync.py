"""Defaults for library sync, detail resolution and the release scan."""

from __future__ import annotations

from dataclasses import dataclass

from .env import env_float, env_int

DEFAULT_LIBRARY_PAGE_SIZE = 50
DEFAULT_DETAIL_CONCURRENCY = 1
DEFAULT_DETAIL_MAX_ATTEMPTS = 3
DEFAULT_DETAIL_BACKOFF_SECONDS = 1.0
DEFAULT_SCAN_BATCH_SIZE = 200


@dataclass(frozen=True, slots=True)
class SyncConfig:
    library_page_size: int = DEFAULT_LIBRARY_PAGE_SIZE
    detail_concurrency: int = DEFAULT_DETAIL_CONCURRENCY
    detail_max_attempts: int = DEFAULT_DETAIL_MAX_ATTEMPTS
    detail_backoff_seconds: float = DEFAULT_DETAIL_BACKOFF_SECONDS
    scan_batch_size: int = DEFAULT_SCAN_BATCH_SIZE


def get_sync_config() -> SyncConfig:
    return SyncConfig(
        library_page_size=env_int("SPOTIFIER_LIBRARY_PAGE_SIZE", DEFAULT_LIBRARY_PAGE_SIZE),
        detail_concurrency=env_int("SPOTIFIER_DETAIL_CONCURRENCY", DEFAULT_DETAIL_CONCURRENCY),
        detail_max_attempts=env_int("SPOTIFIER_DETAIL_MAX_ATTEMPTS", DEFAULT_DETAIL_MAX_ATTEMPTS),
        detail_backoff_seconds=env_float(
            "SPOTIFIER_DETAIL_BACKOFF_SECONDS", DEFAULT_DETAIL_BACKOFF_SECONDS
        ),
        scan_batch_size=env_int("SPOTIFIER_SCAN_BATCH_SIZE", DEFAULT_SCAN_BATCH_SIZE),
    )
