"""Error taxonomy shared by the sync, scan and notification pipeline."""

from __future__ import annotations


class SpotifierError(Exception):
    """Base class for all pipeline errors."""


class AuthExpired(SpotifierError):  # noqa: N818
    """The catalog rejected the credential; recoverable by one refresh and retry."""


class UpstreamUnavailable(SpotifierError):  # noqa: N818
    """The catalog could not be reached or kept failing; retried on the next run."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class NotFound(SpotifierError):  # noqa: N818
    """The requested catalog entity does not exist."""


class StoreConflict(SpotifierError):  # noqa: N818
    """A concurrent write won the race for a unique key."""


class ValidationError(SpotifierError):
    """Malformed input at a public entry point."""
