"""Failure sink that writes pipeline failures to the log."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from spotifier.domain.ports.notification import FailureKind

if TYPE_CHECKING:
    from spotifier.domain.ports.notification import FailureEvent

log = logging.getLogger("spotifier.failures")

_LEVELS = {
    FailureKind.PAGE_FETCH: logging.WARNING,
    FailureKind.DETAIL_EXHAUSTED: logging.WARNING,
    FailureKind.SEND: logging.WARNING,
    FailureKind.SYNC_ABORTED: logging.ERROR,
    FailureKind.SCAN_ABORTED: logging.ERROR,
}


class LoggingFailureSink:
    def __init__(self, logger: logging.Logger | None = None) -> None:
        self._log = logger or log
        self.reported = 0

    def report(self, event: FailureEvent) -> None:
        self.reported += 1
        details = " ".join(f"{key}={value}" for key, value in sorted(event.details.items()))
        self._log.log(
            _LEVELS.get(event.kind, logging.WARNING),
            "[%s] %s %s",
            event.kind.value,
            event.message,
            details,
            extra={"failure_kind": event.kind.value, "failure_details": dict(event.details)},
        )
