"""Ports for outbound mail and failure reporting."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence


@dataclass(frozen=True, slots=True)
class MailMessage:
    recipients: tuple[str, ...]
    subject: str
    context: Mapping[str, Any] = field(default_factory=dict["str", "Any"])


@dataclass(frozen=True, slots=True)
class SendResult:
    success: bool
    error: str | None = None


@runtime_checkable
class Mailer(Protocol):
    """Delivers one composed message to all of its recipients."""

    async def send(self, message: MailMessage) -> SendResult: ...


class FailureKind(StrEnum):
    PAGE_FETCH = "page_fetch"
    SYNC_ABORTED = "sync_aborted"
    DETAIL_EXHAUSTED = "detail_exhausted"
    SCAN_ABORTED = "scan_aborted"
    SEND = "send"


@dataclass(frozen=True, slots=True)
class FailureEvent:
    kind: FailureKind
    message: str
    details: Mapping[str, object] = field(default_factory=dict["str", "object"])


@runtime_checkable
class FailureSink(Protocol):
    def report(self, event: FailureEvent) -> None: ...


class RecordingFailureSink:
    """Keeps reported events in memory; handy for tests and dry runs."""

    def __init__(self) -> None:
        self.events: list[FailureEvent] = []

    def report(self, event: FailureEvent) -> None:
        self.events.append(event)

    def of_kind(self, kind: FailureKind) -> Sequence[FailureEvent]:
        return [event for event in self.events if event.kind is kind]
