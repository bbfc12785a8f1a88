"""Batch new-release mail by grouping users with identical pending sets."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from logging import getLogger
from typing import TYPE_CHECKING, Any, Final

from spotifier.domain.ports.notification import FailureEvent, FailureKind, MailMessage, SendResult

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence
    from uuid import UUID

    from spotifier.domain.model import Artist, User
    from spotifier.domain.ports.notification import FailureSink, Mailer
    from spotifier.domain.ports.unit_of_work import UnitOfWorkFactory

log = getLogger(__name__)

SUBJECT_NAME_LIMIT: Final[int] = 3


def pending_group_key(artist_ids: Iterable[UUID]) -> str:
    """Order-independent serialisation of a pending-release set."""

    return ",".join(sorted({str(artist_id) for artist_id in artist_ids}))


@dataclass(frozen=True, slots=True)
class PendingReleaseGroup:
    key: str
    artist_ids: frozenset[UUID]
    users: tuple[User, ...]

    @property
    def user_ids(self) -> frozenset[UUID]:
        return frozenset(user.id for user in self.users)

    @property
    def recipients(self) -> tuple[str, ...]:
        return tuple(sorted({user.email_address for user in self.users if user.email_address}))


def group_pending_releases(users: Iterable[User]) -> list[PendingReleaseGroup]:
    """Group users whose pending-release sets are identical.

    Users with nothing pending are left out. Groups come back ordered by key so
    repeated runs visit them in the same order.
    """

    members: dict[str, list[User]] = {}
    artist_sets: dict[str, frozenset[UUID]] = {}
    for user in users:
        if not user.pending_release_artist_ids:
            continue
        key = pending_group_key(user.pending_release_artist_ids)
        members.setdefault(key, []).append(user)
        artist_sets[key] = user.pending_release_artist_ids
    return [
        PendingReleaseGroup(key=key, artist_ids=artist_sets[key], users=tuple(members[key]))
        for key in sorted(members)
    ]


def compose_message(group: PendingReleaseGroup, artists: Sequence[Artist]) -> MailMessage:
    ordered = sorted(artists, key=lambda artist: artist.name.casefold())
    names = [artist.name for artist in ordered]
    shown = ", ".join(names[:SUBJECT_NAME_LIMIT])
    if len(names) > SUBJECT_NAME_LIMIT:
        shown = f"{shown} and {len(names) - SUBJECT_NAME_LIMIT} more"
    return MailMessage(
        recipients=group.recipients,
        subject=f"New music from {shown}",
        context={"artists": [_artist_context(artist) for artist in ordered]},
    )


def _artist_context(artist: Artist) -> dict[str, Any]:
    release = artist.most_recent_release
    return {
        "name": artist.name,
        "catalog_id": artist.catalog_id,
        "release": {
            "id": release.release_id,
            "title": release.title,
            "release_date": release.release_date,
            "images": [image.url for image in release.images],
        },
    }


@dataclass(slots=True)
class NotifyOutcome:
    groups: int = 0
    sent: int = 0
    failed: int = 0
    users_cleared: int = 0


class NotificationBatcher:
    """Send one message per pending-release group and clear flags on success.

    A failed send leaves that group's flags in place so the next cycle tries
    again; other groups are unaffected.
    """

    def __init__(
        self,
        *,
        unit_of_work_factory: UnitOfWorkFactory,
        mailer: Mailer,
        failure_sink: FailureSink,
    ) -> None:
        self._unit_of_work_factory = unit_of_work_factory
        self._mailer = mailer
        self._failure_sink = failure_sink

    def pending_groups(self) -> list[PendingReleaseGroup]:
        with self._unit_of_work_factory() as uow:
            users = uow.repositories.users.list_with_pending_releases()
        return group_pending_releases(user for user in users if user.can_receive_mail)

    async def notify(self) -> NotifyOutcome:
        outcome = NotifyOutcome()
        groups = self.pending_groups()
        outcome.groups = len(groups)
        log.info("Sending new-release mail for %d group(s)", len(groups))

        for group in groups:
            if await self._deliver(group):
                outcome.sent += 1
                outcome.users_cleared += self._clear(group)
            else:
                outcome.failed += 1
            await asyncio.sleep(0)

        log.info(
            "New-release mail finished: sent=%d, failed=%d, users_cleared=%d",
            outcome.sent,
            outcome.failed,
            outcome.users_cleared,
        )
        return outcome

    async def _deliver(self, group: PendingReleaseGroup) -> bool:
        with self._unit_of_work_factory() as uow:
            artists = uow.repositories.artists.get_many(group.artist_ids)
        message = compose_message(group, artists)
        try:
            result = await self._mailer.send(message)
        except Exception as exc:  # noqa: BLE001
            log.exception("Mailer raised for group %s", group.key)
            result = SendResult(success=False, error=f"{type(exc).__name__}: {exc}")

        if result.success:
            return True
        self._failure_sink.report(
            FailureEvent(
                kind=FailureKind.SEND,
                message="New-release mail could not be sent; flags kept for retry",
                details={
                    "group_key": group.key,
                    "recipients": len(message.recipients),
                    "error": result.error,
                },
            )
        )
        return False

    def _clear(self, group: PendingReleaseGroup) -> int:
        # only the artists that were mailed; anything flagged since stays pending
        with self._unit_of_work_factory() as uow:
            uow.repositories.users.clear_pending_releases(group.user_ids, group.artist_ids)
            uow.commit()
        return len(group.users)
