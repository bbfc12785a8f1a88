"""Application orchestration entry points."""

from __future__ import annotations

import asyncio
import secrets
from contextlib import AsyncExitStack, asynccontextmanager
from dataclasses import dataclass
from datetime import UTC, datetime
from logging import getLogger
from typing import TYPE_CHECKING

from spotifier.adapters.observability import LoggingFailureSink
from spotifier.adapters.smtp import SmtpMailer
from spotifier.adapters.spotify import (
    SpotifyCatalogClient,
    SpotipyAppTokenProvider,
    SpotipyAuthProvider,
    should_cache_payload,
)
from spotifier.adapters.spotify.client import DEFAULT_SEARCH_LIMIT
from spotifier.adapters.sqlalchemy.unit_of_work import SqlAlchemyUnitOfWork, is_started, startup
from spotifier.config import get_mail_config, get_spotify_config, get_sync_config
from spotifier.domain.detail_queue import DetailResolutionQueue
from spotifier.domain.errors import StoreConflict, ValidationError
from spotifier.domain.library_sync import LibrarySyncEngine
from spotifier.domain.model import CatalogCredential, User
from spotifier.domain.notifications import NotificationBatcher
from spotifier.domain.release_scan import ReleaseScanEngine

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Sequence
    from uuid import UUID

    from spotifier.config import SyncConfig
    from spotifier.domain.library_sync import SyncOutcome
    from spotifier.domain.model import Artist
    from spotifier.domain.notifications import NotifyOutcome
    from spotifier.domain.ports.catalog import (
        ArtistSearchResult,
        CatalogAuthProvider,
        CatalogClient,
    )
    from spotifier.domain.ports.notification import FailureSink, Mailer
    from spotifier.domain.ports.unit_of_work import UnitOfWorkFactory
    from spotifier.domain.release_scan import ScanOutcome


log = getLogger(__name__)

# forces a refresh before the first library request of a user created from a refresh token
_EXPIRED = datetime.fromtimestamp(0, tz=UTC)


@dataclass(slots=True)
class Pipeline:
    detail_queue: DetailResolutionQueue
    sync_engine: LibrarySyncEngine
    scan_engine: ReleaseScanEngine
    notifier: NotificationBatcher | None
    failure_sink: FailureSink


@dataclass(slots=True)
class ScanReport:
    scan: ScanOutcome
    notify: NotifyOutcome | None = None


def _store(unit_of_work_factory: UnitOfWorkFactory | None) -> UnitOfWorkFactory:
    if unit_of_work_factory is not None:
        return unit_of_work_factory
    if not is_started():
        startup()
    return SqlAlchemyUnitOfWork


@asynccontextmanager
async def build_pipeline(
    *,
    catalog: CatalogClient | None = None,
    auth: CatalogAuthProvider | None = None,
    mailer: Mailer | None = None,
    unit_of_work_factory: UnitOfWorkFactory | None = None,
    failure_sink: FailureSink | None = None,
    sync_config: SyncConfig | None = None,
    with_mail: bool = False,
) -> AsyncIterator[Pipeline]:
    """Wire the engines to their adapters for the lifetime of the block.

    Adapters that are not passed in are built from the environment. The detail
    queue is started on entry and closed on exit.
    """

    effective_uow = _store(unit_of_work_factory)
    settings = sync_config or get_sync_config()
    sink = failure_sink or LoggingFailureSink()

    async with AsyncExitStack() as stack:
        if catalog is None or (auth is None):
            spotify = get_spotify_config(cache_predicate=should_cache_payload)
            if catalog is None:
                catalog = await stack.enter_async_context(
                    SpotifyCatalogClient(
                        app_tokens=SpotipyAppTokenProvider(spotify),
                        resilience=spotify.resilience,
                    )
                )
            if auth is None:
                auth = SpotipyAuthProvider(spotify)
        if with_mail and mailer is None:
            mailer = SmtpMailer(get_mail_config())

        detail_queue = await stack.enter_async_context(
            DetailResolutionQueue(
                catalog=catalog,
                unit_of_work_factory=effective_uow,
                failure_sink=sink,
                concurrency=settings.detail_concurrency,
                max_attempts=settings.detail_max_attempts,
                backoff_seconds=settings.detail_backoff_seconds,
            )
        )
        yield Pipeline(
            detail_queue=detail_queue,
            sync_engine=LibrarySyncEngine(
                catalog=catalog,
                auth=auth,
                unit_of_work_factory=effective_uow,
                detail_queue=detail_queue,
                failure_sink=sink,
                page_size=settings.library_page_size,
            ),
            scan_engine=ReleaseScanEngine(
                catalog=catalog,
                unit_of_work_factory=effective_uow,
                detail_queue=detail_queue,
                failure_sink=sink,
                batch_size=settings.scan_batch_size,
            ),
            notifier=(
                NotificationBatcher(
                    unit_of_work_factory=effective_uow,
                    mailer=mailer,
                    failure_sink=sink,
                )
                if mailer is not None
                else None
            ),
            failure_sink=sink,
        )


def sync_user_library(
    user_id: UUID,
    *,
    catalog: CatalogClient | None = None,
    auth: CatalogAuthProvider | None = None,
    unit_of_work_factory: UnitOfWorkFactory | None = None,
    failure_sink: FailureSink | None = None,
    sync_config: SyncConfig | None = None,
) -> SyncOutcome:
    """Import the user's saved library, then drain the detail jobs it queued."""

    async def _run() -> SyncOutcome:
        async with build_pipeline(
            catalog=catalog,
            auth=auth,
            unit_of_work_factory=unit_of_work_factory,
            failure_sink=failure_sink,
            sync_config=sync_config,
        ) as pipeline:
            outcome = await pipeline.sync_engine.run(user_id)
            await pipeline.detail_queue.join()
            stats = pipeline.detail_queue.stats()
            log.info(
                "Detail resolution finished: completed=%d, failed=%d",
                stats.completed,
                stats.failed,
            )
            return outcome

    log.info("Starting library sync for user %s", user_id)
    return asyncio.run(_run())


def run_release_scan(
    *,
    send_emails: bool = True,
    catalog: CatalogClient | None = None,
    mailer: Mailer | None = None,
    unit_of_work_factory: UnitOfWorkFactory | None = None,
    failure_sink: FailureSink | None = None,
    sync_config: SyncConfig | None = None,
) -> ScanReport:
    """Run the daily scan and, unless disabled, mail the pending releases."""

    async def _run() -> ScanReport:
        async with build_pipeline(
            catalog=catalog,
            auth=_NoRefresh() if catalog is not None else None,
            mailer=mailer,
            unit_of_work_factory=unit_of_work_factory,
            failure_sink=failure_sink,
            sync_config=sync_config,
            with_mail=send_emails,
        ) as pipeline:
            report = ScanReport(scan=await pipeline.scan_engine.scan())
            if send_emails and pipeline.notifier is not None:
                report.notify = await pipeline.notifier.notify()
            return report

    log.info("Starting release scan (send_emails=%s)", send_emails)
    return asyncio.run(_run())


class _NoRefresh:
    """Scans never touch user credentials."""

    async def refresh(self, credential: CatalogCredential) -> CatalogCredential:
        return credential


def create_user(
    *,
    display_name: str,
    refresh_token: str | None = None,
    unit_of_work_factory: UnitOfWorkFactory | None = None,
) -> User:
    """Return the user named ``display_name``, creating it when missing."""

    name = display_name.strip()
    if not name:
        raise ValidationError("Display name must not be empty")
    credential = (
        CatalogCredential(access_token="", refresh_token=refresh_token, expires_at=_EXPIRED)
        if refresh_token
        else None
    )
    effective_uow = _store(unit_of_work_factory)
    with effective_uow() as uow:
        users = uow.repositories.users
        existing = users.get_by_display_name(name)
        if existing is not None:
            if credential is not None:
                users.update_credential(existing.id, credential)
                uow.commit()
                return users.get(existing.id) or existing
            return existing
        user = User(display_name=name, catalog_credential=credential)
        try:
            users.add(user)
            uow.commit()
        except StoreConflict:
            uow.rollback()
            raced = users.get_by_display_name(name)
            if raced is None:
                raise
            return raced
    log.info("Created user %s (%s)", user.display_name, user.id)
    return user


def add_email(
    user_id: UUID,
    address: str,
    *,
    unit_of_work_factory: UnitOfWorkFactory | None = None,
) -> str:
    """Attach an unconfirmed address to the user and return its confirmation code."""

    cleaned = address.strip()
    local, _, domain = cleaned.partition("@")
    if not local or "." not in domain:
        raise ValidationError(f"Invalid email address: {address!r}")
    code = secrets.token_hex(16)
    with _store(unit_of_work_factory)() as uow:
        if uow.repositories.users.get(user_id) is None:
            raise ValidationError(f"Unknown user: {user_id}")
        uow.repositories.users.set_email(user_id, cleaned, confirm_code=code)
        uow.commit()
    return code


def confirm_email(
    user_id: UUID,
    code: str,
    *,
    unit_of_work_factory: UnitOfWorkFactory | None = None,
) -> bool:
    with _store(unit_of_work_factory)() as uow:
        user = uow.repositories.users.get(user_id)
        if user is None:
            raise ValidationError(f"Unknown user: {user_id}")
        if user.email_confirmed:
            return True
        expected = user.email_confirm_code
        if expected is None or not secrets.compare_digest(expected, code.strip()):
            return False
        uow.repositories.users.mark_email_confirmed(user_id)
        uow.commit()
    return True


@dataclass(frozen=True, slots=True)
class EmailStatus:
    address: str | None
    confirmed: bool

    @property
    def exists(self) -> bool:
        return self.address is not None


def remove_email(
    user_id: UUID,
    *,
    unit_of_work_factory: UnitOfWorkFactory | None = None,
) -> None:
    """Detach the address; the user stops receiving release mails."""

    with _store(unit_of_work_factory)() as uow:
        if uow.repositories.users.get(user_id) is None:
            raise ValidationError(f"Unknown user: {user_id}")
        uow.repositories.users.clear_email(user_id)
        uow.commit()
    log.info("Removed email address of user %s", user_id)


def email_status(
    user_id: UUID,
    *,
    unit_of_work_factory: UnitOfWorkFactory | None = None,
) -> EmailStatus:
    with _store(unit_of_work_factory)() as uow:
        user = uow.repositories.users.get(user_id)
    if user is None:
        raise ValidationError(f"Unknown user: {user_id}")
    return EmailStatus(address=user.email_address, confirmed=user.email_confirmed)


def get_library(
    user_id: UUID,
    *,
    unit_of_work_factory: UnitOfWorkFactory | None = None,
) -> Sequence[Artist]:
    with _store(unit_of_work_factory)() as uow:
        user = uow.repositories.users.get(user_id)
        if user is None:
            raise ValidationError(f"Unknown user: {user_id}")
        artists = uow.repositories.artists.get_many(user.saved_artist_ids)
    return sorted(artists, key=lambda artist: artist.name.casefold())


def search_artists(
    query: str,
    *,
    catalog: CatalogClient | None = None,
    limit: int = DEFAULT_SEARCH_LIMIT,
) -> Sequence[ArtistSearchResult]:
    """Artists whose name starts with ``query``, as ranked by the catalog."""

    async def _run() -> Sequence[ArtistSearchResult]:
        if catalog is not None:
            return await catalog.search_artists(query, limit=limit)
        spotify = get_spotify_config(cache_predicate=should_cache_payload)
        async with SpotifyCatalogClient(
            app_tokens=SpotipyAppTokenProvider(spotify),
            resilience=spotify.resilience,
        ) as client:
            return await client.search_artists(query, limit=limit)

    return asyncio.run(_run())
