"""Import a user's saved library from the catalog into tracked artists."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from enum import StrEnum
from logging import getLogger
from typing import TYPE_CHECKING

from spotifier.config.sync import DEFAULT_LIBRARY_PAGE_SIZE
from spotifier.domain.errors import AuthExpired, SpotifierError, StoreConflict, ValidationError
from spotifier.domain.ports.notification import FailureEvent, FailureKind

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Callable
    from uuid import UUID

    from spotifier.domain.detail_queue import DetailResolutionQueue
    from spotifier.domain.model import Artist, CatalogCredential
    from spotifier.domain.ports.catalog import (
        CatalogArtistRef,
        CatalogAuthProvider,
        CatalogClient,
        LibraryPage,
    )
    from spotifier.domain.ports.notification import FailureSink
    from spotifier.domain.ports.unit_of_work import UnitOfWorkFactory

log = getLogger(__name__)

UPSERT_ATTEMPTS = 3


class SyncStatus(StrEnum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass(slots=True)
class SyncOutcome:
    """Summary of one library sync pass."""

    user_id: UUID
    succeeded: bool = False
    pages_fetched: int = 0
    artists_discovered: int = 0
    artists_created: int = 0
    artists_assigned: int = 0
    error: str | None = None


@dataclass(slots=True)
class _SyncPass:
    """State owned by a single sync call, never shared between calls."""

    user_id: UUID
    credential: CatalogCredential
    refreshed: bool = False
    seen_catalog_ids: set[str] = field(default_factory=set["str"])


class SyncHandle:
    """Observes a detached sync running in the background."""

    def __init__(self, user_id: UUID) -> None:
        self.user_id = user_id
        self.status = SyncStatus.PENDING
        self._task: asyncio.Task[SyncOutcome] | None = None

    @property
    def done(self) -> bool:
        return self.status in {SyncStatus.SUCCEEDED, SyncStatus.FAILED}

    @property
    def outcome(self) -> SyncOutcome | None:
        if self._task is None or not self._task.done() or self._task.cancelled():
            return None
        return self._task.result()

    def add_done_callback(self, callback: Callable[[SyncOutcome], object]) -> None:
        if self._task is None:
            raise RuntimeError("Sync has not been scheduled")

        def _forward(task: asyncio.Task[SyncOutcome]) -> None:
            if task.cancelled():
                return
            callback(task.result())

        self._task.add_done_callback(_forward)

    async def wait(self) -> SyncOutcome:
        if self._task is None:
            raise RuntimeError("Sync has not been scheduled")
        return await asyncio.shield(self._task)

    def _attach(self, task: asyncio.Task[SyncOutcome]) -> None:
        self._task = task


class LibrarySyncEngine:
    def __init__(
        self,
        *,
        catalog: CatalogClient,
        auth: CatalogAuthProvider,
        unit_of_work_factory: UnitOfWorkFactory,
        detail_queue: DetailResolutionQueue,
        failure_sink: FailureSink,
        page_size: int = DEFAULT_LIBRARY_PAGE_SIZE,
    ) -> None:
        if page_size < 1:
            raise ValueError("page_size must be at least 1")
        self._catalog = catalog
        self._auth = auth
        self._unit_of_work_factory = unit_of_work_factory
        self._detail_queue = detail_queue
        self._failure_sink = failure_sink
        self._page_size = page_size
        self._tasks: set[asyncio.Task[SyncOutcome]] = set()

    def start(self, user_id: UUID) -> SyncHandle:
        """Schedule a sync for ``user_id`` and return immediately.

        Raises ``ValidationError`` synchronously for unknown users or users
        without a catalog credential.
        """

        with self._unit_of_work_factory() as uow:
            user = uow.repositories.users.get(user_id)
        if user is None:
            raise ValidationError(f"Unknown user: {user_id}")
        if user.catalog_credential is None:
            raise ValidationError(f"User {user_id} has no catalog credential")

        handle = SyncHandle(user_id)
        sync_pass = _SyncPass(user_id=user_id, credential=user.catalog_credential)
        task = asyncio.create_task(self._run(sync_pass, handle), name=f"library-sync-{user_id}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        handle._attach(task)  # noqa: SLF001
        return handle

    async def run(self, user_id: UUID) -> SyncOutcome:
        return await self.start(user_id).wait()

    async def _run(self, sync_pass: _SyncPass, handle: SyncHandle) -> SyncOutcome:
        handle.status = SyncStatus.RUNNING
        outcome = SyncOutcome(user_id=sync_pass.user_id)
        log.info("Library sync started for user %s", sync_pass.user_id)
        try:
            async for page in self._iter_pages(sync_pass):
                outcome.pages_fetched += 1
                for artist_ref in self._new_primary_artists(page, sync_pass):
                    outcome.artists_discovered += 1
                    artist, created = self._discover(artist_ref)
                    if created:
                        outcome.artists_created += 1
                    if self._assign(sync_pass.user_id, artist):
                        outcome.artists_assigned += 1
                    await asyncio.sleep(0)
        except StoreConflict as exc:
            outcome.error = f"{type(exc).__name__}: {exc}"
            self._report(FailureKind.SYNC_ABORTED, sync_pass, outcome)
        except SpotifierError as exc:
            outcome.error = f"{type(exc).__name__}: {exc}"
            self._report(FailureKind.PAGE_FETCH, sync_pass, outcome)
        except Exception as exc:  # noqa: BLE001
            log.exception("Library sync crashed for user %s", sync_pass.user_id)
            outcome.error = f"{type(exc).__name__}: {exc}"
            self._report(FailureKind.SYNC_ABORTED, sync_pass, outcome)
        else:
            outcome.succeeded = True

        handle.status = SyncStatus.SUCCEEDED if outcome.succeeded else SyncStatus.FAILED
        log.info(
            "Library sync finished for user %s: succeeded=%s, pages=%d, discovered=%d, created=%d",
            sync_pass.user_id,
            outcome.succeeded,
            outcome.pages_fetched,
            outcome.artists_discovered,
            outcome.artists_created,
        )
        return outcome

    async def _iter_pages(self, sync_pass: _SyncPass) -> AsyncIterator[LibraryPage]:
        offset = 0
        while True:
            page = await self._fetch_page(sync_pass, offset)
            yield page
            if page.consumed == 0:
                return
            offset += page.consumed
            if offset >= page.total:
                return
            await asyncio.sleep(0)

    async def _fetch_page(self, sync_pass: _SyncPass, offset: int) -> LibraryPage:
        if not sync_pass.refreshed and sync_pass.credential.is_expired():
            await self._refresh_credential(sync_pass)
        try:
            return await self._catalog.get_saved_library_page(
                sync_pass.credential, offset=offset, limit=self._page_size
            )
        except AuthExpired:
            if sync_pass.refreshed:
                raise
            log.info("Catalog credential for user %s expired, refreshing", sync_pass.user_id)
        await self._refresh_credential(sync_pass)
        return await self._catalog.get_saved_library_page(
            sync_pass.credential, offset=offset, limit=self._page_size
        )

    async def _refresh_credential(self, sync_pass: _SyncPass) -> None:
        sync_pass.refreshed = True
        credential = await self._auth.refresh(sync_pass.credential)
        with self._unit_of_work_factory() as uow:
            uow.repositories.users.update_credential(sync_pass.user_id, credential)
            uow.commit()
        sync_pass.credential = credential

    @staticmethod
    def _new_primary_artists(page: LibraryPage, sync_pass: _SyncPass) -> list[CatalogArtistRef]:
        fresh: list[CatalogArtistRef] = []
        for track in page.items:
            if not track.is_playable:
                continue
            primary = track.primary_artist
            if primary is None or primary.catalog_id in sync_pass.seen_catalog_ids:
                continue
            sync_pass.seen_catalog_ids.add(primary.catalog_id)
            fresh.append(primary)
        return fresh

    def _discover(self, artist_ref: CatalogArtistRef) -> tuple[Artist, bool]:
        for attempt in range(1, UPSERT_ATTEMPTS + 1):
            try:
                with self._unit_of_work_factory() as uow:
                    artist, created = uow.repositories.artists.upsert_by_catalog_id(
                        artist_ref.catalog_id, artist_ref.name
                    )
                    uow.commit()
            except StoreConflict:
                if attempt == UPSERT_ATTEMPTS:
                    raise
                log.debug("Upsert conflict for %s, retrying", artist_ref.catalog_id)
                continue
            # also retries artists whose earlier detail job failed or was lost
            if created or artist.most_recent_release.is_placeholder:
                self._detail_queue.enqueue(artist)
            return artist, created
        raise StoreConflict(f"Could not upsert artist {artist_ref.catalog_id}")

    def _assign(self, user_id: UUID, artist: Artist) -> bool:
        with self._unit_of_work_factory() as uow:
            added = uow.repositories.users.assign_artist(user_id, artist.id)
            uow.commit()
        return added

    def _report(self, kind: FailureKind, sync_pass: _SyncPass, outcome: SyncOutcome) -> None:
        self._failure_sink.report(
            FailureEvent(
                kind=kind,
                message=f"Library sync for user {sync_pass.user_id} aborted",
                details={
                    "user_id": str(sync_pass.user_id),
                    "pages_fetched": outcome.pages_fetched,
                    "artists_assigned": outcome.artists_assigned,
                    "error": outcome.error,
                },
            )
        )
