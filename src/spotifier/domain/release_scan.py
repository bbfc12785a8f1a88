"""Daily sweep that detects new releases across every tracked artist."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from logging import getLogger
from typing import TYPE_CHECKING

from spotifier.config.sync import DEFAULT_SCAN_BATCH_SIZE
from spotifier.domain.errors import SpotifierError
from spotifier.domain.ports.notification import FailureEvent, FailureKind

if TYPE_CHECKING:
    from uuid import UUID

    from spotifier.domain.detail_queue import DetailResolutionQueue
    from spotifier.domain.model import Artist
    from spotifier.domain.ports.catalog import CatalogClient, ReleaseSnapshot
    from spotifier.domain.ports.notification import FailureSink
    from spotifier.domain.ports.unit_of_work import UnitOfWorkFactory

log = getLogger(__name__)


@dataclass(slots=True)
class ScanOutcome:
    succeeded: bool = False
    snapshot_size: int = 0
    artists_checked: int = 0
    releases_found: int = 0
    users_flagged: int = 0
    error: str | None = None


class ReleaseScanEngine:
    def __init__(
        self,
        *,
        catalog: CatalogClient,
        unit_of_work_factory: UnitOfWorkFactory,
        detail_queue: DetailResolutionQueue,
        failure_sink: FailureSink,
        batch_size: int = DEFAULT_SCAN_BATCH_SIZE,
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self._catalog = catalog
        self._unit_of_work_factory = unit_of_work_factory
        self._detail_queue = detail_queue
        self._failure_sink = failure_sink
        self._batch_size = batch_size

    async def scan(self) -> ScanOutcome:
        """Compare every stored artist against the catalog's latest releases.

        The detail queue is paused for the duration of the sweep and resumed
        afterwards, whatever the outcome. Running the scan twice against the
        same snapshot changes nothing the second time.
        """

        outcome = ScanOutcome()
        log.info("Release scan started")
        self._detail_queue.pause()
        try:
            snapshot = await self._catalog.get_full_catalog_releases()
            outcome.snapshot_size = len(snapshot)
            await self._sweep(snapshot, outcome)
        except SpotifierError as exc:
            outcome.error = f"{type(exc).__name__}: {exc}"
            self._report(outcome)
        except Exception as exc:  # noqa: BLE001
            log.exception("Release scan crashed")
            outcome.error = f"{type(exc).__name__}: {exc}"
            self._report(outcome)
        else:
            outcome.succeeded = True
        finally:
            self._detail_queue.resume()

        log.info(
            "Release scan finished: succeeded=%s, checked=%d, new_releases=%d, users_flagged=%d",
            outcome.succeeded,
            outcome.artists_checked,
            outcome.releases_found,
            outcome.users_flagged,
        )
        return outcome

    async def _sweep(self, snapshot: ReleaseSnapshot, outcome: ScanOutcome) -> None:
        after: UUID | None = None
        while True:
            with self._unit_of_work_factory() as uow:
                batch = list(uow.repositories.artists.list_batch(after=after, limit=self._batch_size))
            if not batch:
                return
            for artist in batch:
                outcome.artists_checked += 1
                flagged = self._check_artist(artist, snapshot)
                if flagged is not None:
                    outcome.releases_found += 1
                    outcome.users_flagged += flagged
                await asyncio.sleep(0)
            after = batch[-1].id

    def _check_artist(self, artist: Artist, snapshot: ReleaseSnapshot) -> int | None:
        observed = snapshot.release_for(artist.catalog_id)
        if observed is None or not artist.has_new_release(observed):
            return None
        with self._unit_of_work_factory() as uow:
            artists = uow.repositories.artists
            current = artists.get(artist.id)
            # re-check inside the transaction; a detail job may have finished meanwhile
            if current is None or not current.has_new_release(observed):
                return None
            artists.update_release(artist.id, observed)
            flagged = uow.repositories.users.flag_pending_release(artist.id)
            uow.commit()
        log.info(
            "New release for %s: %s (%s), %d user(s) flagged",
            artist.name,
            observed.title,
            observed.release_id,
            flagged,
        )
        return flagged

    def _report(self, outcome: ScanOutcome) -> None:
        self._failure_sink.report(
            FailureEvent(
                kind=FailureKind.SCAN_ABORTED,
                message="Release scan aborted; remaining artists are retried next cycle",
                details={
                    "artists_checked": outcome.artists_checked,
                    "releases_found": outcome.releases_found,
                    "error": outcome.error,
                },
            )
        )
