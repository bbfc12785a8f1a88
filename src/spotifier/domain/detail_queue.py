"""Background queue that resolves full artist detail after discovery.

Artists are created from a saved-library scan with only a name and a
placeholder release. The queue fetches each artist's detail from the catalog
and patches the stored release. Jobs are de-duplicated by artist id while they
are queued or running, run in FIFO order, and at most ``concurrency`` of them
talk to the catalog at the same time.
"""

from __future__ import annotations

import asyncio
import inspect
from collections import deque
from dataclasses import dataclass, field
from enum import StrEnum
from logging import getLogger
from typing import TYPE_CHECKING

from spotifier.config.sync import (
    DEFAULT_DETAIL_BACKOFF_SECONDS,
    DEFAULT_DETAIL_CONCURRENCY,
    DEFAULT_DETAIL_MAX_ATTEMPTS,
)
from spotifier.domain.errors import AuthExpired, NotFound, UpstreamUnavailable
from spotifier.domain.ports.notification import FailureEvent, FailureKind

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable
    from uuid import UUID

    from spotifier.domain.model import Artist
    from spotifier.domain.ports.catalog import ArtistDetail, CatalogClient
    from spotifier.domain.ports.notification import FailureSink
    from spotifier.domain.ports.unit_of_work import UnitOfWorkFactory

    type ResultHandler = Callable[[UUID, ArtistDetail], Awaitable[None] | None]

log = getLogger(__name__)

_RETRYABLE = (NotFound, UpstreamUnavailable, AuthExpired)


class JobState(StrEnum):
    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class QueueState(StrEnum):
    RUNNING = "running"
    PAUSED = "paused"


@dataclass(slots=True)
class DetailJob:
    artist_id: UUID
    catalog_id: str
    result_handler: ResultHandler
    state: JobState = JobState.QUEUED
    attempts: int = 0
    error: str | None = None


@dataclass(slots=True)
class QueueStats:
    enqueued: int = 0
    duplicates_skipped: int = 0
    completed: int = 0
    failed: int = 0
    queued: int = 0
    running: int = 0


@dataclass(slots=True)
class _Counters:
    enqueued: int = 0
    duplicates_skipped: int = 0
    completed: int = 0
    failed: int = 0
    running: set[UUID] = field(default_factory=set["UUID"])


class DetailResolutionQueue:
    def __init__(
        self,
        *,
        catalog: CatalogClient,
        unit_of_work_factory: UnitOfWorkFactory,
        failure_sink: FailureSink,
        concurrency: int = DEFAULT_DETAIL_CONCURRENCY,
        max_attempts: int = DEFAULT_DETAIL_MAX_ATTEMPTS,
        backoff_seconds: float = DEFAULT_DETAIL_BACKOFF_SECONDS,
    ) -> None:
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self._catalog = catalog
        self._unit_of_work_factory = unit_of_work_factory
        self._failure_sink = failure_sink
        self._concurrency = concurrency
        self._max_attempts = max_attempts
        self._backoff_seconds = backoff_seconds

        self._state = QueueState.RUNNING
        self._pending: deque[DetailJob] = deque()
        self._active: dict[UUID, DetailJob] = {}
        self._counters = _Counters()
        self._workers: list[asyncio.Task[None]] = []
        self._resumed = asyncio.Event()
        self._resumed.set()
        self._work_available = asyncio.Event()
        self._idle = asyncio.Event()
        self._idle.set()

    @property
    def state(self) -> QueueState:
        return self._state

    @property
    def is_started(self) -> bool:
        return bool(self._workers)

    def enqueue(self, artist: Artist, result_handler: ResultHandler | None = None) -> bool:
        """Queue detail resolution for ``artist``.

        Returns ``False`` without queueing when a job for the same artist is
        already queued or running.
        """

        if artist.id in self._active:
            self._counters.duplicates_skipped += 1
            log.debug("Skipping duplicate detail job for %s", artist.catalog_id)
            return False

        job = DetailJob(
            artist_id=artist.id,
            catalog_id=artist.catalog_id,
            result_handler=result_handler or self._persist_release,
        )
        self._active[artist.id] = job
        self._pending.append(job)
        self._counters.enqueued += 1
        self._idle.clear()
        self._work_available.set()
        log.debug("Queued detail job for %s (queued=%d)", artist.catalog_id, len(self._pending))
        return True

    def pause(self) -> None:
        """Stop starting new jobs. Jobs already running are allowed to finish."""

        if self._state is QueueState.PAUSED:
            return
        self._state = QueueState.PAUSED
        self._resumed.clear()
        log.info("Detail queue paused with %d job(s) queued", len(self._pending))

    def resume(self) -> None:
        if self._state is QueueState.RUNNING:
            return
        self._state = QueueState.RUNNING
        self._resumed.set()
        log.info("Detail queue resumed with %d job(s) queued", len(self._pending))

    def job_state(self, artist_id: UUID) -> JobState | None:
        job = self._active.get(artist_id)
        return job.state if job is not None else None

    def stats(self) -> QueueStats:
        return QueueStats(
            enqueued=self._counters.enqueued,
            duplicates_skipped=self._counters.duplicates_skipped,
            completed=self._counters.completed,
            failed=self._counters.failed,
            queued=len(self._pending),
            running=len(self._counters.running),
        )

    def start(self) -> None:
        """Spawn the worker tasks on the running event loop."""

        if self._workers:
            return
        self._workers = [
            asyncio.create_task(self._work(), name=f"detail-queue-worker-{index}")
            for index in range(self._concurrency)
        ]

    async def close(self) -> None:
        """Cancel the workers. Queued jobs are discarded."""

        workers, self._workers = self._workers, []
        for worker in workers:
            worker.cancel()
        await asyncio.gather(*workers, return_exceptions=True)

    async def join(self) -> None:
        """Wait until no job is queued or running.

        Never returns while the queue is paused with jobs still queued.
        """

        await self._idle.wait()

    async def __aenter__(self) -> DetailResolutionQueue:
        self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    async def _work(self) -> None:
        while True:
            await self._resumed.wait()
            if not self._pending:
                self._work_available.clear()
                await self._work_available.wait()
                continue
            job = self._pending.popleft()
            await self._run(job)

    async def _run(self, job: DetailJob) -> None:
        job.state = JobState.RUNNING
        self._counters.running.add(job.artist_id)
        try:
            await self._resolve(job)
        except Exception as exc:  # noqa: BLE001
            log.exception("Detail job for %s crashed", job.catalog_id)
            self._fail(job, f"{type(exc).__name__}: {exc}")
        finally:
            self._counters.running.discard(job.artist_id)
            self._active.pop(job.artist_id, None)
            if not self._active:
                self._idle.set()

    async def _resolve(self, job: DetailJob) -> None:
        while True:
            job.attempts += 1
            try:
                detail = await self._catalog.get_artist_detail(job.catalog_id)
            except _RETRYABLE as exc:
                job.error = f"{type(exc).__name__}: {exc}"
                if job.attempts >= self._max_attempts:
                    self._fail(job, job.error)
                    return
                delay = self._backoff_seconds * 2 ** (job.attempts - 1)
                log.warning(
                    "Detail lookup for %s failed (attempt %d/%d), retrying in %.1fs: %s",
                    job.catalog_id,
                    job.attempts,
                    self._max_attempts,
                    delay,
                    job.error,
                )
                await asyncio.sleep(delay)
                continue

            outcome = job.result_handler(job.artist_id, detail)
            if inspect.isawaitable(outcome):
                await outcome
            job.state = JobState.COMPLETED
            job.error = None
            self._counters.completed += 1
            return

    def _fail(self, job: DetailJob, error: str) -> None:
        job.state = JobState.FAILED
        job.error = error
        self._counters.failed += 1
        self._failure_sink.report(
            FailureEvent(
                kind=FailureKind.DETAIL_EXHAUSTED,
                message=f"Artist detail for {job.catalog_id} could not be resolved",
                details={
                    "artist_id": str(job.artist_id),
                    "catalog_id": job.catalog_id,
                    "attempts": job.attempts,
                    "error": error,
                },
            )
        )

    def _persist_release(self, artist_id: UUID, detail: ArtistDetail) -> None:
        release = detail.most_recent_release
        if release is None:
            log.info("Artist %s has no releases on the catalog", detail.catalog_id)
            return
        with self._unit_of_work_factory() as uow:
            artists = uow.repositories.artists
            artist = artists.get(artist_id)
            if artist is None:
                log.warning("Artist %s vanished before its detail was stored", artist_id)
                return
            if not artist.accepts_release(release):
                return
            artists.update_release(artist_id, release)
            uow.commit()
        log.debug("Stored release %s for %s", release.release_id, detail.catalog_id)
