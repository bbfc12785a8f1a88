from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING
from uuid import uuid4

import pytest

from spotifier.adapters.sqlalchemy.repositories import SqlAlchemyArtistRepository
from spotifier.domain.detail_queue import DetailResolutionQueue
from spotifier.domain.errors import StoreConflict, UpstreamUnavailable, ValidationError
from spotifier.domain.library_sync import (
    UPSERT_ATTEMPTS,
    LibrarySyncEngine,
    SyncOutcome,
    SyncStatus,
)
from spotifier.domain.model import CatalogCredential, User
from spotifier.domain.ports.notification import FailureKind
from tests.helpers.catalog import FakeAuthProvider, FakeCatalogClient, make_track, make_tracks
from tests.helpers.store import add_user, count_artists, load_artist, load_user

if TYPE_CHECKING:
    from collections.abc import Callable

    from spotifier.adapters.sqlalchemy.unit_of_work import SqlAlchemyUnitOfWork
    from spotifier.domain.model import Artist
    from spotifier.domain.ports.catalog import LibraryTrack
    from spotifier.domain.ports.notification import RecordingFailureSink

    UowFactory = Callable[[], SqlAlchemyUnitOfWork]


def _engine(
    catalog: FakeCatalogClient,
    uow: UowFactory,
    sink: RecordingFailureSink,
    *,
    auth: FakeAuthProvider | None = None,
    page_size: int = 50,
    max_attempts: int = 3,
) -> tuple[LibrarySyncEngine, DetailResolutionQueue]:
    queue = DetailResolutionQueue(
        catalog=catalog,
        unit_of_work_factory=uow,
        failure_sink=sink,
        max_attempts=max_attempts,
        backoff_seconds=0,
    )
    engine = LibrarySyncEngine(
        catalog=catalog,
        auth=auth or FakeAuthProvider(),
        unit_of_work_factory=uow,
        detail_queue=queue,
        failure_sink=sink,
        page_size=page_size,
    )
    return engine, queue


def _sync(engine: LibrarySyncEngine, user: User) -> SyncOutcome:
    async def scenario() -> SyncOutcome:
        return await engine.run(user.id)

    return asyncio.run(scenario())


def test_every_page_is_fetched_once(
    sqlite_unit_of_work: UowFactory, failure_sink: RecordingFailureSink
) -> None:
    user = add_user(sqlite_unit_of_work, "alice")
    catalog = FakeCatalogClient(tracks=make_tracks(120))
    engine, queue = _engine(catalog, sqlite_unit_of_work, failure_sink)

    outcome = _sync(engine, user)

    assert outcome.succeeded
    assert outcome.pages_fetched == 3
    assert [offset for _, offset, _ in catalog.page_calls] == [0, 50, 100]
    assert outcome.artists_created == 120
    assert len(load_user(sqlite_unit_of_work, user).saved_artist_ids) == 120
    assert queue.stats().enqueued == 120


def test_repeated_artist_in_one_pass_creates_one_job(
    sqlite_unit_of_work: UowFactory, failure_sink: RecordingFailureSink
) -> None:
    user = add_user(sqlite_unit_of_work, "alice")
    tracks = [make_track(("cat-a", "A")) for _ in range(10)]
    engine, queue = _engine(FakeCatalogClient(tracks=tracks), sqlite_unit_of_work, failure_sink)

    outcome = _sync(engine, user)

    assert outcome.artists_discovered == 1
    assert count_artists(sqlite_unit_of_work) == 1
    assert queue.stats().enqueued == 1


def test_only_primary_artist_of_playable_tracks_is_tracked(
    sqlite_unit_of_work: UowFactory, failure_sink: RecordingFailureSink
) -> None:
    user = add_user(sqlite_unit_of_work, "alice")
    tracks = [
        make_track(("cat-a", "A"), ("cat-feat", "Featured")),
        make_track(("cat-gone", "Gone"), markets=()),
    ]
    engine, _ = _engine(FakeCatalogClient(tracks=tracks), sqlite_unit_of_work, failure_sink)

    _sync(engine, user)

    saved = load_user(sqlite_unit_of_work, user).saved_artist_ids
    assert saved == {load_artist(sqlite_unit_of_work, "cat-a").id}
    assert count_artists(sqlite_unit_of_work) == 1


def test_empty_library_succeeds_after_one_page(
    sqlite_unit_of_work: UowFactory, failure_sink: RecordingFailureSink
) -> None:
    user = add_user(sqlite_unit_of_work, "alice")
    engine, _ = _engine(FakeCatalogClient(), sqlite_unit_of_work, failure_sink)

    outcome = _sync(engine, user)

    assert outcome.succeeded
    assert outcome.pages_fetched == 1
    assert outcome.artists_discovered == 0


def test_rejected_token_is_refreshed_once_and_persisted(
    sqlite_unit_of_work: UowFactory, failure_sink: RecordingFailureSink
) -> None:
    user = add_user(
        sqlite_unit_of_work,
        "alice",
        credential=CatalogCredential(access_token="stale", refresh_token="refresh"),
    )
    auth = FakeAuthProvider()
    catalog = FakeCatalogClient(tracks=make_tracks(60), valid_tokens={"fresh-1"})
    engine, _ = _engine(catalog, sqlite_unit_of_work, failure_sink, auth=auth)

    outcome = _sync(engine, user)

    assert outcome.succeeded
    assert auth.calls == 1
    assert [token for token, _, _ in catalog.page_calls] == ["stale", "fresh-1", "fresh-1"]
    stored = load_user(sqlite_unit_of_work, user).catalog_credential
    assert stored is not None
    assert stored.access_token == "fresh-1"
    assert stored.refresh_token == "refresh"


def test_second_rejection_aborts_without_another_refresh(
    sqlite_unit_of_work: UowFactory, failure_sink: RecordingFailureSink
) -> None:
    user = add_user(sqlite_unit_of_work, "alice")
    auth = FakeAuthProvider()
    catalog = FakeCatalogClient(tracks=make_tracks(5), valid_tokens=set())
    engine, _ = _engine(catalog, sqlite_unit_of_work, failure_sink, auth=auth)

    outcome = _sync(engine, user)

    assert not outcome.succeeded
    assert auth.calls == 1
    assert len(catalog.page_calls) == 2
    assert len(failure_sink.of_kind(FailureKind.PAGE_FETCH)) == 1


def test_expired_credential_is_refreshed_before_first_request(
    sqlite_unit_of_work: UowFactory, failure_sink: RecordingFailureSink
) -> None:
    expired = CatalogCredential(
        access_token="old",
        refresh_token="refresh",
        expires_at=datetime.now(UTC) - timedelta(hours=1),
    )
    user = add_user(sqlite_unit_of_work, "alice", credential=expired)
    auth = FakeAuthProvider()
    catalog = FakeCatalogClient(tracks=make_tracks(3))
    engine, _ = _engine(catalog, sqlite_unit_of_work, failure_sink, auth=auth)

    _sync(engine, user)

    assert auth.calls == 1
    assert [token for token, _, _ in catalog.page_calls] == ["fresh-1"]


def test_failure_mid_sync_keeps_earlier_assignments(
    sqlite_unit_of_work: UowFactory, failure_sink: RecordingFailureSink
) -> None:
    user = add_user(sqlite_unit_of_work, "alice")
    catalog = FakeCatalogClient(tracks=make_tracks(100), fail_at_offset=50)
    engine, _ = _engine(catalog, sqlite_unit_of_work, failure_sink)

    outcome = _sync(engine, user)

    assert not outcome.succeeded
    assert outcome.artists_assigned == 50
    assert len(load_user(sqlite_unit_of_work, user).saved_artist_ids) == 50
    events = failure_sink.of_kind(FailureKind.PAGE_FETCH)
    assert len(events) == 1
    assert events[0].details["user_id"] == str(user.id)


def test_resync_is_idempotent(
    sqlite_unit_of_work: UowFactory, failure_sink: RecordingFailureSink
) -> None:
    user = add_user(sqlite_unit_of_work, "alice")
    engine, queue = _engine(
        FakeCatalogClient(tracks=make_tracks(7)), sqlite_unit_of_work, failure_sink
    )

    _sync(engine, user)
    second = _sync(engine, user)

    assert second.succeeded
    assert second.artists_created == 0
    assert second.artists_assigned == 0
    assert count_artists(sqlite_unit_of_work) == 7
    assert queue.stats().enqueued == 7


def test_concurrent_syncs_share_artist_records(
    sqlite_unit_of_work: UowFactory, failure_sink: RecordingFailureSink
) -> None:
    alice = add_user(sqlite_unit_of_work, "alice")
    bob = add_user(sqlite_unit_of_work, "bob")
    catalog = FakeCatalogClient(tracks=make_tracks(30))
    engine, queue = _engine(catalog, sqlite_unit_of_work, failure_sink, page_size=10)

    async def scenario() -> list[SyncOutcome]:
        handles = [engine.start(alice.id), engine.start(bob.id)]
        return list(await asyncio.gather(*(handle.wait() for handle in handles)))

    outcomes = asyncio.run(scenario())

    assert all(outcome.succeeded for outcome in outcomes)
    assert sum(outcome.artists_created for outcome in outcomes) == 30
    assert count_artists(sqlite_unit_of_work) == 30
    assert queue.stats().enqueued == 30
    assert load_artist(sqlite_unit_of_work, "artist-0").tracking_user_ids == {alice.id, bob.id}


def test_start_returns_handle_that_reports_completion(
    sqlite_unit_of_work: UowFactory, failure_sink: RecordingFailureSink
) -> None:
    user = add_user(sqlite_unit_of_work, "alice")
    engine, _ = _engine(FakeCatalogClient(tracks=make_tracks(2)), sqlite_unit_of_work, failure_sink)
    seen: list[SyncOutcome] = []

    async def scenario() -> tuple[SyncStatus, SyncStatus]:
        handle = engine.start(user.id)
        handle.add_done_callback(seen.append)
        initial = handle.status
        await handle.wait()
        await asyncio.sleep(0)
        return initial, handle.status

    initial, final = asyncio.run(scenario())

    assert initial is SyncStatus.PENDING
    assert final is SyncStatus.SUCCEEDED
    assert len(seen) == 1
    assert seen[0].artists_created == 2


def test_start_rejects_unknown_user(
    sqlite_unit_of_work: UowFactory, failure_sink: RecordingFailureSink
) -> None:
    engine, _ = _engine(FakeCatalogClient(), sqlite_unit_of_work, failure_sink)

    async def scenario() -> None:
        engine.start(uuid4())

    with pytest.raises(ValidationError):
        asyncio.run(scenario())


def test_start_rejects_user_without_credential(
    sqlite_unit_of_work: UowFactory, failure_sink: RecordingFailureSink
) -> None:
    user = User(display_name="nobody")
    with sqlite_unit_of_work() as uow:
        uow.repositories.users.add(user)
        uow.commit()
    engine, _ = _engine(FakeCatalogClient(), sqlite_unit_of_work, failure_sink)

    async def scenario() -> None:
        engine.start(user.id)

    with pytest.raises(ValidationError):
        asyncio.run(scenario())


def test_null_entries_still_advance_the_offset(
    sqlite_unit_of_work: UowFactory, failure_sink: RecordingFailureSink
) -> None:
    user = add_user(sqlite_unit_of_work, "alice")
    tracks = [*make_tracks(50), *([None] * 50), *make_tracks(50, prefix="late")]
    catalog = FakeCatalogClient(tracks=tracks)
    engine, _ = _engine(catalog, sqlite_unit_of_work, failure_sink)

    outcome = _sync(engine, user)

    assert outcome.succeeded
    assert [offset for _, offset, _ in catalog.page_calls] == [0, 50, 100]
    assert outcome.artists_discovered == 100
    assert load_artist(sqlite_unit_of_work, "late-49").name == "Artist 49"


def test_single_null_entry_does_not_add_a_page(
    sqlite_unit_of_work: UowFactory, failure_sink: RecordingFailureSink
) -> None:
    user = add_user(sqlite_unit_of_work, "alice")
    tracks: list[LibraryTrack | None] = list(make_tracks(100))
    tracks[10] = None
    catalog = FakeCatalogClient(tracks=tracks)
    engine, _ = _engine(catalog, sqlite_unit_of_work, failure_sink)

    outcome = _sync(engine, user)

    assert outcome.pages_fetched == 2
    assert [offset for _, offset, _ in catalog.page_calls] == [0, 50]
    assert outcome.artists_discovered == 99


def test_featured_artist_is_not_promoted_when_primary_has_no_id(
    sqlite_unit_of_work: UowFactory, failure_sink: RecordingFailureSink
) -> None:
    user = add_user(sqlite_unit_of_work, "alice")
    tracks = [make_track(("", "Local Artist"), ("cat-feat", "Featured"))]
    engine, _ = _engine(FakeCatalogClient(tracks=tracks), sqlite_unit_of_work, failure_sink)

    outcome = _sync(engine, user)

    assert outcome.succeeded
    assert outcome.artists_discovered == 0
    assert count_artists(sqlite_unit_of_work) == 0


def test_artist_with_exhausted_detail_job_is_resolved_by_next_sync(
    sqlite_unit_of_work: UowFactory, failure_sink: RecordingFailureSink
) -> None:
    user = add_user(sqlite_unit_of_work, "alice")
    catalog = FakeCatalogClient(
        tracks=make_tracks(1), details={"artist-0": [UpstreamUnavailable("down")]}
    )
    engine, queue = _engine(catalog, sqlite_unit_of_work, failure_sink, max_attempts=1)

    async def scenario() -> tuple[Artist, Artist]:
        async with queue:
            await engine.run(user.id)
            await queue.join()
            after_failure = load_artist(sqlite_unit_of_work, "artist-0")

            catalog.details.clear()
            await engine.run(user.id)
            await queue.join()
            return after_failure, load_artist(sqlite_unit_of_work, "artist-0")

    after_failure, after_resync = asyncio.run(scenario())

    assert after_failure.most_recent_release.is_placeholder
    assert len(failure_sink.of_kind(FailureKind.DETAIL_EXHAUSTED)) == 1
    assert after_resync.most_recent_release.release_id == "artist-0-latest"
    assert queue.stats().enqueued == 2


def _conflicting_upserts(monkeypatch: pytest.MonkeyPatch, conflicts: int) -> list[str]:
    """Make the first ``conflicts`` artist upserts raise; returns every attempted catalog id."""

    attempts: list[str] = []
    upsert = SqlAlchemyArtistRepository.upsert_by_catalog_id

    def conflicting(
        self: SqlAlchemyArtistRepository, catalog_id: str, name: str
    ) -> tuple[Artist, bool]:
        attempts.append(catalog_id)
        if len(attempts) <= conflicts:
            raise StoreConflict(f"Artist {catalog_id} could not be inserted")
        return upsert(self, catalog_id, name)

    monkeypatch.setattr(SqlAlchemyArtistRepository, "upsert_by_catalog_id", conflicting)
    return attempts


def test_upsert_conflict_is_retried(
    sqlite_unit_of_work: UowFactory,
    failure_sink: RecordingFailureSink,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    user = add_user(sqlite_unit_of_work, "alice")
    engine, queue = _engine(
        FakeCatalogClient(tracks=make_tracks(1)), sqlite_unit_of_work, failure_sink
    )
    attempts = _conflicting_upserts(monkeypatch, conflicts=1)

    outcome = _sync(engine, user)

    assert outcome.succeeded
    assert attempts == ["artist-0", "artist-0"]
    assert outcome.artists_created == 1
    assert count_artists(sqlite_unit_of_work) == 1
    assert queue.stats().enqueued == 1


def test_persistent_upsert_conflict_aborts_sync(
    sqlite_unit_of_work: UowFactory,
    failure_sink: RecordingFailureSink,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    user = add_user(sqlite_unit_of_work, "alice")
    engine, _ = _engine(FakeCatalogClient(tracks=make_tracks(3)), sqlite_unit_of_work, failure_sink)
    attempts = _conflicting_upserts(monkeypatch, conflicts=100)

    outcome = _sync(engine, user)

    assert not outcome.succeeded
    assert len(attempts) == UPSERT_ATTEMPTS
    assert outcome.error is not None
    assert outcome.error.startswith("StoreConflict")
    assert count_artists(sqlite_unit_of_work) == 0
    assert len(failure_sink.of_kind(FailureKind.SYNC_ABORTED)) == 1
    assert failure_sink.of_kind(FailureKind.PAGE_FETCH) == []
