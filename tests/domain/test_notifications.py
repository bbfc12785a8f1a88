from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING
from uuid import uuid4

from spotifier.domain.model import Artist, Release, User
from spotifier.domain.notifications import (
    NotificationBatcher,
    NotifyOutcome,
    PendingReleaseGroup,
    compose_message,
    group_pending_releases,
    pending_group_key,
)
from spotifier.domain.ports.notification import FailureKind
from tests.helpers.catalog import FakeMailer, make_release
from tests.helpers.store import add_artist, add_user, load_user

if TYPE_CHECKING:
    from collections.abc import Callable

    from spotifier.adapters.sqlalchemy.unit_of_work import SqlAlchemyUnitOfWork
    from spotifier.domain.ports.notification import RecordingFailureSink

    UowFactory = Callable[[], SqlAlchemyUnitOfWork]


def test_group_key_ignores_order() -> None:
    a, b = uuid4(), uuid4()

    assert pending_group_key([a, b]) == pending_group_key([b, a])
    assert pending_group_key([a]) != pending_group_key([a, b])


def test_users_with_identical_sets_share_a_group() -> None:
    a, b = uuid4(), uuid4()
    first = User(display_name="first", pending_release_artist_ids=frozenset({a, b}))
    second = User(display_name="second", pending_release_artist_ids=frozenset({b, a}))
    third = User(display_name="third", pending_release_artist_ids=frozenset({a}))
    idle = User(display_name="idle")

    groups = group_pending_releases([first, second, third, idle])

    assert len(groups) == 2
    by_size = {len(group.users): group for group in groups}
    assert by_size[2].user_ids == {first.id, second.id}
    assert by_size[2].artist_ids == {a, b}
    assert by_size[1].user_ids == {third.id}


def test_subject_lists_three_names_then_a_count() -> None:
    artists = [
        Artist(catalog_id=f"c{index}", name=name, most_recent_release=make_release(f"r{index}"))
        for index, name in enumerate(["Delta", "alpha", "Charlie", "Bravo"])
    ]
    group = PendingReleaseGroup(
        key="k",
        artist_ids=frozenset(artist.id for artist in artists),
        users=(User(display_name="u", email_address="u@example.com", email_confirmed=True),),
    )

    message = compose_message(group, artists)

    assert message.subject == "New music from alpha, Bravo, Charlie and 1 more"
    assert message.recipients == ("u@example.com",)
    assert [entry["name"] for entry in message.context["artists"]] == [
        "alpha",
        "Bravo",
        "Charlie",
        "Delta",
    ]


def test_message_context_carries_release_details() -> None:
    release = Release(release_id="r1", title="Album", release_date="2024-05-01")
    artist = Artist(catalog_id="c1", name="Solo", most_recent_release=release)
    group = PendingReleaseGroup(key="k", artist_ids=frozenset({artist.id}), users=())

    message = compose_message(group, [artist])

    assert message.subject == "New music from Solo"
    assert message.context["artists"][0]["release"] == {
        "id": "r1",
        "title": "Album",
        "release_date": "2024-05-01",
        "images": [],
    }


def _seed_pending(uow: UowFactory) -> tuple[User, User, User, Artist, Artist]:
    first = add_user(uow, "first", email="first@example.com")
    second = add_user(uow, "second", email="second@example.com")
    third = add_user(uow, "third", email="third@example.com")
    artist_a = add_artist(uow, "cat-a", "A", release=make_release("a1"), tracked_by=(first, second, third))
    artist_b = add_artist(uow, "cat-b", "B", release=make_release("b1"), tracked_by=(first, second))
    with uow() as unit:
        unit.repositories.users.flag_pending_release(artist_a.id)
        unit.repositories.users.flag_pending_release(artist_b.id)
        unit.commit()
    return first, second, third, artist_a, artist_b


def _notify(uow: UowFactory, mailer: FakeMailer, sink: RecordingFailureSink) -> NotifyOutcome:
    batcher = NotificationBatcher(unit_of_work_factory=uow, mailer=mailer, failure_sink=sink)
    return asyncio.run(batcher.notify())


def test_one_message_per_group_and_flags_cleared(
    sqlite_unit_of_work: UowFactory, failure_sink: RecordingFailureSink
) -> None:
    first, second, third, _, _ = _seed_pending(sqlite_unit_of_work)
    mailer = FakeMailer()

    outcome = _notify(sqlite_unit_of_work, mailer, failure_sink)

    assert outcome.groups == 2
    assert outcome.sent == 2
    assert outcome.users_cleared == 3
    recipients = sorted(message.recipients for message in mailer.sent)
    assert recipients == [("first@example.com", "second@example.com"), ("third@example.com",)]
    for user in (first, second, third):
        assert load_user(sqlite_unit_of_work, user).pending_release_artist_ids == frozenset()


def test_failed_send_keeps_flags_for_next_cycle(
    sqlite_unit_of_work: UowFactory, failure_sink: RecordingFailureSink
) -> None:
    first, _, _, artist_a, artist_b = _seed_pending(sqlite_unit_of_work)

    outcome = _notify(sqlite_unit_of_work, FakeMailer(fail=True), failure_sink)

    assert outcome.sent == 0
    assert outcome.failed == 2
    assert load_user(sqlite_unit_of_work, first).pending_release_artist_ids == {
        artist_a.id,
        artist_b.id,
    }
    assert len(failure_sink.of_kind(FailureKind.SEND)) == 2

    retry = _notify(sqlite_unit_of_work, FakeMailer(), failure_sink)
    assert retry.sent == 2


def test_mailer_exception_counts_as_failed_send(
    sqlite_unit_of_work: UowFactory, failure_sink: RecordingFailureSink
) -> None:
    first, _, _, _, _ = _seed_pending(sqlite_unit_of_work)

    outcome = _notify(
        sqlite_unit_of_work, FakeMailer(raises=ConnectionError("refused")), failure_sink
    )

    assert outcome.failed == 2
    assert len(load_user(sqlite_unit_of_work, first).pending_release_artist_ids) == 2


def test_unconfirmed_addresses_are_not_mailed(
    sqlite_unit_of_work: UowFactory, failure_sink: RecordingFailureSink
) -> None:
    pending = add_user(sqlite_unit_of_work, "pending", email="p@example.com", confirmed=False)
    artist = add_artist(sqlite_unit_of_work, "cat-a", release=make_release("a1"), tracked_by=(pending,))
    with sqlite_unit_of_work() as uow:
        uow.repositories.users.flag_pending_release(artist.id)
        uow.commit()
    mailer = FakeMailer()

    outcome = _notify(sqlite_unit_of_work, mailer, failure_sink)

    assert outcome.groups == 0
    assert mailer.sent == []
    assert load_user(sqlite_unit_of_work, pending).pending_release_artist_ids == {artist.id}


def test_only_mailed_artists_are_cleared(
    sqlite_unit_of_work: UowFactory, failure_sink: RecordingFailureSink
) -> None:
    user = add_user(sqlite_unit_of_work, "solo", email="solo@example.com")
    artist_a = add_artist(sqlite_unit_of_work, "cat-a", release=make_release("a1"), tracked_by=(user,))
    artist_b = add_artist(sqlite_unit_of_work, "cat-b", release=make_release("b1"), tracked_by=(user,))
    with sqlite_unit_of_work() as uow:
        uow.repositories.users.flag_pending_release(artist_a.id)
        uow.commit()

    batcher = NotificationBatcher(
        unit_of_work_factory=sqlite_unit_of_work, mailer=FakeMailer(), failure_sink=failure_sink
    )
    groups = batcher.pending_groups()
    with sqlite_unit_of_work() as uow:
        uow.repositories.users.flag_pending_release(artist_b.id)
        uow.commit()
    for group in groups:
        batcher._clear(group)  # noqa: SLF001

    assert load_user(sqlite_unit_of_work, user).pending_release_artist_ids == {artist_b.id}
