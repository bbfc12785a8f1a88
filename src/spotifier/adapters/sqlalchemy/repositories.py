"""Repository implementations backed by SQLAlchemy sessions."""

from __future__ import annotations

from collections import defaultdict
from typing import TYPE_CHECKING, Any

from sqlalchemy import delete, insert, select, update
from sqlalchemy.exc import IntegrityError

from spotifier.adapters.sqlalchemy.mappings import (
    artist_table,
    user_pending_release_table,
    user_saved_artist_table,
    user_table,
)
from spotifier.domain.errors import NotFound, StoreConflict
from spotifier.domain.model import (
    PLACEHOLDER_RELEASE,
    Artist,
    CatalogCredential,
    Release,
    User,
    new_id,
)

if TYPE_CHECKING:
    import uuid
    from collections.abc import Collection, Sequence

    from sqlalchemy import Row, Table
    from sqlalchemy.orm import Session


def _links_by_owner(
    session: Session,
    table: Table,
    *,
    owner: str,
    target: str,
    owner_ids: Collection[uuid.UUID],
) -> dict[uuid.UUID, frozenset[uuid.UUID]]:
    if not owner_ids:
        return {}
    stmt = select(table.c[owner], table.c[target]).where(table.c[owner].in_(owner_ids))
    grouped: defaultdict[uuid.UUID, set[uuid.UUID]] = defaultdict(set)
    for owner_id, target_id in session.execute(stmt):
        grouped[owner_id].add(target_id)
    return {key: frozenset(values) for key, values in grouped.items()}


class SqlAlchemyArtistRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def upsert_by_catalog_id(self, catalog_id: str, name: str) -> tuple[Artist, bool]:
        stmt = (
            insert(artist_table)
            .values(
                id=new_id(),
                catalog_id=catalog_id,
                name=name,
                release_id=PLACEHOLDER_RELEASE.release_id,
                release_title=PLACEHOLDER_RELEASE.title,
            )
            .prefix_with("OR IGNORE")
        )
        try:
            result = self.session.execute(stmt)
        except IntegrityError as exc:
            raise StoreConflict(f"Artist {catalog_id} could not be inserted") from exc
        created = result.rowcount == 1
        artist = self.get_by_catalog_id(catalog_id)
        if artist is None:
            raise StoreConflict(f"Artist {catalog_id} vanished during upsert")
        return artist, created

    def get(self, artist_id: uuid.UUID) -> Artist | None:
        rows = self._select(artist_table.c.id == artist_id)
        return rows[0] if rows else None

    def get_by_catalog_id(self, catalog_id: str) -> Artist | None:
        rows = self._select(artist_table.c.catalog_id == catalog_id)
        return rows[0] if rows else None

    def get_many(self, artist_ids: Collection[uuid.UUID]) -> Sequence[Artist]:
        if not artist_ids:
            return []
        return self._select(artist_table.c.id.in_(list(artist_ids)))

    def update_release(self, artist_id: uuid.UUID, release: Release) -> None:
        stmt = (
            update(artist_table)
            .where(artist_table.c.id == artist_id)
            .values(
                release_id=release.release_id,
                release_title=release.title,
                release_date=release.release_date,
                release_images=release.images,
            )
        )
        if self.session.execute(stmt).rowcount == 0:
            raise NotFound(f"Unknown artist: {artist_id}")

    def list_batch(self, *, after: uuid.UUID | None, limit: int) -> Sequence[Artist]:
        stmt = select(artist_table).order_by(artist_table.c.id).limit(limit)
        if after is not None:
            stmt = stmt.where(artist_table.c.id > after)
        return self._hydrate(self.session.execute(stmt).all())

    def _select(self, *criteria: Any) -> list[Artist]:
        stmt = select(artist_table).where(*criteria).order_by(artist_table.c.id)
        return self._hydrate(self.session.execute(stmt).all())

    def _hydrate(self, rows: Sequence[Row[Any]]) -> list[Artist]:
        trackers = _links_by_owner(
            self.session,
            user_saved_artist_table,
            owner="artist_id",
            target="user_id",
            owner_ids=[row.id for row in rows],
        )
        return [_artist_from_row(row, trackers.get(row.id, frozenset())) for row in rows]


def _artist_from_row(row: Row[Any], tracking_user_ids: frozenset[uuid.UUID]) -> Artist:
    return Artist(
        id=row.id,
        catalog_id=row.catalog_id,
        name=row.name,
        most_recent_release=Release(
            release_id=row.release_id,
            title=row.release_title,
            release_date=row.release_date,
            images=row.release_images or (),
        ),
        tracking_user_ids=tracking_user_ids,
    )


class SqlAlchemyUserRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def add(self, user: User) -> None:
        credential = user.catalog_credential
        stmt = insert(user_table).values(
            id=user.id,
            display_name=user.display_name,
            access_token=credential.access_token if credential else None,
            refresh_token=credential.refresh_token if credential else None,
            token_expires_at=credential.expires_at if credential else None,
            email_address=user.email_address,
            email_confirmed=user.email_confirmed,
            email_confirm_code=user.email_confirm_code,
        )
        try:
            self.session.execute(stmt)
        except IntegrityError as exc:
            raise StoreConflict(f"User {user.display_name!r} already exists") from exc
        for artist_id in user.saved_artist_ids:
            self.assign_artist(user.id, artist_id)

    def get(self, user_id: uuid.UUID) -> User | None:
        users = self._select(user_table.c.id == user_id)
        return users[0] if users else None

    def get_by_display_name(self, display_name: str) -> User | None:
        users = self._select(user_table.c.display_name == display_name)
        return users[0] if users else None

    def update_credential(self, user_id: uuid.UUID, credential: CatalogCredential) -> None:
        self._update(
            user_id,
            access_token=credential.access_token,
            refresh_token=credential.refresh_token,
            token_expires_at=credential.expires_at,
        )

    def assign_artist(self, user_id: uuid.UUID, artist_id: uuid.UUID) -> bool:
        stmt = (
            insert(user_saved_artist_table)
            .values(user_id=user_id, artist_id=artist_id)
            .prefix_with("OR IGNORE")
        )
        try:
            result = self.session.execute(stmt)
        except IntegrityError as exc:
            raise StoreConflict(f"Cannot assign artist {artist_id} to user {user_id}") from exc
        return result.rowcount == 1

    def flag_pending_release(self, artist_id: uuid.UUID) -> int:
        trackers = select(user_saved_artist_table.c.user_id, user_saved_artist_table.c.artist_id).where(
            user_saved_artist_table.c.artist_id == artist_id
        )
        stmt = (
            insert(user_pending_release_table)
            .from_select(["user_id", "artist_id"], trackers)
            .prefix_with("OR IGNORE")
        )
        return self.session.execute(stmt).rowcount

    def list_with_pending_releases(self) -> Sequence[User]:
        pending_user_ids = select(user_pending_release_table.c.user_id).distinct()
        return self._select(user_table.c.id.in_(pending_user_ids))

    def clear_pending_releases(
        self, user_ids: Collection[uuid.UUID], artist_ids: Collection[uuid.UUID]
    ) -> int:
        if not user_ids or not artist_ids:
            return 0
        stmt = (
            delete(user_pending_release_table)
            .where(user_pending_release_table.c.user_id.in_(list(user_ids)))
            .where(user_pending_release_table.c.artist_id.in_(list(artist_ids)))
        )
        return self.session.execute(stmt).rowcount

    def set_email(self, user_id: uuid.UUID, address: str, *, confirm_code: str) -> None:
        self._update(
            user_id,
            email_address=address,
            email_confirmed=False,
            email_confirm_code=confirm_code,
        )

    def mark_email_confirmed(self, user_id: uuid.UUID) -> None:
        self._update(user_id, email_confirmed=True, email_confirm_code=None)

    def clear_email(self, user_id: uuid.UUID) -> None:
        self._update(
            user_id,
            email_address=None,
            email_confirmed=False,
            email_confirm_code=None,
        )

    def _update(self, user_id: uuid.UUID, **values: Any) -> None:
        stmt = update(user_table).where(user_table.c.id == user_id).values(**values)
        if self.session.execute(stmt).rowcount == 0:
            raise NotFound(f"Unknown user: {user_id}")

    def _select(self, *criteria: Any) -> list[User]:
        stmt = select(user_table).where(*criteria).order_by(user_table.c.display_name)
        rows = self.session.execute(stmt).all()
        user_ids = [row.id for row in rows]
        saved = _links_by_owner(
            self.session,
            user_saved_artist_table,
            owner="user_id",
            target="artist_id",
            owner_ids=user_ids,
        )
        pending = _links_by_owner(
            self.session,
            user_pending_release_table,
            owner="user_id",
            target="artist_id",
            owner_ids=user_ids,
        )
        return [
            _user_from_row(row, saved.get(row.id, frozenset()), pending.get(row.id, frozenset()))
            for row in rows
        ]


def _user_from_row(
    row: Row[Any],
    saved_artist_ids: frozenset[uuid.UUID],
    pending_release_artist_ids: frozenset[uuid.UUID],
) -> User:
    credential = None
    if row.access_token is not None:
        credential = CatalogCredential(
            access_token=row.access_token,
            refresh_token=row.refresh_token,
            expires_at=row.token_expires_at,
        )
    return User(
        id=row.id,
        display_name=row.display_name,
        catalog_credential=credential,
        saved_artist_ids=saved_artist_ids,
        pending_release_artist_ids=pending_release_artist_ids,
        email_address=row.email_address,
        email_confirmed=bool(row.email_confirmed),
        email_confirm_code=row.email_confirm_code,
    )
