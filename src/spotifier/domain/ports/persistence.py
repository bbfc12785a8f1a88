"""Ports for persisting artists and users."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Collection, Sequence
    from uuid import UUID

    from spotifier.domain.model import Artist, CatalogCredential, Release, User


@runtime_checkable
class ArtistRepository(Protocol):
    """Persistence contract for artists, keyed uniquely by catalog id."""

    def upsert_by_catalog_id(self, catalog_id: str, name: str) -> tuple[Artist, bool]:
        """Return the artist for ``catalog_id``, creating it atomically if absent.

        The flag is ``True`` only for the call that actually inserted the row.
        """
        ...

    def get(self, artist_id: UUID) -> Artist | None: ...

    def get_by_catalog_id(self, catalog_id: str) -> Artist | None: ...

    def get_many(self, artist_ids: Collection[UUID]) -> Sequence[Artist]: ...

    def update_release(self, artist_id: UUID, release: Release) -> None: ...

    def list_batch(self, *, after: UUID | None, limit: int) -> Sequence[Artist]:
        """Return up to ``limit`` artists ordered by id, strictly after ``after``."""
        ...


@runtime_checkable
class UserRepository(Protocol):
    """Persistence contract for users, their library and pending releases."""

    def add(self, user: User) -> None: ...

    def get(self, user_id: UUID) -> User | None: ...

    def get_by_display_name(self, display_name: str) -> User | None: ...

    def update_credential(self, user_id: UUID, credential: CatalogCredential) -> None: ...

    def assign_artist(self, user_id: UUID, artist_id: UUID) -> bool:
        """Add the artist to the user's library; ``False`` if it was already there."""
        ...

    def flag_pending_release(self, artist_id: UUID) -> int:
        """Mark ``artist_id`` pending for every user tracking it; return rows added."""
        ...

    def list_with_pending_releases(self) -> Sequence[User]: ...

    def clear_pending_releases(self, user_ids: Collection[UUID], artist_ids: Collection[UUID]) -> int:
        ...

    def set_email(self, user_id: UUID, address: str, *, confirm_code: str) -> None: ...

    def mark_email_confirmed(self, user_id: UUID) -> None: ...

    def clear_email(self, user_id: UUID) -> None: ...
