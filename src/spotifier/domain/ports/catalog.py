"""Ports for reading the external music catalog."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

    from spotifier.domain.model import CatalogCredential, Release


@dataclass(frozen=True, slots=True)
class CatalogArtistRef:
    catalog_id: str
    name: str


@dataclass(frozen=True, slots=True)
class LibraryTrack:
    """A saved track reduced to what library sync needs."""

    artists: tuple[CatalogArtistRef, ...]
    available_markets: tuple[str, ...] = ()

    @property
    def primary_artist(self) -> CatalogArtistRef | None:
        """The first credited artist, or ``None`` when it has no catalog id."""

        if not self.artists or not self.artists[0].catalog_id:
            return None
        return self.artists[0]

    @property
    def is_playable(self) -> bool:
        return bool(self.available_markets)


@dataclass(frozen=True, slots=True)
class LibraryPage:
    items: tuple[LibraryTrack, ...]
    total: int
    offset: int = 0
    # entries the catalog returned, including ones dropped during translation
    returned: int | None = None

    @property
    def consumed(self) -> int:
        """How far this page moves the library offset."""

        return len(self.items) if self.returned is None else self.returned


@dataclass(frozen=True, slots=True)
class ArtistSearchResult:
    catalog_id: str
    name: str
    image_url: str | None = None


@dataclass(frozen=True, slots=True)
class ArtistDetail:
    catalog_id: str
    name: str
    most_recent_release: Release | None = None


@dataclass(frozen=True, slots=True)
class ReleaseSnapshot:
    """Latest release per artist catalog id, as published by the catalog."""

    releases: Mapping[str, Release] = field(default_factory=dict["str", "Release"])

    def release_for(self, catalog_id: str) -> Release | None:
        return self.releases.get(catalog_id)

    def __len__(self) -> int:
        return len(self.releases)


@runtime_checkable
class CatalogClient(Protocol):
    """Read-only access to the catalog; no persistent side effects."""

    async def get_saved_library_page(
        self,
        credential: CatalogCredential,
        *,
        offset: int,
        limit: int,
    ) -> LibraryPage: ...

    async def get_artist_detail(self, catalog_artist_id: str) -> ArtistDetail: ...

    async def get_full_catalog_releases(self) -> ReleaseSnapshot: ...

    async def search_artists(self, query: str, *, limit: int) -> Sequence[ArtistSearchResult]: ...


@runtime_checkable
class CatalogAuthProvider(Protocol):
    """Exchanges an expired user credential for a fresh one."""

    async def refresh(self, credential: CatalogCredential) -> CatalogCredential: ...
