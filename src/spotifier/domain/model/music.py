"""Catalog-side entities: artists and their most recent release."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Final

from .base import Entity

if TYPE_CHECKING:
    from uuid import UUID

PLACEHOLDER_RELEASE_TITLE: Final[str] = "recent release information pending from Spotify"


@dataclass(frozen=True, slots=True)
class ReleaseImage:
    url: str
    width: int | None = None
    height: int | None = None


@dataclass(frozen=True, slots=True)
class Release:
    """A single or album as last observed on the catalog.

    ``release_id`` is ``None`` only for the placeholder stored on freshly
    discovered artists whose detail has not been resolved yet.
    """

    release_id: str | None
    title: str
    release_date: str | None = None
    images: tuple[ReleaseImage, ...] = ()

    @property
    def is_placeholder(self) -> bool:
        return self.release_id is None


PLACEHOLDER_RELEASE: Final[Release] = Release(release_id=None, title=PLACEHOLDER_RELEASE_TITLE)


@dataclass(eq=False, kw_only=True)
class Artist(Entity):
    catalog_id: str
    name: str
    most_recent_release: Release = PLACEHOLDER_RELEASE
    tracking_user_ids: frozenset[UUID] = field(default_factory=frozenset["UUID"])

    def accepts_release(self, observed: Release) -> bool:
        """Whether ``observed`` should overwrite the stored release."""

        if observed.release_id is None:
            return False
        return observed.release_id != self.most_recent_release.release_id

    def has_new_release(self, observed: Release) -> bool:
        """Whether ``observed`` is a release the tracking users have not seen.

        Artists still on the placeholder never count: their first release comes
        from detail resolution, not from a scan.
        """

        if self.most_recent_release.is_placeholder:
            return False
        return self.accepts_release(observed)
