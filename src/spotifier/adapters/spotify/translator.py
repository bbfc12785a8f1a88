"""Translate Spotify payloads into catalog port values."""

from __future__ import annotations

from typing import TYPE_CHECKING

from spotifier.domain.model import Release, ReleaseImage
from spotifier.domain.ports.catalog import (
    ArtistDetail,
    ArtistSearchResult,
    CatalogArtistRef,
    LibraryPage,
    LibraryTrack,
    ReleaseSnapshot,
)

if TYPE_CHECKING:
    from collections.abc import Iterable

    from .schema import (
        ArtistSearchResponse,
        SavedTracksPage,
        SpotifyAlbum,
        SpotifyArtist,
        SpotifyTrack,
    )


def translate_saved_tracks_page(payload: SavedTracksPage) -> LibraryPage:
    tracks = tuple(
        translate_track(item.track) for item in payload.items if item.track is not None
    )
    return LibraryPage(
        items=tracks,
        total=payload.total,
        offset=payload.offset or 0,
        returned=len(payload.items),
    )


def translate_track(track: SpotifyTrack) -> LibraryTrack:
    # positions matter: the first credited artist is the primary one, even without an id
    return LibraryTrack(
        artists=tuple(_artist_ref(artist) for artist in track.artists),
        available_markets=tuple(track.available_markets),
    )


def translate_album(album: SpotifyAlbum) -> Release:
    return Release(
        release_id=album.id,
        title=album.name,
        release_date=album.release_date,
        images=tuple(
            ReleaseImage(url=image.url, width=image.width, height=image.height)
            for image in album.images
        ),
    )


def translate_artist_detail(
    artist: SpotifyArtist,
    albums: Iterable[SpotifyAlbum],
    *,
    catalog_id: str,
) -> ArtistDetail:
    latest = latest_album(albums)
    return ArtistDetail(
        catalog_id=catalog_id,
        name=artist.name,
        most_recent_release=translate_album(latest) if latest is not None else None,
    )


def translate_artist_search(payload: ArtistSearchResponse) -> tuple[ArtistSearchResult, ...]:
    return tuple(
        ArtistSearchResult(
            catalog_id=artist.id,
            name=artist.name,
            # Spotify lists images widest first
            image_url=artist.images[-1].url if artist.images else None,
        )
        for artist in payload.artists.items
        if artist.id
    )


def latest_album(albums: Iterable[SpotifyAlbum]) -> SpotifyAlbum | None:
    """Pick the album with the latest release date; the first one wins ties."""

    latest: SpotifyAlbum | None = None
    for album in albums:
        if latest is None or _date_key(album) > _date_key(latest):
            latest = album
    return latest


def build_release_snapshot(albums: Iterable[SpotifyAlbum]) -> ReleaseSnapshot:
    """Reduce a list of new releases to the latest one per primary artist."""

    by_artist: dict[str, SpotifyAlbum] = {}
    for album in albums:
        if not album.artists or not album.artists[0].id:
            continue
        catalog_id = album.artists[0].id
        current = by_artist.get(catalog_id)
        if current is None or _date_key(album) > _date_key(current):
            by_artist[catalog_id] = album
    return ReleaseSnapshot(
        releases={catalog_id: translate_album(album) for catalog_id, album in by_artist.items()}
    )


def _artist_ref(artist: SpotifyArtist) -> CatalogArtistRef:
    return CatalogArtistRef(catalog_id=artist.id or "", name=artist.name)


def _date_key(album: SpotifyAlbum) -> str:
    # "2024", "2024-03" and "2024-03-01" all sort correctly as strings
    return album.release_date or ""
