"""Spotify adapter package."""

from __future__ import annotations

from .auth import SpotipyAppTokenProvider, SpotipyAuthProvider
from .client import SpotifyCatalogClient, should_cache_payload
from .schema import (
    NewReleasesResponse,
    SavedTrackItem,
    SavedTracksPage,
    SpotifyAlbum,
    SpotifyArtist,
    SpotifyTrack,
)
from .translator import (
    build_release_snapshot,
    translate_album,
    translate_artist_detail,
    translate_saved_tracks_page,
)

__all__ = [
    "NewReleasesResponse",
    "SavedTrackItem",
    "SavedTracksPage",
    "SpotifyAlbum",
    "SpotifyArtist",
    "SpotifyCatalogClient",
    "SpotifyTrack",
    "SpotipyAppTokenProvider",
    "SpotipyAuthProvider",
    "build_release_snapshot",
    "should_cache_payload",
    "translate_album",
    "translate_artist_detail",
    "translate_saved_tracks_page",
]
