"""Minimal Pydantic models for the Spotify Web API."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class SpotifyBaseModel(BaseModel):
    model_config = ConfigDict(extra="ignore")


class SpotifyImage(SpotifyBaseModel):
    url: str
    width: int | None = None
    height: int | None = None


class SpotifyArtist(SpotifyBaseModel):
    id: str | None = None
    name: str
    images: list[SpotifyImage] = Field(default_factory=list["SpotifyImage"])


class SpotifyAlbum(SpotifyBaseModel):
    id: str
    name: str
    album_type: str | None = None
    release_date: str | None = None
    release_date_precision: str | None = None
    images: list[SpotifyImage] = Field(default_factory=list["SpotifyImage"])
    artists: list[SpotifyArtist] = Field(default_factory=list["SpotifyArtist"])


class SpotifyTrack(SpotifyBaseModel):
    id: str | None = None
    name: str
    artists: list[SpotifyArtist] = Field(default_factory=list["SpotifyArtist"])
    available_markets: list[str] = Field(default_factory=list["str"])


class SavedTrackItem(SpotifyBaseModel):
    # local files and removed tracks come back with a null track
    track: SpotifyTrack | None = None


class SpotifyPage(SpotifyBaseModel):
    href: str | None = None
    limit: int | None = None
    next: str | None = None
    offset: int | None = None
    previous: str | None = None
    total: int = 0


class SavedTracksPage(SpotifyPage):
    items: list[SavedTrackItem] = Field(default_factory=list["SavedTrackItem"])


class AlbumsPage(SpotifyPage):
    items: list[SpotifyAlbum] = Field(default_factory=list["SpotifyAlbum"])


class NewReleasesResponse(SpotifyBaseModel):
    albums: AlbumsPage


class ArtistsPage(SpotifyPage):
    items: list[SpotifyArtist] = Field(default_factory=list["SpotifyArtist"])


class ArtistSearchResponse(SpotifyBaseModel):
    artists: ArtistsPage
