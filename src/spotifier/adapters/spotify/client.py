"""Async Spotify Web API client implementing the catalog port."""

from __future__ import annotations

from collections.abc import Callable
from logging import getLogger
from typing import TYPE_CHECKING, Final, Protocol, TypeVar

import httpx
import pydantic

from spotifier.adapters.http_resilience import ResilientClient
from spotifier.config.spotify import SPOTIFY_API_BASE_URL, default_spotify_resilience
from spotifier.domain.errors import AuthExpired, NotFound, UpstreamUnavailable

from .schema import (
    AlbumsPage,
    ArtistSearchResponse,
    NewReleasesResponse,
    SavedTracksPage,
    SpotifyAlbum,
    SpotifyArtist,
)
from .translator import (
    build_release_snapshot,
    translate_artist_detail,
    translate_artist_search,
    translate_saved_tracks_page,
)

if TYPE_CHECKING:
    from spotifier.config.http_resilience import ResilienceConfig
    from spotifier.domain.model import CatalogCredential
    from spotifier.domain.ports.catalog import (
        ArtistDetail,
        ArtistSearchResult,
        LibraryPage,
        ReleaseSnapshot,
    )

log = getLogger(__name__)

TModel = TypeVar("TModel", bound=pydantic.BaseModel)

ARTIST_ALBUM_GROUPS: Final[str] = "album,single"
MAX_PAGE_SIZE: Final[int] = 50
# /browse/new-releases stops paging well before this; the cap guards a runaway `next`
MAX_NEW_RELEASE_PAGES: Final[int] = 40
DEFAULT_SEARCH_LIMIT: Final[int] = 5


class AppTokenSource(Protocol):
    async def token(self, *, force_refresh: bool = False) -> str: ...


def should_cache_payload(payload: object) -> bool:
    """Never cache the new-releases listing; the daily scan must see it fresh."""

    return not (isinstance(payload, dict) and "albums" in payload)


def _default_client_factory(config: ResilienceConfig) -> ResilientClient:
    return ResilientClient(config)


class SpotifyCatalogClient:
    def __init__(
        self,
        *,
        app_tokens: AppTokenSource,
        resilience: ResilienceConfig | None = None,
        client_factory: Callable[[ResilienceConfig], ResilientClient] = _default_client_factory,
    ) -> None:
        self._app_tokens = app_tokens
        self._resilience = resilience or default_spotify_resilience()
        self._client = client_factory(self._resilience)

    async def __aenter__(self) -> SpotifyCatalogClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def get_saved_library_page(
        self,
        credential: CatalogCredential,
        *,
        offset: int,
        limit: int,
    ) -> LibraryPage:
        response = await self._get(
            "me/tracks",
            token=credential.access_token,
            params={"offset": offset, "limit": min(limit, MAX_PAGE_SIZE)},
        )
        page = _parse(SavedTracksPage, response)
        return translate_saved_tracks_page(page)

    async def get_artist_detail(self, catalog_artist_id: str) -> ArtistDetail:
        artist_response = await self._get_as_app(f"artists/{catalog_artist_id}")
        artist = _parse(SpotifyArtist, artist_response)
        albums_response = await self._get_as_app(
            f"artists/{catalog_artist_id}/albums",
            params={"include_groups": ARTIST_ALBUM_GROUPS, "limit": MAX_PAGE_SIZE},
        )
        albums = _parse(AlbumsPage, albums_response)
        return translate_artist_detail(artist, albums.items, catalog_id=catalog_artist_id)

    async def get_full_catalog_releases(self) -> ReleaseSnapshot:
        albums: list[SpotifyAlbum] = []
        offset = 0
        for _ in range(MAX_NEW_RELEASE_PAGES):
            response = await self._get_as_app(
                "browse/new-releases",
                params={"offset": offset, "limit": MAX_PAGE_SIZE},
            )
            page = _parse(NewReleasesResponse, response).albums
            albums.extend(page.items)
            offset += len(page.items)
            if not page.items or page.next is None or offset >= page.total:
                break
        snapshot = build_release_snapshot(albums)
        log.info("Fetched %d new releases covering %d artists", len(albums), len(snapshot))
        return snapshot

    async def search_artists(
        self,
        query: str,
        *,
        limit: int = DEFAULT_SEARCH_LIMIT,
    ) -> tuple[ArtistSearchResult, ...]:
        """Prefix search on artist names; a blank query matches nothing."""

        term = query.strip()
        if not term:
            return ()
        response = await self._get_as_app(
            "search",
            params={"q": f"{term}*", "type": "artist", "limit": min(limit, MAX_PAGE_SIZE)},
        )
        return translate_artist_search(_parse(ArtistSearchResponse, response))

    async def _get_as_app(
        self,
        path: str,
        *,
        params: dict[str, str | int] | None = None,
    ) -> httpx.Response:
        token = await self._app_tokens.token()
        try:
            return await self._get(path, token=token, params=params)
        except AuthExpired:
            log.info("App token rejected, requesting a new one")
        token = await self._app_tokens.token(force_refresh=True)
        return await self._get(path, token=token, params=params)

    async def _get(
        self,
        path: str,
        *,
        token: str,
        params: dict[str, str | int] | None = None,
    ) -> httpx.Response:
        url = path if self._resilience.base_url else f"{SPOTIFY_API_BASE_URL}{path}"
        try:
            response = await self._client.get(
                url,
                params=params,
                headers={"Authorization": f"Bearer {token}"},
            )
        except httpx.HTTPError as exc:
            raise UpstreamUnavailable(f"Spotify request to {path} failed: {exc}") from exc
        _raise_for_status(response, path)
        return response


def _raise_for_status(response: httpx.Response, path: str) -> None:
    status = response.status_code
    if status < 400:
        return
    if status == httpx.codes.UNAUTHORIZED:
        raise AuthExpired(f"Spotify rejected the token for {path}")
    if status == httpx.codes.NOT_FOUND:
        raise NotFound(f"Spotify has no resource at {path}")
    log.warning("Spotify returned %s for %s", status, path)
    raise UpstreamUnavailable(f"Spotify returned {status} for {path}", status_code=status)


def _parse(model: type[TModel], response: httpx.Response) -> TModel:
    try:
        return model.model_validate(response.json())
    except (ValueError, pydantic.ValidationError) as exc:
        raise UpstreamUnavailable(f"Unexpected Spotify payload: {exc}") from exc


if TYPE_CHECKING:
    from spotifier.domain.ports.catalog import CatalogClient

    def _check(client: SpotifyCatalogClient) -> CatalogClient:
        return client
