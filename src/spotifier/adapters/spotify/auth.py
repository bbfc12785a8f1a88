"""Spotify token handling backed by spotipy's OAuth managers."""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime
from logging import getLogger
from typing import TYPE_CHECKING, Any, cast

from spotipy.cache_handler import MemoryCacheHandler
from spotipy.oauth2 import SpotifyClientCredentials, SpotifyOAuth, SpotifyOauthError

from spotifier.domain.errors import AuthExpired, UpstreamUnavailable
from spotifier.domain.model import CatalogCredential

if TYPE_CHECKING:
    from spotifier.config.spotify import SpotifyConfig

log = getLogger(__name__)


def _expires_at(token_info: dict[str, Any]) -> datetime | None:
    raw = token_info.get("expires_at")
    if raw is None:
        return None
    return datetime.fromtimestamp(int(raw), tz=UTC)


class SpotipyAuthProvider:
    """Refreshes user credentials through the authorization-code refresh grant."""

    def __init__(self, config: SpotifyConfig, *, oauth: SpotifyOAuth | None = None) -> None:
        self._oauth = oauth or SpotifyOAuth(
            client_id=config.client_id,
            client_secret=config.client_secret,
            redirect_uri=config.redirect_uri,
            scope=" ".join(config.scope),
            cache_handler=MemoryCacheHandler(),
            open_browser=False,
        )

    async def refresh(self, credential: CatalogCredential) -> CatalogCredential:
        if not credential.refresh_token:
            raise AuthExpired("Credential has no refresh token")
        try:
            token_info = await asyncio.to_thread(
                self._oauth.refresh_access_token, credential.refresh_token
            )
        except SpotifyOauthError as exc:
            raise AuthExpired(f"Refresh rejected: {exc}") from exc
        except OSError as exc:
            raise UpstreamUnavailable(f"Token endpoint unreachable: {exc}") from exc

        info = cast(dict[str, Any], token_info)
        access_token = info.get("access_token")
        if not access_token:
            raise AuthExpired("Token endpoint returned no access token")
        refreshed = CatalogCredential(
            access_token=str(access_token),
            refresh_token=str(info.get("refresh_token") or credential.refresh_token),
            expires_at=_expires_at(info),
        )
        log.debug("Refreshed user credential, expires at %s", refreshed.expires_at)
        return refreshed


class SpotipyAppTokenProvider:
    """Client-credentials token for server-side catalog reads."""

    def __init__(
        self,
        config: SpotifyConfig,
        *,
        credentials: SpotifyClientCredentials | None = None,
    ) -> None:
        self._credentials = credentials or SpotifyClientCredentials(
            client_id=config.client_id,
            client_secret=config.client_secret,
            cache_handler=MemoryCacheHandler(),
        )

    async def token(self, *, force_refresh: bool = False) -> str:
        try:
            token = await asyncio.to_thread(
                self._credentials.get_access_token,
                as_dict=False,
                check_cache=not force_refresh,
            )
        except SpotifyOauthError as exc:
            raise AuthExpired(f"Client credentials rejected: {exc}") from exc
        except OSError as exc:
            raise UpstreamUnavailable(f"Token endpoint unreachable: {exc}") from exc
        return str(token)
