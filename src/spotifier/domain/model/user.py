"""User-facing entities."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Final

from .base import Entity

if TYPE_CHECKING:
    from uuid import UUID

# tokens are treated as expired slightly early so a request never races the expiry
CREDENTIAL_EXPIRY_MARGIN: Final[timedelta] = timedelta(seconds=60)


@dataclass(frozen=True, slots=True)
class CatalogCredential:
    access_token: str
    refresh_token: str | None = None
    expires_at: datetime | None = None

    def is_expired(self, *, now: datetime | None = None) -> bool:
        if self.expires_at is None:
            return False
        current = now or datetime.now(UTC)
        return current >= self.expires_at - CREDENTIAL_EXPIRY_MARGIN

    def refreshed(self, access_token: str, *, expires_at: datetime | None) -> CatalogCredential:
        return replace(self, access_token=access_token, expires_at=expires_at)


@dataclass(eq=False, kw_only=True)
class User(Entity):
    display_name: str
    catalog_credential: CatalogCredential | None = None
    saved_artist_ids: frozenset[UUID] = field(default_factory=frozenset["UUID"])
    pending_release_artist_ids: frozenset[UUID] = field(default_factory=frozenset["UUID"])
    email_address: str | None = None
    email_confirmed: bool = False
    email_confirm_code: str | None = field(default=None, repr=False)

    @property
    def can_receive_mail(self) -> bool:
        return self.email_address is not None and self.email_confirmed
