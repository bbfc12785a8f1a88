"""Domain model for tracked artists and their users."""

from __future__ import annotations

from .base import Entity, new_id
from .music import (
    PLACEHOLDER_RELEASE,
    PLACEHOLDER_RELEASE_TITLE,
    Artist,
    Release,
    ReleaseImage,
)
from .user import CREDENTIAL_EXPIRY_MARGIN, CatalogCredential, User

__all__ = [
    "CREDENTIAL_EXPIRY_MARGIN",
    "PLACEHOLDER_RELEASE",
    "PLACEHOLDER_RELEASE_TITLE",
    "Artist",
    "CatalogCredential",
    "Entity",
    "Release",
    "ReleaseImage",
    "User",
    "new_id",
]
