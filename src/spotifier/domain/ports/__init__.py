"""Domain port definitions for adapters."""

from __future__ import annotations

from .catalog import (
    ArtistDetail,
    ArtistSearchResult,
    CatalogArtistRef,
    CatalogAuthProvider,
    CatalogClient,
    LibraryPage,
    LibraryTrack,
    ReleaseSnapshot,
)
from .notification import (
    FailureEvent,
    FailureKind,
    FailureSink,
    Mailer,
    MailMessage,
    RecordingFailureSink,
    SendResult,
)
from .persistence import ArtistRepository, UserRepository
from .unit_of_work import StoreRepositories, UnitOfWork, UnitOfWorkFactory

__all__ = [
    "ArtistDetail",
    "ArtistRepository",
    "ArtistSearchResult",
    "CatalogArtistRef",
    "CatalogAuthProvider",
    "CatalogClient",
    "FailureEvent",
    "FailureKind",
    "FailureSink",
    "LibraryPage",
    "LibraryTrack",
    "MailMessage",
    "Mailer",
    "RecordingFailureSink",
    "ReleaseSnapshot",
    "SendResult",
    "StoreRepositories",
    "UnitOfWork",
    "UnitOfWorkFactory",
    "UserRepository",
]
