"""SQLAlchemy adapter package for spotifier."""

from __future__ import annotations

from .mappings import (
    artist_table,
    create_all_tables,
    metadata,
    user_pending_release_table,
    user_saved_artist_table,
    user_table,
)
from .repositories import SqlAlchemyArtistRepository, SqlAlchemyUserRepository
from .unit_of_work import SqlAlchemyUnitOfWork, shutdown, startup

__all__ = [
    "SqlAlchemyArtistRepository",
    "SqlAlchemyUnitOfWork",
    "SqlAlchemyUserRepository",
    "artist_table",
    "create_all_tables",
    "metadata",
    "shutdown",
    "startup",
    "user_pending_release_table",
    "user_saved_artist_table",
    "user_table",
]
