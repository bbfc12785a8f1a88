"""SQLAlchemy table metadata for the spotifier store."""

from __future__ import annotations

import json
import logging
import uuid
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any, cast

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Dialect,
    ForeignKey,
    MetaData,
    String,
    Table,
    Text,
    TypeDecorator,
    Uuid,
)

from spotifier.domain.model import ReleaseImage

if TYPE_CHECKING:
    from sqlalchemy.engine import Engine

log = logging.getLogger(__name__)

UUIDColumnType = Uuid[uuid.UUID]


class UTCDateTime(TypeDecorator[datetime]):
    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect: Dialect) -> datetime | None:
        _ = dialect
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=UTC)
        return value.astimezone(UTC)

    def process_result_value(self, value: datetime | None, dialect: Dialect) -> datetime | None:
        _ = dialect
        if value is None:
            return None
        return value if value.tzinfo else value.replace(tzinfo=UTC)


class ReleaseImagesType(TypeDecorator[tuple[ReleaseImage, ...]]):
    impl = Text
    cache_ok = True

    def process_bind_param(
        self, value: tuple[ReleaseImage, ...] | None, dialect: Dialect
    ) -> str | None:
        _ = dialect
        if not value:
            return None
        payload = [{"url": image.url, "width": image.width, "height": image.height} for image in value]
        return json.dumps(payload)

    def process_result_value(self, value: str | None, dialect: Dialect) -> tuple[ReleaseImage, ...]:
        _ = dialect
        if value is None:
            return ()
        loaded = json.loads(value)
        if not isinstance(loaded, list):
            return ()
        images: list[ReleaseImage] = []
        for item in cast(list[Any], loaded):
            if isinstance(item, dict) and isinstance(item.get("url"), str):
                entry = cast(dict[str, Any], item)
                images.append(
                    ReleaseImage(url=entry["url"], width=entry.get("width"), height=entry.get("height"))
                )
        return tuple(images)


metadata = MetaData(
    naming_convention={
        "ix": "ix_%(column_0_label)s",
        "uq": "uq_%(table_name)s_%(column_0_label)s",
        "ck": "ck_%(table_name)s_%(constraint_name)s",
        "fk": "fk_%(table_name)s_%(column_0_label)s_%(referred_table_name)s",
        "pk": "pk_%(table_name)s",
    }
)

# Core tables -----------------------------------------------------------------

user_table = Table(
    "user_account",
    metadata,
    Column("id", UUIDColumnType, primary_key=True),
    Column("display_name", String(255), nullable=False, unique=True),
    Column("access_token", Text, nullable=True),
    Column("refresh_token", Text, nullable=True),
    Column("token_expires_at", UTCDateTime(), nullable=True),
    Column("email_address", String(320), nullable=True),
    Column("email_confirmed", Boolean, nullable=False, default=False),
    Column("email_confirm_code", String(64), nullable=True),
)

artist_table = Table(
    "artist",
    metadata,
    Column("id", UUIDColumnType, primary_key=True),
    Column("catalog_id", String(64), nullable=False, unique=True),
    Column("name", String(512), nullable=False),
    Column("release_id", String(64), nullable=True),
    Column("release_title", String(512), nullable=False),
    Column("release_date", String(10), nullable=True),
    Column("release_images", ReleaseImagesType(), nullable=True),
)

# Association tables ----------------------------------------------------------

user_saved_artist_table = Table(
    "user_saved_artist",
    metadata,
    Column(
        "user_id",
        UUIDColumnType,
        ForeignKey("user_account.id", ondelete="CASCADE"),
        primary_key=True,
    ),
    Column(
        "artist_id",
        UUIDColumnType,
        ForeignKey("artist.id", ondelete="CASCADE"),
        primary_key=True,
        index=True,
    ),
)

user_pending_release_table = Table(
    "user_pending_release",
    metadata,
    Column(
        "user_id",
        UUIDColumnType,
        ForeignKey("user_account.id", ondelete="CASCADE"),
        primary_key=True,
    ),
    Column(
        "artist_id",
        UUIDColumnType,
        ForeignKey("artist.id", ondelete="CASCADE"),
        primary_key=True,
    ),
)


def create_all_tables(engine: Engine) -> None:
    """Create database tables for the store metadata."""

    log.info("Creating all tables")
    metadata.create_all(engine)
