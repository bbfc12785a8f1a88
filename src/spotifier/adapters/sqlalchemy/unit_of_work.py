"""SQLAlchemy-backed unit of work for the artist and user store."""

from __future__ import annotations

from dataclasses import dataclass
from logging import getLogger
from typing import TYPE_CHECKING, Literal

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from spotifier.adapters.sqlalchemy.mappings import create_all_tables
from spotifier.adapters.sqlalchemy.repositories import (
    SqlAlchemyArtistRepository,
    SqlAlchemyUserRepository,
)
from spotifier.config.storage import get_database_config
from spotifier.domain.ports.unit_of_work import StoreRepositories

if TYPE_CHECKING:
    from types import TracebackType

    from sqlalchemy.engine import Engine

log = getLogger(__name__)


class StartupError(RuntimeError):
    """Raised when the store is used before ``startup()`` or reconfigured by accident."""


@dataclass(slots=True)
class _AdapterState:
    engine: Engine | None = None
    session_factory: sessionmaker[Session] | None = None


_STATE = _AdapterState()


def startup(
    *,
    engine: Engine | None = None,
    database_uri: str | None = None,
    force: bool = False,
) -> None:
    """Bind the store to an engine and create missing tables.

    A second call raises unless ``force`` is set; the previous engine is then
    disposed.
    """

    if _STATE.engine is not None:
        if not force:
            raise StartupError("Store already started. Pass force=True to reconfigure.")
        if _STATE.engine is not engine:
            _STATE.engine.dispose()

    resolved = engine or create_engine(database_uri or get_database_config().uri)
    create_all_tables(resolved)
    _STATE.engine = resolved
    _STATE.session_factory = sessionmaker(bind=resolved, expire_on_commit=False)
    log.debug("Store started on %s", resolved.url)


def configured_engine() -> Engine | None:
    return _STATE.engine


def is_started() -> bool:
    return _STATE.engine is not None


def shutdown() -> None:
    """Dispose the engine and forget it; mostly used by tests."""

    if _STATE.engine is not None:
        _STATE.engine.dispose()
    _STATE.engine = None
    _STATE.session_factory = None


class SqlAlchemyUnitOfWork:
    """One session per ``with`` block; uncommitted work is rolled back on exit."""

    def __init__(self) -> None:
        if _STATE.session_factory is None:
            raise StartupError(
                "Store not started. Call spotifier.adapters.sqlalchemy.startup() first."
            )
        self._session_factory = _STATE.session_factory
        self._session: Session | None = None
        self._repositories: StoreRepositories | None = None

    def __enter__(self) -> SqlAlchemyUnitOfWork:
        if self._session is not None:
            raise StartupError("Unit of work is already open")
        self._session = self._session_factory()
        self._repositories = StoreRepositories(
            artists=SqlAlchemyArtistRepository(self._session),
            users=SqlAlchemyUserRepository(self._session),
        )
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_value: BaseException | None,
        traceback: TracebackType | None,
    ) -> Literal[False]:
        session = self.session
        session.rollback()
        session.close()
        self._session = None
        self._repositories = None
        return False

    def commit(self) -> None:
        self.session.commit()

    def rollback(self) -> None:
        self.session.rollback()

    @property
    def repositories(self) -> StoreRepositories:
        if self._repositories is None:
            raise StartupError("Unit of work used outside its with block")
        return self._repositories

    @property
    def session(self) -> Session:
        if self._session is None:
            raise StartupError("Unit of work used outside its with block")
        return self._session


if TYPE_CHECKING:
    from spotifier.domain.ports.unit_of_work import UnitOfWork

    _uow_check: UnitOfWork = SqlAlchemyUnitOfWork()
