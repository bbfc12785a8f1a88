"""Unit-of-work abstractions for coordinating repositories."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Callable
    from types import TracebackType

    from spotifier.domain.ports.persistence import ArtistRepository, UserRepository


@dataclass(slots=True)
class StoreRepositories:
    artists: ArtistRepository
    users: UserRepository


@runtime_checkable
class UnitOfWork(Protocol):
    """One self-contained transaction over the store."""

    @property
    def repositories(self) -> StoreRepositories: ...

    def __enter__(self) -> UnitOfWork: ...

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_value: BaseException | None,
        traceback: TracebackType | None,
    ) -> bool: ...

    def commit(self) -> None: ...

    def rollback(self) -> None: ...


type UnitOfWorkFactory = Callable[[], UnitOfWork]
