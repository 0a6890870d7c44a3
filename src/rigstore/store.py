"""The RecordStore protocol: single-rig issue persistence.

FederatedStore depends only on this interface, so any conforming backend
(the bundled FileStore, or anything passed as an opener) is interchangeable.
Backends are pure CRUD; dependency rules live in FederatedStore.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Callable

    from rigstore.models import CreateOpts, Issue, ListFilter


@runtime_checkable
class RecordStore(Protocol):
    def get(self, id: str) -> Issue:  # noqa: A002
        """Return the issue. Raises NotFoundError."""
        ...

    def modify(self, id: str, fn: Callable[[Issue], None]) -> None:  # noqa: A002
        """Read id, apply fn in place, write it back atomically. Raises NotFoundError."""
        ...

    def delete(self, id: str) -> None:  # noqa: A002
        ...

    def create(self, issue: Issue, opts: CreateOpts | None = None) -> str:
        """Store a new issue and return its id (generated unless issue.id is set)."""
        ...

    def list(self, filter: ListFilter | None = None) -> list[Issue]:  # noqa: A002
        ...

    def get_next_child_id(self, parent_id: str) -> str:
        ...

    def init(self) -> None:
        ...

    def doctor(self, fix: bool = False) -> list[str]:
        """Return human-readable problems; repair them when fix is set."""
        ...
