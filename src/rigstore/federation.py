"""FederatedStore: routes record operations by ID prefix and owns the graph rules.

Single-ID operations (get, modify, delete, get_next_child_id) go to the rig
that owns the ID; create, list, init and doctor always target the local rig.
Dependency edges are stored on both ends (dependencies on the source,
dependents on the target) and every mutation here keeps the two in step,
one record write at a time. Nothing is transactional: a failure partway
through leaves the edges already written in place, and FileStore.doctor
repairs one-sided edges later.

Always go through FederatedStore, even with no routing configured; raw
stores do no cycle detection or parent-child checks.
"""

from __future__ import annotations

import logging
from collections import deque
from typing import TYPE_CHECKING, Protocol

from rigstore.errors import CancelledError, CrossStoreError, CycleError, InvalidInputError, NotFoundError, RigError
from rigstore.filestore import open_rig_store
from rigstore.models import BLOCKS, PARENT_CHILD, STATUS_CLOSED, STATUS_OPEN, Dependency, ListFilter, remove_dep

if TYPE_CHECKING:
    from collections.abc import Callable
    from pathlib import Path

    from rigstore.models import CreateOpts, Issue
    from rigstore.routing import NullRouter, Router
    from rigstore.store import RecordStore

logger = logging.getLogger("rigstore.federation")


class Cancel(Protocol):
    """Anything with is_set(), e.g. threading.Event."""

    def is_set(self) -> bool: ...


def _check(cancel: Cancel | None) -> None:
    if cancel is not None and cancel.is_set():
        msg = "operation cancelled"
        raise CancelledError(msg)


class FederatedStore:
    """Routing-aware RecordStore with dependency-graph validation."""

    def __init__(
        self,
        router: Router | NullRouter,
        local: RecordStore,
        opener: Callable[[Path, str], RecordStore] = open_rig_store,
    ) -> None:
        self._router = router
        self.local = local
        self._opener = opener
        # prefix → opened remote store; lives as long as this instance
        self._stores: dict[str, RecordStore] = {}

    @property
    def router(self) -> Router | NullRouter:
        return self._router

    @property
    def cached_prefixes(self) -> list[str]:
        return sorted(self._stores)

    def store_for(self, id: str) -> RecordStore:  # noqa: A002
        """The store owning id: local unless the router resolves it elsewhere."""
        if self._router.is_absent:
            return self.local
        resolution = self._router.resolve(id)
        if resolution.location is None or not resolution.is_remote:
            return self.local

        store = self._stores.get(resolution.prefix)
        if store is None:
            logger.debug("opening rig %s at %s", resolution.prefix, resolution.location)
            store = self._opener(resolution.location, resolution.prefix)
            self._stores[resolution.prefix] = store
        return store

    def same_store(self, id1: str, id2: str) -> bool:
        return self._router.same_store(id1, id2)

    # ------------------------------------------------------------------
    # Routed single-ID operations
    # ------------------------------------------------------------------

    def get(self, id: str, cancel: Cancel | None = None) -> Issue:  # noqa: A002
        _check(cancel)
        return self.store_for(id).get(id)

    def modify(self, id: str, fn: Callable[[Issue], None], cancel: Cancel | None = None) -> None:  # noqa: A002
        _check(cancel)
        self.store_for(id).modify(id, fn)

    def delete(self, id: str, cancel: Cancel | None = None) -> None:  # noqa: A002
        _check(cancel)
        self.store_for(id).delete(id)

    def get_next_child_id(self, parent_id: str, cancel: Cancel | None = None) -> str:
        _check(cancel)
        return self.store_for(parent_id).get_next_child_id(parent_id)

    def children(self, parent_id: str, cancel: Cancel | None = None) -> list[Issue]:
        """Child issues of parent_id, read through the router; missing ones skipped."""
        parent = self.get(parent_id, cancel)
        result: list[Issue] = []
        for child_id in parent.children():
            try:
                result.append(self.get(child_id, cancel))
            except NotFoundError:
                logger.debug("child %s of %s not found", child_id, parent_id)
        return result

    # ------------------------------------------------------------------
    # Local-only operations
    # ------------------------------------------------------------------

    def create(self, issue: Issue, opts: CreateOpts | None = None, cancel: Cancel | None = None) -> str:
        _check(cancel)
        return self.local.create(issue, opts)

    def list(self, filter: ListFilter | None = None, cancel: Cancel | None = None) -> list[Issue]:  # noqa: A002
        _check(cancel)
        return self.local.list(filter)

    def init(self, cancel: Cancel | None = None) -> None:
        _check(cancel)
        self.local.init()

    def doctor(self, fix: bool = False, cancel: Cancel | None = None) -> list[str]:
        _check(cancel)
        return self.local.doctor(fix)

    # ------------------------------------------------------------------
    # Lifecycle and readiness
    # ------------------------------------------------------------------

    def close(self, id: str, reason: str = "", cancel: Cancel | None = None) -> None:  # noqa: A002
        """Close id, moving it to closed/ in its owning rig."""

        def mark_closed(issue: Issue) -> None:
            issue.status = STATUS_CLOSED
            if reason:
                issue.close_reason = reason

        self.modify(id, mark_closed, cancel)

    def reopen(self, id: str, cancel: Cancel | None = None) -> None:  # noqa: A002
        def mark_open(issue: Issue) -> None:
            if issue.status != STATUS_CLOSED:
                msg = f"{issue.id} is not closed (status={issue.status})"
                raise InvalidInputError(msg)
            issue.status = STATUS_OPEN

        self.modify(id, mark_open, cancel)

    def detach(self, id: str, cancel: Cancel | None = None) -> None:  # noqa: A002
        """Drop every edge touching id from both ends; the record itself stays."""
        issue = self.get(id, cancel)
        for dep in issue.dependencies:
            try:
                self.remove_dependency(id, dep.id, cancel)
            except NotFoundError:
                logger.debug("detach %s: dependency %s already gone", id, dep.id)
        for dep in issue.dependents:
            try:
                self.remove_dependency(dep.id, id, cancel)
            except NotFoundError:
                logger.debug("detach %s: dependent %s already gone", id, dep.id)

    def waiting_on(self, issue: Issue, cancel: Cancel | None = None) -> list[str]:
        """IDs of issue's blocks-type dependencies that are not closed.

        Dependencies are read through the router, so blockers in other rigs
        count. A missing blocker is never closed and keeps blocking.
        """
        waiting: list[str] = []
        for dep_id in issue.dependency_ids(BLOCKS):
            if dep_id in waiting:
                continue
            try:
                if self.get(dep_id, cancel).status == STATUS_CLOSED:
                    continue
            except NotFoundError:
                logger.debug("blocker %s of %s not found", dep_id, issue.id)
            waiting.append(dep_id)
        return waiting

    def ready(self, cancel: Cancel | None = None) -> list[Issue]:
        """Open top-level local issues whose blockers are all closed."""
        return [
            issue
            for issue in self.list(ListFilter(status=STATUS_OPEN, parent=""), cancel)
            if not self.waiting_on(issue, cancel)
        ]

    def blocked(self, cancel: Cancel | None = None) -> list[tuple[Issue, list[str]]]:
        """Open local issues paired with the blockers they are waiting on."""
        result: list[tuple[Issue, list[str]]] = []
        for issue in self.list(ListFilter(status=STATUS_OPEN), cancel):
            waiting = self.waiting_on(issue, cancel)
            if waiting:
                result.append((issue, waiting))
        return result

    # ------------------------------------------------------------------
    # Dependencies
    # ------------------------------------------------------------------

    def add_dependency(
        self,
        issue_id: str,
        depends_on_id: str,
        dep_type: str,
        cancel: Cancel | None = None,
    ) -> None:
        """Record that issue_id depends on depends_on_id.

        parent-child edges reparent issue_id under depends_on_id. Any other
        type is a generic edge, rejected with CycleError if depends_on_id
        already (transitively) depends on issue_id. Repeating a call adds
        no duplicate edge.
        """
        if dep_type == PARENT_CHILD:
            self._reparent(issue_id, depends_on_id, cancel)
            return

        if self._has_cycle(issue_id, depends_on_id, cancel):
            raise CycleError(issue_id, depends_on_id)

        def add_edge(issue: Issue) -> None:
            if not issue.has_dependency(depends_on_id):
                issue.dependencies.append(Dependency(depends_on_id, dep_type))

        def add_mirror(issue: Issue) -> None:
            if not issue.has_dependent(issue_id):
                issue.dependents.append(Dependency(issue_id, dep_type))

        self.modify(issue_id, add_edge, cancel)
        self.modify(depends_on_id, add_mirror, cancel)

    def remove_dependency(self, issue_id: str, depends_on_id: str, cancel: Cancel | None = None) -> None:
        """Drop the issue_id → depends_on_id edge from both ends.

        Removing a parent-child edge also clears issue_id's parent.
        """

        def drop_edge(issue: Issue) -> None:
            if any(d.id == depends_on_id and d.type == PARENT_CHILD for d in issue.dependencies):
                issue.parent = ""
            issue.dependencies = remove_dep(issue.dependencies, depends_on_id)

        def drop_mirror(issue: Issue) -> None:
            issue.dependents = remove_dep(issue.dependents, issue_id)

        self.modify(issue_id, drop_edge, cancel)
        self.modify(depends_on_id, drop_mirror, cancel)

    def _reparent(self, child_id: str, parent_id: str, cancel: Cancel | None) -> None:
        if not self.same_store(child_id, parent_id):
            raise CrossStoreError(child_id, parent_id)
        if self._has_hierarchy_cycle(child_id, parent_id, cancel) or self._has_cycle(child_id, parent_id, cancel):
            raise CycleError(child_id, parent_id, kind="parent-child")

        store = self.store_for(child_id)
        old_parent_id = ""

        def set_parent(child: Issue) -> None:
            nonlocal old_parent_id
            if child.parent and child.parent != parent_id:
                old_parent_id = child.parent
                child.dependencies = remove_dep(child.dependencies, child.parent)
            child.parent = parent_id
            # One entry per pair: an earlier generic edge to the parent is replaced.
            if not child.has_dependency(parent_id, PARENT_CHILD):
                child.dependencies = remove_dep(child.dependencies, parent_id)
                child.dependencies.append(Dependency(parent_id, PARENT_CHILD))

        _check(cancel)
        store.modify(child_id, set_parent)

        if old_parent_id:

            def drop_child(old_parent: Issue) -> None:
                old_parent.dependents = remove_dep(old_parent.dependents, child_id)

            _check(cancel)
            try:
                store.modify(old_parent_id, drop_child)
            except (RigError, OSError, ValueError) as exc:
                logger.warning(
                    "reparent %s: could not remove it from old parent %s: %s",
                    child_id, old_parent_id, exc,
                )

        def add_child(parent: Issue) -> None:
            if not parent.has_dependent(child_id, PARENT_CHILD):
                parent.dependents = remove_dep(parent.dependents, child_id)
                parent.dependents.append(Dependency(child_id, PARENT_CHILD))

        _check(cancel)
        store.modify(parent_id, add_child)

    # ------------------------------------------------------------------
    # Cycle detection
    # ------------------------------------------------------------------

    def _has_cycle(self, issue_id: str, depends_on_id: str, cancel: Cancel | None) -> bool:
        """BFS from depends_on_id over outgoing edges; a cycle if issue_id is reachable."""
        if issue_id == depends_on_id:
            return True

        visited: set[str] = set()
        queue = deque([depends_on_id])
        while queue:
            current = queue.popleft()
            if current in visited:
                continue
            visited.add(current)

            try:
                issue = self.get(current, cancel)
            except NotFoundError:
                continue

            for dep in issue.dependencies:
                if dep.id == issue_id:
                    return True
                if dep.id not in visited:
                    queue.append(dep.id)
        return False

    def _has_hierarchy_cycle(self, child_id: str, parent_id: str, cancel: Cancel | None) -> bool:
        """Walk .parent links up from parent_id looking for child_id."""
        if child_id == parent_id:
            return True

        visited: set[str] = set()
        current = parent_id
        while current and current not in visited:
            visited.add(current)
            try:
                issue = self.get(current, cancel)
            except NotFoundError:
                break
            if issue.parent == child_id:
                return True
            current = issue.parent
        return False
