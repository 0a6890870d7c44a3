"""Filesystem RecordStore: one JSON file per issue.

FileStore is the bundled backend:
    store = FileStore("/path/to/.store/issues", prefix="bd-")
    issue_id = store.create(Issue(title="Fix login"))
    store.modify(issue_id, lambda issue: setattr(issue, "status", "closed"))

Layout:
    <data_dir>/
        open/<id>.json       # every status except closed
        closed/<id>.json
        .locks/<id>.lock     # flock targets for read-modify-write

Every write goes to a unique temp file in the destination directory and is
renamed (or hard-linked, for exclusive create) into place, so readers never
see a partial record. modify() serialises writers of the same issue with
flock(LOCK_EX) on the issue's lock file. Nothing spans two records.
"""

from __future__ import annotations

import contextlib
import fcntl
import json
import logging
import os
import secrets
from pathlib import Path
from typing import TYPE_CHECKING, Any

from rigstore.config import load_config
from rigstore.errors import AlreadyExistsError, NotFoundError, RigError
from rigstore.idgen import (
    DEFAULT_MAX_HIERARCHY_DEPTH,
    adaptive_length,
    build_prefix,
    check_hierarchy_depth,
    child_id,
    parse_hierarchical_id,
    random_id,
)
from rigstore.models import (
    PARENT_CHILD,
    STATUS_CLOSED,
    Dependency,
    Issue,
    ListFilter,
    now_iso,
    remove_dep,
)

if TYPE_CHECKING:
    from collections.abc import Callable, Iterator

    from rigstore.models import CreateOpts

logger = logging.getLogger("rigstore.filestore")

DIR_OPEN = "open"
DIR_CLOSED = "closed"
_DIRS = (DIR_OPEN, DIR_CLOSED)
_LOCK_DIR = ".locks"

# AdaptiveLength keeps P(collision) ≤ 0.25, so 20 straight collisions ≈ 1e-12.
MAX_ID_RETRIES = 20


def _dir_for(issue: Issue) -> str:
    return DIR_CLOSED if issue.status == STATUS_CLOSED else DIR_OPEN


def _tmp_path(path: Path) -> Path:
    return path.with_name(f"{path.name}.tmp.{secrets.token_hex(8)}")


def _dump(issue: Issue) -> str:
    return json.dumps(issue.to_dict(), indent=2) + "\n"


def atomic_write_json(path: Path, data: dict[str, Any]) -> None:
    """Write data to a temp file beside path, then rename it over path."""
    tmp = _tmp_path(path)
    try:
        with tmp.open("x") as f:
            json.dump(data, f, indent=2)
            f.write("\n")
            f.flush()
            os.fsync(f.fileno())
        tmp.replace(path)
    except BaseException:
        tmp.unlink(missing_ok=True)
        raise


def _apply_status_defaults(old_status: str, issue: Issue) -> None:
    """Stamp closed_at on close, clear close fields on reopen."""
    if issue.status == STATUS_CLOSED and old_status != STATUS_CLOSED:
        issue.closed_at = issue.closed_at or now_iso()
    elif issue.status != STATUS_CLOSED and old_status == STATUS_CLOSED:
        issue.closed_at = ""
        issue.close_reason = ""


class FileStore:
    """JSON-file-backed RecordStore for one rig."""

    def __init__(
        self,
        data_dir: Path | str,
        prefix: str = "bd-",
        max_hierarchy_depth: int = DEFAULT_MAX_HIERARCHY_DEPTH,
    ) -> None:
        self.data_dir = Path(data_dir)
        self.prefix = prefix
        self.max_hierarchy_depth = max_hierarchy_depth

    def __repr__(self) -> str:
        return f"FileStore({str(self.data_dir)!r}, prefix={self.prefix!r})"

    # ------------------------------------------------------------------
    # Paths
    # ------------------------------------------------------------------

    def _path(self, id: str, dir_name: str) -> Path:  # noqa: A002
        return self.data_dir / dir_name / f"{id}.json"

    def _locate(self, id: str) -> Path | None:  # noqa: A002
        for dir_name in _DIRS:
            path = self._path(id, dir_name)
            if path.exists():
                return path
        return None

    @contextlib.contextmanager
    def _locked(self, id: str) -> Iterator[None]:  # noqa: A002
        lock_dir = self.data_dir / _LOCK_DIR
        lock_dir.mkdir(parents=True, exist_ok=True)
        with (lock_dir / f"{id}.lock").open("a") as f:
            fcntl.flock(f, fcntl.LOCK_EX)
            try:
                yield
            finally:
                fcntl.flock(f, fcntl.LOCK_UN)

    def _iter_files(self, dir_names: tuple[str, ...] = _DIRS) -> Iterator[Path]:
        for dir_name in dir_names:
            directory = self.data_dir / dir_name
            if not directory.is_dir():
                continue
            for path in sorted(directory.iterdir()):
                if path.suffix == ".json" and path.is_file():
                    yield path

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    def get(self, id: str) -> Issue:  # noqa: A002
        path = self._locate(id)
        if path is None:
            raise NotFoundError(id)
        try:
            with path.open() as f:
                return Issue.from_dict(json.load(f))
        except FileNotFoundError:
            # Moved between open/ and closed/ under us; one more look.
            path = self._locate(id)
            if path is None:
                raise NotFoundError(id) from None
            with path.open() as f:
                return Issue.from_dict(json.load(f))

    def list(self, filter: ListFilter | None = None) -> list[Issue]:  # noqa: A002
        """Issues matching filter, oldest first. No filter → open issues."""
        dirs = (DIR_CLOSED,) if filter is not None and filter.status == STATUS_CLOSED else (DIR_OPEN,)
        issues: list[Issue] = []
        for path in self._iter_files(dirs):
            try:
                issue = Issue.from_dict(json.loads(path.read_text()))
            except (json.JSONDecodeError, OSError):
                continue
            if filter is None or filter.matches(issue):
                issues.append(issue)
        issues.sort(key=lambda i: i.created_at)
        return issues

    def count(self) -> int:
        return sum(1 for _ in self._iter_files())

    # ------------------------------------------------------------------
    # Write
    # ------------------------------------------------------------------

    def _publish(self, issue: Issue) -> bool:
        """Exclusively create issue's file. False if the id is taken."""
        if self._locate(issue.id) is not None:
            return False
        path = self._path(issue.id, _dir_for(issue))
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = _tmp_path(path)
        tmp.write_text(_dump(issue))
        try:
            os.link(tmp, path)
        except FileExistsError:
            return False
        finally:
            tmp.unlink(missing_ok=True)
        return True

    def create(self, issue: Issue, opts: CreateOpts | None = None) -> str:
        """Create issue and return its id.

        A preset issue.id is used as-is (hierarchical ids are depth-checked).
        Otherwise random ids of adaptive length are tried until one is free.
        """
        now = now_iso()
        issue.created_at = issue.created_at or now
        issue.updated_at = now

        if issue.id:
            parent_id, _, ok = parse_hierarchical_id(issue.id)
            if ok:
                check_hierarchy_depth(parent_id, self.max_hierarchy_depth)
            if not self._publish(issue):
                raise AlreadyExistsError(issue.id)
            return issue.id

        prefix = build_prefix(self.prefix, opts.prefix_addition if opts else "")
        length = adaptive_length(self.count())
        for _ in range(MAX_ID_RETRIES):
            issue.id = random_id(prefix, length)
            if self._publish(issue):
                return issue.id
        issue.id = ""
        msg = f"failed to generate unique ID: {MAX_ID_RETRIES} retries exhausted at length {length}"
        raise RigError(msg)

    def modify(self, id: str, fn: Callable[[Issue], None]) -> None:  # noqa: A002
        """Read-modify-write under the issue's lock; moves the file on close/reopen."""
        with self._locked(id):
            path = self._locate(id)
            if path is None:
                raise NotFoundError(id)
            with path.open() as f:
                issue = Issue.from_dict(json.load(f))

            old_status = issue.status
            fn(issue)
            _apply_status_defaults(old_status, issue)
            issue.updated_at = now_iso()

            new_path = self._path(id, _dir_for(issue))
            new_path.parent.mkdir(parents=True, exist_ok=True)
            atomic_write_json(new_path, issue.to_dict())
            if new_path != path:
                path.unlink(missing_ok=True)

    def delete(self, id: str) -> None:  # noqa: A002
        with self._locked(id):
            path = self._locate(id)
            if path is None:
                raise NotFoundError(id)
            path.unlink()

    def get_next_child_id(self, parent_id: str) -> str:
        """Next free "<parent>.<n>" id. Not reserved: create() may still collide."""
        self.get(parent_id)
        check_hierarchy_depth(parent_id, self.max_hierarchy_depth)

        highest = 0
        for path in self._iter_files():
            parent, num, ok = parse_hierarchical_id(path.stem)
            if ok and parent == parent_id:
                highest = max(highest, num)
        return child_id(parent_id, highest + 1)

    def init(self) -> None:
        for dir_name in (*_DIRS, _LOCK_DIR):
            (self.data_dir / dir_name).mkdir(parents=True, exist_ok=True)

    # ------------------------------------------------------------------
    # Integrity
    # ------------------------------------------------------------------

    def doctor(self, fix: bool = False) -> list[str]:
        """Check for (and with fix, repair) on-disk and graph inconsistencies.

        Reported: orphaned temp files, malformed JSON, an id present in both
        open/ and closed/, a file in the wrong directory for its status,
        references to missing issues, and unmirrored edges (A lists B as a
        dependency but B does not list A as a dependent, or vice versa).
        """
        problems: list[str] = []
        located: dict[str, tuple[Issue, str]] = {}

        for dir_name in _DIRS:
            directory = self.data_dir / dir_name
            if not directory.is_dir():
                continue
            for path in sorted(directory.iterdir()):
                name = path.name
                if ".tmp." in name:
                    problems.append(f"orphaned temp file: {dir_name}/{name}")
                    if fix:
                        path.unlink(missing_ok=True)
                    continue
                if path.suffix != ".json":
                    continue
                try:
                    issue = Issue.from_dict(json.loads(path.read_text()))
                except (json.JSONDecodeError, AttributeError, KeyError, TypeError, ValueError) as exc:
                    problems.append(f"malformed JSON: {dir_name}/{name}: {exc}")
                    continue

                id = path.stem  # noqa: A001
                if id in located:
                    other_dir = located[id][1]
                    problems.append(f"duplicate issue: {id} exists in both {other_dir}/ and {dir_name}/")
                    if fix:
                        if _dir_for(issue) == dir_name:
                            self._path(id, other_dir).unlink(missing_ok=True)
                            located[id] = (issue, dir_name)
                        else:
                            path.unlink(missing_ok=True)
                    continue
                located[id] = (issue, dir_name)

        for id, (issue, dir_name) in located.items():  # noqa: A001
            expected = _dir_for(issue)
            if dir_name != expected:
                problems.append(f"status mismatch: {id} has status={issue.status} but is in {dir_name}/")
                if fix:
                    atomic_write_json(self._path(id, expected), issue.to_dict())
                    self._path(id, dir_name).unlink(missing_ok=True)
                    located[id] = (issue, expected)

        issues = {id: issue for id, (issue, _) in located.items()}  # noqa: A001
        dirty: set[str] = set()

        for id, issue in issues.items():  # noqa: A001
            if issue.parent:
                parent = issues.get(issue.parent)
                if parent is None:
                    problems.append(f"broken parent reference: {id} references non-existent parent {issue.parent}")
                    if fix:
                        issue.dependencies = remove_dep(issue.dependencies, issue.parent)
                        issue.parent = ""
                        dirty.add(id)
                elif not parent.has_dependent(id):
                    problems.append(
                        f"asymmetric parent/child: {id} has parent {issue.parent} "
                        f"but parent doesn't list it as dependent"
                    )
                    if fix:
                        parent.dependents.append(Dependency(id, PARENT_CHILD))
                        dirty.add(issue.parent)

            for dep in list(issue.dependencies):
                if dep.type == PARENT_CHILD and dep.id == issue.parent:
                    continue  # covered by the parent checks above
                target = issues.get(dep.id)
                if target is None:
                    problems.append(f"broken dependency: {id} depends on non-existent {dep.id}")
                    if fix:
                        issue.dependencies = remove_dep(issue.dependencies, dep.id)
                        dirty.add(id)
                elif not target.has_dependent(id):
                    problems.append(
                        f"asymmetric dependency: {id} depends on {dep.id} but {dep.id} doesn't list it as dependent"
                    )
                    if fix:
                        target.dependents.append(Dependency(id, dep.type))
                        dirty.add(dep.id)

            for dep in list(issue.dependents):
                source = issues.get(dep.id)
                if source is None:
                    problems.append(f"broken dependent reference: {id} has non-existent dependent {dep.id}")
                    if fix:
                        issue.dependents = remove_dep(issue.dependents, dep.id)
                        dirty.add(id)
                elif not source.has_dependency(id):
                    problems.append(
                        f"asymmetric dependency: {id} lists {dep.id} as dependent but {dep.id} doesn't depend on it"
                    )
                    if fix:
                        source.dependencies.append(Dependency(id, dep.type))
                        dirty.add(dep.id)

        if fix:
            for id in sorted(dirty):  # noqa: A001
                issue = issues[id]
                atomic_write_json(self._path(id, _dir_for(issue)), issue.to_dict())
            if problems:
                logger.info("doctor repaired %d problem(s) in %s", len(problems), self.data_dir)

        return problems


def open_rig_store(storage_dir: Path | str, prefix: str | None = None) -> FileStore:
    """Open the FileStore of the rig whose .store dir is storage_dir."""
    cfg = load_config(storage_dir)
    return FileStore(cfg.data_dir, prefix or cfg.prefix, cfg.max_hierarchy_depth)
