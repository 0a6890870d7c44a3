"""Prefix routing across rigs.

An issue ID's prefix ("hq-" in "hq-abc") names the rig that owns it. The
town root's .store/routes.jsonl maps prefixes to rig paths relative to the
town root:

    {"prefix": "hq-", "path": "."}
    {"prefix": "bl-", "path": "crew/misc"}

A rig's .store dir may hold a `redirect` file pointing at its real location;
resolution follows it exactly one level.

Router construction never fails just because routing is not configured: with
no manifest (or an empty one) discover() returns NullRouter, which treats
every ID as local.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from types import MappingProxyType
from typing import TYPE_CHECKING, NamedTuple

from rigstore.config import STORAGE_DIR_NAME
from rigstore.errors import MalformedRoutesError, RedirectInvalidError, RigError

if TYPE_CHECKING:
    from collections.abc import Iterator, Mapping

logger = logging.getLogger("rigstore.routing")

ROUTES_FILENAME = "routes.jsonl"
REDIRECT_FILENAME = "redirect"


def extract_prefix(id: str) -> str:  # noqa: A002
    """Everything through the first hyphen: "bl-1jzo" → "bl-". "" if none."""
    head, dash, _ = id.partition("-")
    return head + dash if dash else ""


@dataclass(frozen=True)
class Route:
    prefix: str
    path: str          # relative to the town root


class RouteTable:
    """Immutable prefix → Route mapping loaded from routes.jsonl."""

    def __init__(self, routes: Mapping[str, Route] | None = None) -> None:
        self._routes: Mapping[str, Route] = MappingProxyType(dict(routes or {}))

    @classmethod
    def load(cls, path: Path | str) -> RouteTable:
        """Parse a routes.jsonl file. Missing file → empty table."""
        path = Path(path)
        try:
            text = path.read_text()
        except FileNotFoundError:
            return cls()

        routes: dict[str, Route] = {}
        for line_no, line in enumerate(text.splitlines(), start=1):
            line = line.strip()
            if not line:
                continue
            try:
                obj = json.loads(line)
            except json.JSONDecodeError as exc:
                raise MalformedRoutesError(str(path), line_no, str(exc)) from exc
            if not isinstance(obj, dict):
                raise MalformedRoutesError(str(path), line_no, "expected a JSON object")
            prefix, rel = obj.get("prefix"), obj.get("path")
            if not isinstance(prefix, str) or not isinstance(rel, str):
                raise MalformedRoutesError(
                    str(path), line_no, 'need string "prefix" and "path" fields'
                )
            routes[prefix] = Route(prefix=prefix, path=rel)
        return cls(routes)

    def get(self, prefix: str) -> Route | None:
        return self._routes.get(prefix)

    def __len__(self) -> int:
        return len(self._routes)

    def __iter__(self) -> Iterator[Route]:
        return iter(self._routes.values())

    def __contains__(self, prefix: object) -> bool:
        return prefix in self._routes


def load_routes(path: Path | str) -> RouteTable:
    return RouteTable.load(path)


def read_redirect(storage_dir: Path) -> Path | None:
    """Return the redirect target of storage_dir, or None if there is none.

    Relative targets are resolved against storage_dir itself. The target
    must exist and be a directory.
    """
    redirect_path = storage_dir / REDIRECT_FILENAME
    try:
        with redirect_path.open() as f:
            first = f.readline().strip()
    except (FileNotFoundError, NotADirectoryError):
        return None
    if not first:
        return None

    target = Path(first)
    if not target.is_absolute():
        target = storage_dir / target
    target = target.resolve()

    if not target.exists():
        raise RedirectInvalidError(str(target), "does not exist")
    if not target.is_dir():
        raise RedirectInvalidError(str(target), "is not a directory")
    return target


class Resolution(NamedTuple):
    """Result of Router.resolve.

    location is the resolved .store dir of the owning rig (None on a miss),
    prefix the matched ID prefix, is_remote whether that rig is not ours.
    """

    location: Path | None
    prefix: str
    is_remote: bool


_MISS = Resolution(None, "", False)


def _find_routes_file(storage_dir: Path) -> tuple[Path, Path] | None:
    """Return (town_root, routes_path) for the nearest manifest, if any.

    Checks storage_dir itself, then <ancestor>/.store/routes.jsonl for every
    ancestor of the rig root.
    """
    own = storage_dir / ROUTES_FILENAME
    if own.is_file():
        return storage_dir.parent, own

    for directory in storage_dir.parent.parents:
        candidate = directory / STORAGE_DIR_NAME / ROUTES_FILENAME
        if candidate.is_file():
            return directory, candidate
    return None


class Router:
    """Resolves issue IDs to the .store dir of the rig that owns them."""

    is_absent = False

    def __init__(self, town_root: Path, local_storage: Path, routes: RouteTable) -> None:
        self.town_root = town_root
        self.local_storage = local_storage
        self.routes = routes
        self._cache: dict[str, Resolution] = {}

    @classmethod
    def discover(cls, storage_dir: Path | str) -> Router | NullRouter:
        """Build a Router from the manifest nearest to storage_dir.

        Returns NullRouter when there is no manifest or it has no routes.
        Raises MalformedRoutesError for an unparseable manifest.
        """
        local = Path(storage_dir).resolve()
        found = _find_routes_file(local)
        if found is None:
            logger.debug("no %s above %s; routing disabled", ROUTES_FILENAME, local)
            return NullRouter()

        town_root, routes_path = found
        routes = RouteTable.load(routes_path)
        if not routes:
            return NullRouter()
        logger.debug("loaded %d routes from %s", len(routes), routes_path)
        return cls(town_root, local, routes)

    def resolve(self, id: str) -> Resolution:  # noqa: A002
        """Resolve id to (location, prefix, is_remote).

        Unmatched prefix → Resolution(None, "", False). Redirect problems
        raise RedirectInvalidError.
        """
        prefix = extract_prefix(id)
        if not prefix:
            return _MISS
        cached = self._cache.get(prefix)
        if cached is not None:
            return cached

        route = self.routes.get(prefix)
        if route is None:
            return _MISS

        target = (self.town_root / route.path / STORAGE_DIR_NAME).resolve()
        redirected = read_redirect(target)
        if redirected is not None:
            logger.info("route %s: %s redirects to %s", prefix, target, redirected)
            target = redirected

        resolution = Resolution(target, prefix, target != self.local_storage)
        self._cache[prefix] = resolution
        return resolution

    def same_store(self, id1: str, id2: str) -> bool:
        """True if both IDs live in the same physical rig."""
        try:
            r1 = self.resolve(id1)
            r2 = self.resolve(id2)
        except RigError:
            return False
        if not r1.is_remote and not r2.is_remote:
            return True
        return r1.location == r2.location


class NullRouter:
    """The absent router: no routes configured, everything is local."""

    is_absent = True
    routes = RouteTable()

    def resolve(self, id: str) -> Resolution:  # noqa: A002, ARG002
        return _MISS

    def same_store(self, id1: str, id2: str) -> bool:  # noqa: ARG002
        return True
