"""Data models for issue records and their typed dependency edges."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

# Dependency types. Everything except PARENT_CHILD is a "generic" edge for
# graph purposes; PARENT_CHILD additionally mirrors into Issue.parent.
BLOCKS = "blocks"
TRACKS = "tracks"
RELATED = "related"
PARENT_CHILD = "parent-child"
DISCOVERED_FROM = "discovered-from"
UNTIL = "until"
CAUSED_BY = "caused-by"
VALIDATES = "validates"
RELATES_TO = "relates-to"
SUPERSEDES = "supersedes"

DEPENDENCY_TYPES = (
    BLOCKS, TRACKS, RELATED, PARENT_CHILD, DISCOVERED_FROM,
    UNTIL, CAUSED_BY, VALIDATES, RELATES_TO, SUPERSEDES,
)

STATUS_OPEN = "open"
STATUS_IN_PROGRESS = "in_progress"
STATUS_BLOCKED = "blocked"
STATUS_DEFERRED = "deferred"
STATUS_CLOSED = "closed"

STATUSES = (STATUS_OPEN, STATUS_IN_PROGRESS, STATUS_BLOCKED, STATUS_DEFERRED, STATUS_CLOSED)
ISSUE_TYPES = ("task", "bug", "feature", "epic", "chore")


def now_iso() -> str:
    return datetime.now(UTC).isoformat()


@dataclass
class Dependency:
    """One typed edge in an issue's dependencies or dependents list."""

    id: str
    type: str = BLOCKS

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> Dependency:
        return cls(id=d["id"], type=d.get("type", BLOCKS))

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "type": self.type}


@dataclass
class Issue:
    """A record loaded from <data_dir>/{open,closed}/<id>.json."""

    id: str = ""
    title: str = ""
    description: str = ""
    status: str = STATUS_OPEN
    priority: int = 2                  # 0=critical .. 4=backlog
    type: str = "task"
    parent: str = ""                   # set together with a parent-child dependency
    dependencies: list[Dependency] = field(default_factory=list)   # issues this one depends on
    dependents: list[Dependency] = field(default_factory=list)     # issues that depend on this one
    labels: list[str] = field(default_factory=list)
    assignee: str = ""
    created_by: str = ""
    created_at: str = ""
    updated_at: str = ""
    closed_at: str = ""
    close_reason: str = ""

    def has_dependency(self, id: str, dep_type: str | None = None) -> bool:  # noqa: A002
        return any(d.id == id and (dep_type is None or d.type == dep_type) for d in self.dependencies)

    def has_dependent(self, id: str, dep_type: str | None = None) -> bool:  # noqa: A002
        return any(d.id == id and (dep_type is None or d.type == dep_type) for d in self.dependents)

    def dependency_ids(self, dep_type: str | None = None) -> list[str]:
        return [d.id for d in self.dependencies if dep_type is None or d.type == dep_type]

    def dependent_ids(self, dep_type: str | None = None) -> list[str]:
        return [d.id for d in self.dependents if dep_type is None or d.type == dep_type]

    def children(self) -> list[str]:
        """IDs of child issues (parent-child dependents)."""
        return self.dependent_ids(PARENT_CHILD)

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> Issue:
        return cls(
            id=d.get("id", ""),
            title=d.get("title", ""),
            description=d.get("description", ""),
            status=d.get("status", STATUS_OPEN),
            priority=int(d.get("priority", 2)),
            type=d.get("type", "task"),
            parent=d.get("parent", ""),
            dependencies=[Dependency.from_dict(x) for x in d.get("dependencies", [])],
            dependents=[Dependency.from_dict(x) for x in d.get("dependents", [])],
            labels=list(d.get("labels", [])),
            assignee=d.get("assignee", ""),
            created_by=d.get("created_by", ""),
            created_at=d.get("created_at", ""),
            updated_at=d.get("updated_at", ""),
            closed_at=d.get("closed_at", ""),
            close_reason=d.get("close_reason", ""),
        )

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "status": self.status,
            "priority": self.priority,
            "type": self.type,
        }
        if self.parent:
            d["parent"] = self.parent
        if self.dependencies:
            d["dependencies"] = [x.to_dict() for x in self.dependencies]
        if self.dependents:
            d["dependents"] = [x.to_dict() for x in self.dependents]
        if self.labels:
            d["labels"] = list(self.labels)
        for key in ("assignee", "created_by", "created_at", "updated_at", "closed_at", "close_reason"):
            value = getattr(self, key)
            if value:
                d[key] = value
        return d


def remove_dep(deps: list[Dependency], id: str) -> list[Dependency]:  # noqa: A002
    """Return deps without any entry pointing at id."""
    return [d for d in deps if d.id != id]


@dataclass
class ListFilter:
    """Criteria for RecordStore.list. None means "any"."""

    status: str | None = None
    priority: int | None = None
    type: str | None = None
    parent: str | None = None          # "" means root issues only
    labels: list[str] = field(default_factory=list)
    assignee: str | None = None

    def matches(self, issue: Issue) -> bool:
        if self.status is not None and issue.status != self.status:
            return False
        if self.priority is not None and issue.priority != self.priority:
            return False
        if self.type is not None and issue.type != self.type:
            return False
        if self.assignee is not None and issue.assignee != self.assignee:
            return False
        if self.parent is not None and issue.parent != self.parent:
            return False
        return all(label in issue.labels for label in self.labels)


@dataclass
class CreateOpts:
    # Inserted between the store's base prefix and the random suffix
    # ("mol" → "bd-mol-xxxx"). Ignored when the issue already has an id.
    prefix_addition: str = ""
