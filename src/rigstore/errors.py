"""rigstore exception hierarchy.

Shared by idgen, routing, the record stores, the federated store and the
merge slot so every module raises and catches the same types.
"""

from __future__ import annotations


class RigError(Exception):
    """Base for all rigstore-specific errors."""


class ConfigError(RigError):
    """Raised when a rig's config.toml cannot be parsed."""


class InvalidInputError(RigError, ValueError):
    """Bad length, prefix, key or other caller-supplied value."""


class NotFoundError(RigError, LookupError):
    """A record or key does not exist."""

    def __init__(self, key: str, what: str = "issue") -> None:
        self.key = key
        super().__init__(f"{what} not found: {key}")


class AlreadyExistsError(RigError):
    def __init__(self, key: str, what: str = "issue") -> None:
        self.key = key
        super().__init__(f"{what} already exists: {key}")


class CycleError(RigError):
    """Adding the edge issue_id -> depends_on_id would close a cycle."""

    def __init__(self, issue_id: str, depends_on_id: str, kind: str = "dependency") -> None:
        self.issue_id = issue_id
        self.depends_on_id = depends_on_id
        super().__init__(
            f"adding {kind} {issue_id} -> {depends_on_id} would create a cycle"
        )


class CrossStoreError(RigError):
    """Parent-child edges must stay inside one rig."""

    def __init__(self, child_id: str, parent_id: str) -> None:
        self.child_id = child_id
        self.parent_id = parent_id
        super().__init__(
            f"cannot add parent-child dependency across different rigs: "
            f"{child_id} -> {parent_id}"
        )


class MaxDepthExceededError(RigError):
    def __init__(self, parent_id: str, depth: int, max_depth: int) -> None:
        self.parent_id = parent_id
        self.depth = depth
        self.max_depth = max_depth
        super().__init__(
            f"cannot add child to {parent_id} (depth {depth}): "
            f"maximum hierarchy depth is {max_depth}"
        )


class MalformedRoutesError(RigError):
    """A routes.jsonl line could not be parsed."""

    def __init__(self, path: str, line_no: int, detail: str) -> None:
        self.path = path
        self.line_no = line_no
        self.detail = detail
        super().__init__(f"{path}:{line_no}: malformed route: {detail}")


class RedirectInvalidError(RigError):
    def __init__(self, target: str, reason: str) -> None:
        self.target = target
        super().__init__(f"redirect target {reason}: {target}")


class SlotHeldError(RigError):
    """The merge slot is held by someone else."""

    def __init__(self, holder: str, slot: object = None) -> None:
        self.holder = holder
        self.slot = slot
        super().__init__(f"merge slot is held by {holder!r}")


class SlotStateError(RigError):
    """Release was attempted on a slot that is open or held by another holder."""


class CancelledError(RigError):
    """The caller's cancel signal was set before an I/O step."""
