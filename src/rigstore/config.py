"""RigConfig: per-rig config for a file-backed issue store.

Default layout (relative to the rig root):

    .store/
        config.toml       # rig config (git-tracked)
        routes.jsonl      # prefix → rig path manifest (town root only)
        redirect          # optional: one line, path to the real .store dir
        issues/           # data dir, named after project.name
            open/<id>.json
            closed/<id>.json
        kv/<table>/<key>.json

config.toml example:

    actor = "alice"

    [project]
    name = "issues"

    [id]
    prefix = "bd-"

    [hierarchy]
    max_depth = 3

Environment overrides (never written back): RIGSTORE_DIR picks the .store
dir, RIGSTORE_ACTOR and RIGSTORE_PROJECT override actor and project.name.
"""

from __future__ import annotations

import logging
import os
import tomllib
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from rigstore.errors import ConfigError
from rigstore.idgen import DEFAULT_MAX_HIERARCHY_DEPTH, build_prefix

logger = logging.getLogger("rigstore.config")

STORAGE_DIR_NAME = ".store"
CONFIG_FILENAME = "config.toml"

ENV_DIR = "RIGSTORE_DIR"
ENV_ACTOR = "RIGSTORE_ACTOR"
ENV_PROJECT = "RIGSTORE_PROJECT"

_DEFAULT_PROJECT = "issues"
_DEFAULT_PREFIX = "bd-"


@dataclass
class RigConfig:
    """Resolved configuration for one rig."""

    storage_dir: Path                 # the .store directory
    project_name: str = _DEFAULT_PROJECT
    prefix: str = _DEFAULT_PREFIX
    max_hierarchy_depth: int = DEFAULT_MAX_HIERARCHY_DEPTH
    actor: str = ""

    @property
    def rig_root(self) -> Path:
        return self.storage_dir.parent

    @property
    def data_dir(self) -> Path:
        return self.storage_dir / self.project_name

    @property
    def config_path(self) -> Path:
        return self.storage_dir / CONFIG_FILENAME


def load_config(storage_dir: Path | str) -> RigConfig:
    """Load <storage_dir>/config.toml; missing file means defaults."""
    storage_path = Path(storage_dir)
    config_path = storage_path / CONFIG_FILENAME

    raw: dict[str, Any] = {}
    if config_path.exists():
        try:
            with config_path.open("rb") as f:
                raw = tomllib.load(f)
        except tomllib.TOMLDecodeError as exc:
            msg = f"{config_path}: {exc}"
            raise ConfigError(msg) from exc

    try:
        project_section = raw.get("project", {})
        id_section = raw.get("id", {})
        hier_section = raw.get("hierarchy", {})
        project_name = os.getenv(ENV_PROJECT) or project_section.get("name", _DEFAULT_PROJECT)
        if not isinstance(project_name, str):
            msg = f"project.name must be a string, got {project_name!r}"
            raise TypeError(msg)
        prefix = build_prefix(str(id_section.get("prefix", _DEFAULT_PREFIX)))
        max_depth = int(hier_section.get("max_depth", DEFAULT_MAX_HIERARCHY_DEPTH))
    except (AttributeError, TypeError, ValueError) as exc:
        msg = f"{config_path}: invalid config: {exc}"
        raise ConfigError(msg) from exc

    return RigConfig(
        storage_dir=storage_path,
        project_name=project_name,
        prefix=prefix,
        max_hierarchy_depth=max_depth,
        actor=os.getenv(ENV_ACTOR) or raw.get("actor") or os.getenv("USER", ""),
    )


def find_storage_dir(start: Path | str | None = None) -> Path | None:
    """Locate the .store dir: $RIGSTORE_DIR, else walk upward from start.

    A redirect file in the found dir is followed (one level).
    """
    from rigstore.routing import read_redirect

    env_dir = os.getenv(ENV_DIR)
    if env_dir:
        path = Path(env_dir).resolve()
        if path.name != STORAGE_DIR_NAME:
            path = path / STORAGE_DIR_NAME
        return read_redirect(path) or path

    start_path = Path(start).resolve() if start else Path.cwd()
    for directory in (start_path, *start_path.parents):
        candidate = directory / STORAGE_DIR_NAME
        if (candidate / CONFIG_FILENAME).is_file():
            redirected = read_redirect(candidate)
            if redirected is not None:
                logger.debug("storage dir %s redirects to %s", candidate, redirected)
                return redirected
            return candidate
    return None


def init_config(rig_root: Path, prefix: str = _DEFAULT_PREFIX, project_name: str = _DEFAULT_PROJECT) -> Path:
    """Write a default .store/config.toml under rig_root. Raises if it exists."""
    storage_dir = rig_root / STORAGE_DIR_NAME
    config_path = storage_dir / CONFIG_FILENAME
    if config_path.exists():
        msg = f"config.toml already exists at {config_path}"
        raise FileExistsError(msg)

    storage_dir.mkdir(parents=True, exist_ok=True)
    content = f"""\
# actor = "you"          # default: $RIGSTORE_ACTOR, then $USER

[project]
name = "{project_name}"

[id]
prefix = "{build_prefix(prefix)}"

[hierarchy]
max_depth = {DEFAULT_MAX_HIERARCHY_DEPTH}
"""
    config_path.write_text(content)
    return config_path
