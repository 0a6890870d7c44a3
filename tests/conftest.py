"""Shared fixtures: single rigs and a two-rig town with a routing manifest."""

import json
from pathlib import Path

import pytest

from rigstore.config import STORAGE_DIR_NAME, init_config
from rigstore.filestore import FileStore, open_rig_store
from rigstore.models import Issue


def make_rig(root: Path, prefix: str) -> FileStore:
    """Create <root>/.store with config and data dirs; return its FileStore."""
    init_config(root, prefix=prefix)
    store = open_rig_store(root / STORAGE_DIR_NAME)
    store.init()
    return store


def write_routes(town_root: Path, routes: list[dict]) -> Path:
    path = town_root / STORAGE_DIR_NAME / "routes.jsonl"
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("".join(json.dumps(r) + "\n" for r in routes))
    return path


def add(store, title: str, id: str = "") -> str:  # noqa: A002
    return store.create(Issue(id=id, title=title))


@pytest.fixture
def store(tmp_path: Path) -> FileStore:
    return make_rig(tmp_path / "rig", "bd-")


@pytest.fixture
def town(tmp_path: Path) -> dict[str, Path]:
    """town/ (hq-) with a crew/misc rig (bl-), routed by town/.store/routes.jsonl."""
    town_root = tmp_path / "town"
    make_rig(town_root, "hq-")
    make_rig(town_root / "crew" / "misc", "bl-")
    write_routes(
        town_root,
        [
            {"prefix": "hq-", "path": "."},
            {"prefix": "bl-", "path": "crew/misc"},
        ],
    )
    return {
        "root": town_root,
        "hq": town_root / STORAGE_DIR_NAME,
        "bl": town_root / "crew" / "misc" / STORAGE_DIR_NAME,
    }
