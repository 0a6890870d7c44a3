"""File-backed issue store federated across rigs.

Layout (per rig):
    .store/
        config.toml       # prefix, project name, hierarchy depth (git-tracked)
        routes.jsonl      # {"prefix": "bl-", "path": "crew/misc"} per line (town root only)
        redirect          # optional: path to the rig's real .store dir
        issues/
            open/<id>.json
            closed/<id>.json
        kv/merge-slot/lock.json

IDs are "<prefix><base36>" ("bd-a3f8"), children append ".<n>" ("bd-a3f8.1").
The prefix picks the owning rig; FederatedStore routes each single-ID call
there and keeps both ends of every dependency edge in step.

Writes are temp-file-then-rename per record. Nothing spans two records
atomically; `rigs doctor --fix` repairs one-sided edges.
"""

from rigstore.config import RigConfig, find_storage_dir, init_config, load_config
from rigstore.federation import FederatedStore
from rigstore.filestore import FileStore, open_rig_store
from rigstore.models import CreateOpts, Dependency, Issue, ListFilter
from rigstore.routing import NullRouter, Route, RouteTable, Router

__all__ = [
    "CreateOpts",
    "Dependency",
    "FederatedStore",
    "FileStore",
    "Issue",
    "ListFilter",
    "NullRouter",
    "RigConfig",
    "Route",
    "RouteTable",
    "Router",
    "find_storage_dir",
    "init_config",
    "load_config",
    "open_rig_store",
]
