"""KVStore: small JSON key-value tables under <storage_dir>/kv/<table>/.

One file per key (<key>.json), written with the same temp-then-rename step
as FileStore. No lifecycle semantics; the merge slot is the main user.
"""

from __future__ import annotations

import enum
import json
import os
import secrets
from pathlib import Path
from typing import Any

from rigstore.errors import AlreadyExistsError, InvalidInputError, NotFoundError
from rigstore.filestore import atomic_write_json

KV_DIR = "kv"


class SetMode(enum.Enum):
    ALWAYS = "always"                        # create or overwrite
    FAIL_IF_EXISTS = "fail_if_exists"        # create only
    FAIL_IF_NOT_EXISTS = "fail_if_not_exists"  # update only


def _validate_name(name: str, what: str) -> None:
    if not name:
        msg = f"{what} cannot be empty"
        raise InvalidInputError(msg)
    if "/" in name or "\\" in name or name in (".", ".."):
        msg = f"{what} {name!r} contains a path separator"
        raise InvalidInputError(msg)


class KVStore:
    def __init__(self, storage_dir: Path | str, table: str) -> None:
        _validate_name(table, "table name")
        self.table = table
        self.dir = Path(storage_dir) / KV_DIR / table

    def __repr__(self) -> str:
        return f"KVStore({str(self.dir)!r})"

    def _key_path(self, key: str) -> Path:
        _validate_name(key, "key")
        return self.dir / f"{key}.json"

    def init(self) -> None:
        self.dir.mkdir(parents=True, exist_ok=True)

    def set(self, key: str, value: dict[str, Any], exists: SetMode = SetMode.ALWAYS) -> None:
        path = self._key_path(key)
        self.init()
        if exists is SetMode.FAIL_IF_EXISTS:
            tmp = path.with_name(f"{path.name}.new.{secrets.token_hex(8)}")
            tmp.write_text(json.dumps(value, indent=2) + "\n")
            try:
                os.link(tmp, path)
            except FileExistsError:
                raise AlreadyExistsError(key, what="key") from None
            finally:
                tmp.unlink(missing_ok=True)
            return
        if exists is SetMode.FAIL_IF_NOT_EXISTS and not path.exists():
            raise NotFoundError(key, what="key")
        atomic_write_json(path, value)

    def get(self, key: str) -> dict[str, Any]:
        try:
            return json.loads(self._key_path(key).read_text())
        except FileNotFoundError:
            raise NotFoundError(key, what="key") from None

    def update(self, key: str, value: dict[str, Any]) -> None:
        self.set(key, value, exists=SetMode.FAIL_IF_NOT_EXISTS)

    def delete(self, key: str) -> None:
        try:
            self._key_path(key).unlink()
        except FileNotFoundError:
            raise NotFoundError(key, what="key") from None

    def keys(self) -> list[str]:
        if not self.dir.is_dir():
            return []
        return sorted(p.stem for p in self.dir.iterdir() if p.suffix == ".json" and p.is_file())
